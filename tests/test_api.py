from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from readify import api_server, config, session
from readify.services.ai_service import AIService
from readify.services.tts_service import TTSService


class FakeOpenAI:
    def __init__(self):
        self.audio = SimpleNamespace(
            speech=SimpleNamespace(create=lambda **kw: SimpleNamespace(content=b"MP3DATA")),
            transcriptions=SimpleNamespace(create=lambda **kw: SimpleNamespace(model_dump=lambda: {
                "words": [{"word": "Hello", "start": 0.0, "end": 0.4}, {"word": "world", "start": 0.6, "end": 1.0}],
                "duration": 1.2,
            })),
        )


@pytest.fixture
def services(tmp_path, monkeypatch):
    tts = TTSService()
    tts._openai_client = FakeOpenAI()
    ai = AIService(generate_fn=lambda prompt: '{"answer": "42", "summary": "s", "keyPoints": []}')
    svc = api_server.build_services(db_path=tmp_path / "kv.db", blob_dir=tmp_path / "blobs", tts=tts, ai=ai)
    svc.users.send_email = lambda *a, **k: {"id": "email-1"}
    monkeypatch.setattr(api_server, "services", svc)
    monkeypatch.setattr(config, "ADMIN_EMAIL", "boss@example.com")
    return svc


@pytest.fixture
def client(services):
    return TestClient(api_server.app)


def login(client, email, password="pw-123", signup=True):
    if signup:
        assert client.post("/api/auth/signup", json={"email": email, "password": password}).status_code == 201
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


def upload_pdf(client, name="book.pdf"):
    r = client.post(
        "/api/upload",
        content=b"%PDF-1.4 fake",
        headers={"x-vercel-filename": name, "content-type": "application/pdf"},
    )
    assert r.status_code == 200, r.text
    return r.json()


def test_root(client):
    assert client.get("/").json() == {"status": "API is running"}


def test_signup_login_session_logout(client):
    body = login(client, "reader@example.com")
    assert body == {"success": True, "redirectUrl": "/read"}
    assert config.SESSION_COOKIE_NAME in client.cookies

    me = client.get("/api/auth/session").json()
    assert me["email"] == "reader@example.com"
    assert me["isAdmin"] is False

    assert client.post("/api/auth/logout").status_code == 200
    r = client.get("/api/auth/session")
    assert r.status_code == 401
    assert "message" in r.json()


def test_signup_conflict_and_bad_login(client):
    login(client, "reader@example.com")
    assert client.post("/api/auth/signup", json={"email": "reader@example.com", "password": "x"}).status_code == 409
    r = client.post("/api/auth/login", json={"email": "reader@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json() == {"message": "Invalid credentials"}


def test_admin_bootstrap_redirects_to_admin(client):
    body = login(client, "boss@example.com", "secret", signup=False)
    assert body["redirectUrl"] == "/admin"
    assert client.get("/api/admin/users").status_code == 200


def test_upload_requires_session_and_filename(client):
    assert client.post("/api/upload", content=b"x", headers={"x-vercel-filename": "a.pdf"}).status_code == 401
    login(client, "reader@example.com")
    assert client.post("/api/upload", content=b"x").status_code == 400


def test_document_crud(client, services):
    login(client, "reader@example.com")
    assert client.get("/api/documents").json() == []

    blob = upload_pdf(client)
    assert blob["pathname"].endswith("/book.pdf")
    assert blob["contentType"] == "application/pdf"

    doc = client.post("/api/documents", json={"fileName": "book.pdf", "pdfUrl": blob["url"]}).json()
    assert doc["zoomLevel"] == 1.0

    r = client.post("/api/documents", json={"id": doc["id"], "zoomLevel": 2.0})
    assert r.json()["zoomLevel"] == 2.0
    assert client.get(f"/api/documents/{doc['id']}").json()["fileName"] == "book.pdf"
    assert [d["id"] for d in client.get("/api/documents").json()] == [doc["id"]]

    assert client.delete(f"/api/documents/{doc['id']}").json() == {"success": True}
    assert client.get(f"/api/documents/{doc['id']}").status_code == 404


def test_other_users_are_denied(services):
    owner = TestClient(api_server.app)
    login(owner, "owner@example.com")
    blob = upload_pdf(owner)
    doc = owner.post("/api/documents", json={"fileName": "book.pdf", "pdfUrl": blob["url"]}).json()

    other = TestClient(api_server.app)
    login(other, "other@example.com")
    r = other.post("/api/documents", json={"id": doc["id"], "fileName": "mine.pdf"})
    assert r.status_code == 403
    assert other.delete(f"/api/documents/{doc['id']}").status_code == 403
    assert owner.get(f"/api/documents/{doc['id']}").json()["fileName"] == "book.pdf"


def test_save_without_session(client):
    r = client.post("/api/documents", json={"fileName": "a.pdf", "pdfUrl": "/blobs/a.pdf"})
    assert r.status_code == 401


def test_generate_speech(client):
    r = client.post("/api/generate-speech", json={"text": "Hello world.", "voice": "openai/alloy", "speakingRate": 1.0})
    assert r.status_code == 200
    assert r.json()["audioDataUri"].startswith("data:audio/mp3;base64,")

    assert client.post("/api/generate-speech", json={"text": " ", "voice": "openai/alloy"}).status_code == 400
    assert client.post("/api/generate-speech", json={"text": "Hi", "voice": "acme/bob"}).status_code == 400


def test_voices_and_preview(client):
    voices = client.get("/api/voices").json()
    assert {"openai", "google", "amazon", "gemini"} <= {v["provider"] for v in voices}
    r = client.post("/api/preview-speech", json={"voice": "openai/nova"})
    assert r.json()["audioDataUri"].startswith("data:audio/mp3;base64,")


def test_narrate_and_highlight(client):
    login(client, "reader@example.com")
    blob = upload_pdf(client)
    doc = client.post("/api/documents", json={"fileName": "book.pdf", "pdfUrl": blob["url"]}).json()

    r = client.post(f"/api/documents/{doc['id']}/narrate", json={"voice": "openai/alloy", "text": "Hello world."})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["audioUrl"].startswith("/blobs/")
    assert body["durationMs"] == 1200.0

    h = client.get(f"/api/documents/{doc['id']}/highlight", params={"t": 650}).json()["highlight"]
    assert h == {"type": "word", "start": 6, "end": 12}
    assert client.get(f"/api/documents/{doc['id']}/highlight", params={"t": 99999}).json() == {"highlight": None}


def test_ai_endpoints(client):
    assert client.post("/api/ai/chat", json={"text": "doc", "question": "q"}).json() == {"answer": "42"}
    assert client.post("/api/ai/summary", json={"text": "doc"}).json() == {"summary": "s", "keyPoints": []}
    assert client.post("/api/ai/chat", json={"text": "doc", "question": " "}).status_code == 400


def test_account_endpoints(client):
    login(client, "reader@example.com")
    assert client.post("/api/user/username", json={"username": "reader"}).status_code == 200
    assert client.post("/api/user/username", json={"username": "again"}).status_code == 400
    r = client.post("/api/user/password", json={"currentPassword": "pw-123", "newPassword": "pw-456"})
    assert r.json() == {"success": True}


def test_admin_endpoints(client, services):
    user = services.users.signup("a@example.com", "pw")
    login(client, "boss@example.com", "secret", signup=False)

    emails = {u["email"] for u in client.get("/api/admin/users").json()}
    assert {"a@example.com", "boss@example.com"} <= emails

    r = client.post("/api/admin/users", json={"email": "new@example.com", "name": "New"})
    assert r.status_code == 201
    assert client.delete(f"/api/admin/users/{user['id']}").json()["success"] is True
    assert client.get("/api/admin/documents").json() == []


def test_admin_endpoints_reject_regular_users(client):
    login(client, "reader@example.com")
    assert client.get("/api/admin/users").status_code == 403
    assert client.get("/api/admin/documents").status_code == 403


def session_cookies(response):
    prefix = f"{config.SESSION_COOKIE_NAME}="
    return [h for h in response.headers.get_list("set-cookie") if h.startswith(prefix)]


def cookie_token(header):
    return header.split(";", 1)[0].split("=", 1)[1]


def test_every_request_slides_the_session_window(client, monkeypatch):
    assert session_cookies(client.get("/api/voices")) == []

    login(client, "reader@example.com")
    first = session.decrypt(client.cookies[config.SESSION_COOKIE_NAME])

    later = first.expires - config.SESSION_TTL_SECONDS + 3600
    monkeypatch.setattr(api_server, "refresh", lambda token: session.refresh(token, now=later))
    r = client.get("/api/voices")

    cookies = session_cookies(r)
    assert len(cookies) == 1
    assert "httponly" in cookies[0].lower()
    renewed = session.decrypt(cookie_token(cookies[0]))
    assert renewed.user_id == first.user_id
    assert renewed.expires == first.expires + 3600


def test_logout_cookie_is_not_refreshed_back(client):
    login(client, "reader@example.com")
    r = client.post("/api/auth/logout")

    cookies = session_cookies(r)
    assert len(cookies) == 1
    assert cookie_token(cookies[0]) in ("", '""')
    assert "max-age=0" in cookies[0].lower()


def test_run_configures_logging_then_serves(monkeypatch):
    calls = []
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("PORT", "9123")
    monkeypatch.setattr(api_server.logging, "basicConfig", lambda **kw: calls.append(("logging", kw["level"])))
    monkeypatch.setattr(api_server.uvicorn, "run", lambda app, host, port: calls.append(("uvicorn", app, port)))

    api_server.run()

    assert calls == [("logging", "DEBUG"), ("uvicorn", api_server.app, 9123)]
