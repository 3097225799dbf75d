from dotenv import load_dotenv
load_dotenv()

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from readify import config
from readify.blob_store import BlobStore
from readify.database import DatabaseManager
from readify.errors import AuthError, ReadifyError
from readify.services.ai_service import AIService
from readify.services.document_store import DocumentStore
from readify.services.narration_service import NarrationService
from readify.services.tts_service import TTSService, list_voices
from readify.services.user_service import UserService
from readify.session import (
    Session,
    clear_session_cookie,
    decrypt,
    encrypt,
    refresh,
    set_session_cookie,
)

logger = logging.getLogger(__name__)


# =========================
# Services
# =========================
class Services:
    def __init__(self, db: DatabaseManager, blobs: BlobStore, tts: TTSService, ai: AIService):
        self.db = db
        self.blobs = blobs
        self.tts = tts
        self.ai = ai
        self.documents = DocumentStore(db, blobs)
        self.users = UserService(db, self.documents)
        self.narration = NarrationService(tts, self.documents, blobs)


def build_services(db_path: Optional[Path] = None, blob_dir: Optional[Path] = None,
                   tts: Optional[TTSService] = None, ai: Optional[AIService] = None) -> Services:
    return Services(
        db=DatabaseManager(db_path),
        blobs=BlobStore(blob_dir),
        tts=tts or TTSService(),
        ai=ai or AIService(),
    )


services = build_services()

app = FastAPI(title="Readify")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.APP_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Blob files
app.mount(config.BLOB_URL_PREFIX, StaticFiles(directory=str(config.BLOB_DIR)), name="blobs")


@app.exception_handler(ReadifyError)
def readify_error_handler(request: Request, exc: ReadifyError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.middleware("http")
async def refresh_session(request: Request, call_next):
    """Slides the 24h session window forward on every request with a valid cookie."""
    response = await call_next(request)
    token = request.cookies.get(config.SESSION_COOKIE_NAME)
    if not token:
        return response
    already_set = any(
        h.startswith(f"{config.SESSION_COOKIE_NAME}=") for h in response.headers.getlist("set-cookie")
    )
    if already_set:
        return response
    renewed = refresh(token)
    if renewed is not None:
        set_session_cookie(response, *renewed)
    return response


def current_session(request: Request) -> Optional[Session]:
    return decrypt(request.cookies.get(config.SESSION_COOKIE_NAME))


# =========================
# Request models
# =========================
class Credentials(BaseModel):
    email: str = ""
    password: str = ""
    name: Optional[str] = None


class SpeechRequest(BaseModel):
    text: str
    voice: str = config.DEFAULT_VOICE
    speakingRate: Optional[float] = 1.0


class PreviewRequest(BaseModel):
    voice: str


class DocumentSave(BaseModel):
    id: Optional[str] = None
    fileName: Optional[str] = None
    pdfUrl: Optional[str] = None
    audioUrl: Optional[str] = None
    speechMarks: Optional[List[Dict[str, Any]]] = None
    zoomLevel: Optional[float] = None
    currentPage: Optional[int] = None
    totalPages: Optional[int] = None


class NarrateRequest(BaseModel):
    voice: str = config.DEFAULT_VOICE
    speakingRate: Optional[float] = 1.0
    text: Optional[str] = None


class DocumentText(BaseModel):
    text: str


class ChatRequest(BaseModel):
    text: str
    question: str


class ExplainRequest(BaseModel):
    text: str
    context: Optional[str] = None


class PasswordChange(BaseModel):
    currentPassword: str = ""
    newPassword: str = ""


class UsernameRequest(BaseModel):
    username: str


class AdminUserCreate(BaseModel):
    email: str
    name: Optional[str] = None
    password: Optional[str] = None
    sendEmail: bool = True


# =========================
# Auth
# =========================
@app.get("/")
def read_root():
    return {"status": "API is running"}


@app.post("/api/auth/login")
def login(data: Credentials):
    user = services.users.login(data.email, data.password)
    token, expires = encrypt(user["id"], user["email"], user["isAdmin"])
    redirect_url = "/admin" if user["isAdmin"] else "/read"
    logger.info(f"[AUTH] Login successful for {user['email']}, redirecting to {redirect_url}")
    response = JSONResponse({"success": True, "redirectUrl": redirect_url})
    set_session_cookie(response, token, expires)
    return response


@app.post("/api/auth/signup", status_code=201)
def signup(data: Credentials):
    services.users.signup(data.email, data.password, name=data.name)
    return {"message": "User created successfully"}


@app.post("/api/auth/logout")
def logout():
    response = JSONResponse({"success": True})
    clear_session_cookie(response)
    return response


@app.get("/api/auth/session")
def get_session(session: Optional[Session] = Depends(current_session)):
    if session is None:
        raise AuthError("Not authenticated.")
    user = services.users.get_user(session.user_id) or {}
    return {**session.to_public(), "name": user.get("name"), "username": user.get("username")}


# =========================
# Upload / Speech
# =========================
@app.post("/api/upload")
async def upload_file(request: Request, session: Optional[Session] = Depends(current_session)):
    if session is None:
        raise AuthError("Unauthorized")
    filename = request.headers.get("x-vercel-filename")
    if not filename:
        raise HTTPException(status_code=400, detail="Filename is missing")
    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="Request body is missing")
    if len(body) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    content_type = request.headers.get("content-type") or None
    return services.blobs.put(f"{session.user_id}/{filename}", body, content_type=content_type)


@app.post("/api/generate-speech")
def generate_speech(data: SpeechRequest):
    return services.tts.generate_speech(data.text, data.voice, data.speakingRate)


@app.post("/api/preview-speech")
def preview_speech(data: PreviewRequest):
    return services.tts.preview_speech(data.voice)


@app.get("/api/voices")
def voices():
    return list_voices()


# =========================
# Documents
# =========================
@app.get("/api/documents")
def get_documents(session: Optional[Session] = Depends(current_session)):
    return services.documents.list_documents(session)


@app.post("/api/documents")
def save_document(data: DocumentSave, session: Optional[Session] = Depends(current_session)):
    return services.documents.save_document(session, data.model_dump(exclude_unset=True))


@app.get("/api/documents/{doc_id}")
def get_document(doc_id: str, session: Optional[Session] = Depends(current_session)):
    return services.documents.get_document(session, doc_id)


@app.delete("/api/documents/{doc_id}")
def delete_document(doc_id: str, session: Optional[Session] = Depends(current_session)):
    return services.documents.delete_document(session, doc_id)


@app.get("/api/documents/{doc_id}/text")
def document_text(doc_id: str, session: Optional[Session] = Depends(current_session)):
    return services.narration.document_text(session, doc_id)


@app.post("/api/documents/{doc_id}/narrate")
def narrate_document(doc_id: str, data: NarrateRequest, session: Optional[Session] = Depends(current_session)):
    return services.narration.narrate_document(
        session, doc_id, data.voice, speaking_rate=data.speakingRate, text=data.text
    )


@app.get("/api/documents/{doc_id}/highlight")
def document_highlight(doc_id: str, t: float = 0.0, session: Optional[Session] = Depends(current_session)):
    highlight = services.narration.highlight_at(session, doc_id, t)
    return {"highlight": highlight.to_dict() if highlight else None}


# =========================
# AI
# =========================
@app.post("/api/ai/summary")
def ai_summary(data: DocumentText):
    return services.ai.summarize(data.text)


@app.post("/api/ai/glossary")
def ai_glossary(data: DocumentText):
    return services.ai.glossary(data.text)


@app.post("/api/ai/quiz")
def ai_quiz(data: DocumentText):
    return services.ai.quiz(data.text)


@app.post("/api/ai/chat")
def ai_chat(data: ChatRequest):
    return services.ai.chat(data.text, data.question)


@app.post("/api/ai/explain")
def ai_explain(data: ExplainRequest):
    return services.ai.explain(data.text, data.context)


# =========================
# Account
# =========================
@app.post("/api/user/password")
def change_password(data: PasswordChange, session: Optional[Session] = Depends(current_session)):
    return services.users.change_password(session, data.currentPassword, data.newPassword)


@app.post("/api/user/username")
def set_username(data: UsernameRequest, session: Optional[Session] = Depends(current_session)):
    return services.users.set_username(session, data.username)


# =========================
# Admin
# =========================
@app.get("/api/admin/users")
def admin_users(session: Optional[Session] = Depends(current_session)):
    return services.users.list_users(session)


@app.post("/api/admin/users", status_code=201)
def admin_create_user(data: AdminUserCreate, session: Optional[Session] = Depends(current_session)):
    return services.users.create_user(
        session, data.email, name=data.name, password=data.password, send_email=data.sendEmail
    )


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, session: Optional[Session] = Depends(current_session)):
    return services.users.delete_user(session, user_id)


@app.get("/api/admin/documents")
def admin_documents(session: Optional[Session] = Depends(current_session)):
    return services.documents.list_all_documents(session)


def run():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
