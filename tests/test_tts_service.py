import base64
import io
import wave
from types import SimpleNamespace

import pytest

from readify.errors import ProviderError, ValidationError
from readify.services import tts_service
from readify.services.tts_service import TTSService, resolve_voice
from readify.utils import parse_data_uri


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b"", text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.reason = "OK" if self.ok else "Error"
        self._payload = payload
        self.content = content
        self.text = text

    def json(self):
        return self._payload


class FakeOpenAI:
    def __init__(self, words=None, duration=None):
        self.speech_calls = []
        self.words = words or []
        self.duration = duration
        self.audio = SimpleNamespace(
            speech=SimpleNamespace(create=self._speech),
            transcriptions=SimpleNamespace(create=self._transcribe),
        )

    def _speech(self, **kwargs):
        self.speech_calls.append(kwargs)
        return SimpleNamespace(content=f"MP3[{len(kwargs['input'])}]".encode())

    def _transcribe(self, **kwargs):
        data = {"words": self.words, "duration": self.duration}
        return SimpleNamespace(model_dump=lambda: data)


@pytest.fixture
def tts():
    return TTSService()


def test_resolve_voice():
    assert resolve_voice("openai/alloy") == ("openai", "alloy")
    assert resolve_voice("Nova") == ("openai", "nova")
    assert resolve_voice("google/en-US-News-M") == ("google", "en-US-News-M")
    for bad in ("", "robot", "acme/bob", "openai/zeus"):
        with pytest.raises(ValidationError):
            resolve_voice(bad)


def test_input_validation(tts):
    with pytest.raises(ValidationError):
        tts.generate_speech("   ", "openai/alloy")
    with pytest.raises(ValidationError):
        tts.generate_speech("Hello", "openai/alloy", speaking_rate=3.5)
    with pytest.raises(ValidationError):
        tts.generate_speech("Hello", "openai/alloy", speaking_rate=0.1)


def test_openai_chunks_and_data_uri(tts, monkeypatch):
    fake = FakeOpenAI()
    tts._openai_client = fake
    monkeypatch.setattr(tts_service.config, "OPENAI_CHUNK_CHARS", 20)

    result = tts.generate_speech("First sentence here. Second one now.", "alloy", speaking_rate=1.25)

    assert [c["input"] for c in fake.speech_calls] == ["First sentence here.", " Second one now."]
    assert fake.speech_calls[0]["speed"] == 1.25
    mime, audio = parse_data_uri(result["audioDataUri"])
    assert mime == "audio/mp3"
    assert audio == b"MP3[20]MP3[16]"
    assert "speechMarks" not in result


def test_openai_with_timings_aligns_words(tts):
    tts._openai_client = FakeOpenAI(
        words=[{"word": "Hello", "start": 0.0, "end": 0.4}, {"word": "world", "start": 0.6, "end": 1.0}],
        duration=1.2,
    )
    frags = tts.synthesize_with_timings("Hello world.", "openai/alloy")

    assert len(frags) == 1
    words = [m for m in frags[0].marks if m.type == "word"]
    assert [(m.start, m.time) for m in words] == [(0, 0.0), (6, 600.0)]
    assert frags[0].duration_ms == 1200.0


def test_amazon_base64_chunks_per_chunk_marks(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com/")
    posted = {}

    def fake_post(url, json=None, timeout=None, **kwargs):
        posted.update(url=url, body=json)
        return FakeResponse(payload={
            "audioChunks": [base64.b64encode(b"AAA").decode(), base64.b64encode(b"BBB").decode()],
            "speechMarks": [
                [{"type": "word", "start": 0, "end": 5, "time": 0, "value": "Hello"}],
                [{"type": "word", "start": 6, "end": 11, "time": 100, "value": "world"}],
            ],
            "chunkDurations": [500, 400],
        })

    monkeypatch.setattr(tts_service.requests, "post", fake_post)
    result = tts.generate_speech("Hello world", "amazon/Joanna")

    assert posted["url"] == "https://polly.example.com/tts"
    assert posted["body"] == {"text": "Hello world", "voiceId": "Joanna", "speakingRate": 1.0}
    assert parse_data_uri(result["audioDataUri"])[1] == b"AAABBB"
    assert [(m["value"], m["time"]) for m in result["speechMarks"]] == [("Hello", 0.0), ("world", 600.0)]
    assert result["durationMs"] == 900.0


def test_amazon_fetches_url_chunks(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={
        "audioChunks": ["https://cdn.example.com/1.mp3"],
        "speechMarks": [{"type": "word", "start": 0, "end": 2, "time": 0, "value": "Hi"}],
    }))
    monkeypatch.setattr(tts_service.requests, "get", lambda url, **k: FakeResponse(content=b"REMOTE"))

    frags = tts.synthesize("Hi", "amazon/Matthew")
    assert frags[0].audio == b"REMOTE"
    assert frags[0].marks[0].value == "Hi"


def test_amazon_media_fetch_failure_keeps_status(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={
        "audioChunks": ["https://cdn.example.com/1.mp3"],
    }))
    monkeypatch.setattr(tts_service.requests, "get", lambda url, **k: FakeResponse(403, text="denied"))

    with pytest.raises(ProviderError) as exc:
        tts.synthesize("Hi", "amazon/Matthew")
    assert exc.value.status == 403
    assert exc.value.body == "denied"


def test_amazon_error_and_missing_audio(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(500, text="lambda blew up"))
    with pytest.raises(ProviderError) as exc:
        tts.synthesize("Hi", "amazon/Amy")
    assert exc.value.status == 500
    assert "lambda blew up" in exc.value.message

    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={"audioChunks": []}))
    with pytest.raises(ProviderError):
        tts.synthesize("Hi", "amazon/Amy")


def test_amazon_byte_offsets_become_char_offsets(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com")
    text = "Café au lait"
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={
        "audioChunks": [base64.b64encode(b"A").decode()],
        "speechMarks": [{"type": "word", "start": 6, "end": 8, "time": 300, "value": "au"}],
    }))
    mark = tts.synthesize(text, "amazon/Joanna")[0].marks[0]
    assert text[mark.start:mark.end] == "au"


def test_gemini_pcm_is_wrapped_in_wav(tts, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "k")
    pcm = b"\x00\x01" * 240
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={
        "candidates": [{"content": {"parts": [{"inlineData": {
            "mimeType": "audio/L16;codec=pcm;rate=24000",
            "data": base64.b64encode(pcm).decode(),
        }}]}}],
    }))

    result = tts.generate_speech("Hello", "gemini/Kore")
    mime, audio = parse_data_uri(result["audioDataUri"])
    assert mime == "audio/wav"
    with wave.open(io.BytesIO(audio), "rb") as w:
        assert w.getframerate() == 24000
        assert w.getnframes() == 240


def test_gemini_without_media(tts, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "k")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={"candidates": []}))
    with pytest.raises(ProviderError):
        tts.synthesize("Hello", "gemini/Puck")


def test_google_ssml_marks_and_timepoints(tts):
    seen = {}

    class FakeGoogle:
        def synthesize_speech(self, request):
            seen["ssml"] = request.input.ssml
            seen["voice"] = request.voice.name
            seen["language"] = request.voice.language_code
            return SimpleNamespace(
                audio_content=b"GOOGLE",
                timepoints=[
                    SimpleNamespace(mark_name="s0", time_seconds=0.0),
                    SimpleNamespace(mark_name="w0", time_seconds=0.0),
                    SimpleNamespace(mark_name="w1", time_seconds=0.6),
                ],
            )

    tts._tts_client = FakeGoogle()
    frags = tts.synthesize("Hello <world>.", "google/en-GB-News-G")

    assert seen["voice"] == "en-GB-News-G"
    assert seen["language"] == "en-GB"
    assert '<mark name="s0"/><mark name="w0"/>Hello <mark name="w1"/>&lt;world&gt;.' in seen["ssml"]
    assert [(m.type, m.start, m.end, m.time) for m in frags[0].marks] == [
        ("sentence", 0, 14, 0.0),
        ("word", 0, 5, 0.0),
        ("word", 6, 14, 600.0),
    ]


def test_preview_uses_fixed_sentence(tts):
    fake = FakeOpenAI()
    tts._openai_client = fake
    out = tts.preview_speech("openai/echo")
    assert fake.speech_calls[0]["input"] == "Hello! This is a preview of my voice."
    assert out["audioDataUri"].startswith("data:audio/mp3;base64,")


def test_google_requests_stay_under_the_ssml_byte_limit(tts):
    sent = []

    class FakeGoogle:
        def synthesize_speech(self, request):
            sent.append(request.input.ssml)
            return SimpleNamespace(
                audio_content=b"G",
                timepoints=[SimpleNamespace(mark_name="w0", time_seconds=0.0)],
            )

    tts._tts_client = FakeGoogle()
    text = "The quick brown fox jumps over the lazy dog. " * 100
    frags = tts.synthesize(text, "google/en-GB-News-G")

    assert len(sent) > 1
    assert all(len(ssml.encode("utf-8")) <= 5000 for ssml in sent)
    assert sum(ssml.count('<mark name="w') for ssml in sent) == len(text.split())
    for frag in frags:
        mark = frag.marks[0]
        assert text[frag.char_offset + mark.start:frag.char_offset + mark.end] == mark.value


def test_provider_garbage_becomes_provider_error(tts, monkeypatch):
    monkeypatch.setenv("AMAZON_POLLY_API_URL", "https://polly.example.com")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: FakeResponse(payload={"audioChunks": ["abc"]}))
    with pytest.raises(ProviderError):
        tts.synthesize("Hi", "amazon/Amy")

    class NotJson(FakeResponse):
        def json(self):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

    monkeypatch.setenv("GEMINI_API_KEY", "k")
    monkeypatch.setattr(tts_service.requests, "post", lambda *a, **k: NotJson(text="<html>oops</html>"))
    with pytest.raises(ProviderError) as exc:
        tts.synthesize("Hello", "gemini/Kore")
    assert exc.value.status == 200
    assert exc.value.body == "<html>oops</html>"
