# -*- coding: utf-8 -*-
"""
Settings and configuration constants
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# =========================
# SESSION / AUTH
# =========================
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-for-development")
JWT_ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"
SESSION_TTL_SECONDS = 24 * 60 * 60
SESSION_COOKIE_SECURE = (os.getenv("SESSION_COOKIE_SECURE", "0") or "0").strip().lower() in ("1", "true", "yes")
ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL", "") or "").strip().lower()
PASSWORD_HASH_METHOD = "pbkdf2:sha256"

USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 20

# =========================
# TTS
# =========================
OPENAI_TTS_MODEL = os.getenv("OPENAI_TTS_MODEL", "tts-1")
OPENAI_TRANSCRIBE_MODEL = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
GEMINI_TTS_MODEL = os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts")
AMAZON_POLLY_API_URL = (os.getenv("AMAZON_POLLY_API_URL", "") or "").strip()
GOOGLE_TTS_LANGUAGE = os.getenv("GOOGLE_TTS_LANGUAGE", "en-US")

OPENAI_CHUNK_CHARS = 4000
GOOGLE_CHUNK_CHARS = 1000
GOOGLE_SSML_MAX_BYTES = 5000  # Google rejects longer synthesis input
MIN_SPEAKING_RATE = 0.25
MAX_SPEAKING_RATE = 3.0
PLAYBACK_RATES = (0.75, 1.0, 1.25, 1.5, 2.0)
SKIP_SECONDS = 10.0
PREVIEW_TEXT = "Hello! This is a preview of my voice."
DEFAULT_VOICE = "openai/alloy"

# Heuristic highlight window: ms of audio per source character
WORD_MS_PER_CHAR = 80.0
SENTENCE_MS_PER_CHAR = 80.0

# Gemini PCM output
GEMINI_PCM_RATE = 24000
GEMINI_PCM_CHANNELS = 1
GEMINI_PCM_SAMPLE_WIDTH = 2

# =========================
# AI FEATURES
# =========================
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
AI_PROVIDER = (os.getenv("AI_PROVIDER", "gemini") or "gemini").strip().lower()
AI_MAX_DOCUMENT_CHARS = int(os.getenv("AI_MAX_DOCUMENT_CHARS", "120000") or "120000")
PROVIDER_TIMEOUT = (20, 240)

# =========================
# EMAIL
# =========================
RESEND_API_URL = "https://api.resend.com/emails"
FROM_EMAIL = os.getenv("FROM_EMAIL", "onboarding@resend.dev")
APP_BASE_URL = (os.getenv("APP_BASE_URL", "http://localhost:8000") or "").rstrip("/")

# =========================
# STORAGE
# =========================
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("READIFY_DATA_DIR", str(BASE_DIR / "readify_data")))
DB_PATH = Path(os.getenv("READIFY_DB_PATH", str(DATA_DIR / "readify.db")))
BLOB_DIR = Path(os.getenv("READIFY_BLOB_DIR", str(DATA_DIR / "blobs")))
BLOB_URL_PREFIX = "/blobs"
PUBLIC_URL = (os.getenv("READIFY_PUBLIC_URL", "") or "").rstrip("/")
MAX_UPLOAD_BYTES = 50 * 1024 * 1024

for p in [DATA_DIR, BLOB_DIR]:
    p.mkdir(parents=True, exist_ok=True)
