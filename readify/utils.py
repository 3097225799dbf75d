# -*- coding: utf-8 -*-
"""
Utility functions: data URIs, text chunking and JSON extraction
"""

import base64
import json
import re
from typing import Any, List, Optional, Tuple

from readify.errors import ValidationError


# =========================
# Data URIs
# =========================
DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<payload>.*)$", re.DOTALL)


def to_data_uri(audio: bytes, mime_type: str = "audio/mp3") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(audio).decode('ascii')}"


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    """Returns (mime_type, raw bytes) for a base64 data URI."""
    m = DATA_URI_RE.match((uri or "").strip())
    if not m:
        raise ValidationError("Not a base64 data URI.")
    try:
        return m.group("mime"), base64.b64decode(m.group("payload"))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid base64 payload: {e}")


# =========================
# Text chunking
# =========================
SENTENCE_ENDERS = (".", "?", "!", "\n")
SENTENCE_RE = re.compile(r"[^.!?\n]+[.!?]*|\n+")
WORD_RE = re.compile(r"\S+")


def split_text(text: str, max_length: int) -> List[Tuple[int, str]]:
    """
    Splits text into chunks of at most max_length chars, cutting after the last
    sentence ender inside the window, else after the last space.
    Returns (char_offset, chunk) pairs; blank chunks are dropped.
    """
    chunks: List[Tuple[int, str]] = []
    pos = 0
    n = len(text or "")
    while pos < n:
        if n - pos <= max_length:
            chunks.append((pos, text[pos:]))
            break
        window = text[pos:pos + max_length]
        cut = max(window.rfind(p) for p in SENTENCE_ENDERS)
        if cut == -1:
            cut = window.rfind(" ")
        if cut != -1:
            window = window[:cut + 1]
        chunks.append((pos, window))
        pos += len(window)
    return [(off, c) for off, c in chunks if c.strip()]


def iter_sentences(text: str) -> List[Tuple[int, int]]:
    """(start, end_exclusive) spans of sentences, whitespace-trimmed."""
    spans = []
    for m in SENTENCE_RE.finditer(text or ""):
        raw = m.group(0)
        if not raw.strip():
            continue
        lead = len(raw) - len(raw.lstrip())
        trail = len(raw) - len(raw.rstrip())
        spans.append((m.start() + lead, m.end() - trail))
    return spans


def iter_words(text: str) -> List[Tuple[int, int]]:
    return [(m.start(), m.end()) for m in WORD_RE.finditer(text or "")]


def escape_xml(s: str) -> str:
    return (
        (s or "")
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


# =========================
# Model output parsing
# =========================
def extract_json_from_text(text: str) -> Optional[Any]:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    m = re.search(r"(\[.*\]|\{.*\})", text, flags=re.DOTALL)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except ValueError:
        return None
