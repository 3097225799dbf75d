# -*- coding: utf-8 -*-
"""
API Key Management
"""

import os

from readify.errors import ProviderError


# =========================
# KEY MANAGEMENT
# =========================
def get_gemini_api_key() -> str:
    for k in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "GOOGLE_GENAI_API_KEY"):
        v = (os.getenv(k) or "").strip()
        if v:
            return v
    raise ProviderError("Gemini API key not found. Set GEMINI_API_KEY.")


def get_openai_api_key() -> str:
    v = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not v:
        raise ProviderError("OpenAI API key not found. Set OPENAI_API_KEY.")
    return v


def get_resend_api_key() -> str:
    v = (os.getenv("RESEND_API_KEY") or "").strip()
    if not v:
        raise ProviderError("Resend API key not found. Set RESEND_API_KEY.")
    return v


def get_polly_api_url() -> str:
    from readify import config

    v = (os.getenv("AMAZON_POLLY_API_URL") or config.AMAZON_POLLY_API_URL or "").strip()
    if not v:
        raise ProviderError(
            "Amazon Polly API URL is not configured. Please set the AMAZON_POLLY_API_URL environment variable."
        )
    return v
