# -*- coding: utf-8 -*-
"""
Readify API server: PDF reading, narration with word/sentence highlighting
and document AI tools.

Environment (see readify/config.py):
  export JWT_SECRET="..."           # session signing key
  export ADMIN_EMAIL="..."          # administrator bootstrap account
  export OPENAI_API_KEY="..."       # OpenAI voices + word timings
  export GEMINI_API_KEY="..."       # AI features, Gemini voices
  export AMAZON_POLLY_API_URL="..." # Polly Lambda endpoint
  export GOOGLE_APPLICATION_CREDENTIALS="..."  # Google Cloud TTS

Run:
  python main.py
"""

from dotenv import load_dotenv
load_dotenv()

from readify.api_server import run


if __name__ == "__main__":
    run()
