# -*- coding: utf-8 -*-
"""
Document AI features over plain text: summary, glossary, quiz, chat, explain.

Gemini (Generative Language REST) is the default backend; AI_PROVIDER=openai
switches to the OpenAI Responses API. Both are called with `requests` and
asked to answer with JSON only.
"""

import logging
from typing import Any, Callable, Dict, List, Literal, Optional

import requests
from pydantic import BaseModel, ValidationError as PydanticValidationError

from readify import config
from readify.errors import ProviderError, ValidationError
from readify.keys import get_gemini_api_key, get_openai_api_key
from readify.utils import extract_json_from_text

logger = logging.getLogger(__name__)

NOT_FOUND_ANSWER = "I'm sorry, I can't find the answer to that in this document."


# =========================
# Output models
# =========================
class SummaryResult(BaseModel):
    summary: str
    keyPoints: List[str] = []


class GlossaryItem(BaseModel):
    term: str
    definition: str


class QuizQuestion(BaseModel):
    question: str
    type: Literal["multiple-choice", "true-false"]
    options: Optional[List[str]] = None
    answer: str
    explanation: str


# =========================
# Prompts
# =========================
def _summary_prompt(text: str) -> str:
    return (
        "You are an expert at reading documents and extracting what matters.\n"
        "Summarize the document below and list its key points.\n"
        "Return ONLY valid JSON. No extra text.\n"
        'Format: {"summary": "...", "keyPoints": ["...", "..."]}\n\n'
        f"Document Text:\n---\n{text}\n---\n"
    )


def _glossary_prompt(text: str) -> str:
    return (
        "You are an expert educator. Identify the key terms, names and concepts a reader\n"
        "must know to understand the document below and define each one briefly,\n"
        "using the document's own meaning.\n"
        "Return ONLY valid JSON (an array). No extra text.\n"
        'Each item must be: {"term": "...", "definition": "..."}\n\n'
        f"Document Text:\n---\n{text}\n---\n"
    )


def _quiz_prompt(text: str) -> str:
    return (
        "You are an expert educator. Your task is to read the following document and create a quiz\n"
        "to test a user's understanding of the material.\n"
        "Generate a mix of multiple-choice and true/false questions. For each question, provide the\n"
        "correct answer and a brief explanation.\n"
        "Return ONLY valid JSON. No extra text.\n"
        'Format: {"quiz": [{"question": "...", "type": "multiple-choice" | "true-false",\n'
        '"options": ["..."], "answer": "...", "explanation": "..."}]}\n\n'
        f"Document Text:\n---\n{text}\n---\n"
    )


def _chat_prompt(text: str, question: str) -> str:
    return (
        "You are a helpful assistant. Your task is to answer questions about the provided document.\n"
        "Base your answers *only* on the content of the text below. If the answer cannot be found\n"
        f'in the text, say "{NOT_FOUND_ANSWER}"\n'
        'Return ONLY valid JSON. Format: {"answer": "..."}\n\n'
        f"Document Text:\n---\n{text}\n---\n\n"
        f"Question:\n{question}\n"
    )


def _explain_prompt(text: str, context: str) -> str:
    return (
        "You are a helpful assistant who is an expert at simplifying complex topics.\n"
        "A user has selected a piece of text and wants an explanation.\n"
        "Provide a clear, concise, and easy-to-understand explanation of the following text.\n"
        "If the user provides surrounding text for context, use it to tailor your explanation.\n"
        'Return ONLY valid JSON. Format: {"explanation": "..."}\n\n'
        f"Text to Explain:\n---\n{text}\n---\n\n"
        f"Surrounding Context (if any):\n---\n{context}\n---\n"
    )


# =========================
# Backends
# =========================
def gemini_generate(prompt: str, model: Optional[str] = None) -> str:
    model = model or config.GEMINI_MODEL
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    headers = {"x-goog-api-key": get_gemini_api_key(), "Content-Type": "application/json"}
    payload = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": 0.2, "maxOutputTokens": 8192, "responseMimeType": "application/json"},
    }
    try:
        r = requests.post(url, headers=headers, json=payload, timeout=config.PROVIDER_TIMEOUT)
    except requests.RequestException as e:
        raise ProviderError(f"Gemini request failed: {e}")
    if r.status_code != 200:
        body = r.text or ""
        raise ProviderError(f"Gemini HTTP {r.status_code}: {body[:500]}", status=r.status_code, body=body)

    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError(f"Gemini returned invalid JSON: {e}", status=r.status_code, body=r.text or "")
    text_out = ""
    cands = data.get("candidates", [])
    if cands and isinstance(cands, list):
        parts = cands[0].get("content", {}).get("parts", [])
        if parts and isinstance(parts, list):
            text_out = "".join([(p.get("text") or "") for p in parts])
    return text_out


def openai_generate(prompt: str, model: Optional[str] = None) -> str:
    url = "https://api.openai.com/v1/responses"
    headers = {"Authorization": f"Bearer {get_openai_api_key()}", "Content-Type": "application/json"}
    body = {
        "model": model or config.OPENAI_MODEL,
        "input": prompt,
        "temperature": 0.2,
        "max_output_tokens": 8192,
    }
    try:
        r = requests.post(url, headers=headers, json=body, timeout=config.PROVIDER_TIMEOUT)
    except requests.RequestException as e:
        raise ProviderError(f"OpenAI request failed: {e}")
    if r.status_code != 200:
        raise ProviderError(f"OpenAI HTTP {r.status_code}: {r.text[:500]}", status=r.status_code, body=r.text or "")

    try:
        resp_json = r.json()
    except ValueError as e:
        raise ProviderError(f"OpenAI returned invalid JSON: {e}", status=r.status_code, body=r.text or "")
    ot = resp_json.get("output_text")
    if isinstance(ot, str) and ot.strip():
        return ot
    texts = []
    for item in resp_json.get("output", []) or []:
        for c in item.get("content", []) or []:
            if isinstance(c.get("text"), str):
                texts.append(c["text"])
    return "".join(texts)


# =========================
# AI Service
# =========================
class AIService:
    def __init__(self, provider: Optional[str] = None, generate_fn: Optional[Callable[[str], str]] = None):
        self.provider = (provider or config.AI_PROVIDER).lower()
        if generate_fn is not None:
            self._generate = generate_fn
        elif self.provider == "openai":
            self._generate = openai_generate
        elif self.provider == "gemini":
            self._generate = gemini_generate
        else:
            raise ValidationError(f"Unknown AI provider: {self.provider}. Use gemini or openai.")

    def _document(self, text: str) -> str:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Document text cannot be empty.")
        if len(text) > config.AI_MAX_DOCUMENT_CHARS:
            logger.warning(f"[AI] document truncated from {len(text)} to {config.AI_MAX_DOCUMENT_CHARS} chars")
            text = text[: config.AI_MAX_DOCUMENT_CHARS]
        return text

    def _ask_json(self, prompt: str, task: str) -> Any:
        logger.info(f"[AI] {self.provider} {task} ({len(prompt)} chars)")
        text_out = self._generate(prompt)
        obj = extract_json_from_text(text_out)
        if obj is None:
            logger.error(f"[AI] {task}: unparseable output: {(text_out or '')[:300]!r}")
            raise ProviderError(f"{task}: model did not return valid JSON.")
        return obj

    def summarize(self, text: str) -> Dict[str, Any]:
        obj = self._ask_json(_summary_prompt(self._document(text)), "summary")
        try:
            return SummaryResult.model_validate(obj).model_dump()
        except PydanticValidationError as e:
            raise ProviderError(f"summary: unexpected output shape: {e}")

    def glossary(self, text: str) -> Dict[str, Any]:
        obj = self._ask_json(_glossary_prompt(self._document(text)), "glossary")
        if isinstance(obj, dict):
            obj = obj.get("glossary", [])
        if not isinstance(obj, list):
            raise ProviderError("glossary: unexpected output shape.")
        items = []
        for it in obj:
            if not isinstance(it, dict):
                continue
            term = str(it.get("term") or "").strip()
            definition = str(it.get("definition") or "").strip()
            if term and definition:
                items.append(GlossaryItem(term=term, definition=definition).model_dump())
        return {"glossary": items}

    def quiz(self, text: str) -> Dict[str, Any]:
        obj = self._ask_json(_quiz_prompt(self._document(text)), "quiz")
        if isinstance(obj, list):
            obj = {"quiz": obj}
        questions = []
        for it in obj.get("quiz", []) if isinstance(obj, dict) else []:
            try:
                q = QuizQuestion.model_validate(it)
            except PydanticValidationError as e:
                logger.warning(f"[AI] quiz: dropped malformed question: {e.errors()[:1]}")
                continue
            questions.append(q.model_dump(exclude_none=True))
        if not questions:
            raise ProviderError("quiz: model returned no usable questions.")
        return {"quiz": questions}

    def chat(self, text: str, question: str) -> Dict[str, str]:
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question cannot be empty.")
        obj = self._ask_json(_chat_prompt(self._document(text), question), "chat")
        answer = obj.get("answer") if isinstance(obj, dict) else None
        if not isinstance(answer, str) or not answer.strip():
            raise ProviderError("chat: model returned no answer.")
        return {"answer": answer.strip()}

    def explain(self, text: str, context: Optional[str] = None) -> Dict[str, str]:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Text to explain cannot be empty.")
        obj = self._ask_json(_explain_prompt(text, (context or "").strip()), "explain")
        explanation = obj.get("explanation") if isinstance(obj, dict) else None
        if not isinstance(explanation, str) or not explanation.strip():
            raise ProviderError("explain: model returned no explanation.")
        return {"explanation": explanation.strip()}
