# -*- coding: utf-8 -*-
import base64
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests
from openai import APIStatusError, OpenAI, OpenAIError

from readify import config
from readify.audio_assembly import MP3, WAV, Fragment, merge_fragments, pcm_to_wav
from readify.errors import ProviderError, ValidationError
from readify.keys import get_gemini_api_key, get_openai_api_key, get_polly_api_url
from readify.timing import (
    SENTENCE,
    WORD,
    SpeechMark,
    align_word_timings,
    marks_from_dicts,
    marks_to_dicts,
    sentence_marks_from_words,
)
from readify.utils import escape_xml, iter_sentences, iter_words, split_text, to_data_uri

logger = logging.getLogger(__name__)

# =============================================================================
# Voice catalog
# =============================================================================
OPENAI_VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}
PROVIDERS = ("openai", "google", "amazon", "gemini")

AVAILABLE_VOICES: List[Dict[str, str]] = [
    {"name": "openai/alloy", "displayName": "Alloy", "gender": "Neutral", "provider": "openai"},
    {"name": "openai/echo", "displayName": "Echo", "gender": "Male", "provider": "openai"},
    {"name": "openai/fable", "displayName": "Fable", "gender": "Male", "provider": "openai"},
    {"name": "openai/onyx", "displayName": "Onyx", "gender": "Male", "provider": "openai"},
    {"name": "openai/nova", "displayName": "Nova", "gender": "Female", "provider": "openai"},
    {"name": "openai/shimmer", "displayName": "Shimmer", "gender": "Female", "provider": "openai"},
    {"name": "google/en-US-News-M", "displayName": "News-M (US)", "gender": "Male", "provider": "google"},
    {"name": "google/en-US-News-L", "displayName": "News-L (US)", "gender": "Female", "provider": "google"},
    {"name": "google/en-GB-News-G", "displayName": "News-G (UK)", "gender": "Female", "provider": "google"},
    {"name": "google/en-GB-Standard-A", "displayName": "Standard-A (UK)", "gender": "Female", "provider": "google"},
    {"name": "google/en-AU-Polyglot-1", "displayName": "Polyglot-1 (AU)", "gender": "Male", "provider": "google"},
    {"name": "amazon/Matthew", "displayName": "Matthew (US)", "gender": "Male", "provider": "amazon"},
    {"name": "amazon/Joanna", "displayName": "Joanna (US)", "gender": "Female", "provider": "amazon"},
    {"name": "amazon/Amy", "displayName": "Amy (UK)", "gender": "Female", "provider": "amazon"},
    {"name": "amazon/Brian", "displayName": "Brian (UK)", "gender": "Male", "provider": "amazon"},
    {"name": "amazon/Russell", "displayName": "Russell (AU)", "gender": "Male", "provider": "amazon"},
    {"name": "gemini/Kore", "displayName": "Kore", "gender": "Female", "provider": "gemini"},
    {"name": "gemini/Puck", "displayName": "Puck", "gender": "Male", "provider": "gemini"},
]


def list_voices() -> List[Dict[str, str]]:
    return [dict(v) for v in AVAILABLE_VOICES]


def resolve_voice(voice: Optional[str]) -> Tuple[str, str]:
    """'openai/alloy' -> ('openai', 'alloy'). A bare OpenAI voice name is accepted."""
    voice = (voice or "").strip()
    if not voice:
        raise ValidationError("A voice is required.")
    if "/" not in voice:
        if voice.lower() in OPENAI_VOICES:
            return "openai", voice.lower()
        raise ValidationError(f"Unknown voice: {voice}")
    provider, name = voice.split("/", 1)
    provider = provider.strip().lower()
    name = name.strip()
    if provider not in PROVIDERS or not name:
        raise ValidationError(f"Unsupported voice provider: {provider}")
    if provider == "openai" and name.lower() not in OPENAI_VOICES:
        raise ValidationError(f"Unknown OpenAI voice: {name}")
    return provider, name


def check_speaking_rate(rate: Optional[float]) -> float:
    if rate is None:
        return 1.0
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        raise ValidationError("speakingRate must be a number.")
    if not (config.MIN_SPEAKING_RATE <= rate <= config.MAX_SPEAKING_RATE):
        raise ValidationError(
            f"speakingRate must be between {config.MIN_SPEAKING_RATE} and {config.MAX_SPEAKING_RATE}."
        )
    return rate


def fetch_media(url: str) -> bytes:
    """Downloads a provider media reference. Non-2xx keeps status and body."""
    try:
        r = requests.get(url, timeout=config.PROVIDER_TIMEOUT)
    except requests.RequestException as e:
        raise ProviderError(f"Failed to fetch audio from {url}: {e}")
    if not r.ok:
        body = (r.text or "")[:2000]
        raise ProviderError(
            f"Failed to fetch audio: {r.reason} (Status: {r.status_code}) - {body}",
            status=r.status_code,
            body=body,
        )
    if not r.content:
        raise ProviderError(f"Empty audio returned from {url}")
    return r.content


def _byte_to_char_offsets(text: str) -> Dict[int, int]:
    """UTF-8 byte offset -> character offset, for providers that count bytes."""
    table = {}
    b = 0
    for i, ch in enumerate(text):
        table[b] = i
        b += len(ch.encode("utf-8"))
    table[b] = len(text)
    return table


# =============================================================================
# TTS Service
# =============================================================================

class TTSService:
    def __init__(self):
        self._tts_client = None
        self._openai_client = None

    def _get_client(self):
        if self._tts_client is not None:
            return self._tts_client
        from google.auth.exceptions import DefaultCredentialsError
        from google.cloud import texttospeech_v1beta1 as texttospeech

        try:
            self._tts_client = texttospeech.TextToSpeechClient()
        except DefaultCredentialsError as e:
            raise ProviderError(f"Google TTS credentials not found: {e}")
        return self._tts_client

    def _get_openai_client(self):
        if self._openai_client:
            return self._openai_client
        self._openai_client = OpenAI(api_key=get_openai_api_key())
        return self._openai_client

    # --- Entry points ---

    def synthesize(self, text: str, voice: str, speaking_rate: Optional[float] = 1.0, with_timings: bool = False) -> List[Fragment]:
        """
        Returns audio fragments in play order, each with marks relative to
        itself. with_timings asks providers without native marks to derive them.
        """
        if not text or not text.strip():
            raise ValidationError("Input text cannot be empty.")
        provider, name = resolve_voice(voice)
        rate = check_speaking_rate(speaking_rate)

        logger.info(f"[TTS] provider={provider} voice={name} rate={rate} chars={len(text)}")
        if provider == "openai":
            fragments = self._synth_openai(text, name, rate, with_timings=with_timings)
        elif provider == "google":
            fragments = self._synth_google(text, name, rate)
        elif provider == "amazon":
            fragments = self._synth_amazon(text, name, rate)
        else:
            fragments = self._synth_gemini(text, name, rate)

        if not fragments:
            raise ProviderError("Audio generation resulted in no audio.")
        return fragments

    def synthesize_with_timings(self, text: str, voice: str, speaking_rate: Optional[float] = 1.0) -> List[Fragment]:
        return self.synthesize(text, voice, speaking_rate, with_timings=True)

    def generate_speech(self, text: str, voice: str, speaking_rate: Optional[float] = 1.0, with_timings: bool = False) -> Dict[str, Any]:
        merged = merge_fragments(self.synthesize(text, voice, speaking_rate, with_timings=with_timings))
        if not merged.audio:
            raise ProviderError("Provider returned empty audio.")
        out: Dict[str, Any] = {
            "audioDataUri": to_data_uri(merged.audio, merged.mime_type),
            "mimeType": merged.mime_type,
        }
        if merged.marks:
            out["speechMarks"] = marks_to_dicts(merged.marks)
            out["durationMs"] = merged.duration_ms
        return out

    def preview_speech(self, voice: str) -> Dict[str, str]:
        result = self.generate_speech(config.PREVIEW_TEXT, voice)
        return {"audioDataUri": result["audioDataUri"]}

    # --- OpenAI ---

    def _synth_openai(self, text: str, voice: str, rate: float, with_timings: bool = False) -> List[Fragment]:
        client = self._get_openai_client()
        chunks = split_text(text, config.OPENAI_CHUNK_CHARS)
        logger.info(f"[TTS] OpenAI: {len(chunks)} text chunks")

        fragments = []
        for idx, (offset, chunk) in enumerate(chunks):
            try:
                resp = client.audio.speech.create(
                    model=config.OPENAI_TTS_MODEL,
                    voice=voice,
                    input=chunk,
                    speed=rate,
                    response_format="mp3",
                )
            except APIStatusError as e:
                body = getattr(e.response, "text", "") or str(e)
                raise ProviderError(f"OpenAI speech error ({e.status_code}): {body[:500]}", status=e.status_code, body=body)
            except OpenAIError as e:
                raise ProviderError(f"OpenAI speech error: {e}")

            audio = resp.content
            if not audio:
                raise ProviderError(f"OpenAI failed to return audio for chunk {idx}.")

            frag = Fragment(audio=audio, char_offset=offset, mime_type=MP3)
            if with_timings:
                words, duration_s = self._transcribe_words(audio, idx)
                word_marks = align_word_timings(chunk, words)
                frag.marks = sentence_marks_from_words(chunk, word_marks) + word_marks
                frag.duration_ms = duration_s * 1000.0 if duration_s else None
            fragments.append(frag)
        return fragments

    def _transcribe_words(self, audio: bytes, idx: int) -> Tuple[List[Dict[str, Any]], Optional[float]]:
        client = self._get_openai_client()
        try:
            resp = client.audio.transcriptions.create(
                model=config.OPENAI_TRANSCRIBE_MODEL,
                file=(f"chunk_{idx}.mp3", audio),
                response_format="verbose_json",
                timestamp_granularities=["word"],
            )
        except APIStatusError as e:
            body = getattr(e.response, "text", "") or str(e)
            raise ProviderError(f"OpenAI transcription error ({e.status_code}): {body[:500]}", status=e.status_code, body=body)
        except OpenAIError as e:
            raise ProviderError(f"OpenAI transcription error: {e}")

        data = resp.model_dump() if hasattr(resp, "model_dump") else dict(resp)
        words = data.get("words") or []
        if not words:
            raise ProviderError("Word timing information was not returned from the API.")
        duration = data.get("duration")
        return words, float(duration) if duration is not None else None

    # --- Google Cloud TTS ---

    def _build_ssml(self, chunk: str) -> Tuple[str, Dict[str, SpeechMark]]:
        """
        SSML with <mark name="sN"/> before each sentence and <mark name="wN"/>
        before each word. Returns the SSML and mark name -> untimed mark.
        """
        events: List[Tuple[int, int, str, int, int]] = []
        for i, (s, e) in enumerate(iter_sentences(chunk)):
            events.append((s, 0, f"s{i}", s, e))
        for i, (s, e) in enumerate(iter_words(chunk)):
            events.append((s, 1, f"w{i}", s, e))
        events.sort()

        lookup: Dict[str, SpeechMark] = {}
        parts = []
        pos = 0
        for at, _, name, s, e in events:
            parts.append(escape_xml(chunk[pos:at]))
            parts.append(f'<mark name="{name}"/>')
            pos = at
            lookup[name] = SpeechMark(
                type=SENTENCE if name.startswith("s") else WORD,
                start=s,
                end=e,
                time=0.0,
                value=chunk[s:e],
            )
        parts.append(escape_xml(chunk[pos:]))
        return f"<speak>{''.join(parts)}</speak>", lookup

    def _google_chunks(self, text: str) -> List[Tuple[int, str, Dict[str, SpeechMark]]]:
        """
        (char_offset, ssml, lookup) per request. Marks inflate the SSML well past
        the raw text, so chunks whose SSML is over the byte limit are halved.
        """
        out = []
        pending = split_text(text, config.GOOGLE_CHUNK_CHARS)
        while pending:
            offset, chunk = pending.pop(0)
            ssml, lookup = self._build_ssml(chunk)
            if len(ssml.encode("utf-8")) <= config.GOOGLE_SSML_MAX_BYTES or len(chunk) < 2:
                out.append((offset, ssml, lookup))
                continue
            halves = split_text(chunk, len(chunk) // 2)
            pending[0:0] = [(offset + off, part) for off, part in halves]
        logger.info(f"[TTS] Google: {len(out)} SSML request(s) for {len(text)} chars")
        return out

    def _synth_google(self, text: str, voice_name: str, rate: float) -> List[Fragment]:
        from google.api_core.exceptions import GoogleAPICallError
        from google.cloud import texttospeech_v1beta1 as texttospeech

        client = self._get_client()
        language_code = "-".join(voice_name.split("-")[:2]) or config.GOOGLE_TTS_LANGUAGE
        voice = texttospeech.VoiceSelectionParams(language_code=language_code, name=voice_name)
        audio_config = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding.MP3,
            speaking_rate=rate,
        )

        fragments = []
        for offset, ssml, lookup in self._google_chunks(text):
            req = texttospeech.SynthesizeSpeechRequest(
                input=texttospeech.SynthesisInput(ssml=ssml),
                voice=voice,
                audio_config=audio_config,
                enable_time_pointing=[texttospeech.SynthesizeSpeechRequest.TimepointType.SSML_MARK],
            )
            try:
                resp = client.synthesize_speech(request=req)
            except GoogleAPICallError as e:
                raise ProviderError(f"Google TTS error: {e}")

            if not resp.audio_content:
                raise ProviderError("No audio returned from Google TTS.")

            marks = []
            for tp in resp.timepoints or []:
                base = lookup.get(tp.mark_name)
                if base is None:
                    continue
                marks.append(base.shifted(time_offset=float(tp.time_seconds) * 1000.0))
            fragments.append(Fragment(audio=resp.audio_content, marks=marks, char_offset=offset, mime_type=MP3))
        return fragments

    # --- Amazon Polly (HTTP Lambda) ---

    def _synth_amazon(self, text: str, voice: str, rate: float) -> List[Fragment]:
        polly_url = f"{get_polly_api_url().rstrip('/')}/tts"
        try:
            r = requests.post(
                polly_url,
                json={"text": text, "voiceId": voice, "speakingRate": rate},
                timeout=config.PROVIDER_TIMEOUT,
            )
        except requests.RequestException as e:
            raise ProviderError(f"Polly API request failed: {e}")

        if not r.ok:
            body = r.text or ""
            logger.error(f"[TTS] Amazon Polly Lambda Error: {body[:2000]}")
            raise ProviderError(f"Polly API Error ({r.status_code}): {body}", status=r.status_code, body=body)

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderError(f"Polly API returned invalid JSON: {e}", status=r.status_code, body=r.text or "")

        chunks = data.get("audioChunks")
        if not chunks or not isinstance(chunks, list):
            raise ProviderError("Amazon Polly response did not include audio data in the expected format.")

        audio_parts = []
        for chunk in chunks:
            chunk = str(chunk or "")
            if re.match(r"^https?://", chunk):
                audio_parts.append(fetch_media(chunk))
            else:
                if chunk.startswith("data:"):
                    chunk = chunk.split(",", 1)[-1]
                try:
                    audio_parts.append(base64.b64decode(chunk))
                except ValueError as e:
                    raise ProviderError(f"Amazon Polly returned invalid base64 audio: {e}")

        byte_map = _byte_to_char_offsets(text)

        def _to_chars(items) -> List[SpeechMark]:
            out = []
            for m in marks_from_dicts(items):
                s = byte_map.get(m.start, m.start)
                e = byte_map.get(m.end, m.end)
                out.append(SpeechMark(m.type, s, e, m.time, m.value, m.duration))
            return out

        raw_marks = data.get("speechMarks") or []
        durations = data.get("chunkDurations") or []
        per_chunk = (
            isinstance(raw_marks, list)
            and len(raw_marks) == len(audio_parts)
            and all(isinstance(x, list) for x in raw_marks)
        )

        fragments = []
        for i, audio in enumerate(audio_parts):
            if per_chunk:
                marks = _to_chars(raw_marks[i])
            else:
                # flat list: already on the document timeline
                marks = _to_chars(raw_marks) if i == 0 else []
            duration = float(durations[i]) if i < len(durations) and durations[i] is not None else None
            fragments.append(Fragment(audio=audio, marks=marks, duration_ms=duration, mime_type=MP3))
        return fragments

    # --- Gemini TTS ---

    def _synth_gemini(self, text: str, voice: str, rate: float) -> List[Fragment]:
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{config.GEMINI_TTS_MODEL}:generateContent"
        headers = {"x-goog-api-key": get_gemini_api_key(), "Content-Type": "application/json"}
        prompt = text if abs(rate - 1.0) < 1e-6 else f"Read the following at {rate:g}x normal speed:\n{text}"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            },
        }
        try:
            r = requests.post(url, headers=headers, json=payload, timeout=config.PROVIDER_TIMEOUT)
        except requests.RequestException as e:
            raise ProviderError(f"Gemini TTS request failed: {e}")
        if r.status_code != 200:
            body = r.text or ""
            raise ProviderError(f"Gemini HTTP {r.status_code}: {body[:500]}", status=r.status_code, body=body)

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderError(f"Gemini TTS returned invalid JSON: {e}", status=r.status_code, body=r.text or "")
        inline = None
        for cand in data.get("candidates") or []:
            for part in (cand.get("content") or {}).get("parts") or []:
                if part.get("inlineData", {}).get("data"):
                    inline = part["inlineData"]
                    break
            if inline:
                break
        if not inline:
            raise ProviderError("No media returned from Google AI. Check API response.")

        pcm_rate = config.GEMINI_PCM_RATE
        m = re.search(r"rate=(\d+)", inline.get("mimeType") or "")
        if m:
            pcm_rate = int(m.group(1))
        try:
            pcm = base64.b64decode(inline["data"])
        except ValueError as e:
            raise ProviderError(f"Gemini TTS returned invalid base64 audio: {e}")
        wav = pcm_to_wav(
            pcm,
            channels=config.GEMINI_PCM_CHANNELS,
            rate=pcm_rate,
            sample_width=config.GEMINI_PCM_SAMPLE_WIDTH,
        )
        return [Fragment(audio=wav, mime_type=WAV)]
