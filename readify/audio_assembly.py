"""
Audio assembly: joins per-chunk audio fragments into one asset and moves
each fragment's timing marks onto a single document timeline.
"""

import io
import logging
import wave
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from readify.errors import ValidationError
from readify.timing import SpeechMark, mark_end_time, sort_marks

logger = logging.getLogger(__name__)

MP3 = "audio/mp3"
WAV = "audio/wav"


@dataclass
class Fragment:
    audio: bytes
    marks: List[SpeechMark] = field(default_factory=list)
    duration_ms: Optional[float] = None  # provider-reported, when known
    char_offset: int = 0                 # where the fragment's text starts in the document
    mime_type: str = MP3


def fragment_duration(fragment: Fragment) -> float:
    """
    Provider-reported duration, else the end of the latest mark window.
    Never measured from the audio bytes.
    """
    if fragment.duration_ms is not None:
        return float(fragment.duration_ms)
    if not fragment.marks:
        return 0.0
    return max(mark_end_time(m) for m in fragment.marks)


def _join_wav(parts: Sequence[bytes]) -> bytes:
    params = None
    frames = []
    for raw in parts:
        with wave.open(io.BytesIO(raw), "rb") as w:
            p = (w.getnchannels(), w.getsampwidth(), w.getframerate())
            if params is None:
                params = p
            elif p != params:
                raise ValidationError(f"WAV fragments differ in format: {p} vs {params}")
            frames.append(w.readframes(w.getnframes()))
    out = io.BytesIO()
    with wave.open(out, "wb") as w:
        w.setnchannels(params[0])
        w.setsampwidth(params[1])
        w.setframerate(params[2])
        w.writeframes(b"".join(frames))
    return out.getvalue()


def pcm_to_wav(pcm: bytes, channels: int = 1, rate: int = 24000, sample_width: int = 2) -> bytes:
    out = io.BytesIO()
    with wave.open(out, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(sample_width)
        w.setframerate(rate)
        w.writeframes(pcm)
    return out.getvalue()


def concat_audio(parts: Sequence[bytes], mime_type: str = MP3) -> bytes:
    """MP3 frames are joined byte for byte; WAV needs a single header."""
    if mime_type == WAV:
        return _join_wav(parts)
    return b"".join(parts)


def merge_fragments(fragments: Sequence[Fragment]) -> Fragment:
    """
    One fragment out of many. Fragment i's marks are moved by the summed
    durations of fragments [0, i) and by its character offset. The result
    carries the total duration, so merging can be repeated.
    """
    if not fragments:
        raise ValidationError("No audio fragments to merge.")

    mime_types = {f.mime_type for f in fragments}
    if len(mime_types) > 1:
        raise ValidationError(f"Cannot join mixed audio formats: {sorted(mime_types)}")
    mime_type = fragments[0].mime_type

    merged_marks: List[SpeechMark] = []
    offset_ms = 0.0
    for frag in fragments:
        merged_marks.extend(m.shifted(time_offset=offset_ms, char_offset=frag.char_offset) for m in frag.marks)
        offset_ms += fragment_duration(frag)

    audio = fragments[0].audio if len(fragments) == 1 else concat_audio([f.audio for f in fragments], mime_type)
    logger.debug(f"[ASSEMBLY] merged {len(fragments)} fragments, {len(merged_marks)} marks, {offset_ms:.0f} ms")
    return Fragment(
        audio=audio,
        marks=sort_marks(merged_marks),
        duration_ms=offset_ms,
        char_offset=0,
        mime_type=mime_type,
    )
