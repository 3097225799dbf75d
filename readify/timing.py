"""
Timing marks and the highlight mapper.

A mark locates a word or sentence of the source text (character offsets,
end exclusive) inside the synthesized audio (milliseconds). Not every
provider reports how long a mark lasts, so the active window of a mark is
estimated by `mark_duration` unless the provider supplied `duration`.
"""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from rapidfuzz import fuzz

from readify import config
from readify.utils import iter_sentences, iter_words

WORD = "word"
SENTENCE = "sentence"
MARK_TYPES = (WORD, SENTENCE)


@dataclass(frozen=True)
class SpeechMark:
    type: str
    start: int
    end: int
    time: float
    value: str = ""
    duration: Optional[float] = None

    def shifted(self, time_offset: float = 0.0, char_offset: int = 0) -> "SpeechMark":
        return replace(
            self,
            time=self.time + time_offset,
            start=self.start + char_offset,
            end=self.end + char_offset,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d["duration"] is None:
            d.pop("duration")
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SpeechMark":
        mark_type = str(d.get("type") or "").lower()
        if mark_type not in MARK_TYPES:
            raise ValueError(f"unknown mark type: {d.get('type')!r}")
        duration = d.get("duration")
        return cls(
            type=mark_type,
            start=int(d.get("start", 0)),
            end=int(d.get("end", 0)),
            time=float(d.get("time", 0)),
            value=str(d.get("value") or ""),
            duration=float(duration) if duration is not None else None,
        )


@dataclass(frozen=True)
class Highlight:
    type: str
    start: int
    end: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def marks_from_dicts(items: Optional[Iterable[Dict[str, Any]]]) -> List[SpeechMark]:
    """Parses provider/persisted marks, skipping types we do not highlight (ssml, viseme)."""
    out = []
    for d in items or []:
        if isinstance(d, SpeechMark):
            out.append(d)
            continue
        if not isinstance(d, dict) or str(d.get("type") or "").lower() not in MARK_TYPES:
            continue
        out.append(SpeechMark.from_dict(d))
    return out


def marks_to_dicts(marks: Iterable[SpeechMark]) -> List[Dict[str, Any]]:
    return [m.to_dict() for m in marks]


def sort_marks(marks: Iterable[SpeechMark]) -> List[SpeechMark]:
    # sentence before word at equal time, then text order
    return sorted(marks, key=lambda m: (m.time, 0 if m.type == SENTENCE else 1, m.start))


def mark_duration(mark: SpeechMark) -> float:
    """
    Active window of a mark in ms. Uses the provider duration when present,
    otherwise an estimate from the marked character span.
    """
    if mark.duration is not None and mark.duration > 0:
        return float(mark.duration)
    per_char = config.WORD_MS_PER_CHAR if mark.type == WORD else config.SENTENCE_MS_PER_CHAR
    return max(0, mark.end - mark.start) * per_char


def mark_end_time(mark: SpeechMark) -> float:
    return mark.time + mark_duration(mark)


def find_highlight(current_ms: float, marks: Sequence[SpeechMark]) -> Optional[Highlight]:
    """
    Active span at current_ms: the first word whose window contains the
    time, else the first such sentence, else None.
    """
    sentence: Optional[SpeechMark] = None
    for mark in marks:
        if not (mark.time <= current_ms < mark_end_time(mark)):
            continue
        if mark.type == WORD:
            return Highlight(WORD, mark.start, mark.end)
        if sentence is None:
            sentence = mark
    if sentence is not None:
        return Highlight(SENTENCE, sentence.start, sentence.end)
    return None


def is_monotonic(marks: Sequence[SpeechMark]) -> bool:
    """Per granularity, times never decrease along the list."""
    last: Dict[str, float] = {}
    for m in marks:
        if m.time < last.get(m.type, float("-inf")):
            return False
        last[m.type] = m.time
    return True


# =========================
# Word timings -> marks
# =========================
def _norm_token(s: str) -> str:
    return "".join(ch for ch in (s or "").lower() if ch.isalnum())


def align_word_timings(text: str, words: Sequence[Dict[str, Any]], lookahead: int = 6, min_score: float = 70.0) -> List[SpeechMark]:
    """
    Maps recognized words ({word, start, end} in seconds, as returned by
    transcription) onto character offsets of `text`. Tokens are matched in
    order within a small lookahead; unmatched words are dropped.
    """
    spans = iter_words(text)
    tokens = [_norm_token(text[s:e]) for s, e in spans]
    marks: List[SpeechMark] = []
    cursor = 0
    for w in words:
        heard = _norm_token(str(w.get("word") or w.get("text") or ""))
        if not heard:
            continue
        best_i, best_score = None, 0.0
        for i in range(cursor, min(len(tokens), cursor + lookahead)):
            score = 100.0 if tokens[i] == heard else fuzz.ratio(tokens[i], heard)
            if score > best_score:
                best_i, best_score = i, score
            if score == 100.0:
                break
        if best_i is None or best_score < min_score:
            continue
        start_s = float(w.get("start", 0.0))
        end_s = float(w.get("end", start_s))
        s, e = spans[best_i]
        marks.append(SpeechMark(
            type=WORD,
            start=s,
            end=e,
            time=round(start_s * 1000.0, 3),
            value=text[s:e],
            duration=round(max(0.0, end_s - start_s) * 1000.0, 3) or None,
        ))
        cursor = best_i + 1
    return marks


def sentence_marks_from_words(text: str, word_marks: Sequence[SpeechMark]) -> List[SpeechMark]:
    """A sentence starts when its first timed word starts and lasts until its last timed word ends."""
    out: List[SpeechMark] = []
    for s, e in iter_sentences(text):
        inside = [m for m in word_marks if m.type == WORD and s <= m.start < e]
        if not inside:
            continue
        first, last = inside[0], inside[-1]
        out.append(SpeechMark(
            type=SENTENCE,
            start=s,
            end=e,
            time=first.time,
            value=text[s:e],
            duration=(mark_end_time(last) - first.time) or None,
        ))
    return out
