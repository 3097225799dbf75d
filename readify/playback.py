"""
Client-side narration playback as a plain state machine.

    idle/paused/error --request_narration--> generating
    generating --success--> playing       generating --failure--> error
    playing <--toggle--> paused           playing --on_ended--> idle

The controller never touches audio itself; a player reports time updates
and the end of the audio, and the controller answers with the highlight.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from readify import config
from readify.errors import ReadifyError, ValidationError
from readify.timing import Highlight, SpeechMark, find_highlight, marks_from_dicts, sort_marks

logger = logging.getLogger(__name__)

IDLE = "idle"
GENERATING = "generating"
PLAYING = "playing"
PAUSED = "paused"
ERROR = "error"


class PlaybackController:
    def __init__(self, voice: str = config.DEFAULT_VOICE, speaking_rate: float = 1.0):
        self.state = IDLE
        self.voice = voice
        self.speaking_rate = speaking_rate
        self.playback_rate = 1.0
        self.audio_url: Optional[str] = None
        self.marks: List[SpeechMark] = []
        self.duration = 0.0  # seconds
        self.position = 0.0  # seconds
        self.highlight: Optional[Highlight] = None
        self.error: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_url)

    def load(self, audio_url: str, speech_marks: Optional[List[Dict[str, Any]]] = None, duration: float = 0.0):
        """Attaches an existing narration (e.g. a saved document) without playing it."""
        self.audio_url = audio_url
        self.marks = sort_marks(marks_from_dicts(speech_marks))
        self.duration = max(0.0, float(duration or 0.0))
        self.position = 0.0
        self.highlight = None

    def request_narration(self, generate_fn: Callable[[str, float], Dict[str, Any]]) -> str:
        """
        Runs generate_fn(voice, speaking_rate), expected to return
        {audioUrl, speechMarks, durationMs}. Failures end in the error
        state with the message kept; nothing is retried.
        """
        if self.state == GENERATING:
            raise ValidationError("Audio generation is already running.")
        self.state = GENERATING
        self.error = None
        try:
            result = generate_fn(self.voice, self.speaking_rate)
        except ReadifyError as e:
            logger.error(f"[PLAYBACK] generation failed: {e.message}")
            self.state = ERROR
            self.error = e.message
            return self.state
        except Exception as e:
            logger.error(f"[PLAYBACK] generation crashed: {e!r}")
            self.state = ERROR
            self.error = str(e) or e.__class__.__name__
            return self.state

        audio_url = (result or {}).get("audioUrl") or (result or {}).get("audioDataUri")
        if not audio_url:
            self.state = ERROR
            self.error = "Audio generation resulted in no audio."
            return self.state

        self.load(audio_url, result.get("speechMarks"), (result.get("durationMs") or 0.0) / 1000.0)
        self.state = PLAYING
        return self.state

    def toggle(self) -> str:
        if self.state == PLAYING:
            self.state = PAUSED
        elif self.state == PAUSED:
            self.state = PLAYING
        elif self.state == IDLE and self.has_audio:
            if self.duration and self.position >= self.duration:
                self.position = 0.0
            self.state = PLAYING
        return self.state

    def seek(self, seconds: float) -> float:
        if self.state not in (PLAYING, PAUSED):
            raise ValidationError(f"Cannot seek while {self.state}.")
        # unknown duration pins the position at the start
        upper = self.duration if self.duration > 0 else 0.0
        self.position = min(max(0.0, float(seconds)), upper)
        self.highlight = find_highlight(self.position * 1000.0, self.marks)
        return self.position

    def forward(self) -> float:
        return self.seek(self.position + config.SKIP_SECONDS)

    def rewind(self) -> float:
        return self.seek(self.position - config.SKIP_SECONDS)

    def set_playback_rate(self, rate: float) -> float:
        if rate not in config.PLAYBACK_RATES:
            raise ValidationError(f"Playback rate must be one of {list(config.PLAYBACK_RATES)}.")
        self.playback_rate = float(rate)
        return self.playback_rate

    def set_voice(self, voice: str):
        self.voice = voice

    def set_speaking_rate(self, rate: float):
        if not (config.MIN_SPEAKING_RATE <= rate <= config.MAX_SPEAKING_RATE):
            raise ValidationError("Speaking rate out of range.")
        self.speaking_rate = float(rate)

    def on_time_update(self, seconds: float) -> Optional[Highlight]:
        self.position = max(0.0, float(seconds))
        self.highlight = find_highlight(self.position * 1000.0, self.marks)
        return self.highlight

    def on_ended(self) -> str:
        if self.state == PLAYING:
            self.state = IDLE
            self.position = self.duration
            self.highlight = None
        return self.state

    @property
    def progress(self) -> float:
        """Percent of the audio played."""
        if self.duration <= 0:
            return 0.0
        return min(100.0, self.position / self.duration * 100.0)
