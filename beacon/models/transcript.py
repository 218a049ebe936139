import re
from typing import Literal

from pydantic import BaseModel

PAUSE_MARKER_PATTERN = re.compile(r"\[\[PAUSE \d{2}:\d{2}:\d{2}\]\]")

# Speaker id carried by synthetic pause markers
MARKER_SPEAKER_ID = -1


def format_pause_marker(clock_time: str) -> str:
    """Render a pause marker for an ``HH:MM:SS`` wall-clock string."""
    return f"[[PAUSE {clock_time}]]"


def is_pause_marker(text: str) -> bool:
    return bool(PAUSE_MARKER_PATTERN.fullmatch(text.strip()))


class TranscriptSegment(BaseModel):
    speaker_id: int
    text: str
    is_final: bool

    @property
    def is_marker(self) -> bool:
        return self.speaker_id == MARKER_SPEAKER_ID and is_pause_marker(self.text)


class TranscriptEvent(BaseModel):
    """One ordered item from the transcription channel."""

    kind: Literal["result", "utterance_end"] = "result"
    speaker_id: int = 0
    text: str = ""
    is_final: bool = False


class TranscriptSnapshot(BaseModel):
    segments: list[TranscriptSegment]
    visible_transcript: str
    detected_speakers: list[int]
    consented_speakers: list[int]
