"""In-memory ordered log of speech segments for one recording."""

import logging
from collections.abc import Iterator

from beacon.models.transcript import (
    MARKER_SPEAKER_ID,
    TranscriptSegment,
    format_pause_marker,
)

logger = logging.getLogger(__name__)


class SegmentStore:
    """Append-only transcript log with in-place correction of the last interim result.

    Rules for every incoming result, in order:

    1. Empty store: append.
    2. Last segment is a pause marker: append (a marker closes the prior utterance).
    3. Last segment is interim: replace it.
    4. Otherwise: append.

    Final segments and pause markers are never mutated afterwards.
    """

    def __init__(self) -> None:
        self._segments: list[TranscriptSegment] = []
        self._detected_speakers: set[int] = set()
        self._revision = 0

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[TranscriptSegment]:
        # Iterate a snapshot so consumers may re-iterate while results arrive
        return iter(tuple(self._segments))

    @property
    def segments(self) -> list[TranscriptSegment]:
        return list(self._segments)

    @property
    def detected_speakers(self) -> list[int]:
        return sorted(self._detected_speakers)

    @property
    def revision(self) -> int:
        """Bumped on every mutation; lets observers skip unchanged ticks."""
        return self._revision

    @property
    def last(self) -> TranscriptSegment | None:
        return self._segments[-1] if self._segments else None

    def append(self, speaker_id: int, text: str, is_final: bool) -> bool:
        """Apply one transcription result. Returns False if it was ignored."""
        if not text or not text.strip():
            return False

        self._detected_speakers.add(speaker_id)
        segment = TranscriptSegment(speaker_id=speaker_id, text=text, is_final=is_final)

        last = self.last
        if last is None or last.is_marker or last.is_final:
            self._segments.append(segment)
        else:
            self._segments[-1] = segment
        self._revision += 1
        return True

    def can_insert_pause_marker(self) -> bool:
        last = self.last
        return last is not None and last.is_final and not last.is_marker

    def insert_pause_marker(self, clock_time: str) -> bool:
        """Append a pause marker unless the last segment is interim or already a marker."""
        if not self.can_insert_pause_marker():
            return False
        self._segments.append(
            TranscriptSegment(
                speaker_id=MARKER_SPEAKER_ID,
                text=format_pause_marker(clock_time),
                is_final=True,
            )
        )
        self._revision += 1
        logger.debug("Inserted pause marker at %s", clock_time)
        return True

    def clear(self) -> None:
        self._segments.clear()
        self._detected_speakers.clear()
        self._revision += 1
