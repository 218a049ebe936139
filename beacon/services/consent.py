import re

from beacon.models.transcript import TranscriptSegment

_WS = re.compile(r"\s+")


class ConsentGate:
    """Speakers approved for use; everyone else is filtered out of the transcript.

    Consent never carries over a new recording: ``reset`` is called on every
    start, so returning voices must be approved again.
    """

    def __init__(self) -> None:
        self._approved: set[int] = set()

    @property
    def approved(self) -> list[int]:
        return sorted(self._approved)

    def is_approved(self, speaker_id: int) -> bool:
        return speaker_id in self._approved

    def toggle(self, speaker_id: int) -> bool:
        """Flip approval for a speaker. Returns the new state."""
        if speaker_id in self._approved:
            self._approved.discard(speaker_id)
            return False
        self._approved.add(speaker_id)
        return True

    def reset(self) -> None:
        self._approved.clear()

    def visible_segments(self, segments) -> list[TranscriptSegment]:
        """Consented speech in store order.

        Pause markers are kept as anchors, but only while at least one
        speaker is approved.
        """
        if not self._approved:
            return []
        return [s for s in segments if s.is_marker or s.speaker_id in self._approved]

    def visible_text(self, segments) -> str:
        joined = " ".join(s.text for s in self.visible_segments(segments))
        return _WS.sub(" ", joined).strip()

    def has_consented_speech(self, segments) -> bool:
        return any(
            not s.is_marker and s.text.strip() for s in self.visible_segments(segments)
        )
