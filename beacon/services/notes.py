"""Field notes dictated inline ("note to self ... end note").

Extraction is a pure function of the whole consented transcript and is
re-run on every change; callers replace their notes list with the result.
"""

import re
from typing import Protocol

from beacon.models.transcript import PAUSE_MARKER_PATTERN

TRIGGER_PHRASES = (
    "add note to self",
    "note to self",
    "take a note",
    "important note",
    "make a note",
)

END_PHRASES = (
    "end note",
    "end of note",
    "close note",
    "stop note",
    "that's it",
    "that is it",
)

MIN_NOTE_LENGTH = 4


def _phrase_pattern(phrases: tuple[str, ...]) -> re.Pattern:
    # Longest first so "add note to self" wins over "note to self"
    ordered = sorted(phrases, key=len, reverse=True)
    return re.compile("|".join(re.escape(p) for p in ordered), re.IGNORECASE)


_TRIGGER_RE = _phrase_pattern(TRIGGER_PHRASES)
_END_RE = _phrase_pattern(END_PHRASES)
# A period inside a number ("0.4 mg") does not end a sentence
_SENTENCE_END_RE = re.compile(r"[.?](?!\d)")
_WS = re.compile(r"\s+")


class NoteExtractor(Protocol):
    def extract(self, transcript: str) -> list[str]: ...


class PhraseNoteExtractor:
    """Scans left to right for trigger phrases and captures non-overlapping spans.

    A span ends at the earliest of: the next trigger, an end phrase, a
    sentence-ending ``.``/``?`` (kept), or a pause marker (dropped).
    """

    def extract(self, transcript: str) -> list[str]:
        notes: list[str] = []
        seen: set[str] = set()
        cursor = 0

        while True:
            trigger = _TRIGGER_RE.search(transcript, cursor)
            if trigger is None:
                break
            start = trigger.end()
            boundary = self._span_end(transcript, start)
            cursor = max(boundary, start)

            note = PAUSE_MARKER_PATTERN.sub(" ", transcript[start:boundary])
            note = _WS.sub(" ", note).strip().lstrip(":,;- ").strip()
            if len(note) < MIN_NOTE_LENGTH or note in seen:
                continue
            seen.add(note)
            notes.append(note)

        return notes

    @staticmethod
    def _span_end(transcript: str, start: int) -> int:
        # (position where the terminator begins, exclusive end of the captured span)
        candidates: list[tuple[int, int]] = [(len(transcript), len(transcript))]

        next_trigger = _TRIGGER_RE.search(transcript, start)
        if next_trigger:
            candidates.append((next_trigger.start(), next_trigger.start()))
        end_phrase = _END_RE.search(transcript, start)
        if end_phrase:
            candidates.append((end_phrase.start(), end_phrase.start()))
        sentence_end = _SENTENCE_END_RE.search(transcript, start)
        if sentence_end:
            candidates.append((sentence_end.start(), sentence_end.end()))
        marker = PAUSE_MARKER_PATTERN.search(transcript, start)
        if marker:
            candidates.append((marker.start(), marker.start()))

        return min(candidates)[1]


_default_extractor = PhraseNoteExtractor()


def extract_notes(transcript: str, extractor: NoteExtractor | None = None) -> list[str]:
    return (extractor or _default_extractor).extract(transcript)
