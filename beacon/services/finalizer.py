"""One-time transition of a recording into a completed incident report."""

import logging
import re
import uuid

from beacon.exceptions import NoConsentedSpeechError, NoSpeechError, ReportFinalizedError
from beacon.models.action_item import ActionItem, ManualEvent
from beacon.models.analysis import TimelineEntry
from beacon.models.report import IncidentReport, ReportTemplate
from beacon.models.transcript import PAUSE_MARKER_PATTERN
from beacon.services.analysis import AnalysisOracle
from beacon.services.session_store import SessionStore, now_iso

logger = logging.getLogger(__name__)

GENERATIVE_TEMPLATE = "Generative"

# Analysis fields that describe the parse, not the incident
_INTERNAL_FIELDS = {"parse_error"}


def merge_timeline(
    timeline: list[TimelineEntry], manual_events: list[ManualEvent]
) -> list[TimelineEntry]:
    """Fold manually logged events into the AI timeline.

    The combined list is ordered by plain string comparison of ``time``,
    which is chronological for zero-padded ``HH:MM[:SS]`` values. Without
    manual events the AI order is kept as is.
    """
    if not manual_events:
        return list(timeline)
    merged = list(timeline) + [
        TimelineEntry(time=e.time, event=e.description, source="manual") for e in manual_events
    ]
    return sorted(merged, key=lambda entry: entry.time)


def union_texts(*groups: list[str]) -> list[str]:
    """Concatenate string lists, dropping exact repeats and blanks, first occurrence wins."""
    seen: set[str] = set()
    result: list[str] = []
    for group in groups:
        for text in group:
            if not text or text in seen:
                continue
            seen.add(text)
            result.append(text)
    return result


def has_speech(transcript: str) -> bool:
    return bool(PAUSE_MARKER_PATTERN.sub(" ", transcript).strip())


class ReportFinalizer:
    def __init__(self, store: SessionStore, oracle: AnalysisOracle) -> None:
        self.store = store
        self.oracle = oracle

    async def finalize(
        self,
        *,
        report_id: str | None,
        user_id: str,
        mode: str,
        transcript: str,
        speech_detected: bool,
        action_items: list[ActionItem] | None = None,
        manual_events: list[ManualEvent] | None = None,
        notes: list[str] | None = None,
        template: ReportTemplate | None = None,
    ) -> IncidentReport:
        """Analyze the consented transcript and persist the completed report.

        Raises NoSpeechError / NoConsentedSpeechError before touching any
        state, and lets OracleTransportError propagate so the record stays
        in progress.
        """
        if not has_speech(transcript):
            if speech_detected:
                raise NoConsentedSpeechError()
            raise NoSpeechError()

        if report_id:
            existing = await self.store.get(report_id)
            if existing is not None and existing.status == "completed":
                raise ReportFinalizedError(f"Report {report_id} is already completed")

        manual_events = manual_events or []
        analysis = await self.oracle.analyze(transcript, mode, template, manual_events)
        if analysis.parse_error:
            logger.warning("Finalizing %s report with an unparsed analysis", mode)

        items = action_items or []
        pending = [i.text for i in items if not i.is_completed]
        completed = [i.text for i in items if i.is_completed]

        payload = analysis.model_dump(exclude=_INTERNAL_FIELDS)
        payload.update(
            id=report_id or str(uuid.uuid4()),
            mode=mode,
            status="completed",
            user_id=user_id,
            timestamp=now_iso(),
            transcript=transcript,
            timeline=[e.model_dump() for e in merge_timeline(analysis.timeline, manual_events)],
            action_items=union_texts(pending, analysis.action_items),
            actions_taken=union_texts(analysis.actions_taken, completed),
            notes=list(notes or []),
            template_used=template.title if template else GENERATIVE_TEMPLATE,
        )
        report = IncidentReport.model_validate(payload)
        await self.store.upsert(report)
        logger.info(
            "Finalized %s report %s (%s, %d action items)",
            mode,
            report.id,
            report.category or "uncategorized",
            len(report.action_items),
        )
        return report
