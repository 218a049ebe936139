"""Lifetime of one live recording.

Events from the transcription source arrive on a bounded queue and are
applied by a single consumer task, which keeps the segment store's
correction rule in arrival order. Action items refresh on a periodic task
bound to the same lifetime. Stopping tears the pipeline down in a fixed
order (source, silence timer, polling, queue drain) before the transcript
is read for finalization.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from beacon.config import PipelineConfig
from beacon.exceptions import ReportFinalizedError, TranscriptionUnavailableError
from beacon.models.action_item import ManualEvent
from beacon.models.report import IncidentReport, ReportTemplate
from beacon.models.transcript import TranscriptEvent, TranscriptSnapshot
from beacon.services.action_items import ActionItemOracle, ActionItemReconciler
from beacon.services.analysis import AnalysisOracle
from beacon.services.consent import ConsentGate
from beacon.services.finalizer import ReportFinalizer
from beacon.services.notes import NoteExtractor, extract_notes
from beacon.services.segment_store import SegmentStore
from beacon.services.session_store import SessionStore, now_iso
from beacon.services.silence import SilenceSegmenter
from beacon.services.transcription import TranscriptionSource, create_transcription_source

logger = logging.getLogger(__name__)

Listener = Callable[[dict], Awaitable[None]]
SourceFactory = Callable[[asyncio.Queue], TranscriptionSource]


class RecordingSession:
    def __init__(
        self,
        mode: str,
        user_id: str,
        store: SessionStore,
        *,
        config: PipelineConfig | None = None,
        analysis_oracle: AnalysisOracle | None = None,
        action_oracle: ActionItemOracle | None = None,
        source_factory: SourceFactory = create_transcription_source,
        note_extractor: NoteExtractor | None = None,
        listener: Listener | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.mode = mode
        self.user_id = user_id
        self.store = store
        self.config = config or PipelineConfig.from_env()
        self.listener = listener
        self._source_factory = source_factory
        self._note_extractor = note_extractor
        self._clock = clock

        self.segments = SegmentStore()
        self.consent = ConsentGate()
        self.silence = SilenceSegmenter(
            self.segments,
            self.config.pause_marker_seconds,
            clock=lambda: self._clock().strftime("%H:%M:%S"),
            on_marker=self._on_transcript_changed,
        )
        self.reconciler = ActionItemReconciler(
            action_oracle or ActionItemOracle(),
            preserve_completed=self.config.preserve_completed_items,
            clock=lambda: self._clock().strftime("%H:%M"),
        )
        self.finalizer = ReportFinalizer(store, analysis_oracle or AnalysisOracle())

        self.report_id: str | None = None
        self.recovered_transcript = ""
        self.notes: list[str] = []
        self.finalized: IncidentReport | None = None

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._source: TranscriptionSource | None = None
        self._consumer: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._recording = False

    # --- state ---

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def transcript(self) -> str:
        """Recovered transcript followed by the consented live transcript."""
        live = self.consent.visible_text(self.segments)
        return " ".join(part for part in (self.recovered_transcript, live) if part)

    @property
    def speech_detected(self) -> bool:
        if self.recovered_transcript:
            return True
        return any(not s.is_marker and s.text.strip() for s in self.segments)

    def snapshot(self) -> TranscriptSnapshot:
        return TranscriptSnapshot(
            segments=self.segments.segments,
            visible_transcript=self.transcript,
            detected_speakers=self.segments.detected_speakers,
            consented_speakers=self.consent.approved,
        )

    # --- lifecycle ---

    async def start(self) -> IncidentReport | None:
        """Begin a fresh recording, resuming the canonical in-progress record if any."""
        self.segments.clear()
        self.consent.reset()
        self.reconciler.reset()
        self.notes = []
        self.finalized = None
        self.report_id = None
        self.recovered_transcript = ""

        recovered = await self.store.recover_in_progress(self.user_id, self.mode)
        if recovered is not None:
            self.report_id = recovered.id
            self.recovered_transcript = recovered.transcript
            self.notes = list(recovered.notes)
            logger.info("Resuming %s session %s", self.mode, recovered.id)

        self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._consumer = asyncio.create_task(self._consume())
        self._source = self._source_factory(self._queue)
        try:
            await self._source.start()
        except TranscriptionUnavailableError as e:
            # The session stays usable: consent, checklist and stop still work
            logger.error("Recording %s session without transcription: %s", self.mode, e)
            await self._emit({"type": "error", "code": e.code, "message": e.message})
        self._poller = asyncio.create_task(self._poll_action_items())
        self._recording = True
        return recovered

    async def feed(self, event: TranscriptEvent) -> None:
        """Push one event through the same queue the transcription source uses."""
        await self._queue.put(event)

    async def send_audio(self, chunk: bytes) -> None:
        if self._recording and self._source is not None:
            await self._source.send_audio(chunk)

    async def flush(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    async def teardown(self) -> None:
        """Stop the source, silence timer and polling, then drain pending events."""
        if self._source is None and self._consumer is None:
            return
        self._recording = False
        if self._source is not None:
            await self._source.stop()
            self._source = None
        await self.silence.stop()
        await self._cancel(self._poller)
        self._poller = None
        if self._consumer is not None:
            await self._queue.join()
            await self._cancel(self._consumer)
            self._consumer = None
        # Utterance ends drained above may have re-armed the timer
        await self.silence.stop()
        logger.info("Recording stopped (%d segments)", len(self.segments))

    async def stop_and_finalize(self, template: ReportTemplate | None = None) -> IncidentReport:
        """Tear down and produce the completed report.

        Input-empty and transport errors propagate with the session left in
        progress, so the caller may fix consent and try again.
        """
        if self.finalized is not None:
            raise ReportFinalizedError()
        await self.teardown()
        report = await self.finalizer.finalize(
            report_id=self.report_id,
            user_id=self.user_id,
            mode=self.mode,
            transcript=self.transcript,
            speech_detected=self.speech_detected,
            action_items=self.reconciler.items,
            manual_events=self.reconciler.manual_events,
            notes=self.notes,
            template=template,
        )
        self.report_id = report.id
        self.finalized = report
        await self._emit({"type": "report_finalized", "report": report.model_dump()})
        return report

    async def discard(self) -> str | None:
        """Drop the in-progress record and all local state ("Start New")."""
        await self.teardown()
        deleted = await self.store.discard_in_progress(self.user_id, self.mode)
        if self.report_id and self.report_id != deleted and self.finalized is None:
            await self.store.delete(self.report_id)
        self.segments.clear()
        self.consent.reset()
        self.reconciler.reset()
        self.notes = []
        self.report_id = None
        self.recovered_transcript = ""
        return deleted

    # --- user actions ---

    async def toggle_consent(self, speaker_id: int) -> bool:
        approved = self.consent.toggle(speaker_id)
        logger.info("Speaker %d %s", speaker_id, "approved" if approved else "revoked")
        await self._on_transcript_changed()
        return approved

    async def toggle_action_item(self, item_id: str) -> ManualEvent | None:
        event = self.reconciler.toggle(item_id)
        await self._emit_action_items()
        return event

    # --- internals ---

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._apply(event)
            except Exception as e:
                logger.error("Failed to apply transcript event: %s", e)
            finally:
                self._queue.task_done()

    async def _apply(self, event: TranscriptEvent) -> None:
        if event.kind == "utterance_end":
            if self._recording:
                self.silence.arm()
            return

        if not self.segments.append(event.speaker_id, event.text, event.is_final):
            return
        self.silence.cancel()
        if event.is_final and self.config.arm_pause_on_final and self._recording:
            self.silence.arm()
        await self._on_transcript_changed()

    async def _poll_action_items(self) -> None:
        while True:
            await asyncio.sleep(self.config.action_item_interval)
            try:
                changed = await self.reconciler.refresh(self.transcript)
            except Exception as e:
                logger.error("Action item refresh failed: %s", e)
                continue
            if changed:
                await self._emit_action_items()

    async def _on_transcript_changed(self) -> None:
        transcript = self.transcript
        notes = extract_notes(transcript, self._note_extractor)
        notes_changed = notes != self.notes
        if notes_changed:
            self.notes = notes

        await self._emit({"type": "transcript_update", **self.snapshot().model_dump()})
        if notes_changed:
            await self._emit({"type": "notes_update", "notes": self.notes})
        await self._autosave(transcript)

    async def _autosave(self, transcript: str) -> None:
        if self.finalized is not None or not transcript:
            return
        if self.report_id is None:
            self.report_id = str(uuid.uuid4())
            logger.info("Created %s session %s", self.mode, self.report_id)
        await self.store.upsert(
            IncidentReport(
                id=self.report_id,
                mode=self.mode,
                status="in_progress",
                user_id=self.user_id,
                timestamp=now_iso(),
                transcript=transcript,
                notes=self.notes,
            )
        )

    async def _emit_action_items(self) -> None:
        await self._emit(
            {
                "type": "action_items_update",
                "items": [i.model_dump() for i in self.reconciler.items],
                "manual_events": [e.model_dump() for e in self.reconciler.manual_events],
            }
        )

    async def _emit(self, update: dict) -> None:
        if self.listener is None:
            return
        try:
            await self.listener(update)
        except Exception as e:
            logger.warning("Listener failed on %s: %s", update.get("type"), e)

    @staticmethod
    async def _cancel(task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
