"""Tests for RecordingSession: ordering, consent, autosave, recovery and teardown."""

import asyncio
import json
from datetime import datetime

import pytest

from beacon.config import PipelineConfig
from beacon.exceptions import (
    NoConsentedSpeechError,
    NoSpeechError,
    ReportFinalizedError,
    TranscriptionUnavailableError,
)
from beacon.models.action_item import ActionItem
from beacon.models.report import IncidentReport
from beacon.models.transcript import TranscriptEvent
from beacon.services.analysis import AnalysisOracle
from beacon.services.recording import RecordingSession

FIRE_ANSWER = json.dumps(
    {
        "summary": "Kitchen fire knocked down",
        "category": "Structure Fire",
        "urgency": "Medium",
        "timeline": [{"time": "14:10", "event": "Arrived, smoke showing"}],
        "actions_taken": ["Stretched 1.75 line"],
        "action_items": ["Notify fire marshal"],
    }
)


class FakeSource:
    def __init__(self, queue):
        self.queue = queue
        self.started = False
        self.stopped = False
        self.audio = []

    async def start(self):
        self.started = True

    async def send_audio(self, chunk):
        self.audio.append(chunk)

    async def stop(self):
        self.stopped = True


class FlushOnStopSource(FakeSource):
    """Delivers the last utterance only once the stream is closed."""

    async def stop(self):
        await self.queue.put(TranscriptEvent(speaker_id=0, text="Patient is stable.", is_final=True))
        self.stopped = True


class UnreachableSource(FakeSource):
    async def start(self):
        raise TranscriptionUnavailableError()


class StaticActionOracle:
    def __init__(self, items=None):
        self.items = items
        self.calls = 0

    async def suggest(self, transcript, current_items):
        self.calls += 1
        if self.items is None:
            return current_items
        return [ActionItem.model_validate(i) for i in self.items]


@pytest.fixture
def make_session(store, make_llm):
    sources = []
    updates = []

    async def listener(update):
        updates.append(update)

    def build(
        *llm_responses,
        mode="FIRE",
        user_id="u1",
        action_items=None,
        config=None,
        source_cls=FakeSource,
    ):
        def factory(queue):
            source = source_cls(queue)
            sources.append(source)
            return source

        session = RecordingSession(
            mode,
            user_id,
            store,
            config=config or PipelineConfig(pause_marker_seconds=0.02, action_item_interval=3600),
            analysis_oracle=AnalysisOracle(make_llm(*llm_responses)),
            action_oracle=StaticActionOracle(action_items),
            source_factory=factory,
            listener=listener,
            clock=lambda: datetime(2024, 5, 1, 14, 12, 30),
        )
        session.sources = sources
        session.updates = updates
        return session

    return build


async def _say(session, speaker, text, final=True):
    await session.feed(TranscriptEvent(speaker_id=speaker, text=text, is_final=final))
    await session.flush()


def _types(session):
    return [u["type"] for u in session.updates]


class TestTranscriptFlow:
    async def test_interim_corrections_collapse(self, make_session):
        session = make_session()
        await session.start()

        await _say(session, 0, "smoke", final=False)
        await _say(session, 0, "smoke showing from", final=False)
        await _say(session, 0, "Smoke showing from the roof.")

        assert len(session.segments) == 1
        assert session.segments.last.text == "Smoke showing from the roof."
        await session.teardown()

    async def test_nothing_visible_or_saved_before_consent(self, make_session, store):
        session = make_session()
        await session.start()
        await _say(session, 0, "Smoke showing.")

        assert session.transcript == ""
        assert session.report_id is None
        assert await store.list_records(user_id="u1") == []
        await session.teardown()

    async def test_consent_reveals_and_autosaves(self, make_session, store):
        session = make_session()
        await session.start()
        await _say(session, 0, "Smoke showing.")
        await _say(session, 1, "Bystander talking.")

        await session.toggle_consent(0)

        assert session.transcript == "Smoke showing."
        stored = await store.get(session.report_id)
        assert stored.status == "in_progress"
        assert stored.transcript == "Smoke showing."
        last = [u for u in session.updates if u["type"] == "transcript_update"][-1]
        assert last["consented_speakers"] == [0]
        assert last["detected_speakers"] == [0, 1]
        await session.teardown()

    async def test_session_id_stable_across_ticks(self, make_session, store):
        session = make_session()
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "First.")
        first_id = session.report_id
        await _say(session, 0, "Second.")

        assert session.report_id == first_id
        assert len(await store.list_records(user_id="u1")) == 1
        assert (await store.get(first_id)).transcript == "First. Second."
        await session.teardown()

    async def test_notes_extracted_and_saved(self, make_session, store):
        session = make_session()
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Note to self check the gas meter. Moving to side C.")

        assert session.notes == ["check the gas meter."]
        assert "notes_update" in _types(session)
        assert (await store.get(session.report_id)).notes == ["check the gas meter."]
        await session.teardown()


class TestSilence:
    async def test_utterance_end_inserts_marker(self, make_session):
        session = make_session()
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Primary search complete.")
        await session.feed(TranscriptEvent(kind="utterance_end"))
        await session.flush()
        await asyncio.sleep(0.1)

        assert session.segments.last.is_marker
        assert session.transcript == "Primary search complete. [[PAUSE 14:12:30]]"
        await session.teardown()

    async def test_new_result_cancels_pending_marker(self, make_session):
        session = make_session(config=PipelineConfig(pause_marker_seconds=0.05, action_item_interval=3600))
        await session.start()
        await _say(session, 0, "Primary search complete.")
        await session.feed(TranscriptEvent(kind="utterance_end"))
        await _say(session, 0, "Secondary underway.")
        await asyncio.sleep(0.1)

        assert not any(s.is_marker for s in session.segments)
        await session.teardown()

    async def test_legacy_config_arms_on_final(self, make_session):
        config = PipelineConfig(pause_marker_seconds=0.02, arm_pause_on_final=True, action_item_interval=3600)
        session = make_session(config=config)
        await session.start()
        await _say(session, 0, "Patient is alert.")
        await asyncio.sleep(0.1)

        assert session.segments.last.is_marker
        await session.teardown()


class TestActionItems:
    async def test_periodic_refresh_emits_update(self, make_session):
        config = PipelineConfig(pause_marker_seconds=5, action_item_interval=0.01)
        session = make_session(action_items=[{"text": "Establish water supply"}], config=config)
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Working fire, need a hydrant.")
        await asyncio.sleep(0.1)

        assert [i.text for i in session.reconciler.items] == ["Establish water supply"]
        assert "action_items_update" in _types(session)
        await session.teardown()

    async def test_refresh_skipped_without_consented_transcript(self, make_session):
        config = PipelineConfig(pause_marker_seconds=5, action_item_interval=0.01)
        session = make_session(action_items=[{"text": "Establish water supply"}], config=config)
        await session.start()
        await _say(session, 0, "Working fire.")
        await asyncio.sleep(0.05)

        assert session.reconciler.items == []
        assert session.reconciler._oracle.calls == 0
        await session.teardown()

    async def test_toggle_emits_manual_event(self, make_session):
        session = make_session()
        await session.start()
        session.reconciler.load([ActionItem(id="a", text="Vertical vent")])

        event = await session.toggle_action_item("a")

        assert event.time == "14:12"
        update = session.updates[-1]
        assert update["type"] == "action_items_update"
        assert update["manual_events"] == [{"time": "14:12", "description": "Vertical vent"}]
        await session.teardown()


class TestFinalize:
    async def test_stop_produces_completed_report(self, make_session, store):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Kitchen fire, knocked down.")
        session_id = session.report_id
        session.reconciler.load(
            [ActionItem(id="a", text="Ventilate"), ActionItem(id="b", text="Check extension")]
        )
        await session.toggle_action_item("a")

        report = await session.stop_and_finalize()

        assert report.id == session_id
        assert report.status == "completed"
        assert report.action_items == ["Check extension", "Notify fire marshal"]
        assert report.actions_taken == ["Stretched 1.75 line", "Ventilate"]
        assert [(e.time, e.source) for e in report.timeline] == [("14:10", "ai"), ("14:12", "manual")]
        assert session.sources[0].stopped
        assert not session.silence.armed
        assert _types(session)[-1] == "report_finalized"
        records = await store.list_records(user_id="u1")
        assert [(r.id, r.status) for r in records] == [(session_id, "completed")]

    async def test_no_consented_speech_leaves_state(self, make_session, store):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await _say(session, 0, "Smoke showing.")

        with pytest.raises(NoConsentedSpeechError):
            await session.stop_and_finalize()
        assert await store.list_records(user_id="u1") == []
        assert session.finalized is None

    async def test_no_speech(self, make_session):
        session = make_session()
        await session.start()
        with pytest.raises(NoSpeechError):
            await session.stop_and_finalize()

    async def test_retry_after_granting_consent(self, make_session):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await _say(session, 0, "Smoke showing.")
        with pytest.raises(NoConsentedSpeechError):
            await session.stop_and_finalize()

        await session.toggle_consent(0)
        report = await session.stop_and_finalize()
        assert report.transcript == "Smoke showing."

    async def test_second_stop_rejected(self, make_session):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Smoke showing.")
        await session.stop_and_finalize()

        with pytest.raises(ReportFinalizedError):
            await session.stop_and_finalize()

    async def test_no_autosave_after_finalize(self, make_session, store):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Smoke showing.")
        report = await session.stop_and_finalize()

        await session.toggle_consent(1)
        assert (await store.get(report.id)).status == "completed"

    async def test_results_flushed_on_close_reach_report(self, make_session):
        session = make_session(FIRE_ANSWER, source_cls=FlushOnStopSource)
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Vitals taken.")

        report = await session.stop_and_finalize()
        assert report.transcript == "Vitals taken. Patient is stable."

    async def test_pending_events_drained_before_finalize(self, make_session):
        session = make_session(FIRE_ANSWER)
        await session.start()
        await session.toggle_consent(0)
        await session.feed(TranscriptEvent(speaker_id=0, text="Last words on scene.", is_final=True))

        report = await session.stop_and_finalize()
        assert report.transcript == "Last words on scene."


class TestRecovery:
    async def test_resume_prepends_recovered_transcript(self, make_session, store):
        await store.upsert(
            IncidentReport(
                id="old",
                mode="FIRE",
                user_id="u1",
                transcript="Stale copy.",
                timestamp="2024-05-01T14:00:00+00:00",
            )
        )
        await store.upsert(
            IncidentReport(
                id="live",
                mode="FIRE",
                user_id="u1",
                transcript="Earlier speech.",
                timestamp="2024-05-01T14:05:00+00:00",
            )
        )
        session = make_session()

        recovered = await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "New words.")

        assert recovered.id == "live"
        assert session.report_id == "live"
        assert session.transcript == "Earlier speech. New words."
        assert await store.get("old") is None
        assert (await store.get("live")).transcript == "Earlier speech. New words."
        await session.teardown()

    async def test_consent_not_carried_over(self, make_session):
        session = make_session()
        await session.start()
        await session.toggle_consent(0)
        await session.teardown()

        await session.start()
        assert session.consent.approved == []
        await session.teardown()

    async def test_discard_removes_in_progress(self, make_session, store):
        session = make_session()
        await session.start()
        await session.toggle_consent(0)
        await _say(session, 0, "Smoke showing.")
        session_id = session.report_id

        assert await session.discard() == session_id
        assert await store.get(session_id) is None
        assert session.report_id is None
        assert len(session.segments) == 0

    async def test_teardown_is_idempotent(self, make_session):
        session = make_session()
        await session.start()
        await session.teardown()
        await session.teardown()
        assert not session.recording


class TestTranscriptionUnavailable:
    async def test_failed_connect_reported_and_session_usable(self, make_session):
        session = make_session(FIRE_ANSWER, source_cls=UnreachableSource)
        await session.start()

        error = session.updates[0]
        assert error["type"] == "error"
        assert error["code"] == "transcription_unavailable"
        assert session.recording

        await session.toggle_consent(0)
        await _say(session, 0, "Typed in by hand.")
        report = await session.stop_and_finalize()
        assert report.status == "completed"
