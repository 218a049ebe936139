import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from beacon.config import PipelineConfig
from beacon.database import get_db
from beacon.exceptions import BeaconError
from beacon.models.report import MODES
from beacon.services.event_bus import event_bus
from beacon.services.recording import RecordingSession
from beacon.services.session_store import SQLiteSessionStore
from beacon.services.templates import get_template
from beacon.services.transcription import create_transcription_source, decode_audio_chunk

logger = logging.getLogger(__name__)
router = APIRouter()


async def _reject(websocket: WebSocket, code: str, message: str) -> None:
    await websocket.send_json({"type": "error", "code": code, "message": message})
    await websocket.close()


@router.websocket("/ws/record/{mode}")
async def record_endpoint(websocket: WebSocket, mode: str, user_id: str | None = None):
    """WebSocket endpoint: audio in, live transcript/checklist/notes out, report on stop."""
    await websocket.accept()
    mode = mode.upper()
    if not user_id:
        await _reject(websocket, "unauthorized", "Missing user_id")
        return
    if mode not in MODES:
        await _reject(websocket, "invalid_mode", f"Unknown mode {mode}")
        return

    async def _safe_send(data: dict) -> None:
        """Send JSON to websocket, logging on failure."""
        try:
            await websocket.send_json(data)
        except Exception:
            logger.debug("WebSocket send failed (client may have disconnected)")

    async def on_update(update: dict) -> None:
        await _safe_send(update)
        if update["type"] == "report_finalized":
            report = update["report"]
            await event_bus.publish(user_id, {
                "type": "report_finalized",
                "report_id": report["id"],
                "mode": report["mode"],
                "summary": report.get("summary", ""),
            })

    store = SQLiteSessionStore(await get_db())
    session = RecordingSession(
        mode,
        user_id,
        store,
        # EMS keeps the longer, non-diarized pause behaviour
        config=PipelineConfig.from_env(legacy=mode == "EMS"),
        source_factory=create_transcription_source,
        listener=on_update,
    )

    recovered = await session.start()
    if recovered is not None:
        await _safe_send({
            "type": "session_recovered",
            "id": recovered.id,
            "transcript": recovered.transcript,
            "notes": recovered.notes,
        })

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type")
            try:
                if msg_type == "audio_chunk":
                    await session.send_audio(decode_audio_chunk(data.get("data", "")))
                elif msg_type == "toggle_consent":
                    approved = await session.toggle_consent(int(data["speaker"]))
                    await _safe_send({
                        "type": "consent_update",
                        "speaker": int(data["speaker"]),
                        "approved": approved,
                    })
                elif msg_type == "toggle_action_item":
                    await session.toggle_action_item(str(data["item_id"]))
                elif msg_type == "stop":
                    template = get_template(data.get("template_id"), mode)
                    await session.stop_and_finalize(template)
                elif msg_type == "discard":
                    deleted = await session.discard()
                    await session.start()
                    await _safe_send({"type": "session_discarded", "id": deleted})
                elif msg_type == "end":
                    break
                else:
                    logger.debug("Ignoring unknown message type %r", msg_type)
            except BeaconError as e:
                logger.info("Recording request failed (%s): %s", e.code, e.message)
                await _safe_send({"type": "error", "code": e.code, "message": e.message})
            except (KeyError, TypeError, ValueError) as e:
                await _safe_send({"type": "error", "code": "bad_request", "message": str(e)})
    except WebSocketDisconnect:
        logger.info("Client disconnected from %s recording", mode)
    except Exception as e:
        logger.error("WebSocket error for %s recording: %s", mode, e)
    finally:
        await session.teardown()


@router.websocket("/ws/reports")
async def reports_ws(websocket: WebSocket, user_id: str | None = None):
    """Live report events (finalized, updated, deleted) for one user."""
    await websocket.accept()
    if not user_id:
        await _reject(websocket, "unauthorized", "Missing user_id")
        return
    queue = event_bus.subscribe(user_id)
    logger.info("Report feed client connected")

    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=10.0)
            except asyncio.TimeoutError:
                event = {"type": "ping"}

            try:
                await websocket.send_json(event)
            except Exception:
                logger.debug("Failed to send event to report feed client")
                break
    except WebSocketDisconnect:
        logger.info("Report feed client disconnected")
    except asyncio.CancelledError:
        pass
    finally:
        event_bus.unsubscribe(user_id, queue)
