import logging

from fastapi import APIRouter, Depends, HTTPException

from beacon.dependencies import get_session_store, get_user_id
from beacon.exceptions import ItemNotFoundError, ReportInProgressError, SessionNotFoundError
from beacon.models.report import ActionTakenMove, IncidentReport, ReportListItem, ReportMode
from beacon.services.event_bus import event_bus
from beacon.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


def _list_item(report: IncidentReport) -> ReportListItem:
    return ReportListItem(
        id=report.id,
        mode=report.mode,
        status=report.status,
        timestamp=report.timestamp,
        category=report.category,
        summary=report.summary,
        urgency=report.urgency,
    )


@router.get("/reports", response_model=list[ReportListItem])
async def list_reports(
    mode: ReportMode = "EMS",
    q: str | None = None,
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    """Completed reports for the caller, newest first."""
    reports = await store.list_history(user_id, mode, q)
    return [_list_item(r) for r in reports]


@router.get("/reports/{report_id}")
async def get_report(
    report_id: str,
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    try:
        report = await store.get_owned(report_id, user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    return report.model_dump()


@router.delete("/reports/{report_id}")
async def delete_report(
    report_id: str,
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    try:
        await store.get_owned(report_id, user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    await store.delete(report_id)
    logger.info("Deleted report %s", report_id)
    await event_bus.publish(user_id, {"type": "report_deleted", "report_id": report_id})
    return {"deleted": report_id}


@router.post("/reports/{report_id}/actions-taken")
async def move_action_item(
    report_id: str,
    body: ActionTakenMove,
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    """Mark one suggested follow-up as done after the fact."""
    try:
        report = await store.move_action_item(report_id, user_id, body.item)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ReportInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)
    await event_bus.publish(
        user_id, {"type": "report_updated", "report": _list_item(report).model_dump()}
    )
    return report.model_dump()


@router.get("/sessions/active")
async def get_active_session(
    mode: ReportMode = "EMS",
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    """The canonical in-progress record, after healing duplicates. Null when none."""
    report = await store.recover_in_progress(user_id, mode)
    return report.model_dump() if report else None


@router.delete("/sessions/active")
async def discard_active_session(
    mode: ReportMode = "EMS",
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_session_store),
):
    deleted = await store.discard_in_progress(user_id, mode)
    return {"deleted": deleted}
