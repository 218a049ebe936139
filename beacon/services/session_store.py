"""Durable session/report records and in-progress recovery.

A record is ``in_progress`` while its recording runs and ``completed`` once
finalized. At most one in-progress record may exist per (user, mode); extra
ones left behind by crashes or reloads are healed on recovery.
"""

import json
import logging
from datetime import UTC, datetime

from pydantic import ValidationError

from beacon.database import DatabaseAdapter
from beacon.exceptions import ItemNotFoundError, ReportInProgressError, SessionNotFoundError
from beacon.models.report import MODES, IncidentReport

logger = logging.getLogger(__name__)

_STATUSES = ("in_progress", "completed")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; unreadable values sort first."""
    if not value:
        return datetime.min.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SessionStore:
    """Repository interface over whatever backend holds the records."""

    async def get(self, report_id: str) -> IncidentReport | None:  # pragma: no cover - interface
        raise NotImplementedError

    async def upsert(self, report: IncidentReport) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, report_id: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete_many(self, report_ids: list[str]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_records(
        self,
        *,
        user_id: str | None = None,
        mode: str | None = None,
        status: str | None = None,
    ) -> list[IncidentReport]:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_owned(self, report_id: str, user_id: str) -> IncidentReport:
        report = await self.get(report_id)
        if report is None or report.user_id != user_id:
            raise SessionNotFoundError(f"Report {report_id} not found")
        return report

    async def recover_in_progress(self, user_id: str, mode: str) -> IncidentReport | None:
        """Return the canonical in-progress record, dropping any duplicates.

        The most recently updated record wins; records of other modes or
        statuses are never touched.
        """
        records = await self.list_records(user_id=user_id, mode=mode, status="in_progress")
        if not records:
            return None
        records.sort(key=lambda r: parse_timestamp(r.timestamp), reverse=True)
        canonical, orphans = records[0], records[1:]
        if orphans:
            logger.warning(
                "Found %d in-progress %s sessions for user %s; keeping %s, dropping %s",
                len(records),
                mode,
                user_id,
                canonical.id,
                [r.id for r in orphans],
            )
            await self.delete_many([r.id for r in orphans])
        return canonical

    async def discard_in_progress(self, user_id: str, mode: str) -> str | None:
        """Remove the canonical in-progress record ("Start New")."""
        canonical = await self.recover_in_progress(user_id, mode)
        if canonical is None:
            return None
        await self.delete(canonical.id)
        logger.info("Discarded in-progress %s session %s", mode, canonical.id)
        return canonical.id

    async def list_history(
        self, user_id: str, mode: str, query: str | None = None
    ) -> list[IncidentReport]:
        """Completed reports for one user and mode, newest first."""
        reports = await self.list_records(user_id=user_id, mode=mode, status="completed")
        if query:
            needle = query.lower()
            reports = [
                r
                for r in reports
                if needle in r.summary.lower()
                or needle in r.category.lower()
                or needle in r.id.lower()
            ]
        reports.sort(key=lambda r: parse_timestamp(r.timestamp), reverse=True)
        return reports

    async def move_action_item(self, report_id: str, user_id: str, item: str) -> IncidentReport:
        """Move one suggested follow-up into actions taken and re-persist.

        Status is left alone; this is the one mutation a completed record allows.
        """
        report = await self.get_owned(report_id, user_id)
        if report.status != "completed":
            # Live checklists are toggled through the recording session instead
            raise ReportInProgressError(f"Report {report_id} has not been finalized")
        if item not in report.action_items:
            raise ItemNotFoundError(f"'{item}' is not an open action item on report {report_id}")
        report.action_items.remove(item)
        report.actions_taken.append(item)
        await self.upsert(report)
        return report


class SQLiteSessionStore(SessionStore):
    def __init__(self, db: DatabaseAdapter) -> None:
        self._db = db

    @staticmethod
    def _row_to_report(row) -> IncidentReport:
        payload: dict = {}
        raw = row["data"]
        if raw:
            try:
                decoded = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Unreadable payload for report %s; treating as empty", row["id"])
            else:
                if isinstance(decoded, dict):
                    payload = decoded
                else:
                    logger.warning("Payload for report %s is not an object; treating as empty", row["id"])

        meta = {
            "id": row["id"],
            "user_id": row["user_id"] or "",
            "mode": row["mode"] if row["mode"] in MODES else "EMS",
            # Unknown status must never be resumed as a live session
            "status": row["status"] if row["status"] in _STATUSES else "completed",
            "timestamp": row["timestamp"] or "",
        }
        try:
            return IncidentReport.model_validate({**payload, **meta})
        except ValidationError as e:
            logger.warning("Invalid payload for report %s; treating as empty: %s", row["id"], e)
            return IncidentReport.model_validate(meta)

    async def get(self, report_id: str) -> IncidentReport | None:
        row = await self._db.fetch_one("SELECT * FROM reports WHERE id = ?", (report_id,))
        if not row:
            return None
        return self._row_to_report(row)

    async def upsert(self, report: IncidentReport) -> None:
        await self._db.execute(
            """INSERT INTO reports (id, user_id, mode, status, timestamp, data)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   user_id = excluded.user_id,
                   mode = excluded.mode,
                   status = excluded.status,
                   timestamp = excluded.timestamp,
                   data = excluded.data""",
            (
                report.id,
                report.user_id,
                report.mode,
                report.status,
                report.timestamp,
                report.model_dump_json(),
            ),
        )
        await self._db.commit()

    async def delete(self, report_id: str) -> bool:
        row = await self._db.fetch_one("SELECT id FROM reports WHERE id = ?", (report_id,))
        if not row:
            return False
        await self._db.execute("DELETE FROM reports WHERE id = ?", (report_id,))
        await self._db.commit()
        return True

    async def delete_many(self, report_ids: list[str]) -> None:
        if not report_ids:
            return
        await self._db.executemany(
            "DELETE FROM reports WHERE id = ?", [(report_id,) for report_id in report_ids]
        )
        await self._db.commit()

    async def list_records(
        self,
        *,
        user_id: str | None = None,
        mode: str | None = None,
        status: str | None = None,
    ) -> list[IncidentReport]:
        clauses: list[str] = []
        params: list[str] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if mode is not None:
            # Legacy rows without a mode count as EMS
            if mode == "EMS":
                clauses.append("(mode = ? OR mode = '' OR mode IS NULL)")
            else:
                clauses.append("mode = ?")
            params.append(mode)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        query = "SELECT * FROM reports"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        rows = await self._db.fetch_all(query, params)
        return [self._row_to_report(row) for row in rows]
