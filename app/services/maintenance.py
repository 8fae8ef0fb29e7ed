"""
Nightly maintenance

Closes attendance sessions left open past the academy's closing time and
refreshes the reporting materialized views. Runs from the scheduler and from
the token-protected maintenance endpoint; each local day is recorded in
public.auto_checkout_runs so a second run the same day is skipped unless forced.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.payroll_timezone import TIMEZONE, local_midnight, today_local
from app.services.row_normalizer import (
    is_permission_denied_error,
    normalize_field_value,
    rows_from_result,
    to_number,
    to_text,
)

logger = logging.getLogger(__name__)

ATTENDANCE_TABLES = ("public.student_attendance", "public.staff_attendance")
AUTO_CHECKOUT_LOCAL_TIME = "20 hours 30 minutes"

RUN_STATUS_SUCCESS = "success"
RUN_STATUS_SKIPPED = "skipped"
RUN_STATUS_ERROR = "error"


def build_close_sessions_sql(table: str) -> str:
    # checkin_time is timestamptz: take its local day, add 20:30, convert back
    closing = (
        f"((date_trunc('day', t.checkin_time AT TIME ZONE '{TIMEZONE}') "
        f"+ INTERVAL '{AUTO_CHECKOUT_LOCAL_TIME}') AT TIME ZONE '{TIMEZONE}')"
    )
    return f"""
        UPDATE {table} AS t
        SET checkout_time = {closing}
        WHERE t.checkout_time IS NULL
          AND now() >= {closing}
        RETURNING t.id
    """


def adapt_run_row(row: Dict[str, Any]) -> Dict[str, Any]:
    status = (to_text(row.get("status")) or RUN_STATUS_SUCCESS).lower()
    if status not in (RUN_STATUS_SUCCESS, RUN_STATUS_ERROR):
        status = RUN_STATUS_SKIPPED
    return {
        "runDate": normalize_field_value(row.get("run_date"), "date"),
        "executedAt": normalize_field_value(row.get("executed_at"), "datetime"),
        "studentsClosed": int(to_number(row.get("students_closed"))),
        "staffClosed": int(to_number(row.get("staff_closed"))),
        "status": status,
        "attempts": max(int(to_number(row.get("run_attempts"))), 0),
        "message": to_text(row.get("message")),
        "alreadyRan": status == RUN_STATUS_SUCCESS,
    }


class MaintenanceService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def close_expired_sessions(self, table: str) -> int:
        """Close open rows of an attendance table at 20:30 local on their check-in day"""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(text(build_close_sessions_sql(table)))
                closed = len(rows_from_result(result))
        if closed:
            logger.info(f"Auto-checkout closed {closed} open sessions in {table}")
        return closed

    async def safely_close_expired_sessions(self, table: str) -> int:
        try:
            return await self.close_expired_sessions(table)
        except Exception as e:
            if is_permission_denied_error(e):
                logger.warning(f"Skipping auto-checkout for {table}, missing permissions: {e}")
                return 0
            raise

    async def refresh_materialized_views(self) -> str:
        logger.info("Starting MV refresh using mart.refresh_all_mvs()")
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(text("SELECT mart.refresh_all_mvs()"))
        refreshed_at = datetime.now(timezone.utc).isoformat()
        logger.info(f"MV refresh completed at {refreshed_at}")
        return refreshed_at

    async def _load_run(self, run_date: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT run_date, executed_at, students_closed, staff_closed, status, message, run_attempts
                    FROM public.auto_checkout_runs
                    WHERE run_date = CAST(:run_date AS date)
                    LIMIT 1
                """),
                {"run_date": local_midnight(run_date).date()},
            )
            rows = rows_from_result(result)
        return rows[0] if rows else None

    async def _record_run(
        self,
        run_date: str,
        students_closed: int,
        staff_closed: int,
        status: str,
        message: str,
        attempts: int,
    ) -> Dict[str, Any]:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    text("""
                        INSERT INTO public.auto_checkout_runs (
                            run_date, executed_at, students_closed, staff_closed, status, message, run_attempts
                        )
                        VALUES (
                            CAST(:run_date AS date), NOW(), :students_closed, :staff_closed,
                            :status, :message, :attempts
                        )
                        ON CONFLICT (run_date) DO UPDATE SET
                            executed_at = excluded.executed_at,
                            students_closed = excluded.students_closed,
                            staff_closed = excluded.staff_closed,
                            status = excluded.status,
                            message = excluded.message,
                            run_attempts = excluded.run_attempts
                        RETURNING run_date, executed_at, students_closed, staff_closed, status, message, run_attempts
                    """),
                    {
                        "run_date": local_midnight(run_date).date(),
                        "students_closed": students_closed,
                        "staff_closed": staff_closed,
                        "status": status,
                        "message": message,
                        "attempts": attempts,
                    },
                )
                rows = rows_from_result(result)
        return adapt_run_row(rows[0]) if rows else adapt_run_row({
            "run_date": run_date,
            "students_closed": students_closed,
            "staff_closed": staff_closed,
            "status": status,
            "message": message,
            "run_attempts": attempts,
        })

    async def run_auto_checkout(self, force: bool = False) -> Dict[str, Any]:
        """
        Close expired student and staff sessions once per local day.

        Args:
            force: Run again even when today's run already succeeded

        Returns:
            Run record (runDate, studentsClosed, staffClosed, status, attempts, message, alreadyRan)
        """
        run_date = today_local()
        existing = await self._load_run(run_date)
        if existing and not force and (to_text(existing.get("status")) or "").lower() == RUN_STATUS_SUCCESS:
            logger.info(f"Auto-checkout already ran for {run_date}, skipping")
            return {**adapt_run_row(existing), "status": RUN_STATUS_SKIPPED, "alreadyRan": True}

        attempts = int(to_number((existing or {}).get("run_attempts"))) + 1
        try:
            students_closed = await self.safely_close_expired_sessions(ATTENDANCE_TABLES[0])
            staff_closed = await self.safely_close_expired_sessions(ATTENDANCE_TABLES[1])
        except Exception as e:
            logger.error(f"Auto-checkout failed for {run_date}: {e}", exc_info=True)
            record = await self._record_run(
                run_date,
                int(to_number((existing or {}).get("students_closed"))),
                int(to_number((existing or {}).get("staff_closed"))),
                RUN_STATUS_ERROR,
                str(e) or "Error desconocido durante el cierre automático.",
                attempts,
            )
            return {**record, "status": RUN_STATUS_ERROR, "alreadyRan": False}

        message = (
            f"Cierre automático diario completado ({students_closed} estudiantes, {staff_closed} staff)."
        )
        record = await self._record_run(
            run_date, students_closed, staff_closed, RUN_STATUS_SUCCESS, message, attempts
        )
        return {
            **record,
            "studentsClosed": students_closed,
            "staffClosed": staff_closed,
            "status": RUN_STATUS_SUCCESS,
            "alreadyRan": False,
        }

    async def run_nightly_maintenance(self, force: bool = False) -> Dict[str, Any]:
        logger.info("Starting nightly maintenance")
        auto_checkout = await self.run_auto_checkout(force=force)
        refreshed_at = await self.refresh_materialized_views()
        return {
            "success": auto_checkout["status"] != RUN_STATUS_ERROR,
            "autoCheckout": {
                "studentsClosed": auto_checkout["studentsClosed"],
                "staffClosed": auto_checkout["staffClosed"],
                "status": auto_checkout["status"],
                "alreadyRan": auto_checkout["alreadyRan"],
            },
            "mvRefresh": {"completedAt": refreshed_at},
        }


_maintenance_instance: Optional[MaintenanceService] = None


def get_maintenance_service() -> MaintenanceService:
    global _maintenance_instance
    if _maintenance_instance is None:
        _maintenance_instance = MaintenanceService()
    return _maintenance_instance
