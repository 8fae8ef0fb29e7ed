"""
Payroll Reports API Endpoints

GET    /api/payroll/reports/matrix                   - Hours-per-day grid for a month or range
GET    /api/payroll/reports/day-sessions             - Sessions of one staff member on one day
POST   /api/payroll/reports/day-sessions             - Add a session (management PIN)
PATCH  /api/payroll/reports/day-sessions/{id}        - Edit a session (management PIN)
DELETE /api/payroll/reports/day-sessions/{id}        - Delete a session (management PIN)
GET    /api/payroll/reports/day-totals               - Minutes/hours for one staff day
POST   /api/payroll/reports/approve-day              - Approve or revoke a day (management PIN)
POST   /api/payroll/reports/override-and-approve     - Batch edit then approve (management PIN)
GET    /api/payroll/reports/month-status             - Approval/payment status per staff member
PATCH  /api/payroll/reports/month-status             - Mark a month paid/unpaid (management PIN)
GET    /api/payroll/reports/month-summary            - Approved hours and amounts per staff member
POST   /api/payroll/reports/month-summary/paid       - Record a month payment (management PIN)

Every response carries Cache-Control: no-store.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Response, status

from app.api.auth import require_management_pin
from app.api.common import (
    NO_STORE_HEADERS,
    CamelModel,
    fail,
    set_no_store,
)
from app.services.payroll_service import PayrollReportsService, get_payroll_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payroll/reports", tags=["payroll"])


class DaySessionPayload(CamelModel):
    staff_id: int
    work_date: str
    checkin_time: Optional[str] = None
    checkout_time: Optional[str] = None
    editor_staff_id: Optional[int] = None
    note: Optional[str] = None


class DaySessionDeletePayload(CamelModel):
    staff_id: Optional[int] = None
    work_date: Optional[str] = None
    editor_staff_id: Optional[int] = None
    note: Optional[str] = None


class ApproveDayPayload(CamelModel):
    staff_id: int
    work_date: str
    approved: bool = True
    approved_by: Optional[str] = None


class SessionOverride(CamelModel):
    session_id: int
    checkin_time: Optional[str] = None
    checkout_time: Optional[str] = None


class SessionAddition(CamelModel):
    checkin_time: Optional[str] = None
    checkout_time: Optional[str] = None


class OverrideAndApprovePayload(CamelModel):
    staff_id: int
    work_date: str
    overrides: List[SessionOverride] = []
    additions: List[SessionAddition] = []
    deletions: List[int] = []
    editor_staff_id: Optional[int] = None
    note: Optional[str] = None
    approved_by: Optional[str] = None


class MonthPaidPayload(CamelModel):
    staff_id: int
    month: str
    paid: bool
    paid_at: Optional[str] = None
    amount_paid: Optional[float] = None
    reference: Optional[str] = None
    paid_by: Optional[str] = None


class MonthStatusPayload(CamelModel):
    staff_id: int
    month: str
    paid: bool
    paid_at: Optional[str] = None


def _fail(message: str, error: Exception):
    fail(message, error, headers=NO_STORE_HEADERS)


@router.get("/matrix")
async def get_matrix(
    response: Response,
    month: Optional[str] = Query(None, description="YYYY-MM or YYYY-MM-01"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        return await service.get_payroll_matrix(month=month, start=start, end=end)
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo obtener la matriz de asistencia.", e)


@router.get("/day-sessions")
async def list_day_sessions(
    response: Response,
    staff_id: int = Query(..., alias="staffId"),
    work_date: str = Query(..., alias="date"),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        sessions = await service.get_day_sessions(staff_id, work_date)
        return {"sessions": sessions}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudieron obtener las sesiones del día.", e)


@router.post("/day-sessions", status_code=status.HTTP_201_CREATED)
async def create_day_session(
    payload: DaySessionPayload,
    response: Response,
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        session = await service.create_day_session(
            payload.staff_id,
            payload.work_date,
            payload.checkin_time,
            payload.checkout_time,
            editor_staff_id=payload.editor_staff_id,
            note=payload.note,
        )
        return {"session": session}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo crear la sesión.", e)


@router.patch("/day-sessions/{session_id}")
async def update_day_session(
    payload: DaySessionPayload,
    response: Response,
    session_id: int = Path(..., description="Attendance session id"),
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        session = await service.update_day_session(
            session_id,
            payload.staff_id,
            payload.work_date,
            payload.checkin_time,
            payload.checkout_time,
            editor_staff_id=payload.editor_staff_id,
            note=payload.note,
        )
        return {"session": session}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo actualizar la sesión.", e)


@router.delete("/day-sessions/{session_id}")
async def delete_day_session(
    response: Response,
    session_id: int = Path(..., description="Attendance session id"),
    payload: Optional[DaySessionDeletePayload] = Body(None),
    staff_id: Optional[int] = Query(None, alias="staffId"),
    work_date: Optional[str] = Query(None, alias="workDate"),
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    payload = payload or DaySessionDeletePayload()
    staff_id = payload.staff_id if payload.staff_id is not None else staff_id
    work_date = payload.work_date or work_date
    if staff_id is None or not work_date:
        raise HTTPException(
            status_code=400,
            detail="Debes indicar el colaborador y la fecha de la sesión.",
            headers=NO_STORE_HEADERS,
        )
    try:
        await service.delete_day_session(
            session_id, staff_id, work_date, editor_staff_id=payload.editor_staff_id, note=payload.note
        )
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo eliminar la sesión.", e)


@router.get("/day-totals")
async def get_day_totals(
    response: Response,
    staff_id: int = Query(..., alias="staffId"),
    work_date: str = Query(..., alias="date"),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        return await service.get_day_totals(staff_id, work_date)
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudieron obtener los totales del día.", e)


@router.post("/approve-day")
async def approve_day(
    payload: ApproveDayPayload,
    response: Response,
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        result = await service.approve_day(
            payload.staff_id, payload.work_date, approved=payload.approved, approved_by=payload.approved_by
        )
        return {"ok": True, **result}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No pudimos aprobar el día." if payload.approved else "No pudimos revertir la aprobación.", e)


@router.post("/override-and-approve")
async def override_and_approve(
    payload: OverrideAndApprovePayload,
    response: Response,
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        result = await service.override_and_approve(
            payload.staff_id,
            payload.work_date,
            overrides=[override.model_dump(by_alias=True) for override in payload.overrides],
            additions=[addition.model_dump(by_alias=True) for addition in payload.additions],
            deletions=payload.deletions,
            editor_staff_id=payload.editor_staff_id,
            note=payload.note,
            approved_by=payload.approved_by,
        )
        return {"ok": True, **result}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No pudimos aprobar el día.", e)


@router.get("/month-status")
async def get_month_status(
    response: Response,
    month: str = Query(..., description="YYYY-MM"),
    staff_id: Optional[int] = Query(None, alias="staffId"),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        rows = await service.get_month_status(month, staff_id)
        return {"rows": rows}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo obtener el estado del mes.", e)


@router.patch("/month-status")
async def update_month_status(
    payload: MonthStatusPayload,
    response: Response,
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        row = await service.update_month_status(payload.staff_id, payload.month, payload.paid, payload.paid_at)
        return {"row": row}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo actualizar el estado del mes.", e)


@router.get("/month-summary")
async def get_month_summary(
    response: Response,
    month: str = Query(..., description="YYYY-MM or YYYY-MM-01"),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        rows = await service.get_month_summary(month)
        return {"rows": rows}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo obtener el resumen del mes.", e)


@router.post("/month-summary/paid")
async def set_month_paid(
    payload: MonthPaidPayload,
    response: Response,
    _pin: dict = Depends(require_management_pin),
    service: PayrollReportsService = Depends(get_payroll_service),
) -> Dict[str, Any]:
    set_no_store(response)
    try:
        await service.set_month_paid(
            payload.staff_id,
            payload.month,
            payload.paid,
            paid_at=payload.paid_at,
            amount_paid=payload.amount_paid,
            reference=payload.reference,
            paid_by=payload.paid_by,
        )
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        _fail("No se pudo registrar el pago.", e)
