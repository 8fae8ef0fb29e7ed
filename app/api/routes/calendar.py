"""
Administration calendar

GET    /api/administracion/calendario/events?start&end&kind&status&studentId - Exams and activities
GET    /api/administracion/calendario/exams?start&end - Exam appointments in a date range
POST   /api/administracion/calendario/activities - Create an activity
PATCH  /api/administracion/calendario/activities/{activity_id} - Update an activity
DELETE /api/administracion/calendario/activities/{activity_id} - Delete an activity
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from app.api.common import fail
from app.services.academy_calendar import CalendarService, get_calendar_service
from app.services.student_profile import StudentProfileService, get_student_profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/administracion/calendario", tags=["calendar"])


@router.get("/events")
async def list_calendar_events(
    start: Optional[str] = Query(None, description="YYYY-MM-DD or ISO timestamp"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD (inclusive) or ISO timestamp"),
    kind: Optional[str] = Query(None, description="exam/examen or activity/actividad"),
    exam_status: Optional[str] = Query(None, alias="status", description="Exam status; implies kind=exam"),
    student_id: Optional[str] = Query(None, alias="studentId", description="Student filter; implies kind=exam"),
    service: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    try:
        events = await service.list_events(start, end, kind=kind, status=exam_status, student_id=student_id)
        return {"events": events}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo consultar el calendario.", e)


@router.get("/exams")
async def list_calendar_exams(
    start: Optional[str] = Query(None, description="YYYY-MM-DD or ISO timestamp"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD (inclusive) or ISO timestamp"),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        exams = await service.list_calendar_exams(start, end)
        return {"exams": exams}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener el calendario de exámenes.", e)


@router.post("/activities", status_code=status.HTTP_201_CREATED)
async def create_activity(
    payload: Dict[str, Any] = Body(...),
    service: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    try:
        activity = await service.create_activity(payload)
        return {"id": activity["id"], "activity": activity}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo registrar la actividad.", e)


@router.patch("/activities/{activity_id}")
async def update_activity(
    activity_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    try:
        activity = await service.update_activity(activity_id, payload)
        return {"ok": True, "activity": activity}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar la actividad.", e)


@router.delete("/activities/{activity_id}")
async def delete_activity(
    activity_id: int = Path(..., ge=1),
    service: CalendarService = Depends(get_calendar_service),
) -> Dict[str, Any]:
    try:
        await service.delete_activity(activity_id)
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar la actividad.", e)
