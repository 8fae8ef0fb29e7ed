"""
Student API Endpoints

Student list/enrollment/removal, profile sub-resources (basic details, notes,
exams, instructivos, payment schedule) and the per-student journey, coach
panel and engagement reads.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Response, status

from app.api.common import CamelModel, fail
from app.services.coach_panel import CoachPanelService, get_coach_panel_service
from app.services.lesson_journey import LessonJourneyService, get_lesson_journey_service
from app.services.student_engagement import StudentEngagementService, get_student_engagement_service
from app.services.student_management import StudentManagementService, get_student_management_service
from app.services.student_profile import StudentProfileService, get_student_profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/students", tags=["students"])


class CreateStudentPayload(CamelModel):
    full_name: Optional[str] = None
    planned_level_min: Optional[str] = None
    planned_level_max: Optional[str] = None


class BasicDetailPayload(CamelModel):
    key: str
    value: Any = None


# Roster ----------------------------------------------------------------------


@router.get("")
async def list_students(
    search: Optional[str] = Query(None, description="Accent-insensitive name filter"),
    refresh: bool = Query(True, description="Refresh the flag snapshot before reading"),
    service: StudentManagementService = Depends(get_student_management_service),
) -> Dict[str, Any]:
    try:
        students = await service.list_students(search=search, refresh=refresh)
        return {"students": students}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener la lista de estudiantes.", e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: CreateStudentPayload,
    service: StudentManagementService = Depends(get_student_management_service),
) -> Dict[str, Any]:
    try:
        student = await service.create_student(
            payload.full_name or "", payload.planned_level_min, payload.planned_level_max
        )
        return {"student": student}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo crear el estudiante.", e)


@router.post("/refresh-flags")
async def refresh_flags(
    service: StudentManagementService = Depends(get_student_management_service),
) -> Dict[str, Any]:
    refreshed = await service.refresh_student_flags()
    return {"refreshed": refreshed}


@router.delete("/{student_id}")
async def delete_student(
    student_id: int = Path(..., ge=1),
    hard: bool = Query(False, description="Delete the student and every dependent row"),
    service: StudentManagementService = Depends(get_student_management_service),
) -> Dict[str, Any]:
    try:
        student = await service.delete_student(student_id, hard=hard)
        return {"student": student}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar al estudiante.", e)


# Basic details ---------------------------------------------------------------


@router.get("/{student_id}/basic-details")
async def get_basic_details(
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return await service.get_basic_details(student_id)
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudieron obtener los datos del estudiante.", e)


@router.patch("/{student_id}/basic-details")
async def update_basic_detail(
    payload: BasicDetailPayload,
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return await service.update_basic_detail(student_id, payload.key, payload.value)
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar el dato del estudiante.", e)


# Notes -----------------------------------------------------------------------


@router.get("/{student_id}/notes")
async def list_notes(
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"notes": await service.list_notes(student_id)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudieron obtener las notas.", e)


@router.post("/{student_id}/notes", status_code=status.HTTP_201_CREATED)
async def create_note(
    student_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"note": await service.create_note(student_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo crear la nota.", e)


@router.patch("/{student_id}/notes/{note_id}")
async def update_note(
    student_id: int = Path(..., ge=1),
    note_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"note": await service.update_note(student_id, note_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar la nota.", e)


@router.delete("/{student_id}/notes/{note_id}")
async def delete_note(
    student_id: int = Path(..., ge=1),
    note_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        await service.delete_note(student_id, note_id)
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar la nota.", e)


# Exams -----------------------------------------------------------------------


@router.get("/{student_id}/exams")
async def list_exams(
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"exams": await service.list_exams(student_id)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudieron obtener los exámenes.", e)


@router.post("/{student_id}/exams", status_code=status.HTTP_201_CREATED)
async def create_exam(
    student_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"exam": await service.create_exam(student_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo crear el examen.", e)


@router.patch("/{student_id}/exams/{exam_id}")
async def update_exam(
    student_id: int = Path(..., ge=1),
    exam_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"exam": await service.update_exam(student_id, exam_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar el examen.", e)


@router.delete("/{student_id}/exams/{exam_id}")
async def delete_exam(
    student_id: int = Path(..., ge=1),
    exam_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        await service.delete_exam(student_id, exam_id)
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar el examen.", e)


# Instructivos ----------------------------------------------------------------


@router.get("/{student_id}/instructivos")
async def list_instructivos(
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"instructivos": await service.list_instructivos(student_id)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudieron obtener los instructivos.", e)


@router.post("/{student_id}/instructivos", status_code=status.HTTP_201_CREATED)
async def create_instructivo(
    student_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"instructivo": await service.create_instructivo(student_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo crear el instructivo.", e)


@router.put("/{student_id}/instructivos/{instructivo_id}")
@router.patch("/{student_id}/instructivos/{instructivo_id}")
async def update_instructivo(
    student_id: int = Path(..., ge=1),
    instructivo_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"instructivo": await service.update_instructivo(student_id, instructivo_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar el instructivo.", e)


@router.delete("/{student_id}/instructivos/{instructivo_id}")
async def delete_instructivo(
    student_id: int = Path(..., ge=1),
    instructivo_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        await service.delete_instructivo(student_id, instructivo_id)
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar el instructivo.", e)


# Payment schedule ------------------------------------------------------------


@router.get("/{student_id}/payment-schedule")
async def list_payment_schedule(
    student_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"entries": await service.list_payment_schedule(student_id)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener el cronograma de pagos.", e)


@router.post("/{student_id}/payment-schedule", status_code=status.HTTP_201_CREATED)
async def create_payment_entry(
    student_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"entry": await service.create_payment_entry(student_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo crear el pago programado.", e)


@router.patch("/{student_id}/payment-schedule/{entry_id}")
async def update_payment_entry(
    student_id: int = Path(..., ge=1),
    entry_id: int = Path(..., ge=1),
    payload: Dict[str, Any] = Body(...),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        return {"entry": await service.update_payment_entry(student_id, entry_id, payload)}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo actualizar el pago programado.", e)


@router.delete("/{student_id}/payment-schedule/{entry_id}")
async def delete_payment_entry(
    student_id: int = Path(..., ge=1),
    entry_id: int = Path(..., ge=1),
    service: StudentProfileService = Depends(get_student_profile_service),
) -> Dict[str, Any]:
    try:
        await service.delete_payment_entry(student_id, entry_id)
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo eliminar el pago programado.", e)


# Journey and coach panel -----------------------------------------------------


@router.get("/{student_id}/journey")
async def get_journey(
    student_id: int = Path(..., ge=1),
    service: LessonJourneyService = Depends(get_lesson_journey_service),
) -> Dict[str, Any]:
    try:
        return await service.get_journey(student_id)
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener el recorrido del estudiante.", e)


@router.get("/{student_id}/plan/lessons")
async def get_plan_lessons(
    student_id: int = Path(..., ge=1),
    service: LessonJourneyService = Depends(get_lesson_journey_service),
) -> Dict[str, Any]:
    try:
        return await service.get_plan_lessons(student_id)
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener el plan de lecciones.", e)


@router.get("/{student_id}/coach-panel")
async def get_coach_panel(
    student_id: int = Path(..., ge=1),
    service: CoachPanelService = Depends(get_coach_panel_service),
) -> Dict[str, Any]:
    # Unavailable data comes back as an empty panel with fallback=true
    return await service.get_coach_panel(student_id)


# Engagement ------------------------------------------------------------------

ENGAGEMENT_CACHE_CONTROL = "private, max-age=60"


@router.get("/{student_id}/engagement/lei-trend")
async def get_lei_trend(
    response: Response,
    student_id: int = Path(..., ge=1),
    days: Optional[str] = Query(None, description="Window in days, 1-180 (default 30)"),
    service: StudentEngagementService = Depends(get_student_engagement_service),
) -> Dict[str, Any]:
    try:
        trend = await service.get_lei_trend(student_id, days)
        response.headers["Cache-Control"] = ENGAGEMENT_CACHE_CONTROL
        return {"trend": trend}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener la tendencia de eficiencia.", e)


@router.get("/{student_id}/engagement/heatmap")
async def get_engagement_heatmap(
    response: Response,
    student_id: int = Path(..., ge=1),
    days: Optional[str] = Query(None, description="Window in days, 1-180 (default 30)"),
    service: StudentEngagementService = Depends(get_student_engagement_service),
) -> Dict[str, Any]:
    try:
        heatmap = await service.get_engagement_heatmap(student_id, days)
        response.headers["Cache-Control"] = ENGAGEMENT_CACHE_CONTROL
        return {"heatmap": heatmap}
    except HTTPException:
        raise
    except Exception as e:
        fail("No se pudo obtener el mapa de calor.", e)
