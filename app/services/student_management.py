"""
Student management

Student list with derived flags, enrollment and removal. The list merges the
management view with the flag snapshot; either relation may be missing in a
given deployment.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from app.database import AsyncSessionLocal
from app.services.exceptions import StudentError
from app.services.row_normalizer import (
    STUDENT_FLAG_COLUMNS,
    adapt_flag_row,
    get_row_value,
    is_feature_not_supported_error,
    is_missing_relation_error,
    is_optional_relation_error,
    is_permission_denied_error,
    query_first_available,
    rows_from_result,
    safe_query,
    strip_accents,
    to_number,
    to_text,
)

logger = logging.getLogger(__name__)

FLAG_RELATIONS = ("public.student_flags_v", "public.student_flags")

NAME_COLUMNS = ("full_name", "student_name", "name")
LEVEL_COLUMNS = ("level", "current_level", "last_level", "student_level")
STATE_COLUMNS = ("state", "status", "student_state")

# Child tables removed before a hard delete, in dependency order
DEPENDENT_TABLES = (
    "public.student_payment_schedule",
    "public.student_notes",
    "public.exam_appointments",
    "public.student_instructivos",
    "public.student_attendance",
    "public.student_flags",
)


def normalize_level_code(value: Any) -> Optional[str]:
    level = to_text(value)
    return level.upper() if level else None


def _row_student_id(row: Dict[str, Any]) -> Optional[int]:
    student_id = int(to_number(get_row_value(row, ("student_id", "id"))))
    return student_id if student_id > 0 else None


def empty_student_entry(student_id: int, full_name: Optional[str]) -> Dict[str, Any]:
    entry = {
        "id": student_id,
        "fullName": (full_name or "").strip(),
        "level": None,
        "state": None,
    }
    entry.update({flag: False for flag in STUDENT_FLAG_COLUMNS})
    return entry


def apply_flags(entry: Dict[str, Any], row: Dict[str, Any]) -> None:
    """Overlay the flags a row knows about; unknown flags keep their value"""
    for flag, value in adapt_flag_row(row).items():
        if value is not None:
            entry[flag] = value


def merge_student_rows(
    management_rows: List[Dict[str, Any]],
    flag_rows: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Merge management rows with the flag snapshot, keyed by student id.

    Flag rows may introduce students the management view does not list.
    Entries without a name are dropped; levels are uppercased.
    """
    entries: Dict[int, Dict[str, Any]] = {}

    for row in management_rows:
        student_id = _row_student_id(row)
        name = to_text(get_row_value(row, NAME_COLUMNS))
        if student_id is None or not name:
            continue
        entry = empty_student_entry(student_id, name)
        entry["level"] = normalize_level_code(get_row_value(row, LEVEL_COLUMNS))
        entry["state"] = to_text(get_row_value(row, STATE_COLUMNS))
        apply_flags(entry, row)
        entries[student_id] = entry

    for row in flag_rows:
        student_id = _row_student_id(row)
        if student_id is None:
            continue
        name = to_text(get_row_value(row, NAME_COLUMNS))
        entry = entries.get(student_id) or empty_student_entry(student_id, name)
        if name:
            entry["fullName"] = name
        level = get_row_value(row, LEVEL_COLUMNS)
        if level is not None:
            entry["level"] = normalize_level_code(level)
        state = get_row_value(row, STATE_COLUMNS)
        if state is not None:
            entry["state"] = to_text(state)
        apply_flags(entry, row)
        entries[student_id] = entry

    return [entry for entry in entries.values() if entry["fullName"]]


def _matches_search(entry: Dict[str, Any], search: str) -> bool:
    needle = strip_accents(search.strip().lower())
    return needle in strip_accents(entry["fullName"].lower())


class StudentManagementService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _refresh(self, concurrent: bool) -> None:
        keyword = "CONCURRENTLY " if concurrent else ""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(text(f"REFRESH MATERIALIZED VIEW {keyword}public.student_flags_v"))

    async def refresh_student_flags(self) -> bool:
        """
        Refresh the flag snapshot.

        Tries a concurrent refresh first and falls back to a plain one where
        the environment does not support it. Returns False when the refresh
        was skipped.
        """
        try:
            await self._refresh(concurrent=True)
            return True
        except Exception as e:
            if not is_feature_not_supported_error(e):
                return self._skip_refresh(e)
        try:
            await self._refresh(concurrent=False)
            return True
        except Exception as e:
            return self._skip_refresh(e)

    @staticmethod
    def _skip_refresh(error: Exception) -> bool:
        if is_missing_relation_error(error):
            logger.debug(f"student_flags_v not present, nothing to refresh: {error}")
        elif is_permission_denied_error(error):
            logger.warning(f"Missing permissions to refresh student_flags_v: {error}")
        elif is_feature_not_supported_error(error):
            logger.warning(f"Refreshing student_flags_v is not supported here, using existing data: {error}")
        else:
            logger.warning(f"Unexpected error refreshing student_flags_v: {error}")
        return False

    async def list_students(self, search: Optional[str] = None, refresh: bool = True) -> List[Dict[str, Any]]:
        if refresh:
            await self.refresh_student_flags()

        async with self.session_factory() as session:
            management_rows = await safe_query(
                session,
                "SELECT * FROM public.student_management_v ORDER BY full_name ASC",
                label="student_management_v",
            )
            flag_rows = await query_first_available(
                session,
                FLAG_RELATIONS,
                lambda relation: f"SELECT * FROM {relation}",
            )

        students = merge_student_rows(management_rows, flag_rows)
        if search and search.strip():
            students = [entry for entry in students if _matches_search(entry, search)]
        return sorted(students, key=lambda entry: strip_accents(entry["fullName"].lower()))

    async def get_student_entry(self, student_id: int) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await safe_query(
                session,
                """
                SELECT *
                FROM public.student_management_v
                WHERE student_id = :student_id OR id = :student_id
                LIMIT 1
                """,
                {"student_id": student_id},
                label="student_management_v",
            )
        merged = merge_student_rows(rows, [])
        return merged[0] if merged else None

    async def create_student(
        self,
        full_name: str,
        planned_level_min: Optional[str] = None,
        planned_level_max: Optional[str] = None,
    ) -> Dict[str, Any]:
        name = (full_name or "").strip()
        if not name:
            raise StudentError(400, "El nombre del estudiante es obligatorio.")

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    text("""
                        INSERT INTO public.students (full_name, planned_level_min, planned_level_max, created_at, updated_at)
                        VALUES (:full_name, :level_min, :level_max, NOW(), NOW())
                        RETURNING id
                    """),
                    {
                        "full_name": name,
                        "level_min": normalize_level_code(planned_level_min),
                        "level_max": normalize_level_code(planned_level_max),
                    },
                )
                rows = rows_from_result(result)
                if not rows:
                    raise StudentError(500, "No se pudo crear el estudiante.")
                student_id = int(rows[0]["id"])

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        text("""
                            INSERT INTO public.student_flags (student_id)
                            VALUES (:student_id)
                            ON CONFLICT (student_id) DO NOTHING
                        """),
                        {"student_id": student_id},
                    )
        except Exception as e:
            if not is_optional_relation_error(e):
                raise
            logger.warning(f"Could not seed flags for student {student_id}: {e}")

        logger.info(f"Created student {student_id}")
        return await self.get_student_entry(student_id) or empty_student_entry(student_id, name)

    async def _find_student(self, session, student_id: int) -> Dict[str, Any]:
        result = await session.execute(
            text("SELECT id, full_name FROM public.students WHERE id = :student_id LIMIT 1"),
            {"student_id": student_id},
        )
        rows = rows_from_result(result)
        if not rows:
            raise StudentError(404, "Estudiante no encontrado.")
        return rows[0]

    async def archive_student(self, student_id: int) -> Dict[str, Any]:
        async with self.session_factory() as session:
            async with session.begin():
                row = await self._find_student(session, student_id)
                await session.execute(
                    text("UPDATE public.students SET archived = true, updated_at = NOW() WHERE id = :student_id"),
                    {"student_id": student_id},
                )
        logger.info(f"Archived student {student_id}")
        return {"id": student_id, "fullName": (row.get("full_name") or "").strip(), "archived": True}

    async def _delete_dependents(self, student_id: int) -> None:
        # One transaction per table: a missing relation must not abort the rest
        for table in DEPENDENT_TABLES:
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        await session.execute(
                            text(f"DELETE FROM {table} WHERE student_id = :student_id"),
                            {"student_id": student_id},
                        )
            except Exception as e:
                if not is_missing_relation_error(e):
                    raise
                logger.debug(f"Skipping {table}: {e}")

    async def delete_student(self, student_id: int, hard: bool = False) -> Dict[str, Any]:
        """
        Remove a student from the active roster.

        Students are archived unless hard=True, in which case every dependent
        row and the student itself are deleted.
        """
        if not hard:
            return await self.archive_student(student_id)

        async with self.session_factory() as session:
            row = await self._find_student(session, student_id)

        await self._delete_dependents(student_id)

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    text("DELETE FROM public.students WHERE id = :student_id RETURNING id"),
                    {"student_id": student_id},
                )
                if not rows_from_result(result):
                    raise StudentError(500, "No se pudo eliminar al estudiante.")

        logger.info(f"Deleted student {student_id}")
        return {"id": student_id, "fullName": (row.get("full_name") or "").strip(), "archived": False}


_student_management_instance: Optional[StudentManagementService] = None


def get_student_management_service() -> StudentManagementService:
    global _student_management_instance
    if _student_management_instance is None:
        _student_management_instance = StudentManagementService()
    return _student_management_instance
