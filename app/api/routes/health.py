"""
Health API Endpoints

GET /health         - Liveness
GET /api/health/db  - Database round trip with latency
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "academia-admin-api"
VERSION = "1.0.0"


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "service": SERVICE_NAME,
    }


@router.get("/api/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """
    Run SELECT 1 against the database.

    Returns 503 with the error when the database cannot be reached.
    """
    start_time = time.time()
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "error": "No se pudo conectar con la base de datos."},
        )
    latency_ms = (time.time() - start_time) * 1000
    return {"status": "ok", "latency_ms": round(latency_ms, 2)}
