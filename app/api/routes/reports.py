"""
Reporting API Endpoints

GET /api/reports/panel/{tab}                 - Management panel tab (overview, progress, engagement, risk, ops, exams)
GET /api/reports/finance                     - Finance report
GET /api/reports/examenes-y-instructivos     - Exams & instructivos report
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse

from app.api.common import NO_STORE_HEADERS, fail
from app.services.exams_report import ExamsReportService, create_fallback_exams_report, get_exams_report_service
from app.services.finance_report import FinanceReportService, get_finance_report_service
from app.services.panel_gerencial import (
    PANEL_ERROR_MESSAGES,
    PANEL_TABS,
    PanelRequestContext,
    fetch_ops,
    get_panel_context,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/panel/{tab}")
async def get_panel_tab(
    tab: str = Path(..., description="overview, progress, engagement, risk, ops or exams"),
    full_day: bool = Query(False, alias="fullDay", description="Ops tab: show 00-23 instead of 08-20"),
    ctx: PanelRequestContext = Depends(get_panel_context),
):
    """
    Load one management panel tab.

    A failing tab answers 503 with retry=true so the client can offer a retry
    without affecting the other tabs.
    """
    loader = PANEL_TABS.get(tab)
    if loader is None:
        raise HTTPException(status_code=404, detail="Pestaña no encontrada.")

    try:
        if loader is fetch_ops:
            return await fetch_ops(ctx, full_day=full_day)
        return await loader(ctx)
    except Exception as e:
        logger.error(f"Error loading panel tab {tab}: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": PANEL_ERROR_MESSAGES[tab], "retry": True},
        )


@router.get("/finance")
async def get_finance_report(
    service: FinanceReportService = Depends(get_finance_report_service),
) -> Dict[str, Any]:
    try:
        return await service.get_finance_report()
    except Exception as e:
        fail("No se pudo generar el reporte financiero.", e)


@router.get("/examenes-y-instructivos")
async def get_exams_report(
    service: ExamsReportService = Depends(get_exams_report_service),
):
    try:
        report = await service.get_report()
        return JSONResponse(content=report, headers=NO_STORE_HEADERS)
    except Exception as e:
        logger.error(f"Error generating exams report: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=create_fallback_exams_report(),
            headers=NO_STORE_HEADERS,
        )
