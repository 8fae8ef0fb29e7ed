"""Shared pieces for the API routers"""
import logging
from typing import Dict, NoReturn, Optional

from fastapi import HTTPException, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.services.exceptions import ServiceError

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (and snake_case field names)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def set_no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


def raise_service_error(error: ServiceError, headers: Optional[Dict[str, str]] = None) -> NoReturn:
    raise HTTPException(status_code=error.status_code, detail=error.message, headers=headers)


def raise_internal_error(
    message: str, error: Exception, headers: Optional[Dict[str, str]] = None
) -> NoReturn:
    logger.error(f"{message}: {error}", exc_info=True)
    raise HTTPException(status_code=500, detail=message, headers=headers)


def fail(message: str, error: Exception, headers: Optional[Dict[str, str]] = None) -> NoReturn:
    """Translate a route failure: domain errors keep their status, the rest become 500"""
    if isinstance(error, ServiceError):
        raise_service_error(error, headers=headers)
    raise_internal_error(message, error, headers=headers)
