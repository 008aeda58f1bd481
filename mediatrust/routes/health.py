"""
Health check endpoint.

Reports liveness plus MongoDB connectivity so callers can tell "API down"
apart from "API up, result cache running in-process only".
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from mediatrust.core import database as db_module
from mediatrust.core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    result_cache: str  # "mongodb" | "memory"
    environment: str
    mock_mode: bool


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    """
    Liveness status of the API and its database connection.

    Healthy (HTTP 200) even when the database is disconnected: analysis
    keeps working with the in-memory result cache.
    """
    db_status = "disconnected"
    try:
        # Access via module reference so tests can patch db_module.db_client
        if db_module.db_client.client is not None:
            await db_module.db_client.client.admin.command("ping")
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version="0.1.0",
        database=db_status,
        result_cache="mongodb" if db_module.get_db() is not None else "memory",
        environment=settings.environment,
        mock_mode=settings.ai_mock_mode,
    )
