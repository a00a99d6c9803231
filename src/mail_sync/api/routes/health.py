"""Liveness and readiness endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from mail_sync.api.database import Database

router = APIRouter(tags=["health"])

_database: Database | None = None


def set_health_database(database: Database | None) -> None:
    """Set the database checked by the readiness check.

    Args:
        database: Connected database, or None.
    """
    global _database
    _database = database


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check."""
    return HealthResponse(status="ok")


@router.get("/ready", response_model=HealthResponse)
async def ready(response: Response) -> HealthResponse:
    """Readiness check: checks database connectivity."""
    if _database is None or not await _database.ping():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="unavailable", database="disconnected")
    return HealthResponse(status="ok", database="connected")
