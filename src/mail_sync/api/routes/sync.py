"""Sync control and status endpoints."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from mail_sync.core.errors import AccountMissingError
from mail_sync.repositories.email import EmailRepository
from mail_sync.repositories.sync_state import SyncStateRepository
from mail_sync.services.sync_service import StartResult, SyncRuntime, SyncService

# Type alias for session factory
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

router = APIRouter(prefix="/sync", tags=["sync"])
logger = structlog.get_logger(__name__)

# Wired up in app lifespan
_session_factory: SessionFactory | None = None
_runtime: SyncRuntime | None = None
_internal_secret: str | None = None


def set_session_factory(factory: SessionFactory | None) -> None:
    """Set the session factory.

    Args:
        factory: AsyncSession factory to use.
    """
    global _session_factory
    _session_factory = factory


def set_sync_runtime(runtime: SyncRuntime | None) -> None:
    """Set the shared sync runtime.

    Args:
        runtime: Runtime to use.
    """
    global _runtime
    _runtime = runtime


def set_internal_secret(secret: str | None) -> None:
    """Set the secret required by internal endpoints.

    Args:
        secret: Shared secret; None disables internal endpoints.
    """
    global _internal_secret
    _internal_secret = secret


def get_runtime() -> SyncRuntime:
    """Get the sync runtime.

    Raises:
        HTTPException: If the runtime is not configured.
    """
    if _runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not configured",
        )
    return _runtime


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession instance.

    Raises:
        HTTPException: If database not configured.
    """
    if _session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )
    async with _session_factory() as session:
        yield session


async def verify_internal_secret(
    x_internal_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Require the internal secret header.

    Raises:
        HTTPException: 401 if the header is missing or wrong.
    """
    if not _internal_secret or not x_internal_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not hmac.compare_digest(x_internal_secret, _internal_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


SessionDep = Annotated[AsyncSession, Depends(get_session)]
RuntimeDep = Annotated[SyncRuntime, Depends(get_runtime)]


def _build_service(runtime: SyncRuntime, session: AsyncSession) -> SyncService:
    return SyncService(runtime, SyncStateRepository(session), EmailRepository(session))


async def run_sync_in_background(account_id: UUID) -> None:
    """Run an admitted sync with its own session.

    Args:
        account_id: Account UUID.
    """
    runtime = get_runtime()
    if _session_factory is None:
        runtime.admission.release(account_id)
        await logger.aerror("sync_not_run_no_database", account_id=str(account_id))
        return
    async with _session_factory() as session:
        await _build_service(runtime, session).run(account_id)


async def resume_in_background(account_id: UUID) -> None:
    """Start and run a continuation with its own session.

    Used as the in-process continuation runner.

    Args:
        account_id: Account UUID.
    """
    if _session_factory is None:
        await logger.aerror("sync_not_resumed_no_database", account_id=str(account_id))
        return
    async with _session_factory() as session:
        try:
            await _build_service(get_runtime(), session).execute(account_id, resume=True)
        except AccountMissingError:
            await logger.ainfo("continuation_account_deleted", account_id=str(account_id))


class CamelModel(BaseModel):
    """Base model using camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountRequest(CamelModel):
    """Request body naming an account."""

    account_id: UUID = Field(description="Account to act on")


class StartSyncResponse(CamelModel):
    """Response for start and continue requests."""

    success: bool = Field(description="Whether the request was accepted")
    message: str = Field(description="Status message")
    progress: int = Field(description="Current progress percentage")
    queued: bool | None = Field(default=None, description="True if waiting for a free slot")
    sync_status: str = Field(description="Account sync status")


class StopSyncResponse(CamelModel):
    """Response for stop requests."""

    success: bool = Field(description="Whether the stop flag was set")
    message: str = Field(description="Status message")


class SyncStatusResponse(CamelModel):
    """Sync status of an account."""

    sync_status: str
    progress: int
    total_email_count: int
    synced_email_count: int
    last_synced_at: datetime | None = None
    initial_sync_completed: bool
    last_error: str | None = None


class CircuitBreakerResponse(CamelModel):
    """Circuit breaker statistics."""

    provider: str
    state: str
    consecutive_failures: int
    total_failures: int
    total_successes: int
    current_backoff_seconds: float
    open_for_seconds: float | None = None


class QuotaResponse(CamelModel):
    """Provider quota statistics."""

    total_requests: int
    rate_limits_hit: int
    recent_rate_limits: int
    last_quota_remaining: int | None = None
    last_quota_limit: int | None = None


class SyncHealthResponse(SyncStatusResponse):
    """Detailed sync health of an account."""

    continuation_count: int
    retry_count: int
    last_activity_at: datetime | None = None
    folder_counts: dict[str, int]
    circuit_breaker: CircuitBreakerResponse
    quota: QuotaResponse
    health_score: int
    health_status: str


class ResumePendingResponse(CamelModel):
    """Scheduler pickup result."""

    count: int
    account_ids: list[UUID]


def _start_response(result: StartResult) -> StartSyncResponse:
    return StartSyncResponse(
        success=not result.paused,
        message=result.message,
        progress=result.progress,
        queued=True if result.queued else None,
        sync_status=result.status.value,
    )


def _not_found(e: AccountMissingError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post(
    "/start",
    response_model=StartSyncResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_sync(
    data: AccountRequest,
    background_tasks: BackgroundTasks,
    session: SessionDep,
    runtime: RuntimeDep,
) -> StartSyncResponse:
    """Start a sync; the loop runs after the response is sent.

    Idempotent: an account that is already syncing reports its progress.
    """
    service = _build_service(runtime, session)
    try:
        result = await service.start(data.account_id)
    except AccountMissingError as e:
        raise _not_found(e) from e

    if result.started:
        background_tasks.add_task(run_sync_in_background, data.account_id)
    return _start_response(result)


@router.post(
    "/continue",
    response_model=StartSyncResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_internal_secret)],
)
async def continue_sync(
    data: AccountRequest,
    background_tasks: BackgroundTasks,
    session: SessionDep,
    runtime: RuntimeDep,
) -> StartSyncResponse:
    """Resume a sync from its saved cursor (continuation entry)."""
    service = _build_service(runtime, session)
    try:
        result = await service.start(data.account_id, resume=True)
    except AccountMissingError as e:
        raise _not_found(e) from e

    if result.started:
        background_tasks.add_task(run_sync_in_background, data.account_id)
    return _start_response(result)


@router.post("/stop", response_model=StopSyncResponse)
async def stop_sync(
    data: AccountRequest,
    session: SessionDep,
    runtime: RuntimeDep,
) -> StopSyncResponse:
    """Ask a running sync to stop at its next poll."""
    service = _build_service(runtime, session)
    if not await service.stop(data.account_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return StopSyncResponse(success=True, message="Stop requested")


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    session: SessionDep,
    runtime: RuntimeDep,
    account_id: UUID = Query(..., alias="accountId", description="Account to inspect"),
) -> SyncStatusResponse:
    """Get the sync status of an account."""
    service = _build_service(runtime, session)
    try:
        state = await service.get_status(account_id)
    except AccountMissingError as e:
        raise _not_found(e) from e

    return SyncStatusResponse(
        sync_status=state.sync_status.value,
        progress=state.sync_progress,
        total_email_count=state.total_email_count,
        synced_email_count=state.synced_email_count,
        last_synced_at=state.last_synced_at,
        initial_sync_completed=state.initial_sync_completed,
        last_error=state.last_error,
    )


@router.get("/health", response_model=SyncHealthResponse)
async def get_sync_health(
    session: SessionDep,
    runtime: RuntimeDep,
    account_id: UUID = Query(..., alias="accountId", description="Account to inspect"),
) -> SyncHealthResponse:
    """Get status, folder counts, guard statistics and a health score."""
    service = _build_service(runtime, session)
    try:
        health = await service.get_health(account_id)
    except AccountMissingError as e:
        raise _not_found(e) from e

    state = health.state
    circuit = health.circuit
    quota = health.quota
    return SyncHealthResponse(
        sync_status=state.sync_status.value,
        progress=state.sync_progress,
        total_email_count=state.total_email_count,
        synced_email_count=state.synced_email_count,
        last_synced_at=state.last_synced_at,
        initial_sync_completed=state.initial_sync_completed,
        last_error=state.last_error,
        continuation_count=state.continuation_count,
        retry_count=state.retry_count,
        last_activity_at=state.last_activity_at,
        folder_counts=health.folder_counts,
        circuit_breaker=CircuitBreakerResponse(
            provider=circuit.provider,
            state=circuit.state.value,
            consecutive_failures=circuit.consecutive_failures,
            total_failures=circuit.total_failures,
            total_successes=circuit.total_successes,
            current_backoff_seconds=circuit.current_backoff_seconds,
            open_for_seconds=circuit.open_for_seconds,
        ),
        quota=QuotaResponse(
            total_requests=quota.total_requests,
            rate_limits_hit=quota.rate_limits_hit,
            recent_rate_limits=quota.recent_rate_limits,
            last_quota_remaining=quota.last_quota_remaining,
            last_quota_limit=quota.last_quota_limit,
        ),
        health_score=health.score,
        health_status=health.status.value,
    )


@router.post(
    "/resume-pending",
    response_model=ResumePendingResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def resume_pending(
    session: SessionDep,
    runtime: RuntimeDep,
    limit: int = Query(50, ge=1, le=500, description="Maximum accounts to pick up"),
) -> ResumePendingResponse:
    """Re-dispatch paused, queued, pending and abandoned syncs (scheduler hook)."""
    service = _build_service(runtime, session)
    account_ids = await service.resume_pending(limit=limit)
    return ResumePendingResponse(count=len(account_ids), account_ids=account_ids)
