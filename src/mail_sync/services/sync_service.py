"""Sync entry points: start, run, status, stop and scheduler pickup."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog

from mail_sync.core.config import Config, SyncSettings
from mail_sync.core.errors import AccountMissingError
from mail_sync.integrations.nylas.client import NylasClient
from mail_sync.repositories.email import EmailRepository
from mail_sync.repositories.sync_state import SyncStateRepository
from mail_sync.schemas.sync import AccountSyncState, AccountSyncUpdate, SyncStatus
from mail_sync.services.admission import AdmissionQueue
from mail_sync.services.attachments import AttachmentExtractor
from mail_sync.services.cancellation import CancellationToken
from mail_sync.services.circuit_breaker import BreakerSnapshot, CircuitBreakerRegistry, CircuitState
from mail_sync.services.continuation import (
    ContinuationDispatcher,
    ContinuationTrigger,
    HandOffResult,
    HttpContinuationDispatcher,
)
from mail_sync.services.deadline import Deadline
from mail_sync.services.fetcher import MessageSource, PageFetcher
from mail_sync.services.health import HealthStatus, calculate_health_score, health_status
from mail_sync.services.message_writer import MessageWriter
from mail_sync.services.progress import compute_progress
from mail_sync.services.quota_monitor import QuotaMonitor, QuotaStats
from mail_sync.services.sync_loop import OutcomeKind, SyncLoop, SyncOutcome

logger = structlog.get_logger(__name__)


@dataclass
class SyncRuntime:
    """Process-wide components shared by every sync.

    Built once per process (API lifespan or CLI invocation); each request
    builds a ``SyncService`` around it with session-bound repositories.
    """

    settings: SyncSettings
    source: MessageSource
    breakers: CircuitBreakerRegistry
    admission: AdmissionQueue
    quota_monitor: QuotaMonitor
    extractor: AttachmentExtractor
    dispatcher: ContinuationDispatcher | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        source: MessageSource | None = None,
        dispatcher: ContinuationDispatcher | None = None,
    ) -> SyncRuntime:
        """Build the runtime from configuration.

        Args:
            config: Application configuration.
            source: Provider client; a Nylas client is created if omitted.
            dispatcher: Continuation dispatcher; the HTTP self-call is used
                when ``SELF_BASE_URL`` and ``INTERNAL_SECRET`` are set.

        Returns:
            SyncRuntime instance.

        Raises:
            ValueError: If no source is given and NYLAS_API_KEY is not set.
        """
        if source is None:
            if not config.nylas_api_key:
                raise ValueError("NYLAS_API_KEY is required")
            source = NylasClient(api_key=config.nylas_api_key, api_uri=config.nylas_api_uri)

        if dispatcher is None and config.has_self_dispatch():
            dispatcher = HttpContinuationDispatcher(
                str(config.self_base_url), str(config.internal_secret)
            )

        return cls(
            settings=config.sync,
            source=source,
            breakers=CircuitBreakerRegistry(config.sync),
            admission=AdmissionQueue(config.sync.max_concurrent_syncs),
            quota_monitor=QuotaMonitor(),
            extractor=AttachmentExtractor(config.attachment_processor_url),
            dispatcher=dispatcher,
        )

    async def close(self) -> None:
        """Release network resources."""
        await self.extractor.close()
        for resource in (self.source, self.dispatcher):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


@dataclass
class StartResult:
    """Result of a start request."""

    started: bool
    message: str
    progress: int
    status: SyncStatus
    queued: bool = False
    paused: bool = False
    outcome: SyncOutcome | None = None


@dataclass
class SyncHealth:
    """Status, storage and guard statistics for one account."""

    state: AccountSyncState
    folder_counts: dict[str, int]
    circuit: BreakerSnapshot
    quota: QuotaStats
    score: int
    status: HealthStatus


class SyncService:
    """Coordinates admission, guards, the sync loop and continuation."""

    def __init__(
        self,
        runtime: SyncRuntime,
        state_repo: SyncStateRepository,
        email_repo: EmailRepository,
    ) -> None:
        """Initialize sync service.

        Args:
            runtime: Shared process-wide components.
            state_repo: Account sync state repository.
            email_repo: Email row repository.
        """
        self.runtime = runtime
        self.settings = runtime.settings
        self.state_repo = state_repo
        self.email_repo = email_repo

    async def _load(self, account_id: UUID) -> AccountSyncState:
        state = await self.state_repo.load(account_id)
        if state is None:
            raise AccountMissingError(f"Account {account_id} not found", account_id)
        return state

    def _is_stuck(self, state: AccountSyncState, now: datetime) -> bool:
        if not state.sync_status.is_in_progress:
            return False
        if self.runtime.admission.is_active(state.id):
            return False
        if state.last_activity_at is None:
            return True
        last_activity = state.last_activity_at
        if last_activity.tzinfo is None:
            last_activity = last_activity.replace(tzinfo=UTC)
        return now - last_activity > timedelta(seconds=self.settings.stuck_threshold_seconds)

    async def start(self, account_id: UUID, resume: bool = False) -> StartResult:
        """Admit a sync for an account.

        Idempotent: an account that is already syncing is left alone and its
        current progress is returned. On success the caller holds an
        admission slot and must call ``run``.

        Args:
            account_id: Account UUID.
            resume: True for continuations and scheduler pickups, which keep
                the operator stop flag and run as ``background_syncing``.

        Returns:
            Start result.

        Raises:
            AccountMissingError: If the account does not exist.
        """
        state = await self._load(account_id)
        now = datetime.now(UTC)

        if self._is_stuck(state, now):
            await logger.awarning(
                "sync_stuck_reset",
                account_id=str(account_id),
                status=state.sync_status.value,
                last_activity_at=state.last_activity_at.isoformat() if state.last_activity_at else None,
            )
            await self.state_repo.save(account_id, AccountSyncUpdate(sync_status=SyncStatus.IDLE))
            state = await self._load(account_id)
        elif self.runtime.admission.is_active(account_id) or (
            state.sync_status.is_in_progress and not resume
        ):
            # a held slot means this process already admitted a run
            return StartResult(
                started=False,
                message="Sync already in progress",
                progress=state.sync_progress,
                status=state.sync_status,
            )

        if resume and state.sync_stopped:
            return StartResult(
                started=False,
                message="Sync stopped by operator",
                progress=state.sync_progress,
                status=state.sync_status,
            )

        if not self.runtime.admission.try_acquire(account_id):
            await self.state_repo.save(
                account_id,
                AccountSyncUpdate(
                    sync_status=SyncStatus.QUEUED,
                    next_retry_at=now + timedelta(seconds=self.settings.queued_retry_seconds),
                ),
            )
            await logger.ainfo("sync_queued", account_id=str(account_id))
            return StartResult(
                started=False,
                message="Sync queued: too many concurrent syncs",
                progress=state.sync_progress,
                status=SyncStatus.QUEUED,
                queued=True,
            )

        try:
            decision = await self.runtime.breakers.get(state.provider).peek()
            if not decision.allowed:
                self.runtime.admission.release(account_id)
                reason = decision.reason or "Circuit open"
                await self.state_repo.save(
                    account_id,
                    AccountSyncUpdate(
                        sync_status=SyncStatus.PAUSED,
                        last_error=reason,
                        next_retry_at=now + timedelta(milliseconds=decision.retry_after_ms),
                    ),
                )
                await logger.awarning("sync_paused_at_start", account_id=str(account_id), reason=reason)
                return StartResult(
                    started=False,
                    message=reason,
                    progress=state.sync_progress,
                    status=SyncStatus.PAUSED,
                    paused=True,
                )

            status = SyncStatus.BACKGROUND_SYNCING if resume else SyncStatus.SYNCING
            changes: dict[str, Any] = {
                "sync_status": status,
                "last_activity_at": now,
                "next_retry_at": None,
            }
            progress = state.sync_progress
            if not resume:
                changes.update(
                    sync_stopped=False,
                    retry_count=0,
                    continuation_count=0,
                    suppress_webhooks=not state.initial_sync_completed,
                )
            if state.sync_status == SyncStatus.COMPLETED or progress >= 100:
                progress = compute_progress(
                    state.synced_email_count,
                    state.total_email_count,
                    self.settings.total_estimate_fallback,
                )
                changes["sync_progress"] = progress
            await self.state_repo.save(account_id, AccountSyncUpdate(**changes))
        except Exception:
            self.runtime.admission.release(account_id)
            raise

        await logger.ainfo(
            "sync_started",
            account_id=str(account_id),
            resume=resume,
            status=status.value,
            cursor_present=state.sync_cursor is not None,
        )
        return StartResult(started=True, message="Sync started", progress=progress, status=status)

    async def run(self, account_id: UUID) -> SyncOutcome:
        """Run the sync loop for an admitted account and hand off if needed.

        The admission slot is released on every exit path, before any
        continuation is dispatched.

        Args:
            account_id: Account UUID.

        Returns:
            Outcome of the loop.
        """
        try:
            state = await self.state_repo.load(account_id)
            if state is None:
                return SyncOutcome(kind=OutcomeKind.ACCOUNT_MISSING)

            deadline = Deadline(self.settings.budget_seconds, self.settings.safety_margin_seconds)
            token = CancellationToken(deadline)
            outcome = await self._build_loop(state).run(state, deadline, token)
        except Exception as e:
            await logger.aexception("sync_run_crashed", account_id=str(account_id), error=str(e))
            raise
        finally:
            self.runtime.admission.release(account_id)

        if outcome.kind == OutcomeKind.CONTINUE:
            await self._continue(account_id)
        return outcome

    async def execute(self, account_id: UUID, resume: bool = False) -> StartResult:
        """Start and run a sync in the current task.

        Args:
            account_id: Account UUID.
            resume: Start as a continuation.

        Returns:
            Start result with the loop outcome attached when it ran.
        """
        result = await self.start(account_id, resume=resume)
        if result.started:
            result.outcome = await self.run(account_id)
        return result

    def _build_loop(self, state: AccountSyncState) -> SyncLoop:
        runtime = self.runtime
        fetcher = PageFetcher(runtime.source, runtime.quota_monitor, self.settings.page_size)
        writer = MessageWriter(self.email_repo, state.id, state.email_address, runtime.extractor)
        return SyncLoop(
            fetcher,
            writer,
            self.state_repo,
            runtime.breakers.get(state.provider),
            settings=self.settings,
            quota_monitor=runtime.quota_monitor,
        )

    async def _continue(self, account_id: UUID) -> HandOffResult | None:
        state = await self.state_repo.load(account_id)
        if state is None:
            return None

        if self.runtime.dispatcher is None:
            await self.state_repo.save(
                account_id,
                AccountSyncUpdate(
                    sync_status=SyncStatus.PENDING_RESUME,
                    next_retry_at=datetime.now(UTC),
                ),
            )
            await logger.ainfo("continuation_left_for_scheduler", account_id=str(account_id))
            return HandOffResult.PENDING_RESUME

        trigger = ContinuationTrigger(self.state_repo, self.runtime.dispatcher, self.settings)
        return await trigger.hand_off(state)

    async def get_status(self, account_id: UUID) -> AccountSyncState:
        """Read an account's sync state.

        Raises:
            AccountMissingError: If the account does not exist.
        """
        return await self._load(account_id)

    async def get_health(self, account_id: UUID) -> SyncHealth:
        """Compute the health report of an account.

        Raises:
            AccountMissingError: If the account does not exist.
        """
        state = await self._load(account_id)
        folder_counts = await self.email_repo.folder_counts(account_id)
        circuit = self.runtime.breakers.get(state.provider).snapshot()
        quota = self.runtime.quota_monitor.stats(state.provider, account_id)
        score = calculate_health_score(
            state,
            circuit_open=circuit.state == CircuitState.OPEN,
            recent_rate_limits=quota.recent_rate_limits,
        )
        return SyncHealth(
            state=state,
            folder_counts=folder_counts,
            circuit=circuit,
            quota=quota,
            score=score,
            status=health_status(score),
        )

    async def stop(self, account_id: UUID) -> bool:
        """Request a running sync to stop.

        The loop notices the flag at its next poll. A new explicit start
        clears it.

        Returns:
            True if the account exists.
        """
        updated = await self.state_repo.save(account_id, AccountSyncUpdate(sync_stopped=True))
        if updated:
            await logger.ainfo("sync_stop_requested", account_id=str(account_id))
        return updated

    async def resume_pending(self, limit: int = 50) -> list[UUID]:
        """Re-dispatch accounts waiting on the scheduler.

        Picks accounts in ``pending_resume``, ``paused`` or ``queued`` whose
        retry time has come, plus abandoned in-progress syncs. With a
        dispatcher each account gets a fresh invocation; without one the
        accounts run one after another in this task.

        Args:
            limit: Maximum accounts per pickup.

        Returns:
            IDs of the accounts that were dispatched or run.
        """
        now = datetime.now(UTC)
        candidates = await self.state_repo.list_resumable(
            now,
            timedelta(seconds=self.settings.stuck_threshold_seconds),
            limit=limit,
        )
        picked: list[UUID] = []
        for state in candidates:
            if self.runtime.admission.is_active(state.id):
                continue
            if self.runtime.dispatcher is not None:
                try:
                    await self.runtime.dispatcher.dispatch(state.id)
                except Exception as e:
                    await logger.awarning(
                        "resume_dispatch_failed", account_id=str(state.id), error=str(e)
                    )
                    continue
            else:
                try:
                    result = await self.execute(state.id, resume=True)
                except AccountMissingError:
                    continue
                if not result.started:
                    continue
            picked.append(state.id)

        await logger.ainfo("resume_pending_done", candidates=len(candidates), picked=len(picked))
        return picked
