"""Sync engine services."""

from mail_sync.services.admission import AdmissionQueue
from mail_sync.services.attachments import AttachmentExtractor
from mail_sync.services.cancellation import CancellationToken, CancelReason, StopSignalPoller
from mail_sync.services.circuit_breaker import (
    BreakerSnapshot,
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    GuardDecision,
)
from mail_sync.services.continuation import (
    ContinuationTrigger,
    HandOffResult,
    HttpContinuationDispatcher,
    LocalContinuationDispatcher,
)
from mail_sync.services.deadline import Deadline
from mail_sync.services.fetcher import PageFetcher
from mail_sync.services.folders import (
    assign_folder,
    normalize_folder_to_canonical,
    validate_folder_assignment,
)
from mail_sync.services.health import HealthStatus, calculate_health_score, health_status
from mail_sync.services.message_writer import MessageWriter, WriteResult
from mail_sync.services.normalizer import normalize_message, sanitize_text
from mail_sync.services.progress import ProgressTracker, compute_progress
from mail_sync.services.quota_monitor import QuotaMonitor, QuotaStats
from mail_sync.services.retry import BackoffPolicy, ErrorClass, RetryController, classify_error
from mail_sync.services.sync_loop import Checkpoint, OutcomeKind, SyncLoop, SyncOutcome
from mail_sync.services.sync_service import StartResult, SyncHealth, SyncRuntime, SyncService

__all__ = [
    "AdmissionQueue",
    "AttachmentExtractor",
    "BackoffPolicy",
    "BreakerSnapshot",
    "CancelReason",
    "CancellationToken",
    "Checkpoint",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ContinuationTrigger",
    "Deadline",
    "ErrorClass",
    "GuardDecision",
    "HandOffResult",
    "HealthStatus",
    "HttpContinuationDispatcher",
    "LocalContinuationDispatcher",
    "MessageWriter",
    "OutcomeKind",
    "PageFetcher",
    "ProgressTracker",
    "QuotaMonitor",
    "QuotaStats",
    "RetryController",
    "StartResult",
    "StopSignalPoller",
    "SyncHealth",
    "SyncLoop",
    "SyncOutcome",
    "SyncRuntime",
    "SyncService",
    "WriteResult",
    "assign_folder",
    "calculate_health_score",
    "classify_error",
    "compute_progress",
    "health_status",
    "normalize_folder_to_canonical",
    "normalize_message",
    "sanitize_text",
    "validate_folder_assignment",
]
