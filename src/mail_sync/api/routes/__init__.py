"""API route modules."""

from mail_sync.api.routes.health import router as health_router
from mail_sync.api.routes.health import set_health_database
from mail_sync.api.routes.sync import resume_in_background, set_internal_secret, set_sync_runtime
from mail_sync.api.routes.sync import router as sync_router
from mail_sync.api.routes.sync import set_session_factory as set_sync_session

__all__ = [
    "health_router",
    "resume_in_background",
    "set_health_database",
    "set_internal_secret",
    "set_sync_runtime",
    "set_sync_session",
    "sync_router",
]
