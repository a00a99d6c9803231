"""Nylas API integration."""

from mail_sync.integrations.nylas.client import NylasClient, ProviderApiError
from mail_sync.integrations.nylas.models import (
    MessagePage,
    ProviderAttachment,
    ProviderMessage,
    ProviderParticipant,
    RateLimitInfo,
)
from mail_sync.integrations.nylas.rate_limiter import RateLimiter

__all__ = [
    "MessagePage",
    "NylasClient",
    "ProviderApiError",
    "ProviderAttachment",
    "ProviderMessage",
    "ProviderParticipant",
    "RateLimitInfo",
    "RateLimiter",
]
