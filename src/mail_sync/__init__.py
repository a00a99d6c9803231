"""Resumable, rate-limit aware mailbox synchronization engine."""

__version__ = "0.1.0"
