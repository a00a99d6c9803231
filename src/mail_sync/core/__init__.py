"""Core configuration, logging, errors and shared types."""
