"""HTTP API for the sync engine."""
