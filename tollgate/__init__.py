"""Tollgate: atomic deduplication and rate limiting for telemetry ingestion."""

__version__ = "0.1.0"
