"""Database-backed multi-worker job queue for per-customer campaign workflows."""

__version__ = "0.1.0"
