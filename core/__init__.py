"""
Core utilities and configuration for the catalog ingestion engine.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    retry: Shared exponential-backoff retry utility

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import DecodeError, StoreFatalError
    from core.logging import setup_logging
    from core.retry import RetryPolicy, retry_async
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    "RetryPolicy",
    "retry_async",
    # Exceptions
    "ETLException",
    "RetryableError",
    "NonRetryableError",
    "ExtractionError",
    "FetchError",
    "FetchTransientError",
    "FetchExhaustedError",
    "NotFoundError",
    "UnknownFormatError",
    "DecodeError",
    "LoadError",
    "StoreTransientError",
    "StoreFatalError",
    "CheckpointError",
]
