"""
Core utilities and configuration for the league history import service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session factory
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import CredentialsError, NetworkError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "ImportPipelineError",
    "ProviderError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "CredentialsError",
    "TransformationError",
    "SeasonValidationError",
    "LoadError",
    "DatabaseError",
    "ImportClaimError",
    "InvalidTransitionError",
    "RetryableError",
    "NonRetryableError",
]
