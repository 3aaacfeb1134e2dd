"""
Custom exceptions for the league import pipeline with structured error context.

This module provides the exception hierarchy used by the import orchestrator,
the sync planner, the provider client and the integrity tooling. Each
exception carries context information for logging and for the error lists
persisted on import jobs.

Exception Hierarchy:
    ImportPipelineError (base)
    ├── ProviderError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── AuthenticationError
    │   └── ResourceNotFoundError
    ├── CredentialsError
    ├── TransformationError
    │   └── SeasonValidationError
    ├── LoadError
    │   └── DatabaseError
    ├── ImportClaimError
    ├── InvalidTransitionError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any, List
from datetime import datetime


class ImportPipelineError(Exception):
    """
    Base exception for all import pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (league, season, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ImportPipelineError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ImportPipelineError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Structurally broken season payloads
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(ImportPipelineError):
    """
    Base exception for fantasy provider (ESPN) request failures.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - provider_league_id / season
        - retry_count: Number of retries attempted
    """
    pass


class NetworkError(RetryableError, ProviderError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, ProviderError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ProviderError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, ProviderError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


class CredentialsError(NonRetryableError):
    """
    Raised when no provider credentials can be resolved for a league.

    This is the one condition that aborts a whole import job.
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ImportPipelineError):
    """Base exception for payload transformation failures."""
    pass


class SeasonValidationError(NonRetryableError, TransformationError):
    """
    Raised when a season payload fails the pre-storage gate.

    Attributes:
        errors: Hard validation errors that blocked storage
        warnings: Non-blocking warnings collected alongside
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context)
        self.errors = errors or []
        self.warnings = warnings or []
        self.context["validation_errors"] = self.errors


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ImportPipelineError):
    """Base exception for persistence failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (INSERT, UPDATE, UPSERT)
        - table_name: Name of the table
    """
    pass


# ============================================================================
# Job Lifecycle Errors
# ============================================================================

class ImportClaimError(ImportPipelineError):
    """Raised when an import job is already leased by another runner."""
    pass


class InvalidTransitionError(ImportPipelineError):
    """Raised when a season checkpoint would regress without a forced re-import."""
    pass
