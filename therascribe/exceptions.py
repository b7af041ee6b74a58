"""
Custom Exceptions for TheraScribe
=================================

This module defines a hierarchy of custom exceptions that:

1. **Categorize Errors**: Different exception types for different problems
2. **Carry Context**: Include relevant information for debugging
3. **Enable Recovery**: Let callers tell "try again later" from "this failed"

Exception Hierarchy:
    TheraScribeError (base)
    ├── ValidationError
    ├── ConfigurationError
    ├── ProfileStoreError
    ├── RemoteServiceError
    │   └── TranscriptionFailedError
    ├── TimedOutError
    ├── MalformedGenerationError
    └── TranscriptionNotReadyError
"""

from typing import Optional


class TheraScribeError(Exception):
    """
    Base exception for all TheraScribe errors.

    All custom exceptions inherit from this, allowing code to catch
    all TheraScribe-related errors with a single except clause:

        try:
            await orchestrator.process(audio)
        except TheraScribeError as e:
            logger.error(f"TheraScribe error: {e}")

    Attributes:
        message: Human-readable error description
        details: Additional context (dict for API responses)
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for API responses.

        Returns a structured error the host application can serialize.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Input and Configuration Errors
# =============================================================================

class ValidationError(TheraScribeError):
    """
    Raised when a component receives malformed input.

    Examples: feature vectors of different dimensionality, an enrollment
    window that produced no samples, empty audio. Never retried.
    """

    def __init__(self, message: str, **details):
        super().__init__(message=message, details=details)


class ConfigurationError(TheraScribeError):
    """Raised when there's a configuration problem."""

    def __init__(self, setting_name: str, issue: str):
        super().__init__(
            message=f"Configuration error for '{setting_name}': {issue}",
            details={
                "setting_name": setting_name,
                "issue": issue
            }
        )


class ProfileStoreError(TheraScribeError):
    """Raised when voice profiles cannot be read or written."""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            message=f"Voice profile store {operation} failed: {reason}",
            details={
                "operation": operation,
                "reason": reason
            }
        )


# =============================================================================
# Remote Service Errors
# =============================================================================

class RemoteServiceError(TheraScribeError):
    """
    Raised when a remote service answers with a non-success response
    or cannot be reached at all.

    Attributes:
        service: "transcription" or "generation"
        status_code: Upstream HTTP status (None for transport failures)
        upstream_message: The message the service sent back
    """

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None
    ):
        self.service = service
        self.status_code = status_code
        self.upstream_message = message
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(
            message=f"{service.capitalize()} service error{status}: {message}",
            details={
                "service": service,
                "status_code": status_code,
                "upstream_message": message
            }
        )


class TranscriptionFailedError(RemoteServiceError):
    """Raised when the transcription service reports the job as failed."""

    def __init__(self, job_id: str, detail: str):
        self.job_id = job_id
        self.detail = detail
        super().__init__(
            service="transcription",
            message=f"Transcription job {job_id} failed: {detail}"
        )
        self.details["job_id"] = job_id


class TranscriptionNotReadyError(TheraScribeError):
    """
    Signal that a transcription job has not finished yet.

    Status sources may raise this instead of returning a pending status;
    the poller treats both the same way.
    """

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Transcription {job_id} not ready yet",
            details={"job_id": job_id}
        )


class TimedOutError(TheraScribeError):
    """
    Raised when the poller's attempt budget runs out.

    Unlike TranscriptionFailedError the job may still finish, so callers
    can offer "still processing, try again later".
    """

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(
            message=(
                f"Maximum polling attempts reached ({attempts}). "
                f"Transcription {job_id} timed out."
            ),
            details={
                "job_id": job_id,
                "attempts": attempts,
                "retryable": True
            }
        )


# =============================================================================
# Generation Errors
# =============================================================================

class MalformedGenerationError(TheraScribeError):
    """Raised when generated text cannot be parsed into the report schema."""

    def __init__(self, reason: str, response_preview: str = ""):
        preview = response_preview[:100] + "..." if len(response_preview) > 100 else response_preview
        super().__init__(
            message=f"Failed to parse generated report: {reason}",
            details={
                "reason": reason,
                "response_preview": preview
            }
        )
