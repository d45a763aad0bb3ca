"""Domain errors shared by stages, clients and the worker runtime.

Every error carries a stable machine-readable ``code``. The runtime only
looks at the error family:

- ``RetryableError``: requeued with exponential backoff until attempts run out.
- ``RateLimitError``: retryable, backoff honours ``retry_after`` when given.
- ``UnrecoverableError``: terminal on the first occurrence.

Anything else raised from a stage handler is treated as retryable.
"""
from typing import Optional


class ErrorCode:
    """Stable error codes."""
    NO_TRANSCRIPT_SEGMENTS = "NO_TRANSCRIPT_SEGMENTS"
    AUDIO_TOO_LONG = "AUDIO_TOO_LONG"
    VIDEO_TOO_SHORT = "VIDEO_TOO_SHORT"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    UPSTREAM_SOURCE_MISSING = "UPSTREAM_SOURCE_MISSING"
    UPSTREAM_TRANSCRIPT_MISSING = "UPSTREAM_TRANSCRIPT_MISSING"
    UPSTREAM_SCENES_MISSING = "UPSTREAM_SCENES_MISSING"
    UPSTREAM_RANK_MISSING = "UPSTREAM_RANK_MISSING"
    UPSTREAM_CLIP_MISSING = "UPSTREAM_CLIP_MISSING"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_BAD_RESPONSE = "UPSTREAM_BAD_RESPONSE"
    UPSTREAM_REJECTED = "UPSTREAM_REJECTED"
    TRANSCODE_FAILED = "TRANSCODE_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    NOT_CONNECTED = "NOT_CONNECTED"
    OAUTH_NOT_CONFIGURED = "OAUTH_NOT_CONFIGURED"
    UNAUTHORIZED = "UNAUTHORIZED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    PLATFORM_REJECTED = "PLATFORM_REJECTED"
    RENDER_NO_CLIPS = "RENDER_NO_CLIPS"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    INTERNAL = "INTERNAL"


class PipelineError(Exception):
    """Base class for pipeline errors.

    Attributes:
        code: Stable error code (see ``ErrorCode``)
        message: Human readable description
        retry_after: Optional provider-supplied delay in seconds
    """

    retryable = True

    def __init__(self, code: str, message: str, retry_after: Optional[float] = None):
        self.code = code
        self.message = message
        self.retry_after = retry_after
        super().__init__(f"[{code}] {message}")


class RetryableError(PipelineError):
    """Transient failure: timeouts, 5xx, recoverable subprocess exits."""


class RateLimitError(RetryableError):
    """Quota or rate limit hit upstream."""

    def __init__(self, message: str = "Upstream rate limit reached", retry_after: Optional[float] = None):
        super().__init__(ErrorCode.API_RATE_LIMIT, message, retry_after=retry_after)


class UnrecoverableError(PipelineError):
    """Failure that must not be retried."""

    retryable = False


class MissingArtifactError(UnrecoverableError):
    """A required upstream artifact does not exist."""

    def __init__(self, code: str, key: str):
        self.key = key
        super().__init__(code, f"Required artifact missing: {key}")


class AuthorizationError(UnrecoverableError):
    """Credentials are missing, invalid or expired."""

    def __init__(self, message: str, code: str = ErrorCode.UNAUTHORIZED):
        super().__init__(code, message)


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by a stage handler."""
    if isinstance(exc, PipelineError):
        return exc.retryable
    return True


def error_code(exc: BaseException) -> str:
    """Stable code for any exception."""
    if isinstance(exc, PipelineError):
        return exc.code
    return ErrorCode.INTERNAL
