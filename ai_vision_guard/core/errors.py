"""
Error taxonomy for the vision guard core.

Every failure surfaced to callers derives from VisionGuardError.
Only AuthorizationRejected is recovered locally (by the executor).
"""

from typing import Optional


class VisionGuardError(Exception):
    """Base class for all failures raised by AI Vision Guard."""


class OperationTimedOut(VisionGuardError):
    """A single network operation exceeded its allotted duration."""
    def __init__(self, timeout: float, message: str = ""):
        self.timeout = timeout
        super().__init__(message or f"Operation timed out after {timeout}s")


class CredentialUnavailable(VisionGuardError):
    """The credential-issuing call failed or returned an unusable response."""


class AuthorizationRejected(VisionGuardError):
    """The server rejected the presented bearer credential (HTTP 401).

    Recoverable: the executor forces a refresh and retries while its
    retry budget allows.
    """
    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Credential rejected: {detail}" if detail else "Credential rejected")


class AuthExhausted(VisionGuardError):
    """Authorization kept failing after the maximum retry count."""
    def __init__(self, attempts: int, detail: str = ""):
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"Authorization failed after {attempts} attempts. HTTP status: 401. Detail: {detail}"
        )


class RequestFailed(VisionGuardError):
    """Non-authorization, non-success response from an endpoint. Never retried."""
    def __init__(self, status_code: Optional[int], detail: str = "", operation: str = "request"):
        self.status_code = status_code
        self.detail = detail
        self.operation = operation
        status = status_code if status_code is not None else "n/a"
        super().__init__(f"{operation} failed. Status: {status}. Detail: {detail}")


class EmptyResult(VisionGuardError):
    """A structurally successful response lacked the expected content."""


class PayloadTooLarge(VisionGuardError):
    """Content rejected locally because it exceeds the byte ceiling."""
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Payload of {size} bytes exceeds the limit of {limit} bytes "
            f"({limit // 1024 // 1024} MiB)"
        )


class DuplicateContentError(VisionGuardError):
    """The backing store's uniqueness constraint rejected a content hash."""
    def __init__(self, content_hash: str):
        self.content_hash = content_hash
        super().__init__(f"Content hash already stored: {content_hash}")


class RecordNotFound(VisionGuardError):
    """No stored record has the requested identifier."""
    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"No stored record with id {record_id}")
