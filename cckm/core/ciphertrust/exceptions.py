"""CCKM-specific exceptions for error handling."""
from __future__ import annotations
from typing import Any, Optional

NOT_FOUND_MARKERS = ("NCERRResourceNotFound", "Resource not found")


class CckmError(Exception):
    """Base exception for all CCKM operations."""
    pass


class TransportError(CckmError):
    """Network, authentication or serialization failure. Always fatal."""
    pass


class CipherTrustAPIError(TransportError):
    """HTTP error from the CipherTrust Manager REST API.

    Attributes:
        status_code: HTTP status code
        message: Error body from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")

    @property
    def is_not_found(self) -> bool:
        """True when the remote object does not exist."""
        if self.status_code == 404:
            return True
        return any(marker in (self.message or "") for marker in NOT_FOUND_MARKERS)


class TransitionError(CckmError):
    """Base class for asynchronous state-transition failures.

    Attributes:
        resource_id: Object being transitioned
        target_state: State the driver was waiting for
    """

    def __init__(self, message: str, *, resource_id: str = "", target_state: str = ""):
        self.resource_id = resource_id
        self.target_state = target_state
        super().__init__(message)


class TransitionTimeoutError(TransitionError):
    """Polling budget exhausted before the target state was reached."""

    def __init__(self, attempts: int, *, resource_id: str = "", target_state: str = "", last_state: str = ""):
        self.attempts = attempts
        self.last_state = last_state
        super().__init__(
            f"operation failed after {attempts} attempts: {resource_id or 'object'} did not reach "
            f"{target_state} (last state: {last_state or 'unknown'})",
            resource_id=resource_id,
            target_state=target_state,
        )


class TransitionFailedError(TransitionError):
    """Remote object reported the terminal FAILED connection state."""

    def __init__(self, state: str, *, attempts: int = 0, resource_id: str = "", target_state: str = ""):
        self.state = state
        self.attempts = attempts
        super().__init__(
            f"{resource_id or 'object'} entered {state} while waiting for {target_state}",
            resource_id=resource_id,
            target_state=target_state,
        )


class TransitionCancelledError(TransitionError):
    """Caller cancelled the poll loop between attempts."""
    pass


class ReconcileError(CckmError):
    """Fatal reconciliation failure with a structured context blob.

    Attributes:
        operation: Reconciler step that failed (e.g. "custom_key_store.connect")
        resource_id: Local identifier of the resource, empty before creation
        error: Underlying error text
    """

    def __init__(self, operation: str, resource_id: str, error: Any, *, details: Optional[dict] = None):
        self.operation = operation
        self.resource_id = resource_id or ""
        self.error = str(error)
        self.details = dict(details or {})
        super().__init__(f"{operation} failed for {self.resource_id or '<new>'}: {self.error}")

    @property
    def context(self) -> dict[str, Any]:
        blob = {"operation": self.operation, "resource_id": self.resource_id, "error": self.error}
        blob.update(self.details)
        return blob

    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable error document."""
        return {"message": str(self), "context": self.context}
