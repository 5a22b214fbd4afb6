"""Shared plumbing for the per-resource reconcilers."""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from cckm import audit
from ..ciphertrust.client import CipherTrustClient
from ..ciphertrust.endpoints import object_path
from ..ciphertrust.exceptions import CckmError, CipherTrustAPIError, ReconcileError
from ..models import ObservedState, ReconcileResult, RemoteOperation

logger = logging.getLogger(__name__)


class Reconciler:
    """Base class: gateway access, audited mutations and error wrapping.

    Subclasses set `resource_type` (also the log tag and audit resource type)
    and `collection`, and implement create/read/update/delete.
    """
    resource_type = ""
    collection = ""

    def __init__(self, client: CipherTrustClient):
        """Initialize reconciler.

        Args:
            client: Authenticated CipherTrust Manager client
        """
        self.client = client

    @classmethod
    def from_settings(cls, client: CipherTrustClient, cfg) -> "Reconciler":
        """Build a reconciler tuned by a CckmConfig (see `load_settings`)."""
        return cls(client)

    @property
    def _tag(self) -> str:
        return f"[{self.resource_type.replace('aws_', '', 1)}]"

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────
    def fetch(self, object_id: str, collection: Optional[str] = None) -> ObservedState:
        """Fresh snapshot of one object. Errors propagate."""
        return ObservedState.from_document(self.client.get(object_id, collection or self.collection))

    def fetch_or_none(self, object_id: str, collection: Optional[str] = None) -> Optional[ObservedState]:
        """Fresh snapshot, or None when the object does not exist."""
        try:
            return self.fetch(object_id, collection)
        except CipherTrustAPIError as e:
            if e.is_not_found:
                logger.info(f"{self._tag} {object_id} not found")
                return None
            raise

    def read(self, resource_id: str) -> ReconcileResult:
        """Fetch by id; a missing object is reported absent, not as an error."""
        with self.reconciling("read", resource_id):
            state = self.fetch_or_none(resource_id)
        return ReconcileResult(resource_id=resource_id, state=state)

    # ─────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────
    def apply(self, operation: RemoteOperation, result: ReconcileResult, *, event_type: str = "") -> Any:
        """Issue one remote operation, record it and audit it.

        Returns:
            Decoded response document (raw text for deletes)
        """
        event = event_type or operation.name.replace("-", "_")
        logger.info(f"{self._tag} {operation.name} {operation.resource_id or operation.path}")
        try:
            if operation.method == "post":
                response = self.client.post(operation.path, operation.payload)
            elif operation.method == "update":
                response = self.client.update(operation.path, operation.payload or {})
            elif operation.method == "delete":
                response = self.client.delete(operation.path)
            else:
                raise ValueError(f"Unsupported gateway method: {operation.method}")
        except CckmError as e:
            audit.safe_log_event(
                event, self.resource_type, result.resource_id or operation.resource_id,
                details={"operation": operation.name, "error": str(e)}, success=False,
            )
            raise
        result.applied.append(operation)
        audit.safe_log_event(
            event, self.resource_type, result.resource_id or operation.resource_id,
            details={"operation": operation.name},
        )
        return response

    def best_effort(self, operation: RemoteOperation, result: ReconcileResult, summary: str) -> Any:
        """Apply a follow-up step; a failure becomes a warning on the result."""
        try:
            return self.apply(operation, result)
        except CckmError as e:
            logger.warning(f"{self._tag} {summary}: {e}")
            result.warn(summary, category="partial_apply", operation=operation.name, error=str(e))
            return None

    def delete_object(self, object_id: str, result: ReconcileResult) -> None:
        """DELETE `{collection}/{id}`; a missing object is success with a warning."""
        operation = RemoteOperation("delete", "delete", object_path(self.collection, object_id), resource_id=object_id)
        try:
            self.apply(operation, result, event_type="delete")
        except CipherTrustAPIError as e:
            if not e.is_not_found:
                raise
            logger.warning(f"{self._tag} {object_id} already gone")
            result.warn(f"{self.resource_type} no longer exists", category="conflict", id=object_id, error=e.message)

    @contextmanager
    def reconciling(self, operation: str, resource_id: str = "") -> Iterator[None]:
        """Wrap fatal gateway errors in a ReconcileError with context."""
        try:
            yield
        except ReconcileError:
            raise
        except CckmError as e:
            logger.error(f"{self._tag} {operation} failed for {resource_id or '<new>'}: {e}")
            raise ReconcileError(f"{self.resource_type}.{operation}", resource_id, e) from e
