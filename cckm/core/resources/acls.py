"""ACL reconciler for AWS KMS containers.

The container ACL list is a single server-side document. Every change is a
read-modify-write (fetch the KMS, diff the subject's actions, post
update-acls), so it runs inside the per-container critical section of
`acl_locks`.
"""
from __future__ import annotations
import logging
from typing import Optional

from ..ciphertrust.endpoints import URL_AWS_KMS
from ..ciphertrust.exceptions import CckmError, CipherTrustAPIError
from ..delta import acl_delta, acl_operations, expand_actions, observed_acl_actions
from ..desired import AclConfig
from ..identity import decode_acl_id, encode_acl_id
from ..locks import LockRegistry, acl_lock_key, acl_locks
from ..models import ObservedState, ReconcileResult
from .base import Reconciler

logger = logging.getLogger(__name__)


def acl_document(kms_id: str, subject_type: str, subject: str, actions) -> ObservedState:
    """Projection of one subject's ACL entry."""
    field_name = "user_id" if subject_type == "user" else "group"
    return ObservedState.from_document({
        "kms_id": kms_id,
        field_name: subject,
        "actions": sorted(actions),
    })


class AclReconciler(Reconciler):
    """Grant and revoke container permissions for one user or group."""
    resource_type = "aws_acl"
    collection = URL_AWS_KMS

    def __init__(self, client, *, locks: Optional[LockRegistry] = None):
        super().__init__(client)
        self.locks = locks or acl_locks

    def create(self, desired: AclConfig) -> ReconcileResult:
        desired.validate()
        return self._converge("create", desired.kms_id, desired.subject_type, desired.subject, desired.actions)

    def update(self, desired: AclConfig, prior: Optional[AclConfig] = None) -> ReconcileResult:
        desired.validate()
        return self._converge("update", desired.kms_id, desired.subject_type, desired.subject, desired.actions)

    def delete(self, prior: AclConfig) -> ReconcileResult:
        """Revoke every action of the subject; a missing KMS is not an error."""
        result = self._converge(
            "delete", prior.kms_id, prior.subject_type, prior.subject, frozenset(), ignore_not_found=True
        )
        result.state = None
        return result

    def read(self, resource_id: str) -> ReconcileResult:
        """Current actions of the subject.

        A KMS that cannot be fetched leaves the ACL unverified: the result
        carries a warning instead of raising.
        """
        kms_id, subject_type, subject = decode_acl_id(resource_id)
        result = ReconcileResult(resource_id=resource_id)
        try:
            kms_state = self.fetch_or_none(kms_id)
        except CckmError as e:
            logger.warning(f"[acl] Unable to verify {resource_id}: {e}")
            result.warn("ACL could not be verified", category="unverified", kms_id=kms_id, error=str(e))
            return result
        if kms_state is None:
            return result
        actions = observed_acl_actions(kms_state, subject_type, subject)
        if actions:
            result.state = acl_document(kms_id, subject_type, subject, actions)
        return result

    def _converge(
        self,
        step: str,
        kms_id: str,
        subject_type: str,
        subject: str,
        actions,
        *,
        ignore_not_found: bool = False,
    ) -> ReconcileResult:
        """Drive the subject's actions on `kms_id` to exactly `actions`."""
        if subject_type == "user":
            resource_id = encode_acl_id(kms_id, user_id=subject)
        else:
            resource_id = encode_acl_id(kms_id, group=subject)
        result = ReconcileResult(resource_id=resource_id)
        desired = expand_actions(actions)
        final = frozenset()
        with self.reconciling(step, resource_id), self.locks.hold(acl_lock_key(kms_id)):
            try:
                kms_state = self.fetch(kms_id)
                current = observed_acl_actions(kms_state, subject_type, subject) or frozenset()
                delta = acl_delta(desired, current)
                if delta.is_empty:
                    logger.debug(f"[acl] {resource_id} already up to date")
                    final = current
                else:
                    for operation in acl_operations(kms_id, subject_type, subject, delta):
                        self.apply(
                            operation, result,
                            event_type="acl_revoke" if operation.name == "revoke-acl" else "acl_grant",
                        )
                    kms_state = self.fetch(kms_id)
                    final = observed_acl_actions(kms_state, subject_type, subject) or frozenset()
            except CipherTrustAPIError as e:
                if not (ignore_not_found and e.is_not_found):
                    raise
                logger.warning(f"[acl] {resource_id}: target not found, nothing to revoke")
                result.warn("ACL target not found", category="conflict", id=resource_id, error=e.message)
        if final:
            result.state = acl_document(kms_id, subject_type, subject, final)
        return result
