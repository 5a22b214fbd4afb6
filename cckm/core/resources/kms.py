"""AWS KMS account (CCKM container) reconciler."""
from __future__ import annotations
import logging

from ..ciphertrust.endpoints import URL_AWS_KMS, object_path
from ..delta import kms_update_payload
from ..desired import KmsConfig
from ..models import ObservedState, ReconcileResult, RemoteOperation
from .base import Reconciler

logger = logging.getLogger(__name__)


def kms_create_payload(desired: KmsConfig) -> dict:
    payload = {
        "account_id": desired.account_id,
        "aws_connection": desired.aws_connection,
        "name": desired.name,
        "regions": list(desired.regions),
    }
    if desired.assume_role_arn:
        payload["assume_role_arn"] = desired.assume_role_arn
    if desired.assume_role_external_id:
        payload["assume_role_external_id"] = desired.assume_role_external_id
    return payload


class KmsReconciler(Reconciler):
    """Register, patch and remove AWS accounts."""
    resource_type = "aws_kms"
    collection = URL_AWS_KMS

    def create(self, desired: KmsConfig) -> ReconcileResult:
        desired.validate()
        result = ReconcileResult()
        with self.reconciling("create"):
            operation = RemoteOperation("create", "post", self.collection, kms_create_payload(desired))
            response = self.apply(operation, result, event_type="create")
            result.resource_id = str(response.get("id", ""))
            result.state = self.fetch(result.resource_id)
        logger.info(f"[kms] Created {desired.name} ({result.resource_id})")
        return result

    def update(self, desired: KmsConfig, prior: KmsConfig) -> ReconcileResult:
        desired.validate()
        kms_id = prior.id or desired.id
        result = ReconcileResult(resource_id=kms_id)
        with self.reconciling("update", kms_id):
            state = self.fetch(kms_id)
            payload = kms_update_payload(desired, state)
            if payload:
                operation = RemoteOperation("update", "update", object_path(self.collection, kms_id), payload, kms_id)
                state = ObservedState.from_document(self.apply(operation, result, event_type="update"))
        result.state = state
        return result

    def delete(self, prior: KmsConfig) -> ReconcileResult:
        result = ReconcileResult(resource_id=prior.id)
        with self.reconciling("delete", prior.id):
            self.delete_object(prior.id, result)
        return result
