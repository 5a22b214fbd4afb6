"""Key material rotation.

Every create is a new rotation: there is nothing to deduplicate and nothing
to undo, so update and delete never call the server.
"""
from __future__ import annotations
import datetime
import logging

from ..ciphertrust.endpoints import URL_AWS_KEYS, object_path
from ..ciphertrust.exceptions import CckmError
from ..desired import KeyRotationConfig
from ..identity import decode_key_rotation_id, encode_aws_key_id, encode_key_rotation_id
from ..models import ObservedState, ReconcileResult, RemoteOperation
from .base import Reconciler
from .keys import find_key

logger = logging.getLogger(__name__)


class KeyRotationReconciler(Reconciler):
    resource_type = "aws_key_rotation"
    collection = URL_AWS_KEYS

    def create(self, desired: KeyRotationConfig) -> ReconcileResult:
        """Rotate the material of `desired.key_id` (CipherTrust key id)."""
        desired.validate()
        result = ReconcileResult()
        requested_at = datetime.datetime.now(datetime.timezone.utc).isoformat()
        with self.reconciling("create", desired.key_id):
            operation = RemoteOperation(
                "rotate-material", "post", object_path(self.collection, desired.key_id, "rotate-material"),
                resource_id=desired.key_id,
            )
            response = ObservedState.from_document(self.apply(operation, result, event_type="rotate_material"))
            region, aws_key_id = response.get("region"), response.get("aws_param.KeyID")
            if not (region and aws_key_id):
                key = self.fetch(desired.key_id)
                region, aws_key_id = key.get("region"), key.get("aws_param.KeyID")
                if not response.document:
                    response = key
            if not (region and aws_key_id):
                raise CckmError(f"key {desired.key_id} has no region or AWS key id")
        result.resource_id = encode_key_rotation_id(region, aws_key_id)
        document = response.to_dict()
        document["status"] = f"Key material rotation requested at {requested_at}"
        result.state = ObservedState.from_document(document)
        logger.info(f"[key_rotation] {desired.key_id} rotated ({result.resource_id})")
        return result

    def read(self, resource_id: str) -> ReconcileResult:
        """The rotated key; absent once the key itself is gone."""
        region, aws_key_id, _ = decode_key_rotation_id(resource_id)
        with self.reconciling("read", resource_id):
            state = find_key(self, encode_aws_key_id(region, aws_key_id))
        return ReconcileResult(resource_id=resource_id, state=state)

    def update(self, desired: KeyRotationConfig, prior: KeyRotationConfig) -> ReconcileResult:
        return ReconcileResult(resource_id=prior.id)

    def delete(self, prior: KeyRotationConfig) -> ReconcileResult:
        return ReconcileResult(resource_id=prior.id)
