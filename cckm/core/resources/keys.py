"""Customer-managed AWS KMS key reconciler."""
from __future__ import annotations
import logging
import time
from typing import Optional

from ..ciphertrust.endpoints import URL_AWS_KEYS, object_path
from ..ciphertrust.exceptions import CipherTrustAPIError
from ..delta import (
    POLICY_TEMPLATE_TAG_KEY,
    auto_rotation_operations,
    key_update_operations,
    rotation_job_payload,
)
from ..desired import KeyConfig
from ..identity import KEY_ID_SEPARATOR, decode_aws_key_id, encode_aws_key_id
from ..models import ObservedState, ReconcileResult, RemoteOperation
from ..transitions import POLL_INTERVAL_SECONDS
from .base import Reconciler

logger = logging.getLogger(__name__)

PENDING_DELETION_STATES = frozenset({"PendingDeletion", "PendingReplicaDeletion"})
# Seconds a new replica may stay in the Creating state
REPLICATION_TIMEOUT = 80


def key_create_payload(desired: KeyConfig) -> dict:
    """Creation body: key policy parameters plus `aws_param`.

    Only the first alias goes into the creation call; the rest are added
    afterwards.
    """
    aws_param = {
        "Description": desired.description,
        "KeyUsage": desired.key_usage,
        "CustomerMasterKeySpec": desired.customer_master_key_spec,
        "Origin": desired.origin,
        "MultiRegion": desired.multi_region,
    }
    if desired.alias:
        aws_param["Alias"] = desired.alias[0]
    if desired.tags:
        aws_param["Tags"] = [{"TagKey": k, "TagValue": v} for k, v in sorted(desired.tags.items())]
    if desired.key_policy.policy:
        aws_param["Policy"] = desired.key_policy.policy
    payload = {"kms": desired.kms, "region": desired.region}
    payload.update({k: v for k, v in desired.key_policy.to_payload().items() if k != "policy"})
    payload["aws_param"] = {k: v for k, v in aws_param.items() if v != ""}
    return payload


def key_replicate_payload(desired: KeyConfig) -> dict:
    """Replication body: the creation body minus kms, region and Origin, plus `replica_region`."""
    payload = key_create_payload(desired)
    del payload["kms"], payload["region"]
    payload["aws_param"].pop("Origin", None)
    payload["replica_region"] = desired.region
    return payload


def local_key_id(state: ObservedState, default_region: str = "") -> str:
    """`region\\awsKeyId` for a key document."""
    region = state.get("region") or default_region
    return encode_aws_key_id(region, state.get("aws_param.KeyID") or state.id)


def find_key(reconciler: Reconciler, resource_id: str) -> Optional[ObservedState]:
    """Resolve a CipherTrust key id or a `region\\awsKeyId` local id."""
    if KEY_ID_SEPARATOR not in resource_id:
        return reconciler.fetch_or_none(resource_id, URL_AWS_KEYS)
    region, aws_key_id = decode_aws_key_id(resource_id)
    matches = reconciler.client.list(URL_AWS_KEYS, {"region": region, "keyid": aws_key_id})
    if not matches:
        return None
    return ObservedState.from_document(matches[0])


class KeyReconciler(Reconciler):
    """Create, update and schedule deletion of AWS keys."""
    resource_type = "aws_key"
    collection = URL_AWS_KEYS

    def __init__(self, client, *, interval: float = POLL_INTERVAL_SECONDS):
        super().__init__(client)
        self.interval = interval

    @classmethod
    def from_settings(cls, client, cfg) -> "KeyReconciler":
        return cls(client, interval=cfg.transition_interval)

    def _op(self, key_id: str, action: str, payload: Optional[dict] = None) -> RemoteOperation:
        return RemoteOperation(action, "post", object_path(self.collection, key_id, action), payload, key_id)

    def create(self, desired: KeyConfig) -> ReconcileResult:
        """Create (or replicate) the key, then apply follow-ups best-effort.

        Follow-ups: remaining aliases, auto-rotation, rotation job, disable.
        """
        desired.validate()
        result = ReconcileResult()
        with self.reconciling("create"):
            if desired.replicate_key is None:
                operation = RemoteOperation("create", "post", self.collection, key_create_payload(desired))
                created = ObservedState.from_document(self.apply(operation, result, event_type="create"))
            else:
                created = self._replicate(desired, result)
        key_id = created.id
        result.resource_id = local_key_id(created, desired.region)
        logger.info(f"[key] Created {result.resource_id} ({key_id})")

        for alias in desired.alias[1:]:
            self.best_effort(self._op(key_id, "add-alias", {"alias": alias}), result, f"Failed to add alias {alias}")
        for operation in auto_rotation_operations(key_id, desired.auto_rotate, desired.auto_rotation_period_in_days, created):
            self.best_effort(operation, result, "Failed to enable auto-rotation")
        if desired.enable_rotation is not None:
            self.best_effort(
                self._op(key_id, "enable-rotation-job", rotation_job_payload(desired.enable_rotation)),
                result,
                "Failed to enable key rotation job",
            )
        if not desired.enable_key:
            self.best_effort(self._op(key_id, "disable"), result, "Failed to disable key")

        with self.reconciling("create", result.resource_id):
            result.state = self.fetch(key_id)
        return result

    def _replicate(self, desired: KeyConfig, result: ReconcileResult) -> ObservedState:
        """Replicate `desired.replicate_key` into `desired.region`.

        The replica is re-read while AWS reports it as Creating. Promoting it
        to primary only happens once it is Enabled.
        """
        source = desired.replicate_key
        operation = self._op(source.key_id, "replicate-key", key_replicate_payload(desired))
        replica = ObservedState.from_document(self.apply(operation, result))
        attempts = max(1, int(REPLICATION_TIMEOUT // (self.interval or POLL_INTERVAL_SECONDS)))
        for _ in range(attempts):
            if replica.get("aws_param.KeyState") != "Creating":
                break
            if self.interval > 0:
                time.sleep(self.interval)
            replica = self.fetch(replica.id)

        key_state = replica.get("aws_param.KeyState")
        if key_state != "Enabled":
            logger.warning(f"[key] Replica {replica.id} of {source.key_id} is {key_state} after {attempts} attempts")
            result.warn(
                "Replicated key was not confirmed enabled in time",
                key_id=replica.id, source_key_id=source.key_id, key_state=key_state,
            )
        elif source.make_primary:
            self.best_effort(
                self._op(source.key_id, "update-primary-region", {"PrimaryRegion": desired.region}),
                result,
                f"Failed to make {desired.region} the primary region",
            )
        return replica

    def read(self, resource_id: str) -> ReconcileResult:
        """Fetch by CipherTrust key id or by `region\\awsKeyId`."""
        with self.reconciling("read", resource_id):
            state = find_key(self, resource_id)
        if state is None:
            return ReconcileResult(resource_id=resource_id)
        return ReconcileResult(resource_id=local_key_id(state), state=state)

    def update(self, desired: KeyConfig, prior: KeyConfig) -> ReconcileResult:
        desired.validate()
        key_id = prior.key_id or desired.key_id
        result = ReconcileResult(resource_id=prior.id or desired.id)
        with self.reconciling("update", result.resource_id or key_id):
            state = self.fetch(key_id)
            for operation in key_update_operations(desired, prior, state):
                self.apply(operation, result)
            if result.applied:
                state = self.fetch(key_id)
        result.resource_id = local_key_id(state, desired.region)
        result.state = state
        return result

    def delete(self, prior: KeyConfig) -> ReconcileResult:
        """Schedule deletion unless the key is already gone or going."""
        result = ReconcileResult(resource_id=prior.id)
        key_id = prior.key_id
        with self.reconciling("delete", prior.id or key_id):
            state = self.fetch_or_none(key_id)
            if state is None:
                result.warn("AWS key no longer exists", category="conflict", key_id=key_id)
                return result
            key_state = state.get("aws_param.KeyState")
            if key_state in PENDING_DELETION_STATES:
                logger.warning(f"[key] {key_id} is already {key_state}")
                result.warn(
                    "AWS key is already pending deletion", category="conflict", key_id=key_id, key_state=key_state
                )
                return result
            tags = {tag.get("TagKey") for tag in state.get("aws_param.Tags") or ()}
            if POLICY_TEMPLATE_TAG_KEY in tags:
                self.best_effort(
                    self._op(key_id, "remove-tags", {"tags": [POLICY_TEMPLATE_TAG_KEY]}),
                    result,
                    "Failed to remove policy template tag",
                )
            operation = self._op(key_id, "schedule-deletion", {"days": prior.schedule_for_deletion_days})
            try:
                self.apply(operation, result, event_type="schedule_deletion")
            except CipherTrustAPIError as e:
                if not e.is_not_found:
                    raise
                result.warn("AWS key no longer exists", category="conflict", key_id=key_id, error=e.message)
        return result
