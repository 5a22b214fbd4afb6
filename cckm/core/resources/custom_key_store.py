"""AWS custom key store reconciler.

Update runs at most one structural category per call, in priority order:

    field update > block/unblock > link > connect/disconnect

Connect and disconnect are asynchronous on the server; they are driven to
CONNECTED / DISCONNECTED by the transition driver. Once the store is linked,
credential rotation is reconciled after the structural step.
"""
from __future__ import annotations
import logging
import threading
from typing import Optional

from ..ciphertrust.endpoints import URL_AWS_CUSTOM_KEY_STORES, object_path
from ..ciphertrust.exceptions import CckmError
from ..delta import CUSTOM_KEY_STORE_FIELDS, changed_fields, connection_transition
from ..desired import CustomKeyStoreConfig
from ..models import (
    CONNECT_KEYSTORE,
    DIRECTIVE_TARGETS,
    ObservedState,
    ReconcileResult,
    RemoteOperation,
)
from ..transitions import POLL_INTERVAL_SECONDS, drive_transition, max_attempts_for
from .base import Reconciler

logger = logging.getLogger(__name__)


def _normalize_certificate(certificate: str) -> str:
    return certificate.replace("\r\n", "\n") if certificate else certificate


def custom_key_store_create_payload(desired: CustomKeyStoreConfig) -> dict:
    """Full creation body; unset optional values are left out."""
    aws = desired.aws_param
    aws_param = {
        "custom_key_store_type": aws.custom_key_store_type,
        "cloud_hsm_cluster_id": aws.cloud_hsm_cluster_id,
        "key_store_password": aws.key_store_password,
        "trust_anchor_certificate": _normalize_certificate(aws.trust_anchor_certificate),
        "xks_proxy_connectivity": aws.xks_proxy_connectivity,
        "xks_proxy_uri_endpoint": aws.xks_proxy_uri_endpoint,
        "xks_proxy_vpc_endpoint_service_name": aws.xks_proxy_vpc_endpoint_service_name,
    }
    local = desired.local_hosted_params
    local_hosted_params = {
        "blocked": local.blocked,
        "health_check_key_id": local.health_check_key_id,
        "max_credentials": local.max_credentials,
        "mtls_enabled": local.mtls_enabled,
        "partition_id": local.partition_id,
        "source_key_tier": local.source_key_tier,
    }
    payload = {
        "name": desired.name,
        "kms": desired.kms,
        "region": desired.region,
        "enable_success_audit_event": desired.enable_success_audit_event,
        "linked_state": desired.linked_state,
        "aws_param": {k: v for k, v in aws_param.items() if v not in (None, "")},
        "local_hosted_params": {k: v for k, v in local_hosted_params.items() if v not in (None, "")},
    }
    return payload


def link_payload(desired: CustomKeyStoreConfig) -> dict:
    aws_param = {}
    if desired.aws_param.xks_proxy_uri_endpoint:
        aws_param["xks_proxy_uri_endpoint"] = desired.aws_param.xks_proxy_uri_endpoint
    if desired.aws_param.xks_proxy_vpc_endpoint_service_name:
        aws_param["xks_proxy_vpc_endpoint_service_name"] = desired.aws_param.xks_proxy_vpc_endpoint_service_name
    return {"aws_param": aws_param}


class CustomKeyStoreReconciler(Reconciler):
    """Create, transition and remove custom key stores."""
    resource_type = "aws_custom_key_store"
    collection = URL_AWS_CUSTOM_KEY_STORES

    def __init__(
        self,
        client,
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        cancel: Optional[threading.Event] = None,
    ):
        """Initialize reconciler.

        Args:
            client: Authenticated CipherTrust Manager client
            interval: Seconds between polls while a transition runs
            cancel: Event the caller sets to abandon a running transition
        """
        super().__init__(client)
        self.interval = interval
        self.cancel = cancel

    @classmethod
    def from_settings(cls, client, cfg, *, cancel: Optional[threading.Event] = None) -> "CustomKeyStoreReconciler":
        return cls(client, interval=cfg.transition_interval, cancel=cancel)

    def _op(self, store_id: str, action: str, payload: Optional[dict] = None) -> RemoteOperation:
        return RemoteOperation(action, "post", object_path(self.collection, store_id, action), payload, store_id)

    # ─────────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────────
    def create(self, desired: CustomKeyStoreConfig) -> ReconcileResult:
        """Create the store, then run the requested follow-ups best-effort.

        The store exists once the POST succeeds; credential rotation and the
        requested connect/disconnect only add warnings when they fail.
        """
        desired.validate()
        result = ReconcileResult()
        with self.reconciling("create"):
            operation = RemoteOperation("create", "post", self.collection, custom_key_store_create_payload(desired))
            response = self.apply(operation, result, event_type="create")
            result.resource_id = store_id = str(response.get("id", ""))
        logger.info(f"[custom_key_store] Created {desired.name} ({store_id})")

        if desired.enable_credential_rotation is not None:
            self.best_effort(
                self._op(store_id, "enable-credential-rotation-job",
                         {"job_config_id": desired.enable_credential_rotation.job_config_id}),
                result,
                "Failed to enable credential rotation",
            )

        directive = desired.connect_disconnect_keystore
        if directive:
            try:
                self._transition(store_id, directive, desired, result)
            except CckmError as e:
                logger.warning(f"[custom_key_store] {directive} after create failed for {store_id}: {e}")
                result.warn(f"Failed to apply {directive}", category="partial_apply", id=store_id, error=str(e))

        with self.reconciling("create", store_id):
            result.state = self.fetch(store_id)
        return result

    # ─────────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────────
    def update(self, desired: CustomKeyStoreConfig, prior: CustomKeyStoreConfig) -> ReconcileResult:
        desired.validate()
        store_id = prior.id or desired.id
        result = ReconcileResult(resource_id=store_id)
        with self.reconciling("update", store_id):
            state = self.fetch(store_id)
            self._apply_structural_change(store_id, desired, prior, state, result)
            if result.applied:
                state = self.fetch(store_id)
            if state.get("local_hosted_params.linked_state"):
                if self._reconcile_credential_rotation(store_id, desired, prior, result):
                    state = self.fetch(store_id)
        result.state = state
        return result

    def _apply_structural_change(
        self,
        store_id: str,
        desired: CustomKeyStoreConfig,
        prior: CustomKeyStoreConfig,
        state: ObservedState,
        result: ReconcileResult,
    ) -> None:
        """Run the first category with a pending change, and only that one."""
        payload = changed_fields(CUSTOM_KEY_STORE_FIELDS, desired, state, prior)
        if payload:
            logger.debug(f"[custom_key_store] {store_id} changed fields: {sorted(payload)}")
            operation = RemoteOperation("update", "update", object_path(self.collection, store_id), payload, store_id)
            self.apply(operation, result, event_type="update")
            return

        blocked = desired.local_hosted_params.blocked
        if blocked != bool(state.get("local_hosted_params.blocked")):
            self.apply(self._op(store_id, "block" if blocked else "unblock"), result)
            return

        if desired.linked_state and not state.get("local_hosted_params.linked_state"):
            self.apply(self._op(store_id, "link", link_payload(desired)), result)
            return

        directive = connection_transition(desired.connect_disconnect_keystore, prior.connect_disconnect_keystore)
        if directive:
            self._transition(store_id, directive, desired, result, prior=prior)

    def _transition(
        self,
        store_id: str,
        directive: str,
        desired: CustomKeyStoreConfig,
        result: ReconcileResult,
        *,
        prior: Optional[CustomKeyStoreConfig] = None,
    ) -> ObservedState:
        """Request connect/disconnect and poll until the store settles."""
        if directive == CONNECT_KEYSTORE:
            password = desired.aws_param.key_store_password or (prior.aws_param.key_store_password if prior else "")
            operation = self._op(store_id, "connect", {"key_store_password": password})
        else:
            operation = self._op(store_id, "disconnect")
        self.apply(operation, result)

        key_store_type = desired.aws_param.custom_key_store_type
        return drive_transition(
            DIRECTIVE_TARGETS[directive],
            lambda: self.fetch(store_id),
            max_attempts_for(key_store_type, directive, self.interval),
            self.interval,
            cancel=self.cancel,
            resource_id=store_id,
        )

    def _reconcile_credential_rotation(
        self,
        store_id: str,
        desired: CustomKeyStoreConfig,
        prior: CustomKeyStoreConfig,
        result: ReconcileResult,
    ) -> bool:
        """Enable or disable the credential rotation job; True if a call was made."""
        wanted = desired.enable_credential_rotation
        if wanted == prior.enable_credential_rotation:
            return False
        if wanted is None:
            self.apply(self._op(store_id, "disable-credential-rotation-job"), result)
        else:
            self.apply(
                self._op(store_id, "enable-credential-rotation-job", {"job_config_id": wanted.job_config_id}),
                result,
            )
        return True

    # ─────────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────────
    def delete(self, prior: CustomKeyStoreConfig) -> ReconcileResult:
        result = ReconcileResult(resource_id=prior.id)
        with self.reconciling("delete", prior.id):
            self.delete_object(prior.id, result)
        return result
