"""AWS key policy template reconciler."""
from __future__ import annotations
import logging

from ..ciphertrust.endpoints import URL_AWS_POLICY_TEMPLATES, object_path
from ..ciphertrust.exceptions import CipherTrustAPIError
from ..delta import json_equal
from ..desired import KEY_POLICY_LISTS, PolicyTemplateConfig
from ..models import ObservedState, ReconcileResult, RemoteOperation
from .base import Reconciler

logger = logging.getLogger(__name__)

KEYS_ASSOCIATED_MARKER = "has one or more key associated"


def policy_template_payload(desired: PolicyTemplateConfig) -> dict:
    payload = {"name": desired.name, "kms": desired.kms}
    if desired.account_id:
        payload["account_id"] = desired.account_id
    params = desired.key_policy.to_payload()
    params.pop("policytemplate", None)
    payload.update(params)
    return payload


def policy_template_update_payload(desired: PolicyTemplateConfig) -> dict:
    """Full PATCH body; unset key policy parameters are sent empty so they clear."""
    payload = {"name": desired.name, "kms": desired.kms}
    if desired.account_id:
        payload["account_id"] = desired.account_id
    for name in KEY_POLICY_LISTS:
        payload[name] = list(getattr(desired.key_policy, name))
    payload["policy"] = desired.key_policy.policy
    return payload


def policy_template_differs(payload: dict, state: ObservedState) -> bool:
    """Compare an update payload with the observed template.

    A missing or null value counts as empty on both sides, list order is
    ignored and ``policy`` is compared as JSON.
    """
    for name, value in payload.items():
        current = state.get(name)
        if name == "policy":
            if not json_equal(value, current):
                return True
        elif isinstance(value, list):
            if sorted(value) != sorted(current or ()):
                return True
        elif value != current:
            return True
    return False


class PolicyTemplateReconciler(Reconciler):
    resource_type = "aws_policy_template"
    collection = URL_AWS_POLICY_TEMPLATES

    def create(self, desired: PolicyTemplateConfig) -> ReconcileResult:
        desired.validate()
        result = ReconcileResult()
        with self.reconciling("create"):
            operation = RemoteOperation("create", "post", self.collection, policy_template_payload(desired))
            response = self.apply(operation, result, event_type="create")
            result.resource_id = str(response.get("id", ""))
            result.state = self.fetch(result.resource_id)
        return result

    def update(self, desired: PolicyTemplateConfig, prior: PolicyTemplateConfig) -> ReconcileResult:
        desired.validate()
        template_id = prior.id or desired.id
        result = ReconcileResult(resource_id=template_id)
        with self.reconciling("update", template_id):
            state = self.fetch(template_id)
            payload = policy_template_update_payload(desired)
            if policy_template_differs(payload, state):
                operation = RemoteOperation(
                    "update", "update", object_path(self.collection, template_id), payload, template_id
                )
                state = ObservedState.from_document(self.apply(operation, result, event_type="update"))
        result.state = state
        return result

    def delete(self, prior: PolicyTemplateConfig) -> ReconcileResult:
        """Remove the template; one still in use by keys is left with a warning."""
        result = ReconcileResult(resource_id=prior.id)
        with self.reconciling("delete", prior.id):
            try:
                self.delete_object(prior.id, result)
            except CipherTrustAPIError as e:
                if KEYS_ASSOCIATED_MARKER not in (e.message or ""):
                    raise
                logger.warning(f"[policy_template] {prior.id} still has keys associated, not deleted")
                result.warn(
                    "Policy template has keys associated and was not deleted",
                    category="conflict", id=prior.id, error=e.message,
                )
        return result
