"""Delta engine: which remote operations move observed state to desired state.

Every function here is pure. It takes desired configuration plus an
`ObservedState` (and, where the server does not echo a value back, the prior
desired configuration) and returns `RemoteOperation` values. An empty result
means no remote call is needed.

Sections:
- ACL permission diff (grant / revoke, revoke first)
- Connection directive diff for custom key stores
- Typed field sets driving the single field-update call
- Key-level diffs (description, enable, policy, aliases, tags, rotation)
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from .ciphertrust.endpoints import URL_AWS_KEYS, URL_AWS_KMS, object_path
from .models import CONNECTION_DIRECTIVES, ObservedState, RemoteOperation

logger = logging.getLogger(__name__)

# Deprecated ACL action and what it stands for
DEPRECATED_VIEW_ACTION = "view"
VIEW_EXPANSION = frozenset({"viewnative", "viewbyok"})

# Tag the server adds to keys created from a policy template
POLICY_TEMPLATE_TAG_KEY = "cckm_policy_template_id"
ROTATED_ALIAS_MARKER = "-rotated-"
ALIAS_PREFIX = "alias/"


# ─────────────────────────────────────────────────────────────────────────────
# ACL permission diff
# ─────────────────────────────────────────────────────────────────────────────
def expand_actions(actions: Optional[Iterable[str]]) -> frozenset:
    """Normalize an action set, replacing "view" by its two concrete actions."""
    expanded = set()
    for action in actions or ():
        if action == DEPRECATED_VIEW_ACTION:
            expanded |= VIEW_EXPANSION
        elif action:
            expanded.add(action)
    return frozenset(expanded)


def compute_permitted_delta(desired: Iterable[str], observed: Iterable[str]) -> frozenset:
    """Actions to grant: desired minus observed."""
    return expand_actions(desired) - expand_actions(observed)


def compute_unpermitted_delta(desired: Iterable[str], observed: Iterable[str]) -> frozenset:
    """Actions to revoke: observed minus desired."""
    return expand_actions(observed) - expand_actions(desired)


@dataclass(frozen=True)
class AclDelta:
    grant: frozenset = frozenset()
    revoke: frozenset = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.grant and not self.revoke


def acl_delta(desired: Iterable[str], observed: Iterable[str]) -> AclDelta:
    return AclDelta(
        grant=compute_permitted_delta(desired, observed),
        revoke=compute_unpermitted_delta(desired, observed),
    )


def observed_acl_actions(kms_state: ObservedState, subject_type: str, subject: str) -> Optional[frozenset]:
    """Actions currently granted to a user or group on a KMS container.

    Returns:
        The action set, or None when the subject has no ACL entry
    """
    field_name = "user_id" if subject_type == "user" else "group"
    for entry in kms_state.get("acls") or ():
        if entry.get(field_name) == subject:
            return frozenset(entry.get("actions") or ())
    return None


def _acl_entry(subject_type: str, subject: str, actions: Iterable[str], permit: bool) -> dict:
    entry = {"actions": sorted(actions), "permit": permit}
    if subject_type == "user":
        entry["user_id"] = subject
    else:
        entry["group"] = subject
    return entry


def acl_operations(kms_id: str, subject_type: str, subject: str, delta: AclDelta) -> List[RemoteOperation]:
    """Ordered update-acls calls for a delta: revoke first, then grant.

    Revoking first means a narrowing update never holds the union of old and
    new permissions, not even transiently.
    """
    path = object_path(URL_AWS_KMS, kms_id, "update-acls")
    operations = []
    if delta.revoke:
        operations.append(RemoteOperation(
            name="revoke-acl",
            method="post",
            path=path,
            payload={"container_acls": [_acl_entry(subject_type, subject, delta.revoke, False)]},
            resource_id=kms_id,
        ))
    if delta.grant:
        operations.append(RemoteOperation(
            name="grant-acl",
            method="post",
            path=path,
            payload={"container_acls": [_acl_entry(subject_type, subject, delta.grant, True)]},
            resource_id=kms_id,
        ))
    return operations


# ─────────────────────────────────────────────────────────────────────────────
# Connection directive
# ─────────────────────────────────────────────────────────────────────────────
def connection_transition(desired_directive: Optional[str], last_requested: Optional[str]) -> Optional[str]:
    """Directive to execute, or None.

    Compared against the last *requested* directive, not the observed
    connection state: the store may still be mid-transition from an earlier
    apply, and re-issuing the same request would restart it.
    """
    if not desired_directive or desired_directive not in CONNECTION_DIRECTIVES:
        return None
    if desired_directive == last_requested:
        return None
    return desired_directive


# ─────────────────────────────────────────────────────────────────────────────
# Typed field sets
# ─────────────────────────────────────────────────────────────────────────────
class FieldKind(str, Enum):
    """How a field takes part in the field-update decision."""
    MUTABLE = "mutable"          # compared with the observed document
    WRITE_ONLY = "write_only"    # never returned by the server, compared with prior
    COMPUTED = "computed"        # owned by the server, never sent


@dataclass(frozen=True)
class FieldSpec:
    """One field of a resource, addressed by the same dotted path in the
    desired configuration and in the remote document."""
    path: str
    kind: FieldKind = FieldKind.MUTABLE

    def value_of(self, config: Any) -> Any:
        node = config
        for part in self.path.split("."):
            if node is None:
                return None
            node = getattr(node, part, None)
        return node


def _same(desired: Any, current: Any) -> bool:
    if isinstance(desired, bool):
        return desired == bool(current)
    if isinstance(desired, str):
        return desired == ("" if current is None else str(current))
    return desired == current


def _put(payload: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    node = payload
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def changed_fields(
    fields: Sequence[FieldSpec],
    desired: Any,
    observed: ObservedState,
    prior: Any = None,
) -> dict:
    """Nested payload holding only the fields that differ.

    Unset desired values (None or "") are left alone rather than cleared, so
    a partial configuration never clobbers what the server already holds.
    """
    payload: dict = {}
    for spec in fields:
        if spec.kind is FieldKind.COMPUTED:
            continue
        value = spec.value_of(desired)
        if value is None or value == "":
            continue
        if spec.kind is FieldKind.WRITE_ONLY:
            current = spec.value_of(prior) if prior is not None else None
        else:
            current = observed.get(spec.path)
        if not _same(value, current):
            _put(payload, spec.path, value)
    return payload


# Fields of a custom key store that take part in the field-update decision
CUSTOM_KEY_STORE_FIELDS = (
    FieldSpec("name"),
    FieldSpec("enable_success_audit_event"),
    FieldSpec("aws_param.cloud_hsm_cluster_id"),
    FieldSpec("aws_param.key_store_password", FieldKind.WRITE_ONLY),
    FieldSpec("aws_param.xks_proxy_connectivity"),
    FieldSpec("aws_param.xks_proxy_uri_endpoint"),
    FieldSpec("aws_param.xks_proxy_vpc_endpoint_service_name"),
    FieldSpec("local_hosted_params.health_check_key_id"),
    FieldSpec("local_hosted_params.mtls_enabled"),
    FieldSpec("local_hosted_params.max_credentials"),
    FieldSpec("aws_param.custom_key_store_type", FieldKind.COMPUTED),
    FieldSpec("aws_param.custom_key_store_id", FieldKind.COMPUTED),
    FieldSpec("aws_param.connection_state", FieldKind.COMPUTED),
    FieldSpec("local_hosted_params.blocked", FieldKind.COMPUTED),
    FieldSpec("local_hosted_params.linked_state", FieldKind.COMPUTED),
)

# KMS account fields that can be patched
KMS_FIELDS = (
    FieldSpec("aws_connection"),
    FieldSpec("assume_role_arn"),
    FieldSpec("assume_role_external_id"),
    FieldSpec("account_id", FieldKind.COMPUTED),
    FieldSpec("name", FieldKind.COMPUTED),
)


def kms_update_payload(desired, observed: ObservedState) -> dict:
    """PATCH body for a KMS account; regions are compared as a set."""
    payload = changed_fields(KMS_FIELDS, desired, observed)
    if desired.regions and set(desired.regions) != set(observed.get("regions") or ()):
        payload["regions"] = list(desired.regions)
    return payload


# ─────────────────────────────────────────────────────────────────────────────
# Key-level diffs
# ─────────────────────────────────────────────────────────────────────────────
def _key_op(name: str, key_id: str, payload: Optional[dict] = None) -> RemoteOperation:
    return RemoteOperation(
        name=name,
        method="post",
        path=object_path(URL_AWS_KEYS, key_id, name),
        payload=payload,
        resource_id=key_id,
    )


def observed_aliases(key_state: ObservedState) -> List[str]:
    """Key aliases without the "alias/" prefix."""
    aliases = []
    for alias in key_state.get("aws_param.Alias") or ():
        alias = str(alias)
        if alias.startswith(ALIAS_PREFIX):
            alias = alias[len(ALIAS_PREFIX):]
        aliases.append(alias)
    return aliases


def observed_tags(key_state: ObservedState) -> dict:
    """Key tags as a dict, without the policy template marker tag."""
    tags = {}
    for tag in key_state.get("aws_param.Tags") or ():
        key = tag.get("TagKey")
        if key and key != POLICY_TEMPLATE_TAG_KEY:
            tags[key] = tag.get("TagValue", "")
    return tags


def description_operations(key_id: str, desired: str, key_state: ObservedState) -> List[RemoteOperation]:
    current = key_state.get("aws_param.Description") or ""
    if (desired or "") == current:
        return []
    return [_key_op("update-description", key_id, {"description": desired or ""})]


def enable_operations(key_id: str, enable_key: bool, key_state: ObservedState) -> List[RemoteOperation]:
    if bool(key_state.get("aws_param.Enabled")) == enable_key:
        return []
    return [_key_op("enable" if enable_key else "disable", key_id)]


def key_policy_operations(key_id: str, desired_policy, prior_policy) -> List[RemoteOperation]:
    """The server does not echo key policy parameters back: compare with prior."""
    desired_payload = desired_policy.to_payload()
    prior_payload = prior_policy.to_payload() if prior_policy is not None else {}
    if _policy_params_equal(desired_payload, prior_payload):
        return []
    return [_key_op("policy", key_id, desired_payload)]


def _policy_params_equal(left: dict, right: dict) -> bool:
    left = dict(left)
    right = dict(right)
    if not json_equal(left.pop("policy", ""), right.pop("policy", "")):
        return False
    return {k: sorted(v) if isinstance(v, list) else v for k, v in left.items()} == {
        k: sorted(v) if isinstance(v, list) else v for k, v in right.items()
    }


def json_equal(left: Any, right: Any) -> bool:
    """Semantic equality of two JSON documents given as text or values."""
    return _as_json(left) == _as_json(right)


def _as_json(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def alias_operations(key_id: str, desired: Sequence[str], key_state: ObservedState) -> List[RemoteOperation]:
    """Add missing aliases, then remove extra ones.

    Aliases created by key rotation (containing "-rotated-") are never removed.
    """
    current = observed_aliases(key_state)
    operations = [
        _key_op("add-alias", key_id, {"alias": alias})
        for alias in desired if alias not in current
    ]
    operations.extend(
        _key_op("delete-alias", key_id, {"alias": alias})
        for alias in current
        if ROTATED_ALIAS_MARKER not in alias and alias not in desired
    )
    return operations


def tag_operations(key_id: str, desired: dict, key_state: ObservedState) -> List[RemoteOperation]:
    """Remove stale tags (changed value or gone), then add missing ones."""
    current = observed_tags(key_state)
    stale = sorted(k for k, v in current.items() if desired.get(k) != v)
    missing = sorted(k for k, v in desired.items() if current.get(k) != v)
    operations = []
    if stale:
        operations.append(_key_op("remove-tags", key_id, {"tags": stale}))
    if missing:
        operations.append(_key_op(
            "add-tags", key_id,
            {"tags": [{"TagKey": k, "TagValue": desired[k]} for k in missing]},
        ))
    return operations


def auto_rotation_operations(
    key_id: str,
    auto_rotate: bool,
    period_in_days: Optional[int],
    key_state: ObservedState,
) -> List[RemoteOperation]:
    enabled = bool(key_state.get("aws_param.KeyRotationEnabled"))
    if auto_rotate and not enabled:
        payload = {"rotation_period_in_days": period_in_days} if period_in_days else None
        return [_key_op("enable-auto-rotation", key_id, payload)]
    if not auto_rotate and enabled:
        return [_key_op("disable-auto-rotation", key_id)]
    return []


def rotation_job_payload(job) -> dict:
    payload = {"job_config_id": job.job_config_id}
    if job.auto_rotate_disable_encrypt:
        payload["auto_rotate_disable_encrypt"] = True
    if job.auto_rotate_key_source:
        payload["auto_rotate_key_source"] = job.auto_rotate_key_source
    return payload


def rotation_job_operations(key_id: str, desired_job, prior_job) -> List[RemoteOperation]:
    """Scheduler jobs are not part of the key document: compare with prior."""
    if desired_job == prior_job:
        return []
    if desired_job is None:
        return [_key_op("disable-rotation-job", key_id)]
    return [_key_op("enable-rotation-job", key_id, rotation_job_payload(desired_job))]


def key_update_operations(desired, prior, key_state: ObservedState) -> List[RemoteOperation]:
    """Every key-level call needed, in apply order."""
    key_id = key_state.id or desired.key_id
    operations: List[RemoteOperation] = []
    operations += description_operations(key_id, desired.description, key_state)
    operations += enable_operations(key_id, desired.enable_key, key_state)
    operations += key_policy_operations(key_id, desired.key_policy, getattr(prior, "key_policy", None))
    operations += rotation_job_operations(key_id, desired.enable_rotation, getattr(prior, "enable_rotation", None))
    operations += alias_operations(key_id, desired.alias, key_state)
    operations += tag_operations(key_id, dict(desired.tags), key_state)
    operations += auto_rotation_operations(
        key_id, desired.auto_rotate, desired.auto_rotation_period_in_days, key_state
    )
    if operations:
        logger.debug(f"[delta] key {key_id}: {', '.join(op.name for op in operations)}")
    return operations
