"""Declared desired configuration for each resource type.

Values are frozen: a reconciliation pass never mutates the configuration it
was given. Use `dataclasses.replace` to derive a copy (e.g. with the id the
server assigned on create).
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from .models import CONNECTION_DIRECTIVES

CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM = "AWS_CLOUDHSM"
CUSTOM_KEYSTORE_TYPE_EXTERNAL = "EXTERNAL_KEY_STORE"
DEFAULT_DELETION_WINDOW_DAYS = 7


def _require(value, name: str, resource: str) -> None:
    if value in (None, "") or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{name} is a mandatory field for {resource}")


# ─────────────────────────────────────────────────────────────────────────────
# KMS account
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class KmsConfig:
    """AWS account (KMS container) registered in CCKM."""
    name: str
    account_id: str
    aws_connection: str
    regions: tuple = ()
    assume_role_arn: str = ""
    assume_role_external_id: str = ""
    id: str = ""

    def validate(self) -> None:
        _require(self.name, "name", "an AWS KMS")
        _require(self.account_id, "account_id", "an AWS KMS")
        _require(self.aws_connection, "aws_connection", "an AWS KMS")
        if not self.regions:
            raise ValueError("regions must contain at least one AWS region")


# ─────────────────────────────────────────────────────────────────────────────
# ACL
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class AclConfig:
    """Permissions of one user or group on a KMS container."""
    kms_id: str
    actions: frozenset = frozenset()
    user_id: str = ""
    group: str = ""

    def validate(self) -> None:
        _require(self.kms_id, "kms_id", "an ACL")
        if bool(self.user_id) == bool(self.group):
            raise ValueError("exactly one of user_id or group must be set for an ACL")

    @property
    def subject_type(self) -> str:
        return "user" if self.user_id else "group"

    @property
    def subject(self) -> str:
        return self.user_id or self.group


# ─────────────────────────────────────────────────────────────────────────────
# Custom key store
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CustomKeyStoreAwsParams:
    custom_key_store_type: str = CUSTOM_KEYSTORE_TYPE_EXTERNAL
    cloud_hsm_cluster_id: str = ""
    key_store_password: str = ""
    trust_anchor_certificate: str = ""
    xks_proxy_connectivity: str = ""
    xks_proxy_uri_endpoint: str = ""
    xks_proxy_vpc_endpoint_service_name: str = ""


@dataclass(frozen=True)
class LocalHostedParams:
    blocked: bool = False
    health_check_key_id: str = ""
    max_credentials: Optional[int] = None
    mtls_enabled: bool = False
    partition_id: str = ""
    source_key_tier: str = ""


@dataclass(frozen=True)
class CredentialRotationJob:
    job_config_id: str


@dataclass(frozen=True)
class CustomKeyStoreConfig:
    """AWS custom key store (CloudHSM-backed or external key store)."""
    name: str
    kms: str
    region: str
    aws_param: CustomKeyStoreAwsParams = field(default_factory=CustomKeyStoreAwsParams)
    local_hosted_params: LocalHostedParams = field(default_factory=LocalHostedParams)
    enable_success_audit_event: bool = False
    linked_state: bool = False
    connect_disconnect_keystore: Optional[str] = None
    enable_credential_rotation: Optional[CredentialRotationJob] = None
    id: str = ""

    def validate(self) -> None:
        _require(self.kms, "kms", "a custom key store")
        _require(self.name, "name", "a custom key store")
        _require(self.region, "region", "a custom key store")
        if self.connect_disconnect_keystore and self.connect_disconnect_keystore not in CONNECTION_DIRECTIVES:
            raise ValueError(
                f"connect_disconnect_keystore must be one of {', '.join(CONNECTION_DIRECTIVES)}, "
                f"got {self.connect_disconnect_keystore!r}"
            )

    @property
    def is_cloudhsm(self) -> bool:
        return self.aws_param.custom_key_store_type == CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM


# ─────────────────────────────────────────────────────────────────────────────
# Keys
# ─────────────────────────────────────────────────────────────────────────────
KEY_POLICY_LISTS = ("key_admins", "key_admins_roles", "key_users", "key_users_roles", "external_accounts")


@dataclass(frozen=True)
class KeyPolicy:
    """Key policy parameters shared by keys and policy templates."""
    key_admins: tuple = ()
    key_admins_roles: tuple = ()
    key_users: tuple = ()
    key_users_roles: tuple = ()
    external_accounts: tuple = ()
    policy_template: str = ""
    policy: str = ""

    def to_payload(self) -> dict:
        """Only the parameters that are set."""
        payload: dict = {}
        for name in KEY_POLICY_LISTS:
            values = getattr(self, name)
            if values:
                payload[name] = list(values)
        if self.policy_template:
            payload["policytemplate"] = self.policy_template
        if self.policy:
            payload["policy"] = self.policy
        return payload


@dataclass(frozen=True)
class RotationJob:
    job_config_id: str
    auto_rotate_disable_encrypt: bool = False
    auto_rotate_key_source: str = ""


@dataclass(frozen=True)
class ReplicaSource:
    """Multi-region key to replicate into the region of the new key."""
    key_id: str
    make_primary: bool = False


@dataclass(frozen=True)
class KeyConfig:
    """Customer-managed AWS KMS key."""
    kms: str
    region: str
    alias: tuple = ()
    description: str = ""
    key_usage: str = "ENCRYPT_DECRYPT"
    customer_master_key_spec: str = "SYMMETRIC_DEFAULT"
    origin: str = "AWS_KMS"
    multi_region: bool = False
    tags: dict = field(default_factory=dict)
    key_policy: KeyPolicy = field(default_factory=KeyPolicy)
    enable_key: bool = True
    auto_rotate: bool = False
    auto_rotation_period_in_days: Optional[int] = None
    enable_rotation: Optional[RotationJob] = None
    replicate_key: Optional[ReplicaSource] = None
    schedule_for_deletion_days: int = DEFAULT_DELETION_WINDOW_DAYS
    key_id: str = ""
    id: str = ""

    def validate(self) -> None:
        _require(self.kms, "kms", "an AWS key")
        _require(self.region, "region", "an AWS key")
        if self.replicate_key is not None:
            _require(self.replicate_key.key_id, "replicate_key.key_id", "a replicated AWS key")
        if not 7 <= self.schedule_for_deletion_days <= 30:
            raise ValueError("schedule_for_deletion_days must be between 7 and 30")


# ─────────────────────────────────────────────────────────────────────────────
# Policy template / rotation
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class PolicyTemplateConfig:
    name: str
    kms: str
    account_id: str = ""
    key_policy: KeyPolicy = field(default_factory=KeyPolicy)
    id: str = ""

    def validate(self) -> None:
        _require(self.name, "name", "a policy template")
        _require(self.kms, "kms", "a policy template")


@dataclass(frozen=True)
class KeyRotationConfig:
    """Request to rotate the material of an existing key."""
    key_id: str
    id: str = ""

    def validate(self) -> None:
        _require(self.key_id, "key_id", "a key rotation")
