"""Load declarative resource manifests (YAML) into desired configuration.

Format:

    resources:
      - type: aws_kms
        name: kms-prod
        account_id: "111122223333"
        aws_connection: aws-conn
        regions: [us-east-1]
      - type: aws_acl
        kms_id: 6d2f...
        group: CCKM Users
        actions: [view, keycreate]

Usage:
    for desired in load_manifest(Path("cckm.yaml")):
        desired.validate()
"""
from __future__ import annotations
import dataclasses
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

import yaml

from .desired import (
    AclConfig,
    CredentialRotationJob,
    CustomKeyStoreAwsParams,
    CustomKeyStoreConfig,
    KeyConfig,
    KeyPolicy,
    KeyRotationConfig,
    KmsConfig,
    LocalHostedParams,
    PolicyTemplateConfig,
    ReplicaSource,
    RotationJob,
)

logger = logging.getLogger(__name__)


def _build(cls, data: Any, nested: Dict[str, Callable[[Any], Any]] | None = None):
    """Instantiate a desired-configuration dataclass from a mapping.

    Lists become tuples (or frozensets for set-typed fields) so the result
    is hashable and immutable like the rest of the desired configuration.

    Raises:
        ValueError: On a non-mapping value or an unknown field
    """
    if not isinstance(data, dict):
        raise ValueError(f"{cls.__name__} expects a mapping, got {type(data).__name__}")
    nested = nested or {}
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown field(s) for {cls.__name__}: {', '.join(unknown)}")
    kwargs = {}
    for name, value in data.items():
        if value is None:
            continue
        if name in nested:
            value = nested[name](value)
        elif isinstance(value, list):
            value = frozenset(value) if isinstance(known[name].default, frozenset) else tuple(value)
        kwargs[name] = value
    return cls(**kwargs)


def _key_policy(data: Any) -> KeyPolicy:
    if isinstance(data, dict) and "policytemplate" in data:
        data = dict(data)
        data["policy_template"] = data.pop("policytemplate")
    return _build(KeyPolicy, data)


BUILDERS: Dict[str, Callable[[dict], Any]] = {
    "aws_kms": lambda data: _build(KmsConfig, data),
    "aws_acl": lambda data: _build(AclConfig, data),
    "aws_custom_key_store": lambda data: _build(CustomKeyStoreConfig, data, {
        "aws_param": lambda v: _build(CustomKeyStoreAwsParams, v),
        "local_hosted_params": lambda v: _build(LocalHostedParams, v),
        "enable_credential_rotation": lambda v: _build(CredentialRotationJob, v),
    }),
    "aws_key": lambda data: _build(KeyConfig, data, {
        "key_policy": _key_policy,
        "enable_rotation": lambda v: _build(RotationJob, v),
        "replicate_key": lambda v: _build(ReplicaSource, v),
        "tags": lambda v: {str(k): str(t) for k, t in dict(v).items()},
    }),
    "aws_policy_template": lambda data: _build(PolicyTemplateConfig, data, {"key_policy": _key_policy}),
    "aws_key_rotation": lambda data: _build(KeyRotationConfig, data),
}


def load_manifest(source: Union[str, Path]) -> List[Any]:
    """Parse a manifest file or YAML text into desired configurations.

    Args:
        source: Path to a YAML file, or the YAML text itself

    Returns:
        Desired configuration values in document order

    Raises:
        ValueError: On malformed documents, unknown resource types or fields
    """
    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8")
    else:
        text = source
    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid manifest: {e}") from e
    if not isinstance(document, dict):
        raise ValueError("Manifest must be a mapping with a 'resources' list")

    resources = document.get("resources")
    if resources is None:
        resources = []
    if not isinstance(resources, list):
        raise ValueError("'resources' must be a list")

    desired = []
    for index, entry in enumerate(resources):
        if not isinstance(entry, dict) or "type" not in entry:
            raise ValueError(f"resources[{index}] must be a mapping with a 'type'")
        fields = dict(entry)
        resource_type = fields.pop("type")
        builder = BUILDERS.get(resource_type)
        if builder is None:
            raise ValueError(f"resources[{index}]: unknown resource type {resource_type!r}")
        try:
            desired.append(builder(fields))
        except (TypeError, ValueError) as e:
            raise ValueError(f"resources[{index}] ({resource_type}): {e}") from e
    logger.info(f"[manifest] Loaded {len(desired)} resource(s)")
    return desired
