"""Local resource identifiers.

- AWS key: `<region>\\<aws key id>`
- Key rotation: `<region>\\<aws key id>\\<uuid>`
- ACL: `<kms id>:<user|group>:<subject>`
"""
from __future__ import annotations
import uuid
from typing import Tuple

KEY_ID_SEPARATOR = "\\"
ACL_ID_SEPARATOR = ":"
ACL_SUBJECT_TYPES = ("user", "group")


def encode_aws_key_id(region: str, aws_key_id: str) -> str:
    return f"{region}{KEY_ID_SEPARATOR}{aws_key_id}"


def decode_aws_key_id(resource_id: str) -> Tuple[str, str]:
    """Split a local key id into (region, aws key id).

    A bare AWS key id (no region) decodes to ("", key id).

    Raises:
        ValueError: If the id has more than two parts
    """
    parts = resource_id.split(KEY_ID_SEPARATOR)
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"{resource_id} is not a valid AWS key resource id")


def encode_key_rotation_id(region: str, aws_key_id: str) -> str:
    """Rotation ids get a random suffix: every rotation is a distinct event."""
    return f"{encode_aws_key_id(region, aws_key_id)}{KEY_ID_SEPARATOR}{uuid.uuid4()}"


def encode_acl_id(kms_id: str, user_id: str = "", group: str = "") -> str:
    if user_id:
        return ACL_ID_SEPARATOR.join((kms_id, "user", user_id))
    return ACL_ID_SEPARATOR.join((kms_id, "group", group))


def decode_acl_id(resource_id: str) -> Tuple[str, str, str]:
    """Split an ACL id into (kms id, subject type, subject).

    The older `::` separated form is accepted too. The subject itself may
    contain the separator.

    Raises:
        ValueError: If the id is malformed
    """
    if "::" in resource_id:
        parts = resource_id.split("::", 2)
    else:
        parts = resource_id.split(ACL_ID_SEPARATOR, 2)
    if len(parts) != 3 or not all(parts) or parts[1] not in ACL_SUBJECT_TYPES:
        raise ValueError(f"{resource_id} is not a valid ACL resource id")
    return parts[0], parts[1], parts[2]


def decode_key_rotation_id(resource_id: str) -> Tuple[str, str, str]:
    """Split a rotation id into (region, aws key id, rotation uuid)."""
    parts = resource_id.split(KEY_ID_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"{resource_id} is not a valid key rotation resource id")
    return parts[0], parts[1], parts[2]
