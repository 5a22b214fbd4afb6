"""CipherTrust Manager CCKM collection paths and object actions."""
from __future__ import annotations

URL_AUTH_TOKENS = "api/v1/auth/tokens"

URL_AWS_KMS = "api/v1/cckm/aws/kms"
URL_AWS_CUSTOM_KEY_STORES = "api/v1/cckm/aws/custom-key-stores"
URL_AWS_KEYS = "api/v1/cckm/aws/keys"
URL_AWS_POLICY_TEMPLATES = "api/v1/cckm/aws/templates"


def object_path(collection: str, object_id: str, action: str | None = None) -> str:
    """Build `{collection}/{id}` or `{collection}/{id}/{action}`."""
    path = f"{collection}/{object_id}"
    if action:
        path = f"{path}/{action}"
    return path
