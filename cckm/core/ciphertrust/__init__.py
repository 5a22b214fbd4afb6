"""CipherTrust Manager REST gateway.

Architecture:
- client.py: HTTP client with sign-in and token auto-refresh
- endpoints.py: Collection paths and object action paths
- exceptions.py: Typed error taxonomy
"""
from .client import CipherTrustClient, REQUEST_TIMEOUT, SUCCESS_STATUSES
from .endpoints import (
    URL_AUTH_TOKENS,
    URL_AWS_KMS,
    URL_AWS_CUSTOM_KEY_STORES,
    URL_AWS_KEYS,
    URL_AWS_POLICY_TEMPLATES,
    object_path,
)
from .exceptions import (
    CckmError,
    TransportError,
    CipherTrustAPIError,
    TransitionError,
    TransitionTimeoutError,
    TransitionFailedError,
    TransitionCancelledError,
    ReconcileError,
)

__all__ = [
    # Client
    "CipherTrustClient",
    "REQUEST_TIMEOUT",
    "SUCCESS_STATUSES",

    # Endpoints
    "URL_AUTH_TOKENS",
    "URL_AWS_KMS",
    "URL_AWS_CUSTOM_KEY_STORES",
    "URL_AWS_KEYS",
    "URL_AWS_POLICY_TEMPLATES",
    "object_path",

    # Exceptions
    "CckmError",
    "TransportError",
    "CipherTrustAPIError",
    "TransitionError",
    "TransitionTimeoutError",
    "TransitionFailedError",
    "TransitionCancelledError",
    "ReconcileError",
]
