"""Low-level HTTP client for the CipherTrust Manager REST API.

Handles authentication, token management, and the five remote object
operations the reconcilers consume: get, list, post, update, delete.
"""
from __future__ import annotations
import logging
import os
from typing import Optional, Dict, Any, Mapping, Sequence, Union
from datetime import datetime, timedelta

import requests

from .endpoints import URL_AUTH_TOKENS
from .exceptions import CipherTrustAPIError, TransportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 180
TOKEN_LIFETIME_SECONDS = 300
SUCCESS_STATUSES = frozenset({200, 201, 202, 203, 204, 206})

Filters = Mapping[str, Union[str, Sequence[str]]]


class CipherTrustClient:
    """HTTP client for CipherTrust Manager with automatic token management.

    Features:
    - Password sign-in with token refresh before expiry
    - Centralized error handling (API errors vs transport errors)
    - JSON in, JSON out

    Usage:
        client = CipherTrustClient("https://ciphertrust.example.com")
        client.authenticate("admin", "password")
        kms = client.get(kms_id, "api/v1/cckm/aws/kms")
    """

    def __init__(self, base_url: Optional[str] = None, *, verify_tls: bool = True, timeout: float = REQUEST_TIMEOUT):
        """Initialize CipherTrust client.

        Args:
            base_url: CipherTrust Manager URL (defaults to CIPHERTRUST_URL env var)
            verify_tls: Verify the server certificate
            timeout: Per-request timeout in seconds
        """
        self.base_url = (base_url or os.environ.get("CIPHERTRUST_URL", "https://localhost")).rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, cfg) -> "CipherTrustClient":
        """Build an authenticated client from a CckmConfig."""
        client = cls(cfg.base_url, verify_tls=cfg.verify_tls, timeout=cfg.request_timeout)
        client.authenticate(cfg.username, cfg.password, domain=cfg.domain, auth_domain=cfg.auth_domain)
        return client

    def authenticate(self, username: str, password: str, *, domain: str = "", auth_domain: str = "") -> str:
        """Sign in and store credentials for auto-refresh.

        Args:
            username: CipherTrust Manager user
            password: User password
            domain: Domain to operate in (empty for root)
            auth_domain: Domain the user authenticates against

        Returns:
            Bearer token
        """
        if not username or not password:
            raise TransportError("Missing username or password for CipherTrust Manager sign-in")
        self._auth_params = {
            "username": username,
            "password": password,
            "domain": domain,
            "auth_domain": auth_domain,
        }
        return self.refresh_token()

    def refresh_token(self) -> str:
        """Force a new token using the stored credentials."""
        if not self._auth_params:
            raise TransportError("Not authenticated - call authenticate() first")
        self._token = self._sign_in(**self._auth_params)
        self._token_expires_at = datetime.now() + timedelta(seconds=TOKEN_LIFETIME_SECONDS)
        return self._token

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        if not self._token or not self._token_expires_at:
            raise TransportError("Not authenticated - call authenticate() first")
        # Refresh if token expired or expiring within 10 seconds
        if datetime.now() >= self._token_expires_at - timedelta(seconds=10):
            self.refresh_token()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Content-Type": "application/json"}

    def get(self, object_id: str, collection: str) -> Any:
        """Fetch one object by id.

        Args:
            object_id: Object identifier
            collection: Collection path (e.g., "api/v1/cckm/aws/keys")

        Returns:
            Decoded JSON document

        Raises:
            CipherTrustAPIError: On HTTP error
            TransportError: On network failure or undecodable body
        """
        self._ensure_authenticated()
        url = f"{self.base_url}/{collection}/{object_id}"
        logger.debug(f"[gateway] GET {url}")
        try:
            resp = requests.get(url, headers=self._headers(), timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"GET {url} failed: {e}") from e
        return self._decode(resp)

    def list(self, collection: str, filters: Optional[Filters] = None) -> list:
        """List objects of a collection.

        Args:
            collection: Collection path
            filters: Flat key/value multimap of query filters

        Returns:
            The "resources" array of the response (empty list if absent)
        """
        self._ensure_authenticated()
        url = f"{self.base_url}/{collection}"
        params = [(key, value) for key, values in (filters or {}).items() for value in _as_list(values)]
        logger.debug(f"[gateway] GET {url} filters={params}")
        try:
            resp = requests.get(url, params=params, headers=self._headers(), timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"GET {url} failed: {e}") from e
        body = self._decode(resp)
        if isinstance(body, dict):
            return body.get("resources") or []
        return body or []

    def post(self, path: str, body: Optional[Dict] = None) -> Any:
        """Execute POST request; an empty body is sent when body is None.

        Args:
            path: API path relative to the base URL
            body: JSON payload

        Returns:
            Decoded JSON document ({} for an empty response)
        """
        self._ensure_authenticated()
        url = f"{self.base_url}/{path}"
        logger.debug(f"[gateway] POST {url}")
        try:
            resp = requests.post(url, json=body, headers=self._headers(), timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"POST {url} failed: {e}") from e
        return self._decode(resp)

    def update(self, path: str, body: Dict) -> Any:
        """Execute PATCH request.

        Args:
            path: API path relative to the base URL (including the object id)
            body: JSON payload with the fields to change

        Returns:
            Decoded JSON document
        """
        self._ensure_authenticated()
        url = f"{self.base_url}/{path}"
        logger.debug(f"[gateway] PATCH {url}")
        try:
            resp = requests.patch(url, json=body, headers=self._headers(), timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"PATCH {url} failed: {e}") from e
        return self._decode(resp)

    def delete(self, path: str) -> str:
        """Execute DELETE request.

        Returns:
            Raw response text (usually empty)
        """
        self._ensure_authenticated()
        url = f"{self.base_url}/{path}"
        logger.debug(f"[gateway] DELETE {url}")
        try:
            resp = requests.delete(url, headers=self._headers(), timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"DELETE {url} failed: {e}") from e
        self._handle_error(resp)
        return resp.text or ""

    def _sign_in(self, username: str, password: str, domain: str = "", auth_domain: str = "") -> str:
        """Obtain a bearer token via password grant."""
        url = f"{self.base_url}/{URL_AUTH_TOKENS}"
        data = {
            "grant_type": "password",
            "username": username,
            "password": password,
            "domain": domain,
            "auth_domain": auth_domain,
        }
        try:
            resp = requests.post(url, json=data, timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            raise TransportError(f"Sign-in to {url} failed: {e}") from e
        if resp.status_code not in SUCCESS_STATUSES:
            raise CipherTrustAPIError(resp.status_code, resp.text, url)
        try:
            return resp.json()["jwt"]
        except (ValueError, KeyError) as e:
            raise TransportError(f"Sign-in response from {url} carries no token") from e

    def _decode(self, resp: requests.Response) -> Any:
        """Check status and decode the JSON body."""
        self._handle_error(resp)
        if resp.status_code == 204 or not resp.text:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {resp.url}: {e}") from e

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            CipherTrustAPIError: If response status is not a success status
        """
        if resp.status_code not in SUCCESS_STATUSES:
            raise CipherTrustAPIError(resp.status_code, resp.text, resp.url)


def _as_list(value: Union[str, Sequence[str]]) -> list:
    if isinstance(value, str):
        return [value]
    return list(value)
