"""Pytest shared fixtures for the reconciliation tests."""
import copy
import json
import pathlib
import sys
import threading
import time
import uuid
from collections import deque
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from cckm import audit
from cckm.core.ciphertrust.endpoints import (
    URL_AWS_CUSTOM_KEY_STORES,
    URL_AWS_KEYS,
    URL_AWS_KMS,
    URL_AWS_POLICY_TEMPLATES,
)
from cckm.core.ciphertrust.exceptions import CipherTrustAPIError

COLLECTIONS = (URL_AWS_CUSTOM_KEY_STORES, URL_AWS_KEYS, URL_AWS_KMS, URL_AWS_POLICY_TEMPLATES)


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200, url: str = "https://ctm.test"):
        self._payload = payload
        self.status_code = status_code
        self.url = url
        self.text = "" if payload is None else (payload if isinstance(payload, str) else json.dumps(payload))

    def json(self):
        if isinstance(self._payload, str):
            return json.loads(self._payload)
        return self._payload


@pytest.fixture()
def stub_response():
    return StubResponse


@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Unit tests never reach a real CipherTrust Manager."""

    def _refuse(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP call in unit test: {url}")

    for name in ("get", "post", "patch", "delete"):
        monkeypatch.setattr(requests, name, _refuse)


@pytest.fixture(autouse=True)
def _no_audit_files(monkeypatch):
    """Audit trail is exercised by its own tests only."""
    monkeypatch.setenv("CCKM_AUDIT_ENABLED", "false")
    monkeypatch.setattr(audit, "_overrides", {"enabled": None, "signing_key": None})


# ─────────────────────────────────────────────────────────────────────────────
# In-memory CipherTrust Manager
# ─────────────────────────────────────────────────────────────────────────────
def _not_found(path: str) -> CipherTrustAPIError:
    return CipherTrustAPIError(404, '{"codeDesc":"NCERRResourceNotFound: Resource not found"}', path)


class FakeGateway:
    """Gateway double holding documents in memory and recording every call.

    Understands the CCKM sub-resource actions the reconcilers use
    (update-acls, connect, block, add-alias, schedule-deletion, ...) well
    enough to act as a simulated server.

    Attributes:
        objects: (collection, id) -> document
        calls: (method, path, body) tuples in call order
        call_log: (thread name, method, path) tuples in call order
        delay: Seconds each call sleeps, to widen race windows
    """

    def __init__(self):
        self.objects: dict = {}
        self.calls: list = []
        self.call_log: list = []
        self.delay = 0.0
        self._failures: dict = {}
        self._connection_states: dict = {}
        self._lock = threading.Lock()

    # Setup helpers --------------------------------------------------------
    def add(self, collection: str, document: dict) -> dict:
        document = copy.deepcopy(document)
        document.setdefault("id", str(uuid.uuid4()))
        self.objects[(collection, document["id"])] = document
        return document

    def document(self, collection: str, object_id: str) -> dict:
        return self.objects[(collection, object_id)]

    def fail(self, method: str, path: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` calls of `method` on `path` raise `error`."""
        self._failures.setdefault((method, path), deque()).extend([error] * times)

    def script_connection_states(self, collection: str, object_id: str, states) -> None:
        """Successive GETs of the object report these connection states."""
        self._connection_states[(collection, object_id)] = deque(states)

    def calls_for(self, method: str) -> list:
        return [call for call in self.calls if call[0] == method]

    @property
    def mutations(self) -> list:
        return [call for call in self.calls if call[0] != "get" and call[0] != "list"]

    # Gateway interface ----------------------------------------------------
    def get(self, object_id: str, collection: str):
        path = f"{collection}/{object_id}"
        self._record("get", path, None)
        with self._lock:
            document = self.objects.get((collection, object_id))
            if document is None:
                raise _not_found(path)
            states = self._connection_states.get((collection, object_id))
            if states:
                state = states.popleft() if len(states) > 1 else states[0]
                document.setdefault("aws_param", {})["connection_state"] = state
            return copy.deepcopy(document)

    def list(self, collection: str, filters: Optional[dict] = None):
        self._record("list", collection, filters)
        filters = filters or {}
        with self._lock:
            matches = []
            for (coll, _), document in self.objects.items():
                if coll != collection:
                    continue
                if "region" in filters and document.get("region") != filters["region"]:
                    continue
                if "keyid" in filters and document.get("aws_param", {}).get("KeyID") != filters["keyid"]:
                    continue
                matches.append(copy.deepcopy(document))
            return matches

    def post(self, path: str, body: Optional[dict] = None):
        self._record("post", path, body)
        collection, object_id, action = self._split(path)
        with self._lock:
            if object_id is None:
                return copy.deepcopy(self._create(collection, body or {}))
            document = self.objects.get((collection, object_id))
            if document is None:
                raise _not_found(path)
            if action == "replicate-key":
                return copy.deepcopy(self._replicate(document, body or {}))
            self._act(document, action, body or {})
            return copy.deepcopy(document)

    def update(self, path: str, body: dict):
        self._record("update", path, body)
        collection, object_id, _ = self._split(path)
        with self._lock:
            document = self.objects.get((collection, object_id))
            if document is None:
                raise _not_found(path)
            _merge(document, body)
            return copy.deepcopy(document)

    def delete(self, path: str):
        self._record("delete", path, None)
        collection, object_id, _ = self._split(path)
        with self._lock:
            if self.objects.pop((collection, object_id), None) is None:
                raise _not_found(path)
        return ""

    # Internals ------------------------------------------------------------
    def _record(self, method: str, path: str, body) -> None:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((method, path, copy.deepcopy(body)))
            self.call_log.append((threading.current_thread().name, method, path))
            failures = self._failures.get((method, path))
            if failures:
                raise failures.popleft()

    @staticmethod
    def _split(path: str):
        for collection in COLLECTIONS:
            if path == collection:
                return collection, None, None
            if path.startswith(collection + "/"):
                object_id, _, action = path[len(collection) + 1:].partition("/")
                return collection, object_id, action or None
        raise AssertionError(f"FakeGateway does not serve {path}")

    def _create(self, collection: str, body: dict) -> dict:
        document = copy.deepcopy(body)
        document["id"] = str(uuid.uuid4())
        if collection == URL_AWS_KEYS:
            aws_param = document.setdefault("aws_param", {})
            aws_param["KeyID"] = str(uuid.uuid4())
            aws_param["Enabled"] = True
            aws_param["KeyState"] = "Enabled"
            aws_param["KeyRotationEnabled"] = False
            alias = aws_param.pop("Alias", None)
            aws_param["Alias"] = [f"alias/{alias}"] if alias else []
        elif collection == URL_AWS_CUSTOM_KEY_STORES:
            document.setdefault("aws_param", {})["connection_state"] = "DISCONNECTED"
            document.setdefault("local_hosted_params", {})["linked_state"] = bool(document.pop("linked_state", False))
        elif collection == URL_AWS_KMS:
            document.setdefault("acls", [])
        self.objects[(collection, document["id"])] = document
        return document

    def _replicate(self, source: dict, body: dict) -> dict:
        replica = {k: v for k, v in body.items() if k != "replica_region"}
        replica.update(kms=source.get("kms"), region=body["replica_region"])
        replica = self._create(URL_AWS_KEYS, replica)
        replica["aws_param"]["KeyID"] = source.get("aws_param", {}).get("KeyID", replica["aws_param"]["KeyID"])
        return replica

    def _act(self, document: dict, action: Optional[str], body: dict) -> None:
        aws_param = document.setdefault("aws_param", {})
        if action == "update-acls":
            for entry in body.get("container_acls", []):
                _apply_acl(document.setdefault("acls", []), entry)
        elif action in ("connect", "disconnect"):
            if (URL_AWS_CUSTOM_KEY_STORES, document["id"]) not in self._connection_states:
                aws_param["connection_state"] = "CONNECTED" if action == "connect" else "DISCONNECTED"
        elif action in ("block", "unblock"):
            document.setdefault("local_hosted_params", {})["blocked"] = action == "block"
        elif action == "link":
            document.setdefault("local_hosted_params", {})["linked_state"] = True
            _merge(document, body)
        elif action in ("enable", "disable"):
            aws_param["Enabled"] = action == "enable"
        elif action == "add-alias":
            aws_param.setdefault("Alias", []).append(f"alias/{body['alias']}")
        elif action == "delete-alias":
            aws_param["Alias"] = [a for a in aws_param.get("Alias", []) if a != f"alias/{body['alias']}"]
        elif action == "add-tags":
            aws_param.setdefault("Tags", []).extend(body["tags"])
        elif action == "remove-tags":
            aws_param["Tags"] = [t for t in aws_param.get("Tags", []) if t["TagKey"] not in body["tags"]]
        elif action == "update-description":
            aws_param["Description"] = body["description"]
        elif action in ("enable-auto-rotation", "disable-auto-rotation"):
            aws_param["KeyRotationEnabled"] = action == "enable-auto-rotation"
        elif action == "schedule-deletion":
            aws_param["KeyState"] = "PendingDeletion"


def _merge(target: dict, patch: dict) -> None:
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _apply_acl(acls: list, entry: dict) -> None:
    field_name = "user_id" if entry.get("user_id") else "group"
    subject = entry[field_name]
    current = next((a for a in acls if a.get(field_name) == subject), None)
    if current is None:
        current = {field_name: subject, "actions": []}
        acls.append(current)
    actions = set(current["actions"])
    if entry["permit"]:
        actions |= set(entry["actions"])
    else:
        actions -= set(entry["actions"])
    current["actions"] = sorted(actions)
    if not actions:
        acls.remove(current)


@pytest.fixture()
def gateway():
    """Fresh in-memory CipherTrust Manager."""
    return FakeGateway()


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: tests that start threads against the lock registry"
    )
