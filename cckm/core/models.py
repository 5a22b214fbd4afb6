"""Value types shared by the delta engine, transition driver and reconcilers."""
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional

# Connection directives accepted by a custom key store
CONNECT_KEYSTORE = "CONNECT_KEYSTORE"
DISCONNECT_KEYSTORE = "DISCONNECT_KEYSTORE"
CONNECTION_DIRECTIVES = (CONNECT_KEYSTORE, DISCONNECT_KEYSTORE)

WarningCategory = Literal["conflict", "partial_apply", "unverified"]

_MISSING = object()


class ConnectionState(str, Enum):
    """Remote connection state of a custom key store."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    DISCONNECTING = "DISCONNECTING"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "ConnectionState":
        try:
            return cls(str(value or "").upper())
        except ValueError:
            return cls.UNKNOWN


# Stable state each directive drives towards
DIRECTIVE_TARGETS = {
    CONNECT_KEYSTORE: ConnectionState.CONNECTED,
    DISCONNECT_KEYSTORE: ConnectionState.DISCONNECTED,
}


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return copy.copy(value)


@dataclass(frozen=True)
class ObservedState:
    """Read-only snapshot of a remote JSON document.

    Nested mappings are exposed as mapping proxies and lists as tuples, so
    a snapshot can be passed around without anybody mutating it in place.
    Every reconciliation pass fetches a fresh one.

    Usage:
        state = ObservedState.from_document(client.get(key_id, URL_AWS_KEYS))
        state.get("aws_param.KeyState")
    """
    document: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> "ObservedState":
        return cls(_freeze(dict(document or {})))

    def get(self, path: str, default: Any = None) -> Any:
        """Look up a dotted path (e.g. "aws_param.connection_state")."""
        node: Any = self.document
        for part in path.split("."):
            if not isinstance(node, Mapping):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return node

    def has(self, path: str) -> bool:
        return self.get(path, _MISSING) is not _MISSING

    @property
    def id(self) -> str:
        return str(self.document.get("id", ""))

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState.parse(self.get("aws_param.connection_state"))

    def to_dict(self) -> dict[str, Any]:
        """Mutable deep copy of the document."""
        return _thaw(self.document)


@dataclass(frozen=True)
class RemoteOperation:
    """A named side-effecting call against the gateway.

    Attributes:
        name: Operation name (connect, disconnect, block, update-acl, ...)
        method: Gateway method used to issue it ("post", "update" or "delete")
        path: API path relative to the base URL
        payload: JSON body, None for an empty body
        resource_id: Object the operation targets
    """
    name: str
    method: str
    path: str
    payload: Optional[dict] = None
    resource_id: str = ""


@dataclass(frozen=True)
class ReconcileWarning:
    """Non-fatal diagnostic attached to a reconciliation result."""
    summary: str
    details: Mapping[str, Any] = field(default_factory=dict)
    category: WarningCategory = "partial_apply"

    def __str__(self) -> str:
        detail = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.summary} ({detail})" if detail else self.summary


@dataclass
class ReconcileResult:
    """Outcome of one Create/Read/Update/Delete call.

    The required outcome (state) is kept apart from follow-up diagnostics,
    so callers can check "resource exists" independently of "every
    follow-up step succeeded".
    """
    resource_id: str = ""
    state: Optional[ObservedState] = None
    warnings: list[ReconcileWarning] = field(default_factory=list)
    applied: list[RemoteOperation] = field(default_factory=list)

    @property
    def exists(self) -> bool:
        return self.state is not None

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def warn(self, summary: str, *, category: WarningCategory = "partial_apply", **details: Any) -> ReconcileWarning:
        warning = ReconcileWarning(summary, dict(details), category)
        self.warnings.append(warning)
        return warning
