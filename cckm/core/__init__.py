"""Reconciliation core.

Architecture:
- ciphertrust/: REST gateway (client, endpoints, exceptions)
- models.py: ObservedState snapshots, RemoteOperation, ReconcileResult
- desired.py: Declared desired configuration per resource type
- identity.py: Local resource id encoding
- delta.py: Which remote operations a desired configuration requires
- transitions.py: Polls asynchronous connect/disconnect to completion
- locks.py: Per-key mutual exclusion for ACL read-modify-write
- resources/: One reconciler per resource type
- manifest.py: YAML manifests into desired configuration
"""
from .models import (
    ConnectionState,
    ObservedState,
    ReconcileResult,
    ReconcileWarning,
    RemoteOperation,
)
from .transitions import drive_transition
from .locks import LockRegistry, acl_locks
from .manifest import load_manifest

__all__ = [
    "ConnectionState",
    "ObservedState",
    "ReconcileResult",
    "ReconcileWarning",
    "RemoteOperation",
    "drive_transition",
    "LockRegistry",
    "acl_locks",
    "load_manifest",
]
