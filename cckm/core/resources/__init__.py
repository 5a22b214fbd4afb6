"""One reconciler per resource type.

Each reconciler takes a CipherTrustClient and exposes create(desired),
read(resource_id), update(desired, prior) and delete(prior), all returning
a ReconcileResult.

Usage:
    from cckm.config import load_settings
    from cckm.core.ciphertrust import CipherTrustClient
    from cckm.core.resources import CustomKeyStoreReconciler

    cfg = load_settings()
    client = CipherTrustClient.from_settings(cfg)
    result = CustomKeyStoreReconciler.from_settings(client, cfg).update(desired, prior)
    for warning in result.warnings:
        print(warning)
"""
from .base import Reconciler
from .kms import KmsReconciler
from .acls import AclReconciler
from .custom_key_store import CustomKeyStoreReconciler
from .keys import KeyReconciler
from .policy_template import PolicyTemplateReconciler
from .key_rotation import KeyRotationReconciler

RECONCILERS = {
    KmsReconciler.resource_type: KmsReconciler,
    AclReconciler.resource_type: AclReconciler,
    CustomKeyStoreReconciler.resource_type: CustomKeyStoreReconciler,
    KeyReconciler.resource_type: KeyReconciler,
    PolicyTemplateReconciler.resource_type: PolicyTemplateReconciler,
    KeyRotationReconciler.resource_type: KeyRotationReconciler,
}

__all__ = [
    "Reconciler",
    "KmsReconciler",
    "AclReconciler",
    "CustomKeyStoreReconciler",
    "KeyReconciler",
    "PolicyTemplateReconciler",
    "KeyRotationReconciler",
    "RECONCILERS",
]
