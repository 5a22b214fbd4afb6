"""Declarative reconciliation of CipherTrust CCKM objects for AWS.

Reconciles AWS KMS accounts, container ACLs, custom key stores, keys,
key policy templates and key material rotation against the CipherTrust
Manager REST API.
"""

__version__ = "0.1.0"
