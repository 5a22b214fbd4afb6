"""Audit logging for remote mutations issued by the reconcilers."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
_default_secret_paths: list[Path] = []
_env_secret_path_str = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
_env_secret_path: Path | None = None
if _env_secret_path_str:
    _env_secret_path = Path(_env_secret_path_str)
    _default_secret_paths.append(_env_secret_path)
_default_secret_paths.extend([
    Path("/run/secrets/audit_log_signing_key"),
    Path(".runtime/secrets/audit_log_signing_key"),
])
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "cckm-events.jsonl"

EventType = Literal[
    "create", "update", "delete",
    "connect", "disconnect", "block", "unblock", "link",
    "enable_credential_rotation_job", "disable_credential_rotation_job",
    "acl_grant", "acl_revoke",
    "enable", "disable", "policy", "update_description",
    "add_alias", "delete_alias", "add_tags", "remove_tags",
    "enable_auto_rotation", "disable_auto_rotation",
    "enable_rotation_job", "disable_rotation_job",
    "replicate_key", "update_primary_region",
    "rotate_material", "schedule_deletion",
]

ResourceType = Literal[
    "aws_kms", "aws_acl", "aws_custom_key_store",
    "aws_key", "aws_policy_template", "aws_key_rotation",
]


# Values set by configure(); None falls back to the environment.
_overrides: dict[str, Any] = {"enabled": None, "signing_key": None}


def configure(*, enabled: bool | None = None, signing_key: str | None = None) -> None:
    """Set the audit switch and signing key, overriding the environment.

    `load_settings()` calls this with the loaded configuration.
    """
    _overrides["enabled"] = enabled
    _overrides["signing_key"] = signing_key or None


def _audit_enabled() -> bool:
    if _overrides["enabled"] is not None:
        return _overrides["enabled"]
    return os.environ.get("CCKM_AUDIT_ENABLED", "true").strip().lower() in {"1", "true", "yes", "on"}


def _get_signing_key() -> bytes:
    """Get the audit signing key (configured, then secret file, then environment)."""
    if _overrides["signing_key"]:
        return _overrides["signing_key"].encode("utf-8")
    if _env_secret_path and _env_secret_path.exists():
        try:
            return _env_secret_path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError as e:
            logger.warning(f"[audit] Cannot read signing key file {_env_secret_path}: {e}")
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    for path in _default_secret_paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    resource_type: ResourceType,
    resource_id: str,
    *,
    operator: str = "cckm",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append one signed event to the audit trail.

    Args:
        event_type: Remote mutation (create, connect, acl_grant, ...)
        resource_type: Resource type the mutation belongs to
        resource_id: Local identifier of the resource
        operator: Who performed the operation
        details: Additional context (never secrets)
        success: Whether the operation succeeded
    """
    if not _audit_enabled():
        return
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(
    event_type: EventType,
    resource_type: ResourceType,
    resource_id: str,
    *,
    operator: str = "cckm",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Log an event, never raising.

    Audit failures must not break a reconciliation: they are reported through
    the module logger instead.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_event(
            event_type,
            resource_type,
            resource_id,
            operator=operator,
            details=details,
            success=success,
        )
        return True
    except Exception as e:
        logger.warning(f"[audit] Failed to log {event_type} event for {resource_type} {resource_id}: {e}")
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            stored_sig = event.pop("signature", "")
            if stored_sig and hmac.compare_digest(stored_sig, _sign_event(event)):
                valid += 1

    return total, valid
