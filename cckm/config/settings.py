"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from cckm import audit

logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")
DEFAULT_REQUEST_TIMEOUT = 180
DEFAULT_TRANSITION_INTERVAL = 20


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """`/run/secrets/<secret_name>` if present and non-empty, else `env_var`."""
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info(f"[settings] Loaded {secret_name} from {SECRETS_DIR}")
                return secret_value
        except OSError as e:
            logger.warning(f"[settings] Failed to read {secret_file}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.info(f"[settings] Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


def _env_bool(var_name: str, default: bool) -> bool:
    value = os.environ.get(var_name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(var_name: str, default: float) -> float:
    value = os.environ.get(var_name, "").strip()
    if not value:
        return default
    try:
        number = float(value)
    except ValueError as e:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {value!r}") from e
    if number <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive, got {value!r}")
    return number


@dataclass
class CckmConfig:
    """Connection and runtime configuration."""
    # CipherTrust Manager
    base_url: str
    username: str
    password: str
    domain: str = ""
    auth_domain: str = ""
    verify_tls: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Reconciliation
    transition_interval: float = DEFAULT_TRANSITION_INTERVAL

    # Audit
    audit_enabled: bool = True
    audit_log_signing_key: str = ""

    def __repr__(self) -> str:
        return (
            f"CckmConfig(base_url={self.base_url!r}, username={self.username!r}, "
            f"domain={self.domain!r}, auth_domain={self.auth_domain!r}, verify_tls={self.verify_tls})"
        )


def load_settings() -> CckmConfig:
    """Load settings from environment and /run/secrets.

    Raises:
        RuntimeError: If the base URL or credentials are missing, or a
            numeric setting cannot be parsed
    """
    base_url = os.environ.get("CIPHERTRUST_URL", "").strip().rstrip("/")
    if not base_url:
        raise RuntimeError("Environment variable CIPHERTRUST_URL is required.")

    username = _load_secret_from_file("ciphertrust_username", "CIPHERTRUST_USERNAME")
    password = _load_secret_from_file("ciphertrust_password", "CIPHERTRUST_PASSWORD")
    if not username or not password:
        raise RuntimeError(
            "CipherTrust Manager credentials not found. "
            "Provide CIPHERTRUST_USERNAME/CIPHERTRUST_PASSWORD via /run/secrets or environment."
        )

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""

    verify_tls = _env_bool("CIPHERTRUST_VERIFY_TLS", True)
    if not verify_tls:
        logger.warning("[settings] TLS verification disabled for CipherTrust Manager")

    cfg = CckmConfig(
        base_url=base_url,
        username=username,
        password=password,
        domain=os.environ.get("CIPHERTRUST_DOMAIN", ""),
        auth_domain=os.environ.get("CIPHERTRUST_AUTH_DOMAIN", ""),
        verify_tls=verify_tls,
        request_timeout=_env_number("CIPHERTRUST_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        transition_interval=_env_number("CCKM_TRANSITION_INTERVAL", DEFAULT_TRANSITION_INTERVAL),
        audit_enabled=_env_bool("CCKM_AUDIT_ENABLED", True),
        audit_log_signing_key=audit_log_signing_key,
    )
    audit.configure(enabled=cfg.audit_enabled, signing_key=cfg.audit_log_signing_key)
    logger.info(f"[settings] url={cfg.base_url}; domain={cfg.domain or 'root'}; user={cfg.username}")
    return cfg
