# ==============================================================================
# FILE: shopsupport/core_config.py
# DESCRIPTION: Configuration for Azure Key Vault secrets, MongoDB and the
#              real-time session layer.
# NOTES: Avoid module-level cloud calls; build credentials lazily and prefer
#        environment variables to keep local/dev robust.
# ==============================================================================
import os
from dataclasses import dataclass
from typing import Optional, Any

from dotenv import load_dotenv
from azure.identity import DefaultAzureCredential
from motor.motor_asyncio import AsyncIOMotorClient

from logs.logging_config import get_core_logger

load_dotenv()
logger = get_core_logger("core_config")

# -----------------------------
# Azure Key Vault utilities (lazy, optional)
# -----------------------------
def _get_kv_uri() -> Optional[str]:
    name = os.getenv("AZURE_KEY_VAULT_NAME")
    if name:
        return f"https://{name.strip()}.vault.azure.net/"
    return None

def _build_secret_client() -> Optional[Any]:
    """Create a SecretClient lazily if Key Vault is configured; otherwise return None."""
    kv_uri = _get_kv_uri()
    if not kv_uri:
        return None
    from azure.keyvault.secrets import SecretClient
    cred = DefaultAzureCredential()
    return SecretClient(vault_url=kv_uri, credential=cred)


_SECRET_ALIASES = {
    "MongoURI": ("MONGO_URI", "MONGODB_URI", "MONGO_URL"),
    "OpenAIApiKey": ("OPENAI_API_KEY", "OPENAI_KEY"),
    "JwtSecret": ("JWT_SECRET",),
}


def get_secret(name: str) -> str:
    """Get a secret value from environment or Key Vault.

    Order:
    1) Environment variable by exact uppercased name (e.g., JwtSecret -> JWTSECRET)
    2) Common env aliases for well-known secrets (e.g., OpenAIApiKey -> OPENAI_API_KEY | OPENAI_KEY)
    3) Azure Key Vault secret by the provided name, if KV is configured
    """
    env_val = os.getenv(name.upper())
    if env_val:
        return env_val

    for alias in _SECRET_ALIASES.get(name, ()):
        val = os.getenv(alias)
        if val:
            return val

    client = _build_secret_client()
    if client is not None:
        try:
            secret = client.get_secret(name)
        except Exception as e:
            logger.warning(f"Key Vault lookup failed for secret '{name}': {e}")
        else:
            if secret and getattr(secret, "value", None):
                return secret.value

    raise ValueError(f"Secret '{name}' not found in environment or Key Vault")

# -----------------------------
# MongoDB Connection
# -----------------------------
def get_mongo_client() -> AsyncIOMotorClient:
    """Get MongoDB client using MONGO_URI env or Key Vault secret 'MongoURI'.

    Avoids defaulting to localhost, to prevent accidental local fallbacks.
    """
    conn_str = os.getenv("MONGO_URI") or get_secret("MongoURI")
    return AsyncIOMotorClient(conn_str)


def get_mongo_db_name() -> str:
    return os.getenv("MONGO_DB_NAME", "shopsupport")

# -----------------------------
# Session layer settings
# -----------------------------
DUPLICATE_POLICY_REPLACE = "replace"
DUPLICATE_POLICY_REJECT = "reject"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default


@dataclass
class SessionConfig:
    duplicate_policy: str = DUPLICATE_POLICY_REPLACE
    heartbeat_interval: float = 120.0
    history_window: int = 5
    suggestion_timeout: float = 20.0
    suggestions_enabled: bool = True
    auto_response_enabled: bool = True

    def __post_init__(self):
        if self.duplicate_policy not in (DUPLICATE_POLICY_REPLACE, DUPLICATE_POLICY_REJECT):
            raise ValueError(f"Unknown duplicate session policy: {self.duplicate_policy}")
        # Suggestion prompts only ever see the last few messages
        self.history_window = max(1, min(10, int(self.history_window)))


def get_session_config() -> SessionConfig:
    """Read session layer settings from the environment."""
    return SessionConfig(
        duplicate_policy=os.getenv("SESSION_DUPLICATE_POLICY", DUPLICATE_POLICY_REPLACE).strip().lower(),
        heartbeat_interval=_env_float("SESSION_HEARTBEAT_INTERVAL", 120.0),
        history_window=int(_env_float("AI_HISTORY_WINDOW", 5)),
        suggestion_timeout=_env_float("AI_SUGGESTION_TIMEOUT", 20.0),
        suggestions_enabled=_env_bool("AI_SUGGESTIONS_ENABLED", True),
        auto_response_enabled=_env_bool("AI_AUTO_RESPONSE_ENABLED", True),
    )


__all__ = [
    "get_secret",
    "get_mongo_client",
    "get_mongo_db_name",
    "SessionConfig",
    "get_session_config",
    "DUPLICATE_POLICY_REPLACE",
    "DUPLICATE_POLICY_REJECT",
]
