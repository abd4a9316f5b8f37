"""Centralized configuration for the Support Orchestrator.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/support-orchestrator/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = "/support-orchestrator"

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 cannot reach
    SSM.  Errors are logged at DEBUG so local runs stay quiet.
    """
    try:
        import boto3  # noqa: PLC0415 — only needed on AWS

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _resolve(name: str) -> str | None:
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _resolve(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


def _optional_env(name: str, default: str = "") -> str:
    return _resolve(name) or default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")

# Classification is a cheap, deterministic call; responses get the same
# model by default but can be pointed at a larger one.
CLASSIFIER_MODEL_NAME: str = os.getenv("CLASSIFIER_MODEL_NAME", "claude-haiku-4-5")
RESPONSE_MODEL_NAME: str = os.getenv("RESPONSE_MODEL_NAME", "claude-haiku-4-5")

# ── Letta memory / knowledge store ──────────────────────────────────
# Missing key is allowed: memory and knowledge stages then degrade.
LETTA_API_KEY: str = _optional_env("LETTA_API_KEY")
LETTA_BASE_URL: str = os.getenv("LETTA_BASE_URL", "https://api.letta.com")
LETTA_AGENT_ID: str | None = os.getenv("LETTA_AGENT_ID") or None

# ── Persistence ─────────────────────────────────────────────────────
DATABASE_URL: str = _optional_env("DATABASE_URL", "sqlite:///support.db")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3001"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173,http://localhost:8080",
).split(",")
