# backend/app/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


START_POLICIES = ("force_end", "reject")


class Settings:
    # ================= Collaborator (OpenAI) =================
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Collaborator calls that take longer than this are treated as failures
    LLM_TIMEOUT_SECONDS: float = _float_env("LLM_TIMEOUT_SECONDS", "12.0")

    # ================= Nudge pipeline =================
    NUDGE_INTERVAL_SECONDS: float = _float_env("NUDGE_INTERVAL_SECONDS", "3.0")
    NUDGE_THROTTLE_SECONDS: float = _float_env("NUDGE_THROTTLE_SECONDS", "2.5")
    NUDGE_COOLDOWN_SECONDS: float = _float_env("NUDGE_COOLDOWN_SECONDS", "60")
    NUDGE_CONTEXT_TURNS: int = _int_env("NUDGE_CONTEXT_TURNS", "12")
    NUDGE_MAX_SERVED: int = _int_env("NUDGE_MAX_SERVED", "16")
    NUDGE_MAX_PENDING: int = _int_env("NUDGE_MAX_PENDING", "32")

    # ================= Post-call sentiment =================
    # Upper bound on concurrent per-turn classification requests
    SENTIMENT_MAX_CONCURRENCY: int = _int_env("SENTIMENT_MAX_CONCURRENCY", "6")

    # ================= Call sessions =================
    # force_end: archive the running call and start the new one
    # reject: refuse with a conflict while a call is active
    CALL_START_POLICY: str = os.getenv("CALL_START_POLICY", "force_end").strip().lower()

    # IMPORTANT: keep localhost + 127.0.0.1 for Vite dev
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:5173,http://localhost:5173,http://127.0.0.1:8080,http://localhost:8080",
        )
    )

    # ================= Environment / logging =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILE: str = os.getenv("LOG_FILE", "logs/coaching_{time}.log")


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Check timing, queue and policy settings.

    Args:
        raise_on_error: raise ConfigValidationError when any error is found.

    Returns:
        {"errors": [...], "warnings": [...]}. Errors stop startup in
        production; warnings mean the coach runs degraded.
    """
    errors = []
    warnings = []

    if settings.LLM_TIMEOUT_SECONDS <= 0:
        errors.append(f"LLM_TIMEOUT_SECONDS must be > 0, got {settings.LLM_TIMEOUT_SECONDS}")
    if settings.NUDGE_INTERVAL_SECONDS <= 0:
        errors.append(f"NUDGE_INTERVAL_SECONDS must be > 0, got {settings.NUDGE_INTERVAL_SECONDS}")
    if settings.NUDGE_THROTTLE_SECONDS < 0:
        errors.append(f"NUDGE_THROTTLE_SECONDS must be >= 0, got {settings.NUDGE_THROTTLE_SECONDS}")
    if settings.NUDGE_COOLDOWN_SECONDS < 0:
        errors.append(f"NUDGE_COOLDOWN_SECONDS must be >= 0, got {settings.NUDGE_COOLDOWN_SECONDS}")
    if settings.NUDGE_CONTEXT_TURNS < 1:
        errors.append(f"NUDGE_CONTEXT_TURNS must be >= 1, got {settings.NUDGE_CONTEXT_TURNS}")
    if settings.NUDGE_MAX_SERVED < 1:
        errors.append(f"NUDGE_MAX_SERVED must be >= 1, got {settings.NUDGE_MAX_SERVED}")
    if settings.NUDGE_MAX_PENDING < settings.NUDGE_MAX_SERVED:
        errors.append("NUDGE_MAX_PENDING must be >= NUDGE_MAX_SERVED")
    if settings.SENTIMENT_MAX_CONCURRENCY < 1:
        errors.append(f"SENTIMENT_MAX_CONCURRENCY must be >= 1, got {settings.SENTIMENT_MAX_CONCURRENCY}")
    if settings.CALL_START_POLICY not in START_POLICIES:
        errors.append(
            f"CALL_START_POLICY must be one of {', '.join(START_POLICIES)}, "
            f"got {settings.CALL_START_POLICY!r}"
        )

    # Warnings - Degraded functionality
    if not settings.OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY missing - nudges, score deltas and sentiment will degrade to neutral")

    if settings.ENVIRONMENT == "production":
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence summary for the health endpoint."""
    return {
        "environment": settings.ENVIRONMENT,
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "openai_model": settings.OPENAI_MODEL,
        "call_start_policy": settings.CALL_START_POLICY,
        "nudge_interval_seconds": settings.NUDGE_INTERVAL_SECONDS,
    }
