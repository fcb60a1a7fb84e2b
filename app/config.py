from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
try:
    from dotenv import load_dotenv
    if "PYTEST_CURRENT_TEST" not in os.environ:
        load_dotenv()
except ImportError:
    pass


DEFAULT_REGION = "us-east-1"
DEFAULT_MODEL_ID = "amazon.nova-pro-v1:0"
DEV_JWT_SECRET = "dev-insecure-secret"


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and injected into the app."""

    aws_region: str = DEFAULT_REGION
    model_id: str = DEFAULT_MODEL_ID
    environment: str = "development"
    provider: str = "bedrock"
    model_timeout_seconds: float = 30.0
    transcript_store: str = "sqlite"
    database_path: Path = field(default_factory=lambda: Path("data") / "transcripts.sqlite3")
    encryption_key: Optional[str] = None
    jwt_secret: str = DEV_JWT_SECRET
    token_ttl_seconds: int = 3600
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    """Build Settings from environment variables.

    Region precedence: AWS_REGION, BEDROCK_REGION, then us-east-1.
    Operating mode precedence: APP_ENV, NODE_ENV, then development.
    Raises RuntimeError when production mode lacks a JWT secret or an encryption key.
    """
    environment = (_env_str("APP_ENV") or _env_str("NODE_ENV") or "development").lower()
    origins = tuple(o.strip() for o in _env_str("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip())

    settings = Settings(
        aws_region=_env_str("AWS_REGION") or _env_str("BEDROCK_REGION") or DEFAULT_REGION,
        model_id=_env_str("BEDROCK_MODEL_ID") or DEFAULT_MODEL_ID,
        environment=environment,
        provider=(_env_str("AI_PROVIDER") or "bedrock").lower(),
        model_timeout_seconds=_env_float("AI_HTTP_TIMEOUT_SECONDS", 30.0),
        transcript_store=(_env_str("TRANSCRIPT_STORE") or "sqlite").lower(),
        database_path=Path(_env_str("DATABASE_PATH") or str(Path("data") / "transcripts.sqlite3")),
        encryption_key=_env_str("ENCRYPTION_KEY") or None,
        jwt_secret=_env_str("JWT_SECRET") or DEV_JWT_SECRET,
        token_ttl_seconds=_env_int("TOKEN_TTL_SECONDS", 3600),
        cors_origins=origins,
        log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
    )

    if settings.is_production:
        if settings.jwt_secret == DEV_JWT_SECRET:
            raise RuntimeError("JWT_SECRET is required in production")
        if not settings.encryption_key:
            raise RuntimeError("ENCRYPTION_KEY is required in production")
    return settings
