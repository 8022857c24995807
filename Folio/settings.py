import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)
load_dotenv(Path(__file__).resolve().parent / ".env", override=False)


# Runtime configuration pulled from env (real env vars win over .env files)
@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    auth_jwks_url: Optional[str] = None
    auth_audience: Optional[str] = None
    api_key_encryption_secret: Optional[str] = None
    log_level: str = "INFO"


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def load_settings() -> Settings:
    return Settings(
        database_url=normalize_database_url(os.getenv("DATABASE_URL")),
        redis_url=os.getenv("REDIS_URL") or None,
        auth_jwks_url=os.getenv("AUTH_JWKS_URL") or None,
        auth_audience=os.getenv("AUTH_AUDIENCE") or None,
        api_key_encryption_secret=os.getenv("API_KEY_ENCRYPTION_SECRET") or None,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )


# Resolves a configured URL (literal or `${VAR}`) the same way the app does; unresolved -> DATABASE_URL
def resolve_database_url(configured: Optional[str]) -> str:
    url = os.path.expandvars((configured or "").strip())
    if url and "${" not in url:
        return normalize_database_url(url)
    url = load_settings().database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")
    return url
