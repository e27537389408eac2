from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUTHY


def normalize_postgres_url(value: str) -> str:
    # SQLAlchemy only understands the "postgresql" scheme.
    if value.startswith("postgres://"):
        return "postgresql://" + value[len("postgres://"):]
    return value


def default_sqlite_path(serverless: bool) -> Path:
    if serverless:
        return Path("/tmp") / "expenses.db"
    return Path.cwd() / "db" / "expenses.db"


@dataclass(frozen=True)
class Settings:
    postgres_url: str | None = None
    sqlite_path: Path = Path("db") / "expenses.db"
    fallback_to_sqlite: bool = True
    environment: str = "development"
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        serverless = os.getenv("VERCEL") == "1"
        postgres_url = os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL")
        if postgres_url:
            postgres_url = normalize_postgres_url(postgres_url.strip())
        sqlite_raw = os.getenv("SQLITE_PATH")
        sqlite_path = Path(sqlite_raw) if sqlite_raw else default_sqlite_path(serverless)
        environment = "production" if serverless else os.getenv("APP_ENV", "development")
        origins = tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        )
        return cls(
            postgres_url=postgres_url or None,
            sqlite_path=sqlite_path,
            fallback_to_sqlite=_flag("DB_FALLBACK_TO_SQLITE", True),
            environment=environment.strip().lower(),
            cors_origins=origins or ("*",),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )
