import os
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote_plus


class Settings:
    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        pool_timeout_secs: float = 10,
        cors_origins: Optional[list[str]] = None,
        expose_errors: bool = False,
        log_level: str = "INFO",
        port: int = 8000,
    ) -> None:
        self.database_url = database_url
        self.pool_size = pool_size
        self.pool_timeout_secs = pool_timeout_secs
        self.cors_origins = cors_origins or ["*"]
        self.expose_errors = expose_errors
        self.log_level = log_level
        self.port = port


def _ensure_data_dir(env: Mapping[str, str]) -> Path:
    root = Path(env.get("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def resolve_database_url(env: Mapping[str, str]) -> str:
    """Pick the database URL from the environment.

    An explicit ``FINANCE_DATABASE_URL`` wins. Otherwise MySQL credentials
    are read from the local ``DB_*`` names, falling back to the names the
    hosting platform injects (``HOST``, ``USER``, ``PASSWORD``,
    ``DATABASENAME``). With neither present a SQLite file in the data
    directory is used.
    """
    explicit = env.get("FINANCE_DATABASE_URL")
    if explicit:
        return explicit

    host = _first(env, "DB_HOST", "HOST")
    name = _first(env, "DB_NAME", "DATABASENAME")
    if host and name:
        user = _first(env, "DB_USER", "USER") or "root"
        password = _first(env, "DB_PASS", "PASSWORD") or ""
        port = _first(env, "DB_PORT") or "3306"
        credentials = quote_plus(user)
        if password:
            credentials += ":" + quote_plus(password)
        return f"mysql+pymysql://{credentials}@{host}:{port}/{name}?charset=utf8mb4"

    default_db = _ensure_data_dir(env) / "finance.db"
    return f"sqlite:///{default_db}"


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def settings_from_env(env: Mapping[str, str]) -> Settings:
    origins = [
        origin.strip()
        for origin in env.get("FINANCE_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    return Settings(
        database_url=resolve_database_url(env),
        pool_size=int(env.get("FINANCE_DB_POOL_SIZE", "10")),
        pool_timeout_secs=float(env.get("FINANCE_DB_POOL_TIMEOUT_SECS", "10")),
        cors_origins=origins,
        expose_errors=_parse_bool(env.get("FINANCE_EXPOSE_ERRORS")),
        log_level=env.get("FINANCE_LOG_LEVEL", "INFO").upper(),
        port=int(_first(env, "PORT", "APP_PORT") or "8000"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_env(os.environ)
