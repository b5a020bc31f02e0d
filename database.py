import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (
        None,
        "",
        ":memory:",
    )


class Database:
    """Engine and session factory owned by the hosting process.

    Nothing is connected at construction time; ``init`` creates any missing
    tables and ``close_all`` disposes of the connection pool.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        pool_timeout_secs: float = 10,
        echo: bool = False,
    ) -> None:
        self.url = url
        self.engine = self._create_engine(url, pool_size, pool_timeout_secs, echo)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.pool_size,
            pool_timeout_secs=settings.pool_timeout_secs,
        )

    @staticmethod
    def _create_engine(
        url: str, pool_size: int, pool_timeout_secs: float, echo: bool
    ) -> Engine:
        kwargs: dict[str, object] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(url):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs.update(
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout_secs,
                pool_pre_ping=True,
            )
        eng = create_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(eng, "connect", _enable_sqlite_pragmas)
        return eng

    @property
    def backend(self) -> str:
        return self.engine.url.get_backend_name()

    def init(self) -> None:
        # register every mapped class on Base.metadata
        import models  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(f"database_ready: backend={self.backend}")

    def close_all(self) -> None:
        self.engine.dispose()
        logger.info("database_closed")

    def session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session: Session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
