# codejudge/database.py
from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()


def _default_db_url() -> str:
    """File-based SQLite next to the package when no database is configured."""
    root = Path(__file__).resolve().parents[1]
    return f"sqlite+aiosqlite:///{(root / 'codejudge.db').as_posix()}"


def _translate_sslmode(value: str) -> Optional[str]:
    """Map libpq sslmode values onto the asyncpg ``ssl`` flag."""

    normalized = value.strip().lower()
    if normalized in {"require", "verify-ca", "verify-full"}:
        return "true"
    if normalized == "disable":
        return "false"
    # "prefer"/"allow" have no asyncpg equivalent; leave the driver default.
    return None


def _normalize_database_url(raw_url: Optional[str], *, sslmode: Optional[str] = None) -> Optional[str]:
    """Force async drivers and translate sslmode for asyncpg."""

    if not raw_url:
        return raw_url

    try:
        url = make_url(raw_url)
    except Exception:
        return raw_url

    driver = url.drivername.lower()
    if driver in {"postgres", "postgresql"} or (
        driver.startswith("postgresql+") and driver != "postgresql+asyncpg"
    ):
        url = url.set(drivername="postgresql+asyncpg")
    elif driver == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    if url.drivername == "postgresql+asyncpg":
        query = dict(url.query)
        mode = query.pop("sslmode", None)
        if mode is None and "ssl" not in query:
            mode = sslmode
        if mode is not None:
            translated = _translate_sslmode(mode)
            if translated is not None:
                query["ssl"] = translated
        if query != dict(url.query):
            url = url.set(query=query)

    return url.render_as_string(hide_password=False)


def _database_url_from_env(env: Mapping[str, str]) -> Optional[str]:
    """Resolve the database URL from ``DATABASE_URL`` or ``POSTGRES_URL``."""

    for key in ("DATABASE_URL", "POSTGRES_URL"):
        normalized = _normalize_database_url(env.get(key), sslmode=env.get("PGSSLMODE"))
        if normalized:
            return normalized
    return None


DEFAULT_SQLITE_URL: str = _default_db_url()
DATABASE_URL: str = _database_url_from_env(os.environ) or DEFAULT_SQLITE_URL

ECHO = os.getenv("SQLALCHEMY_ECHO", "0").lower() in {"1", "true", "yes"}


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=ECHO, pool_pre_ping=True)


def build_session_factory(bind_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=bind_engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

engine: AsyncEngine
SessionLocal: sessionmaker
CURRENT_DATABASE_URL: str


def configure_engine(database_url: str) -> None:
    """Swap the global engine/session factory pair (e.g. SQLite fallback)."""

    global engine, SessionLocal, CURRENT_DATABASE_URL

    engine = build_engine(database_url)
    SessionLocal = build_session_factory(engine)
    CURRENT_DATABASE_URL = database_url


configure_engine(DATABASE_URL)


async def get_db():
    """FastAPI dependency that yields an AsyncSession."""

    async with SessionLocal() as session:
        yield session


async def init_models(bind: Optional[AsyncEngine] = None) -> None:
    """Register every model with ``Base`` and create missing tables."""

    import codejudge.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
