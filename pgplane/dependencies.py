from __future__ import annotations

from functools import lru_cache
from time import perf_counter
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pgplane.config import Settings, get_settings
from pgplane.errors import AuthenticationRequiredError
from pgplane.logger import get_logger
from pgplane.security import SESSION_COOKIE_NAME, Actor, decode_session_token
from pgplane.services.connectivity import ConnectionProbe, probe_connection
from pgplane.services.users import actor_for, get_user_by_username

_DB_LOGGER = get_logger("db")
_DB_SESSION_LOGGER = get_logger("db.session")
_QUERY_STARTED_KEY = "pgplane_query_started"
_SLOW_QUERY_MS = 200


def _format_sql(statement: Any, max_length: int) -> str:
    value = " ".join(str(statement or "").split())
    if max_length <= 0 or len(value) <= max_length:
        return value
    return f"{value[: max(max_length - 3, 0)]}..."


def _install_query_logging(engine: AsyncEngine, *, settings: Settings) -> None:
    # Bound parameters are never logged; they carry connection strings and hashes.
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info.setdefault(_QUERY_STARTED_KEY, []).append(perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        started = conn.info.get(_QUERY_STARTED_KEY) or [perf_counter()]
        duration_ms = round((perf_counter() - started.pop()) * 1000, 1)
        if not settings.log_db_queries:
            return
        sql = _format_sql(statement, settings.log_sql_max_length)
        _DB_LOGGER.debug(
            "query.execute",
            "Executed SQL statement",
            duration_ms=duration_ms,
            rowcount=getattr(cursor, "rowcount", None),
            sql=sql,
        )
        if duration_ms >= _SLOW_QUERY_MS:
            _DB_LOGGER.warning("query.slow", "Slow SQL statement", duration_ms=duration_ms, sql=sql)

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context: Any) -> None:
        connection = exception_context.connection
        if connection is not None:
            started = connection.info.get(_QUERY_STARTED_KEY)
            if started:
                started.pop()
        _DB_LOGGER.error(
            "query.error",
            "SQL execution failed",
            error_type=type(exception_context.original_exception).__name__,
            sql=_format_sql(exception_context.statement, settings.log_sql_max_length),
        )


@lru_cache
def get_engine(database_url: str) -> AsyncEngine:
    engine = create_async_engine(database_url, pool_pre_ping=True)

    if database_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    _install_query_logging(engine, settings=get_settings())
    return engine


@lru_cache
def get_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


async def dispose_engines() -> None:
    """Close pooled connections; called once at application shutdown."""
    if get_engine.cache_info().currsize:
        settings = get_settings()
        await get_engine(settings.database_url).dispose()
    get_sessionmaker.cache_clear()
    get_engine.cache_clear()


async def get_db_session(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(settings.database_url)
    session_id = uuid4().hex[:12]
    start = perf_counter()

    with _DB_SESSION_LOGGER.context(db_session_id=session_id):
        _DB_SESSION_LOGGER.debug("session.open", "Opened DB session")
        async with sessionmaker() as session:
            try:
                yield session
            except Exception as exc:
                if session.in_transaction():
                    await session.rollback()
                    _DB_SESSION_LOGGER.warning(
                        "session.rollback",
                        "Rolled back DB transaction after error",
                        error_type=type(exc).__name__,
                    )
                raise
            finally:
                _DB_SESSION_LOGGER.debug(
                    "session.close",
                    "Closed DB session",
                    duration_ms=round((perf_counter() - start) * 1000, 1),
                )


def _session_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_current_actor(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> Actor:
    username = decode_session_token(_session_token(request) or "", settings.auth_secret_key)
    if not username:
        raise AuthenticationRequiredError("Authentication required")
    user = await get_user_by_username(session, username)
    if user is None:
        raise AuthenticationRequiredError("Authentication required")
    return actor_for(user)


def get_connection_probe() -> ConnectionProbe:
    return probe_connection
