"""
DB connection helpers for DbClient.

Uses psycopg (PostgreSQL), pymysql (MySQL), trino (Trino) or sqlite3 based on the
backend name of the database URL. Every connection is opened in autocommit mode.
"""

import logging
import sqlite3
from enum import Enum
from typing import Any

import psycopg
import pymysql
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from trino.auth import BasicAuthentication
from trino.dbapi import connect as trino_connect

from dbclient.core.config import settings
from dbclient.statement import QMARK, Statement

_log = logging.getLogger(__name__)


class ProductTypeEnum(str, Enum):
    """Supported database product types (postgres, mysql, trino, sqlite)."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    TRINO = "trino"
    SQLITE = "sqlite"


_BACKENDS: dict[str, ProductTypeEnum] = {
    "postgresql": ProductTypeEnum.POSTGRES,
    "postgres": ProductTypeEnum.POSTGRES,
    "mysql": ProductTypeEnum.MYSQL,
    "mariadb": ProductTypeEnum.MYSQL,
    "trino": ProductTypeEnum.TRINO,
    "sqlite": ProductTypeEnum.SQLITE,
}

_DEFAULT_PORTS: dict[ProductTypeEnum, int] = {
    ProductTypeEnum.POSTGRES: 5432,
    ProductTypeEnum.MYSQL: 3306,
    ProductTypeEnum.TRINO: 8080,
}

_PARAMSTYLES: dict[ProductTypeEnum, str] = {
    ProductTypeEnum.POSTGRES: psycopg.paramstyle,
    ProductTypeEnum.MYSQL: pymysql.paramstyle,
    ProductTypeEnum.TRINO: QMARK,
    ProductTypeEnum.SQLITE: sqlite3.paramstyle,
}


def parse_url(url: str | URL) -> URL:
    """Parse a database URL. A leading ``jdbc:`` is dropped, so JDBC-style URLs work too."""
    if isinstance(url, URL):
        return url
    raw = (url or "").strip()
    if raw.lower().startswith("jdbc:"):
        raw = raw[len("jdbc:") :]
    try:
        return make_url(raw)
    except (ArgumentError, ValueError) as e:
        raise ValueError(f"Malformed database URL {url!r}: {e}") from e


def resolve_product_type(url: str | URL) -> ProductTypeEnum:
    u = parse_url(url)
    backend = u.get_backend_name()
    pt = _BACKENDS.get(backend)
    if pt is None:
        raise ValueError(f"Unsupported database backend: {backend}")
    return pt


def paramstyle(product_type: ProductTypeEnum) -> str:
    return _PARAMSTYLES[product_type]


def backslash_escapes(product_type: ProductTypeEnum) -> bool:
    """True if string literals treat ``\\`` as an escape (MySQL default sql_mode)."""
    return product_type == ProductTypeEnum.MYSQL


def connect(
    url: str | URL,
    username: str | None = None,
    password: str | None = None,
) -> Any:
    """
    Open an autocommit connection to the database named by *url*.

    - username / password: override the credentials embedded in the URL.
    - DB_CONNECT_TIMEOUT is passed to the driver; DB_STATEMENT_TIMEOUT (if set)
      is applied to the new session before it is returned.
    """
    u = parse_url(url)
    pt = resolve_product_type(u)
    username = username if username is not None else u.username
    password = password if password is not None else u.password
    password = password if password is not None else ""
    database = u.database
    timeout = settings.DB_CONNECT_TIMEOUT

    if pt == ProductTypeEnum.SQLITE:
        conn = sqlite3.connect(
            database or ":memory:",
            timeout=timeout,
            isolation_level=None,
        )
    else:
        if not u.host:
            raise ValueError(f"Database URL must provide host for {pt.value}")
        port = int(u.port or _DEFAULT_PORTS[pt])

        if pt == ProductTypeEnum.POSTGRES:
            conn = psycopg.connect(
                host=u.host,
                port=port,
                dbname=database,
                user=username,
                password=password,
                connect_timeout=timeout,
                autocommit=True,
            )
        elif pt == ProductTypeEnum.MYSQL:
            conn = pymysql.connect(
                host=u.host,
                port=port,
                database=database,
                user=username,
                password=password,
                connect_timeout=timeout,
                autocommit=True,
            )
        else:
            if not username:
                raise ValueError("Username is required for Trino.")
            use_ssl = str(u.query.get("ssl", "")).lower() in ("true", "1")
            if use_ssl and not (password and password.strip()):
                raise ValueError("Password is required for Trino when using SSL/HTTPS.")
            catalog, _, schema = (database or "").partition("/")
            conn = trino_connect(
                host=u.host,
                port=port,
                user=username,
                auth=BasicAuthentication(username, password) if use_ssl else None,
                catalog=catalog or None,
                schema=schema or "default",
                source="dbclient",
                http_scheme="https" if use_ssl else "http",
                request_timeout=timeout,
            )

    timeout_sec = settings.DB_STATEMENT_TIMEOUT
    if timeout_sec is not None and timeout_sec > 0:
        try:
            _apply_statement_timeout(conn, pt, timeout_sec)
        except Exception:
            close_quietly(conn)
            raise

    _log.debug("Connected to %s database at %s", pt.value, u.render_as_string(hide_password=True))
    return conn


def _apply_statement_timeout(conn: Any, product_type: ProductTypeEnum, timeout_sec: float) -> None:
    """Set the session-level statement timeout. sqlite has no equivalent and is skipped."""
    timeout_ms = int(timeout_sec * 1000)
    if product_type == ProductTypeEnum.POSTGRES:
        sql = f"SET statement_timeout = {timeout_ms}"
    elif product_type == ProductTypeEnum.MYSQL:
        sql = f"SET SESSION max_execution_time = {timeout_ms}"
    elif product_type == ProductTypeEnum.TRINO:
        sql = f"SET SESSION query_max_execution_time = '{int(timeout_sec)}s'"
    else:
        return
    cur = conn.cursor()
    try:
        cur.execute(sql)
    finally:
        close_quietly(cur, "cursor")


def is_open(conn: Any, product_type: ProductTypeEnum) -> bool:
    """True if the driver reports the connection as still usable."""
    if product_type == ProductTypeEnum.POSTGRES:
        return not conn.closed
    if product_type == ProductTypeEnum.MYSQL:
        return bool(conn.open)
    if product_type == ProductTypeEnum.SQLITE:
        try:
            _ = conn.total_changes
        except sqlite3.ProgrammingError:
            return False
        return True
    # trino connections are stateless HTTP clients; usable until closed by us
    return True


def set_autocommit(conn: Any, product_type: ProductTypeEnum, enabled: bool) -> None:
    """Switch the connection between autocommit and explicit transaction mode."""
    if product_type == ProductTypeEnum.POSTGRES:
        conn.autocommit = enabled
    elif product_type == ProductTypeEnum.MYSQL:
        conn.autocommit(enabled)
    elif product_type == ProductTypeEnum.SQLITE:
        # isolation_level=None is sqlite3's autocommit; otherwise a transaction
        # is opened implicitly before the first DML statement
        conn.isolation_level = None if enabled else "DEFERRED"
    else:
        raise NotImplementedError(
            f"{product_type.value} does not support switching transaction mode on an open connection"
        )


def execute(conn: Any, statement: Statement, product_type: ProductTypeEnum) -> Any:
    """
    Render *statement* for the driver's paramstyle, execute it and return the cursor.
    The caller owns the cursor and must close it. On failure the cursor is closed here.
    """
    sql, params = statement.render(
        paramstyle(product_type), backslash_escapes=backslash_escapes(product_type)
    )
    cur = conn.cursor()
    try:
        if params is not None:
            cur.execute(sql, params)
        else:
            cur.execute(sql)
    except Exception:
        close_quietly(cur, "cursor")
        raise
    return cur


def cursor_columns(cursor: Any) -> list[str] | None:
    """Column names of the current result set, or None if the statement returned no rows."""
    desc = cursor.description
    if not desc:
        return None
    return [d[0] for d in desc]


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor result to list of dicts. Works for psycopg, pymysql, trino and sqlite3."""
    names = cursor_columns(cursor)
    if names is None:
        return []
    return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]


def rowcount(cursor: Any) -> int:
    """Affected rows reported by the driver; unknown (None or -1) counts as 0."""
    rc = cursor.rowcount
    if rc is None or rc < 0:
        return 0
    return rc


def close_quietly(resource: Any, what: str = "connection") -> None:
    try:
        resource.close()
    except Exception as e:
        _log.warning("close %s failed: %s", what, e)
