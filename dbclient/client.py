"""
DbClient: scalar/entity/list queries, statement execution and explicit
transactions over exactly one database connection.

Read paths (and execute_sql/execute_script) reconnect transparently when the
held connection has been closed, e.g. after commit() or rollback(). modify()
never reconnects: a mutation must run on the connection that carries the
caller's transaction, so a dead connection is reported instead of silently
replaced.

Not thread-safe. Use one client per unit of work or serialize access.
"""

import logging
from enum import Enum
from typing import Any, TypeVar

from dbclient.core.config import Settings, settings as default_settings
from dbclient.core.connect import (
    ProductTypeEnum,
    backslash_escapes,
    close_quietly,
    connect,
    cursor_columns,
    cursor_to_dicts,
    execute,
    is_open,
    parse_url,
    resolve_product_type,
    rowcount,
    set_autocommit,
)
from dbclient.errors import (
    DbClientError,
    DbConnectionError,
    ExecutionError,
    QueryError,
    TransactionError,
)
from dbclient.mapping import get_mapper
from dbclient.statement import Statement, split_statements

_log = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionState(str, Enum):
    AUTOCOMMIT = "autocommit"
    EXPLICIT = "explicit"


class ConnectionPolicy(str, Enum):
    """How an operation obtains its connection."""

    REUSE_OR_RECONNECT = "reuse_or_reconnect"
    REUSE_ONLY = "reuse_only"


class DbClient:
    """
    Thin façade over one DB-API connection.

    Usage::

        with DbClient("mysql://localhost/app", "root", "secret") as db:
            n = db.get_scalar("select count(*) from sample")
            row = db.get_entity(Sample, "select * from sample where id = ?", 2)
            db.begin_transaction()
            db.modify("update sample set name = ? where id = ?", "Anonymous", 3)
            db.commit()
    """

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        try:
            self._url = parse_url(url)
            self._product_type = resolve_product_type(self._url)
        except ValueError as e:
            raise DbConnectionError(str(e)) from e
        self._username = username
        self._password = password
        self._conn: Any = None
        self._state = TransactionState.AUTOCOMMIT
        self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DbClient":
        """Build a client from DB_URL / DB_USERNAME / DB_PASSWORD."""
        s = settings or default_settings
        if not s.DB_URL:
            raise DbConnectionError("DB_URL is not configured")
        return cls(s.DB_URL, s.DB_USERNAME, s.DB_PASSWORD)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def product_type(self) -> ProductTypeEnum:
        return self._product_type

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def in_transaction(self) -> bool:
        return self._state == TransactionState.EXPLICIT

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and is_open(self._conn, self._product_type)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_scalar(self, sql: str, *params: Any) -> Any | None:
        """
        Return the first column of the first row, or None if there are no rows
        (or the statement produced no result set). Works for stored procedure calls.
        """
        conn = self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)
        try:
            cur = execute(conn, Statement(sql, params), self._product_type)
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        try:
            if cursor_columns(cur) is None:
                return None
            row = cur.fetchone()
            return row[0] if row is not None else None
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        finally:
            close_quietly(cur, "cursor")

    def get_entity(self, entity_type: type[T], sql: str, *params: Any) -> T | None:
        """Map the first row to *entity_type*; None when no row matches."""
        mapper = get_mapper(entity_type)
        columns, rows = self._fetch(sql, params, first_only=True)
        if not rows:
            return None
        return mapper.map_rows(columns, rows)[0]

    def get_list(self, entity_type: type[T], sql: str, *params: Any) -> list[T]:
        """Map every row to *entity_type*, in the order the driver returns them."""
        mapper = get_mapper(entity_type)
        columns, rows = self._fetch(sql, params)
        return mapper.map_rows(columns, rows)

    def get_rows(self, sql: str, *params: Any) -> list[dict[str, Any]]:
        """Rows as column -> value dicts; empty when the statement returned no result set."""
        conn = self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)
        try:
            cur = execute(conn, Statement(sql, params), self._product_type)
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        try:
            return cursor_to_dicts(cur)
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        finally:
            close_quietly(cur, "cursor")

    def _fetch(
        self, sql: str, params: tuple[Any, ...], *, first_only: bool = False
    ) -> tuple[list[str], list[Any]]:
        conn = self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)
        try:
            cur = execute(conn, Statement(sql, params), self._product_type)
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        try:
            columns = cursor_columns(cur)
            if columns is None:
                raise QueryError("Statement did not return a result set")
            if first_only:
                row = cur.fetchone()
                rows = [row] if row is not None else []
            else:
                rows = list(cur.fetchall())
            return columns, rows
        except DbClientError:
            raise
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e
        finally:
            close_quietly(cur, "cursor")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute_sql(self, sql: str, *params: Any) -> None:
        """Execute a statement (DDL or anything whose outcome is not needed)."""
        conn = self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)
        self._execute_discard(conn, Statement(sql, params))

    def execute_script(self, sql: str) -> int:
        """
        Execute several ``;``-separated statements in order, without parameters.
        Returns how many statements ran. Stops at the first failure.
        """
        conn = self._acquire(ConnectionPolicy.REUSE_OR_RECONNECT)
        statements = split_statements(sql, backslash_escapes(self._product_type))
        for stmt in statements:
            self._execute_discard(conn, Statement(stmt))
        return len(statements)

    def _execute_discard(self, conn: Any, statement: Statement) -> None:
        try:
            cur = execute(conn, statement, self._product_type)
        except Exception as e:
            raise ExecutionError(f"Statement failed: {e}") from e
        close_quietly(cur, "cursor")

    def modify(self, sql: str, *params: Any) -> int:
        """
        Execute insert/update/delete and return the affected row count.

        Runs only on the connection already held: after commit(), rollback() or
        close() it raises DbConnectionError rather than ExecutionError, so a
        transactional mutation never lands on a fresh autocommit connection.
        """
        conn = self._acquire(ConnectionPolicy.REUSE_ONLY)
        try:
            cur = execute(conn, Statement(sql, params), self._product_type)
        except Exception as e:
            raise ExecutionError(f"Statement failed: {e}") from e
        try:
            return rowcount(cur)
        finally:
            close_quietly(cur, "cursor")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_transaction(self) -> None:
        """Disable autocommit on the held connection."""
        if not self.is_connected:
            raise TransactionError("Cannot begin a transaction: no open connection")
        if self._state == TransactionState.EXPLICIT:
            return
        try:
            set_autocommit(self._conn, self._product_type, False)
        except Exception as e:
            raise TransactionError(f"Cannot begin a transaction: {e}") from e
        self._state = TransactionState.EXPLICIT
        _log.debug("Transaction started")

    def commit(self) -> None:
        """Commit pending work, then close the connection. No-op without an open connection."""
        self._finish("commit")

    def rollback(self) -> None:
        """Discard pending work, then close the connection. No-op without an open connection."""
        self._finish("rollback")

    def _finish(self, action: str) -> None:
        if not self.is_connected:
            _log.debug("%s skipped: no open connection", action)
            self._release()
            return
        try:
            getattr(self._conn, action)()
        except Exception as e:
            raise TransactionError(f"{action.capitalize()} failed: {e}") from e
        finally:
            self._release()
        _log.debug("Transaction finished with %s", action)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """
        Release the connection. An explicit transaction still pending is rolled
        back first. Errors raised while rolling back or closing are logged, not raised.
        """
        if self.is_connected and self._state == TransactionState.EXPLICIT:
            try:
                self._conn.rollback()
                _log.debug("Abandoned transaction rolled back on close")
            except Exception as e:
                _log.warning("rollback on close failed: %s", e)
        self._release()

    def __enter__(self) -> "DbClient":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def _acquire(self, policy: ConnectionPolicy) -> Any:
        if self._conn is not None and is_open(self._conn, self._product_type):
            return self._conn
        if policy == ConnectionPolicy.REUSE_ONLY:
            raise DbConnectionError(
                "No open connection; commit() and rollback() release it and only read "
                "operations reconnect"
            )
        if self._conn is not None and self._state == TransactionState.EXPLICIT:
            _log.warning("Connection lost during an explicit transaction; reconnecting in autocommit")
        self._conn = None
        self._state = TransactionState.AUTOCOMMIT
        try:
            self._conn = connect(self._url, self._username, self._password)
        except Exception as e:
            raise DbConnectionError(f"Cannot connect to {self._product_type.value} database: {e}") from e
        return self._conn

    def _release(self) -> None:
        conn = self._conn
        self._conn = None
        self._state = TransactionState.AUTOCOMMIT
        if conn is not None and is_open(conn, self._product_type):
            close_quietly(conn)
