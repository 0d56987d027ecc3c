"""
Error taxonomy for DbClient.

Driver errors are never surfaced raw: each public operation wraps them in the
class that matches its call category and chains the original via ``from``.
"""


class DbClientError(Exception):
    """Base class for all errors raised by DbClient."""

    pass


class DbConnectionError(DbClientError):
    """Raised when a connection cannot be established or re-established."""

    pass


class QueryError(DbClientError):
    """Raised when a read statement fails or its rows cannot be mapped."""

    pass


class ExecutionError(DbClientError):
    """Raised when a write or DDL statement fails."""

    pass


class TransactionError(DbClientError):
    """Raised when a transaction mode change, commit or rollback fails."""

    pass
