"""
dbclient: parameterized SQL, result mapping and explicit transactions over one connection.
"""

from .client import ConnectionPolicy, DbClient, TransactionState
from .core.connect import ProductTypeEnum
from .errors import (
    DbClientError,
    DbConnectionError,
    ExecutionError,
    QueryError,
    TransactionError,
)
from .statement import Statement

__all__ = [
    "DbClient",
    "ConnectionPolicy",
    "TransactionState",
    "ProductTypeEnum",
    "Statement",
    "DbClientError",
    "DbConnectionError",
    "QueryError",
    "ExecutionError",
    "TransactionError",
]
