"""
Row-to-entity mapping.

Columns and fields correspond by normalized name (lower-cased, underscores
removed), so ``user_name``, ``userName`` and ``USERNAME`` all match. The table
of normalized name -> field is built once per entity type, validated on first
use and cached. Unmatched columns are ignored; unmatched fields keep their
declared default, or None when they have none.
"""

import dataclasses
import inspect
import typing
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from dbclient.errors import QueryError

T = TypeVar("T")


def normalize(name: str) -> str:
    return name.replace("_", "").lower()


class EntityKind(str, Enum):
    DICT = "dict"
    PYDANTIC = "pydantic"
    DATACLASS = "dataclass"
    PLAIN = "plain"


@dataclasses.dataclass(frozen=True)
class EntityMapper(Generic[T]):
    """Mapping table for one entity type."""

    entity_type: type[T]
    kind: EntityKind
    # normalized column name -> field name (or input key for pydantic models)
    fields: Mapping[str, str]
    # field name -> value for fields that have no default of their own
    zero_values: Mapping[str, Any]

    def bind(self, columns: Sequence[str]) -> list[tuple[int, str]]:
        """Resolve result-set columns to fields. Done once per result set, not per row."""
        if self.kind == EntityKind.DICT:
            return list(enumerate(columns))
        bound: list[tuple[int, str]] = []
        seen: dict[str, str] = {}
        for idx, col in enumerate(columns):
            field = self.fields.get(normalize(col))
            if field is None:
                continue
            if field in seen:
                raise QueryError(
                    f"Ambiguous columns {seen[field]!r} and {col!r} both map to "
                    f"{self.entity_type.__name__}.{field}"
                )
            seen[field] = col
            bound.append((idx, field))
        return bound

    def map_row(self, bound: list[tuple[int, str]], row: Sequence[Any]) -> T:
        values = {field: row[idx] for idx, field in bound}
        if self.kind == EntityKind.DICT:
            return values  # type: ignore[return-value]
        if self.kind == EntityKind.PYDANTIC:
            try:
                return self.entity_type.model_validate(values)  # type: ignore[attr-defined]
            except ValidationError as e:
                raise QueryError(f"Cannot map row to {self.entity_type.__name__}: {e}") from e
        merged = {**self.zero_values, **values}
        try:
            if self.kind == EntityKind.DATACLASS:
                return self.entity_type(**merged)
            obj = self.entity_type()
            for field, value in merged.items():
                setattr(obj, field, value)
            return obj
        except Exception as e:
            raise QueryError(f"Cannot map row to {self.entity_type.__name__}: {e}") from e

    def map_rows(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> list[T]:
        bound = self.bind(columns)
        return [self.map_row(bound, row) for row in rows]


def _add_field(fields: dict[str, str], entity_type: type, name: str, key: str) -> None:
    norm = normalize(name)
    existing = fields.get(norm)
    if existing is not None and existing != key:
        raise QueryError(
            f"Fields {existing!r} and {key!r} of {entity_type.__name__} are indistinguishable "
            "after name normalization"
        )
    fields[norm] = key


def _pydantic_mapper(entity_type: type[BaseModel]) -> EntityMapper[Any]:
    fields: dict[str, str] = {}
    for name, info in entity_type.model_fields.items():
        key = info.alias or name
        _add_field(fields, entity_type, name, key)
        if info.alias:
            _add_field(fields, entity_type, info.alias, key)
    return EntityMapper(entity_type, EntityKind.PYDANTIC, fields, {})


def _dataclass_mapper(entity_type: type) -> EntityMapper[Any]:
    fields: dict[str, str] = {}
    zero_values: dict[str, Any] = {}
    for f in dataclasses.fields(entity_type):
        if not f.init:
            continue
        _add_field(fields, entity_type, f.name, f.name)
        if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            zero_values[f.name] = None
    return EntityMapper(entity_type, EntityKind.DATACLASS, fields, zero_values)


def _plain_mapper(entity_type: type) -> EntityMapper[Any]:
    try:
        hints = typing.get_type_hints(entity_type)
    except Exception as e:
        raise QueryError(f"Cannot read annotations of {entity_type.__name__}: {e}") from e

    try:
        sig = inspect.signature(entity_type)
    except (TypeError, ValueError) as e:
        raise QueryError(f"{entity_type.__name__} is not a supported entity type") from e
    required = [
        p.name
        for p in sig.parameters.values()
        if p.default is p.empty and p.kind not in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
    ]
    if required:
        raise QueryError(
            f"{entity_type.__name__} needs a no-argument constructor to be used as an entity "
            f"(required: {', '.join(required)})"
        )

    fields: dict[str, str] = {}
    zero_values: dict[str, Any] = {}
    for name, hint in hints.items():
        if name.startswith("_") or typing.get_origin(hint) is typing.ClassVar:
            continue
        _add_field(fields, entity_type, name, name)
        if not hasattr(entity_type, name):
            zero_values[name] = None
    if not fields:
        raise QueryError(f"{entity_type.__name__} has no annotated fields to map columns to")
    return EntityMapper(entity_type, EntityKind.PLAIN, fields, zero_values)


@lru_cache(maxsize=None)
def get_mapper(entity_type: type[T]) -> EntityMapper[T]:
    """Build (first use) or return the cached mapping table for *entity_type*."""
    if entity_type is dict:
        return EntityMapper(entity_type, EntityKind.DICT, {}, {})
    if not isinstance(entity_type, type):
        raise QueryError(f"{entity_type!r} is not a class")
    if issubclass(entity_type, BaseModel):
        return _pydantic_mapper(entity_type)
    if dataclasses.is_dataclass(entity_type):
        return _dataclass_mapper(entity_type)
    return _plain_mapper(entity_type)
