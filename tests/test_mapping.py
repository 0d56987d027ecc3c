"""Unit tests for dbclient.mapping."""

from dataclasses import dataclass, field

import pytest
from pydantic import BaseModel, Field
from sqlmodel import SQLModel

from dbclient.errors import QueryError
from dbclient.mapping import EntityKind, get_mapper, normalize
from tests.utils.sample import Sample


@dataclass
class Account:
    user_id: int
    user_name: str
    tags: list[str] = field(default_factory=list)
    active: bool = True


class AccountModel(BaseModel):
    user_id: int
    user_name: str | None = None


class AliasedModel(BaseModel):
    ident: int = Field(alias="id")


class SampleRecord(SQLModel):
    id: int | None = None
    name: str | None = None


class PlainSample:
    id: int
    name: str = "unnamed"


class NeedsArgs:
    id: int

    def __init__(self, id: int) -> None:
        self.id = id


def test_normalize() -> None:
    assert normalize("user_name") == normalize("userName") == normalize("USERNAME")


def test_mapper_is_cached() -> None:
    assert get_mapper(Sample) is get_mapper(Sample)


class TestDataclass:
    def test_maps_by_name_case_insensitively(self) -> None:
        out = get_mapper(Sample).map_rows(["ID", "Name"], [(1, "Taro Yamada"), (2, "Jiro Tanaka")])
        assert out == [Sample(id=1, name="Taro Yamada"), Sample(id=2, name="Jiro Tanaka")]

    def test_camel_case_columns_match_snake_case_fields(self) -> None:
        out = get_mapper(Account).map_rows(["userId", "userName"], [(7, "jiro")])
        assert out == [Account(user_id=7, user_name="jiro")]

    def test_unmatched_fields_keep_defaults_or_none(self) -> None:
        (acc,) = get_mapper(Account).map_rows(["user_id"], [(7,)])
        assert acc.user_name is None
        assert acc.tags == []
        assert acc.active is True

    def test_unmatched_columns_ignored(self) -> None:
        (s,) = get_mapper(Sample).map_rows(["id", "name", "created_at"], [(1, "a", "2024-01-01")])
        assert s == Sample(id=1, name="a")

    def test_ambiguous_columns(self) -> None:
        with pytest.raises(QueryError, match="Ambiguous"):
            get_mapper(Account).map_rows(["user_name", "username"], [("a", "b")])


class TestPydantic:
    def test_maps_and_validates(self) -> None:
        (m,) = get_mapper(AccountModel).map_rows(["USER_ID", "user_name"], [("3", "saburo")])
        assert m == AccountModel(user_id=3, user_name="saburo")

    def test_missing_required_field_is_query_error(self) -> None:
        with pytest.raises(QueryError, match="AccountModel"):
            get_mapper(AccountModel).map_rows(["user_name"], [("saburo",)])

    def test_alias(self) -> None:
        (m,) = get_mapper(AliasedModel).map_rows(["id"], [(5,)])
        assert m.ident == 5

    def test_sqlmodel(self) -> None:
        mapper = get_mapper(SampleRecord)
        assert mapper.kind == EntityKind.PYDANTIC
        (r,) = mapper.map_rows(["id", "name"], [(4, "Shiro Sato")])
        assert r.id == 4
        assert r.name == "Shiro Sato"


class TestPlainClass:
    def test_maps_annotated_attributes(self) -> None:
        (p,) = get_mapper(PlainSample).map_rows(["id"], [(9,)])
        assert isinstance(p, PlainSample)
        assert p.id == 9
        assert p.name == "unnamed"

    def test_constructor_with_required_args_rejected(self) -> None:
        with pytest.raises(QueryError, match="no-argument constructor"):
            get_mapper(NeedsArgs)


class TestValidation:
    def test_dict_rows(self) -> None:
        assert get_mapper(dict).map_rows(["id", "name"], [(1, "a")]) == [{"id": 1, "name": "a"}]

    def test_fields_colliding_after_normalization(self) -> None:
        @dataclass
        class Clash:
            user_name: str
            userName: str

        with pytest.raises(QueryError, match="indistinguishable"):
            get_mapper(Clash)

    def test_not_a_class(self) -> None:
        with pytest.raises(QueryError):
            get_mapper(42)  # type: ignore[arg-type]

    def test_builtin_type_rejected(self) -> None:
        with pytest.raises(QueryError):
            get_mapper(int)
