"""Database column type helpers."""
from __future__ import annotations

from enum import Enum
from typing import List, Type

from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON, TypeDecorator


class JSONBCompat(TypeDecorator):
    """JSONB that falls back to native JSON on dialects like SQLite (for tests)."""

    impl = JSONB
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":  # pragma: no cover - dialect specific
            return dialect.type_descriptor(JSON())
        return dialect.type_descriptor(JSONB())


def _enum_values(enum_cls: Type[Enum]) -> List[str]:
    return [member.value for member in enum_cls]


def string_enum(enum_cls: Type[Enum], length: int) -> SAEnum:
    """Store a str-valued Enum by value in a plain VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=_enum_values,
        validate_strings=True,
    )
