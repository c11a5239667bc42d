"""Canonical schema snapshot model and the normalization rules used to compare snapshots."""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import Mapping


INDEX_CLASSES = ("UNIQUE", "FULLTEXT", "SPATIAL")


class SchemaValidationError(ValueError):
    """Model definitions cannot be turned into a migratable schema state."""


class SnapshotParseError(ValueError):
    """A persisted snapshot exists but its content is not a valid schema state."""


@dataclasses.dataclass(frozen=True)
class ColumnState:
    definition: str


@dataclasses.dataclass(frozen=True)
class IndexFieldState:
    column: str = ""
    expression: str = ""
    sort: str = ""
    collate: str = ""
    length: int = 0


@dataclasses.dataclass(frozen=True)
class IndexState:
    fields: tuple[IndexFieldState, ...] = ()
    index_class: str = ""
    index_type: str = ""
    where: str = ""
    comment: str = ""
    option: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclasses.dataclass(frozen=True)
class ForeignKeyState:
    columns: tuple[str, ...]
    ref_table: str
    ref_columns: tuple[str, ...]
    on_delete: str = ""
    on_update: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "ref_columns", tuple(self.ref_columns))


@dataclasses.dataclass(frozen=True)
class TableState:
    columns: Mapping[str, ColumnState] = dataclasses.field(default_factory=dict)
    indexes: Mapping[str, IndexState] = dataclasses.field(default_factory=dict)
    foreign_keys: Mapping[str, ForeignKeyState] = dataclasses.field(default_factory=dict)
    primary_keys: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "indexes", MappingProxyType(dict(self.indexes)))
        object.__setattr__(self, "foreign_keys", MappingProxyType(dict(self.foreign_keys)))
        object.__setattr__(self, "primary_keys", tuple(self.primary_keys))


@dataclasses.dataclass(frozen=True)
class SchemaState:
    """One full snapshot: table name -> table state. A missing key means the table does not exist.

    Maps are copied into read-only proxies on construction; derive a changed
    state with ``dataclasses.replace`` instead of editing one in place.
    """

    tables: Mapping[str, TableState] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    def is_empty(self) -> bool:
        return not self.tables


def normalize_definition(definition: str) -> str:
    return " ".join(definition.split())


def normalize_index_class(index_class: str) -> str:
    return index_class.strip().upper()


def normalize_index_field(field: IndexFieldState) -> IndexFieldState:
    return IndexFieldState(
        column=field.column.strip(),
        expression=field.expression.strip(),
        sort=field.sort.strip().upper(),
        collate=field.collate.strip(),
        length=field.length,
    )


def normalize_index(idx: IndexState) -> IndexState:
    """Trim every string, upper-case class and sort keywords, and drop fields that name nothing."""
    fields = []
    for field in idx.fields:
        field = normalize_index_field(field)
        if not field.column and not field.expression:
            continue
        fields.append(field)
    return IndexState(
        fields=tuple(fields),
        index_class=normalize_index_class(idx.index_class),
        index_type=idx.index_type.strip(),
        where=idx.where.strip(),
        comment=idx.comment.strip(),
        option=idx.option.strip(),
    )


def normalize_foreign_key_action(action: str) -> str:
    return action.strip().upper()


def normalize_foreign_key(fk: ForeignKeyState) -> ForeignKeyState:
    return ForeignKeyState(
        columns=tuple(c.strip() for c in fk.columns if c.strip()),
        ref_table=fk.ref_table.strip(),
        ref_columns=tuple(c.strip() for c in fk.ref_columns if c.strip()),
        on_delete=normalize_foreign_key_action(fk.on_delete),
        on_update=normalize_foreign_key_action(fk.on_update),
    )


def foreign_key_signature(fk: ForeignKeyState) -> str:
    """Name-independent identity of a constraint, used to spot duplicates declared under different names."""
    fk = normalize_foreign_key(fk)
    return "|".join(
        [
            ",".join(fk.columns),
            fk.ref_table,
            ",".join(fk.ref_columns),
            fk.on_delete,
            fk.on_update,
        ]
    )


def normalize_table_state(table: TableState) -> TableState:
    indexes: dict[str, IndexState] = {}
    for name, idx in table.indexes.items():
        idx = normalize_index(idx)
        # An index left without fields is never emitted.
        if idx.fields:
            indexes[name] = idx
    return TableState(
        columns={name: ColumnState(normalize_definition(col.definition)) for name, col in table.columns.items()},
        indexes=indexes,
        foreign_keys={name: normalize_foreign_key(fk) for name, fk in table.foreign_keys.items()},
        primary_keys=tuple(pk.strip() for pk in table.primary_keys if pk.strip()),
    )


def normalize_schema_state(state: SchemaState) -> SchemaState:
    return SchemaState(tables={name: normalize_table_state(table) for name, table in state.tables.items()})
