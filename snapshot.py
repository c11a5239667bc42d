"""Load and save the previous-state schema snapshot as JSON.

A missing (or blank) snapshot file means "no previous state" and loads as an empty
SchemaState. Anything else that is not a valid snapshot raises SnapshotParseError.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from schema_state import (
    ColumnState,
    ForeignKeyState,
    IndexFieldState,
    IndexState,
    SchemaState,
    SnapshotParseError,
    TableState,
)


def index_to_dict(idx: IndexState) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in (
        ("class", idx.index_class),
        ("type", idx.index_type),
        ("where", idx.where),
        ("comment", idx.comment),
        ("option", idx.option),
    ):
        if value:
            out[key] = value

    fields: list[dict[str, Any]] = []
    for field in idx.fields:
        item: dict[str, Any] = {}
        for key, value in (
            ("column", field.column),
            ("expression", field.expression),
            ("sort", field.sort),
            ("collate", field.collate),
            ("length", field.length),
        ):
            if value:
                item[key] = value
        fields.append(item)
    out["fields"] = fields
    return out


def foreign_key_to_dict(fk: ForeignKeyState) -> dict[str, Any]:
    out: dict[str, Any] = {
        "columns": list(fk.columns),
        "ref_table": fk.ref_table,
        "ref_columns": list(fk.ref_columns),
    }
    if fk.on_delete:
        out["on_delete"] = fk.on_delete
    if fk.on_update:
        out["on_update"] = fk.on_update
    return out


def table_to_dict(table: TableState) -> dict[str, Any]:
    out: dict[str, Any] = {
        "columns": {name: {"definition": table.columns[name].definition} for name in sorted(table.columns)},
    }
    if table.indexes:
        out["indexes"] = {name: index_to_dict(table.indexes[name]) for name in sorted(table.indexes)}
    if table.foreign_keys:
        out["foreign_keys"] = {name: foreign_key_to_dict(table.foreign_keys[name]) for name in sorted(table.foreign_keys)}
    if table.primary_keys:
        out["primary_keys"] = list(table.primary_keys)
    return out


def state_to_dict(state: SchemaState) -> dict[str, Any]:
    return {"tables": {name: table_to_dict(state.tables[name]) for name in sorted(state.tables)}}


def _expect(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind):
        raise SnapshotParseError(f"{where}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _str_list(value: Any, where: str) -> tuple[str, ...]:
    items = _expect(value, list, where)
    for item in items:
        _expect(item, str, where)
    return tuple(items)


def index_from_dict(data: Any, where: str) -> IndexState:
    data = _expect(data, dict, where)
    fields: list[IndexFieldState] = []
    for pos, raw in enumerate(_expect(data.get("fields", []), list, f"{where}.fields")):
        raw = _expect(raw, dict, f"{where}.fields[{pos}]")
        length = raw.get("length", 0)
        if not isinstance(length, int) or isinstance(length, bool):
            raise SnapshotParseError(f"{where}.fields[{pos}].length: expected int")
        fields.append(
            IndexFieldState(
                column=_expect(raw.get("column", ""), str, f"{where}.fields[{pos}].column"),
                expression=_expect(raw.get("expression", ""), str, f"{where}.fields[{pos}].expression"),
                sort=_expect(raw.get("sort", ""), str, f"{where}.fields[{pos}].sort"),
                collate=_expect(raw.get("collate", ""), str, f"{where}.fields[{pos}].collate"),
                length=length,
            )
        )
    return IndexState(
        fields=tuple(fields),
        index_class=_expect(data.get("class", ""), str, f"{where}.class"),
        index_type=_expect(data.get("type", ""), str, f"{where}.type"),
        where=_expect(data.get("where", ""), str, f"{where}.where"),
        comment=_expect(data.get("comment", ""), str, f"{where}.comment"),
        option=_expect(data.get("option", ""), str, f"{where}.option"),
    )


def foreign_key_from_dict(data: Any, where: str) -> ForeignKeyState:
    data = _expect(data, dict, where)
    return ForeignKeyState(
        columns=_str_list(data.get("columns", []), f"{where}.columns"),
        ref_table=_expect(data.get("ref_table", ""), str, f"{where}.ref_table"),
        ref_columns=_str_list(data.get("ref_columns", []), f"{where}.ref_columns"),
        on_delete=_expect(data.get("on_delete", ""), str, f"{where}.on_delete"),
        on_update=_expect(data.get("on_update", ""), str, f"{where}.on_update"),
    )


def table_from_dict(data: Any, where: str) -> TableState:
    data = _expect(data, dict, where)
    columns: dict[str, ColumnState] = {}
    for name, raw in _expect(data.get("columns") or {}, dict, f"{where}.columns").items():
        raw = _expect(raw, dict, f"{where}.columns.{name}")
        columns[name] = ColumnState(_expect(raw.get("definition", ""), str, f"{where}.columns.{name}.definition"))
    indexes = {
        name: index_from_dict(raw, f"{where}.indexes.{name}")
        for name, raw in _expect(data.get("indexes") or {}, dict, f"{where}.indexes").items()
    }
    foreign_keys = {
        name: foreign_key_from_dict(raw, f"{where}.foreign_keys.{name}")
        for name, raw in _expect(data.get("foreign_keys") or {}, dict, f"{where}.foreign_keys").items()
    }
    return TableState(
        columns=columns,
        indexes=indexes,
        foreign_keys=foreign_keys,
        primary_keys=_str_list(data.get("primary_keys") or [], f"{where}.primary_keys"),
    )


def state_from_dict(data: Any) -> SchemaState:
    data = _expect(data, dict, "snapshot")
    tables = _expect(data.get("tables") or {}, dict, "tables")
    return SchemaState(tables={name: table_from_dict(raw, f"tables.{name}") for name, raw in tables.items()})


def dump_snapshot(state: SchemaState) -> str:
    return json.dumps(state_to_dict(state), indent=2) + "\n"


def load_snapshot(path: Path) -> SchemaState:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return SchemaState()
    except UnicodeDecodeError as exc:
        raise SnapshotParseError(f"invalid schema snapshot {path}: {exc}") from exc
    if not text.strip():
        return SchemaState()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SnapshotParseError(f"invalid schema snapshot {path}: {exc}") from exc
    try:
        return state_from_dict(data)
    except SnapshotParseError as exc:
        raise SnapshotParseError(f"invalid schema snapshot {path}: {exc}") from exc


def save_snapshot(path: Path, state: SchemaState) -> None:
    Path(path).write_text(dump_snapshot(state), encoding="utf-8")
