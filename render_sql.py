"""Render MySQL DDL statements from schema state objects."""

from __future__ import annotations

from typing import Iterable

from schema_state import (
    INDEX_CLASSES,
    ForeignKeyState,
    IndexFieldState,
    IndexState,
    TableState,
    normalize_foreign_key,
    normalize_index,
    normalize_index_class,
)


def quote_identifier(name: str) -> str:
    return "`" + name.strip().replace("`", "``") + "`"


def quote_sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def quoted_columns(columns: Iterable[str]) -> str:
    return ", ".join(quote_identifier(c) for c in columns)


def index_class_prefix(index_class: str) -> str:
    index_class = normalize_index_class(index_class)
    if index_class in INDEX_CLASSES:
        return index_class + " "
    return ""


def index_class_key_prefix(index_class: str) -> str:
    index_class = normalize_index_class(index_class)
    if index_class in INDEX_CLASSES:
        return index_class + " KEY"
    return "KEY"


def index_field_sql(field: IndexFieldState) -> str:
    expression = field.expression.strip()
    if expression:
        base = expression
    else:
        base = quote_identifier(field.column)
        if field.length > 0:
            base = f"{base}({field.length})"
        if field.collate.strip():
            base = f"{base} COLLATE {field.collate.strip()}"
    sort = field.sort.strip().upper()
    if sort:
        base = f"{base} {sort}"
    return base


def index_fields_sql(fields: Iterable[IndexFieldState]) -> str:
    return ", ".join(index_field_sql(f) for f in fields)


def _index_options_sql(idx: IndexState) -> str:
    parts: list[str] = []
    if idx.index_type:
        parts.append(f"USING {idx.index_type}")
    if idx.comment:
        parts.append(f"COMMENT {quote_sql_string(idx.comment)}")
    if idx.option:
        parts.append(idx.option)
    return "".join(" " + p for p in parts)


def table_index_definition(index_name: str, idx: IndexState) -> str:
    """Key clause used inside a CREATE TABLE body, e.g. ``UNIQUE KEY `name` (`col`)``."""
    idx = normalize_index(idx)
    prefix = index_class_key_prefix(idx.index_class)
    return f"{prefix} {quote_identifier(index_name)} ({index_fields_sql(idx.fields)}){_index_options_sql(idx)}"


def create_index_sql(table_name: str, index_name: str, idx: IndexState) -> str:
    idx = normalize_index(idx)
    prefix = index_class_prefix(idx.index_class)
    return (
        f"CREATE {prefix}INDEX {quote_identifier(index_name)} ON {quote_identifier(table_name)} "
        f"({index_fields_sql(idx.fields)}){_index_options_sql(idx)};"
    )


def drop_index_sql(table_name: str, index_name: str) -> str:
    return f"DROP INDEX {quote_identifier(index_name)} ON {quote_identifier(table_name)};"


def create_table_sql(table_name: str, table: TableState) -> str:
    """CREATE TABLE with columns (sorted), the primary key (declared order) and keys (sorted) inline."""
    defs: list[str] = []
    for col in sorted(table.columns):
        defs.append(f"  {quote_identifier(col)} {table.columns[col].definition}")
    if table.primary_keys:
        defs.append(f"  PRIMARY KEY ({quoted_columns(table.primary_keys)})")
    for index_name in sorted(table.indexes):
        defs.append(f"  {table_index_definition(index_name, table.indexes[index_name])}")
    body = ",\n".join(defs)
    return f"CREATE TABLE {quote_identifier(table_name)} (\n{body}\n);"


def drop_table_sql(table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {quote_identifier(table_name)};"


def add_column_sql(table_name: str, column: str, definition: str) -> str:
    return f"ALTER TABLE {quote_identifier(table_name)} ADD COLUMN {quote_identifier(column)} {definition};"


def drop_column_sql(table_name: str, column: str) -> str:
    return f"ALTER TABLE {quote_identifier(table_name)} DROP COLUMN {quote_identifier(column)};"


def modify_column_sql(table_name: str, column: str, definition: str) -> str:
    return f"ALTER TABLE {quote_identifier(table_name)} MODIFY COLUMN {quote_identifier(column)} {definition};"


def add_foreign_key_sql(table_name: str, constraint_name: str, fk: ForeignKeyState) -> str:
    fk = normalize_foreign_key(fk)
    parts = [
        f"ALTER TABLE {quote_identifier(table_name)} ADD CONSTRAINT {quote_identifier(constraint_name)}",
        f"FOREIGN KEY ({quoted_columns(fk.columns)})",
        f"REFERENCES {quote_identifier(fk.ref_table)} ({quoted_columns(fk.ref_columns)})",
    ]
    if fk.on_delete:
        parts.append(f"ON DELETE {fk.on_delete}")
    if fk.on_update:
        parts.append(f"ON UPDATE {fk.on_update}")
    return " ".join(parts) + ";"


def drop_foreign_key_sql(table_name: str, constraint_name: str) -> str:
    return f"ALTER TABLE {quote_identifier(table_name)} DROP FOREIGN KEY {quote_identifier(constraint_name)};"


def render_script(statements: Iterable[str]) -> str:
    """Migration file body: one blank line between statements, trailing newline."""
    return "\n\n".join(statements) + "\n"
