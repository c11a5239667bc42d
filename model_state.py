"""Build a SchemaState from SQLAlchemy model definitions.

Accepted model objects are MetaData, Table, or mapped classes. Association tables
used as ``secondary`` by a mapped class's relationships are picked up as well.
Column definitions are whatever SQLAlchemy's MySQL DDL compiler renders for the
column, minus the column name.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import Column, ForeignKeyConstraint, Index, MetaData, Table, UniqueConstraint, inspect
from sqlalchemy.dialects import mysql
from sqlalchemy.exc import CompileError, NoInspectionAvailable
from sqlalchemy.orm import Mapper
from sqlalchemy.schema import CreateColumn
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import BinaryExpression, CollationClause, Grouping, TextClause, UnaryExpression
from sqlalchemy.sql.functions import FunctionElement

from schema_state import (
    ColumnState,
    ForeignKeyState,
    IndexFieldState,
    IndexState,
    SchemaState,
    SchemaValidationError,
    TableState,
    foreign_key_signature,
    normalize_definition,
    normalize_foreign_key,
    normalize_index_class,
)


MYSQL_DIALECT = mysql.dialect()


def _name(obj: Any) -> str:
    # Unnamed constraints carry a non-str sentinel instead of None.
    name = getattr(obj, "name", None)
    return name.strip() if isinstance(name, str) else ""


def add_table(tables: dict[str, Table], table: Table | None) -> None:
    if table is None or not table.name.strip():
        return
    tables.setdefault(table.name, table)


def collect_tables(models: Iterable[Any]) -> dict[str, Table]:
    tables: dict[str, Table] = {}
    for model in models:
        if isinstance(model, MetaData):
            for table in model.sorted_tables:
                add_table(tables, table)
            continue
        if isinstance(model, Table):
            add_table(tables, model)
            continue
        try:
            mapper = inspect(model)
        except NoInspectionAvailable as exc:
            raise SchemaValidationError(f"unsupported model object: {model!r}") from exc
        if not isinstance(mapper, Mapper):
            raise SchemaValidationError(f"unsupported model object: {model!r}")
        local_table = mapper.local_table
        if isinstance(local_table, Table):
            add_table(tables, local_table)
        for rel in sorted(mapper.relationships, key=lambda r: r.key):
            if isinstance(rel.secondary, Table):
                add_table(tables, rel.secondary)
    return tables


def column_definition(table: Table, column: Column) -> str:
    try:
        ddl = str(CreateColumn(column).compile(dialect=MYSQL_DIALECT))
    except CompileError as exc:
        raise SchemaValidationError(f"table `{table.name}` column `{column.name}`: {exc}") from exc
    name = MYSQL_DIALECT.identifier_preparer.format_column(column)
    if ddl.startswith(name):
        ddl = ddl[len(name):]
    return normalize_definition(ddl)


def _compile_expression(expr: Any) -> str:
    if isinstance(expr, (FunctionElement, BinaryExpression)):
        expr = Grouping(expr)
    compiled = expr.compile(dialect=MYSQL_DIALECT, compile_kwargs={"literal_binds": True, "include_table": False})
    return str(compiled).strip()


def index_field_state(expr: Any, lengths: Any) -> IndexFieldState:
    sort = ""
    if isinstance(expr, UnaryExpression) and expr.modifier in (operators.asc_op, operators.desc_op):
        sort = "DESC" if expr.modifier is operators.desc_op else "ASC"
        expr = expr.element
    if isinstance(expr, Grouping):
        expr = expr.element

    collate = ""
    if (
        isinstance(expr, BinaryExpression)
        and expr.operator is operators.collate
        and isinstance(expr.right, CollationClause)
    ):
        collate = expr.right.collation
        expr = expr.left

    if isinstance(expr, Column):
        length = 0
        if isinstance(lengths, int):
            length = lengths
        elif isinstance(lengths, dict):
            length = int(lengths.get(expr.name, 0) or 0)
        return IndexFieldState(column=expr.name, sort=sort, collate=collate, length=length)

    if isinstance(expr, TextClause):
        return IndexFieldState(expression=expr.text.strip(), sort=sort)
    return IndexFieldState(expression=_compile_expression(expr), sort=sort)


def index_state(table: Table, index: Index, name: str) -> IndexState:
    for key, value in sorted(index.dialect_kwargs.items()):
        if key.endswith("_where") and value is not None:
            raise SchemaValidationError(
                f"table `{table.name}` index `{name}` uses where={str(value)!r}, "
                "which is unsupported for MySQL migrations"
            )
    if not index.expressions:
        raise SchemaValidationError(f"invalid empty composite index `{name}` on table `{table.name}`")

    options = index.dialect_options["mysql"]
    if index.unique:
        index_class = "UNIQUE"
    else:
        index_class = normalize_index_class(options["prefix"] or "")
        if index_class not in ("FULLTEXT", "SPATIAL"):
            index_class = ""

    option_parts: list[str] = []
    if options["with_parser"]:
        option_parts.append(f"WITH PARSER {options['with_parser']}")
    if index.info.get("option"):
        option_parts.append(str(index.info["option"]).strip())

    fields = [index_field_state(expr, options["length"]) for expr in index.expressions]
    return IndexState(
        fields=tuple(f for f in fields if f.column or f.expression),
        index_class=index_class,
        index_type=str(options["using"] or "").strip(),
        comment=str(index.info.get("comment", "")).strip(),
        option=" ".join(option_parts),
    )


def unique_constraint_state(constraint: UniqueConstraint) -> IndexState:
    return IndexState(
        fields=tuple(IndexFieldState(column=col.name) for col in constraint.columns),
        index_class="UNIQUE",
    )


def build_table_state(table: Table) -> TableState:
    """Columns, primary key and indexes of one table; foreign keys are collected separately."""
    columns: dict[str, ColumnState] = {}
    for column in table.columns:
        if not column.name.strip():
            continue
        definition = column_definition(table, column)
        if not definition:
            continue
        columns[column.name] = ColumnState(definition)

    indexes: dict[str, IndexState] = {}
    for index in sorted(table.indexes, key=lambda i: _name(i)):
        name = _name(index)
        if not name:
            raise SchemaValidationError(f"table `{table.name}` has unnamed index")
        if name.upper() == "PRIMARY":
            continue
        idx = index_state(table, index, name)
        if idx.fields:
            indexes[name] = idx

    for constraint in sorted(table.constraints, key=lambda c: _name(c)):
        if not isinstance(constraint, UniqueConstraint):
            continue
        name = _name(constraint)
        if not name:
            raise SchemaValidationError(f"table `{table.name}` has unnamed unique constraint")
        idx = unique_constraint_state(constraint)
        if idx.fields:
            indexes[name] = idx

    return TableState(
        columns=columns,
        indexes=indexes,
        primary_keys=tuple(col.name for col in table.primary_key.columns),
    )


def foreign_key_from_constraint(table: Table, name: str, constraint: ForeignKeyConstraint) -> ForeignKeyState:
    if not constraint.elements:
        raise SchemaValidationError(f"table `{table.name}` constraint `{name}` has empty key columns")

    cols: list[str] = []
    ref_cols: list[str] = []
    ref_tables: set[str] = set()
    for element in constraint.elements:
        col = element.parent.name.strip() if element.parent is not None else ""
        parts = element.target_fullname.split(".")
        ref_col = parts[-1].strip()
        if not col or not ref_col or len(parts) < 2:
            raise SchemaValidationError(f"table `{table.name}` constraint `{name}` has empty column names")
        ref_tables.add(parts[-2].strip())
        cols.append(col)
        ref_cols.append(ref_col)
    if len(ref_tables) != 1:
        raise SchemaValidationError(f"table `{table.name}` constraint `{name}` references more than one table")

    return normalize_foreign_key(
        ForeignKeyState(
            columns=tuple(cols),
            ref_table=ref_tables.pop(),
            ref_columns=tuple(ref_cols),
            on_delete=constraint.ondelete or "",
            on_update=constraint.onupdate or "",
        )
    )


def _constraint_sort_key(constraint: ForeignKeyConstraint) -> tuple[str, str]:
    return _name(constraint), ",".join(e.target_fullname for e in constraint.elements)


def collect_foreign_keys_by_table(tables: dict[str, Table]) -> dict[str, dict[str, ForeignKeyState]]:
    """Foreign keys per table, with structurally identical constraints collapsed to the smallest name."""
    result: dict[str, dict[str, ForeignKeyState]] = {}
    for table_name in sorted(tables):
        table = tables[table_name]
        fk_map: dict[str, ForeignKeyState] = {}
        signatures: dict[str, str] = {}
        # Every name seen, including ones collapsed into a smaller-named duplicate.
        seen: dict[str, ForeignKeyState] = {}
        for constraint in sorted(table.foreign_key_constraints, key=_constraint_sort_key):
            name = _name(constraint)
            if not name:
                raise SchemaValidationError(f"table `{table_name}` has unnamed foreign key constraint")
            fk = foreign_key_from_constraint(table, name, constraint)
            if name in seen:
                if seen[name] != fk:
                    raise SchemaValidationError(
                        f"table `{table_name}` has conflicting foreign key definition for `{name}`"
                    )
                continue
            seen[name] = fk
            signature = foreign_key_signature(fk)

            existing_name = signatures.get(signature)
            if existing_name is not None:
                if name < existing_name:
                    del fk_map[existing_name]
                    fk_map[name] = fk
                    signatures[signature] = name
                continue
            fk_map[name] = fk
            signatures[signature] = name
        result[table_name] = fk_map
    return result


def compute_current_state(models: Iterable[Any]) -> SchemaState:
    tables = collect_tables(models)
    foreign_keys = collect_foreign_keys_by_table(tables)
    state: dict[str, TableState] = {}
    for table_name in sorted(tables):
        table = build_table_state(tables[table_name])
        state[table_name] = TableState(
            columns=table.columns,
            indexes=table.indexes,
            foreign_keys=foreign_keys.get(table_name, {}),
            primary_keys=table.primary_keys,
        )
    return SchemaState(tables=state)
