"""Compute reversible up/down DDL between two schema snapshots.

Every change is an operation pair: the forward statement and its exact inverse.
The up script is the non-empty ``up`` halves in order; the down script is the
non-empty ``down`` halves in reverse order, so running up then down returns the
schema to its previous state.

Operations are emitted in this order:

1. new tables (CREATE TABLE with keys inline)
2. foreign keys of new tables, once every new table exists
3. removed tables (down-only foreign key restores, then DROP TABLE); a kept
   table's constraint that references a removed table is dropped just before
4. changed tables (foreign key drops, columns, indexes, foreign key adds)

Every name-keyed collection is walked in sorted order.
"""

from __future__ import annotations

import dataclasses

from render_sql import (
    add_column_sql,
    add_foreign_key_sql,
    create_index_sql,
    create_table_sql,
    drop_column_sql,
    drop_foreign_key_sql,
    drop_index_sql,
    drop_table_sql,
    modify_column_sql,
)
from schema_state import (
    ColumnState,
    ForeignKeyState,
    IndexState,
    SchemaState,
    TableState,
    normalize_definition,
    normalize_foreign_key,
    normalize_index,
    normalize_schema_state,
)


@dataclasses.dataclass(frozen=True)
class MigrationOperation:
    up: str
    down: str


def diff_foreign_keys(
    table_name: str,
    prev: dict[str, ForeignKeyState],
    cur: dict[str, ForeignKeyState],
) -> tuple[list[MigrationOperation], list[MigrationOperation]]:
    """Return (drops, adds). A changed constraint is dropped and re-added; MySQL cannot alter one in place."""
    drops: list[MigrationOperation] = []
    adds: list[MigrationOperation] = []

    for name in sorted(prev):
        if name in cur and normalize_foreign_key(prev[name]) == normalize_foreign_key(cur[name]):
            continue
        drops.append(
            MigrationOperation(
                up=drop_foreign_key_sql(table_name, name),
                down=add_foreign_key_sql(table_name, name, prev[name]),
            )
        )
        if name in cur:
            adds.append(
                MigrationOperation(
                    up=add_foreign_key_sql(table_name, name, cur[name]),
                    down=drop_foreign_key_sql(table_name, name),
                )
            )

    for name in sorted(cur.keys() - prev.keys()):
        adds.append(
            MigrationOperation(
                up=add_foreign_key_sql(table_name, name, cur[name]),
                down=drop_foreign_key_sql(table_name, name),
            )
        )
    return drops, adds


def diff_columns(
    table_name: str,
    prev: dict[str, ColumnState],
    cur: dict[str, ColumnState],
) -> list[MigrationOperation]:
    ops: list[MigrationOperation] = []
    for col in sorted(cur):
        if col not in prev:
            ops.append(
                MigrationOperation(
                    up=add_column_sql(table_name, col, cur[col].definition),
                    down=drop_column_sql(table_name, col),
                )
            )
            continue
        if normalize_definition(prev[col].definition) != normalize_definition(cur[col].definition):
            ops.append(
                MigrationOperation(
                    up=modify_column_sql(table_name, col, cur[col].definition),
                    down=modify_column_sql(table_name, col, prev[col].definition),
                )
            )

    for col in sorted(prev.keys() - cur.keys()):
        ops.append(
            MigrationOperation(
                up=drop_column_sql(table_name, col),
                down=add_column_sql(table_name, col, prev[col].definition),
            )
        )
    return ops


def diff_indexes(
    table_name: str,
    prev: dict[str, IndexState],
    cur: dict[str, IndexState],
) -> list[MigrationOperation]:
    ops: list[MigrationOperation] = []
    for name in sorted(cur):
        if name not in prev:
            ops.append(
                MigrationOperation(
                    up=create_index_sql(table_name, name, cur[name]),
                    down=drop_index_sql(table_name, name),
                )
            )
            continue
        if normalize_index(prev[name]) != normalize_index(cur[name]):
            # No ALTER INDEX in MySQL: any change, even comment-only, is drop + create both ways.
            ops.append(
                MigrationOperation(
                    up="\n".join([drop_index_sql(table_name, name), create_index_sql(table_name, name, cur[name])]),
                    down="\n".join([drop_index_sql(table_name, name), create_index_sql(table_name, name, prev[name])]),
                )
            )

    for name in sorted(prev.keys() - cur.keys()):
        ops.append(
            MigrationOperation(
                up=drop_index_sql(table_name, name),
                down=create_index_sql(table_name, name, prev[name]),
            )
        )
    return ops


def diff_table(table_name: str, prev: TableState, cur: TableState) -> list[MigrationOperation]:
    fk_drops, fk_adds = diff_foreign_keys(table_name, prev.foreign_keys, cur.foreign_keys)
    ops = list(fk_drops)
    ops.extend(diff_columns(table_name, prev.columns, cur.columns))
    ops.extend(diff_indexes(table_name, prev.indexes, cur.indexes))
    ops.extend(fk_adds)
    return ops


def new_table_foreign_key_ops(table_name: str, table: TableState) -> list[MigrationOperation]:
    return [
        MigrationOperation(
            up=add_foreign_key_sql(table_name, name, table.foreign_keys[name]),
            down=drop_foreign_key_sql(table_name, name),
        )
        for name in sorted(table.foreign_keys)
    ]


def restore_foreign_key_ops(table_name: str, table: TableState) -> list[MigrationOperation]:
    """Down-only operations that put a dropped table's constraints back after it is recreated."""
    return [
        MigrationOperation(up="", down=add_foreign_key_sql(table_name, name, table.foreign_keys[name]))
        for name in sorted(table.foreign_keys)
    ]


def build_operations(previous: SchemaState, current: SchemaState) -> list[MigrationOperation]:
    previous = normalize_schema_state(previous)
    current = normalize_schema_state(current)
    prev_tables = sorted(previous.tables)
    cur_tables = sorted(current.tables)
    created = [t for t in cur_tables if t not in previous.tables]
    removed = [t for t in prev_tables if t not in current.tables]
    kept = [t for t in cur_tables if t in previous.tables]

    ops: list[MigrationOperation] = []
    for table_name in created:
        ops.append(
            MigrationOperation(
                up=create_table_sql(table_name, current.tables[table_name]),
                down=drop_table_sql(table_name),
            )
        )

    # Only safe once every new table exists, since they may reference each other.
    for table_name in created:
        ops.extend(new_table_foreign_key_ops(table_name, current.tables[table_name]))

    # Surviving constraints that point at a table about to be dropped must go before it.
    kept_prev: dict[str, TableState] = {}
    removed_set = set(removed)
    for table_name in kept:
        prev_table = previous.tables[table_name]
        cur_fks = current.tables[table_name].foreign_keys
        detached = [
            name
            for name in sorted(prev_table.foreign_keys)
            if prev_table.foreign_keys[name].ref_table in removed_set and cur_fks.get(name) != prev_table.foreign_keys[name]
        ]
        for name in detached:
            ops.append(
                MigrationOperation(
                    up=drop_foreign_key_sql(table_name, name),
                    down=add_foreign_key_sql(table_name, name, prev_table.foreign_keys[name]),
                )
            )
        kept_prev[table_name] = dataclasses.replace(
            prev_table,
            foreign_keys={n: fk for n, fk in prev_table.foreign_keys.items() if n not in detached},
        )

    for table_name in removed:
        ops.extend(restore_foreign_key_ops(table_name, previous.tables[table_name]))
        ops.append(
            MigrationOperation(
                up=drop_table_sql(table_name),
                down=create_table_sql(table_name, previous.tables[table_name]),
            )
        )

    for table_name in kept:
        ops.extend(diff_table(table_name, kept_prev[table_name], current.tables[table_name]))
    return ops


def split_operations(ops: list[MigrationOperation]) -> tuple[list[str], list[str]]:
    up = [op.up for op in ops if op.up.strip()]
    down = [op.down for op in reversed(ops) if op.down.strip()]
    return up, down


def diff(previous: SchemaState, current: SchemaState) -> tuple[list[str], list[str]]:
    """Return (up statements, down statements); both empty when nothing changed."""
    return split_operations(build_operations(previous, current))
