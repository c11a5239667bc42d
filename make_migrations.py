#!/usr/bin/env python3
"""Generate timestamped up/down MySQL migration files from SQLAlchemy models.

The previous schema state lives in a JSON snapshot next to the migrations. Each
run diffs the models against it and, only when something changed, writes the
up file, the down file and the refreshed snapshot.

Usage:
    python make_migrations.py makemigrations --name "add user avatar"
    python make_migrations.py syncstate
    python make_migrations.py check
"""

from __future__ import annotations

import argparse
import dataclasses
import difflib
import importlib
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc

from sqlalchemy import MetaData, Table

from model_state import compute_current_state
from render_sql import render_script
from schema_diff import diff
from schema_state import SchemaState, SchemaValidationError, SnapshotParseError
from snapshot import dump_snapshot, load_snapshot


DEFAULT_CONFIG = "migrations.yaml"
DEFAULT_MIGRATIONS_DIR = Path("database") / "migrations"
STATE_FILE_NAME = ".schema_state.json"
VERSION_FORMAT = "%Y%m%d%H%M%S"


@dataclasses.dataclass
class MakeMigrationsResult:
    changed: bool = False
    up_path: Path | None = None
    down_path: Path | None = None
    state_path: Path | None = None


def sanitize_name(raw: str) -> str:
    name = re.sub(r"[^a-z0-9]+", "_", raw.strip().lower())
    return name.strip("_") or "auto_migration"


def resolve_paths(directory: str | Path | None, state_file: str | Path | None) -> tuple[Path, Path]:
    if directory is None or not str(directory).strip():
        directory = DEFAULT_MIGRATIONS_DIR
    abs_dir = Path(directory).resolve()
    if state_file is None or not str(state_file).strip():
        state_file = abs_dir / STATE_FILE_NAME
    return abs_dir, Path(state_file).resolve()


def write_text(path: Path, content: str) -> None:
    """Write through a sibling temp file so an existing file is replaced whole or left untouched."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
    except OSError:
        if tmp.is_file():
            tmp.unlink()
        raise


def write_all(outputs: list[tuple[Path, str]]) -> None:
    """Write every file or none of the new ones: a failed write removes files written before it."""
    written: list[Path] = []
    try:
        for path, content in outputs:
            existed = path.exists()
            write_text(path, content)
            if not existed:
                written.append(path)
    except OSError:
        for path in written:
            path.unlink(missing_ok=True)
        raise


def make_migrations(
    models: Iterable[Any],
    directory: str | Path | None,
    name: str,
    state_file: str | Path | None = None,
    now: datetime | None = None,
) -> MakeMigrationsResult:
    if not name or not name.strip():
        raise SchemaValidationError("--name is required")
    abs_dir, state_path = resolve_paths(directory, state_file)
    abs_dir.mkdir(parents=True, exist_ok=True)
    result = MakeMigrationsResult(state_path=state_path)

    previous = load_snapshot(state_path)
    current = compute_current_state(models)
    up_sql, down_sql = diff(previous, current)
    if not up_sql:
        return result

    version = (now or datetime.now()).strftime(VERSION_FORMAT)
    file_name = f"{version}_{sanitize_name(name)}"
    up_path = abs_dir / f"{file_name}.up.sql"
    down_path = abs_dir / f"{file_name}.down.sql"

    write_all(
        [
            (up_path, render_script(up_sql)),
            (down_path, render_script(down_sql)),
            (state_path, dump_snapshot(current)),
        ]
    )

    result.changed = True
    result.up_path = up_path
    result.down_path = down_path
    return result


def sync_schema_state(
    models: Iterable[Any],
    directory: str | Path | None,
    state_file: str | Path | None = None,
) -> Path:
    """Record the models as the current snapshot without generating SQL."""
    abs_dir, state_path = resolve_paths(directory, state_file)
    abs_dir.mkdir(parents=True, exist_ok=True)
    current = compute_current_state(models)
    write_text(state_path, dump_snapshot(current))
    return state_path


def check_schema_state(models: Iterable[Any], state_file: str | Path) -> tuple[SchemaState, SchemaState, list[str], list[str]]:
    previous = load_snapshot(Path(state_file))
    current = compute_current_state(models)
    up_sql, down_sql = diff(previous, current)
    return previous, current, up_sql, down_sql


def check_equal(path: Path, existing: str, generated: str) -> bool:
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    unified = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"models:{path}",
        lineterm="",
    )
    for idx, line in enumerate(unified):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def load_config(path: str | Path | None) -> dict[str, Any]:
    """Read the YAML config. Only the default config file may be absent."""
    explicit = path is not None
    config_path = Path(path if explicit else DEFAULT_CONFIG)
    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"config file not found: {config_path}")
        return {}
    config = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise SchemaValidationError(f"config {config_path} must be a mapping")
    return config


def expand_models(obj: Any) -> list[Any]:
    if isinstance(obj, (list, tuple)):
        out: list[Any] = []
        for item in obj:
            out.extend(expand_models(item))
        return out
    if isinstance(obj, (MetaData, Table)):
        return [obj]
    metadata = getattr(obj, "metadata", None)
    if isinstance(metadata, MetaData) and getattr(obj, "__table__", None) is None:
        # Declarative base: every table registered on it.
        return [metadata]
    return [obj]


def load_models(target: str) -> list[Any]:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise SchemaValidationError(f"models must look like 'package.module:attribute', got {target!r}")
    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    module = importlib.import_module(module_name)
    try:
        obj = getattr(module, attr)
    except AttributeError as exc:
        raise SchemaValidationError(f"module {module_name!r} has no attribute {attr!r}") from exc
    return expand_models(obj)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate MySQL migrations from SQLAlchemy models")
    parser.add_argument("--config", default=None, help=f"YAML config file (default: {DEFAULT_CONFIG} if present)")
    parser.add_argument("--models", default=None, help="Models to migrate, as package.module:attribute")
    parser.add_argument("--dir", default=None, help=f"Migrations directory (default: {DEFAULT_MIGRATIONS_DIR})")
    parser.add_argument("--state-file", default=None, help=f"Schema snapshot file (default: <dir>/{STATE_FILE_NAME})")

    sub = parser.add_subparsers(dest="command", required=True)
    mk = sub.add_parser("makemigrations", help="Write up/down SQL for model changes since the last snapshot")
    mk.add_argument("--name", required=True, help="Migration name, used in the file names")
    sub.add_parser("syncstate", help="Record the current models as the snapshot without writing SQL")
    sub.add_parser("check", help="Exit 1 when the models differ from the snapshot")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    target = args.models or config.get("models")
    if not target:
        raise SchemaValidationError("no models configured: pass --models or set 'models' in the config")
    models = load_models(str(target))
    directory = args.dir or config.get("migrations_dir")
    state_file = args.state_file or config.get("state_file")

    if args.command == "makemigrations":
        result = make_migrations(models, directory, args.name, state_file)
        if not result.changed:
            print("No changes detected")
            return 0
        print(f"Generated {result.up_path}")
        print(f"Generated {result.down_path}")
        print(f"Updated {result.state_path}")
        return 0

    if args.command == "syncstate":
        state_path = sync_schema_state(models, directory, state_file)
        print(f"Updated {state_path}")
        return 0

    _, state_path = resolve_paths(directory, state_file)
    previous, current, up_sql, _ = check_schema_state(models, state_path)
    if not up_sql:
        return 0
    check_equal(state_path, dump_snapshot(previous), dump_snapshot(current))
    print(f"[check] {len(up_sql)} pending statement(s); run makemigrations", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        return run(args)
    except (SchemaValidationError, SnapshotParseError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
