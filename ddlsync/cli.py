#!/usr/bin/env python3
"""Generate creation, migration and seed-data SQL from schema model documents."""

from __future__ import annotations

import argparse
import dataclasses
import difflib
import logging
import sys
from pathlib import Path

import yaml

from ddlsync.config import Settings, load_settings, validate
from ddlsync.document import load_schema
from ddlsync.errors import DDLError
from ddlsync.model import Insert, Schema
from ddlsync.reconcile import diff
from ddlsync.serializer import render_script, serialize, serialize_insert

logger = logging.getLogger(__name__)


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def check_equal(path: Path, generated: str) -> bool:
    if not path.exists():
        print(f"[check] missing file: {path}", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    lines = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"generated:{path}",
        lineterm="",
    )
    for idx, line in enumerate(lines):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    common.add_argument("--config", help="YAML run configuration")
    common.add_argument("--dialect", help="Target SQL dialect (mysql, pgsql)")
    common.add_argument("--map", dest="table_to_database_map", help="Table-to-database mapping rules")
    common.add_argument("--local-schema", help="Schema prefix for local table and view names")
    common.add_argument("--base-path", help="Base directory for seed-data files")
    common.add_argument("--tables", help="Comma-separated allow-list of table names")

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("--out", help="Write the script to this file instead of stdout")
    output.add_argument("--check", action="store_true", help="Verify --out is up-to-date without writing")

    parser = argparse.ArgumentParser(prog="ddlsync", description="Generate SQL DDL from schema model documents")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sql", parents=[common, output], help="Script that creates a model from scratch")
    p.add_argument("model", help="Schema model document")

    p = sub.add_parser("diff", parents=[common, output], help="Script that migrates OLD to NEW")
    p.add_argument("old", help="Model of the existing database")
    p.add_argument("new", help="Desired model")
    p.add_argument("--allow-drop-table", action="store_true", default=None)
    p.add_argument("--allow-drop-column", action="store_true", default=None)
    p.add_argument("--allow-drop-index", action="store_true", default=None)
    p.add_argument("--max-statement-length", type=int, help="Bound on a coalesced alter table statement")

    p = sub.add_parser("inserts", parents=[common, output], help="Seed rows that declare key columns")
    p.add_argument("model", help="Schema model document")

    p = sub.add_parser("list-tables", parents=[common], help="Print the table names of a model")
    p.add_argument("model", help="Schema model document")

    args = parser.parse_args(argv)
    if getattr(args, "check", False) and not args.out:
        parser.error("--check requires --out")
    return args


_OVERRIDES = (
    "dialect",
    "table_to_database_map",
    "local_schema",
    "base_path",
    "allow_drop_table",
    "allow_drop_column",
    "allow_drop_index",
    "max_statement_length",
)


def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config) if args.config else Settings()
    overrides = {name: getattr(args, name) for name in _OVERRIDES if getattr(args, name, None) is not None}
    if args.tables:
        overrides["tables"] = [t.strip() for t in args.tables.split(",") if t.strip()]
    settings = dataclasses.replace(settings, **overrides)
    validate(settings)
    return settings


def load_model(path: str, settings: Settings) -> Schema:
    schema = load_schema(path)
    if settings.tables:
        schema = schema.restrict_to(settings.tables)
    mapping = settings.database_map()
    if mapping is not None:
        schema = schema.qualify_foreign_tables(mapping)
    return schema


def generate(args: argparse.Namespace, settings: Settings) -> str:
    mapping = settings.database_map()
    if args.command == "list-tables":
        names = load_model(args.model, settings).table_names()
        return "".join(f"{name}\n" for name in names)

    if args.command == "sql":
        statements = serialize(
            load_model(args.model, settings),
            settings.dialect,
            mapping,
            settings.local_schema,
            settings.base_path,
        )
    elif args.command == "diff":
        statements = diff(
            load_model(args.old, settings),
            load_model(args.new, settings),
            allow_drop_table=settings.allow_drop_table,
            allow_drop_column=settings.allow_drop_column,
            allow_drop_index=settings.allow_drop_index,
            dialect=settings.dialect,
            mapping=mapping,
            local_schema=settings.local_schema,
            base_path=settings.base_path,
            max_statement_length=settings.max_statement_length,
        )
    else:
        statements = []
        for entity in load_model(args.model, settings).entities:
            if isinstance(entity, Insert) and entity.key_column_names:
                statements.extend(
                    serialize_insert(entity, settings.dialect, None, settings.local_schema, settings.base_path)
                )
    logger.debug("Generated %d statements for %s", len(statements), args.command)
    return render_script(statements, settings.dialect)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    try:
        settings = resolve_settings(args)
        output = generate(args, settings)
    except (DDLError, OSError, yaml.YAMLError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    out = getattr(args, "out", None)
    if not out:
        sys.stdout.write(output)
        return 0

    out_path = Path(out)
    if args.check:
        return 0 if check_equal(out_path, output) else 1

    write_text(out_path, output)
    print(f"Generated {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
