"""Dialect-aware SQL DDL generation and schema reconciliation."""

from ddlsync.dialects import Dialect, get_dialect
from ddlsync.document import dump_schema, load_schema, schema_from_dict, schema_to_dict
from ddlsync.errors import (
    ConfigurationError,
    DDLError,
    SchemaInvariantError,
    UnsupportedDialectError,
    ValueSourceError,
)
from ddlsync.mapping import DatabaseMap
from ddlsync.model import (
    Column,
    ForeignKey,
    ForeignKeyColumn,
    Index,
    Insert,
    InsertColumn,
    PrimaryKey,
    Schema,
    Table,
    ValueKind,
)
from ddlsync.reconcile import coalesce_alter_statements, diff
from ddlsync.serializer import render_script, serialize, serialize_column, serialize_insert

__all__ = [
    "Column",
    "ConfigurationError",
    "DDLError",
    "DatabaseMap",
    "Dialect",
    "ForeignKey",
    "ForeignKeyColumn",
    "Index",
    "Insert",
    "InsertColumn",
    "PrimaryKey",
    "Schema",
    "SchemaInvariantError",
    "Table",
    "UnsupportedDialectError",
    "ValueKind",
    "ValueSourceError",
    "coalesce_alter_statements",
    "diff",
    "dump_schema",
    "get_dialect",
    "load_schema",
    "render_script",
    "schema_from_dict",
    "schema_to_dict",
    "serialize",
    "serialize_column",
    "serialize_insert",
]
