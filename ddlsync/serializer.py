"""Render a Schema as ordered SQL statements for one dialect."""

from __future__ import annotations

import decimal
import logging
import re
from contextlib import closing
from pathlib import Path
from typing import Any, Iterable

from ddlsync.dialects import (
    Dialect,
    convert_sys_var,
    escape,
    get_dialect,
    quote_literal,
    to_bytes,
    zero_date,
)
from ddlsync.errors import SchemaInvariantError
from ddlsync.mapping import DatabaseMap, resolve_database
from ddlsync.model import (
    INTEGER_TYPES,
    TEMPORAL_TYPES,
    Column,
    ForeignKey,
    Index,
    Insert,
    InsertColumn,
    Schema,
    Table,
    ValueKind,
)

logger = logging.getLogger(__name__)

MYSQL_TABLE_OPTIONS = " engine=InnoDB character set utf8mb4 collate utf8mb4_general_ci"

_PREFIX_LENGTH_RE = re.compile(r"\s*\(\s*\d+\s*\)\s*$")


def schema_prefix(local_schema: str | None) -> str:
    return f"{local_schema}." if local_schema else ""


def sequence_name(table_name: str, local_schema: str | None = "") -> str:
    return f"{schema_prefix(local_schema)}{table_name}_autoInc_seq"


def mapped_database(schema: Schema, table_name: str, mapping: DatabaseMap | None) -> str | None:
    """Database a table of ``schema`` is mapped to; None for unknown or local tables."""
    table = schema.table(table_name)
    if table is None:
        return None
    return resolve_database(mapping, table.group, table.name)


def view_statements(table_name: str, database: str, local_schema: str | None = "") -> list[str]:
    name = f"{schema_prefix(local_schema)}{table_name}"
    return [
        f"drop table if exists {name}",
        f"create or replace view {name} as select * from {database}.{table_name}",
    ]


def serialize(
    schema: Schema,
    dialect: str | Dialect = Dialect.MYSQL,
    mapping: DatabaseMap | None = None,
    local_schema: str | None = "",
    base_path: str | Path = "",
) -> list[str]:
    """Return the statements that create every entity of ``schema`` from scratch.

    Tables (with their indexes) come first, then foreign keys, then seed rows, so
    that everything a statement refers to already exists when it runs.
    """
    dialect = get_dialect(dialect)
    statements: list[str] = []

    for entity in schema.entities:
        match entity:
            case Table():
                database = resolve_database(mapping, entity.group, entity.name)
                if database:
                    logger.debug("Rendering %s as a view of %s.%s", entity.name, database, entity.name)
                    statements.extend(view_statements(entity.name, database, local_schema))
                else:
                    statements.extend(
                        table_statements(entity, schema.indexes_for(entity.name).values(), dialect, local_schema)
                    )
            case Index():
                # Indexes of tables in this schema were created along with the table.
                if schema.table(entity.table_name) is None:
                    stmt = create_index_statement(entity, dialect, local_schema)
                    if stmt:
                        statements.append(stmt)

    for entity in schema.entities:
        match entity:
            case ForeignKey() if not mapped_database(schema, entity.local_table, mapping):
                statements.append(add_foreign_key_statement(entity, local_schema))

    for entity in schema.entities:
        match entity:
            case Insert() if not mapped_database(schema, entity.table_name, mapping):
                statements.extend(serialize_insert(entity, dialect, None, local_schema, base_path))

    return statements


def table_statements(
    table: Table,
    indexes: Iterable[Index],
    dialect: Dialect,
    local_schema: str | None = "",
) -> list[str]:
    name = f"{schema_prefix(local_schema)}{table.name}"
    statements = [f"drop table if exists {name}", f"drop view if exists {name}"]
    if table.auto_increment_column is not None and dialect is Dialect.PGSQL:
        seq = sequence_name(table.name, local_schema)
        statements.append(f"drop sequence if exists {seq}")
        statements.append(f"create sequence {seq}")

    parts = [serialize_column(col, table.name, dialect, local_schema=local_schema) for col in table.columns]
    if table.primary_key is not None:
        parts.append(f"primary key ({', '.join(table.primary_key.columns)})")

    trailing: list[str] = []
    for index in indexes:
        if dialect is Dialect.MYSQL:
            parts.append(f"{_index_kind(index)}index {index.name} ({', '.join(index.columns)})")
        else:
            stmt = create_index_statement(index, dialect, local_schema)
            if stmt:
                trailing.append(stmt)

    sql = f"create table {name} ({', '.join(parts)})"
    if dialect is Dialect.MYSQL:
        sql += MYSQL_TABLE_OPTIONS
    statements.append(sql)
    statements.extend(trailing)
    return statements


def _index_kind(index: Index) -> str:
    if index.fulltext:
        return "fulltext "
    if index.unique:
        return "unique "
    return ""


def create_index_statement(index: Index, dialect: Dialect, local_schema: str | None = "") -> str | None:
    """Standalone ``create index``; None for fulltext indexes the dialect cannot build."""
    if index.fulltext and dialect is not Dialect.MYSQL:
        return None
    columns = list(index.columns)
    if dialect is Dialect.PGSQL:
        columns = [_PREFIX_LENGTH_RE.sub("", c) for c in columns]
    return (
        f"create {_index_kind(index)}index {index.name} "
        f"on {schema_prefix(local_schema)}{index.table_name} ({', '.join(columns)})"
    )


def drop_index_statement(index_name: str, table_name: str, dialect: Dialect, local_schema: str | None = "") -> str:
    pfx = schema_prefix(local_schema)
    if dialect is Dialect.MYSQL:
        return f"drop index {index_name} on {pfx}{table_name}"
    return f"drop index {pfx}{index_name}"


def add_foreign_key_statement(fk: ForeignKey, local_schema: str | None = "") -> str:
    pfx = schema_prefix(local_schema)
    # Foreign tables already qualified with another database keep their own prefix.
    foreign = fk.foreign_table if "." in fk.foreign_table else f"{pfx}{fk.foreign_table}"
    local_cols = ", ".join(c.local for c in fk.columns)
    foreign_cols = ", ".join(c.foreign for c in fk.columns)
    return (
        f"alter table {pfx}{fk.local_table} add constraint {fk.name} "
        f"foreign key ({local_cols}) references {foreign} ({foreign_cols})"
    )


def column_type_sql(col: Column, dialect: Dialect) -> str:
    t = col.col_type
    if t in INTEGER_TYPES or t in ("date", "time"):
        return t
    if t == "decimal":
        return f"decimal({col.size}, {col.scale})"
    if t in ("char", "varchar"):
        return f"{t}({col.size})"
    if t in ("binary", "varbinary"):
        return f"{t}({col.size})" if dialect is Dialect.MYSQL else "bytea"
    if t == "text":
        return "longtext" if dialect is Dialect.MYSQL else "text"
    if t == "blob":
        return "longblob" if dialect is Dialect.MYSQL else "bytea"
    if t == "datetime":
        if dialect is Dialect.MYSQL:
            return "timestamp" if col.use_time_zone else "datetime"
        return "timestamp with time zone" if col.use_time_zone else "timestamp without time zone"
    if t == "enum":
        if dialect is Dialect.MYSQL:
            return "enum(" + ", ".join(f"'{escape(v, dialect)}'" for v in col.enum_values) + ")"
        # No portable column-level enum type; size a varchar to the longest value.
        return f"varchar({max([1] + [len(v) for v in col.enum_values])})"
    raise SchemaInvariantError(f"Invalid column type: {t} (column {col.name})")


def _format_decimal(value: decimal.Decimal) -> str:
    # Fixed-point, never exponent notation.
    return format(value, "f")


def default_sql(col: Column, dialect: Dialect) -> str:
    value = col.default
    if col.col_type in INTEGER_TYPES:
        return str(int(value))
    if col.col_type == "decimal":
        return _format_decimal(decimal.Decimal(value))
    if col.col_type in TEMPORAL_TYPES and value == "":
        return zero_date(col.col_type, dialect)
    if col.col_type in TEMPORAL_TYPES or col.col_type == "enum":
        return f"'{escape(str(value), dialect)}'"
    return quote_literal(value, dialect)


def serialize_column(
    col: Column,
    table_name: str,
    dialect: str | Dialect = Dialect.MYSQL,
    *,
    include_name: bool = True,
    include_type: bool = True,
    include_null: bool = True,
    include_default: bool = True,
    include_auto_increment: bool = True,
    local_schema: str | None = "",
) -> str:
    dialect = get_dialect(dialect)
    parts: list[str] = []
    if include_name:
        parts.append(col.name)
    if include_type:
        parts.append(column_type_sql(col, dialect))
    if include_null and not col.nullable:
        parts.append("not null")

    if col.auto_increment:
        if include_auto_increment:
            if dialect is Dialect.MYSQL:
                parts.append("auto_increment")
            else:
                parts.append(f"default nextval('{sequence_name(table_name, local_schema)}')")
    elif include_default:
        if col.sys_var_default is not None:
            parts.append(f"default {convert_sys_var(col.sys_var_default, dialect)}")
        elif col.default is not None:
            parts.append(f"default {default_sql(col, dialect)}")
        else:
            parts.append("default NULL")
    return " ".join(parts)


def _resolve_values(insert: Insert, base_path: str | Path) -> dict[str, Any]:
    return {c.name: c.resolve(base_path) for c in insert.columns if not c.is_sys_var}


def render_value(col: InsertColumn, value: Any, dialect: Dialect) -> str:
    if col.is_sys_var:
        return convert_sys_var(col.value, dialect)
    if value is None:
        return "NULL"
    if col.quoted or col.kind is ValueKind.FILE:
        return quote_literal(value, dialect)
    return value.decode("latin-1") if isinstance(value, bytes) else str(value)


def _key_conditions(insert: Insert, values: dict[str, Any], dialect: Dialect) -> list[str]:
    conditions: list[str] = []
    for name in insert.key_column_names:
        col = insert.column(name)
        if col is None or col.is_sys_var:
            continue
        value = values[name]
        if value is None:
            conditions.append(f"{name} is NULL")
        else:
            conditions.append(f"{name} = {render_value(col, value, dialect)}")
    return conditions


def serialize_insert(
    insert: Insert,
    dialect: str | Dialect = Dialect.MYSQL,
    connection: Any = None,
    local_schema: str | None = "",
    base_path: str | Path = "",
) -> list[str]:
    """Return the statements that make the seed row exist.

    Without ``connection`` the output is data-blind: a guarded insert plus, with
    update_if_exists, an unconditional update. With a DB-API ``connection`` the
    table is queried and only the insert or the changed columns are emitted.
    """
    dialect = get_dialect(dialect)
    table = f"{schema_prefix(local_schema)}{insert.table_name}"
    values = _resolve_values(insert, base_path)
    conditions = _key_conditions(insert, values, dialect)
    where = f" where {' and '.join(conditions)}" if conditions else ""

    names = ", ".join(c.name for c in insert.columns)
    rendered = ", ".join(render_value(c, values.get(c.name), dialect) for c in insert.columns)
    plain_insert = f"insert into {table} ({names}) values ({rendered})"

    if connection is not None:
        return _data_aware_statements(insert, connection, table, values, where, plain_insert, dialect)

    if not conditions:
        return [plain_insert]

    from_dual = " from dual" if dialect is Dialect.MYSQL else ""
    statements = [
        f"insert into {table} ({names}) select {rendered}{from_dual} "
        f"where not exists (select 1 from {table}{where})"
    ]
    if insert.update_if_exists:
        assignments = ", ".join(
            f"{c.name} = {render_value(c, values.get(c.name), dialect)}" for c in insert.columns
        )
        statements.append(f"update {table} set {assignments}{where}")
    return statements


def _data_aware_statements(
    insert: Insert,
    connection: Any,
    table: str,
    values: dict[str, Any],
    where: str,
    plain_insert: str,
    dialect: Dialect,
) -> list[str]:
    if not where:
        return [plain_insert]

    if insert.update_if_exists:
        selected = ", ".join(c.name for c in insert.columns)
    else:
        selected = insert.key_column_names[0]
    row = fetch_row(connection, f"select {selected} from {table}{where}")
    if row is None:
        return [plain_insert]
    if not insert.update_if_exists:
        return []

    changed = [
        c
        for c in insert.columns
        if not c.is_sys_var
        and c.name not in insert.key_column_names
        and values_differ(row.get(c.name), values[c.name])
    ]
    if not changed:
        return []
    assignments = ", ".join(f"{c.name} = {render_value(c, values[c.name], dialect)}" for c in changed)
    return [f"update {table} set {assignments}{where}"]


def fetch_row(connection: Any, sql: str) -> dict[str, Any] | None:
    with closing(connection.cursor()) as cursor:
        cursor.execute(sql)
        row = cursor.fetchone()
        if row is None:
            return None
        names = [d[0] for d in cursor.description]
    return dict(zip(names, row))


def _comparable(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return to_bytes(value)
    return str(value).encode("utf-8")


def values_differ(current: Any, wanted: Any) -> bool:
    if current is None or wanted is None:
        return (current is None) != (wanted is None)
    return _comparable(current) != _comparable(wanted)


def render_script(statements: list[str], dialect: str | Dialect = Dialect.MYSQL) -> str:
    """Join statements into a script, one terminated statement per line."""
    dialect = get_dialect(dialect)
    if not statements:
        return ""
    lines = [f"{stmt};" for stmt in statements]
    if dialect is Dialect.MYSQL:
        lines.insert(0, "set foreign_key_checks = 0;")
        lines.append("set foreign_key_checks = 1;")
    return "\n".join(lines) + "\n"
