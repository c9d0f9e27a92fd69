"""Compute the SQL that turns an old schema into a new one."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from pathlib import Path

from ddlsync.dialects import Dialect, get_dialect
from ddlsync.mapping import DatabaseMap, resolve_database
from ddlsync.model import BINARY_TYPES, Column, Schema, Table
from ddlsync.serializer import (
    add_foreign_key_statement,
    column_type_sql,
    create_index_statement,
    drop_index_statement,
    schema_prefix,
    sequence_name,
    serialize,
    serialize_column,
    view_statements,
)

logger = logging.getLogger(__name__)

# Upper bound on a coalesced "alter table" statement. Well under MySQL's smallest
# max_allowed_packet (1 MiB); PostgreSQL has no lower limit.
MAX_STATEMENT_LENGTH = 65_000

_ALTER_TABLE_RE = re.compile(r"^alter table \S+ ")


def diff(
    old: Schema,
    new: Schema,
    allow_drop_table: bool = False,
    allow_drop_column: bool = False,
    allow_drop_index: bool = False,
    dialect: str | Dialect = Dialect.MYSQL,
    mapping: DatabaseMap | None = None,
    local_schema: str | None = "",
    base_path: str | Path = "",
    max_statement_length: int = MAX_STATEMENT_LENGTH,
) -> list[str]:
    """Return the ordered statements that mutate ``old`` into ``new``.

    Neither schema is modified. Stale indexes and foreign keys are dropped before
    columns change, new tables are created before shared tables are altered, and
    foreign keys are added last, once every table they reference exists.
    """
    updater = _Updater(
        old,
        new,
        get_dialect(dialect),
        mapping,
        local_schema,
        base_path,
    )
    statements = updater.run(allow_drop_table, allow_drop_column, allow_drop_index)
    combined = coalesce_alter_statements(statements, max_length=max_statement_length)
    logger.debug("Coalesced %d statements into %d", len(statements), len(combined))
    return combined


def coalesce_alter_statements(statements: list[str], max_length: int = MAX_STATEMENT_LENGTH) -> list[str]:
    """Merge runs of "alter table <t> ..." statements on the same table.

    A merged statement never grows past ``max_length`` characters; a run that
    would is split. Clause order is preserved.
    """
    result: list[str] = []
    combined: str | None = None
    prefix = ""
    for stmt in statements:
        m = _ALTER_TABLE_RE.match(stmt)
        if combined is not None:
            if m and m.group(0) == prefix:
                addition = ", " + stmt[len(prefix):]
                if len(combined) + len(addition) <= max_length:
                    combined += addition
                    continue
            result.append(combined)
            combined = None
        if m:
            combined, prefix = stmt, m.group(0)
        else:
            result.append(stmt)
    if combined is not None:
        result.append(combined)
    return result


def _type_changed(old: Column, new: Column) -> bool:
    # binary, varbinary and blob all render as bytea.
    if old.col_type in BINARY_TYPES and new.col_type in BINARY_TYPES:
        return False
    return (
        old.col_type != new.col_type
        or (new.col_type == "datetime" and old.use_time_zone != new.use_time_zone)
        or old.size != new.size
        or old.scale != new.scale
        or (new.col_type == "enum" and old.enum_values != new.enum_values)
    )


class _Updater:
    def __init__(
        self,
        old: Schema,
        new: Schema,
        dialect: Dialect,
        mapping: DatabaseMap | None,
        local_schema: str | None,
        base_path: str | Path,
    ) -> None:
        self.old = old
        self.new = new
        self.dialect = dialect
        self.mapping = mapping
        self.local_schema = local_schema
        self.pfx = schema_prefix(local_schema)
        self.base_path = base_path
        self.statements: list[str] = []
        self.dropped_indexes: set[tuple[str, str]] = set()
        self.dropped_foreign_keys: dict[str, set[str]] = defaultdict(set)

    def run(self, allow_drop_table: bool, allow_drop_column: bool, allow_drop_index: bool) -> list[str]:
        common = self.old.common_table_names(self.new)
        added = [n for n in self.new.table_names() if self.old.table(n) is None]
        removed = [n for n in self.old.table_names() if self.new.table(n) is None]
        logger.debug(
            "Reconciling %d common, %d added and %d removed tables",
            len(common),
            len(added),
            len(removed),
        )

        if allow_drop_index:
            for name in common:
                self.drop_stale_keys(name)
        if allow_drop_table:
            for name in removed:
                self.drop_table(name)
        for name in added:
            self.create_table(name)
        for name in common:
            self.update_table(name, allow_drop_column)
        for name in added:
            self.create_foreign_keys(name)
        for name in common:
            self.update_foreign_keys(name)
        return self.statements

    def mapped_database(self, table: Table) -> str | None:
        return resolve_database(self.mapping, table.group, table.name)

    def drop_index(self, index_name: str, table_name: str) -> None:
        key = (table_name, index_name)
        if key in self.dropped_indexes:
            return
        self.statements.append(drop_index_statement(index_name, table_name, self.dialect, self.local_schema))
        self.dropped_indexes.add(key)

    def drop_foreign_key(self, fk_name: str, table_name: str) -> None:
        alter = f"alter table {self.pfx}{table_name}"
        if self.dialect is Dialect.MYSQL:
            self.statements.append(f"{alter} drop foreign key {fk_name}")
            # MySQL backs a foreign key with an index of the same name.
            if fk_name in self.old.indexes_for(table_name):
                self.drop_index(fk_name, table_name)
        else:
            self.statements.append(f"{alter} drop constraint {fk_name}")
        self.dropped_foreign_keys[table_name].add(fk_name)

    def drop_stale_keys(self, table_name: str) -> None:
        old_indexes = self.old.indexes_for(table_name)
        new_indexes = self.new.indexes_for(table_name)
        old_fks = self.old.foreign_keys_for(table_name)
        new_fks = self.new.foreign_keys_for(table_name)

        # MySQL cannot drop an index while a foreign key still uses it.
        for name, fk in old_fks.items():
            if new_fks.get(name) != fk:
                self.drop_foreign_key(name, table_name)

        for name, index in old_indexes.items():
            if new_indexes.get(name) == index:
                continue
            if self.dialect is Dialect.MYSQL and name in new_fks:
                # The index belongs to a foreign key; only drop it along with a changed key.
                if name not in old_fks or old_fks[name] == new_fks[name]:
                    continue
            self.drop_index(name, table_name)

    def drop_table(self, table_name: str) -> None:
        name = f"{self.pfx}{table_name}"
        self.statements.append(f"drop table if exists {name}")
        self.statements.append(f"drop view if exists {name}")
        if self.dialect is Dialect.PGSQL:
            self.statements.append(f"drop sequence if exists {sequence_name(table_name, self.local_schema)}")

    def create_table(self, table_name: str) -> None:
        table_schema = Schema(
            [
                self.new.table(table_name),
                *self.new.indexes_for(table_name).values(),
                *self.new.inserts_for(table_name),
            ]
        )
        self.statements.extend(
            serialize(table_schema, self.dialect, self.mapping, self.local_schema, self.base_path)
        )

    def create_foreign_keys(self, table_name: str) -> None:
        if self.mapped_database(self.new.table(table_name)):
            return
        for fk in self.new.foreign_keys_for(table_name).values():
            self.statements.append(add_foreign_key_statement(fk, self.local_schema))

    def update_table(self, table_name: str, allow_drop_column: bool) -> None:
        old_table = self.old.table(table_name)
        new_table = self.new.table(table_name)
        database = self.mapped_database(new_table)

        column_statements = self.column_statements(old_table, new_table, database, allow_drop_column)
        if database:
            # A mapped table is a view; any column change means the view must be rebuilt.
            if column_statements:
                self.statements.extend(view_statements(table_name, database, self.local_schema))
            return

        self.statements.extend(column_statements)
        self.statements.extend(self.primary_key_statements(old_table, new_table))
        self.update_indexes(table_name)

    def column_statements(
        self,
        old_table: Table,
        new_table: Table,
        database: str | None,
        allow_drop_column: bool,
    ) -> list[str]:
        table_name = new_table.name
        alter = f"alter table {self.pfx}{table_name}"
        mysql = self.dialect is Dialect.MYSQL
        sequence = sequence_name(table_name, self.local_schema)
        statements: list[str] = []

        if allow_drop_column:
            for col in old_table.columns:
                if new_table.column(col.name) is None:
                    statements.append(f"{alter} drop column {col.name}" + ("" if mysql else " cascade"))
                    if col.auto_increment and not mysql:
                        statements.append(f"drop sequence if exists {sequence}")

        for idx, new_col in enumerate(new_table.columns):
            old_col = old_table.column(new_col.name)
            if old_col == new_col:
                continue
            if old_col is not None and database and new_col.equal_for_view(old_col):
                continue

            position = ""
            if mysql:
                position = f" after {new_table.columns[idx - 1].name}" if idx > 0 else " first"
            definition = serialize_column(new_col, table_name, self.dialect, local_schema=self.local_schema)
            if old_col is None:
                if new_col.auto_increment and not mysql:
                    statements.append(f"create sequence if not exists {sequence}")
                statements.append(f"{alter} add column {definition}{position}")
            elif mysql:
                statements.append(f"{alter} change column {new_col.name} {definition}{position}")
            else:
                statements.extend(self.pgsql_alter_column(alter, table_name, old_col, new_col))
        return statements

    def pgsql_alter_column(self, alter: str, table_name: str, old_col: Column, new_col: Column) -> list[str]:
        statements: list[str] = []
        column = f"{alter} alter column {new_col.name}"
        if _type_changed(old_col, new_col):
            statements.append(f"{column} type {column_type_sql(new_col, self.dialect)}")
        if old_col.nullable != new_col.nullable:
            statements.append(f"{column} drop not null" if new_col.nullable else f"{column} set not null")
        if (
            old_col.default != new_col.default
            or old_col.sys_var_default != new_col.sys_var_default
            or old_col.auto_increment != new_col.auto_increment
        ):
            if new_col.auto_increment and not old_col.auto_increment:
                statements.append(f"create sequence if not exists {sequence_name(table_name, self.local_schema)}")
            clause = serialize_column(
                new_col,
                table_name,
                self.dialect,
                include_name=False,
                include_type=False,
                include_null=False,
                local_schema=self.local_schema,
            )
            statements.append(f"{column} set {clause}")
            if old_col.auto_increment and not new_col.auto_increment:
                statements.append(f"drop sequence if exists {sequence_name(table_name, self.local_schema)}")
        return statements

    def primary_key_statements(self, old_table: Table, new_table: Table) -> list[str]:
        old_pk = old_table.primary_key
        new_pk = new_table.primary_key
        if old_pk == new_pk:
            return []

        alter = f"alter table {self.pfx}{new_table.name}"
        statements: list[str] = []
        if old_pk is not None:
            if self.dialect is Dialect.MYSQL:
                statements.append(f"{alter} drop primary key")
            else:
                statements.append(f"{alter} drop constraint if exists {new_table.name}_pkey")
        if new_pk is not None:
            statements.append(f"{alter} add primary key ({', '.join(new_pk.columns)})")
        return statements

    def update_indexes(self, table_name: str) -> None:
        old_indexes = self.old.indexes_for(table_name)
        for name, index in self.new.indexes_for(table_name).items():
            old_index = old_indexes.get(name)
            if old_index == index:
                continue
            if old_index is not None:
                self.drop_index(name, table_name)
            stmt = create_index_statement(index, self.dialect, self.local_schema)
            if stmt:
                self.statements.append(stmt)

    def update_foreign_keys(self, table_name: str) -> None:
        if self.mapped_database(self.new.table(table_name)):
            return
        old_fks = self.old.foreign_keys_for(table_name)
        for name, fk in self.new.foreign_keys_for(table_name).items():
            old_fk = old_fks.get(name)
            if old_fk == fk:
                continue
            if old_fk is not None and name not in self.dropped_foreign_keys[table_name]:
                self.drop_foreign_key(name, table_name)
            target = self.new.table(fk.foreign_table)
            if target is not None and not self.mapped_database(target):
                self.statements.append(add_foreign_key_statement(fk, self.local_schema))
