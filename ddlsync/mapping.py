"""Table-to-database mapping rules.

A mapping string is a comma-separated list of rules::

    group:<group>:<database>   every table of a group lives in <database>
    <table>:<database>         one table lives in <database>

An empty <database> un-maps, so ``group:security:common,appuserrole:`` sends every
table of the ``security`` group to ``common`` except ``appuserrole``.
"""

from __future__ import annotations

from ddlsync.errors import ConfigurationError


class DatabaseMap:
    def __init__(self, config: str | None = None) -> None:
        self.table_maps: dict[str, str] = {}
        self.group_maps: dict[str, str] = {}
        self.all_target_databases: list[str] = []
        if config:
            self.parse(config)

    def parse(self, config: str) -> None:
        for rule in config.split(","):
            pieces = [p.strip() for p in rule.split(":")]
            if len(pieces) == 2:
                table, database = pieces
                if not table:
                    raise ConfigurationError(f"Missing table name in table mapping: {rule}")
                self.table_maps[table] = database
            elif len(pieces) == 3:
                keyword, group, database = pieces
                if keyword != "group":
                    raise ConfigurationError(
                        f'Missing "group" keyword at beginning of group mapping: {rule}'
                    )
                if not group:
                    raise ConfigurationError(f"Missing group name in group mapping: {rule}")
                self.group_maps[group] = database
            else:
                raise ConfigurationError(f"Mal-formed mapping: {rule}")
            if database and database not in self.all_target_databases:
                self.all_target_databases.append(database)

    def resolve(self, group: str | None, table_name: str | None) -> str | None:
        """Return the database a table is mapped to, or None if it stays local."""
        if table_name is not None and table_name in self.table_maps:
            return self.table_maps[table_name] or None
        if group is not None and group in self.group_maps:
            return self.group_maps[group] or None
        return None


def resolve_database(mapping: DatabaseMap | None, group: str | None, table_name: str) -> str | None:
    if mapping is None:
        return None
    return mapping.resolve(group, table_name)
