"""YAML run configuration."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from ddlsync.dialects import Dialect, get_dialect
from ddlsync.errors import ConfigurationError
from ddlsync.mapping import DatabaseMap
from ddlsync.reconcile import MAX_STATEMENT_LENGTH


@dataclasses.dataclass
class Settings:
    dialect: Dialect = Dialect.MYSQL
    table_to_database_map: str = ""
    local_schema: str = ""
    base_path: str = ""
    allow_drop_table: bool = False
    allow_drop_column: bool = False
    allow_drop_index: bool = False
    max_statement_length: int = MAX_STATEMENT_LENGTH
    tables: list[str] = dataclasses.field(default_factory=list)

    def database_map(self) -> DatabaseMap | None:
        if not self.table_to_database_map:
            return None
        return DatabaseMap(self.table_to_database_map)


# document key -> (Settings attribute, accepted type)
_KEYS: dict[str, tuple[str, type]] = {
    "dialect": ("dialect", str),
    "tableToDatabaseMap": ("table_to_database_map", str),
    "localSchema": ("local_schema", str),
    "basePath": ("base_path", str),
    "allowDropTable": ("allow_drop_table", bool),
    "allowDropColumn": ("allow_drop_column", bool),
    "allowDropIndex": ("allow_drop_index", bool),
    "maxStatementLength": ("max_statement_length", int),
    "tables": ("tables", list),
}


def settings_from_dict(data: dict[str, Any] | None) -> Settings:
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping")

    unknown = sorted(set(data) - set(_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, raw in data.items():
        attr, expected = _KEYS[key]
        if raw is None:
            continue
        # bool is an int subclass; a YAML "true" is not a length.
        if not isinstance(raw, expected) or (expected is int and isinstance(raw, bool)):
            raise ConfigurationError(
                f"Configuration key {key!r} must be of type {expected.__name__}, got {type(raw).__name__}"
            )
        values[attr] = raw

    if "tables" in values:
        values["tables"] = [str(t) for t in values["tables"]]
    settings = Settings(**values)
    validate(settings)
    return settings


def validate(settings: Settings) -> None:
    """Normalize the dialect and fail early on a bad mapping or length bound."""
    settings.dialect = get_dialect(settings.dialect)
    settings.database_map()
    if settings.max_statement_length <= 0:
        raise ConfigurationError(
            f"maxStatementLength must be positive, got {settings.max_statement_length}"
        )


def load_settings(path: str | Path) -> Settings:
    return settings_from_dict(yaml.safe_load(Path(path).read_text(encoding="utf-8")))
