"""In-memory schema model: tables, indexes, foreign keys and seed rows."""

from __future__ import annotations

import dataclasses
import decimal
import enum
import logging
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Union

from ddlsync.dialects import SYS_VARS
from ddlsync.errors import SchemaInvariantError, ValueSourceError

if TYPE_CHECKING:
    from ddlsync.mapping import DatabaseMap

logger = logging.getLogger(__name__)

INTEGER_TYPES = frozenset({"integer", "smallint", "bigint"})
BINARY_TYPES = frozenset({"binary", "varbinary", "blob"})
TEMPORAL_TYPES = frozenset({"date", "time", "datetime"})

# Zero dates collapse to the empty-string sentinel; rendering restores a dialect-specific zero.
ZERO_DEFAULTS: dict[str, frozenset[str]] = {
    "date": frozenset({"0000-00-00", "0001-01-01"}),
    "datetime": frozenset({"0000-00-00 00:00:00", "0001-01-01 00:00:00"}),
    "time": frozenset({"00:00:00"}),
}

_VIEW_IGNORED_FIELDS = frozenset({"default", "sys_var_default", "auto_increment", "use_time_zone"})

Default = Union[str, bytes, int, decimal.Decimal]


@dataclasses.dataclass(frozen=True)
class Column:
    name: str
    col_type: str
    size: int = 0
    scale: int = 0
    nullable: bool = True
    default: Default | None = None
    sys_var_default: str | None = None
    auto_increment: bool = False
    use_time_zone: bool = False
    enum_values: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.enum_values is not None and not isinstance(self.enum_values, tuple):
            object.__setattr__(self, "enum_values", tuple(self.enum_values))
        if self.col_type == "enum" and not self.enum_values:
            raise SchemaInvariantError(f"enum column {self.name} requires a list of enum values")

        if self.auto_increment and self.sys_var_default is not None:
            raise SchemaInvariantError(
                f"Column {self.name} cannot have both auto-increment and a symbolic default"
            )
        if self.auto_increment and self.default is not None:
            raise SchemaInvariantError(
                f"Column {self.name} cannot have both auto-increment and a default value"
            )
        if self.sys_var_default is not None:
            if self.default is not None:
                raise SchemaInvariantError(
                    f"Column {self.name} cannot have both a symbolic default and a default value"
                )
            if self.sys_var_default.lower() not in SYS_VARS:
                raise SchemaInvariantError(
                    f'Invalid system variable reference "{self.sys_var_default}" on column {self.name}'
                )

        object.__setattr__(self, "default", self._normalized_default())

        if (
            self.col_type == "enum"
            and self.default is not None
            and self.default not in self.enum_values
        ):
            raise SchemaInvariantError(
                f"Default {self.default!r} of enum column {self.name} is not one of {list(self.enum_values)}"
            )

    def _normalized_default(self) -> Default | None:
        value = self.default
        if value is None:
            if self.nullable or self.auto_increment or self.sys_var_default is not None:
                return None
            if self.col_type in INTEGER_TYPES:
                return 0
            if self.col_type == "decimal":
                return decimal.Decimal(0)
            if self.col_type == "enum":
                return self.enum_values[0]
            return ""

        try:
            if self.col_type in INTEGER_TYPES:
                return int(value)
            if self.col_type == "decimal":
                return decimal.Decimal(str(value))
        except (TypeError, ValueError, decimal.InvalidOperation) as exc:
            raise SchemaInvariantError(
                f"Default {value!r} is not numeric for {self.col_type} column {self.name}"
            ) from exc

        if isinstance(value, bytes):
            return value
        value = str(value)
        if value in ZERO_DEFAULTS.get(self.col_type, ()):
            return ""
        return value

    def equal_for_view(self, other: Column) -> bool:
        """Compare only the fields a pass-through view exposes."""
        return all(
            getattr(self, f.name) == getattr(other, f.name)
            for f in dataclasses.fields(self)
            if f.name not in _VIEW_IGNORED_FIELDS
        )


@dataclasses.dataclass(frozen=True)
class PrimaryKey:
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))


@dataclasses.dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[Column, ...] = ()
    primary_key: PrimaryKey | None = None
    group: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        auto_inc = [c.name for c in self.columns if c.auto_increment]
        if len(auto_inc) > 1:
            raise SchemaInvariantError(
                f'Cannot have more than one auto-increment column per table in table name "{self.name}"'
            )
        if auto_inc and (self.primary_key is None or self.primary_key.columns != (auto_inc[0],)):
            raise SchemaInvariantError(
                "Use of auto-increment requires the primary key to be comprised of only the "
                f'auto-increment column in table "{self.name}"'
            )

    @property
    def auto_increment_column(self) -> Column | None:
        for col in self.columns:
            if col.auto_increment:
                return col
        return None

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


@dataclasses.dataclass(frozen=True)
class Index:
    name: str
    table_name: str
    columns: tuple[str, ...]
    unique: bool = False
    fulltext: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))


@dataclasses.dataclass(frozen=True)
class ForeignKeyColumn:
    local: str
    foreign: str


@dataclasses.dataclass(frozen=True)
class ForeignKey:
    name: str
    local_table: str
    foreign_table: str
    columns: tuple[ForeignKeyColumn, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))


class ValueKind(str, enum.Enum):
    LITERAL = "value"
    FILE = "filename"
    SYS_VAR = "sysVarValue"


@dataclasses.dataclass(frozen=True)
class InsertColumn:
    """One seed-row value.

    For LITERAL, ``value`` is the literal (None means SQL NULL). For FILE it is the
    file name, relative to the base path unless absolute. For SYS_VAR it is one of
    ``current_date``, ``current_time`` or ``current_timestamp``.
    """

    name: str
    kind: ValueKind
    value: str | bytes | None = None
    quoted: bool = False

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "kind", ValueKind(self.kind))
        except ValueError:
            raise ValueSourceError(
                f"Seed column {self.name} must specify one of value, filename or sysVarValue"
            ) from None
        if self.kind is ValueKind.FILE and not self.value:
            raise ValueSourceError(f"Seed column {self.name} has an empty filename")
        if self.kind is ValueKind.SYS_VAR:
            if not isinstance(self.value, str) or self.value.lower() not in SYS_VARS:
                raise ValueSourceError(
                    f'Invalid system variable reference "{self.value}" in seed column {self.name}'
                )

    @property
    def is_sys_var(self) -> bool:
        return self.kind is ValueKind.SYS_VAR

    def resolve(self, base_path: str | Path = "") -> str | bytes | None:
        """Return the literal value, or the referenced file's contents."""
        if self.kind is not ValueKind.FILE:
            return self.value
        path = Path(self.value)
        if str(base_path) and not path.is_absolute():
            path = Path(base_path) / path
        if not path.exists():
            logger.warning("Cannot find insert filename: %s", path)
            return ""
        data = path.read_bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return data


@dataclasses.dataclass(frozen=True)
class Insert:
    table_name: str
    columns: tuple[InsertColumn, ...]
    key_column_names: tuple[str, ...] = ()
    update_if_exists: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "key_column_names", tuple(self.key_column_names))
        if self.update_if_exists and not self.key_column_names:
            raise SchemaInvariantError(
                f"Seed row for table {self.table_name} sets updateIfExists without key columns"
            )

    def column(self, name: str) -> InsertColumn | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


Entity = Union[Table, Index, ForeignKey, Insert]


def _entity_table(entity: Entity) -> str:
    match entity:
        case Table(name=name):
            return name
        case Index(table_name=name) | Insert(table_name=name):
            return name
        case ForeignKey(local_table=name):
            return name
    raise TypeError(f"Not a schema entity: {entity!r}")


class Schema:
    """Ordered collection of schema entities, indexed by table name."""

    def __init__(self, entities: Iterable[Entity] = ()) -> None:
        self.entities: list[Entity] = []
        self._tables: dict[str, Table] = {}
        self._indexes: dict[str, dict[str, Index]] = defaultdict(dict)
        self._foreign_keys: dict[str, dict[str, ForeignKey]] = defaultdict(dict)
        self._inserts: dict[str, list[Insert]] = defaultdict(list)
        for entity in entities:
            self.add(entity)

    def add(self, entity: Entity) -> None:
        match entity:
            case Table():
                self._tables.setdefault(entity.name, entity)
            case Index():
                self._indexes[entity.table_name][entity.name] = entity
            case ForeignKey():
                self._foreign_keys[entity.local_table][entity.name] = entity
            case Insert():
                self._inserts[entity.table_name].append(entity)
            case _:
                raise TypeError(f"Not a schema entity: {entity!r}")
        self.entities.append(entity)

    def __len__(self) -> int:
        return len(self.entities)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        return self.entities == other.entities

    def table(self, name: str) -> Table | None:
        return self._tables.get(name)

    def indexes_for(self, table_name: str) -> dict[str, Index]:
        return dict(self._indexes.get(table_name, {}))

    def foreign_keys_for(self, table_name: str) -> dict[str, ForeignKey]:
        return dict(self._foreign_keys.get(table_name, {}))

    def inserts_for(self, table_name: str) -> list[Insert]:
        return list(self._inserts.get(table_name, []))

    def table_names(self) -> list[str]:
        return list(self._tables)

    def common_table_names(self, other: Schema) -> list[str]:
        return [name for name in self._tables if other.table(name) is not None]

    def restrict_to(self, table_names: Iterable[str]) -> Schema:
        """Copy of this schema holding only entities that belong to the named tables."""
        allowed = set(table_names)
        return Schema(e for e in self.entities if _entity_table(e) in allowed)

    def qualify_foreign_tables(self, mapping: DatabaseMap) -> Schema:
        """Prefix foreign tables that live in another database with ``<database>.``."""
        entities: list[Entity] = []
        for entity in self.entities:
            if isinstance(entity, ForeignKey):
                target = self.table(entity.foreign_table)
                database = mapping.resolve(target.group if target else None, entity.foreign_table)
                if database:
                    entity = dataclasses.replace(
                        entity, foreign_table=f"{database}.{entity.foreign_table}"
                    )
            entities.append(entity)
        return Schema(entities)
