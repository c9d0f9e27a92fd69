"""Read and write schema models as YAML (or JSON) documents.

A document is a mapping with an ordered ``entities`` list; each entry carries a
``kind`` of ``table``, ``index``, ``foreignKey`` or ``insert``::

    entities:
      - kind: table
        name: person
        group: security
        primaryKey: [id]
        columns:
          - {name: id, type: integer, null: false, autoIncrement: true}
          - {name: name, type: varchar, size: 50, null: false}
      - kind: index
        name: person_name
        table: person
        columns: [name]
        unique: true
      - kind: insert
        table: person
        keyColumns: [id]
        columns:
          - {name: id, value: "1"}
          - {name: name, value: admin, quoted: true}
"""

from __future__ import annotations

import base64
import binascii
import decimal
from pathlib import Path
from typing import Any, Callable

import yaml

from ddlsync.errors import SchemaInvariantError, ValueSourceError
from ddlsync.model import (
    Column,
    Entity,
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

_TABLE_KEYS = frozenset({"kind", "name", "group", "primaryKey", "columns"})
_COLUMN_KEYS = frozenset(
    {
        "name",
        "type",
        "size",
        "scale",
        "null",
        "default",
        "defaultIsBase64Encoded",
        "sysVarDefault",
        "autoIncrement",
        "useTimeZone",
        "enumValues",
    }
)
_INDEX_KEYS = frozenset({"kind", "name", "table", "columns", "unique", "fulltext"})
_FOREIGN_KEY_KEYS = frozenset({"kind", "name", "table", "foreignTable", "columns"})
_INSERT_KEYS = frozenset({"kind", "table", "keyColumns", "updateIfExists", "columns"})
_INSERT_COLUMN_KEYS = frozenset({"name", "quoted", "valueIsBase64Encoded"} | {k.value for k in ValueKind})


def _check_keys(raw: Any, allowed: frozenset[str], where: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SchemaInvariantError(f"{where} must be a mapping, got {type(raw).__name__}")
    unknown = sorted(str(k) for k in set(raw) - allowed)
    if unknown:
        raise SchemaInvariantError(f"{where} has unknown keys: {', '.join(unknown)}")
    return raw


def _require(raw: dict[str, Any], key: str, where: str) -> Any:
    value = raw.get(key)
    if value in (None, ""):
        raise SchemaInvariantError(f"{where} is missing {key!r}")
    return value


def _b64decode(value: Any, where: str) -> bytes:
    try:
        return base64.b64decode(str(value), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SchemaInvariantError(f"{where} is not valid base64") from exc


def _read_column(raw: Any, table: str) -> dict[str, Any]:
    where = f"column of table {table}"
    if isinstance(raw, dict) and None in raw:
        # An unquoted YAML "null:" key loads as None.
        raw = {"null" if k is None else k: v for k, v in raw.items()}
    raw = _check_keys(raw, _COLUMN_KEYS, where)
    name = _require(raw, "name", where)
    where = f"column {table}.{name}"
    default = raw.get("default")
    if default is not None and raw.get("defaultIsBase64Encoded"):
        default = _b64decode(default, f"default of {where}")
    enum_values = raw.get("enumValues")
    return {
        "name": name,
        "col_type": _require(raw, "type", where),
        "size": int(raw.get("size") or 0),
        "scale": int(raw.get("scale") or 0),
        "nullable": bool(raw.get("null", True)),
        "default": default,
        "sys_var_default": raw.get("sysVarDefault"),
        "auto_increment": bool(raw.get("autoIncrement", False)),
        "use_time_zone": bool(raw.get("useTimeZone", False)),
        "enum_values": [str(v) for v in enum_values] if enum_values is not None else None,
    }


def _read_table(raw: dict[str, Any], where: str) -> tuple[Callable[..., Entity], dict[str, Any]]:
    raw = _check_keys(raw, _TABLE_KEYS, where)
    name = _require(raw, "name", where)
    primary_key = raw.get("primaryKey")
    return _build_table, {
        "name": name,
        "group": raw.get("group"),
        "primary_key": list(primary_key) if primary_key else None,
        "columns": [_read_column(c, name) for c in raw.get("columns") or []],
    }


def _build_table(name: str, group: str | None, primary_key: list[str] | None, columns: list[dict]) -> Table:
    return Table(
        name=name,
        columns=tuple(Column(**c) for c in columns),
        primary_key=PrimaryKey(tuple(primary_key)) if primary_key else None,
        group=group,
    )


def _read_index(raw: dict[str, Any], where: str) -> tuple[Callable[..., Entity], dict[str, Any]]:
    raw = _check_keys(raw, _INDEX_KEYS, where)
    return Index, {
        "name": _require(raw, "name", where),
        "table_name": _require(raw, "table", where),
        "columns": tuple(_require(raw, "columns", where)),
        "unique": bool(raw.get("unique", False)),
        "fulltext": bool(raw.get("fulltext", False)),
    }


def _read_foreign_key(raw: dict[str, Any], where: str) -> tuple[Callable[..., Entity], dict[str, Any]]:
    raw = _check_keys(raw, _FOREIGN_KEY_KEYS, where)
    columns = []
    for pair in _require(raw, "columns", where):
        pair = _check_keys(pair, frozenset({"local", "foreign"}), f"column pair of {where}")
        columns.append(ForeignKeyColumn(_require(pair, "local", where), _require(pair, "foreign", where)))
    return ForeignKey, {
        "name": _require(raw, "name", where),
        "local_table": _require(raw, "table", where),
        "foreign_table": _require(raw, "foreignTable", where),
        "columns": tuple(columns),
    }


def _read_insert_column(raw: Any, table: str) -> InsertColumn:
    where = f"seed column of table {table}"
    raw = _check_keys(raw, _INSERT_COLUMN_KEYS, where)
    name = _require(raw, "name", where)
    sources = [k for k in ValueKind if k.value in raw]
    if len(sources) != 1:
        raise ValueSourceError(
            f"Seed column {table}.{name} must specify exactly one of value, filename or sysVarValue"
        )
    kind = sources[0]
    value = raw[kind.value]
    if value is not None and not isinstance(value, bytes):
        value = str(value)
    if kind is ValueKind.LITERAL and value is not None and raw.get("valueIsBase64Encoded"):
        value = _b64decode(value, f"value of seed column {table}.{name}")
    return InsertColumn(name, kind, value, quoted=bool(raw.get("quoted", False)))


def _read_insert(raw: dict[str, Any], where: str) -> tuple[Callable[..., Entity], dict[str, Any]]:
    raw = _check_keys(raw, _INSERT_KEYS, where)
    table = _require(raw, "table", where)
    return Insert, {
        "table_name": table,
        "columns": tuple(_read_insert_column(c, table) for c in _require(raw, "columns", where)),
        "key_column_names": tuple(raw.get("keyColumns") or ()),
        "update_if_exists": bool(raw.get("updateIfExists", False)),
    }


_READERS = {
    "table": _read_table,
    "index": _read_index,
    "foreignKey": _read_foreign_key,
    "insert": _read_insert,
}


def schema_from_dict(data: dict[str, Any] | None) -> Schema:
    """Build a Schema from a parsed document.

    Every entry is validated and read before any entity is constructed, so a
    malformed entry late in the list is reported before model invariants run.
    """
    if data is None:
        return Schema()
    if not isinstance(data, dict):
        raise SchemaInvariantError("Schema document must be a mapping with an 'entities' list")
    entries = data.get("entities") or []
    if not isinstance(entries, list):
        raise SchemaInvariantError("'entities' must be a list")

    pending = []
    for pos, raw in enumerate(entries):
        where = f"entity #{pos + 1}"
        kind = raw.get("kind") if isinstance(raw, dict) else None
        reader = _READERS.get(kind)
        if reader is None:
            raise SchemaInvariantError(
                f"{where} has unknown kind {kind!r}; expected one of {', '.join(_READERS)}"
            )
        pending.append(reader(raw, where))

    return Schema(factory(**kwargs) for factory, kwargs in pending)


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _column_to_dict(col: Column) -> dict[str, Any]:
    out: dict[str, Any] = {"name": col.name, "type": col.col_type}
    if col.size:
        out["size"] = col.size
    if col.scale:
        out["scale"] = col.scale
    if not col.nullable:
        out["null"] = False
    if isinstance(col.default, bytes):
        out["default"] = _b64encode(col.default)
        out["defaultIsBase64Encoded"] = True
    elif isinstance(col.default, decimal.Decimal):
        out["default"] = format(col.default, "f")
    elif col.default is not None:
        out["default"] = col.default
    if col.sys_var_default is not None:
        out["sysVarDefault"] = col.sys_var_default
    if col.auto_increment:
        out["autoIncrement"] = True
    if col.use_time_zone:
        out["useTimeZone"] = True
    if col.enum_values is not None:
        out["enumValues"] = list(col.enum_values)
    return out


def _insert_column_to_dict(col: InsertColumn) -> dict[str, Any]:
    out: dict[str, Any] = {"name": col.name}
    if isinstance(col.value, bytes):
        out[col.kind.value] = _b64encode(col.value)
        out["valueIsBase64Encoded"] = True
    else:
        out[col.kind.value] = col.value
    if col.quoted:
        out["quoted"] = True
    return out


def entity_to_dict(entity: Entity) -> dict[str, Any]:
    match entity:
        case Table():
            out: dict[str, Any] = {"kind": "table", "name": entity.name}
            if entity.group is not None:
                out["group"] = entity.group
            if entity.primary_key is not None:
                out["primaryKey"] = list(entity.primary_key.columns)
            out["columns"] = [_column_to_dict(c) for c in entity.columns]
            return out
        case Index():
            out = {"kind": "index", "name": entity.name, "table": entity.table_name, "columns": list(entity.columns)}
            if entity.unique:
                out["unique"] = True
            if entity.fulltext:
                out["fulltext"] = True
            return out
        case ForeignKey():
            return {
                "kind": "foreignKey",
                "name": entity.name,
                "table": entity.local_table,
                "foreignTable": entity.foreign_table,
                "columns": [{"local": c.local, "foreign": c.foreign} for c in entity.columns],
            }
        case Insert():
            out = {"kind": "insert", "table": entity.table_name}
            if entity.key_column_names:
                out["keyColumns"] = list(entity.key_column_names)
            if entity.update_if_exists:
                out["updateIfExists"] = True
            out["columns"] = [_insert_column_to_dict(c) for c in entity.columns]
            return out
    raise TypeError(f"Not a schema entity: {entity!r}")


def schema_to_dict(schema: Schema) -> dict[str, Any]:
    return {"entities": [entity_to_dict(e) for e in schema.entities]}


def load_schema(path: str | Path) -> Schema:
    return schema_from_dict(yaml.safe_load(Path(path).read_text(encoding="utf-8")))


def dump_schema(schema: Schema, path: str | Path | None = None) -> str:
    """Render ``schema`` as YAML, also writing it to ``path`` when given."""
    text = yaml.safe_dump(schema_to_dict(schema), sort_keys=False, allow_unicode=True)
    if path is not None:
        Path(path).write_text(text, encoding="utf-8")
    return text
