"""Dialect registry plus literal escaping and quoting shared by the serializer and updater."""

from __future__ import annotations

import enum
import re

from ddlsync.errors import UnsupportedDialectError


class Dialect(str, enum.Enum):
    MYSQL = "mysql"
    PGSQL = "pgsql"


SUPPORTED_DIALECTS: tuple[str, ...] = tuple(d.value for d in Dialect)

SYS_VARS: tuple[str, ...] = ("current_date", "current_time", "current_timestamp")

_MYSQL_ESCAPES = {
    "\x00": "\\0",
    "\n": "\\n",
    "\r": "\\r",
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "\x1a": "\\Z",
}
_MYSQL_UNESCAPES = {v[1]: k for k, v in _MYSQL_ESCAPES.items()}
_MYSQL_ESCAPE_TABLE = str.maketrans(_MYSQL_ESCAPES)
_MYSQL_UNESCAPE_RE = re.compile(r"\\([0nr\\'\"Z])")


def get_dialect(name: str | Dialect) -> Dialect:
    if isinstance(name, Dialect):
        return name
    try:
        return Dialect(name)
    except ValueError:
        raise UnsupportedDialectError(
            f'Requested SQL dialect "{name}" is not in the list of supported dialects '
            f"({', '.join(SUPPORTED_DIALECTS)})."
        ) from None


def escape(s: str, dialect: Dialect) -> str:
    """Escape text for use inside a single-quoted literal."""
    if dialect is Dialect.MYSQL:
        return s.translate(_MYSQL_ESCAPE_TABLE)
    return s.replace("'", "''")


def unescape(s: str, dialect: Dialect) -> str:
    if dialect is Dialect.MYSQL:
        return _MYSQL_UNESCAPE_RE.sub(lambda m: _MYSQL_UNESCAPES[m.group(1)], s)
    return s.replace("''", "'")


def to_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def is_binary(value: str | bytes) -> bool:
    """True when any byte falls outside printable ASCII (0x20-0x7E)."""
    return any(b < 0x20 or b > 0x7E for b in to_bytes(value))


def hex_literal(value: str | bytes, dialect: Dialect) -> str:
    hexed = to_bytes(value).hex()
    if dialect is Dialect.MYSQL:
        return f"0x{hexed}"
    return f"decode('{hexed}', 'hex')"


def quote_literal(value: str | bytes, dialect: Dialect) -> str:
    """Quote a value as a string literal, or as a hex literal if it holds binary data."""
    if is_binary(value):
        return hex_literal(value, dialect)
    text = value.decode("ascii") if isinstance(value, bytes) else value
    return f"'{escape(text, dialect)}'"


def convert_sys_var(sys_var: str, dialect: Dialect) -> str:
    name = sys_var.lower()
    if name not in SYS_VARS:
        raise ValueError(f'Invalid system variable reference "{sys_var}".')
    if dialect is Dialect.MYSQL:
        return name.upper()
    return name


def zero_date(column_type: str, dialect: Dialect) -> str:
    """Canonical literal substituted for an empty date/time/datetime default."""
    if column_type == "time":
        return "'00:00:00'"
    if dialect is Dialect.MYSQL:
        return "'0000-00-00'" if column_type == "date" else "'0000-00-00 00:00:00'"
    return "'0001-01-01'" if column_type == "date" else "'0001-01-01 00:00:00'"
