"""Exception types raised while building, mapping, rendering or diffing schemas."""

from __future__ import annotations


class DDLError(ValueError):
    """Base class for every rejection raised by ddlsync."""


class UnsupportedDialectError(DDLError):
    pass


class ConfigurationError(DDLError):
    pass


class SchemaInvariantError(DDLError):
    pass


class ValueSourceError(DDLError):
    pass
