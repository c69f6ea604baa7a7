"""Tenant schema choke point. Every tenant-scoped session goes through require_schema_name."""

import re

_SCHEMA_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

# Never a tenant; search_path must not be pointed at them.
RESERVED_SCHEMAS = frozenset({"public", "information_schema", "pg_catalog", "pg_toast"})


class InvalidSchemaNameError(ValueError):
    """Raised when a schema name is missing, malformed, or reserved."""

    pass


def require_schema_name(schema_name: str | None) -> str:
    """
    Validate a tenant schema name; return the stripped value.
    Raises InvalidSchemaNameError if missing/empty, not a plain identifier, or reserved.
    """
    if not schema_name or not str(schema_name).strip():
        raise InvalidSchemaNameError("schema_name is required and must be non-empty")
    name = str(schema_name).strip()
    if not _SCHEMA_NAME_RE.match(name):
        raise InvalidSchemaNameError(f"schema_name is not a valid identifier: {name!r}")
    if name.lower() in RESERVED_SCHEMAS or name.lower().startswith("pg_"):
        raise InvalidSchemaNameError(f"schema_name is reserved: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    """Double-quote an identifier for SQL (same as format('%I') for names that need quoting)."""
    return '"' + name.replace('"', '""') + '"'


def search_path_for(schema_name: str) -> str:
    """search_path value for a tenant: its own schema first, then public."""
    return f"{quote_identifier(require_schema_name(schema_name))}, public"


__all__ = ["InvalidSchemaNameError", "quote_identifier", "require_schema_name", "search_path_for"]
