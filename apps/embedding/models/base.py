"""SQLAlchemy declarative bases: shared registry (public schema) and per-tenant tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for registry tables. Every model pins schema='public'."""

    pass


class TenantBase(DeclarativeBase):
    """Base class for tables that live in every tenant schema.

    Models carry no schema; the tenant is selected by search_path on the session
    (see Database.tenant_session), or by schema_translate_map when creating tables.
    """

    pass
