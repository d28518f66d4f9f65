"""Database models, domain types and API schemas."""

from .tables import Receipt, User  # noqa: F401
