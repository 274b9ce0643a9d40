# fleet_rollout_service/src/fleet_rollout_service/models/base.py
"""
Declarative base and shared column mixins for the Fleet Rollout Service models.

Column types are kept portable (generic ``Uuid`` and ``JSON``) so the same
metadata can be created on PostgreSQL in production and on SQLite in tests.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

# The single declarative base for all models of this service.
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    A timezone-aware DateTime that always hands back UTC datetimes.

    Some backends (SQLite) drop tzinfo on the way out; this restores it so
    comparisons against ``utcnow()`` never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class UUIDMixin:
    """Mixin to provide a UUID primary key for models."""

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
        nullable=False,
    )


class TimestampMixin:
    """Mixin to provide inserted_at and updated_at columns for models."""

    inserted_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
