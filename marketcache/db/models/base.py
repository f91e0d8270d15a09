"""
MarketCache - Model Base Helpers

Timestamp columns shared by every cached table and the explicit ``touch``
step the repositories run on each insert, update and delete. Deletes are
soft: the row keeps its key and gets ``deleted_at``; reads skip such rows
and an upsert over one revives it as a fresh insert.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, TypeVar
from sqlalchemy import Column, DateTime, Integer

from marketcache.utils.clock import ensure_utc, utc_now


class TouchAction(str, Enum):
    """Persistence actions that update bookkeeping columns."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class TimestampMixin:
    """created_at / updated_at / deleted_at bookkeeping columns."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class CacheColumnsMixin:
    """Fetch timestamp and TTL for rows that mirror provider data."""

    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    ttl_seconds = Column(Integer, nullable=False, default=0)

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds or 0)

    @property
    def expires_at(self) -> datetime:
        return ensure_utc(self.fetched_at) + self.ttl


E = TypeVar("E", bound=TimestampMixin)


def touch(entity: E, action: TouchAction, now: Optional[datetime] = None) -> E:
    """
    Stamp bookkeeping columns for a persistence action.

    Args:
        entity: Model instance about to be added, changed or removed
        action: The action being applied
        now: Timestamp to use (defaults to current UTC time)

    Returns:
        The same entity
    """
    now = now or utc_now()
    if action == TouchAction.INSERT:
        entity.created_at = now
        entity.updated_at = now
        entity.deleted_at = None
    elif action == TouchAction.UPDATE:
        entity.updated_at = now
    elif action == TouchAction.DELETE:
        entity.updated_at = now
        entity.deleted_at = now
    return entity
