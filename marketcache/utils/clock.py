"""
Clock helpers

All timestamps in the cache are timezone-aware UTC.
"""
import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from the database."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def cancellable_sleep(seconds: float, cancel_event: Optional[asyncio.Event] = None) -> bool:
    """
    Sleep for ``seconds`` or until ``cancel_event`` is set.

    Returns:
        True if the sleep was cut short by the cancel event
    """
    if cancel_event is None:
        await asyncio.sleep(max(0.0, seconds))
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
        return False
    return True
