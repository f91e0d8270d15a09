"""
Single-flight

Collapses concurrent calls for the same key into one in-flight coroutine.
Callers that arrive while a call is running await its outcome instead of
starting their own. Nothing is cached once the call settles.
"""
import asyncio
from typing import Awaitable, Callable, TypeVar
from loguru import logger


T = TypeVar("T")


class SingleFlight:
    """In-process map of in-flight futures keyed by cache key."""

    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}
        self.joined = 0

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``factory`` for ``key`` unless a call for it is already running.

        Errors from the leading call are raised to every caller. If the
        leading call is cancelled, a waiting caller takes over and runs its own.
        """
        while key in self._inflight:
            existing = self._inflight[key]
            self.joined += 1
            logger.debug(f"Joining in-flight call for {key}")
            try:
                return await asyncio.shield(existing)
            except asyncio.CancelledError:
                if existing.cancelled():
                    continue
                raise

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported as unhandled
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)
