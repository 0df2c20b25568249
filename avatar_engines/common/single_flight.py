"""Single-flight guard: at most one operation of a class in flight."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from avatar_engines.common.errors import Busy

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """Non-blocking mutual exclusion for one logical operation class.

    ``hold()`` fails fast with :class:`Busy` instead of queueing, and always
    releases on exit, including when the guarded body raises before doing
    any I/O.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise Busy(f"A {self.name} operation is already in progress. Try again when it finishes.")
        await self._lock.acquire()
        logger.debug("single-flight %s acquired", self.name)
        try:
            yield
        finally:
            self._lock.release()
            logger.debug("single-flight %s released", self.name)
