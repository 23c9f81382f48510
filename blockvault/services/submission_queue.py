import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class SubmissionQueue:
    """Serializes state-changing submissions per sending identity.

    The ledger assigns nonces strictly in order per sender, so only one
    transaction per identity may be in flight (submitted but not yet
    confirmed). Later submissions wait in FIFO order; different identities
    proceed independently. Must be used from a single event loop.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiting: Dict[str, int] = {}

    def _lock_for(self, identity: str) -> asyncio.Lock:
        key = identity.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def queued(self, identity: str) -> int:
        """Number of submissions holding or waiting for the identity's slot."""
        return self._waiting.get(identity.lower(), 0)

    @asynccontextmanager
    async def slot(self, identity: str) -> AsyncIterator[None]:
        key = identity.lower()
        lock = self._lock_for(key)
        self._waiting[key] = self._waiting.get(key, 0) + 1
        if lock.locked():
            logger.info(f"Submission for {identity} queued behind {self._waiting[key] - 1} in-flight transaction(s)")
        try:
            async with lock:
                yield
        finally:
            self._waiting[key] -= 1
            if not self._waiting[key]:
                del self._waiting[key]
                self._locks.pop(key, None)
