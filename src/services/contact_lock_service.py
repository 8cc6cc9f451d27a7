import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Tuple, Optional, AsyncIterator

# Utils
from utils.log_utils import LogUtil

# Exceptions
from exceptions.flow_exception import LockTimeoutException


class _KeyedLock:
    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class ContactLockService:
    """
    Keyed mutual exclusion per (bot_id, contact_id).

    Waiters on one key are served in arrival order (asyncio.Lock wakes waiters FIFO).
    Different keys never block each other. An entry is dropped once nobody holds or
    waits for it, so the table only grows with concurrently active contacts.
    """

    def __init__(self, log_util: LogUtil, timeout_seconds: float = 10.0):
        self.log_util = log_util
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[Tuple[str, str], _KeyedLock] = {}

    @asynccontextmanager
    async def acquire(self, bot_id: str, contact_id: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        key = (bot_id, contact_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = _KeyedLock()
            self._locks[key] = entry
        entry.users += 1

        try:
            try:
                # asyncio.timeout cancels a queued acquire without leaking a lock granted at the deadline
                async with asyncio.timeout(timeout or self.timeout_seconds):
                    await entry.lock.acquire()
            except TimeoutError:
                self.log_util.warning(
                    service_name="ContactLockService",
                    message=f"[LOCK] Timed out waiting for contact {contact_id} of bot {bot_id}"
                )
                raise LockTimeoutException(
                    f"Could not acquire lock for contact {contact_id} of bot {bot_id} within {timeout or self.timeout_seconds}s"
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def active_keys(self) -> int:
        return len(self._locks)
