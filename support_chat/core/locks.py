import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID
from weakref import WeakValueDictionary


class ConversationLocks:
    """Per-conversation mutexes for the current process.

    Cross-process exclusion comes from ``SELECT ... FOR UPDATE`` on the
    conversation row; this only keeps tasks in one worker from queueing on the
    same row lock. Idle locks are dropped once no task references them.
    """

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[UUID, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, conversation_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, conversation_id: UUID) -> AsyncIterator[None]:
        lock = self._lock_for(conversation_id)
        async with lock:
            yield
