"""
Per-conversation turn serialization.

A second turn for the same conversation waits until the first one's phase
commit has landed; turns for different conversations run in parallel. Locks
live only as long as someone holds a reference, so the registry does not grow
with the number of conversations ever seen.

This serializes turns within one API process. Across processes the
compare-and-set in stage_machine.commit_transition is what keeps phase writes
consistent.
"""

import asyncio
import weakref
from typing import Hashable


class LockRegistry:
    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


conversation_locks = LockRegistry()
# Guards lazy conversation creation so two first turns create one conversation
user_locks = LockRegistry()
