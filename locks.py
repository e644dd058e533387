"""
Per-key mutation locks.

Route handlers run on FastAPI's worker threads, so two requests touching the
same challenge or user can interleave. Read-modify-write sequences hold the
lock for their key. Locks are re-entrant, and nested acquisition always follows
the order challenge -> user -> badge.
"""

import threading
import weakref
from contextlib import contextmanager
from typing import Any, Iterator

from bson import ObjectId


def lock_key(key: Any) -> str:
    """ObjectId keys in canonical form, so every spelling of an id shares one lock."""
    text = str(key)
    return str(ObjectId(text)) if ObjectId.is_valid(text) else text


class _KeyLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.RLock()


class KeyedLock:
    def __init__(self, name: str):
        self.name = name
        self._mux = threading.Lock()
        # entries vanish once no thread holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, _KeyLock]" = weakref.WeakValueDictionary()

    def _get(self, key: str) -> _KeyLock:
        with self._mux:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            return entry

    @contextmanager
    def hold(self, key) -> Iterator[None]:
        entry = self._get(lock_key(key))
        with entry.lock:
            yield


CHALLENGE_LOCKS = KeyedLock("challenge")
USER_LOCKS = KeyedLock("user")
BADGE_LOCKS = KeyedLock("badge")
INVITATION_LOCKS = KeyedLock("invitation")
