"""Backing stores for session codes."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from src.manito.auth.models import CredentialPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCodeEntry:
    """Stored credential pair with its absolute expiry (epoch seconds)."""

    pair: CredentialPair
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SessionCodeStore(Protocol):
    """
    Keyed store with atomic take semantics.

    A shared expiring key-value store can replace the in-process one as long
    as `take` removes and returns an entry in a single step.
    """

    async def put(self, code: str, entry: SessionCodeEntry) -> None: ...

    async def take(self, code: str) -> SessionCodeEntry | None: ...

    async def sweep(self, now: float) -> int: ...

    async def snapshot(self) -> list[SessionCodeEntry]: ...


class InMemorySessionCodeStore:
    """In-process session code store for a single-instance deployment."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionCodeEntry] = {}
        self._lock = asyncio.Lock()

    async def put(self, code: str, entry: SessionCodeEntry) -> None:
        async with self._lock:
            if code in self._entries:
                raise KeyError("Session code collision")
            self._entries[code] = entry

    async def take(self, code: str) -> SessionCodeEntry | None:
        async with self._lock:
            return self._entries.pop(code, None)

    async def sweep(self, now: float) -> int:
        async with self._lock:
            expired = [code for code, entry in self._entries.items() if entry.is_expired(now)]
            for code in expired:
                del self._entries[code]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired session codes")
        return len(expired)

    async def snapshot(self) -> list[SessionCodeEntry]:
        async with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
