"""
NotificationCache — client mirror of the user's notifications with
optimistic mark-read / mark-all-read / delete.

Each mutation goes through explicit states:

    snapshot ─▶ speculative ─▶ confirmed     (server accepted)
                           └─▶ rolled back   (server refused / unreachable)

and is followed, whatever the outcome, by a refetch that reconciles the
cache with the server.

Ordering rules for the two writers (mutations and refetches):

- refetches are numbered in issue order; a response older than the newest
  applied one is discarded, and starting a mutation supersedes refetches
  already in flight so they cannot wipe the speculative state;
- a rollback never undoes a refetch that landed after its snapshot;
- a rollback restores the whole snapshot when nothing else wrote since the
  speculative change, otherwise only the entries that mutation touched, so
  concurrent mutations on other notifications survive;
- mutations on the same notification are serialized by a per-key lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Iterable

from hms.client.api import ApiError, HMSApiClient
from hms.client.models import Notification

logger = logging.getLogger(__name__)

Entries = tuple[Notification, ...]

_ALL = "*"


def _restore_touched(current: Entries, snapshot: Entries, touched: set[str],
                     reinsert: bool) -> Entries:
    """Put snapshot values back for ``touched`` ids, keep everything else as it is now."""
    current_by_id = {n.id: n for n in current}
    restored = []
    for entry in snapshot:
        if entry.id in current_by_id:
            restored.append(entry if entry.id in touched else current_by_id[entry.id])
        elif reinsert and entry.id in touched:
            restored.append(entry)
    seen = {n.id for n in restored}
    restored.extend(n for n in current if n.id not in seen and n.id not in touched)
    return tuple(restored)


class NotificationCache:
    def __init__(self, api: HMSApiClient, user_id: str):
        self.user_id = user_id
        self.last_error: str | None = None
        self._api = api
        self._entries: Entries = ()
        self._loaded = False
        self._issued = 0
        self._applied = 0
        self._superseded = 0
        self._writes = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # ── Reads ────────────────────────────────────────────────────────────────

    @property
    def entries(self) -> list[Notification]:
        return list(self._entries)

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def unread(self) -> list[Notification]:
        return [n for n in self._entries if not n.is_read]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._entries if not n.is_read)

    def get(self, notification_id: str) -> Notification | None:
        return next((n for n in self._entries if n.id == notification_id), None)

    def _write(self, entries: Iterable[Notification]) -> None:
        self._entries = tuple(entries)
        self._writes += 1

    # ── Refetch ──────────────────────────────────────────────────────────────

    async def load(self) -> bool:
        return await self.refetch()

    async def refetch(self) -> bool:
        """Replace the cache with the server's list. Returns True if applied."""
        if self._closed:
            return False
        self._issued += 1
        seq = self._issued
        try:
            fetched = await self._api.list_notifications(self.user_id)
        except ApiError as exc:
            logger.warning("Notification fetch failed for %s: %s", self.user_id, exc)
            self.last_error = str(exc)
            return False

        if self._closed or seq <= max(self._applied, self._superseded):
            logger.debug("Discarding notification response #%d", seq)
            return False
        self._write(fetched)
        self._applied = seq
        self._loaded = True
        self.last_error = None
        return True

    def invalidate(self) -> None:
        """Schedule a refetch; used by the push channel."""
        if self._closed:
            return
        task = asyncio.ensure_future(self.refetch())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every scheduled refetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ── Optimistic mutations ─────────────────────────────────────────────────

    async def mark_read(self, notification_id: str) -> bool:
        return await self._mutate(
            key=notification_id,
            touched={notification_id},
            speculate=lambda entries: tuple(n.as_read() if n.id == notification_id else n
                                            for n in entries),
            request=lambda: self._api.mark_read(notification_id),
            reinsert=False,
        )

    async def mark_all_read(self) -> bool:
        return await self._mutate(
            key=_ALL,
            touched={n.id for n in self._entries if not n.is_read},
            speculate=lambda entries: tuple(n.as_read() for n in entries),
            request=lambda: self._api.mark_all_read(self.user_id),
            reinsert=False,
        )

    async def delete(self, notification_id: str) -> bool:
        return await self._mutate(
            key=notification_id,
            touched={notification_id},
            speculate=lambda entries: tuple(n for n in entries if n.id != notification_id),
            request=lambda: self._api.delete_notification(notification_id),
            reinsert=True,
        )

    @asynccontextmanager
    async def _serialized(self, key: str):
        """Hold the lock for ``key``; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _mutate(self, *, key: str, touched: set[str],
                      speculate: Callable[[Entries], Entries],
                      request: Callable[[], Awaitable[None]],
                      reinsert: bool) -> bool:
        if self._closed:
            return False
        async with self._serialized(key):
            if self._closed:
                return False
            # in-flight refetches predate this change and must not overwrite it
            self._superseded = self._issued
            snapshot = self._entries
            applied_at_snapshot = self._applied
            self._write(speculate(snapshot))
            speculative_write = self._writes

            try:
                await request()
            except ApiError as exc:
                logger.warning("Notification mutation failed, rolling back: %s", exc)
                self.last_error = str(exc)
                self._rollback(snapshot, touched, reinsert, applied_at_snapshot, speculative_write)
                confirmed = False
            else:
                confirmed = True

        self.invalidate()
        return confirmed

    def _rollback(self, snapshot: Entries, touched: set[str], reinsert: bool,
                  applied_at_snapshot: int, speculative_write: int) -> None:
        if self._closed or self._applied != applied_at_snapshot:
            # a newer server state already replaced the speculative one
            return
        if self._writes == speculative_write:
            self._write(snapshot)
        else:
            self._write(_restore_touched(self._entries, snapshot, touched, reinsert))
