"""
PermissionContext — the session-scoped view of what the current user may do.

Created when a session starts with a known role and torn down on logout.
It fetches the role's explicit grant rows once, keeps them in memory and
answers ``can`` / ``can_any`` / ``can_all`` synchronously through the same
resolver the server uses.

Refreshes are explicit (``refresh()``, typically on a ``permissions_updated``
push) or lazy through ``ensure_fresh()`` once the staleness window has
passed. Overlapping refreshes are numbered in issue order and only the
newest completed one is applied, so a slow early response can never
replace a newer one.

If the grant fetch fails the context degrades to the compiled default
table rather than denying everything; nothing is raised to the caller.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable

from hms.auth.permissions import Action, GrantIndex, Module, index_grants
from hms.auth.resolver import effective_permissions, resolve
from hms.auth.roles import SUPER_ROLE, Role, parse_role
from hms.client.api import ApiError, HMSApiClient
from hms.config import settings

logger = logging.getLogger(__name__)


class PermissionContext:
    def __init__(self, api: HMSApiClient, role, *, stale_after: float | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.role: Role | None = parse_role(role)
        self.stale_after = settings.permission_stale_seconds if stale_after is None else stale_after
        self.degraded = False
        self._api = api
        self._clock = clock
        self._grants: GrantIndex = {}
        self._fetched_at: float | None = None
        self._issued = 0
        self._applied = 0
        self._inflight: set[asyncio.Task] = set()
        self._active = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._active = True
        await self.refresh()

    async def teardown(self) -> None:
        """Drop cached grants and cancel outstanding fetches."""
        self._active = False
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._grants = {}
        self._fetched_at = None
        self.degraded = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def is_loading(self) -> bool:
        return bool(self._inflight)

    @property
    def grants(self) -> GrantIndex:
        return dict(self._grants)

    # ── Fetching ─────────────────────────────────────────────────────────────

    def _needs_fetch(self) -> bool:
        # SUPER_ADMIN resolves without grants; unknown roles resolve to deny
        return self._active and self.role is not None and self.role is not SUPER_ROLE

    async def refresh(self) -> None:
        if not self._needs_fetch():
            return
        self._issued += 1
        task = asyncio.create_task(self._fetch(self._issued))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # teardown cancelled the fetch itself; a cancelled caller leaves it running
            if not task.cancelled():
                raise

    async def ensure_fresh(self) -> None:
        if self.is_stale:
            await self.refresh()

    @property
    def is_stale(self) -> bool:
        if not self._needs_fetch():
            return False
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self.stale_after

    async def _fetch(self, seq: int) -> None:
        try:
            role, grants = await self._api.fetch_current_permissions()
        except ApiError as exc:
            if self._active and seq > self._applied:
                logger.warning("Permission fetch failed (%s); using default permissions", exc)
                self._apply(seq, {}, degraded=True)
            return

        if not self._active or seq <= self._applied:
            logger.debug("Discarding permission response #%d (applied #%d)", seq, self._applied)
            return
        if role is not None and role is not self.role:
            logger.warning("Server reports role %s for a %s session; ignoring foreign grants",
                           role.value, self.role.value)
        self._apply(seq, index_grants(g for g in grants if g.role is self.role), degraded=False)

    def _apply(self, seq: int, grants: GrantIndex, *, degraded: bool) -> None:
        self._grants = grants
        self._applied = seq
        self._fetched_at = self._clock()
        self.degraded = degraded

    # ── Queries ──────────────────────────────────────────────────────────────

    def can(self, module: Module | str, action: Action | str) -> bool:
        if not self._active:
            return False
        return resolve(self.role, module, action, self._grants)

    def can_any(self, module: Module | str, actions: Iterable[Action | str]) -> bool:
        if not self._active:
            return False
        return any(self.can(module, a) for a in actions)

    def can_all(self, module: Module | str, actions: Iterable[Action | str]) -> bool:
        if not self._active:
            return False
        return all(self.can(module, a) for a in actions)

    def module_permissions(self, module: Module | str) -> dict[Action, bool]:
        """All eight action flags for ``module``."""
        if not self._active:
            return {a: False for a in Action}
        return effective_permissions(self.role, module, self._grants)
