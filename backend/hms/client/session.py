"""
ClientSession — the per-login bundle of permission context, notification
cache and push channel.

Wiring:

    push "notification"        ─▶ NotificationCache.invalidate()
    push "permissions_updated" ─▶ PermissionContext.refresh()
    channel connected          ─▶ PermissionContext.ensure_fresh(), and on a
                                  reconnect NotificationCache.invalidate()

Everything is owned by the session and released by ``close()``: the
channel is stopped first so no new pushes arrive, then pending refreshes
and refetches are cancelled, then the permission context is torn down. A
new login gets a new session; nothing is shared between them.
"""

import asyncio
import logging
from typing import Any, Callable

from hms.auth.roles import parse_role
from hms.client.api import HMSApiClient
from hms.client.cache import NotificationCache
from hms.client.channel import ChannelState, NotificationChannel
from hms.client.permissions import PermissionContext

logger = logging.getLogger(__name__)


class ClientSession:
    def __init__(self, api: HMSApiClient, user_id: str, role, *,
                 connect: Callable[[str], Any] | None = None,
                 reconnect_delay: float | None = None,
                 stale_after: float | None = None,
                 on_channel_state: Callable[[ChannelState], None] | None = None):
        self.user_id = user_id
        self.role = parse_role(role)
        self.permissions = PermissionContext(api, self.role, stale_after=stale_after)
        self.notifications = NotificationCache(api, user_id)
        self.channel: NotificationChannel | None = None
        self._on_channel_state = on_channel_state
        self._connected_before = False
        self._tasks: set[asyncio.Task] = set()
        if self.role is not None:
            self.channel = NotificationChannel(
                api.notifications_ws_url(user_id, self.role.value),
                on_notification=self._on_notification,
                handlers={"permissions_updated": self._on_permissions_updated},
                reconnect_delay=reconnect_delay,
                connect=connect,
                on_state_change=self._channel_state_changed,
            )
        else:
            logger.warning("Session for %s has no recognised role; push channel disabled", user_id)

    def _on_notification(self, message: dict) -> None:
        self.notifications.invalidate()

    def _on_permissions_updated(self, message: dict):
        return self.permissions.refresh()

    def _channel_state_changed(self, state: ChannelState) -> None:
        if state is ChannelState.CONNECTED:
            if self._connected_before:
                # pushes sent while disconnected were missed
                self.notifications.invalidate()
            self._connected_before = True
            task = asyncio.ensure_future(self.permissions.ensure_fresh())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._on_channel_state is not None:
            self._on_channel_state(state)

    async def start(self) -> None:
        await self.permissions.start()
        await self.notifications.load()
        if self.channel is not None:
            await self.channel.start()

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.notifications.close()
        await self.permissions.teardown()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
