"""
NotificationChannel — one long-lived push connection per session.

    DISCONNECTED ──start()──▶ CONNECTING ──▶ CONNECTED
         ▲                        │              │
         └──── unexpected close / connect error ─┘
                  (one reconnect timer, fixed delay)

While the channel is active every unexpected close schedules exactly one
reconnect after ``reconnect_delay`` seconds; further close notifications
while a timer is pending are ignored. ``stop()`` cancels the pending timer,
the reader task and any handler tasks, and closes the socket without retry.

Inbound messages are JSON objects with a discriminated ``type``.
``notification`` invokes ``on_notification`` (an invalidation signal, the
payload is not applied to any cache); other types go to the matching entry
in ``handlers``; everything else is ignored.
"""

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Callable, Mapping

import websockets
from websockets.exceptions import WebSocketException

from hms.config import settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict], Any]


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class NotificationChannel:
    def __init__(self, url: str, on_notification: MessageHandler, *,
                 handlers: Mapping[str, MessageHandler] | None = None,
                 reconnect_delay: float | None = None,
                 connect: Callable[[str], Any] | None = None,
                 on_state_change: Callable[[ChannelState], None] | None = None):
        self.url = url
        self.reconnect_delay = (settings.ws_reconnect_delay_seconds
                                if reconnect_delay is None else reconnect_delay)
        self.state = ChannelState.DISCONNECTED
        self.connect_attempts = 0
        self._on_notification = on_notification
        self._handlers = dict(handlers or {})
        self._connect = connect or websockets.connect
        self._on_state_change = on_state_change
        self._active = False
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._open()

    async def stop(self) -> None:
        """Deliberate teardown: no reconnect, nothing left running."""
        self._active = False
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._set_state(ChannelState.DISCONNECTED)

    def _open(self) -> None:
        self._reconnect_handle = None
        if not self._active:
            return
        if self._reader is not None and not self._reader.done():
            return
        self._reader = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        self.connect_attempts += 1
        self._set_state(ChannelState.CONNECTING)
        try:
            async with self._connect(self.url) as ws:
                self._ws = ws
                self._set_state(ChannelState.CONNECTED)
                logger.info("Notification channel connected: %s", self.url)
                async for raw in ws:
                    self._dispatch(raw)
            logger.info("Notification channel closed by server")
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("Notification channel error: %s", exc)
        finally:
            self._ws = None
        self._closed()

    def _closed(self) -> None:
        """Handle an unexpected close: go DISCONNECTED and retry if still active."""
        self._set_state(ChannelState.DISCONNECTED)
        if self._active:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._open)
        logger.debug("Reconnect scheduled in %.1fs", self.reconnect_delay)

    def _set_state(self, state: ChannelState) -> None:
        if state is self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    # ── Messages ─────────────────────────────────────────────────────────────

    def _dispatch(self, raw) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Notification channel: ignoring malformed message")
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get("type")
        if msg_type == "notification":
            self._invoke(self._on_notification, data)
        elif msg_type in self._handlers:
            self._invoke(self._handlers[msg_type], data)
        else:
            logger.debug("Notification channel: ignoring message type %r", msg_type)

    def _invoke(self, handler: MessageHandler, data: dict) -> None:
        try:
            result = handler(data)
        except Exception:
            logger.exception("Notification channel handler failed for %r", data.get("type"))
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Notification channel handler task failed: %s", task.exception())

    async def send_ping(self) -> bool:
        if self._ws is None or not self.connected:
            return False
        await self._ws.send(json.dumps({"type": "ping"}))
        return True
