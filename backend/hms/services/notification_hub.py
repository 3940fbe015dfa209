"""
Notification hub — the server side of the push channel.

Keeps a per-user registry of live WebSocket connections, each scoped by
(user_id, role). Messages are addressed to a single user, to every
connection holding a role, or to everyone.

With a Redis URL configured, every send is published on a pub/sub channel
and each worker delivers to its own sockets, so a notification created in
one worker reaches a user connected to another. Without Redis, when it is
unreachable, or once the subscription fails, delivery is local only.
"""

import asyncio
import json
import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from starlette.websockets import WebSocket

from hms.middleware.metrics import notifications_pushed_total, websocket_connections

logger = logging.getLogger(__name__)

PUBSUB_CHANNEL = "hms:notifications"


@dataclass(eq=False)
class _Client:
    websocket: WebSocket
    user_id: str
    role: str


class NotificationHub:
    def __init__(self, redis_url: str = ""):
        self._clients: dict[str, list[_Client]] = {}
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self._listener: asyncio.Task | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to the Redis fan-out channel. Fails open to local delivery."""
        if not self._redis_url:
            return
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            pubsub = self._redis.pubsub()
            await pubsub.subscribe(PUBSUB_CHANNEL)
        except Exception as exc:
            logger.warning("Notification hub: Redis unavailable (%s), delivering locally", exc)
            await self._close_redis()
            return
        self._listener = asyncio.create_task(self._listen(pubsub))

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._close_redis()

    async def _close_redis(self) -> None:
        redis, self._redis = self._redis, None
        if redis is not None:
            await redis.aclose()

    async def _listen(self, pubsub) -> None:
        try:
            async for msg in pubsub.listen():
                if msg.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(msg["data"])
                except (TypeError, ValueError):
                    logger.warning("Notification hub: dropping malformed pub/sub payload")
                    continue
                await self._deliver(envelope)
        except Exception as exc:
            # nothing in this worker would receive further publishes
            logger.error("Notification hub: Redis listener failed (%s), delivering locally", exc)
            await self._close_redis()
        finally:
            await pubsub.aclose()

    # ── Registry ─────────────────────────────────────────────────────────────

    def register(self, websocket: WebSocket, user_id: str, role: str) -> None:
        self._clients.setdefault(user_id, []).append(_Client(websocket, user_id, role))
        websocket_connections.inc()
        logger.info("WebSocket connected: %s (%s)", user_id, role)

    def unregister(self, websocket: WebSocket, user_id: str) -> None:
        clients = self._clients.get(user_id)
        if not clients:
            return
        remaining = [c for c in clients if c.websocket is not websocket]
        if len(remaining) == len(clients):
            return
        websocket_connections.dec(len(clients) - len(remaining))
        if remaining:
            self._clients[user_id] = remaining
        else:
            del self._clients[user_id]
        logger.info("WebSocket disconnected: %s", user_id)

    def connection_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._clients.get(user_id, []))
        return sum(len(c) for c in self._clients.values())

    # ── Sending ──────────────────────────────────────────────────────────────

    async def send_to_user(self, user_id: str, message: dict) -> None:
        await self._publish({"target": "user", "user_id": user_id, "message": message})

    async def broadcast(self, message: dict, role: str | None = None) -> None:
        """Send to every connection, or only to connections holding ``role``."""
        await self._publish({"target": "role" if role else "all", "role": role, "message": message})

    async def _publish(self, envelope: dict) -> None:
        if self._redis is not None:
            try:
                await self._redis.publish(PUBSUB_CHANNEL, json.dumps(envelope, default=str))
                return
            except Exception as exc:
                logger.warning("Notification hub: publish failed (%s), delivering locally", exc)
        await self._deliver(envelope)

    async def _deliver(self, envelope: dict) -> None:
        message = envelope.get("message") or {}
        target = envelope.get("target")
        if target == "user":
            targets = list(self._clients.get(envelope.get("user_id"), []))
        elif target == "role":
            targets = [c for clients in self._clients.values() for c in clients
                       if c.role == envelope.get("role")]
        else:
            targets = [c for clients in self._clients.values() for c in clients]

        for client in targets:
            try:
                await client.websocket.send_json(message)
            except Exception as exc:
                logger.debug("Dropping dead socket for %s: %s", client.user_id, exc)
                self.unregister(client.websocket, client.user_id)
                continue
            notifications_pushed_total.labels(type=str(message.get("type", "unknown"))).inc()
