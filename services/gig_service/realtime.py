"""Live push to connected dashboards.

Two gateways share one small interface, ``push_to_user`` and ``broadcast``:
``ConnectionManager`` keeps the WebSocket connections of this process, and
``RedisRealtimeGateway`` publishes to Redis so every process relays the event
to its own connections (see ``relay_redis_events``). Handlers get the gateway
through the ``get_realtime`` dependency.
"""
from fastapi import WebSocket
from typing import Any, Dict, Optional, Set
import redis
import asyncio
import json
import logging
import os

logger = logging.getLogger(__name__)

REALTIME_BACKEND = os.getenv("REALTIME_BACKEND", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
GIGS_ROOM = "gigs"


class SocketEvents:
    GIG_CREATED = "gig:created"
    GIG_UPDATED = "gig:updated"
    GIG_DELETED = "gig:deleted"
    BID_RECEIVED = "bid:received"
    BID_HIRED = "bid:hired"
    BID_REJECTED = "bid:rejected"
    NOTIFICATION = "notification"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def gig_room(gig_id: int) -> str:
    return f"gig:{gig_id}"


def encode_event(event: str, payload: Dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": payload}, default=str)


class RealtimeGateway:
    """Best-effort, at-most-once delivery. Nothing is queued for offline users."""

    async def push_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class ConnectionManager(RealtimeGateway):
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: int):
        await websocket.accept()
        self.join(websocket, user_room(user_id))
        self.join(websocket, GIGS_ROOM)

    def join(self, websocket: WebSocket, room: str):
        if room not in self.rooms:
            self.rooms[room] = set()
        self.rooms[room].add(websocket)

    def leave(self, websocket: WebSocket, room: str):
        if room in self.rooms:
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    def disconnect(self, websocket: WebSocket):
        for room in list(self.rooms):
            self.leave(websocket, room)

    async def send_to_room(self, room: str, message: str):
        for connection in list(self.rooms.get(room, ())):
            try:
                await connection.send_text(message)
            except Exception as exc:
                logger.warning("Dropping dead connection in room %s: %s", room, exc)
                self.disconnect(connection)

    async def push_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        await self.send_to_room(user_room(user_id), encode_event(event, payload))

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        await self.send_to_room(room, encode_event(event, payload))


def redis_connection() -> redis.Redis:
    # Connections are pooled and checked before reuse after 30s idle
    logger.info("Connecting to Redis at %s", REDIS_URL.rsplit("@", 1)[-1])
    return redis.Redis.from_url(REDIS_URL, decode_responses=True, health_check_interval=30)


class RedisRealtimeGateway(RealtimeGateway):
    """Publishes envelopes on the Redis channel named after the room."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_connection()
        return self._client

    async def push_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        await self.broadcast(user_room(user_id), event, payload)

    async def broadcast(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        await asyncio.to_thread(self.client.publish, room, encode_event(event, payload))


async def relay_redis_events(manager: ConnectionManager, pubsub) -> None:
    """Forward published envelopes to the local connections of each room."""
    await asyncio.to_thread(pubsub.psubscribe, "user:*", "gig:*", GIGS_ROOM)
    while True:
        message = await asyncio.to_thread(pubsub.get_message, ignore_subscribe_messages=True, timeout=1.0)
        if not message or message.get("type") != "pmessage":
            continue
        await manager.send_to_room(message["channel"], message["data"])


manager = ConnectionManager()
_redis_gateway: Optional[RedisRealtimeGateway] = None


def get_realtime() -> RealtimeGateway:
    global _redis_gateway
    if REALTIME_BACKEND == "redis":
        if _redis_gateway is None:
            _redis_gateway = RedisRealtimeGateway()
        return _redis_gateway
    return manager
