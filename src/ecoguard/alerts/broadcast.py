"""Real-time broadcast channel for live clients.

The fanout engine only publishes; it never tracks connections. Channels are
plain names (``events:global``, ``alerts:{subscription_id}``) mapped to
Socket.IO rooms by the production implementation.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import socketio

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "events:global"


def subscription_channel(subscription_id: str) -> str:
    """Channel carrying full alert payloads for one subscription."""
    return f"alerts:{subscription_id}"


class Broadcaster(Protocol):
    """Publish-only interface to connected live clients."""

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class SocketIOBroadcaster:
    """Broadcaster backed by a python-socketio ``AsyncServer``.

    Clients join channels by emitting ``subscribe`` with ``{"channel": name}``.
    The server is exposed as :attr:`app` for mounting under an ASGI server.
    """

    def __init__(self, server: socketio.AsyncServer | None = None) -> None:
        self.sio = server or socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
        self.app = socketio.ASGIApp(self.sio)
        self._register_handlers()

    def _register_handlers(self) -> None:
        sio = self.sio

        @sio.event
        async def connect(sid, environ):
            logger.info("Live client connected: %s", sid)

        @sio.event
        async def disconnect(sid):
            logger.info("Live client disconnected: %s", sid)

        @sio.event
        async def subscribe(sid, data=None):
            channel = (data or {}).get("channel") or GLOBAL_CHANNEL
            await sio.enter_room(sid, channel)
            await sio.emit("joined", {"room": channel}, to=sid)

        @sio.event
        async def unsubscribe(sid, data=None):
            channel = (data or {}).get("channel")
            if channel:
                await sio.leave_room(sid, channel)

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        await self.sio.emit(event, payload, room=channel)
        logger.debug("Published %s on %s", event, channel)
