"""
Notification helpers for sending feed events to a connected client.

ConsumerNotifier is handed to the feed session and the transition controller.
Their callbacks are synchronous (they run inside realtime fan-out), so each
send is scheduled as a task on the consumer's event loop and tracked so it
can be cancelled when the socket closes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


class ConsumerNotifier:

    def __init__(self, consumer):
        self.consumer = consumer
        self._tasks: Set[asyncio.Task] = set()

    def send(self, message: Dict[str, Any]) -> None:
        task = asyncio.ensure_future(self._send(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self.consumer.send_json(message)
        except Exception:
            logger.exception("Failed to send %s to client", message.get("type"))

    # ---------------------- Feed events ----------------------

    def toast(self, level: str, title: str, message: str, duration_ms: int = 4000) -> None:
        self.send({
            "type": "toast",
            "level": level,
            "title": title,
            "message": message,
            "duration_ms": duration_ms,
        })

    def navigate(self, path: str) -> None:
        self.send({"type": "navigate", "path": path})

    def channel_status(self, status: str) -> None:
        self.send({"type": "channel_status", "status": status})

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
