"""
Realtime transport over the Channels channel layer.

Row changes are published to one group per table (see realtime.broadcast).
Each realtime channel owns a private reply channel, joins the groups of the
tables it has bindings for and dispatches every received change to the
bindings whose event and filter match.

A transport only needs `channel(name)`; the returned channel object needs
`on_postgres_changes(schema, table, event, filter, callback)`,
`subscribe(status_callback)` and `unsubscribe()`. Tests swap in a fake with
the same three methods.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from channels.layers import DEFAULT_CHANNEL_LAYER, get_channel_layer

from .filters import ChangeFilter, records_for

logger = logging.getLogger(__name__)

CHANGE_MESSAGE_TYPE = "realtime.change"

SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
CLOSED = "CLOSED"


def change_group_name(schema: str, table: str) -> str:
    """Channel layer group that receives every change of one table."""
    return f"realtime.{schema}.{table}"


@dataclass
class _Binding:
    schema: str
    table: str
    event: str
    filter: Optional[ChangeFilter]
    callback: Callable[[Dict[str, Any]], Any]

    def matches(self, payload: Dict[str, Any]) -> bool:
        if payload.get("schema") != self.schema or payload.get("table") != self.table:
            return False
        event_type = payload.get("eventType")
        if self.event != "*" and self.event != event_type:
            return False
        if self.filter is None:
            return True
        return any(
            self.filter.matches(record)
            for record in records_for(event_type, payload.get("new"), payload.get("old"))
        )


def change_payload(message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "schema": message.get("schema", "public"),
        "table": message.get("table"),
        "eventType": message.get("eventType"),
        "new": message.get("new") or {},
        "old": message.get("old") or {},
        "commit_timestamp": message.get("commit_timestamp"),
    }


class ChannelLayerChannel:

    def __init__(self, name: str, alias: str = DEFAULT_CHANNEL_LAYER, retry_delays: Sequence[float] = (1, 2, 5, 10, 30)):
        self.name = name
        self.alias = alias
        self.retry_delays = tuple(retry_delays)
        self._bindings: List[_Binding] = []
        self._joined: set = set()
        self._layer = None
        self._reply_channel: Optional[str] = None
        self._status_callback: Optional[Callable] = None
        self._task: Optional[asyncio.Task] = None
        self._attempt = 0

    def on_postgres_changes(self, schema: str, table: str, event: str, filter: Optional[str], callback) -> None:
        self._bindings.append(_Binding(schema, table, event.upper(), ChangeFilter.parse(filter), callback))
        if self._reply_channel is not None:
            asyncio.ensure_future(self._join(change_group_name(schema, table)))

    def subscribe(self, status_callback: Callable) -> None:
        if self._task is not None:
            return
        self._status_callback = status_callback
        self._task = asyncio.ensure_future(self._run())

    def unsubscribe(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    # ---------------------- Internals ----------------------

    def _report(self, status: str, error: Optional[BaseException] = None) -> None:
        if self._status_callback is None:
            return
        try:
            self._status_callback(status, error)
        except Exception:
            logger.exception("Status callback of realtime channel %s failed", self.name)

    async def _join(self, group: str) -> None:
        if group in self._joined or self._layer is None or self._reply_channel is None:
            return
        await self._layer.group_add(group, self._reply_channel)
        self._joined.add(group)

    async def _leave_all(self) -> None:
        for group in list(self._joined):
            try:
                await self._layer.group_discard(group, self._reply_channel)
            except Exception:
                logger.warning("Failed to leave group %s for channel %s", group, self.name)
        self._joined.clear()

    async def _run(self) -> None:
        try:
            while True:
                try:
                    await self._listen()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Realtime channel %s failed: %s", self.name, e)
                    self._report(CHANNEL_ERROR, e)
                    await self._leave_all_safely()
                    await self._backoff()
                else:
                    return
        finally:
            await self._leave_all_safely()
            self._report(CLOSED)

    async def _backoff(self) -> None:
        delay = self.retry_delays[min(self._attempt, len(self.retry_delays) - 1)] if self.retry_delays else 0
        self._attempt += 1
        await asyncio.sleep(delay)

    async def _leave_all_safely(self) -> None:
        if self._layer is not None and self._reply_channel is not None:
            await self._leave_all()

    async def _listen(self) -> None:
        self._layer = get_channel_layer(self.alias)
        if self._layer is None:
            raise RuntimeError("No channel layer configured")
        self._reply_channel = await self._layer.new_channel(prefix="realtime")
        for binding in list(self._bindings):
            await self._join(change_group_name(binding.schema, binding.table))
        self._attempt = 0
        self._report(SUBSCRIBED)

        while True:
            message = await self._layer.receive(self._reply_channel)
            if message.get("type") == CHANGE_MESSAGE_TYPE:
                self.dispatch(message)

    def dispatch(self, message: Dict[str, Any]) -> int:
        """Deliver one change message to matching bindings; returns how many matched."""
        payload = change_payload(message)
        delivered = 0
        for binding in list(self._bindings):
            if not binding.matches(payload):
                continue
            delivered += 1
            try:
                binding.callback(payload)
            except Exception:
                logger.exception("Realtime callback failed on channel %s", self.name)
        return delivered


class ChannelLayerTransport:
    """Creates channel-layer backed realtime channels."""

    def __init__(self, alias: str = DEFAULT_CHANNEL_LAYER, retry_delays: Sequence[float] = (1, 2, 5, 10, 30)):
        self.alias = alias
        self.retry_delays = retry_delays

    def channel(self, name: str) -> ChannelLayerChannel:
        return ChannelLayerChannel(name, self.alias, self.retry_delays)
