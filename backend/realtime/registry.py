"""
Deduplicated, reference-counted realtime subscriptions.

Any number of consumers can subscribe to the same (channel, schema, table,
event, filter) topic; the registry opens one transport channel per channel
name, attaches one handler per topic and fans each change out to every
listener in registration order. The transport channel is closed and evicted
once its last listener (topic or status) unsubscribes.

Usage:
    registry = SubscriptionRegistry(ChannelLayerTransport())
    unsubscribe = registry.subscribe_postgres_changes(
        "feed-driver-42", "rides", on_change, event="UPDATE", filter="driver_id=eq.42"
    )
    ...
    unsubscribe()
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ChannelState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


def topic_key(schema: str, table: str, event: str, filter: Optional[str]) -> str:
    return f"{schema}:{table}:{event}:{filter or ''}"


@dataclass
class _Topic:
    # dict as an insertion-ordered set of listeners
    listeners: Dict[Callable, None] = field(default_factory=dict)


@dataclass
class _ChannelEntry:
    name: str
    channel: Any
    state: ChannelState = ChannelState.UNINITIALIZED
    last_status: Optional[str] = None
    topics: Dict[str, _Topic] = field(default_factory=dict)
    status_listeners: Dict[Callable, None] = field(default_factory=dict)

    @property
    def listener_count(self) -> int:
        count = sum(len(topic.listeners) for topic in self.topics.values())
        return count + len(self.status_listeners)


def _fan_out(listeners: Dict[Callable, None], argument: Any, what: str) -> None:
    for listener in list(listeners):
        try:
            listener(argument)
        except Exception:
            logger.exception("Realtime %s listener failed", what)


class SubscriptionRegistry:
    """Registry of open transport channels, owned by whoever constructs it."""

    def __init__(self, transport):
        self.transport = transport
        self._channels: Dict[str, _ChannelEntry] = {}

    # ---------------------- Channel lifecycle ----------------------

    def _ensure_channel(self, channel_name: str) -> _ChannelEntry:
        entry = self._channels.get(channel_name)
        if entry is None:
            entry = _ChannelEntry(name=channel_name, channel=self.transport.channel(channel_name))
            self._channels[channel_name] = entry
        return entry

    def _start(self, entry: _ChannelEntry) -> None:
        if entry.state is not ChannelState.UNINITIALIZED:
            return
        entry.state = ChannelState.SUBSCRIBING

        def on_status(status, error=None):
            entry.last_status = status
            if status == "SUBSCRIBED":
                entry.state = ChannelState.SUBSCRIBED
            elif error is not None:
                logger.warning("Realtime channel %s reported %s: %s", entry.name, status, error)
            _fan_out(entry.status_listeners, status, "status")

        entry.channel.subscribe(on_status)
        logger.debug("Realtime channel %s subscribing", entry.name)

    def _release(self, entry: _ChannelEntry) -> None:
        if entry.listener_count > 0:
            return
        if self._channels.get(entry.name) is not entry:
            return
        del self._channels[entry.name]
        try:
            entry.channel.unsubscribe()
        except Exception:
            logger.exception("Failed to close realtime channel %s", entry.name)
        logger.debug("Realtime channel %s closed", entry.name)

    # ---------------------- Public API ----------------------

    def subscribe_postgres_changes(
        self,
        channel_name: str,
        table: str,
        listener: Callable[[Dict[str, Any]], Any],
        schema: str = "public",
        event: str = "*",
        filter: Optional[str] = None,
    ) -> Callable[[], None]:
        """Add a listener for row changes; returns an idempotent unsubscribe callable."""
        if not channel_name:
            raise ValueError("channel_name is required")
        if not table:
            raise ValueError("table is required")
        if not callable(listener):
            raise TypeError("listener must be callable")

        entry = self._ensure_channel(channel_name)
        key = topic_key(schema, table, event, filter)
        topic = entry.topics.get(key)
        if topic is None:
            topic = _Topic()
            entry.topics[key] = topic
            # Attached once per topic, kept until the channel itself is closed
            entry.channel.on_postgres_changes(
                schema=schema,
                table=table,
                event=event,
                filter=filter,
                callback=lambda payload: _fan_out(topic.listeners, payload, key),
            )
        topic.listeners[listener] = None
        self._start(entry)

        def unsubscribe():
            if listener not in topic.listeners:
                return
            del topic.listeners[listener]
            self._release(entry)

        return unsubscribe

    def subscribe_channel_status(self, channel_name: str, listener: Callable[[str], Any]) -> Callable[[], None]:
        """Add a listener for channel status changes (SUBSCRIBED, CHANNEL_ERROR, CLOSED, ...)."""
        if not channel_name:
            raise ValueError("channel_name is required")
        if not callable(listener):
            raise TypeError("listener must be callable")

        entry = self._ensure_channel(channel_name)
        entry.status_listeners[listener] = None
        self._start(entry)

        def unsubscribe():
            if listener not in entry.status_listeners:
                return
            del entry.status_listeners[listener]
            self._release(entry)

        return unsubscribe

    # ---------------------- Introspection ----------------------

    def __contains__(self, channel_name: str) -> bool:
        return channel_name in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    def channel_state(self, channel_name: str) -> ChannelState:
        entry = self._channels.get(channel_name)
        return entry.state if entry else ChannelState.UNINITIALIZED

    def listener_count(self, channel_name: str) -> int:
        entry = self._channels.get(channel_name)
        return entry.listener_count if entry else 0

    def channel_names(self) -> List[str]:
        return list(self._channels)

    def dispose(self) -> None:
        """Close every channel regardless of remaining listeners."""
        entries, self._channels = list(self._channels.values()), {}
        for entry in entries:
            try:
                entry.channel.unsubscribe()
            except Exception:
                logger.exception("Failed to close realtime channel %s", entry.name)
