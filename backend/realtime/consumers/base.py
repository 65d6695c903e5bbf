"""Base WebSocket consumers with shared functionality for all consumers."""

import logging
from typing import Dict, Any

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from feeds.exceptions import FeedFilterError
from feeds.session import FeedSession
from realtime.notifications import ConsumerNotifier

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Subclasses should override:
        - on_connect(): custom logic after the socket is accepted
        - handle_message(msg_type, data): handle incoming messages
    """

    async def connect(self):
        self.actor = self.scope.get("actor")

        if self.actor is None:
            await self.close()
            return

        self.user_id = self.actor.user_id
        self.role = self.actor.role

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        try:
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, 'user_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type")
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "message": message,
        })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })


class FeedConsumer(BaseConsumer):
    """
    Feed consumer shared by passengers and drivers.

    Handles:
        - Tab changes, manual refresh, pagination and filters
        - Driver location for the nearby available feed, per-tab ride counts
        - Realtime feed updates pushed by the session's reconciler
        - Ride actions declared by subclasses in `actions`
    """

    user_type: str = None
    # msg_type -> (session coroutine name, required fields)
    actions: Dict[str, tuple] = {}

    def __init__(self, *args, registry=None, client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.registry = registry
        self.client = client
        self.session = None
        self.notifier = None

    async def on_connect(self):
        claimed_type = self.scope.get("actor").role
        if claimed_type in ("passenger", "driver") and claimed_type != self.user_type:
            await self.send_error(f"This endpoint is for {self.user_type}s only")
            await self.close()
            return

        self.notifier = ConsumerNotifier(self)
        self.session = FeedSession(
            self.user_id,
            self.user_type,
            self.notifier,
            registry=self.registry,
            client=self.client,
            access_token=self.scope.get("access_token"),
        )
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "user_type": self.user_type,
            "tab": self.session.active_tab,
        })
        await self.session.start()
        logger.info("%s %s connected to feed", self.user_type, self.user_id)

    async def on_disconnect(self, close_code):
        if self.session is not None:
            self.session.close()
        if self.notifier is not None:
            self.notifier.close()
        logger.info("%s %s disconnected from feed (%s)", self.user_type, getattr(self, "user_id", None), close_code)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "ping":
            await self.send_success("pong")
        elif msg_type == "change_tab":
            await self._handle_change_tab(data)
        elif msg_type == "refresh":
            self.session.manual_refresh()
        elif msg_type == "load_more":
            if not await self.session.load_more():
                await self.send_success("feed_end", tab=self.session.active_tab)
        elif msg_type == "set_filters":
            await self._handle_set_filters(data)
        elif msg_type == "set_location":
            await self._handle_set_location(data)
        elif msg_type == "get_counts":
            await self.session.send_counts()
        elif msg_type in self.actions:
            await self._handle_action(msg_type, data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    async def _handle_change_tab(self, data):
        tab = data.get("tab")
        if not tab:
            await self.send_error("tab is required")
            return
        try:
            self.session.change_tab(tab)
        except FeedFilterError as e:
            await self.send_error(str(e))

    async def _handle_set_filters(self, data):
        try:
            self.session.set_filters(data.get("service_type"), data.get("ride_timing"))
        except FeedFilterError as e:
            await self.send_error(str(e))

    async def _handle_set_location(self, data):
        try:
            self.session.set_location(data.get("latitude"), data.get("longitude"))
        except FeedFilterError as e:
            await self.send_error(str(e))
            return
        await self.send_success("location_set", latitude=self.session.location[0], longitude=self.session.location[1])

    async def _handle_action(self, msg_type, data):
        method_name, required = self.actions[msg_type]
        missing = [name for name in required if not data.get(name)]
        if missing:
            await self.send_error(f"{', '.join(missing)} required for {msg_type}")
            return

        result = await getattr(self.session, method_name)(*(data[name] for name in required))
        await self.send_json({"type": "action_result", "action": msg_type, "result": result.as_dict()})
