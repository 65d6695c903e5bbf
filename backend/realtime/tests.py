import asyncio
from datetime import timedelta
from unittest.mock import Mock, patch

from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.state import token_backend

from feeds.tests.fakes import FakeTransport
from services.ride_management import FeedPage, RideResult

from .broadcast import build_change_message, publish_change_async
from .consumers import DriverFeedConsumer, PassengerFeedConsumer
from .filters import ChangeFilter
from .middleware import Actor, BackendTokenAuthMiddleware, actor_from_token
from .registry import ChannelState, SubscriptionRegistry
from .transport import ChannelLayerChannel, ChannelLayerTransport


def change(table="rides", event="UPDATE", new=None, old=None):
	return {"type": "realtime.change", "schema": "public", "table": table, "eventType": event, "new": new or {}, "old": old or {}}


class SubscriptionRegistryTests(SimpleTestCase):
	def setUp(self):
		self.transport = FakeTransport()
		self.registry = SubscriptionRegistry(self.transport)

	def test_listeners_of_one_topic_share_a_single_binding(self):
		calls = []
		listeners = [Mock(side_effect=lambda payload, n=n: calls.append(n)) for n in range(3)]
		unsubscribers = [
			self.registry.subscribe_postgres_changes("feed-1", "rides", listener, event="UPDATE", filter="driver_id=eq.d1")
			for listener in listeners
		]

		self.assertEqual(len(self.transport.channels), 1)
		channel = self.transport.channels[0]
		self.assertEqual(len(channel.bindings), 1)
		self.assertEqual(channel.subscribe_calls, 1)
		self.assertEqual(self.registry.listener_count("feed-1"), 3)

		channel.emit("rides", "UPDATE", new={"id": "r1", "driver_id": "d1"})
		self.assertEqual(calls, [0, 1, 2])

		unsubscribers[0]()
		unsubscribers[1]()
		self.assertEqual(channel.unsubscribe_calls, 0)
		self.assertIn("feed-1", self.registry)

		unsubscribers[2]()
		unsubscribers[2]()
		self.assertEqual(channel.unsubscribe_calls, 1)
		self.assertNotIn("feed-1", self.registry)
		self.assertEqual(len(self.registry), 0)

	def test_same_listener_is_registered_once_per_topic(self):
		listener = Mock()
		self.registry.subscribe_postgres_changes("feed-1", "rides", listener)
		self.registry.subscribe_postgres_changes("feed-1", "rides", listener)

		self.transport.channels[0].emit("rides", "INSERT", new={"id": "r1"})

		listener.assert_called_once()

	def test_channel_is_recreated_after_teardown(self):
		unsubscribe = self.registry.subscribe_postgres_changes("feed-1", "rides", Mock())
		unsubscribe()
		self.registry.subscribe_postgres_changes("feed-1", "rides", Mock())

		self.assertEqual(len(self.transport.channels), 2)
		self.assertEqual(self.transport.channels[1].subscribe_calls, 1)

	def test_failing_listener_does_not_stop_fan_out(self):
		failing = Mock(side_effect=RuntimeError("boom"))
		healthy = Mock()
		self.registry.subscribe_postgres_changes("feed-1", "rides", failing)
		self.registry.subscribe_postgres_changes("feed-1", "rides", healthy)

		with self.assertLogs("realtime.registry", level="ERROR"):
			self.transport.channels[0].emit("rides", "UPDATE", new={"id": "r1"})

		healthy.assert_called_once()

	def test_status_listener_keeps_channel_open(self):
		statuses = []
		unsubscribe_change = self.registry.subscribe_postgres_changes("feed-1", "rides", Mock())
		unsubscribe_status = self.registry.subscribe_channel_status("feed-1", statuses.append)
		channel = self.transport.channels[0]
		self.assertEqual(self.registry.channel_state("feed-1"), ChannelState.SUBSCRIBING)

		channel.report("SUBSCRIBED")
		self.assertEqual(self.registry.channel_state("feed-1"), ChannelState.SUBSCRIBED)
		self.assertEqual(statuses, ["SUBSCRIBED"])

		unsubscribe_change()
		self.assertEqual(channel.unsubscribe_calls, 0)
		unsubscribe_status()
		self.assertEqual(channel.unsubscribe_calls, 1)

	def test_invalid_arguments(self):
		with self.assertRaises(ValueError):
			self.registry.subscribe_postgres_changes("", "rides", Mock())
		with self.assertRaises(ValueError):
			self.registry.subscribe_postgres_changes("feed-1", "", Mock())
		with self.assertRaises(TypeError):
			self.registry.subscribe_postgres_changes("feed-1", "rides", "not callable")
		self.assertEqual(self.transport.channels, [])

	def test_dispose_closes_every_channel(self):
		self.registry.subscribe_postgres_changes("feed-1", "rides", Mock())
		self.registry.subscribe_channel_status("feed-2", Mock())

		self.registry.dispose()

		self.assertEqual([channel.unsubscribe_calls for channel in self.transport.channels], [1, 1])
		self.assertEqual(self.registry.channel_names(), [])


class ChangeFilterTests(SimpleTestCase):
	def test_equality_compares_as_text(self):
		row_filter = ChangeFilter.parse("driver_id=eq.42")
		self.assertTrue(row_filter.matches({"driver_id": 42}))
		self.assertFalse(row_filter.matches({"driver_id": 43}))
		self.assertFalse(row_filter.matches({"user_id": 42}))

	def test_in_and_ordering_operators(self):
		self.assertTrue(ChangeFilter.parse("ride_status=in.(pending,accepted)").matches({"ride_status": "accepted"}))
		self.assertTrue(ChangeFilter.parse("fare=gt.10").matches({"fare": "12.5"}))
		self.assertFalse(ChangeFilter.parse("fare=lte.10").matches({"fare": 11}))
		self.assertTrue(ChangeFilter.parse("driver_id=neq.d1").matches({"driver_id": None}))

	def test_invalid_expressions(self):
		for expression in ("driver_id", "driver_id=like.d%", "=eq.1", "driver_id=eq"):
			with self.subTest(expression=expression):
				with self.assertRaises(ValueError):
					ChangeFilter.parse(expression)
		self.assertIsNone(ChangeFilter.parse(None))


class ChannelLayerChannelTests(SimpleTestCase):
	def test_dispatch_matches_event_table_and_filter(self):
		channel = ChannelLayerChannel("feed-1")
		updates, inserts = Mock(), Mock()
		channel.on_postgres_changes("public", "rides", "UPDATE", "driver_id=eq.d1", updates)
		channel.on_postgres_changes("public", "rides", "INSERT", None, inserts)

		self.assertEqual(channel.dispatch(change(new={"id": "r1", "driver_id": "d1"})), 1)
		self.assertEqual(channel.dispatch(change(new={"id": "r2", "driver_id": "d2"})), 0)
		self.assertEqual(channel.dispatch(change(table="ride_offers", new={"driver_id": "d1"})), 0)
		self.assertEqual(channel.dispatch(change(event="INSERT", new={"id": "r3"})), 1)

		updates.assert_called_once()
		self.assertEqual(updates.call_args[0][0]["new"]["id"], "r1")

	def test_update_leaving_the_filter_is_still_delivered(self):
		channel = ChannelLayerChannel("feed-1")
		listener = Mock()
		channel.on_postgres_changes("public", "rides", "UPDATE", "ride_status=eq.pending", listener)

		channel.dispatch(change(new={"id": "r1", "ride_status": "accepted"}, old={"id": "r1", "ride_status": "pending"}))

		listener.assert_called_once()

	def test_callback_errors_are_isolated(self):
		channel = ChannelLayerChannel("feed-1")
		healthy = Mock()
		channel.on_postgres_changes("public", "rides", "*", None, Mock(side_effect=KeyError("x")))
		channel.on_postgres_changes("public", "rides", "*", None, healthy)

		with self.assertLogs("realtime.transport", level="ERROR"):
			channel.dispatch(change())
		healthy.assert_called_once()


class FlakyLayer:
	"""Channel layer whose first calls fail the way a dropped Redis connection does."""

	def __init__(self, new_channel_failures=0, receive_failures=0):
		self.new_channel_failures = new_channel_failures
		self.receive_failures = receive_failures

	async def new_channel(self, prefix="specific"):
		if self.new_channel_failures:
			self.new_channel_failures -= 1
			raise ConnectionError("connection refused")
		return f"{prefix}.flaky!1"

	async def group_add(self, group, channel):
		pass

	async def group_discard(self, group, channel):
		pass

	async def receive(self, channel):
		if self.receive_failures:
			self.receive_failures -= 1
			raise ConnectionError("connection reset")
		await asyncio.Event().wait()


class ChannelLayerReconnectTests(SimpleTestCase):
	async def test_backoff_restarts_after_a_successful_subscribe(self):
		channel = ChannelLayerChannel("feed-1", retry_delays=(0,))
		channel.on_postgres_changes("public", "rides", "UPDATE", None, Mock())
		seen = []
		resubscribed = asyncio.Event()

		def on_status(status, error):
			seen.append((status, channel._attempt))
			if status == "SUBSCRIBED" and len(seen) > 3:
				resubscribed.set()

		with patch("realtime.transport.get_channel_layer", return_value=FlakyLayer(new_channel_failures=2, receive_failures=1)):
			with self.assertLogs("realtime.transport", level="WARNING"):
				channel.subscribe(on_status)
				await asyncio.wait_for(resubscribed.wait(), 1)
			channel.unsubscribe()
			await asyncio.sleep(0.01)

		self.assertEqual(seen, [
			("CHANNEL_ERROR", 0),
			("CHANNEL_ERROR", 1),
			("SUBSCRIBED", 0),
			("CHANNEL_ERROR", 0),
			("SUBSCRIBED", 0),
			("CLOSED", 0),
		])


class ChannelLayerRoundTripTests(SimpleTestCase):
	async def test_published_change_reaches_matching_listener(self):
		registry = SubscriptionRegistry(ChannelLayerTransport(retry_delays=()))
		subscribed = asyncio.Event()
		received = asyncio.Event()
		changes = []

		def on_change(payload):
			changes.append(payload)
			received.set()

		def on_status(status):
			if status == "SUBSCRIBED":
				subscribed.set()

		unsubscribe = registry.subscribe_postgres_changes(
			"feed-passenger-p1", "rides", on_change, event="UPDATE", filter="user_id=eq.p1"
		)
		unsubscribe_status = registry.subscribe_channel_status("feed-passenger-p1", on_status)
		await asyncio.wait_for(subscribed.wait(), 1)

		other = await publish_change_async("rides", "UPDATE", new={"id": "r0", "user_id": "p2"})
		mine = await publish_change_async("rides", "UPDATE", new={"id": "r1", "user_id": "p1"})
		await asyncio.wait_for(received.wait(), 1)

		self.assertTrue(other["published"])
		self.assertEqual(mine["group"], "realtime.public.rides")
		self.assertEqual([payload["new"]["id"] for payload in changes], ["r1"])

		unsubscribe()
		unsubscribe_status()
		await asyncio.sleep(0.05)
		self.assertNotIn("feed-passenger-p1", registry)

	async def test_unknown_event_type_is_not_published(self):
		result = await publish_change_async("rides", "TRUNCATE")
		self.assertEqual(result["published"], False)

	def test_change_message_shape(self):
		message = build_change_message("ride_offers", "insert", new={"id": "o1"})
		self.assertEqual(message["type"], "realtime.change")
		self.assertEqual(message["eventType"], "INSERT")
		self.assertEqual(message["old"], {})
		self.assertTrue(message["commit_timestamp"])


@override_settings(REALTIME_WEBHOOK_SECRET="s3cret")
class IngestChangeViewTests(SimpleTestCase):
	url = "/api/realtime/changes/"

	def setUp(self):
		self.client = APIClient()
		self.payload = {"type": "UPDATE", "table": "rides", "record": {"id": "r1", "state": "PENDING"}}

	def post(self, payload, secret="s3cret"):
		return self.client.post(self.url, payload, format="json", HTTP_X_WEBHOOK_SECRET=secret)

	@patch("realtime.views.publish_change")
	def test_valid_change_is_published(self, publish):
		publish.return_value = {"published": True, "group": "realtime.public.rides", "event_type": "UPDATE"}

		response = self.post(self.payload)

		self.assertEqual(response.status_code, 202)
		publish.assert_called_once()
		self.assertEqual(publish.call_args.kwargs["table"], "rides")
		self.assertEqual(publish.call_args.kwargs["new"], {"id": "r1", "state": "PENDING"})

	@patch("realtime.views.publish_change")
	def test_wrong_secret_is_forbidden(self, publish):
		response = self.post(self.payload, secret="nope")
		self.assertEqual(response.status_code, 403)
		publish.assert_not_called()

	@patch("realtime.views.publish_change")
	def test_unknown_table_is_rejected(self, publish):
		response = self.post({**self.payload, "table": "users"})
		self.assertEqual(response.status_code, 400)
		self.assertIn("table", response.data)

	@patch("realtime.views.publish_change")
	def test_update_without_record_is_rejected(self, publish):
		response = self.post({"type": "UPDATE", "table": "rides"})
		self.assertEqual(response.status_code, 400)

	@patch("realtime.views.publish_change")
	def test_unpublished_change_reports_unavailable(self, publish):
		publish.return_value = {"published": False, "reason": "no_channel_layer"}
		response = self.post(self.payload)
		self.assertEqual(response.status_code, 503)


class TokenMiddlewareTests(SimpleTestCase):
	def token(self, **claims):
		payload = {"sub": "u1", "exp": timezone.now() + timedelta(minutes=5), **claims}
		return token_backend.encode(payload)

	def test_valid_token_identifies_the_actor(self):
		self.assertEqual(actor_from_token(self.token(user_role="driver")), Actor("u1", "driver"))

	def test_invalid_tokens(self):
		self.assertIsNone(actor_from_token("not-a-jwt"))
		self.assertIsNone(actor_from_token(self.token(exp=timezone.now() - timedelta(minutes=1))))
		self.assertIsNone(actor_from_token(self.token(sub="")))

	async def test_middleware_populates_scope(self):
		seen = {}

		async def inner(scope, receive, send):
			seen.update(scope)

		token = self.token(role="passenger")
		await BackendTokenAuthMiddleware(inner)({"type": "websocket", "query_string": f"token={token}".encode()}, None, None)

		self.assertEqual(seen["actor"], Actor("u1", "passenger"))
		self.assertEqual(seen["access_token"], token)

	async def test_missing_token_leaves_no_actor(self):
		seen = {}

		async def inner(scope, receive, send):
			seen.update(scope)

		await BackendTokenAuthMiddleware(inner)({"type": "websocket", "query_string": b""}, None, None)
		self.assertIsNone(seen["actor"])


class FeedConsumerTests(SimpleTestCase):
	def communicator(self, consumer_class, path, actor):
		self.transport = FakeTransport()
		application = consumer_class.as_asgi(registry=SubscriptionRegistry(self.transport), client=Mock())
		communicator = WebsocketCommunicator(application, path)
		communicator.scope["actor"] = actor
		communicator.scope["access_token"] = "token"
		return communicator

	async def test_passenger_connects_and_receives_feed(self):
		communicator = self.communicator(PassengerFeedConsumer, "/ws/feed/passenger/", Actor("p1", "passenger"))
		rides = [{"id": "r1", "user_id": "p1", "state": "PENDING"}]

		with patch("services.ride_management.fetch_feed", return_value=FeedPage(rides)):
			connected, _ = await communicator.connect()
			self.assertTrue(connected)

			hello = await communicator.receive_json_from()
			self.assertEqual(hello, {"type": "connection_established", "user_id": "p1", "user_type": "passenger", "tab": "pending"})
			state = await communicator.receive_json_from()
			self.assertEqual(state["type"], "feed_state")
			self.assertEqual(state["rides"][0]["id"], "r1")

			await communicator.send_json_to({"type": "ping"})
			self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})

		self.assertEqual(self.transport.channels[0].name, "feed-passenger-p1")
		await communicator.disconnect()
		self.assertEqual(self.transport.channels[0].unsubscribe_calls, 1)

	async def test_bid_acceptance_failure_is_reported(self):
		communicator = self.communicator(PassengerFeedConsumer, "/ws/feed/passenger/", Actor("p1", "passenger"))
		failure = RideResult.failure("driver_unavailable", ride_id="r1")

		with patch("services.ride_management.fetch_feed", return_value=FeedPage([])), \
				patch("services.ride_management.accept_driver_bid", return_value=failure):
			await communicator.connect()
			await communicator.receive_json_from()
			await communicator.receive_json_from()

			await communicator.send_json_to({"type": "accept_bid", "ride_id": "r1", "offer_id": "o1", "driver_id": "d1"})
			message = await communicator.receive_json_from()

		self.assertEqual(message["type"], "action_result")
		self.assertEqual(message["action"], "accept_bid")
		self.assertEqual(message["result"]["error"], "driver_unavailable")
		self.assertEqual(message["result"]["title"], "Driver Unavailable")
		await communicator.disconnect()

	async def test_action_with_missing_fields(self):
		communicator = self.communicator(DriverFeedConsumer, "/ws/feed/driver/", Actor("d1", "driver"))

		with patch("services.ride_management.fetch_feed", return_value=FeedPage([])), \
				patch("services.ride_management.fetch_driver_offers", return_value=[]):
			await communicator.connect()
			await communicator.receive_json_from()
			await communicator.receive_json_from()

			await communicator.send_json_to({"type": "advance_trip", "ride_id": "r1"})
			self.assertEqual(await communicator.receive_json_from(), {"type": "error", "message": "step required for advance_trip"})

			await communicator.send_json_to({"type": "change_tab", "tab": "pending"})
			error = await communicator.receive_json_from()
			self.assertEqual(error["type"], "error")

		await communicator.disconnect()

	async def test_driver_location_and_counts(self):
		communicator = self.communicator(DriverFeedConsumer, "/ws/feed/driver/", Actor("d1", "driver"))
		counts = {"available": 3, "my_bids": 0, "in_progress": 1, "completed": 0, "cancelled": 0}

		with patch("services.ride_management.fetch_feed", return_value=FeedPage([])), \
				patch("services.ride_management.fetch_driver_offers", return_value=[]), \
				patch("services.ride_management.fetch_ride_counts", return_value=counts):
			await communicator.connect()
			await communicator.receive_json_from()
			await communicator.receive_json_from()

			await communicator.send_json_to({"type": "set_location", "latitude": "north", "longitude": 77.2})
			error = await communicator.receive_json_from()
			self.assertEqual(error["type"], "error")

			await communicator.send_json_to({"type": "set_location", "latitude": 28.6315, "longitude": 77.2167})
			replies = [await communicator.receive_json_from(), await communicator.receive_json_from()]
			by_type = {reply["type"]: reply for reply in replies}
			self.assertEqual(set(by_type), {"location_set", "feed_state"})
			self.assertEqual(by_type["location_set"]["latitude"], 28.6315)

			await communicator.send_json_to({"type": "get_counts"})
			self.assertEqual(await communicator.receive_json_from(), {"type": "feed_counts", "counts": counts})

		await communicator.disconnect()

	async def test_anonymous_connection_is_rejected(self):
		communicator = self.communicator(DriverFeedConsumer, "/ws/feed/driver/", None)
		connected, _ = await communicator.connect()
		self.assertFalse(connected)

	async def test_wrong_role_is_rejected(self):
		communicator = self.communicator(DriverFeedConsumer, "/ws/feed/driver/", Actor("p1", "passenger"))

		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		self.assertEqual(await communicator.receive_json_from(), {"type": "error", "message": "This endpoint is for drivers only"})
		self.assertEqual((await communicator.receive_output())["type"], "websocket.close")
