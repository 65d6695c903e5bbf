from unittest.mock import Mock, patch

import requests
from django.test import SimpleTestCase, override_settings

from feeds.constants import DriverFeed, ExecutionSubState, RideState
from services.backend_rpc import (
	BackendNotConfiguredError,
	BackendRPCClient,
	BackendRPCError,
	BackendUnavailableError,
	RPCFunctionNotFoundError,
	get_backend_client,
)
from services.ride_management import (
	FeedFilterError,
	InvalidActorError,
	InvalidFeedCategoryError,
	InvalidRideStateError,
	accept_driver_bid,
	complete_trip,
	fetch_driver_feed,
	fetch_feed,
	fetch_passenger_feed,
	fetch_ride_counts,
	get_action_error_message,
	map_ride_timing,
	map_service_type,
	transition_ride_status,
)


def response(status_code=200, body=None, text=""):
	mock = Mock(status_code=status_code, text=text)
	mock.content = b"" if body is None else b"{}"
	mock.json.return_value = body
	return mock


class BackendRPCClientTests(SimpleTestCase):
	def setUp(self):
		self.session = Mock()
		self.client = BackendRPCClient("https://backend.example.co/", "anon-key", session=self.session)

	def test_rpc_posts_params_with_api_key(self):
		self.session.request.return_value = response(body=[{"id": "r1"}])

		rows = self.client.rpc("get_passenger_feed", {"p_user_id": "p1"})

		self.assertEqual(rows, [{"id": "r1"}])
		method, url = self.session.request.call_args.args
		kwargs = self.session.request.call_args.kwargs
		self.assertEqual((method, url), ("POST", "https://backend.example.co/rest/v1/rpc/get_passenger_feed"))
		self.assertEqual(kwargs["json"], {"p_user_id": "p1"})
		self.assertEqual(kwargs["headers"]["apikey"], "anon-key")
		self.assertEqual(kwargs["headers"]["Authorization"], "Bearer anon-key")
		self.assertEqual(kwargs["timeout"], 10)

	def test_user_token_is_forwarded(self):
		self.session.request.return_value = response(body={})
		self.client.with_token("user-jwt").rpc("noop")
		headers = self.session.request.call_args.kwargs["headers"]
		self.assertEqual(headers["Authorization"], "Bearer user-jwt")
		self.assertEqual(headers["apikey"], "anon-key")

	def test_select_builds_postgrest_filters(self):
		self.session.request.return_value = response(body=[])

		self.client.select(
			"ride_offers",
			{"driver_id": "d1", "ride_id": ["r1", "r2"], "created_at": "gte.2024-01-01"},
			columns="id,ride_id",
			order="created_at.desc",
		)

		self.assertEqual(self.session.request.call_args.args, ("GET", "https://backend.example.co/rest/v1/ride_offers"))
		self.assertEqual(self.session.request.call_args.kwargs["params"], {
			"select": "id,ride_id",
			"driver_id": "eq.d1",
			"ride_id": "in.(r1,r2)",
			"created_at": "gte.2024-01-01",
			"order": "created_at.desc",
		})

	def test_error_payload_becomes_backend_error(self):
		self.session.request.return_value = response(400, {"code": "P0001", "message": "bad transition"})

		with self.assertRaises(BackendRPCError) as ctx:
			self.client.rpc("transition_ride_status")

		self.assertEqual(ctx.exception.code, "P0001")
		self.assertEqual(ctx.exception.status_code, 400)
		self.assertEqual(ctx.exception.message, "bad transition")

	def test_missing_function(self):
		self.session.request.return_value = response(404, {"code": "PGRST202", "message": "Could not find the function"})
		with self.assertRaises(RPCFunctionNotFoundError):
			self.client.rpc("accept_driver_bid")

	def test_network_failure(self):
		self.session.request.side_effect = requests.ConnectionError("refused")
		with self.assertRaises(BackendUnavailableError) as ctx:
			self.client.rpc("get_driver_feed")
		self.assertEqual(ctx.exception.code, "network_error")

	def test_empty_response(self):
		self.session.request.return_value = response(204)
		self.assertIsNone(self.client.rpc("noop"))

	@override_settings(BACKEND_RPC={"BASE_URL": "", "API_KEY": ""})
	def test_unconfigured_backend(self):
		with self.assertRaises(BackendNotConfiguredError):
			get_backend_client()


class AcceptDriverBidTests(SimpleTestCase):
	def setUp(self):
		self.client = Mock()

	def test_success(self):
		self.client.rpc.return_value = {"success": True, "message": "Bid accepted"}

		result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)

		self.client.rpc.assert_called_once_with("accept_driver_bid", {
			"p_ride_id": "r1",
			"p_offer_id": "o1",
			"p_driver_id": "d1",
			"p_passenger_id": "p1",
		})
		self.assertTrue(result.success)
		self.assertEqual(result.as_dict(), {
			"success": True,
			"message": "Bid accepted",
			"ride_id": "r1",
			"offer_id": "o1",
			"driver_id": "d1",
		})

	def test_busy_driver_gets_table_message(self):
		self.client.rpc.return_value = {"success": False, "error": "driver_unavailable"}

		result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)

		self.assertFalse(result.success)
		self.assertEqual(result.error, "driver_unavailable")
		self.assertEqual(result.message, get_action_error_message("driver_unavailable")["message"])
		data = result.as_dict()
		self.assertEqual((data["title"], data["action"]), ("Driver Unavailable", "refresh_offers"))

	def test_closed_ride_uses_table_message(self):
		self.client.rpc.return_value = {"success": False, "error": "ride_not_available", "message": "row locked by tx 4411"}
		result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)
		self.assertEqual(result.error, "ride_not_available")
		self.assertEqual(result.message, get_action_error_message("ride_not_available")["message"])

	def test_transaction_failure_uses_fixed_message(self):
		self.client.rpc.return_value = {"success": False, "error": "transaction_failed", "message": "deadlock detected"}

		with self.assertLogs("services.ride_management.ride_lifecycle", level="ERROR"):
			result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)

		self.assertEqual(result.message, "Failed to accept bid due to a database error. Please try again.")

	def test_unrecognised_error_code(self):
		self.client.rpc.return_value = {"success": False, "error": "quota_exceeded", "message": "quota exceeded for role anon"}
		result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)
		self.assertEqual(result.error, "unknown_error")
		self.assertEqual(result.message, "We couldn't complete this action. Please try again.")

	def test_backend_error_text_never_reaches_the_caller(self):
		self.client.rpc.side_effect = BackendRPCError("permission denied for function accept_driver_bid", code="42501")

		with self.assertLogs("services.ride_management.ride_lifecycle", level="WARNING") as logs:
			result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)

		self.assertEqual(result.error, "unknown_error")
		self.assertNotIn("permission denied", str(result.as_dict()))
		self.assertEqual(result.as_dict()["title"], "Action Failed")
		self.assertIn("permission denied", logs.output[0])

	def test_rejected_transition_hides_backend_text(self):
		self.client.rpc.return_value = {"success": False, "error": "invalid_transition", "message": "new row violates check constraint"}
		result = complete_trip("r1", "d1", client=self.client)
		self.assertEqual(result.message, get_action_error_message("invalid_transition")["message"])

	def test_exceptions_are_mapped_to_results(self):
		cases = [
			(BackendUnavailableError("refused", code="network_error"), "network_error"),
			(RPCFunctionNotFoundError("missing", code="PGRST202"), "function_not_found"),
			(BackendRPCError("boom"), "unknown_error"),
			(RuntimeError("bug"), "unexpected_error"),
		]
		for exc, error in cases:
			with self.subTest(error=error):
				self.client.rpc.side_effect = exc
				result = accept_driver_bid("r1", "o1", "d1", "p1", client=self.client)
				self.assertFalse(result.success)
				self.assertEqual(result.error, error)
				self.assertEqual(result.ride_id, "r1")


class TransitionTests(SimpleTestCase):
	def setUp(self):
		self.client = Mock()

	def test_complete_trip_moves_to_awaiting_payment(self):
		self.client.rpc.return_value = {"success": True}

		result = complete_trip(7, "d1", client=self.client)

		self.client.rpc.assert_called_once_with("transition_ride_status", {
			"p_ride_id": 7,
			"p_new_state": RideState.COMPLETED_INSTANCE,
			"p_new_sub_state": ExecutionSubState.TRIP_COMPLETED,
			"p_actor_type": "driver",
			"p_actor_id": "d1",
		})
		self.assertTrue(result.success)
		self.assertEqual(result.ride_id, "7")

	def test_rejected_transition(self):
		self.client.rpc.return_value = {"success": False}
		result = transition_ride_status("r1", RideState.CANCELLED, actor_type="passenger", actor_id="p1", client=self.client)
		self.assertEqual(result.error, "invalid_transition")
		self.assertEqual(result.as_dict()["title"], "Action Not Allowed")

	def test_validation(self):
		with self.assertRaises(InvalidRideStateError):
			transition_ride_status("r1", "FINISHED", client=self.client)
		with self.assertRaises(InvalidRideStateError):
			transition_ride_status("r1", RideState.ACTIVE_EXECUTION, "DANCING", client=self.client)
		with self.assertRaises(InvalidActorError):
			transition_ride_status("r1", RideState.CANCELLED, actor_type="admin", client=self.client)
		self.client.rpc.assert_not_called()

	def test_unknown_error_codes_get_generic_copy(self):
		self.assertEqual(get_action_error_message("nope")["title"], "Unexpected Error")


class RideFeedTests(SimpleTestCase):
	def setUp(self):
		self.client = Mock()

	def test_filter_mapping(self):
		self.assertIsNone(map_service_type("ALL"))
		self.assertEqual(map_service_type("SCHOOL_RUN"), "school_run")
		self.assertEqual(map_service_type("courier"), "courier")
		self.assertIsNone(map_ride_timing(None))
		self.assertEqual(map_ride_timing("SCHEDULED"), "scheduled_single")
		with self.assertRaises(FeedFilterError):
			map_ride_timing("SOMETIMES")

	def test_passenger_feed_keeps_only_its_category(self):
		self.client.rpc.return_value = [
			{"id": "r1", "user_id": "p1", "state": "PENDING", "requested_at": "2024-01-01T10:00:00Z"},
			{"id": "r2", "user_id": "p1", "state": "PENDING", "requested_at": "2024-01-01T11:00:00Z"},
			{"id": "r3", "user_id": "p1", "state": "ACTIVE_PRE_TRIP"},
			{"id": "s1", "is_series": True},
		]

		rides = fetch_passenger_feed("p1", "PENDING", service_type="TAXI", page=2, page_size=5, client=self.client)

		self.client.rpc.assert_called_once_with("get_passenger_feed", {
			"p_user_id": "p1",
			"p_feed_category": "pending",
			"p_service_type": "taxi",
			"p_limit": 5,
			"p_offset": 5,
		})
		self.assertEqual([ride.id for ride in rides], ["r2", "r1", "s1"])

	def test_driver_feed_drops_rides_owned_by_another_tab(self):
		self.client.rpc.return_value = [
			{"id": "r1", "state": "PENDING", "requested_at": "2024-01-01T10:00:00Z"},
			{"id": "r2", "state": "PENDING", "requested_at": "2024-01-01T11:00:00Z"},
		]
		self.client.select.return_value = [{"id": "o1", "ride_id": "r2", "driver_id": "d1", "offer_status": "pending"}]

		rides = fetch_driver_feed("d1", DriverFeed.AVAILABLE, ride_timing="SCHEDULED", client=self.client)

		self.assertEqual([ride.id for ride in rides], ["r1"])
		params = self.client.rpc.call_args.args[1]
		self.assertEqual(params["p_ride_timing"], "scheduled_single")
		self.assertEqual(params["p_feed_category"], "available")
		self.assertEqual(self.client.select.call_args.args, ("ride_offers", {"driver_id": "d1", "ride_id": ["r1", "r2"]}))

	def test_driver_feed_uses_known_offers(self):
		self.client.rpc.return_value = [{"id": "r2", "state": "PENDING"}]
		offers = [{"id": "o1", "ride_id": "r2", "driver_id": "d1", "offer_status": "pending"}]

		rides = fetch_driver_feed("d1", DriverFeed.MY_BIDS, offers=offers, client=self.client)

		self.assertEqual([ride.id for ride in rides], ["r2"])
		self.client.select.assert_not_called()

	def test_empty_driver_feed_skips_offer_lookup(self):
		self.client.rpc.return_value = []
		self.assertEqual(fetch_driver_feed("d1", DriverFeed.COMPLETED, client=self.client), [])
		self.client.select.assert_not_called()

	def test_invalid_category_is_rejected_before_any_call(self):
		with self.assertRaises(InvalidFeedCategoryError):
			fetch_feed("driver", "d1", "pending", client=self.client)
		with self.assertRaises(ValueError):
			fetch_feed("admin", "a1", "pending", client=self.client)
		self.client.rpc.assert_not_called()

	def test_slow_feed_query_is_logged(self):
		self.client.rpc.return_value = []
		with patch("services.ride_management.ride_feeds.SLOW_QUERY_SECONDS", -1.0):
			with self.assertLogs("services.ride_management.ride_feeds", level="WARNING"):
				fetch_passenger_feed("p1", "pending", client=self.client)

	def test_ride_counts_per_feed(self):
		self.client.select.return_value = []
		self.client.rpc.side_effect = lambda function, params: (
			[{"id": "r1", "state": "PENDING"}] if params["p_feed_category"] == "available" else []
		)

		counts = fetch_ride_counts("driver", "d1", client=self.client)

		self.assertEqual(counts, {"available": 1, "my_bids": 0, "in_progress": 0, "completed": 0, "cancelled": 0})
		self.assertEqual(self.client.rpc.call_count, 5)
