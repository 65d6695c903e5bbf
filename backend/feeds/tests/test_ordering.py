import random
from datetime import datetime, timezone

from django.test import SimpleTestCase

from feeds.ordering import (
	MISSING_TIMESTAMP,
	feed_name,
	filter_rides_by_distance,
	sort_descending,
	timestamp_for,
	within_radius,
)


def ids(rides):
	return [ride.id if hasattr(ride, "id") else ride["id"] for ride in rides]


class TimestampFallbackTests(SimpleTestCase):
	def test_first_present_field_of_the_chain_is_used(self):
		ride = {"id": "r1", "scheduled_datetime": "2024-03-01T08:00:00Z", "created_at": "2024-01-01T00:00:00Z"}
		self.assertEqual(
			timestamp_for(ride, "passenger_pending"),
			datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc),
		)

	def test_unparseable_values_fall_through(self):
		ride = {"id": "r1", "completed_at": "not-a-date", "requested_at": "2024-02-02T10:00:00"}
		self.assertEqual(
			timestamp_for(ride, "driver_completed"),
			datetime(2024, 2, 2, 10, 0, tzinfo=timezone.utc),
		)

	def test_my_bids_sorts_by_offer_time(self):
		ride = {"id": "r1", "offer_created_at": "2024-05-05T05:05:05Z", "requested_at": "2024-01-01T00:00:00Z"}
		self.assertEqual(timestamp_for(ride, feed_name("driver", "my_bids")).month, 5)

	def test_missing_timestamps(self):
		self.assertEqual(timestamp_for({"id": "r1"}, "driver_available"), MISSING_TIMESTAMP)


class SortPolicyTests(SimpleTestCase):
	def test_newest_first(self):
		rides = [
			{"id": "a", "requested_at": "2024-01-01T10:00:00Z"},
			{"id": "b", "requested_at": "2024-01-03T10:00:00Z"},
			{"id": "c", "requested_at": "2024-01-02T10:00:00Z"},
		]
		self.assertEqual(ids(sort_descending(rides, "driver_available")), ["b", "c", "a"])

	def test_ties_break_by_descending_id_regardless_of_input_order(self):
		rides = [{"id": name, "requested_at": "2024-01-01T10:00:00Z"} for name in ("a", "b", "c", "d")]
		shuffled = list(rides)
		for seed in range(5):
			random.Random(seed).shuffle(shuffled)
			with self.subTest(seed=seed):
				self.assertEqual(ids(sort_descending(shuffled, "driver_available")), ["d", "c", "b", "a"])

	def test_rides_without_timestamp_sort_last(self):
		rides = [{"id": "z"}, {"id": "a", "created_at": "2023-01-01T00:00:00Z"}]
		self.assertEqual(ids(sort_descending(rides, "passenger_completed")), ["a", "z"])

	def test_naive_and_aware_timestamps_compare(self):
		rides = [
			{"id": "naive", "requested_at": "2024-01-01T12:00:00"},
			{"id": "aware", "requested_at": "2024-01-01T11:00:00+00:00"},
		]
		self.assertEqual(ids(sort_descending(rides, "driver_available")), ["naive", "aware"])

	def test_input_is_not_mutated(self):
		rides = [{"id": "a", "created_at": "2024-01-01T00:00:00Z"}, {"id": "b", "created_at": "2024-01-02T00:00:00Z"}]
		sort_descending(rides, "driver_available")
		self.assertEqual(ids(rides), ["a", "b"])


class DistanceFilterTests(SimpleTestCase):
	def test_only_rides_within_radius_are_kept(self):
		rides = [
			{"id": "near", "pickup_latitude": 28.6140, "pickup_longitude": 77.2100},
			{"id": "far", "pickup_latitude": 28.9000, "pickup_longitude": 77.5000},
			{"id": "unknown"},
		]
		nearby = filter_rides_by_distance(rides, 28.6139, 77.2090, radius_km=5)
		self.assertEqual(ids(nearby), ["near"])
		self.assertLess(nearby[0].get("distance_km"), 1)

	def test_within_radius_accepts_short_coordinate_keys(self):
		origin = (28.6139, 77.2090)
		self.assertTrue(within_radius({"id": "r1", "pickup_lat": "28.6140", "pickup_lng": "77.2100"}, origin, 5))
		self.assertFalse(within_radius({"id": "r2", "pickup_lat": 28.9, "pickup_lng": 77.5}, origin, 5))
		self.assertFalse(within_radius({"id": "r3", "pickup_lat": 95, "pickup_lng": 77.2}, origin, 5))
