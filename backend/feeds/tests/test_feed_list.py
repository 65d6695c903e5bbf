from django.test import SimpleTestCase

from feeds.feed_list import CONFIRMED, OPTIMISTIC, FeedList


def ride(ride_id, **fields):
	data = {"id": ride_id, "state": "ACTIVE_EXECUTION", "requested_at": "2024-01-01T10:00:00Z"}
	data.update(fields)
	return data


class FeedListTests(SimpleTestCase):
	def setUp(self):
		self.feed = FeedList("passenger_active", [ride("r1"), ride("r2", requested_at="2024-01-02T10:00:00Z")])

	def test_rides_are_sorted_by_feed_policy(self):
		self.assertEqual([r.id for r in self.feed.rides], ["r2", "r1"])
		self.assertEqual(len(self.feed), 2)

	def test_version_increments_once_per_mutation(self):
		version = self.feed.version
		self.feed.patch("r1", {"execution_sub_state": "DRIVER_ARRIVED"})
		self.assertEqual(self.feed.version, version + 1)
		self.assertFalse(self.feed.patch("missing", {"x": 1}))
		self.assertEqual(self.feed.version, version + 1)

	def test_optimistic_remove_hides_until_rollback(self):
		self.assertTrue(self.feed.remove("r1", origin=OPTIMISTIC))
		self.assertNotIn("r1", self.feed)
		self.assertEqual(self.feed.origin_of("r1"), OPTIMISTIC)

		self.assertTrue(self.feed.rollback("r1"))
		self.assertIn("r1", self.feed)
		self.assertEqual(self.feed.origin_of("r1"), CONFIRMED)

	def test_optimistic_patch_overlays_the_confirmed_snapshot(self):
		self.feed.patch("r1", {"execution_sub_state": "TRIP_STARTED"}, origin=OPTIMISTIC)
		self.assertEqual(self.feed.get("r1").execution_sub_state, "TRIP_STARTED")

		self.feed.rollback("r1")
		self.assertIsNone(self.feed.get("r1").execution_sub_state)

	def test_confirmed_write_overrides_optimistic_state(self):
		self.feed.remove("r1", origin=OPTIMISTIC)
		self.feed.insert(ride("r1", execution_sub_state="DRIVER_ARRIVED"))
		self.assertEqual(self.feed.origin_of("r1"), CONFIRMED)
		self.assertEqual(self.feed.get("r1").execution_sub_state, "DRIVER_ARRIVED")
		self.assertFalse(self.feed.rollback("r1"))

	def test_rollback_of_optimistic_insert_drops_the_ride(self):
		self.feed.insert(ride("r3"), origin=OPTIMISTIC)
		self.assertIn("r3", self.feed)
		self.feed.rollback("r3")
		self.assertNotIn("r3", self.feed)

	def test_confirmed_patch_keeps_unchanged_fields(self):
		self.feed.patch("r2", {"ride_status": "driver_arrived"})
		self.assertEqual(self.feed.get("r2").get("requested_at"), "2024-01-02T10:00:00Z")

	def test_extend_skips_rides_already_listed(self):
		added = self.feed.extend([ride("r2"), ride("r3")])
		self.assertEqual(added, 1)
		self.assertEqual(len(self.feed), 3)

	def test_payload_carries_canonical_state(self):
		payload = FeedList("passenger_active", [{"id": 5, "ride_status": "driver_on_way"}]).as_payload()
		self.assertEqual(payload[0]["id"], "5")
		self.assertEqual(payload[0]["state"], "ACTIVE_EXECUTION")
