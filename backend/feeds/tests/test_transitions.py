from django.test import SimpleTestCase

from feeds.constants import DriverFeed, PassengerFeed, RideState
from feeds.transitions import MAX_TRACKED_RIDES, FeedTransitionController, effect_for, ride_detail_path

from .fakes import FakeScheduler, RecordingNotifier


class TransitionControllerTests(SimpleTestCase):
	def build(self, user_type, user_id):
		self.notifier = RecordingNotifier()
		self.scheduler = FakeScheduler()
		self.controller = FeedTransitionController(user_id, user_type, self.notifier, scheduler=self.scheduler)
		return self.controller

	def test_accepted_offer_toasts_and_navigates_to_active_ride(self):
		self.build("passenger", "p1")

		fired = self.controller.handle_category_change({"id": "r1"}, PassengerFeed.PENDING, PassengerFeed.ACTIVE)

		self.assertTrue(fired)
		self.assertEqual(self.notifier.toasts, [
			("success", "🎉 Offer Accepted!", "Your ride is now active. Driver is on the way!", 5000),
		])
		self.assertEqual(self.notifier.navigations, ["/rides/r1/active"])

	def test_each_transition_fires_once_per_ride(self):
		self.build("passenger", "p1")

		self.controller.handle_category_change({"id": "r1"}, PassengerFeed.ACTIVE, PassengerFeed.COMPLETED)
		again = self.controller.handle_category_change({"id": "r1"}, PassengerFeed.ACTIVE, PassengerFeed.COMPLETED)
		self.controller.handle_category_change({"id": "r2"}, PassengerFeed.ACTIVE, PassengerFeed.COMPLETED)

		self.assertFalse(again)
		self.assertEqual(len(self.notifier.toasts), 2)
		self.assertEqual(self.notifier.navigations, ["/rides/r1/completed", "/rides/r2/completed"])

	def test_cancellation_navigates_after_a_delay(self):
		self.build("passenger", "p1")

		self.controller.handle_category_change({"id": "r1"}, PassengerFeed.ACTIVE, PassengerFeed.CANCELLED)

		self.assertEqual(self.notifier.toasts[0][:2], ("warning", "❌ Ride Cancelled"))
		self.assertEqual(self.notifier.navigations, [])
		self.assertEqual([timer.delay for timer in self.scheduler.pending], [2.0])
		self.scheduler.run_pending()
		self.assertEqual(self.notifier.navigations, ["/rides"])

	def test_pending_navigation_is_cancelled_on_close(self):
		self.build("driver", "d1")
		self.controller.handle_category_change({"id": "r1"}, DriverFeed.IN_PROGRESS, DriverFeed.CANCELLED)

		self.controller.cancel_pending()

		self.assertEqual(self.scheduler.pending, [])
		self.assertEqual(self.notifier.navigations, [])

	def test_fired_navigation_is_released(self):
		self.build("passenger", "p1")
		self.controller.handle_category_change({"id": "r1"}, PassengerFeed.ACTIVE, PassengerFeed.CANCELLED)
		self.assertEqual(self.controller.pending_navigations, 1)

		self.scheduler.run_pending()

		self.assertEqual(self.controller.pending_navigations, 0)

	def test_repeated_cancellation_keeps_one_navigation_per_ride(self):
		self.build("passenger", "p1")
		self.controller.handle_category_change({"id": "r1"}, PassengerFeed.ACTIVE, PassengerFeed.CANCELLED)
		self.controller.handle_category_change({"id": "r1"}, PassengerFeed.PENDING, PassengerFeed.CANCELLED)

		self.assertEqual(len(self.scheduler.pending), 1)
		self.scheduler.run_pending()
		self.assertEqual(self.notifier.navigations, ["/rides"])

	def test_remembered_transitions_are_bounded(self):
		self.build("passenger", "p1")
		for i in range(MAX_TRACKED_RIDES + 1):
			self.controller.handle_category_change({"id": f"r{i}"}, PassengerFeed.PENDING, PassengerFeed.ACTIVE)

		self.assertEqual(len(self.controller._last_fired), MAX_TRACKED_RIDES)
		# r0 was forgotten first, the most recent ride is still guarded
		self.assertFalse(self.controller.handle_category_change({"id": f"r{MAX_TRACKED_RIDES}"}, PassengerFeed.PENDING, PassengerFeed.ACTIVE))
		self.assertTrue(self.controller.handle_category_change({"id": "r0"}, PassengerFeed.PENDING, PassengerFeed.ACTIVE))

	def test_lost_bid_informs_the_driver_without_navigation(self):
		self.build("driver", "d1")

		self.controller.handle_category_change({"id": "r1"}, DriverFeed.MY_BIDS, None)

		self.assertEqual(self.notifier.toasts[0][0], "info")
		self.assertEqual(self.notifier.navigations, [])

	def test_transitions_without_effect_are_silent(self):
		self.build("driver", "d1")

		self.assertFalse(self.controller.handle_category_change({"id": "r1"}, DriverFeed.AVAILABLE, DriverFeed.MY_BIDS))
		self.assertFalse(self.controller.handle_category_change({"id": "r1"}, DriverFeed.MY_BIDS, DriverFeed.MY_BIDS))
		self.assertEqual(self.notifier.toasts, [])

	def test_state_change_is_classified_from_both_snapshots(self):
		self.build("driver", "d1")
		offers = [{"id": "o1", "ride_id": "r1", "driver_id": "d1", "offer_status": "pending"}]
		before = {"id": "r1", "state": RideState.PENDING}
		after = {"id": "r1", "state": RideState.ACTIVE_PRE_TRIP, "driver_id": "d1"}

		self.assertTrue(self.controller.handle_state_change(before, after, offers))
		self.assertEqual(self.notifier.navigations, ["/driver/rides/r1/active"])


class TransitionTableTests(SimpleTestCase):
	def test_cancellation_effect_depends_on_actor(self):
		self.assertEqual(effect_for("driver", DriverFeed.MY_BIDS, DriverFeed.CANCELLED).navigate_to, "/driver/rides")
		self.assertEqual(effect_for("passenger", PassengerFeed.PENDING, PassengerFeed.CANCELLED).navigate_to, "/rides")

	def test_ride_detail_paths(self):
		self.assertEqual(ride_detail_path("passenger", "r1", PassengerFeed.ACTIVE), "/rides/r1/active")
		self.assertEqual(ride_detail_path("driver", "r1", DriverFeed.IN_PROGRESS), "/driver/rides/r1/active")
		self.assertEqual(ride_detail_path("passenger", "r1", PassengerFeed.COMPLETED), "/rides/r1/completed")
		self.assertEqual(ride_detail_path("driver", "r1", DriverFeed.AVAILABLE), "/driver/rides")
