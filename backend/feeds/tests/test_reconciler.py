from unittest.mock import Mock, call

from django.test import SimpleTestCase

from feeds.constants import DriverFeed, PassengerFeed, RideState
from feeds.feed_list import FeedList
from feeds.offers import DriverOfferMirror
from feeds.ordering import feed_name
from feeds.reconciler import FeedHandlers, FeedReconciler
from feeds.transitions import FeedTransitionController
from realtime.registry import SubscriptionRegistry

from .fakes import FakeClock, FakeScheduler, FakeTransport, RecordingNotifier


def update(new, old=None):
	return {"schema": "public", "table": "rides", "eventType": "UPDATE", "new": new, "old": old or {"id": new.get("id")}}


def insert(new):
	return {"schema": "public", "table": "rides", "eventType": "INSERT", "new": new, "old": {}}


def offer_event(record, event="UPDATE"):
	return {"schema": "public", "table": "ride_offers", "eventType": event, "new": record, "old": {}}


def passenger_ride(ride_id="r1", **fields):
	data = {"id": ride_id, "user_id": "p1", "requested_at": "2024-01-01T10:00:00Z"}
	data.update(fields)
	return data


def driver_ride(ride_id="r1", **fields):
	data = {"id": ride_id, "user_id": "p9", "requested_at": "2024-01-01T10:00:00Z"}
	data.update(fields)
	return data


class ReconcilerTestCase(SimpleTestCase):
	def build(self, user_type, user_id, tab, rides=(), offers=()):
		self.scheduler = FakeScheduler()
		self.clock = FakeClock()
		self.feed = FeedList(feed_name(user_type, tab), rides)
		self.handlers = FeedHandlers(
			change_tab=Mock(),
			refresh_current_tab=Mock(),
			add_ride=Mock(side_effect=self.feed.insert),
			remove_ride=Mock(side_effect=self.feed.remove),
			update_ride=Mock(side_effect=self.feed.patch),
			get_ride=self.feed.get,
			on_new_data_available=Mock(),
			on_transition=Mock(),
			on_channel_status=Mock(),
		)
		mirror = DriverOfferMirror(user_id, offers) if user_type == "driver" else None
		self.engine = FeedReconciler(
			user_id,
			user_type,
			tab,
			self.handlers,
			mirror,
			scheduler=self.scheduler,
			clock=self.clock,
		)
		return self.engine

	def assertNoListMutation(self):
		self.handlers.add_ride.assert_not_called()
		self.handlers.remove_ride.assert_not_called()
		self.handlers.update_ride.assert_not_called()


class PassengerReconciliationTests(ReconcilerTestCase):
	def test_completed_ride_leaves_active_tab_and_flags_completed(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE, [passenger_ride(state=RideState.ACTIVE_EXECUTION)])

		self.engine.handle_ride_update(update(passenger_ride(state=RideState.ACTIVE_EXECUTION, ride_status="trip_completed")))

		self.handlers.remove_ride.assert_called_once_with("r1")
		self.assertNotIn("r1", self.feed)
		self.assertEqual(self.engine.new_data_tabs, [PassengerFeed.COMPLETED])
		ride, old, new = self.handlers.on_transition.call_args[0]
		self.assertEqual((ride.id, old, new), ("r1", PassengerFeed.ACTIVE, PassengerFeed.COMPLETED))
		self.handlers.change_tab.assert_not_called()
		self.assertEqual(self.scheduler.pending, [])

	def test_update_within_the_viewed_tab_patches_in_place(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE, [passenger_ride(state=RideState.ACTIVE_EXECUTION)])

		self.engine.handle_ride_update(update(passenger_ride(
			state=RideState.ACTIVE_EXECUTION, execution_sub_state="DRIVER_ARRIVED",
		)))

		self.handlers.update_ride.assert_called_once()
		self.assertEqual(self.feed.get("r1").execution_sub_state, "DRIVER_ARRIVED")
		self.handlers.on_transition.assert_not_called()
		self.assertFalse(self.engine.has_new_data_available)

	def test_ride_entering_the_viewed_tab_is_inserted(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE)

		self.engine.handle_ride_update(update(
			passenger_ride(state=RideState.ACTIVE_PRE_TRIP, driver_id="d1"),
			old=passenger_ride(state=RideState.PENDING),
		))

		self.handlers.add_ride.assert_called_once()
		self.assertIn("r1", self.feed)
		_, old, new = self.handlers.on_transition.call_args[0]
		self.assertEqual((old, new), (PassengerFeed.PENDING, PassengerFeed.ACTIVE))

	def test_move_between_other_tabs_only_flags(self):
		self.build("passenger", "p1", PassengerFeed.COMPLETED)

		self.engine.handle_ride_update(update(
			passenger_ride(state=RideState.ACTIVE_PRE_TRIP),
			old=passenger_ride(state=RideState.PENDING),
		))

		self.assertNoListMutation()
		self.assertEqual(self.engine.new_data_tabs, [PassengerFeed.ACTIVE])
		self.handlers.on_new_data_available.assert_called_once()
		self.assertEqual(self.handlers.on_new_data_available.call_args[0][0], PassengerFeed.ACTIVE)

	def test_unplaceable_update_falls_back_to_debounced_refresh(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)

		self.engine.handle_ride_update(update(passenger_ride(user_id="p2", state=RideState.PENDING)))

		self.assertNoListMutation()
		self.assertEqual(len(self.scheduler.pending), 1)
		self.assertEqual(self.scheduler.pending[0].delay, 0.5)
		self.scheduler.run_pending()
		self.handlers.refresh_current_tab.assert_called_once_with(
			{"source": "realtime_debounced", "tab": PassengerFeed.PENDING}
		)

	def test_terminal_ride_is_added_when_viewing_its_tab(self):
		self.build("passenger", "p1", PassengerFeed.COMPLETED)

		self.engine.handle_ride_update(update(passenger_ride(state=RideState.ACTIVE_EXECUTION, ride_status="completed")))

		self.handlers.add_ride.assert_called_once()
		self.assertIn("r1", self.feed)
		self.assertFalse(self.engine.has_new_data_available)

	def test_cancelled_ride_is_cleared_from_active_tab_even_when_unlisted(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE)

		self.engine.handle_ride_update(update(passenger_ride(state=RideState.ACTIVE_PRE_TRIP, ride_status="cancelled")))

		self.handlers.remove_ride.assert_called_once_with("r1")
		self.assertEqual(self.engine.new_data_tabs, [PassengerFeed.CANCELLED])

	def test_duplicate_delivery_mutates_the_list_once(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE)
		event = update(passenger_ride(state=RideState.ACTIVE_PRE_TRIP), old=passenger_ride(state=RideState.PENDING))
		version = self.feed.version

		self.engine.handle_ride_update(event)
		self.clock.advance(0.2)
		self.engine.handle_ride_update(event)

		self.handlers.add_ride.assert_called_once()
		self.assertEqual(self.feed.version, version + 1)
		self.assertEqual(self.handlers.on_transition.call_count, 1)

		self.clock.advance(0.5)
		self.engine.handle_ride_update(event)
		self.handlers.update_ride.assert_called_once()

	def test_handler_failure_is_logged_and_refreshes(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE)
		self.handlers.add_ride.side_effect = RuntimeError("boom")

		with self.assertLogs("feeds.reconciler", level="ERROR"):
			self.engine.handle_ride_update(update(
				passenger_ride(state=RideState.ACTIVE_PRE_TRIP),
				old=passenger_ride(state=RideState.PENDING),
			))
		self.assertEqual(len(self.scheduler.pending), 1)

		self.handlers.add_ride.side_effect = self.feed.insert
		self.engine.handle_ride_update(update(
			passenger_ride("r2", state=RideState.ACTIVE_PRE_TRIP),
			old=passenger_ride("r2", state=RideState.PENDING),
		))
		self.assertIn("r2", self.feed)

	def test_events_raised_while_processing_are_dropped(self):
		self.build("passenger", "p1", PassengerFeed.ACTIVE, [passenger_ride(state=RideState.ACTIVE_EXECUTION)])
		nested = update(passenger_ride("r2", state=RideState.ACTIVE_PRE_TRIP), old=passenger_ride("r2", state=RideState.PENDING))

		def reenter(ride_id, ride):
			self.engine.handle_ride_update(nested)
			return self.feed.patch(ride_id, ride)

		self.handlers.update_ride.side_effect = reenter
		self.engine.handle_ride_update(update(passenger_ride(state=RideState.ACTIVE_EXECUTION, execution_sub_state="TRIP_STARTED")))

		self.handlers.add_ride.assert_not_called()
		self.assertNotIn("r2", self.feed)

	def test_inserts(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)

		self.engine.handle_ride_insert(insert(passenger_ride("r1", state=RideState.PENDING)))
		self.engine.handle_ride_insert(insert(passenger_ride("r2", state=RideState.ACTIVE_PRE_TRIP)))
		self.engine.handle_ride_insert(insert(passenger_ride("r3", user_id="p2", state=RideState.PENDING)))

		self.assertEqual([ride.id for ride in self.feed.rides], ["r1"])
		self.assertEqual(self.engine.new_data_tabs, [PassengerFeed.ACTIVE])
		self.assertEqual(self.scheduler.pending, [])


class DriverReconciliationTests(ReconcilerTestCase):
	def offer(self, status="pending", **fields):
		record = {"id": "o1", "ride_id": "r1", "driver_id": "d1", "offer_status": status}
		record.update(fields)
		return record

	def test_new_bid_moves_ride_from_available_to_my_bids(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE, [driver_ride(state=RideState.PENDING)])

		self.engine.handle_offer_event(offer_event(self.offer(), event="INSERT"))

		self.handlers.remove_ride.assert_called_once_with("r1")
		self.assertEqual(self.engine.new_data_tabs, [DriverFeed.MY_BIDS])
		self.assertEqual(self.engine.offers.get("o1").offer_status, "pending")

	def test_bid_on_unlisted_ride_flags_my_bids(self):
		self.build("driver", "d1", DriverFeed.IN_PROGRESS)

		self.engine.handle_offer_event(offer_event(self.offer(ride_id="r7"), event="INSERT"))

		self.assertNoListMutation()
		self.assertEqual(self.engine.new_data_tabs, [DriverFeed.MY_BIDS])

	def test_assignment_forces_switch_from_my_bids_to_in_progress(self):
		self.build("driver", "d1", DriverFeed.MY_BIDS, [driver_ride(state=RideState.PENDING)], offers=[self.offer()])

		self.engine.handle_ride_update(update(driver_ride(state=RideState.ACTIVE_PRE_TRIP, driver_id="d1")))

		self.handlers.change_tab.assert_called_once_with(
			DriverFeed.IN_PROGRESS,
			{"source": "realtime_tab_switch", "ride_id": "r1", "from": DriverFeed.MY_BIDS},
		)
		self.assertNoListMutation()
		_, old, new = self.handlers.on_transition.call_args[0]
		self.assertEqual((old, new), (DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS))

	def test_accepted_offer_switches_to_in_progress(self):
		self.build("driver", "d1", DriverFeed.MY_BIDS, [driver_ride(state=RideState.PENDING)], offers=[self.offer()])

		self.engine.handle_offer_event(offer_event({"id": "o1", "offer_status": "accepted"}))

		self.handlers.change_tab.assert_called_once_with(
			DriverFeed.IN_PROGRESS,
			{"source": "offer_accepted", "offer_id": "o1", "ride_id": "r1"},
		)
		self.assertEqual(self.engine.offers.get("o1").offer_status, "accepted")
		ride, old, new = self.handlers.on_transition.call_args[0]
		self.assertEqual((ride.id, old, new), ("r1", DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS))

	def test_offer_accepted_before_ride_update_still_toasts_once(self):
		self.build("driver", "d1", DriverFeed.MY_BIDS, [driver_ride(state=RideState.PENDING)], offers=[self.offer()])
		notifier = RecordingNotifier()
		controller = FeedTransitionController("d1", "driver", notifier, scheduler=self.scheduler)
		self.engine.update_handlers(on_transition=controller.handle_category_change)

		self.engine.handle_offer_event(offer_event(self.offer("accepted")))
		# what the session does on change_tab
		self.engine.set_active_tab(DriverFeed.IN_PROGRESS)
		self.feed.remove("r1")
		self.engine.handle_ride_update(update(
			driver_ride(state=RideState.ACTIVE_PRE_TRIP, driver_id="d1"),
			old=driver_ride(state=RideState.PENDING),
		))

		self.assertEqual([toast[1] for toast in notifier.toasts], ["🎉 Your Offer Was Accepted!"])
		self.assertEqual(notifier.navigations, ["/driver/rides/r1/active"])
		self.assertIn("r1", self.feed)

	def test_accepted_offer_outside_my_bids_still_fires_transition_once(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE, offers=[self.offer()])

		self.engine.handle_offer_event(offer_event(self.offer("accepted")))
		self.engine.handle_offer_event(offer_event(self.offer("accepted", created_at="2024-01-01T10:05:00Z")))

		self.handlers.change_tab.assert_not_called()
		self.handlers.on_transition.assert_called_once()
		ride, old, new = self.handlers.on_transition.call_args[0]
		self.assertEqual((ride.id, old, new), ("r1", DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS))

	def test_rejected_offer_refreshes_my_bids_after_short_delay(self):
		self.build("driver", "d1", DriverFeed.MY_BIDS, [driver_ride(state=RideState.PENDING)], offers=[self.offer()])

		self.engine.handle_offer_event(offer_event({"id": "o1", "offer_status": "rejected"}))

		self.assertEqual([timer.delay for timer in self.scheduler.pending], [0.3])
		self.scheduler.run_pending()
		self.handlers.refresh_current_tab.assert_called_once_with(
			{"source": "realtime_debounced", "tab": DriverFeed.MY_BIDS}
		)

	def test_debounced_refresh_is_skipped_after_tab_change(self):
		self.build("driver", "d1", DriverFeed.MY_BIDS, offers=[self.offer()])

		self.engine.handle_offer_event(offer_event({"id": "o1", "offer_status": "rejected"}))
		self.engine.set_active_tab(DriverFeed.AVAILABLE)
		self.scheduler.run_pending()

		self.handlers.refresh_current_tab.assert_not_called()

	def test_offers_of_other_drivers_are_ignored(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE, [driver_ride(state=RideState.PENDING)])

		self.engine.handle_offer_event(offer_event(self.offer(driver_id="d2"), event="INSERT"))

		self.assertNoListMutation()
		self.assertEqual(len(self.engine.offers), 0)

	def test_completed_trip_lands_in_completed(self):
		self.build("driver", "d1", DriverFeed.IN_PROGRESS, [driver_ride(state=RideState.ACTIVE_EXECUTION, driver_id="d1")],
			offers=[self.offer("accepted")])

		self.engine.handle_ride_update(update(driver_ride(state=RideState.PENDING, ride_status="trip_completed", driver_id="d1")))

		self.handlers.remove_ride.assert_called_once_with("r1")
		self.assertEqual(self.engine.new_data_tabs, [DriverFeed.COMPLETED])

	def test_passenger_events_are_not_offer_events(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		self.engine.handle_offer_event(offer_event({"id": "o1", "ride_id": "r1", "driver_id": "d1", "offer_status": "accepted"}))
		self.handlers.change_tab.assert_not_called()


class RefreshAndIndicatorTests(ReconcilerTestCase):
	def test_manual_refresh_clears_flags_and_cancels_debounce(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		self.engine.handle_ride_insert(insert(passenger_ride(state=RideState.ACTIVE_PRE_TRIP)))
		self.engine.debounced_refresh()
		timer = self.scheduler.pending[0]

		self.engine.manual_refresh()

		self.assertTrue(timer.cancelled)
		self.assertFalse(self.engine.has_new_data_available)
		self.handlers.refresh_current_tab.assert_called_once_with({"source": "manual_refresh", "tab": PassengerFeed.PENDING})

	def test_visiting_a_flagged_tab_consumes_its_flag(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		self.engine.handle_ride_insert(insert(passenger_ride("r1", state=RideState.ACTIVE_PRE_TRIP)))
		self.engine.handle_ride_insert(insert(passenger_ride("r2", state=RideState.CANCELLED)))

		self.engine.set_active_tab("ACTIVE")

		self.assertEqual(self.engine.active_tab, PassengerFeed.ACTIVE)
		self.assertEqual(self.engine.indicator(), {
			"has_new_data_available": True,
			"new_data_tabs": [PassengerFeed.CANCELLED],
		})

	def test_debounced_refreshes_coalesce(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		self.engine.debounced_refresh()
		self.engine.debounced_refresh()
		self.assertEqual(len(self.scheduler.pending), 1)

	def test_resubscribe_after_channel_error_refreshes(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE)

		self.engine.handle_channel_status("SUBSCRIBED")
		self.assertEqual(self.scheduler.pending, [])

		self.engine.handle_channel_status("CHANNEL_ERROR")
		self.engine.handle_channel_status("SUBSCRIBED")
		self.assertEqual(len(self.scheduler.pending), 1)
		self.assertEqual(
			self.handlers.on_channel_status.call_args_list,
			[call("SUBSCRIBED"), call("CHANNEL_ERROR"), call("SUBSCRIBED")],
		)

	def test_update_handlers_validates_names(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		replacement = Mock()
		self.engine.update_handlers(refresh_current_tab=replacement)
		self.engine.manual_refresh()
		replacement.assert_called_once()

		with self.assertRaises(TypeError):
			self.engine.update_handlers(not_a_handler=Mock())
		with self.assertRaises(TypeError):
			self.engine.update_handlers(add_ride="nope")

	def test_unknown_user_type_is_rejected(self):
		with self.assertRaises(ValueError):
			FeedReconciler("u1", "admin")


class SubscriptionTests(ReconcilerTestCase):
	def test_driver_subscribes_ride_and_offer_topics_on_one_channel(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE)
		transport = FakeTransport()
		registry = SubscriptionRegistry(transport)

		self.engine.attach(registry)

		self.assertEqual(len(transport.channels), 1)
		channel = transport.channels[0]
		self.assertEqual(channel.name, "feed-driver-d1")
		self.assertEqual(len(channel.bindings), 6)
		self.assertEqual(channel.subscribe_calls, 1)
		self.assertIn("ride_status=eq.pending", {binding["filter"] for binding in channel.bindings})

		self.engine.dispose()
		self.assertEqual(channel.unsubscribe_calls, 1)
		self.assertNotIn("feed-driver-d1", registry)

	def test_change_matching_two_topics_is_applied_once(self):
		self.build("driver", "d1", DriverFeed.AVAILABLE)
		transport = FakeTransport()
		self.engine.attach(SubscriptionRegistry(transport))

		transport.channels[0].emit("rides", "INSERT", new=driver_ride(state=RideState.PENDING))

		self.handlers.add_ride.assert_called_once()
		self.assertIn("r1", self.feed)

	def test_passenger_only_watches_own_rides(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		transport = FakeTransport()
		self.engine.attach(SubscriptionRegistry(transport))

		filters = {binding["filter"] for binding in transport.channels[0].bindings}
		self.assertEqual(filters, {"user_id=eq.p1"})

	def test_channel_status_reaches_the_engine(self):
		self.build("passenger", "p1", PassengerFeed.PENDING)
		transport = FakeTransport()
		self.engine.attach(SubscriptionRegistry(transport))

		transport.channels[0].report("SUBSCRIBED")

		self.handlers.on_channel_status.assert_called_once_with("SUBSCRIBED")
