"""Ride lifecycle vocabulary, feed categories and tab policy."""

from django.db import models


class RideState(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    ACTIVE_PRE_TRIP = 'ACTIVE_PRE_TRIP', 'Active (pre-trip)'
    ACTIVE_EXECUTION = 'ACTIVE_EXECUTION', 'Active (in execution)'
    COMPLETED_INSTANCE = 'COMPLETED_INSTANCE', 'Completed (awaiting payment)'
    COMPLETED_FINAL = 'COMPLETED_FINAL', 'Completed'
    CANCELLED = 'CANCELLED', 'Cancelled'


class ExecutionSubState(models.TextChoices):
    DRIVER_ON_THE_WAY = 'DRIVER_ON_THE_WAY', 'Driver on the way'
    DRIVER_ARRIVED = 'DRIVER_ARRIVED', 'Driver arrived'
    TRIP_STARTED = 'TRIP_STARTED', 'Trip started'
    TRIP_COMPLETED = 'TRIP_COMPLETED', 'Trip completed'


class OfferStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACCEPTED = 'accepted', 'Accepted'
    REJECTED = 'rejected', 'Rejected'


class UserType(models.TextChoices):
    PASSENGER = 'passenger', 'Passenger'
    DRIVER = 'driver', 'Driver'


class PassengerFeed(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACTIVE = 'active', 'Active'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class DriverFeed(models.TextChoices):
    AVAILABLE = 'available', 'Available'
    MY_BIDS = 'my_bids', 'My Bids'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class RideTiming(models.TextChoices):
    INSTANT = 'instant', 'Instant'
    SCHEDULED_SINGLE = 'scheduled_single', 'Scheduled'
    SCHEDULED_RECURRING = 'scheduled_recurring', 'Recurring'


class ServiceType(models.TextChoices):
    TAXI = 'taxi', 'Taxi'
    COURIER = 'courier', 'Courier'
    ERRANDS = 'errands', 'Errands'
    SCHOOL_RUN = 'school_run', 'School Run'


ACTIVE_STATES = frozenset({
    RideState.ACTIVE_PRE_TRIP,
    RideState.ACTIVE_EXECUTION,
    RideState.COMPLETED_INSTANCE,
})

# Legacy textual ride_status values that end a ride, with their canonical state
TERMINAL_RIDE_STATUSES = {
    'trip_completed': RideState.COMPLETED_FINAL,
    'completed': RideState.COMPLETED_FINAL,
    'cancelled': RideState.CANCELLED,
}

LEGACY_ACTIVE_STATUSES = frozenset({
    'accepted',
    'driver_on_way',
    'driver_arrived',
    'trip_started',
})

ACTIVE_OFFER_STATUSES = frozenset({OfferStatus.PENDING, OfferStatus.ACCEPTED})

FEED_CATEGORIES = {
    UserType.PASSENGER: tuple(PassengerFeed.values),
    UserType.DRIVER: tuple(DriverFeed.values),
}

DEFAULT_TAB = {
    UserType.PASSENGER: PassengerFeed.PENDING,
    UserType.DRIVER: DriverFeed.AVAILABLE,
}

# Tabs whose rides are removed as soon as they reach a terminal status
ACTIVE_TABS = frozenset({PassengerFeed.ACTIVE, DriverFeed.IN_PROGRESS})

# Category transitions that move the user to the destination tab automatically
FORCED_TAB_SWITCHES = {
    UserType.PASSENGER: frozenset(),
    UserType.DRIVER: frozenset({(DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS)}),
}

LEGACY_TAB_ALIASES = {
    UserType.PASSENGER: {
        'PENDING': PassengerFeed.PENDING,
        'ACTIVE': PassengerFeed.ACTIVE,
        'COMPLETED': PassengerFeed.COMPLETED,
        'CANCELLED': PassengerFeed.CANCELLED,
    },
    UserType.DRIVER: {
        'AVAILABLE': DriverFeed.AVAILABLE,
        'BID': DriverFeed.MY_BIDS,
        'ACTIVE': DriverFeed.IN_PROGRESS,
        'COMPLETED': DriverFeed.COMPLETED,
        'CANCELLED': DriverFeed.CANCELLED,
    },
}

# UI filter values as sent by the clients
SERVICE_TYPE_ALIASES = {
    'TAXI': ServiceType.TAXI,
    'COURIER': ServiceType.COURIER,
    'ERRANDS': ServiceType.ERRANDS,
    'SCHOOL_RUN': ServiceType.SCHOOL_RUN,
}

RIDE_TIMING_ALIASES = {
    'INSTANT': RideTiming.INSTANT,
    'SCHEDULED': RideTiming.SCHEDULED_SINGLE,
    'RECURRING': RideTiming.SCHEDULED_RECURRING,
}
