"""Access to the FEED_REALTIME settings block with defaults."""

from django.conf import settings

DEFAULTS = {
    "DEDUP_WINDOW_SECONDS": 0.5,
    "REFRESH_DEBOUNCE_SECONDS": 0.5,
    "OFFER_REFRESH_DEBOUNCE_SECONDS": 0.3,
    "CANCEL_NAVIGATION_DELAY_SECONDS": 2.0,
    "PAGE_SIZE": 10,
    "NEARBY_RADIUS_KM": 5.0,
}


def feed_setting(name: str):
    """Return a FEED_REALTIME setting, falling back to its default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown feed setting: {name}")
    overrides = getattr(settings, "FEED_REALTIME", None) or {}
    return overrides.get(name, DEFAULTS[name])
