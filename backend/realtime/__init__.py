"""
Realtime app for WebSocket feeds and row-change fan-out.

This app provides:
- WebSocket consumers for passenger and driver feeds
- A deduplicated, ref-counted subscription registry over a channel-layer transport
- The change ingress endpoint and publishing helpers
- Access token authentication middleware for WebSocket connections

Key Components:
    - registry.py: SubscriptionRegistry (topic dedup, fan-out, teardown)
    - transport.py: channel-layer realtime channels and change dispatch
    - filters.py: PostgREST-style row filters
    - broadcast.py: publish_change / publish_change_async
    - consumers/: WebSocket consumers (passenger, driver)
    - notifications.py: client notifier used by feed sessions

Usage:
    from realtime.registry import SubscriptionRegistry
    from realtime.transport import ChannelLayerTransport
    from realtime.broadcast import publish_change
"""
