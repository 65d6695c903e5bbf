"""
Feeds app: ride feed categorization and realtime reconciliation.

Key Components:
    - rides.py: canonical Ride/Offer shapes and legacy field normalization
    - classifier.py: pure feed classification per actor
    - ordering.py: per-feed timestamp selection and deterministic sorting
    - feed_list.py: tagged (confirmed/optimistic) local feed list
    - offers.py: local mirror of a driver's offers
    - reconciler.py: realtime event reconciliation engine
    - transitions.py: toast/navigation side effects of category transitions
    - session.py: per-connection composition used by the WebSocket consumers

Usage:
    from feeds.classifier import classify_for_passenger, classify_for_driver
    from feeds.ordering import sort_descending
    from feeds.reconciler import FeedReconciler, FeedHandlers
"""
