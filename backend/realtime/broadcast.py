"""
Publishing of row changes into the channel layer.

The hosted backend reports every ride/offer change to the ingress endpoint
(realtime.views.ingest_change); from there the change is fanned out to the
per-table group that realtime channels listen on.

Architecture:
1. Backend row change -> webhook POST -> publish_change()
2. group_send to realtime.<schema>.<table>
3. Each subscribed realtime channel filters and dispatches the change
4. Feed reconcilers update their connected clients
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

from .transport import CHANGE_MESSAGE_TYPE, change_group_name

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


def build_change_message(
    table: str,
    event_type: str,
    new: Optional[Dict[str, Any]] = None,
    old: Optional[Dict[str, Any]] = None,
    schema: str = "public",
    commit_timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    event_type = (event_type or "").upper()
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown change event type: {event_type}")
    return {
        "type": CHANGE_MESSAGE_TYPE,
        "schema": schema,
        "table": table,
        "eventType": event_type,
        "new": new or {},
        "old": old or {},
        "commit_timestamp": commit_timestamp or timezone.now().isoformat(),
    }


# ---------------------- Async Publish ----------------------

async def publish_change_async(
    table: str,
    event_type: str,
    new: Optional[Dict[str, Any]] = None,
    old: Optional[Dict[str, Any]] = None,
    schema: str = "public",
    commit_timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Publish one row change to its table group.

    Returns:
        Dict with `published` and, on failure, `reason`
    """
    try:
        message = build_change_message(table, event_type, new, old, schema, commit_timestamp)
    except ValueError as e:
        return {"published": False, "reason": str(e)}

    channel_layer = get_channel_layer()
    if not channel_layer:
        return {"published": False, "reason": "no_channel_layer"}

    group = change_group_name(schema, table)
    try:
        await channel_layer.group_send(group, message)
    except Exception:
        logger.exception("Failed to publish %s change on %s", message["eventType"], group)
        return {"published": False, "reason": "channel_layer_error"}

    logger.debug("Published %s on %s for row %s", message["eventType"], group, (new or old or {}).get("id"))
    return {"published": True, "group": group, "event_type": message["eventType"]}


# ---------------------- Sync Publish ----------------------

def publish_change(
    table: str,
    event_type: str,
    new: Optional[Dict[str, Any]] = None,
    old: Optional[Dict[str, Any]] = None,
    schema: str = "public",
    commit_timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Sync wrapper of publish_change_async for views and scripts."""
    return async_to_sync(publish_change_async)(table, event_type, new, old, schema, commit_timestamp)
