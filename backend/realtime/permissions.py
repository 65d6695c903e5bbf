# realtime/permissions.py
from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework.permissions import BasePermission


class HasWebhookSecret(BasePermission):
    """
    Allows access only to callers presenting REALTIME_WEBHOOK_SECRET
    in the X-Webhook-Secret header (the hosted backend's database webhooks).
    """
    def has_permission(self, request, view):
        expected = getattr(settings, "REALTIME_WEBHOOK_SECRET", "")
        if not expected:
            return False
        provided = request.headers.get("X-Webhook-Secret", "")
        return constant_time_compare(provided, expected)
