from django.conf import settings
from rest_framework import serializers

from .broadcast import EVENT_TYPES


class ChangeEventSerializer(serializers.Serializer):
    """Database webhook payload: {type, table, schema, record, old_record}."""
    type = serializers.ChoiceField(choices=EVENT_TYPES)
    table = serializers.CharField(max_length=63)
    schema = serializers.CharField(max_length=63, default="public")
    record = serializers.DictField(required=False, allow_null=True)
    old_record = serializers.DictField(required=False, allow_null=True)
    commit_timestamp = serializers.CharField(required=False, allow_null=True)

    def validate_table(self, value):
        allowed = getattr(settings, "REALTIME_TABLES", ("rides", "ride_offers"))
        if value not in allowed:
            raise serializers.ValidationError(f"Changes of table '{value}' are not published")
        return value

    def validate(self, attrs):
        if attrs["type"] in ("INSERT", "UPDATE") and not attrs.get("record"):
            raise serializers.ValidationError({"record": "record is required for INSERT and UPDATE"})
        if attrs["type"] == "DELETE" and not attrs.get("old_record"):
            raise serializers.ValidationError({"old_record": "old_record is required for DELETE"})
        return attrs
