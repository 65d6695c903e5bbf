import logging

from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from .broadcast import publish_change
from .permissions import HasWebhookSecret
from .serializers import ChangeEventSerializer

logger = logging.getLogger(__name__)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([HasWebhookSecret])
def ingest_change(request):
    """
    POST: Row change reported by the hosted backend.

    The change is published to the channel layer, where the realtime channels
    of connected feed sessions pick it up.
    """
    serializer = ChangeEventSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    result = publish_change(
        table=data["table"],
        event_type=data["type"],
        new=data.get("record"),
        old=data.get("old_record"),
        schema=data["schema"],
        commit_timestamp=data.get("commit_timestamp"),
    )
    if not result.get("published"):
        logger.warning("Change on %s not published: %s", data["table"], result.get("reason"))
        return Response(result, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response(result, status=status.HTTP_202_ACCEPTED)
