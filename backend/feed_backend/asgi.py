"""
ASGI config for the feed backend.

HTTP goes to Django (health check, change ingress); WebSocket feed
connections are authenticated from their ?token= and routed to the
realtime consumers.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'feed_backend.settings.settings')

# Initialize Django before importing anything that touches models or settings
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from realtime.middleware import BackendTokenAuthMiddleware  # noqa: E402
from realtime.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AllowedHostsOriginValidator(
        BackendTokenAuthMiddleware(URLRouter(websocket_urlpatterns))
    ),
})
