"""WebSocket authentication middleware for access tokens issued by the hosted backend."""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs

from channels.middleware import BaseMiddleware
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import UntypedToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Authenticated user of a WebSocket connection."""
    user_id: str
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return True


def actor_from_token(raw_token: str) -> Optional[Actor]:
    """Verify signature and expiry of a JWT and return the actor it identifies."""
    try:
        token = UntypedToken(raw_token)
    except TokenError as e:
        logger.debug("JWT auth failed: %s", e)
        return None

    user_id = token.payload.get(api_settings.USER_ID_CLAIM)
    if not user_id:
        logger.debug("JWT has no %s claim", api_settings.USER_ID_CLAIM)
        return None
    role = token.payload.get("user_role") or token.payload.get("role")
    return Actor(user_id=str(user_id), role=role)


class BackendTokenAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections from a JWT in the querystring (?token=...).

    Sets scope["actor"] (None when missing/invalid) and scope["access_token"],
    which is forwarded to backend RPCs so row-level security applies.
    """

    async def __call__(self, scope, receive, send):
        query_string = scope.get("query_string", b"").decode()
        params = parse_qs(query_string)

        scope["actor"] = None
        scope["access_token"] = None

        token_list = params.get("token")
        if token_list:
            actor = actor_from_token(token_list[0])
            if actor is not None:
                scope["actor"] = actor
                scope["access_token"] = token_list[0]

        return await super().__call__(scope, receive, send)
