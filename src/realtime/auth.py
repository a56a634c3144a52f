"""Bearer credential validation for the WebSocket handshake.

Tokens are issued by the business layer's login flow; the hub only
verifies the signature and reads the identity claims.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import jwt

from src.realtime.exceptions import AuthRejected
from src.settings import Settings

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class Claims:
    """Identity extracted from a verified token."""

    user_id: str
    role: str
    scope_key: Optional[str] = None


def extract_token(
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
) -> Optional[str]:
    """Find the bearer credential on an upgrade request.

    The ``token`` query parameter wins over the ``Authorization`` header,
    since browsers cannot set headers on a WebSocket upgrade.
    """
    token = query_params.get("token")
    if token:
        return token

    authorization = headers.get("authorization") or ""
    if authorization.lower().startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX):].strip()
        return token or None
    return None


class TokenVerifier:
    """Verifies HMAC-signed JWTs and maps their claims to a :class:`Claims`."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(settings.jwt_secret, settings.jwt_algorithm)

    def verify(self, token: Optional[str]) -> Claims:
        """Decode *token* and return its identity claims.

        Raises:
            AuthRejected: token missing, badly signed, expired, or lacking
                the ``id``/``role`` claims.
        """
        if not token:
            raise AuthRejected("Authentication token required")

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthRejected("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug("Token decode error: %s", e)
            raise AuthRejected("Invalid token")

        return self._claims_from_payload(payload)

    @staticmethod
    def _claims_from_payload(payload: dict[str, Any]) -> Claims:
        user_id = payload.get("id") or payload.get("sub")
        role = payload.get("role")
        if not user_id or not role:
            raise AuthRejected("Invalid token payload")

        scope_key = payload.get("village_key") or payload.get("scope_key")
        return Claims(
            user_id=str(user_id),
            role=str(role),
            scope_key=str(scope_key) if scope_key else None,
        )

    def issue(self, claims: dict[str, Any]) -> str:
        """Sign *claims* with the hub secret.

        Only used by tests and local tooling; production tokens come from the
        login service, which shares the secret.
        """
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)
