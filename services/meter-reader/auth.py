"""Bearer-token verification against the hosted identity provider."""

import logging

import httpx
from pydantic import BaseModel

from config import settings
from errors import AuthError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class AuthContext(BaseModel):
    """The caller's identity plus the token forwarded to the backing store."""

    user_id: str
    email: str | None = None
    token: str


class SupabaseAuth:
    """Resolves a bearer token to a user via ``GET /auth/v1/user``."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: int | None = None,
    ):
        conn_timeout = timeout if timeout is not None else settings.CONNECT_TIMEOUT_SECONDS
        self._client = httpx.Client(
            base_url=(base_url or settings.SUPABASE_URL).rstrip("/"),
            headers={"apikey": api_key if api_key is not None else settings.SUPABASE_KEY},
            timeout=float(conn_timeout),
        )

    def close(self):
        self._client.close()

    def verify(self, token: str) -> AuthContext:
        try:
            resp = self._client.get(
                "/auth/v1/user",
                headers={"Authorization": f"{BEARER_PREFIX}{token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Identity provider request failed: %s", e)
            raise AuthError("Authentication failed") from e

        if resp.status_code != 200:
            logger.info("Token rejected by identity provider (%d)", resp.status_code)
            raise AuthError("Invalid or expired token")

        try:
            user = resp.json()
        except ValueError as e:
            raise AuthError("Authentication failed") from e

        if not isinstance(user, dict) or not user.get("id"):
            raise AuthError("Invalid or expired token")

        return AuthContext(user_id=str(user["id"]), email=user.get("email"), token=token)


def bearer_token(authorization: str | None) -> str:
    """Pull the token out of an Authorization header or raise AuthError."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthError("Missing bearer token. Please sign in.")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthError("Missing bearer token. Please sign in.")
    return token
