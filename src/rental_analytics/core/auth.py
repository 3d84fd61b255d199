"""
Caller identity.

Authentication itself belongs to the hosted auth service; analytics only
asks "who is calling, if anyone" and, for the dashboard, "is that caller an
admin".
"""
import logging
from typing import Optional

import httpx
from fastapi import Request

from .store import TableStore, eq

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "sb-access-token"
USERS_TABLE = "users"


def get_access_token(request: Request) -> Optional[str]:
    """Read a bearer token from the Authorization header or the session cookie."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


class IdentityProvider:
    """Resolve an access token to a user id."""

    async def get_user_id(self, access_token: Optional[str]) -> Optional[str]:
        raise NotImplementedError


class StaticIdentity(IdentityProvider):
    """Always returns the same user id (or None)."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def get_user_id(self, access_token: Optional[str]) -> Optional[str]:
        return self.user_id


class SupabaseAuth(IdentityProvider):
    """Identity provider backed by the hosted auth API (`/auth/v1/user`)."""

    def __init__(self, auth_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth_url = auth_url.rstrip("/")
        self.api_key = api_key
        self._transport = transport

    async def get_user_id(self, access_token: Optional[str]) -> Optional[str]:
        """Return the caller's user id, or None for anonymous or invalid tokens."""
        if not access_token:
            return None

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.auth_url}/user",
                    headers={
                        "apikey": self.api_key,
                        "Authorization": f"Bearer {access_token}",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(f"Identity lookup failed: {e}")
            return None

        if response.status_code != 200:
            return None
        try:
            return response.json().get("id") or None
        except (ValueError, AttributeError):
            logger.warning("Identity lookup returned a malformed body")
            return None


async def get_user_role(store: TableStore, user_id: str) -> Optional[str]:
    """Look up the role column of the users table."""
    rows = await store.select(USERS_TABLE, [eq("id", user_id)], columns="role", limit=1)
    return rows[0].get("role") if rows else None
