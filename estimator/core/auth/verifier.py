"""Bearer token verification against the Supabase auth server.

The verifier asks ``{SUPABASE_URL}/auth/v1/user`` who owns a token. Any
non-200 answer or transport failure means the token is not accepted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email}


class TokenVerifier:
    """Resolves a bearer token to an ``AuthUser``."""

    def __init__(
        self,
        supabase_url: Optional[str],
        anon_key: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (supabase_url or "").rstrip("/")
        self.anon_key = anon_key or ""
        self._client = client or httpx.AsyncClient(timeout=timeout)
        if not self.base_url:
            logger.warning("SUPABASE_URL is not set; every token will be rejected")

    async def verify(self, token: str) -> AuthUser:
        if not token:
            raise AuthenticationError("Authentication token is required")
        if not self.base_url:
            raise AuthenticationError("Invalid or expired authentication token")

        try:
            response = await self._client.get(
                f"{self.base_url}/auth/v1/user",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {token}",
                },
            )
        except httpx.RequestError as e:
            logger.warning(f"Auth server request failed: {e}")
            raise AuthenticationError("Invalid or expired authentication token") from e

        if response.status_code != 200:
            logger.debug(f"Auth server rejected token ({response.status_code})")
            raise AuthenticationError("Invalid or expired authentication token")

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError("Invalid or expired authentication token") from e

        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid or expired authentication token")
        return AuthUser(id=str(user_id), email=payload.get("email"))

    async def aclose(self) -> None:
        await self._client.aclose()
