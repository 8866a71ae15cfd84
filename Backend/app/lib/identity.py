"""
Bearer token verification against Supabase Auth.

The resolver is the only component that knows how a token becomes a user.
The realtime relay uses `resolve()` (any failure -> None), the HTTP gate uses
`authenticate()` so it can tell the caller which way the check failed.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import (
    AuthenticationError,
    IdentityProviderError,
    InvalidTokenError,
    MissingTokenError,
)
from app.core.logging import log

# Provider statuses that mean "this token is not valid" rather than "the provider is broken":
# 400 malformed JWT, 401/403 expired or revoked, 404 user deleted
REJECTED_STATUSES = {400, 401, 403, 404}


@dataclass
class UserIdentity:
    """A user resolved from a bearer token."""
    id: str
    email: Optional[str] = None
    role: str = "user"
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class SupabaseAuthResolver:
    """
    Resolves access tokens via `GET {url}/auth/v1/user`.

    Every call is bounded by `timeout` seconds end to end, so a hung provider
    surfaces as IdentityProviderError instead of stalling the caller.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def authenticate(self, token: Optional[str]) -> UserIdentity:
        try:
            return await self._verify(token)
        except AuthenticationError:
            raise
        except Exception as e:
            # Closed client, bad URL, unexpected body shape
            raise IdentityProviderError(f"{type(e).__name__}: {e}")

    async def _verify(self, token: Optional[str]) -> UserIdentity:
        if not isinstance(token, str) or not token.strip():
            raise MissingTokenError()
        if not self.url:
            raise IdentityProviderError("SUPABASE_URL is not configured")

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token.strip()}",
        }

        try:
            response = await asyncio.wait_for(
                self._client.get(f"{self.url}/auth/v1/user", headers=headers),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise IdentityProviderError(f"timed out after {self.timeout}s")
        except httpx.TimeoutException:
            raise IdentityProviderError(f"timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"{type(e).__name__}: {e}")

        if response.status_code in REJECTED_STATUSES:
            raise InvalidTokenError()
        if response.status_code != 200:
            raise IdentityProviderError(f"unexpected status {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise IdentityProviderError("provider returned a non-JSON body")

        if not isinstance(body, dict) or not body.get("id"):
            raise InvalidTokenError()

        app_metadata = body.get("app_metadata")
        if not isinstance(app_metadata, dict):
            app_metadata = {}
        return UserIdentity(
            id=str(body["id"]),
            email=body.get("email"),
            role=app_metadata.get("role") or "user",
            attributes=body,
        )

    async def resolve(self, token: Optional[str]) -> Optional[UserIdentity]:
        """Same as authenticate(), but every failure collapses to None."""
        try:
            return await self.authenticate(token)
        except AuthenticationError as e:
            reason = e.details.get("reason") if e.details else None
            log("AUTH", f"Token not accepted: {e.message}" + (f" ({reason})" if reason else ""))
            return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
