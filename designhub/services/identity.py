"""
Identity verification for login.

The editor plugin signs users in with its host application's identity provider
and forwards that provider's token together with the profile it reported.
Before a session is issued the claim passes through an ``IdentityVerifier``:

- ``TrustOnFirstUseVerifier`` accepts the reported profile as-is and logs a
  warning (development default)
- ``HttpIdentityVerifier`` posts the token to ``identity_verify_url`` and
  requires the returned user id to match the claimed one
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from designhub.config import settings
from designhub.errors import UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityClaim:
    provider_token: str
    user_id: str
    email: str
    name: str
    avatar_url: Optional[str] = None


class IdentityVerifier(Protocol):
    async def verify(self, claim: IdentityClaim) -> IdentityClaim: ...


class TrustOnFirstUseVerifier:
    """Accepts every claim; only suitable when no verification endpoint exists."""

    _warned = False

    async def verify(self, claim: IdentityClaim) -> IdentityClaim:
        if not TrustOnFirstUseVerifier._warned:
            logger.warning(
                "⚠️ DESIGNHUB_IDENTITY_VERIFY_URL is unset; login claims are trusted without verification"
            )
            TrustOnFirstUseVerifier._warned = True
        return claim


class HttpIdentityVerifier:
    """Checks claims against a remote verification endpoint."""

    def __init__(self, url: str, timeout: Optional[int] = None):
        self.url = url
        self._timeout = float(timeout or settings.identity_verify_timeout)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=5.0))
        return self._client

    async def verify(self, claim: IdentityClaim) -> IdentityClaim:
        try:
            response = await self.client.post(
                self.url,
                headers={"Authorization": f"Bearer {claim.provider_token}"},
                json={"userId": claim.user_id, "email": claim.email},
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Identity verification request failed: {e}")
            raise UnauthorizedError("Identity could not be verified")

        if response.status_code != 200:
            logger.warning(
                f"⚠️ Identity provider rejected login for {claim.user_id}: HTTP {response.status_code}"
            )
            raise UnauthorizedError("Identity could not be verified")

        data = response.json()
        verified_id = data.get("userId") or data.get("user_id")
        if verified_id != claim.user_id:
            logger.warning(
                f"⚠️ Identity mismatch: claimed {claim.user_id}, provider returned {verified_id}"
            )
            raise UnauthorizedError("Identity could not be verified")

        return IdentityClaim(
            provider_token=claim.provider_token,
            user_id=claim.user_id,
            email=data.get("email") or claim.email,
            name=data.get("name") or claim.name,
            avatar_url=data.get("avatarUrl") or claim.avatar_url,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


_verifier: IdentityVerifier | None = None


def get_identity_verifier() -> IdentityVerifier:
    """Return the process-wide verifier, chosen from settings on first use."""
    global _verifier
    if _verifier is None:
        if settings.identity_verify_url:
            _verifier = HttpIdentityVerifier(settings.identity_verify_url)
        else:
            _verifier = TrustOnFirstUseVerifier()
    return _verifier


async def close_identity_verifier() -> None:
    global _verifier
    if isinstance(_verifier, HttpIdentityVerifier):
        await _verifier.close()
    _verifier = None
