"""Refresh of stored OAuth access tokens.

Stored credentials are refreshed through the Google OAuth token endpoint when
the access token is missing or expires within ``REFRESH_MARGIN``. The new
token is written back through the ``CredentialRepository``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from ..executor.errors import CredentialResolutionError
from ..repos.domain import OAuthAccount
from ..repos.interfaces import CredentialRepository
from ..server.core.config import settings

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class TokenRefreshResult:
    access_token: Optional[str]
    refreshed: bool


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def needs_refresh(credential: OAuthAccount, now: Optional[datetime] = None) -> bool:
    if not credential.access_token:
        return True
    if credential.access_token_expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return _as_utc(credential.access_token_expires_at) - now <= REFRESH_MARGIN


async def refresh_token_if_needed(
    request_id: str,
    credential: OAuthAccount,
    credential_id: str,
    repository: CredentialRepository,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TokenRefreshResult:
    """Return a usable access token for ``credential``, refreshing it when needed."""
    if not needs_refresh(credential):
        return TokenRefreshResult(access_token=credential.access_token, refreshed=False)

    if not credential.refresh_token:
        logger.warning("[%s] Credential %s expired and has no refresh token", request_id, credential_id)
        raise CredentialResolutionError(f"Credential {credential_id} has expired and cannot be refreshed")

    cfg = settings.google_oauth
    data = {
        "grant_type": "refresh_token",
        "refresh_token": credential.refresh_token,
        "client_id": cfg.client_id or "",
        "client_secret": cfg.client_secret or "",
    }
    logger.info("[%s] Refreshing OAuth token for credential %s", request_id, credential_id)
    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            r = await client.post(cfg.token_url, data=data)
            r.raise_for_status()
            payload = r.json()
    except httpx.HTTPError as e:
        logger.error("[%s] Token refresh failed for credential %s: %s", request_id, credential_id, e)
        raise CredentialResolutionError(f"Failed to refresh token for credential {credential_id}") from e

    access_token = payload.get("access_token")
    if not access_token:
        raise CredentialResolutionError(f"Token endpoint returned no access token for credential {credential_id}")

    expires_in = payload.get("expires_in")
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
    await repository.update_tokens(
        credential_id,
        access_token=access_token,
        expires_at=expires_at,
        refresh_token=payload.get("refresh_token"),
    )
    return TokenRefreshResult(access_token=access_token, refreshed=True)
