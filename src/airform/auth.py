"""Request authentication for the protected API.

``Authenticator.authenticate`` turns an ``Authorization`` header into an
:class:`AuthContext`, silently refreshing the user's Airtable token when it has
expired. Handlers receive the context through the ``require_user`` and
``optional_user`` dependencies.

Two concurrent requests that both see an expired token will both try to
refresh it. Airtable rotates refresh tokens, so the slower one can fail and
that request is rejected as unauthenticated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Header, Request

from airform.errors import ExternalAuthError, Unauthenticated
from airform.protocols import UserRepository
from airform.tokens import TokenService
from airform.utils import expiry_from_seconds, now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    id: str
    external_account_id: str
    email: str
    name: str
    access_token: str

    @classmethod
    def from_user(cls, user: dict[str, Any]) -> "AuthContext":
        return cls(
            id=user["id"],
            external_account_id=user["external_account_id"],
            email=user["email"],
            name=user["name"],
            access_token=user["access_token"],
        )


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise Unauthenticated("No valid authorization token provided")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated("No valid authorization token provided")
    return parts[1]


class Authenticator:
    def __init__(self, tokens: TokenService, users: UserRepository) -> None:
        self._tokens = tokens
        self._users = users

    async def authenticate(self, authorization: str | None) -> AuthContext:
        user_id = self._tokens.verify_session_token(bearer_token(authorization))
        user = self._users.get_user(user_id)
        if user is None:
            raise Unauthenticated("User not found")
        user = await self.ensure_fresh_token(user)
        return AuthContext.from_user(user)

    async def ensure_fresh_token(self, user: dict[str, Any]) -> dict[str, Any]:
        """Return ``user`` with a usable Airtable access token, refreshing if expired."""
        expires_at = user.get("token_expires_at")
        if expires_at is None or expires_at >= now_utc():
            return user

        refresh_token = user.get("refresh_token")
        if not refresh_token:
            logger.warning("Airtable token expired for user %s with no refresh token", user["id"])
            raise Unauthenticated("Token expired and no refresh token available")

        try:
            tokens = await self._tokens.refresh_access_token(refresh_token)
        except ExternalAuthError as exc:
            logger.warning("Airtable token refresh failed for user %s", user["id"])
            raise Unauthenticated("Failed to refresh access token") from exc

        logger.info("Refreshed Airtable token for user %s", user["id"])
        return self._users.update_tokens(
            user["id"],
            tokens.access_token,
            tokens.refresh_token or refresh_token,
            expiry_from_seconds(tokens.expires_in),
        )


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


async def require_user(
    request: Request, authorization: Optional[str] = Header(None)
) -> AuthContext:
    return await get_authenticator(request).authenticate(authorization)


async def optional_user(
    request: Request, authorization: Optional[str] = Header(None)
) -> AuthContext | None:
    if not authorization:
        return None
    return await get_authenticator(request).authenticate(authorization)
