"""Session tokens and the Airtable OAuth exchange.

The session token is this application's own credential (an HS256 JWT carrying
``userId``). The Airtable access and refresh tokens are only ever held in the
user store and handed to :class:`airform.airtable.AirtableClient`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt

from airform.config import Settings
from airform.errors import ExternalAuthError, InvalidSessionToken
from airform.protocols import UserRepository
from airform.utils import expiry_from_seconds, now_utc

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://airtable.com/oauth2/v1/authorize"
TOKEN_URL = "https://airtable.com/oauth2/v1/token"
WHOAMI_URL = "https://api.airtable.com/v0/meta/whoami"
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenResponse":
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise ExternalAuthError("Token response did not include an access token")
        expires_in = payload.get("expires_in")
        if expires_in in (None, ""):
            expires_in = None
        else:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError) as exc:
                raise ExternalAuthError("Token response has an invalid expires_in") from exc
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=payload.get("refresh_token") or None,
            expires_in=expires_in,
        )


@dataclass(frozen=True)
class ExternalIdentity:
    external_account_id: str
    email: str
    name: str
    profile_image: str | None = None


class TokenService:
    def __init__(
        self,
        settings: Settings,
        users: UserRepository,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._users = users
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.http_timeout, transport=self._transport)

    def build_authorization_url(self, state: str | None = None) -> str:
        params = {
            "client_id": self._settings.airtable_client_id,
            "redirect_uri": self._settings.airtable_redirect_uri,
            "response_type": "code",
            "scope": self._settings.airtable_scopes,
            "state": state or "",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._settings.airtable_redirect_uri,
            },
            "Failed to exchange authorization code for access token",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        return await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "Failed to refresh access token",
        )

    async def _request_token(self, data: dict[str, str], failure: str) -> TokenResponse:
        form = {
            **data,
            "client_id": self._settings.airtable_client_id,
            "client_secret": self._settings.airtable_client_secret,
        }
        try:
            async with self._client() as client:
                response = await client.post(TOKEN_URL, data=form)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Token request failed (%s)", data["grant_type"])
            raise ExternalAuthError(failure) from exc
        return TokenResponse.from_payload(payload)

    async def fetch_external_user_info(self, access_token: str) -> ExternalIdentity:
        try:
            async with self._client() as client:
                response = await client.get(
                    WHOAMI_URL, headers={"Authorization": f"Bearer {access_token}"}
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Fetching Airtable identity failed")
            raise ExternalAuthError("Failed to fetch user information from Airtable") from exc

        if not isinstance(data, dict) or not data.get("id") or not data.get("email"):
            raise ExternalAuthError("Airtable identity is missing id or email")
        return ExternalIdentity(
            external_account_id=str(data["id"]),
            email=str(data["email"]),
            name=str(data.get("name") or data["email"]),
            profile_image=data.get("profilePicUrl"),
        )

    def upsert_user_from_external_identity(
        self, info: ExternalIdentity, tokens: TokenResponse
    ) -> dict[str, Any]:
        user = self._users.upsert_user(
            info.external_account_id,
            {
                "email": info.email.strip().lower(),
                "name": info.name.strip(),
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token,
                "token_expires_at": expiry_from_seconds(tokens.expires_in),
                "profile_image": info.profile_image,
            },
        )
        logger.info("Stored Airtable credentials for user %s", user["id"])
        return user

    def issue_session_token(self, user_id: str, ttl: timedelta | None = None) -> str:
        issued = now_utc()
        lifetime = ttl if ttl is not None else timedelta(days=self._settings.session_ttl_days)
        payload = {"userId": user_id, "iat": issued, "exp": issued + lifetime}
        return jwt.encode(payload, self._settings.jwt_secret, algorithm=JWT_ALGORITHM)

    def verify_session_token(self, token: str) -> str:
        """Return the ``userId`` a valid session token was issued for."""
        try:
            payload = jwt.decode(
                token,
                self._settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidSessionToken() from exc
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidSessionToken()
        return user_id
