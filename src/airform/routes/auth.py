from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from airform.auth import AuthContext, require_user
from airform.errors import AirformError, NotFound, ValidationError
from airform.utils import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/auth/airtable", tags=["auth"])
async def initiate_airtable_auth(request: Request, state: Optional[str] = None) -> JSONResponse:
    tokens = request.app.state.tokens
    return JSONResponse(
        {
            "authUrl": tokens.build_authorization_url(state),
            "message": "Redirect user to this URL for Airtable authentication",
        }
    )


@router.get("/api/auth/airtable/callback", tags=["auth"])
async def airtable_callback(
    request: Request, code: Optional[str] = None, state: Optional[str] = None
) -> RedirectResponse:
    if not code:
        raise ValidationError("Authorization code not provided")
    settings = request.app.state.settings
    tokens = request.app.state.tokens
    try:
        token_response = await tokens.exchange_code(code)
        identity = await tokens.fetch_external_user_info(token_response.access_token)
        user = tokens.upsert_user_from_external_identity(identity, token_response)
    except AirformError as exc:
        logger.warning("Airtable login failed: %s", exc.message)
        query = urlencode({"message": "Authentication failed"})
        return RedirectResponse(f"{settings.frontend_url}/auth/error?{query}", status_code=302)

    params = {"token": tokens.issue_session_token(user["id"])}
    if state:
        params["state"] = state
    return RedirectResponse(
        f"{settings.frontend_url}/auth/callback?{urlencode(params)}", status_code=302
    )


@router.get("/api/auth/me", tags=["auth"])
async def current_user(request: Request, auth: AuthContext = Depends(require_user)) -> JSONResponse:
    user = request.app.state.storage.users.get_user(auth.id)
    if not user:
        raise NotFound("User not found")
    return JSONResponse(
        {
            "id": user["id"],
            "externalAccountId": user["external_account_id"],
            "email": user["email"],
            "name": user["name"],
            "profileImage": user.get("profile_image"),
            "createdAt": to_iso(user["created_at"]) if user.get("created_at") else None,
        }
    )


@router.post("/api/auth/logout", tags=["auth"])
async def logout() -> JSONResponse:
    # Session tokens are stateless; the client discards its copy.
    return JSONResponse({"message": "Logout successful"})
