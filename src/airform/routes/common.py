from __future__ import annotations

from typing import Any

from fastapi import Request

from airform.airtable import AirtableClient
from airform.errors import ValidationError


async def read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def parse_int(value: Any, default: int | None) -> int | None:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_airtable_client(request: Request, access_token: str) -> AirtableClient:
    return AirtableClient(
        access_token,
        transport=request.app.state.http_transport,
        timeout=request.app.state.settings.http_timeout,
    )
