from __future__ import annotations

import logging
from typing import Any

import httpx

from airform.errors import ExternalAPIError
from airform.fields import SUPPORTED_FIELD_TYPES, is_field_type_supported

logger = logging.getLogger(__name__)

API_URL = "https://api.airtable.com/v0"
DEFAULT_MAX_RECORDS = 100
MAX_PAGE_SIZE = 100


def filter_supported_fields(fields: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [field for field in fields if is_field_type_supported(field.get("type"))]


def supported_field_types() -> list[str]:
    return list(SUPPORTED_FIELD_TYPES)


def _optional(target: dict[str, Any], source: dict[str, Any], key: str) -> dict[str, Any]:
    if source.get(key) is not None:
        target[key] = source[key]
    return target


def _record(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": raw.get("id"),
        "fields": raw.get("fields") or {},
        "createdTime": raw.get("createdTime"),
    }


class AirtableClient:
    """Per-request proxy to the Airtable Web API using one user's access token."""

    def __init__(
        self,
        access_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._access_token = access_token
        self._transport = transport
        self._timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=API_URL,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self._access_token}"},
            ) as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.exception("%s: %s %s", failure, method, path)
            raise ExternalAPIError(failure) from exc
        if response.is_error:
            logger.error("%s: %s %s -> %s", failure, method, path, response.status_code)
            raise ExternalAPIError(failure, status=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalAPIError(failure, status=response.status_code) from exc
        if not isinstance(data, dict):
            logger.error("%s: %s %s returned a non-object body", failure, method, path)
            raise ExternalAPIError(failure, status=response.status_code)
        return data

    async def list_bases(self) -> list[dict[str, Any]]:
        bases: list[dict[str, Any]] = []
        params: dict[str, Any] = {}
        while True:
            data = await self._request(
                "GET", "/meta/bases", "Failed to fetch Airtable bases", params=params
            )
            for raw in data.get("bases") or []:
                bases.append(
                    {
                        "id": raw.get("id"),
                        "name": raw.get("name"),
                        "permissionLevel": raw.get("permissionLevel"),
                    }
                )
            offset = data.get("offset")
            if not offset:
                return bases
            params = {"offset": offset}

    async def _raw_tables(self, base_id: str, failure: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/meta/bases/{base_id}/tables", failure)
        return data.get("tables") or []

    async def list_tables(self, base_id: str) -> list[dict[str, Any]]:
        tables = await self._raw_tables(base_id, "Failed to fetch Airtable tables")
        return [
            _optional(
                {"id": raw.get("id"), "name": raw.get("name"), "primaryFieldId": raw.get("primaryFieldId")},
                raw,
                "description",
            )
            for raw in tables
        ]

    async def list_fields(self, base_id: str, table_id: str) -> list[dict[str, Any]]:
        """Fields of one table, restricted to the types a form can render."""
        failure = "Failed to fetch Airtable fields"
        tables = await self._raw_tables(base_id, failure)
        table = next(
            (t for t in tables if t.get("id") == table_id or t.get("name") == table_id),
            None,
        )
        if table is None:
            raise ExternalAPIError(failure, status=404)
        fields = [
            _optional(
                _optional(
                    {"id": raw.get("id"), "name": raw.get("name"), "type": raw.get("type")},
                    raw,
                    "description",
                ),
                raw,
                "options",
            )
            for raw in table.get("fields") or []
        ]
        return filter_supported_fields(fields)

    async def create_record(
        self, base_id: str, table_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        data = await self._request(
            "POST",
            f"/{base_id}/{table_id}",
            "Failed to create Airtable record",
            json={"fields": fields},
        )
        return _record(data)

    async def list_records(
        self,
        base_id: str,
        table_id: str,
        max_records: int | None = None,
        view: str | None = None,
        filter_by_formula: str | None = None,
    ) -> list[dict[str, Any]]:
        limit = max_records or DEFAULT_MAX_RECORDS
        params: dict[str, Any] = {"maxRecords": limit, "pageSize": min(limit, MAX_PAGE_SIZE)}
        if view:
            params["view"] = view
        if filter_by_formula:
            params["filterByFormula"] = filter_by_formula

        records: list[dict[str, Any]] = []
        while len(records) < limit:
            data = await self._request(
                "GET",
                f"/{base_id}/{table_id}",
                "Failed to fetch Airtable records",
                params=params,
            )
            records.extend(_record(raw) for raw in data.get("records") or [])
            offset = data.get("offset")
            if not offset:
                break
            params = {**params, "offset": offset}
        return records[:limit]
