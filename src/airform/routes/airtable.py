from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from airform.airtable import AirtableClient, supported_field_types
from airform.auth import AuthContext, require_user
from airform.errors import ValidationError
from airform.fields import form_field_from_external
from airform.routes.common import build_airtable_client, parse_int, read_json_object

router = APIRouter()


def airtable_client(request: Request, auth: AuthContext = Depends(require_user)) -> AirtableClient:
    return build_airtable_client(request, auth.access_token)


@router.get("/api/airtable/bases", tags=["airtable"])
async def get_bases(client: AirtableClient = Depends(airtable_client)) -> JSONResponse:
    return JSONResponse({"bases": await client.list_bases()})


@router.get("/api/airtable/bases/{base_id}/tables", tags=["airtable"])
async def get_tables(base_id: str, client: AirtableClient = Depends(airtable_client)) -> JSONResponse:
    return JSONResponse({"tables": await client.list_tables(base_id)})


@router.get("/api/airtable/bases/{base_id}/tables/{table_id}/fields", tags=["airtable"])
async def get_fields(
    base_id: str, table_id: str, client: AirtableClient = Depends(airtable_client)
) -> JSONResponse:
    fields = await client.list_fields(base_id, table_id)
    return JSONResponse(
        {
            "fields": fields,
            "formFields": [form_field_from_external(field, order) for order, field in enumerate(fields)],
            "supportedFieldTypes": supported_field_types(),
        }
    )


@router.get("/api/airtable/bases/{base_id}/tables/{table_id}/records", tags=["airtable"])
async def get_records(
    request: Request,
    base_id: str,
    table_id: str,
    client: AirtableClient = Depends(airtable_client),
) -> JSONResponse:
    query = request.query_params
    max_records = parse_int(query.get("maxRecords"), None)
    if max_records is not None and max_records < 1:
        raise ValidationError("maxRecords must be a positive integer")
    records = await client.list_records(
        base_id,
        table_id,
        max_records=max_records,
        view=query.get("view") or None,
        filter_by_formula=query.get("filterByFormula") or None,
    )
    return JSONResponse({"records": records})


@router.post("/api/airtable/bases/{base_id}/tables/{table_id}/records", tags=["airtable"])
async def create_record(
    request: Request,
    base_id: str,
    table_id: str,
    client: AirtableClient = Depends(airtable_client),
) -> JSONResponse:
    payload = await read_json_object(request)
    fields = payload.get("fields")
    if not isinstance(fields, dict):
        raise ValidationError("Fields object is required")
    record = await client.create_record(base_id, table_id, fields)
    return JSONResponse({"record": record})
