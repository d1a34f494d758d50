from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from airform.errors import ExternalAuthError, NotFound, Unauthenticated, ValidationError
from airform.forms import public_form_output
from airform.routes.common import build_airtable_client, read_json_object
from airform.schema import record_fields, validate_answers

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/public/forms/{form_id}", tags=["public"])
async def get_public_form(request: Request, form_id: str) -> JSONResponse:
    form = request.app.state.form_service.get_public_by_id(form_id)
    return JSONResponse({"form": public_form_output(form)})


@router.post("/api/public/forms/{form_id}/submissions", tags=["public"])
async def submit_form(request: Request, form_id: str) -> JSONResponse:
    service = request.app.state.form_service
    form = service.get_public_by_id(form_id)

    payload = await read_json_object(request)
    answers = payload.get("answers", {})
    if not isinstance(answers, dict):
        raise ValidationError("answers must be an object")
    cleaned, errors = validate_answers(form["fields"], answers)
    if errors:
        raise ValidationError("Submission failed validation", errors)

    owner = request.app.state.storage.users.get_user(form["user_id"])
    if not owner:
        raise NotFound("Form not found or inactive")
    try:
        owner = await request.app.state.authenticator.ensure_fresh_token(owner)
    except Unauthenticated as exc:
        raise ExternalAuthError("The form owner must reconnect Airtable") from exc

    client = build_airtable_client(request, owner["access_token"])
    record = await client.create_record(
        form["external_base_id"],
        form["external_table_id"],
        record_fields(form["fields"], cleaned),
    )
    service.record_submission(form_id)
    logger.info("Submission for form %s stored as record %s", form_id, record["id"])
    return JSONResponse(
        {"recordId": record["id"], "createdTime": record["createdTime"]}, status_code=201
    )
