from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from airform.auth import AuthContext, optional_user, require_user
from airform.forms import form_to_output
from airform.routes.common import parse_int, read_json_object

router = APIRouter()


@router.post("/api/forms", tags=["forms"])
async def create_form(request: Request, auth: AuthContext = Depends(require_user)) -> JSONResponse:
    service = request.app.state.form_service
    payload = await read_json_object(request)
    form = service.create(auth.id, payload)
    return JSONResponse({"form": form_to_output(form)}, status_code=201)


@router.get("/api/forms", tags=["forms"])
async def list_forms(request: Request, auth: AuthContext = Depends(require_user)) -> JSONResponse:
    service = request.app.state.form_service
    page = parse_int(request.query_params.get("page"), 1) or 1
    limit = parse_int(request.query_params.get("limit"), 10) or 10
    result = service.list_for_owner(auth.id, page, limit)
    return JSONResponse(
        {
            "forms": [form_to_output(form) for form in result["forms"]],
            "pagination": result["pagination"],
        }
    )


@router.get("/api/forms/{form_id}", tags=["forms"])
async def get_form(
    request: Request, form_id: str, auth: Optional[AuthContext] = Depends(optional_user)
) -> JSONResponse:
    service = request.app.state.form_service
    form = service.get_by_id(form_id, auth.id if auth else None)
    return JSONResponse({"form": form_to_output(form)})


@router.put("/api/forms/{form_id}", tags=["forms"])
async def update_form(
    request: Request, form_id: str, auth: AuthContext = Depends(require_user)
) -> JSONResponse:
    service = request.app.state.form_service
    payload = await read_json_object(request)
    form = service.update(form_id, auth.id, payload)
    return JSONResponse({"form": form_to_output(form)})


@router.delete("/api/forms/{form_id}", tags=["forms"])
async def delete_form(
    request: Request, form_id: str, auth: AuthContext = Depends(require_user)
) -> JSONResponse:
    request.app.state.form_service.delete(form_id, auth.id)
    return JSONResponse({"message": "Form deleted successfully"})
