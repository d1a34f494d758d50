from __future__ import annotations

import logging
import math
from typing import Any

from airform.errors import Forbidden, NotFound, ValidationError
from airform.fields import field_to_output, normalize_fields
from airform.protocols import FormRepository
from airform.utils import new_ulid, now_utc, to_iso

logger = logging.getLogger(__name__)

_TEXT_KEYS = {
    "title": "title",
    "description": "description",
    "externalBaseId": "external_base_id",
    "externalTableId": "external_table_id",
    "externalBaseName": "external_base_name",
    "externalTableName": "external_table_name",
}


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def form_to_output(form: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": form["id"],
        "userId": form["user_id"],
        "title": form["title"],
        "description": form.get("description", ""),
        "externalBaseId": form["external_base_id"],
        "externalTableId": form["external_table_id"],
        "externalBaseName": form.get("external_base_name", ""),
        "externalTableName": form.get("external_table_name", ""),
        "fields": [field_to_output(field) for field in form.get("fields", [])],
        "isActive": bool(form.get("is_active", True)),
        "submissionCount": int(form.get("submission_count", 0)),
        "createdAt": to_iso(form["created_at"]) if form.get("created_at") else None,
        "updatedAt": to_iso(form["updated_at"]) if form.get("updated_at") else None,
    }


def public_form_output(form: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": form["id"],
        "title": form["title"],
        "description": form.get("description", ""),
        "fields": [field_to_output(field) for field in form.get("fields", [])],
        "externalBaseId": form["external_base_id"],
        "externalTableId": form["external_table_id"],
    }


class FormService:
    def __init__(self, forms: FormRepository) -> None:
        self._forms = forms

    def create(self, owner_id: str, definition: dict[str, Any]) -> dict[str, Any]:
        values = {key: _clean(definition.get(wire)) for wire, key in _TEXT_KEYS.items()}
        missing = [
            wire
            for wire in ("title", "externalBaseId", "externalTableId")
            if not values[_TEXT_KEYS[wire]]
        ]
        if not definition.get("fields"):
            missing.append("fields")
        if missing:
            raise ValidationError(
                "Title, Airtable base ID, table ID, and fields are required",
                [f"{name} is required" for name in missing],
            )
        fields, errors = normalize_fields(definition.get("fields"))
        if errors:
            raise ValidationError("Invalid form fields", errors)

        now = now_utc()
        form = {
            **values,
            "id": new_ulid(),
            "user_id": owner_id,
            "fields": fields,
            "is_active": True,
            "submission_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        self._forms.create_form(form)
        logger.info("Form %s created by user %s", form["id"], owner_id)
        return form

    def list_for_owner(self, owner_id: str, page: int = 1, limit: int = 10) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        forms, total = self._forms.list_forms(owner_id, (page - 1) * limit, limit)
        return {
            "forms": forms,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    def get_by_id(self, form_id: str, requesting_user_id: str | None = None) -> dict[str, Any]:
        """Fetch a form; ownership is only checked when a requesting user is given."""
        form = self._forms.get_form(form_id)
        if not form:
            raise NotFound("Form not found")
        if requesting_user_id is not None and form["user_id"] != requesting_user_id:
            raise Forbidden("Access denied")
        return form

    def get_public_by_id(self, form_id: str) -> dict[str, Any]:
        form = self._forms.get_form(form_id)
        if not form or not form.get("is_active"):
            raise NotFound("Form not found or inactive")
        return form

    def update(self, form_id: str, owner_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        errors: list[str] = []
        for wire, key in _TEXT_KEYS.items():
            if wire not in patch:
                continue
            updates[key] = _clean(patch[wire])
            if key in {"title", "external_base_id", "external_table_id"} and not updates[key]:
                errors.append(f"{wire} cannot be empty")
        if "fields" in patch:
            fields, field_errors = normalize_fields(patch["fields"])
            errors.extend(field_errors)
            updates["fields"] = fields
        if "isActive" in patch:
            if isinstance(patch["isActive"], bool):
                updates["is_active"] = patch["isActive"]
            else:
                errors.append("isActive must be a boolean")
        if errors:
            raise ValidationError("Invalid form update", errors)

        form = self._forms.update_form(form_id, owner_id, updates)
        if form is None:
            raise NotFound("Form not found or access denied")
        return form

    def delete(self, form_id: str, owner_id: str) -> None:
        if not self._forms.delete_form(form_id, owner_id):
            raise NotFound("Form not found or access denied")
        logger.info("Form %s deleted by user %s", form_id, owner_id)

    def record_submission(self, form_id: str) -> None:
        self._forms.increment_submission_count(form_id)
