from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

from airform.fields import visible_fields

ATTACHMENT_ITEM = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "minLength": 1},
        "filename": {"type": "string"},
    },
    "required": ["url"],
}


def build_property(field: dict[str, Any]) -> dict[str, Any]:
    field_type = field["field_type"]
    options = field.get("options") or []
    if field_type == "singleSelect":
        prop: dict[str, Any] = {"type": "string"}
        if options:
            prop["enum"] = list(options)
    elif field_type == "multipleSelect":
        item: dict[str, Any] = {"type": "string"}
        if options:
            item["enum"] = list(options)
        prop = {"type": "array", "items": item, "uniqueItems": True}
    elif field_type == "attachment":
        prop = {"type": "array", "items": ATTACHMENT_ITEM}
    else:
        prop = {"type": "string"}
        if field_type == "multilineText":
            prop["x-multiline"] = True

    if field.get("is_required"):
        if prop["type"] == "array":
            prop["minItems"] = 1
        else:
            prop["minLength"] = 1
    prop["title"] = field.get("question_label") or field["external_field_name"]
    return prop


def schema_from_fields(fields: list[dict[str, Any]]) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for field in fields:
        key = field["external_field_id"]
        properties[key] = build_property(field)
        if field.get("is_required"):
            required.append(key)
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def validate_answers(
    fields: list[dict[str, Any]], answers: dict[str, Any]
) -> tuple[dict[str, Any], list[str]]:
    """Keep answers to visible fields and check them against the form.

    Answers to hidden or unknown fields are dropped, not reported.
    """
    shown = visible_fields(fields, answers)
    cleaned = {
        field["external_field_id"]: answers[field["external_field_id"]]
        for field in shown
        if not _is_empty(answers.get(field["external_field_id"]))
    }
    labels = {field["external_field_id"]: field["question_label"] for field in shown}
    validator = Draft7Validator(schema_from_fields(shown))
    messages: list[str] = []
    for error in sorted(validator.iter_errors(cleaned), key=lambda err: list(err.path)):
        if error.validator == "required":
            missing = error.message.split("'")[1] if "'" in error.message else ""
            messages.append(f"{labels.get(missing, missing)}: this question is required")
            continue
        key = str(error.path[0]) if error.path else ""
        prefix = f"{labels.get(key, key)}: " if key else ""
        messages.append(f"{prefix}{error.message}")
    return cleaned, messages


def record_fields(fields: list[dict[str, Any]], answers: dict[str, Any]) -> dict[str, Any]:
    """Map validated answers onto Airtable field names for record creation."""
    names = {field["external_field_id"]: field["external_field_name"] for field in fields}
    return {names[key]: value for key, value in answers.items() if key in names}
