from __future__ import annotations

from typing import Any

SUPPORTED_FIELD_TYPES = (
    "singleLineText",
    "multilineText",
    "singleSelect",
    "multipleSelect",
    "attachment",
)
SELECT_TYPES = {"singleSelect", "multipleSelect"}
CONDITION_OPERATORS = ("equals", "notEquals", "contains")


def is_field_type_supported(field_type: Any) -> bool:
    return field_type in SUPPORTED_FIELD_TYPES


def form_field_from_external(field: dict[str, Any], order: int) -> dict[str, Any]:
    """Default form field for an Airtable field, labelled with the source name."""
    choices = (field.get("options") or {}).get("choices") or []
    result: dict[str, Any] = {
        "externalFieldId": field["id"],
        "externalFieldName": field["name"],
        "fieldType": field["type"],
        "questionLabel": field["name"],
        "isRequired": False,
        "order": order,
    }
    if field["type"] in SELECT_TYPES:
        result["options"] = [choice["name"] for choice in choices if choice.get("name")]
    return result


def _text(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return str(value).strip() if value is not None else ""


def _parse_order(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_fields(raw_fields: Any) -> tuple[list[dict[str, Any]], list[str]]:
    """Validate wire-format field definitions into stored fields.

    Returns the fields sorted by ``order`` and a list of error messages; the
    fields must not be used when errors are present.
    """
    errors: list[str] = []
    if not isinstance(raw_fields, list) or not raw_fields:
        return [], ["At least one field is required"]

    fields: list[dict[str, Any]] = []
    for index, raw in enumerate(raw_fields):
        loc = f"fields[{index}]"
        if not isinstance(raw, dict):
            errors.append(f"{loc}: must be an object")
            continue

        field_id = _text(raw, "externalFieldId")
        field_name = _text(raw, "externalFieldName")
        label = _text(raw, "questionLabel")
        field_type = _text(raw, "fieldType")
        if not field_id:
            errors.append(f"{loc}: externalFieldId is required")
        if not field_name:
            errors.append(f"{loc}: externalFieldName is required")
        if not label:
            errors.append(f"{loc}: questionLabel is required")
        if not is_field_type_supported(field_type):
            errors.append(f"{loc}: unsupported fieldType ({field_type})")

        order = _parse_order(raw.get("order"))
        if raw.get("order") not in (None, "") and order is None:
            errors.append(f"{loc}: order must be an integer")

        options = [
            str(option).strip()
            for option in (raw.get("options") or [])
            if str(option).strip()
        ]

        condition = None
        raw_condition = raw.get("conditionalLogic")
        if raw_condition:
            if not isinstance(raw_condition, dict):
                errors.append(f"{loc}: conditionalLogic must be an object")
            else:
                operator = _text(raw_condition, "operator") or "equals"
                if operator not in CONDITION_OPERATORS:
                    errors.append(f"{loc}: unsupported operator ({operator})")
                depends_on = _text(raw_condition, "dependsOn")
                if not depends_on:
                    errors.append(f"{loc}: conditionalLogic.dependsOn is required")
                condition = {
                    "depends_on": depends_on,
                    "show_when": _text(raw_condition, "showWhen"),
                    "operator": operator,
                }

        fields.append(
            {
                "external_field_id": field_id,
                "external_field_name": field_name,
                "field_type": field_type,
                "question_label": label,
                "is_required": bool(raw.get("isRequired")),
                "options": options if field_type in SELECT_TYPES else [],
                "conditional_logic": condition,
                "order": index if order is None else order,
            }
        )

    seen_orders: set[int] = set()
    seen_ids: set[str] = set()
    for field in fields:
        if field["order"] in seen_orders:
            errors.append(f"duplicate order ({field['order']})")
        seen_orders.add(field["order"])
        if field["external_field_id"] in seen_ids:
            errors.append(f"duplicate externalFieldId ({field['external_field_id']})")
        seen_ids.add(field["external_field_id"])

    by_id = {field["external_field_id"]: field for field in fields}
    for field in fields:
        condition = field["conditional_logic"]
        if not condition or not condition["depends_on"]:
            continue
        if condition["depends_on"] == field["external_field_id"]:
            errors.append(f"{field['external_field_id']}: a field cannot depend on itself")
        elif condition["depends_on"] not in by_id:
            errors.append(
                f"{field['external_field_id']}: dependsOn references an unknown field "
                f"({condition['depends_on']})"
            )
        elif _has_cycle(field, by_id):
            errors.append(f"{field['external_field_id']}: conditional logic forms a cycle")

    fields.sort(key=lambda f: f["order"])
    return fields, errors


def _has_cycle(field: dict[str, Any], by_id: dict[str, dict[str, Any]]) -> bool:
    seen = {field["external_field_id"]}
    current = field
    while current.get("conditional_logic"):
        parent = by_id.get(current["conditional_logic"]["depends_on"])
        if parent is None:
            return False
        if parent["external_field_id"] in seen:
            return True
        seen.add(parent["external_field_id"])
        current = parent
    return False


def field_to_output(field: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {
        "externalFieldId": field["external_field_id"],
        "externalFieldName": field["external_field_name"],
        "fieldType": field["field_type"],
        "questionLabel": field["question_label"],
        "isRequired": bool(field.get("is_required")),
        "order": field["order"],
    }
    if field.get("options"):
        result["options"] = list(field["options"])
    condition = field.get("conditional_logic")
    if condition:
        result["conditionalLogic"] = {
            "dependsOn": condition["depends_on"],
            "showWhen": condition["show_when"],
            "operator": condition["operator"],
        }
    return result


def _matches(answer: Any, expected: str, operator: str) -> bool:
    if isinstance(answer, list):
        values = [str(item) for item in answer]
    elif answer is None or answer == "":
        values = []
    else:
        values = [str(answer)]

    if operator == "contains":
        return any(expected in value for value in values)
    equal = expected in values
    return not equal if operator == "notEquals" else equal


def is_field_visible(
    field: dict[str, Any],
    answers: dict[str, Any],
    fields: list[dict[str, Any]],
) -> bool:
    by_id = {item["external_field_id"]: item for item in fields}
    seen: set[str] = set()
    current = field
    while True:
        condition = current.get("conditional_logic")
        if not condition or not condition.get("depends_on"):
            return True
        if current["external_field_id"] in seen:
            return False
        seen.add(current["external_field_id"])
        parent = by_id.get(condition["depends_on"])
        if parent is None:
            return True
        if not _matches(answers.get(parent["external_field_id"]), condition["show_when"], condition["operator"]):
            return False
        current = parent


def visible_fields(fields: list[dict[str, Any]], answers: dict[str, Any]) -> list[dict[str, Any]]:
    return [field for field in fields if is_field_visible(field, answers, fields)]
