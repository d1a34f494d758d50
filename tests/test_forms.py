from __future__ import annotations

import pytest

from airform.errors import Forbidden, NotFound, ValidationError
from airform.forms import FormService, form_to_output, public_form_output


@pytest.fixture
def service(storage) -> FormService:
    return FormService(storage.forms)


def test_create_assigns_positional_order_and_defaults(service, form_payload):
    form = service.create("owner-1", form_payload)
    stored = service.get_by_id(form["id"])
    assert [f["order"] for f in stored["fields"]] == [0, 1]
    assert [f["external_field_id"] for f in stored["fields"]] == ["fldName", "fldRole"]
    assert stored["is_active"] is True
    assert stored["submission_count"] == 0
    assert stored["user_id"] == "owner-1"


@pytest.mark.parametrize("missing", ["title", "externalBaseId", "externalTableId", "fields"])
def test_create_requires_core_fields(service, form_payload, missing):
    del form_payload[missing]
    with pytest.raises(ValidationError) as excinfo:
        service.create("owner-1", form_payload)
    assert f"{missing} is required" in excinfo.value.details


def test_create_rejects_invalid_field(service, form_payload):
    form_payload["fields"][0]["fieldType"] = "rollup"
    with pytest.raises(ValidationError) as excinfo:
        service.create("owner-1", form_payload)
    assert "fields[0]: unsupported fieldType (rollup)" in excinfo.value.details


def test_list_for_owner_pages_most_recent_first(service, form_payload):
    ids = []
    for i in range(3):
        ids.append(service.create("owner-1", {**form_payload, "title": f"Form {i}"})["id"])
    service.create("owner-2", form_payload)
    service.update(ids[0], "owner-1", {"title": "Form 0 edited"})

    first = service.list_for_owner("owner-1", page=1, limit=2)
    assert [f["id"] for f in first["forms"]] == [ids[0], ids[2]]
    assert first["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

    second = service.list_for_owner("owner-1", page=2, limit=2)
    assert [f["id"] for f in second["forms"]] == [ids[1]]


def test_get_by_id_checks_owner_only_when_given(service, form_payload):
    form = service.create("owner-1", form_payload)
    assert service.get_by_id(form["id"], "owner-1")["id"] == form["id"]
    assert service.get_by_id(form["id"])["id"] == form["id"]
    with pytest.raises(Forbidden):
        service.get_by_id(form["id"], "owner-2")
    with pytest.raises(NotFound):
        service.get_by_id("missing")


def test_public_projection_hides_inactive_forms(service, form_payload):
    form = service.create("owner-1", form_payload)
    public = public_form_output(service.get_public_by_id(form["id"]))
    assert set(public) == {"id", "title", "description", "fields", "externalBaseId", "externalTableId"}

    service.update(form["id"], "owner-1", {"isActive": False})
    with pytest.raises(NotFound):
        service.get_public_by_id(form["id"])
    with pytest.raises(NotFound):
        service.get_public_by_id("missing")


def test_update_and_delete_of_foreign_form_look_missing(service, form_payload):
    form = service.create("owner-1", form_payload)
    with pytest.raises(NotFound):
        service.update(form["id"], "owner-2", {"title": "Hijacked"})
    with pytest.raises(NotFound):
        service.delete(form["id"], "owner-2")
    assert service.get_by_id(form["id"])["title"] == "Job application"


def test_update_applies_patch(service, form_payload):
    form = service.create("owner-1", form_payload)
    updated = service.update(
        form["id"],
        "owner-1",
        {
            "description": "New",
            "fields": [form_payload["fields"][1]],
            "submissionCount": 99,
        },
    )
    assert updated["description"] == "New"
    assert [f["external_field_id"] for f in updated["fields"]] == ["fldRole"]
    assert updated["submission_count"] == 0
    assert updated["title"] == "Job application"


def test_update_rejects_empty_title(service, form_payload):
    form = service.create("owner-1", form_payload)
    with pytest.raises(ValidationError):
        service.update(form["id"], "owner-1", {"title": "  "})


@pytest.mark.parametrize("value", ["false", "true", None, 1])
def test_update_rejects_non_boolean_is_active(service, form_payload, value):
    form = service.create("owner-1", form_payload)
    with pytest.raises(ValidationError) as excinfo:
        service.update(form["id"], "owner-1", {"isActive": value})
    assert excinfo.value.details == ["isActive must be a boolean"]
    assert service.get_by_id(form["id"])["is_active"] is True


def test_delete_removes_form(service, form_payload):
    form = service.create("owner-1", form_payload)
    service.delete(form["id"], "owner-1")
    with pytest.raises(NotFound):
        service.get_by_id(form["id"])


def test_record_submission_increments_counter(service, form_payload):
    form = service.create("owner-1", form_payload)
    service.record_submission(form["id"])
    service.record_submission(form["id"])
    assert form_to_output(service.get_by_id(form["id"]))["submissionCount"] == 2
