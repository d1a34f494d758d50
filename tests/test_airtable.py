from __future__ import annotations

import pytest

from airform.airtable import AirtableClient, filter_supported_fields, supported_field_types
from airform.errors import ExternalAPIError


@pytest.fixture
def airtable(transport) -> AirtableClient:
    return AirtableClient("access-9", transport=transport)


def test_filter_supported_fields_keeps_supported_in_order():
    fields = [
        {"id": "f1", "name": "A", "type": "singleLineText"},
        {"id": "f2", "name": "B", "type": "singleLineText"},
        {"id": "f3", "name": "C", "type": "multipleAttachments"},
        {"id": "f4", "name": "D", "type": "singleLineText"},
        {"id": "f5", "name": "E", "type": "singleSelect"},
    ]
    assert [f["id"] for f in filter_supported_fields(fields)] == ["f1", "f2", "f4", "f5"]


def test_filter_supported_fields_drops_unknown_types_silently():
    fields = [
        {"id": "f1", "type": "formula"},
        {"id": "f2", "type": "multilineText"},
        {"id": "f3"},
    ]
    assert filter_supported_fields(fields) == [{"id": "f2", "type": "multilineText"}]


def test_supported_field_types():
    assert supported_field_types() == [
        "singleLineText",
        "multilineText",
        "singleSelect",
        "multipleSelect",
        "attachment",
    ]


@pytest.mark.asyncio
async def test_list_bases_follows_offset(airtable, fake_airtable):
    fake_airtable.bases_page_size = 1
    bases = await airtable.list_bases()
    assert [b["id"] for b in bases] == ["appA", "appB"]
    assert bases[0] == {"id": "appA", "name": "Base A", "permissionLevel": "create"}
    assert fake_airtable.seen_tokens == ["Bearer access-9", "Bearer access-9"]


@pytest.mark.asyncio
async def test_list_tables(airtable):
    tables = await airtable.list_tables("appA")
    assert tables == [
        {
            "id": "tblA",
            "name": "Applicants",
            "primaryFieldId": "fldName",
            "description": "People who applied",
        }
    ]


@pytest.mark.asyncio
async def test_list_fields_returns_only_supported(airtable):
    fields = await airtable.list_fields("appA", "tblA")
    assert [f["id"] for f in fields] == ["fldName", "fldBio", "fldRole"]
    assert fields[2]["options"]["choices"][0]["name"] == "Engineer"


@pytest.mark.asyncio
async def test_list_fields_accepts_table_name(airtable):
    fields = await airtable.list_fields("appA", "Applicants")
    assert len(fields) == 3


@pytest.mark.asyncio
async def test_list_fields_unknown_table(airtable):
    with pytest.raises(ExternalAPIError) as excinfo:
        await airtable.list_fields("appA", "tblMissing")
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_upstream_error_carries_status(airtable, fake_airtable):
    fake_airtable.failing_paths["/v0/meta/bases"] = 403
    with pytest.raises(ExternalAPIError) as excinfo:
        await airtable.list_bases()
    assert excinfo.value.status == 403
    assert excinfo.value.message == "Failed to fetch Airtable bases"


@pytest.mark.asyncio
async def test_create_record(airtable, fake_airtable):
    record = await airtable.create_record("appA", "tblA", {"Name": "Ada"})
    assert record == {
        "id": "rec1",
        "fields": {"Name": "Ada"},
        "createdTime": "2026-01-01T00:00:00.000Z",
    }
    assert fake_airtable.records[0]["fields"] == {"Name": "Ada"}


@pytest.mark.asyncio
async def test_list_records_defaults_to_one_hundred(airtable, fake_airtable):
    await airtable.list_records("appA", "tblA")
    assert fake_airtable.record_requests[0]["maxRecords"] == "100"
    assert "view" not in fake_airtable.record_requests[0]


@pytest.mark.asyncio
async def test_list_records_passes_options_and_caps(airtable, fake_airtable):
    for i in range(5):
        await airtable.create_record("appA", "tblA", {"Name": f"n{i}"})
    records = await airtable.list_records(
        "appA", "tblA", max_records=3, view="Grid", filter_by_formula="{Name}!=''"
    )
    assert [r["id"] for r in records] == ["rec1", "rec2", "rec3"]
    params = fake_airtable.record_requests[0]
    assert params["maxRecords"] == "3"
    assert params["view"] == "Grid"
    assert params["filterByFormula"] == "{Name}!=''"


@pytest.mark.asyncio
async def test_non_object_body_is_an_api_error(airtable, fake_airtable):
    fake_airtable.raw_bodies["/v0/meta/bases"] = ["appA"]
    with pytest.raises(ExternalAPIError) as excinfo:
        await airtable.list_bases()
    assert excinfo.value.message == "Failed to fetch Airtable bases"
