from __future__ import annotations

from datetime import timedelta
from typing import Any
from urllib.parse import parse_qs

import httpx
import orjson
import pytest
from fastapi.testclient import TestClient

from airform.app import create_app
from airform.config import Settings
from airform.storage import init_storage
from airform.utils import now_utc


class FakeAirtable:
    """In-memory stand-in for the Airtable OAuth and Web APIs."""

    def __init__(self) -> None:
        self.identity = {
            "id": "usrABC123",
            "email": "Ada@Example.com",
            "name": "Ada Lovelace",
            "profilePicUrl": "https://img.example/ada.png",
        }
        self.token_calls: list[dict[str, str]] = []
        self.refresh_fails = False
        self.rotate_refresh_token = True
        self.issued = 0
        self.bases: list[dict[str, Any]] = [
            {"id": "appA", "name": "Base A", "permissionLevel": "create"},
            {"id": "appB", "name": "Base B", "permissionLevel": "read"},
        ]
        self.bases_page_size = 100
        self.tables: dict[str, list[dict[str, Any]]] = {
            "appA": [
                {
                    "id": "tblA",
                    "name": "Applicants",
                    "primaryFieldId": "fldName",
                    "description": "People who applied",
                    "fields": [
                        {"id": "fldName", "name": "Name", "type": "singleLineText"},
                        {"id": "fldBio", "name": "Bio", "type": "multilineText"},
                        {"id": "fldScore", "name": "Score", "type": "number"},
                        {
                            "id": "fldRole",
                            "name": "Role",
                            "type": "singleSelect",
                            "options": {
                                "choices": [
                                    {"id": "sel1", "name": "Engineer"},
                                    {"id": "sel2", "name": "Designer"},
                                ]
                            },
                        },
                    ],
                }
            ]
        }
        self.records: list[dict[str, Any]] = []
        self.record_requests: list[dict[str, Any]] = []
        self.failing_paths: dict[str, int] = {}
        self.seen_tokens: list[str] = []
        self.refresh_payload: Any = None
        self.raw_bodies: dict[str, Any] = {}

    def token_payload(self, refresh: str | None) -> dict[str, Any]:
        self.issued += 1
        payload: dict[str, Any] = {
            "access_token": f"access-{self.issued}",
            "token_type": "Bearer",
            "expires_in": 3600,
            "scope": "data.records:read",
        }
        if refresh is not None:
            payload["refresh_token"] = refresh
        return payload

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.url.host == "airtable.com" and path == "/oauth2/v1/token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_calls.append(form)
            if form.get("grant_type") == "authorization_code":
                if form.get("code") != "good-code":
                    return httpx.Response(400, json={"error": "invalid_grant"})
                return httpx.Response(200, json=self.token_payload("refresh-1"))
            if self.refresh_fails:
                return httpx.Response(400, json={"error": "invalid_grant"})
            if self.refresh_payload is not None:
                return httpx.Response(200, json=self.refresh_payload)
            refresh = f"refresh-{self.issued + 1}" if self.rotate_refresh_token else None
            return httpx.Response(200, json=self.token_payload(refresh))

        self.seen_tokens.append(request.headers.get("Authorization", ""))
        if path in self.failing_paths:
            return httpx.Response(self.failing_paths[path], json={"error": "boom"})
        if path in self.raw_bodies:
            return httpx.Response(200, json=self.raw_bodies[path])
        if path == "/v0/meta/whoami":
            return httpx.Response(200, json=self.identity)
        if path == "/v0/meta/bases":
            start = int(request.url.params.get("offset", 0))
            page = self.bases[start : start + self.bases_page_size]
            body: dict[str, Any] = {"bases": page}
            if start + self.bases_page_size < len(self.bases):
                body["offset"] = str(start + self.bases_page_size)
            return httpx.Response(200, json=body)
        if path.startswith("/v0/meta/bases/") and path.endswith("/tables"):
            base_id = path.split("/")[4]
            if base_id not in self.tables:
                return httpx.Response(404, json={"error": "NOT_FOUND"})
            return httpx.Response(200, json={"tables": self.tables[base_id]})

        parts = path.split("/")
        if len(parts) == 4 and parts[1] == "v0":
            if request.method == "POST":
                body = orjson.loads(request.content)
                record = {
                    "id": f"rec{len(self.records) + 1}",
                    "fields": body["fields"],
                    "createdTime": "2026-01-01T00:00:00.000Z",
                }
                self.records.append(record)
                return httpx.Response(200, json=record)
            params = dict(request.url.params)
            self.record_requests.append(params)
            page_size = int(params.get("pageSize", 100))
            start = int(params.get("offset", 0))
            page = self.records[start : start + page_size]
            body = {"records": page}
            if start + page_size < len(self.records):
                body["offset"] = str(start + page_size)
            return httpx.Response(200, json=body)
        return httpx.Response(404, json={"error": "NOT_FOUND"})


@pytest.fixture(params=["sqlite", "json"])
def settings(request, tmp_path, monkeypatch) -> Settings:
    monkeypatch.setenv("STORAGE_BACKEND", request.param)
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "app.db"))
    monkeypatch.setenv("JSON_PATH", str(tmp_path / "jsonstore.json"))
    monkeypatch.setenv("AIRTABLE_CLIENT_ID", "client-123")
    monkeypatch.setenv("AIRTABLE_CLIENT_SECRET", "shh")
    monkeypatch.setenv("AIRTABLE_REDIRECT_URI", "http://api.test/api/auth/airtable/callback")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("FRONTEND_URL", "http://frontend.test")
    return Settings()


@pytest.fixture
def storage(settings):
    return init_storage(settings)


@pytest.fixture
def fake_airtable() -> FakeAirtable:
    return FakeAirtable()


@pytest.fixture
def transport(fake_airtable) -> httpx.MockTransport:
    return httpx.MockTransport(fake_airtable.handle)


@pytest.fixture
def app(settings, storage, transport):
    return create_app(settings, storage, transport)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def make_user(storage):
    def _make_user(
        external_id: str = "usrOwner",
        email: str = "owner@example.com",
        access_token: str = "access-0",
        refresh_token: str | None = "refresh-0",
        expires_in: timedelta | None = timedelta(hours=1),
    ) -> dict[str, Any]:
        return storage.users.upsert_user(
            external_id,
            {
                "email": email,
                "name": external_id,
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_expires_at": now_utc() + expires_in if expires_in is not None else None,
                "profile_image": None,
            },
        )

    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user: dict[str, Any]) -> dict[str, str]:
        token = app.state.tokens.issue_session_token(user["id"])
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def form_payload() -> dict[str, Any]:
    return {
        "title": "Job application",
        "description": "Apply here",
        "externalBaseId": "appA",
        "externalTableId": "tblA",
        "externalBaseName": "Base A",
        "externalTableName": "Applicants",
        "fields": [
            {
                "externalFieldId": "fldName",
                "externalFieldName": "Name",
                "fieldType": "singleLineText",
                "questionLabel": "Your name",
                "isRequired": True,
            },
            {
                "externalFieldId": "fldRole",
                "externalFieldName": "Role",
                "fieldType": "singleSelect",
                "questionLabel": "Which role?",
                "isRequired": False,
                "options": ["Engineer", "Designer"],
            },
        ],
    }
