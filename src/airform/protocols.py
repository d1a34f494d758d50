from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class UserRepository(Protocol):
    def get_user(self, user_id: str) -> dict[str, Any] | None: ...

    def get_user_by_external_id(self, external_account_id: str) -> dict[str, Any] | None: ...

    def upsert_user(self, external_account_id: str, values: dict[str, Any]) -> dict[str, Any]: ...

    def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime | None,
    ) -> dict[str, Any]: ...


class FormRepository(Protocol):
    def create_form(self, form: dict[str, Any]) -> None: ...

    def get_form(self, form_id: str) -> dict[str, Any] | None: ...

    def list_forms(self, user_id: str, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]: ...

    def update_form(
        self, form_id: str, user_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    def delete_form(self, form_id: str, user_id: str) -> bool: ...

    def increment_submission_count(self, form_id: str) -> None: ...


class Storage(Protocol):
    users: UserRepository
    forms: FormRepository
