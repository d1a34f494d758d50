from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock
from tinydb import Query, TinyDB

from airform.errors import Conflict
from airform.utils import new_ulid, now_utc, parse_dt, to_iso

_DATETIME_KEYS = {"created_at", "updated_at", "token_expires_at"}


class JSONRepoBase:
    def __init__(self, path: Path, lock: FileLock) -> None:
        self._path = path
        self._lock = lock

    @contextmanager
    def _db(self) -> Iterator[TinyDB]:
        with self._lock:
            db = TinyDB(self._path)
            try:
                yield db
            finally:
                db.close()

    @staticmethod
    def _serialize(values: dict[str, Any]) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for key, value in values.items():
            if key in _DATETIME_KEYS and isinstance(value, datetime):
                record[key] = to_iso(value)
            else:
                record[key] = value
        return record


class JSONUserRepo(JSONRepoBase):
    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            item = db.table("users").get(Query().id == user_id)
        return self._from_record(item) if item else None

    def get_user_by_external_id(self, external_account_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            item = db.table("users").get(Query().external_account_id == external_account_id)
        return self._from_record(item) if item else None

    def upsert_user(self, external_account_id: str, values: dict[str, Any]) -> dict[str, Any]:
        now = now_utc()
        with self._db() as db:
            table = db.table("users")
            user = Query()
            email = values.get("email")
            if email is not None:
                clash = table.get(
                    (user.email == email) & (user.external_account_id != external_account_id)
                )
                if clash:
                    raise Conflict("Email is already linked to another account")
            item = table.get(user.external_account_id == external_account_id)
            if item:
                item.update(self._serialize({**values, "updated_at": now}))
                table.update(item, user.external_account_id == external_account_id)
            else:
                item = self._serialize(
                    {
                        "refresh_token": None,
                        "token_expires_at": None,
                        "profile_image": None,
                        **values,
                        "id": new_ulid(),
                        "external_account_id": external_account_id,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
                table.insert(item)
        return self._from_record(item)

    def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime | None,
    ) -> dict[str, Any]:
        with self._db() as db:
            table = db.table("users")
            item = table.get(Query().id == user_id)
            if not item:
                raise KeyError(user_id)
            item.update(
                self._serialize(
                    {
                        "access_token": access_token,
                        "refresh_token": refresh_token,
                        "token_expires_at": token_expires_at,
                        "updated_at": now_utc(),
                    }
                )
            )
            table.update(item, Query().id == user_id)
        return self._from_record(item)

    @staticmethod
    def _from_record(record: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": record["id"],
            "external_account_id": record["external_account_id"],
            "email": record.get("email", ""),
            "name": record.get("name", ""),
            "access_token": record.get("access_token", ""),
            "refresh_token": record.get("refresh_token"),
            "token_expires_at": parse_dt(record.get("token_expires_at")),
            "profile_image": record.get("profile_image"),
            "created_at": parse_dt(record.get("created_at")),
            "updated_at": parse_dt(record.get("updated_at")),
        }


class JSONFormRepo(JSONRepoBase):
    def create_form(self, form: dict[str, Any]) -> None:
        with self._db() as db:
            db.table("forms").insert(self._serialize(form))

    def get_form(self, form_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            item = db.table("forms").get(Query().id == form_id)
        return self._from_record(item) if item else None

    def list_forms(self, user_id: str, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
        with self._db() as db:
            items = db.table("forms").search(Query().user_id == user_id)
        forms = sorted(
            (self._from_record(item) for item in items),
            key=lambda x: x["updated_at"],
            reverse=True,
        )
        return forms[offset : offset + limit], len(forms)

    def update_form(
        self, form_id: str, user_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        owned = (Query().id == form_id) & (Query().user_id == user_id)
        with self._db() as db:
            table = db.table("forms")
            item = table.get(owned)
            if not item:
                return None
            item.update(self._serialize({**updates, "updated_at": now_utc()}))
            table.update(item, owned)
        return self._from_record(item)

    def delete_form(self, form_id: str, user_id: str) -> bool:
        owned = (Query().id == form_id) & (Query().user_id == user_id)
        with self._db() as db:
            removed = db.table("forms").remove(owned)
        return bool(removed)

    def increment_submission_count(self, form_id: str) -> None:
        with self._db() as db:
            table = db.table("forms")
            item = table.get(Query().id == form_id)
            if not item:
                raise KeyError(form_id)
            item["submission_count"] = int(item.get("submission_count", 0)) + 1
            table.update(item, Query().id == form_id)

    @staticmethod
    def _from_record(record: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": record["id"],
            "user_id": record["user_id"],
            "title": record.get("title", ""),
            "description": record.get("description", ""),
            "external_base_id": record.get("external_base_id", ""),
            "external_table_id": record.get("external_table_id", ""),
            "external_base_name": record.get("external_base_name", ""),
            "external_table_name": record.get("external_table_name", ""),
            "fields": record.get("fields", []),
            "is_active": bool(record.get("is_active", True)),
            "submission_count": int(record.get("submission_count", 0)),
            "created_at": parse_dt(record.get("created_at")),
            "updated_at": parse_dt(record.get("updated_at")),
        }


class JSONStorage:
    def __init__(self, path: Path) -> None:
        self._lock = FileLock(f"{path}.lock")
        self.users = JSONUserRepo(path, self._lock)
        self.forms = JSONFormRepo(path, self._lock)
