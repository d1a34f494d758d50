from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from airform.errors import Conflict
from airform.models import Base, FormModel, UserModel
from airform.utils import dumps_json, loads_json, new_ulid, now_utc, parse_dt

_USER_COLUMNS = {
    "email",
    "name",
    "access_token",
    "refresh_token",
    "token_expires_at",
    "profile_image",
}
_FORM_COLUMNS = {
    "title",
    "description",
    "external_base_id",
    "external_table_id",
    "external_base_name",
    "external_table_name",
    "is_active",
}


class SQLiteUserRepo:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.get(UserModel, user_id)
            return self._to_dict(row) if row else None

    def get_user_by_external_id(self, external_account_id: str) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.scalars(
                select(UserModel).where(UserModel.external_account_id == external_account_id)
            ).first()
            return self._to_dict(row) if row else None

    def upsert_user(self, external_account_id: str, values: dict[str, Any]) -> dict[str, Any]:
        now = now_utc()
        with self._Session() as session:
            email = values.get("email")
            if email is not None:
                clash = session.scalars(
                    select(UserModel).where(
                        UserModel.email == email,
                        UserModel.external_account_id != external_account_id,
                    )
                ).first()
                if clash:
                    raise Conflict("Email is already linked to another account")
            row = session.scalars(
                select(UserModel).where(UserModel.external_account_id == external_account_id)
            ).first()
            if row is None:
                row = UserModel(
                    id=new_ulid(),
                    external_account_id=external_account_id,
                    created_at=now,
                )
                session.add(row)
            for key, value in values.items():
                if key in _USER_COLUMNS:
                    setattr(row, key, value)
            row.updated_at = now
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("User already exists") from exc
            session.refresh(row)
            return self._to_dict(row)

    def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime | None,
    ) -> dict[str, Any]:
        with self._Session() as session:
            row = session.get(UserModel, user_id)
            if not row:
                raise KeyError(user_id)
            row.access_token = access_token
            row.refresh_token = refresh_token
            row.token_expires_at = token_expires_at
            row.updated_at = now_utc()
            session.commit()
            session.refresh(row)
            return self._to_dict(row)

    @staticmethod
    def _to_dict(row: UserModel) -> dict[str, Any]:
        return {
            "id": row.id,
            "external_account_id": row.external_account_id,
            "email": row.email,
            "name": row.name,
            "access_token": row.access_token,
            "refresh_token": row.refresh_token,
            "token_expires_at": parse_dt(row.token_expires_at),
            "profile_image": row.profile_image,
            "created_at": parse_dt(row.created_at),
            "updated_at": parse_dt(row.updated_at),
        }


class SQLiteFormRepo:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._Session = session_factory

    def create_form(self, form: dict[str, Any]) -> None:
        with self._Session() as session:
            row = FormModel(
                id=form["id"],
                user_id=form["user_id"],
                title=form["title"],
                description=form.get("description", ""),
                external_base_id=form["external_base_id"],
                external_table_id=form["external_table_id"],
                external_base_name=form.get("external_base_name", ""),
                external_table_name=form.get("external_table_name", ""),
                fields_json=dumps_json(form["fields"]),
                is_active=form.get("is_active", True),
                submission_count=form.get("submission_count", 0),
                created_at=form["created_at"],
                updated_at=form["updated_at"],
            )
            session.add(row)
            session.commit()

    def get_form(self, form_id: str) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.get(FormModel, form_id)
            return self._to_dict(row) if row else None

    def list_forms(self, user_id: str, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
        with self._Session() as session:
            rows = session.scalars(
                select(FormModel)
                .where(FormModel.user_id == user_id)
                .order_by(FormModel.updated_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            total = session.scalar(
                select(func.count()).select_from(FormModel).where(FormModel.user_id == user_id)
            )
            return [self._to_dict(row) for row in rows], int(total or 0)

    def update_form(
        self, form_id: str, user_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        with self._Session() as session:
            row = session.scalars(
                select(FormModel).where(FormModel.id == form_id, FormModel.user_id == user_id)
            ).first()
            if not row:
                return None
            for key, value in updates.items():
                if key == "fields":
                    row.fields_json = dumps_json(value)
                elif key in _FORM_COLUMNS:
                    setattr(row, key, value)
            row.updated_at = now_utc()
            session.commit()
            session.refresh(row)
            return self._to_dict(row)

    def delete_form(self, form_id: str, user_id: str) -> bool:
        with self._Session() as session:
            row = session.scalars(
                select(FormModel).where(FormModel.id == form_id, FormModel.user_id == user_id)
            ).first()
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def increment_submission_count(self, form_id: str) -> None:
        with self._Session() as session:
            row = session.get(FormModel, form_id)
            if not row:
                raise KeyError(form_id)
            row.submission_count = FormModel.submission_count + 1
            session.commit()

    @staticmethod
    def _to_dict(row: FormModel) -> dict[str, Any]:
        return {
            "id": row.id,
            "user_id": row.user_id,
            "title": row.title,
            "description": row.description or "",
            "external_base_id": row.external_base_id,
            "external_table_id": row.external_table_id,
            "external_base_name": row.external_base_name or "",
            "external_table_name": row.external_table_name or "",
            "fields": loads_json(row.fields_json) or [],
            "is_active": bool(row.is_active),
            "submission_count": row.submission_count or 0,
            "created_at": parse_dt(row.created_at),
            "updated_at": parse_dt(row.updated_at),
        }


class SQLiteStorage:
    def __init__(self, db_path: Path) -> None:
        self._engine = create_engine(
            f"sqlite:///{db_path}",
            future=True,
            connect_args={"check_same_thread": False},
        )
        self._Session = sessionmaker(self._engine, expire_on_commit=False)
        Base.metadata.create_all(self._engine)
        self.users = SQLiteUserRepo(self._Session)
        self.forms = SQLiteFormRepo(self._Session)
