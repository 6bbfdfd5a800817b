"""Identity directory adapters (the authoritative side of the sync).

``IdentityDirectory`` is the protocol the reconcile queue consumes. Only
``list_users_page`` is required; the queue and the full reconcile probe for
the optional methods and use them when present.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from identity_sync.models.db.identity import IdentityAccount, IdentityUser
from identity_sync.models.schemas.users import DirectoryAccount, DirectoryUser, UsersPage
from identity_sync.utils import get_logger

logger = get_logger(__name__)


class IdentityDirectory(Protocol):
    def list_users_page(self, limit: int, offset: int) -> UsersPage: ...

    # Optional:
    #   list_users_after(limit, after_id) -> list[DirectoryUser]   keyset paging by id
    #   get_user(user_id) -> DirectoryUser | None
    #   list_accounts_for_user(user_id) -> list[DirectoryAccount]


def _to_directory_user(row: IdentityUser) -> DirectoryUser:
    return DirectoryUser(
        id=row.id,
        email=row.email,
        name=row.name,
        email_verified=bool(row.email_verified),
        extra=dict(row.extra or {}),
    )


def _to_directory_account(row: IdentityAccount) -> DirectoryAccount:
    return DirectoryAccount(id=row.id, user_id=row.user_id, provider_id=row.provider_id)


class SqlIdentityDirectory:
    """SQLAlchemy-backed identity directory over ``identity_users`` / ``identity_accounts``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ----------------------------- listing ----------------------------- #
    def list_users_page(self, limit: int, offset: int) -> UsersPage:
        with self._session_factory() as session:
            total = session.scalar(select(func.count()).select_from(IdentityUser)) or 0
            rows = session.scalars(
                select(IdentityUser).order_by(IdentityUser.id.asc()).offset(offset).limit(limit)
            ).all()
            return UsersPage(users=[_to_directory_user(r) for r in rows], total=int(total))

    def list_users_after(self, limit: int, after_id: Optional[str] = None) -> list[DirectoryUser]:
        stmt = select(IdentityUser).order_by(IdentityUser.id.asc()).limit(limit)
        if after_id is not None:
            stmt = stmt.where(IdentityUser.id > after_id)
        with self._session_factory() as session:
            return [_to_directory_user(r) for r in session.scalars(stmt).all()]

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        with self._session_factory() as session:
            row = session.get(IdentityUser, user_id)
            return _to_directory_user(row) if row else None

    def list_accounts_for_user(self, user_id: str) -> list[DirectoryAccount]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(IdentityAccount).where(IdentityAccount.user_id == user_id).order_by(IdentityAccount.id.asc())
            ).all()
            return [_to_directory_account(r) for r in rows]

    # ----------------------------- mutations ----------------------------- #
    # Used by the identity service side (and seeding); pair with services.hooks
    # so the record store learns about the change.
    def create_user(self, user: DirectoryUser | dict[str, Any]) -> DirectoryUser:
        snapshot = user if isinstance(user, DirectoryUser) else DirectoryUser.model_validate(user)
        with self._session_factory() as session:
            row = IdentityUser(
                id=snapshot.id,
                email=snapshot.email,
                name=snapshot.name,
                email_verified=snapshot.email_verified,
                extra=dict(snapshot.extra),
            )
            session.add(row)
            session.commit()
            logger.info("Identity user created", subject_id=snapshot.id)
            return _to_directory_user(row)

    def update_user(self, user_id: str, **changes: Any) -> Optional[DirectoryUser]:
        allowed = {"email", "name", "email_verified", "extra"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown identity user fields: {sorted(unknown)}")
        with self._session_factory() as session:
            row = session.get(IdentityUser, user_id)
            if row is None:
                return None
            for field, value in changes.items():
                setattr(row, field, value)
            session.commit()
            return _to_directory_user(row)

    def delete_user(self, user_id: str) -> bool:
        with self._session_factory() as session:
            row = session.get(IdentityUser, user_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            logger.info("Identity user deleted", subject_id=user_id)
            return True

    def add_account(self, account_id: str, user_id: str, provider_id: str) -> DirectoryAccount:
        with self._session_factory() as session:
            row = IdentityAccount(id=account_id, user_id=user_id, provider_id=provider_id)
            session.add(row)
            session.commit()
            return _to_directory_account(row)


__all__ = ["IdentityDirectory", "SqlIdentityDirectory"]
