from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from storefront.domain.models import User, UserPermission, now_utc
from storefront.domain.permissions import PermissionGrid, UserType, grid_from_rows, rows_from_grid

logger = logging.getLogger(__name__)


class PermissionNotFoundError(Exception):
    pass


class PermissionTargetError(Exception):
    pass


def _require_employee(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise PermissionNotFoundError("user not found")
    if user.user_type != UserType.EMPLOYEE.value:
        raise PermissionTargetError("permissions can only be granted to employee accounts")
    return user


class PermissionService:
    """Reads and writes the per-user permission matrix.

    Absence of a row means "no access". Every query binds its values; the
    name list of :meth:`count_granted` goes through an expanding ``IN``
    parameter.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def has_permission(self, user_id: int, permission_name: str) -> bool:
        statement = (
            select(UserPermission.can_access)
            .where(UserPermission.user_id == user_id)
            .where(UserPermission.permission_name == permission_name)
        )
        with self._session() as session:
            can_access = session.exec(statement).first()
        return can_access is True

    def count_granted(self, user_id: int, permission_names: Sequence[str]) -> int:
        names = [name for name in permission_names if name]
        if not names:
            return 0
        statement = (
            select(func.count())
            .select_from(UserPermission)
            .where(UserPermission.user_id == user_id)
            .where(col(UserPermission.permission_name).in_(names))
            .where(col(UserPermission.can_access) == True)  # noqa: E712
        )
        with self._session() as session:
            return int(session.exec(statement).one())

    def get_grid(self, user_id: int) -> PermissionGrid:
        statement = select(UserPermission.permission_name, UserPermission.can_access).where(
            UserPermission.user_id == user_id
        )
        with self._session() as session:
            rows = session.exec(statement).all()
        return grid_from_rows((name, can_access) for name, can_access in rows)

    def set_permission(self, user_id: int, permission_name: str, can_access: bool) -> UserPermission:
        with self._session() as session:
            _require_employee(session, user_id)
            row = session.get(UserPermission, (user_id, permission_name))
            if row is None:
                row = UserPermission(user_id=user_id, permission_name=permission_name)
            row.can_access = can_access
            row.updated_at = now_utc()
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def update_grid(self, user_id: int, grid: PermissionGrid) -> PermissionGrid:
        """Upsert every flag in ``grid``; flags not mentioned keep their rows."""
        rows = rows_from_grid(grid)
        with self._session() as session:
            _require_employee(session, user_id)
            for name, can_access in rows:
                row = session.get(UserPermission, (user_id, name))
                if row is None:
                    row = UserPermission(user_id=user_id, permission_name=name)
                row.can_access = can_access
                row.updated_at = now_utc()
                session.add(row)
            session.commit()
        logger.info("permission grid updated user_id=%s rows=%d", user_id, len(rows))
        return self.get_grid(user_id)
