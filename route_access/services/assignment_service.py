from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from route_access.domain.models import (
    Page,
    Permission,
    PermissionGrantItem,
    Role,
    RolePermission,
    User,
    UserPermission,
    UserRole,
    now_utc,
)
from route_access.infra.db import get_engine, store_guard

logger = logging.getLogger(__name__)


class AssignmentError(Exception):
    pass


class NotFoundError(AssignmentError):
    pass


class ValidationError(AssignmentError):
    pass


def parse_positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def _summarize(target_id: int, results: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "target_id": target_id,
        "requested_count": len(results),
        "applied_count": sum(1 for item in results if item["status"] == "applied"),
        "skipped_count": sum(1 for item in results if item["status"] == "skipped"),
        "results": results,
    }


class AssignmentService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_role(self, session: Session, role_id: Any) -> int:
        parsed = parse_positive_int(role_id)
        if parsed is None:
            raise ValidationError("invalid role_id. Must be a positive integer.")
        if session.get(Role, parsed) is None:
            raise NotFoundError("role not found")
        return parsed

    def _require_user(self, session: Session, user_id: Any) -> int:
        parsed = parse_positive_int(user_id)
        if parsed is None:
            raise ValidationError("invalid user_id. Must be a positive integer.")
        if session.get(User, parsed) is None:
            raise NotFoundError("user not found")
        return parsed

    def _validate_grants(
        self,
        session: Session,
        updates: Sequence[PermissionGrantItem],
        *,
        operation: str,
        target_id: int,
    ) -> tuple[list[tuple[int, bool]], list[dict[str, Any]]]:
        parsed_ids = [parse_positive_int(item.permission_id) for item in updates]
        wanted = {item for item in parsed_ids if item is not None}
        known_ids: set[int] = set()
        if wanted:
            known_ids = set(session.exec(select(Permission.id).where(col(Permission.id).in_(sorted(wanted)))).all())

        valid: list[tuple[int, bool]] = []
        results: list[dict[str, Any]] = []
        for item, permission_id in zip(updates, parsed_ids, strict=True):
            if permission_id is None:
                reason = "invalid permission_id"
            elif not isinstance(item.is_allowed, bool):
                reason = "is_allowed must be a boolean"
            elif permission_id not in known_ids:
                reason = "permission not found"
            else:
                valid.append((permission_id, item.is_allowed))
                results.append({"permission_id": permission_id, "is_allowed": item.is_allowed, "status": "applied"})
                continue

            logger.warning(
                f"assignment.{operation}.skipped",
                extra={"target_id": target_id, "permission_id": item.permission_id, "reason": reason},
            )
            results.append(
                {
                    "permission_id": item.permission_id,
                    "is_allowed": item.is_allowed,
                    "status": "skipped",
                    "reason": reason,
                }
            )
        return valid, results

    def set_role_permissions(self, role_id: Any, updates: Sequence[PermissionGrantItem]) -> dict[str, Any]:
        with store_guard("set_role_permissions"), self._session() as session:
            try:
                target_id = self._require_role(session, role_id)
                valid, results = self._validate_grants(
                    session, updates, operation="set_role_permissions", target_id=target_id
                )
                for permission_id, is_allowed in valid:
                    link = session.get(RolePermission, (target_id, permission_id))
                    if link is None:
                        link = RolePermission(
                            role_id=target_id,
                            permission_id=permission_id,
                            is_allowed=is_allowed,
                            granted_at=now_utc(),
                        )
                    else:
                        link.is_allowed = is_allowed
                    session.add(link)
                    session.flush()
                session.commit()
            except Exception:
                session.rollback()
                raise

        summary = _summarize(target_id, results)
        logger.info(
            "assignment.set_role_permissions.completed",
            extra={"role_id": target_id, "applied_count": summary["applied_count"], "skipped_count": summary["skipped_count"]},
        )
        return summary

    def _upsert_user_permission(self, session: Session, user_id: int, permission_id: int, is_allowed: bool) -> None:
        bind = session.get_bind()
        dialect = bind.dialect.name if bind is not None else ""
        values = {
            "user_id": user_id,
            "permission_id": permission_id,
            "is_allowed": is_allowed,
            "assigned_at": now_utc(),
        }
        if dialect == "postgresql":
            stmt = pg_insert(UserPermission).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite_insert(UserPermission).values(**values)
        else:
            link = session.get(UserPermission, (user_id, permission_id))
            if link is None:
                link = UserPermission(**values)
            else:
                link.is_allowed = is_allowed
            session.add(link)
            session.flush()
            return
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "permission_id"],
            set_={"is_allowed": stmt.excluded.is_allowed},
        )
        session.execute(stmt)

    def set_user_permissions(self, user_id: Any, updates: Sequence[PermissionGrantItem]) -> dict[str, Any]:
        with store_guard("set_user_permissions"), self._session() as session:
            try:
                target_id = self._require_user(session, user_id)
                valid, results = self._validate_grants(
                    session, updates, operation="set_user_permissions", target_id=target_id
                )
                for permission_id, is_allowed in valid:
                    self._upsert_user_permission(session, target_id, permission_id, is_allowed)
                session.commit()
            except Exception:
                session.rollback()
                raise

        summary = _summarize(target_id, results)
        logger.info(
            "assignment.set_user_permissions.completed",
            extra={"user_id": target_id, "applied_count": summary["applied_count"], "skipped_count": summary["skipped_count"]},
        )
        return summary

    def set_user_roles(self, user_id: Any, role_ids: Sequence[Any]) -> dict[str, Any]:
        with store_guard("set_user_roles"), self._session() as session:
            try:
                target_id = self._require_user(session, user_id)
                parsed_ids = [parse_positive_int(item) for item in role_ids]
                wanted = {item for item in parsed_ids if item is not None}
                known_ids: set[int] = set()
                if wanted:
                    known_ids = set(session.exec(select(Role.id).where(col(Role.id).in_(sorted(wanted)))).all())

                results: list[dict[str, Any]] = []
                assigned: list[int] = []
                for raw_id, role_id in zip(role_ids, parsed_ids, strict=True):
                    if role_id is None:
                        reason = "invalid role_id"
                    elif role_id not in known_ids:
                        reason = "role not found"
                    elif role_id in assigned:
                        reason = "duplicate role_id"
                    else:
                        assigned.append(role_id)
                        results.append({"role_id": role_id, "status": "assigned"})
                        continue
                    logger.warning(
                        "assignment.set_user_roles.skipped",
                        extra={"user_id": target_id, "role_id": raw_id, "reason": reason},
                    )
                    results.append({"role_id": raw_id, "status": "skipped", "reason": reason})

                session.execute(delete(UserRole).where(col(UserRole.user_id) == target_id))
                assigned_at = now_utc()
                for role_id in assigned:
                    session.add(UserRole(user_id=target_id, role_id=role_id, assigned_at=assigned_at))
                session.commit()
            except Exception:
                session.rollback()
                raise

        logger.info(
            "assignment.set_user_roles.completed",
            extra={"user_id": target_id, "role_ids": assigned},
        )
        return {
            "user_id": target_id,
            "requested_count": len(results),
            "assigned_count": len(assigned),
            "skipped_count": sum(1 for item in results if item["status"] == "skipped"),
            "role_ids": assigned,
            "results": results,
        }

    def list_user_roles(self, user_id: Any) -> list[dict[str, Any]]:
        with store_guard("list_user_roles"), self._session() as session:
            target_id = self._require_user(session, user_id)
            rows = session.exec(
                select(UserRole, Role)
                .join(Role, col(Role.id) == col(UserRole.role_id))
                .where(UserRole.user_id == target_id)
                .order_by(col(Role.role_name))
            ).all()
            return [
                {
                    "role_id": role.id,
                    "role_name": role.role_name,
                    "role_description": role.role_description,
                    "is_active": role.is_active,
                    "assigned_at": link.assigned_at,
                }
                for link, role in rows
            ]

    def list_user_permissions(self, user_id: Any) -> list[dict[str, Any]]:
        with store_guard("list_user_permissions"), self._session() as session:
            target_id = self._require_user(session, user_id)
            rows = session.exec(
                select(UserPermission, Permission, Page)
                .join(Permission, col(Permission.id) == col(UserPermission.permission_id))
                .join(Page, col(Page.id) == col(Permission.page_id))
                .where(UserPermission.user_id == target_id)
                .order_by(col(Page.route_path), col(Permission.action_key))
            ).all()
            return [
                {
                    "permission_id": permission.id,
                    "perm_key": permission.perm_key,
                    "action_key": permission.action_key,
                    "route_path": page.route_path,
                    "page_name": page.page_name,
                    "is_allowed": link.is_allowed,
                    "assigned_at": link.assigned_at,
                }
                for link, permission, page in rows
            ]

    def get_role_permission_matrix(self, role_id: Any) -> list[dict[str, Any]]:
        with store_guard("get_role_permission_matrix"), self._session() as session:
            target_id = self._require_role(session, role_id)
            pages = session.exec(
                select(Page)
                .where(col(Page.is_active).is_(True))
                .order_by(col(Page.section_key), col(Page.sort_order), col(Page.page_name))
            ).all()
            permissions = session.exec(
                select(Permission)
                .where(col(Permission.is_active).is_(True))
                .order_by(col(Permission.page_id), col(Permission.action_key))
            ).all()
            grants = {
                link.permission_id: link.is_allowed
                for link in session.exec(select(RolePermission).where(RolePermission.role_id == target_id)).all()
            }

            by_page: dict[int, list[dict[str, Any]]] = {}
            for permission in permissions:
                by_page.setdefault(permission.page_id, []).append(
                    {
                        "permission_id": permission.id,
                        "perm_key": permission.perm_key,
                        "action_key": permission.action_key,
                        "is_allowed": grants.get(permission.id, False),
                    }
                )
            return [
                {
                    "page_id": page.id,
                    "page_key": page.page_key,
                    "page_name": page.page_name,
                    "route_path": page.route_path,
                    "section_key": page.section_key,
                    "sort_order": page.sort_order,
                    "permissions": by_page.get(page.id, []),
                }
                for page in pages
            ]
