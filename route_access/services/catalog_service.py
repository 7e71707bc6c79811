from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from route_access.domain.access import SUPER_ADMIN_CLASSIFIER, normalize_route
from route_access.domain.models import (
    BootstrapAdminRequest,
    Page,
    PageCreate,
    PageUpdate,
    Permission,
    PermissionCreate,
    PermissionUpdate,
    Role,
    RoleCreate,
    RolePermission,
    RoleUpdate,
    User,
    UserCreate,
    UserPermission,
    UserRole,
    UserUpdate,
)
from route_access.infra.db import get_engine, store_guard
from route_access.services import registrar_service
from route_access.services.registrar_service import compose_perm_key

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    pass


class NotFoundError(CatalogError):
    pass


class ConflictError(CatalogError):
    pass


class ValidationError(CatalogError):
    pass


def _require_text(value: str | None, field_name: str) -> str:
    stripped = value.strip() if isinstance(value, str) else ""
    if not stripped:
        raise ValidationError(f"{field_name} is required")
    return stripped


def _require_positive_id(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"invalid {field_name}. Must be a positive integer.")
    return value


def _perm_key(page_key: str, action_key: str) -> str:
    try:
        return compose_perm_key(page_key, action_key)
    except registrar_service.ValidationError as exc:
        raise ValidationError(str(exc)) from exc


class CatalogService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _count(self, session: Session, statement: Any) -> int:
        return int(session.exec(statement).one())

    # users

    def create_user(self, payload: UserCreate) -> User:
        with store_guard("create_user"), self._session() as session:
            user = User(
                email=_require_text(payload.email, "email").lower(),
                full_name=payload.full_name,
                user_type=payload.user_type,
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("user email already exists") from exc
            session.refresh(user)
            return user

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with store_guard("bootstrap_admin"), self._session() as session:
            if self._count(session, select(func.count()).select_from(User)) > 0:
                raise ConflictError("users already initialized")
            user = User(
                email=_require_text(payload.email, "email").lower(),
                full_name=payload.full_name,
                user_type=SUPER_ADMIN_CLASSIFIER,
                is_active=True,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
        logger.info("catalog.bootstrap_admin.created", extra={"user_id": user.id})
        return user

    def list_users(self) -> list[User]:
        with store_guard("list_users"), self._session() as session:
            return list(session.exec(select(User).order_by(col(User.id))).all())

    def get_user(self, user_id: int) -> User:
        with store_guard("get_user"), self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def update_user(self, user_id: int, payload: UserUpdate) -> User:
        with store_guard("update_user"), self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if payload.full_name is not None:
                user.full_name = payload.full_name
            if payload.user_type is not None:
                user.user_type = payload.user_type
            if payload.is_active is not None:
                user.is_active = payload.is_active
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    # pages

    def create_page(self, payload: PageCreate) -> Page:
        page_key = _require_text(payload.page_key, "page_key")
        if registrar_service.PERM_KEY_SEPARATOR in page_key:
            raise ValidationError(f"page_key must not contain '{registrar_service.PERM_KEY_SEPARATOR}'")
        route_path = normalize_route(payload.route_path)
        if not route_path:
            raise ValidationError("route_path is required")
        with store_guard("create_page"), self._session() as session:
            page = Page(
                page_key=page_key,
                page_name=_require_text(payload.page_name, "page_name"),
                route_path=route_path,
                section_key=payload.section_key,
                sort_order=payload.sort_order,
                is_active=payload.is_active,
            )
            session.add(page)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("page key or route path already exists") from exc
            session.refresh(page)
            return page

    def list_pages(self) -> list[Page]:
        with store_guard("list_pages"), self._session() as session:
            statement = select(Page).order_by(col(Page.section_key), col(Page.sort_order), col(Page.page_name))
            return list(session.exec(statement).all())

    def get_page(self, page_id: int) -> Page:
        with store_guard("get_page"), self._session() as session:
            page = session.get(Page, page_id)
            if page is None:
                raise NotFoundError("page not found")
            return page

    def update_page(self, page_id: int, payload: PageUpdate) -> Page:
        with store_guard("update_page"), self._session() as session:
            page = session.get(Page, page_id)
            if page is None:
                raise NotFoundError("page not found")
            if payload.page_key is not None:
                new_key = _require_text(payload.page_key, "page_key")
                if registrar_service.PERM_KEY_SEPARATOR in new_key:
                    raise ValidationError(f"page_key must not contain '{registrar_service.PERM_KEY_SEPARATOR}'")
                if new_key != page.page_key:
                    page.page_key = new_key
                    permissions = session.exec(select(Permission).where(Permission.page_id == page.id)).all()
                    for permission in permissions:
                        permission.perm_key = _perm_key(new_key, permission.action_key)
                        session.add(permission)
            if payload.page_name is not None:
                page.page_name = _require_text(payload.page_name, "page_name")
            if payload.route_path is not None:
                route_path = normalize_route(payload.route_path)
                if not route_path:
                    raise ValidationError("route_path is required")
                page.route_path = route_path
            if payload.section_key is not None:
                page.section_key = payload.section_key
            if payload.sort_order is not None:
                page.sort_order = payload.sort_order
            if payload.is_active is not None:
                page.is_active = payload.is_active
            session.add(page)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("page key or route path already exists") from exc
            session.refresh(page)
            return page

    def delete_page(self, page_id: int) -> None:
        _require_positive_id(page_id, "page_id")
        with store_guard("delete_page"), self._session() as session:
            page = session.get(Page, page_id)
            if page is None:
                raise NotFoundError("page not found")
            permission_count = self._count(
                session,
                select(func.count()).select_from(Permission).where(Permission.page_id == page_id),
            )
            if permission_count > 0:
                raise ConflictError("cannot delete page: it has associated permissions, deactivate it instead")
            session.delete(page)
            session.commit()
        logger.info("catalog.page.deleted", extra={"page_id": page_id})

    # permissions

    def create_permission(self, payload: PermissionCreate) -> Permission:
        _require_positive_id(payload.page_id, "page_id")
        with store_guard("create_permission"), self._session() as session:
            page = session.get(Page, payload.page_id)
            if page is None:
                raise NotFoundError("page not found")
            action_key = _require_text(payload.action_key, "action_key").lower()
            permission = Permission(
                perm_key=_perm_key(page.page_key, action_key),
                page_id=page.id,
                action_key=action_key,
                is_active=payload.is_active,
            )
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission already exists") from exc
            session.refresh(permission)
            return permission

    def list_permissions(self, page_id: int | None = None) -> list[Permission]:
        with store_guard("list_permissions"), self._session() as session:
            statement = select(Permission)
            if page_id is not None:
                statement = statement.where(Permission.page_id == page_id)
            return list(session.exec(statement.order_by(col(Permission.page_id), col(Permission.action_key))).all())

    def get_permission(self, permission_id: int) -> Permission:
        with store_guard("get_permission"), self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            return permission

    def update_permission(self, permission_id: int, payload: PermissionUpdate) -> Permission:
        with store_guard("update_permission"), self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            page_id = payload.page_id if payload.page_id is not None else permission.page_id
            page = session.get(Page, page_id)
            if page is None:
                raise NotFoundError("page not found")
            action_key = (
                _require_text(payload.action_key, "action_key").lower()
                if payload.action_key is not None
                else permission.action_key
            )
            permission.page_id = page.id
            permission.action_key = action_key
            permission.perm_key = _perm_key(page.page_key, action_key)
            if payload.is_active is not None:
                permission.is_active = payload.is_active
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission already exists") from exc
            session.refresh(permission)
            return permission

    def delete_permission(self, permission_id: int) -> None:
        _require_positive_id(permission_id, "permission_id")
        with store_guard("delete_permission"), self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            grant_count = self._count(
                session,
                select(func.count()).select_from(RolePermission).where(RolePermission.permission_id == permission_id),
            ) + self._count(
                session,
                select(func.count()).select_from(UserPermission).where(UserPermission.permission_id == permission_id),
            )
            if grant_count > 0:
                raise ConflictError("cannot delete permission: it is assigned to roles or users")
            session.delete(permission)
            session.commit()
        logger.info("catalog.permission.deleted", extra={"permission_id": permission_id})

    # roles

    def create_role(self, payload: RoleCreate) -> Role:
        with store_guard("create_role"), self._session() as session:
            role = Role(
                role_name=_require_text(payload.role_name, "role_name"),
                role_description=payload.role_description,
                is_active=payload.is_active,
            )
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)
            return role

    def list_roles(self) -> list[Role]:
        with store_guard("list_roles"), self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.role_name))).all())

    def get_role(self, role_id: int) -> Role:
        with store_guard("get_role"), self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    def update_role(self, role_id: int, payload: RoleUpdate) -> Role:
        with store_guard("update_role"), self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            if payload.role_name is not None:
                role.role_name = _require_text(payload.role_name, "role_name")
            if payload.role_description is not None:
                role.role_description = payload.role_description
            if payload.is_active is not None:
                role.is_active = payload.is_active
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)
            return role

    def delete_role(self, role_id: int) -> None:
        _require_positive_id(role_id, "role_id")
        with store_guard("delete_role"), self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            member_count = self._count(
                session,
                select(func.count()).select_from(UserRole).where(UserRole.role_id == role_id),
            )
            if member_count > 0:
                raise ConflictError("cannot delete role: it is assigned to one or more users")
            session.execute(delete(RolePermission).where(col(RolePermission.role_id) == role_id))
            session.delete(role)
            session.commit()
        logger.info("catalog.role.deleted", extra={"role_id": role_id})
