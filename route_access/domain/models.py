from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import Column, ForeignKey, Index, Integer, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str | None = None
    user_type: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Page(SQLModel, table=True):
    __tablename__ = "pages"

    id: int | None = Field(default=None, primary_key=True)
    page_key: str = Field(index=True, unique=True)
    page_name: str
    route_path: str = Field(index=True, unique=True)
    section_key: str | None = Field(default=None, index=True)
    sort_order: int | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("page_id", "action_key", name="uq_permissions_page_action"),
    )

    id: int | None = Field(default=None, primary_key=True)
    perm_key: str = Field(index=True, unique=True)
    page_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("pages.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
    )
    action_key: str = Field(index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: int | None = Field(default=None, primary_key=True)
    role_name: str = Field(index=True, unique=True)
    role_description: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (Index("ix_role_permissions_permission", "permission_id"),)

    role_id: int = Field(foreign_key="roles.id", primary_key=True)
    permission_id: int = Field(foreign_key="permissions.id", primary_key=True)
    is_allowed: bool
    granted_at: datetime = Field(default_factory=now_utc)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (Index("ix_user_roles_role", "role_id"),)

    user_id: int = Field(foreign_key="users.id", primary_key=True)
    role_id: int = Field(foreign_key="roles.id", primary_key=True)
    assigned_at: datetime = Field(default_factory=now_utc)


class UserPermission(SQLModel, table=True):
    __tablename__ = "user_permissions"
    __table_args__ = (Index("ix_user_permissions_permission", "permission_id"),)

    user_id: int = Field(foreign_key="users.id", primary_key=True)
    permission_id: int = Field(foreign_key="permissions.id", primary_key=True)
    is_allowed: bool
    assigned_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    email: str
    full_name: str | None = None
    user_type: str | None = None
    is_active: bool = True


class UserUpdate(BaseModel):
    full_name: str | None = None
    user_type: str | None = None
    is_active: bool | None = None


class BootstrapAdminRequest(BaseModel):
    email: str
    full_name: str | None = None


class UserRead(ORMReadModel):
    id: int
    email: str
    full_name: str | None = None
    user_type: str | None = None
    is_active: bool
    created_at: datetime


class PageCreate(BaseModel):
    page_key: str
    page_name: str
    route_path: str
    section_key: str | None = None
    sort_order: int | None = None
    is_active: bool = True


class PageUpdate(BaseModel):
    page_key: str | None = None
    page_name: str | None = None
    route_path: str | None = None
    section_key: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class PageRead(ORMReadModel):
    id: int
    page_key: str
    page_name: str
    route_path: str
    section_key: str | None = None
    sort_order: int | None = None
    is_active: bool
    created_at: datetime


class PermissionCreate(BaseModel):
    page_id: int
    action_key: str
    is_active: bool = True


class PermissionUpdate(BaseModel):
    page_id: int | None = None
    action_key: str | None = None
    is_active: bool | None = None


class PermissionRead(ORMReadModel):
    id: int
    perm_key: str
    page_id: int
    action_key: str
    is_active: bool
    created_at: datetime


class RoleCreate(BaseModel):
    role_name: str
    role_description: str | None = None
    is_active: bool = True


class RoleUpdate(BaseModel):
    role_name: str | None = None
    role_description: str | None = None
    is_active: bool | None = None


class RoleRead(ORMReadModel):
    id: int
    role_name: str
    role_description: str | None = None
    is_active: bool
    created_at: datetime


class PageSyncItem(BaseModel):
    # Required fields are optional here so that incomplete items are reported
    # as skipped instead of failing request validation.
    page_key: str | None = None
    page_name: str | None = None
    route_path: str | None = None
    section_key: str | None = None
    sort_order: int | None = None


class PageSyncRequest(BaseModel):
    pages: list[PageSyncItem]


class SyncItemResult(BaseModel):
    page_key: str | None = None
    route_path: str | None = None
    page_id: int | None = None
    status: str
    reason: str | None = None


class PageSyncRead(BaseModel):
    inserted_count: int
    updated_count: int
    skipped_count: int
    results: list[SyncItemResult]


class PermissionGenerateRequest(BaseModel):
    action_keys: list[str]


class GenerateItemResult(BaseModel):
    page_key: str
    action_key: str
    perm_key: str
    permission_id: int | None = None
    status: str
    reason: str | None = None


class PermissionGenerateRead(BaseModel):
    generated_count: int
    skipped_count: int
    results: list[GenerateItemResult]


class PermissionGrantItem(BaseModel):
    # Loosely typed so that malformed entries are skipped rather than rejected.
    permission_id: int | str | None = None
    is_allowed: bool | None = None


class PermissionGrantBatchRequest(BaseModel):
    updates: list[PermissionGrantItem]


class GrantItemResult(BaseModel):
    permission_id: int | str | None = None
    is_allowed: bool | None = None
    status: str
    reason: str | None = None


class PermissionGrantBatchRead(BaseModel):
    target_id: int
    requested_count: int
    applied_count: int
    skipped_count: int
    results: list[GrantItemResult]


class UserRoleReplaceRequest(BaseModel):
    role_ids: list[int | str | None]


class RoleItemResult(BaseModel):
    role_id: int | str | None = None
    status: str
    reason: str | None = None


class UserRoleReplaceRead(BaseModel):
    user_id: int
    requested_count: int
    assigned_count: int
    skipped_count: int
    role_ids: list[int]
    results: list[RoleItemResult]


class UserRoleRead(BaseModel):
    role_id: int
    role_name: str
    role_description: str | None = None
    is_active: bool
    assigned_at: datetime


class UserPermissionRead(BaseModel):
    permission_id: int
    perm_key: str
    action_key: str
    route_path: str
    page_name: str
    is_allowed: bool
    assigned_at: datetime


class MatrixPermissionRead(BaseModel):
    permission_id: int
    perm_key: str
    action_key: str
    is_allowed: bool


class MatrixPageRead(BaseModel):
    page_id: int
    page_key: str
    page_name: str
    route_path: str
    section_key: str | None = None
    sort_order: int | None = None
    permissions: list[MatrixPermissionRead] = PydanticField(default_factory=list)


class AccessCheckRead(BaseModel):
    has_access: bool
    route: str
    action: str


class AccessDecisionRead(BaseModel):
    allowed: bool
    layer: str
    route: str
    action: str
    permission_id: int | None = None
    perm_key: str | None = None
