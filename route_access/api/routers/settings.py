from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from route_access.api.deps import require_access
from route_access.domain.access import ACTION_EDIT, ACTION_VIEW, SETTINGS_ROUTE
from route_access.domain.models import (
    BootstrapAdminRequest,
    MatrixPageRead,
    PageCreate,
    PageRead,
    PageSyncRead,
    PageSyncRequest,
    PageUpdate,
    PermissionCreate,
    PermissionGenerateRead,
    PermissionGenerateRequest,
    PermissionGrantBatchRead,
    PermissionGrantBatchRequest,
    PermissionRead,
    PermissionUpdate,
    RoleCreate,
    RoleRead,
    RoleUpdate,
    UserCreate,
    UserPermissionRead,
    UserRead,
    UserRoleRead,
    UserRoleReplaceRead,
    UserRoleReplaceRequest,
    UserUpdate,
)
from route_access.infra.db import StoreUnavailableError
from route_access.services import assignment_service, catalog_service, registrar_service
from route_access.services.assignment_service import AssignmentError, AssignmentService
from route_access.services.catalog_service import CatalogError, CatalogService
from route_access.services.registrar_service import RegistrarError, RegistrarService

router = APIRouter()

SETTINGS_ERRORS = (CatalogError, RegistrarError, AssignmentError, StoreUnavailableError)

can_view = Depends(require_access(SETTINGS_ROUTE, ACTION_VIEW))
can_edit = Depends(require_access(SETTINGS_ROUTE, ACTION_EDIT))


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_registrar_service() -> RegistrarService:
    return RegistrarService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Catalog = Annotated[CatalogService, Depends(get_catalog_service)]
Registrar = Annotated[RegistrarService, Depends(get_registrar_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]


def _handle_settings_error(exc: Exception) -> None:
    if isinstance(exc, (catalog_service.NotFoundError, assignment_service.NotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (catalog_service.ConflictError, registrar_service.ConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(
        exc,
        (catalog_service.ValidationError, registrar_service.ValidationError, assignment_service.ValidationError),
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailableError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


# users


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Catalog) -> UserRead:
    try:
        return UserRead.model_validate(service.bootstrap_admin(payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED, dependencies=[can_edit])
def create_user(payload: UserCreate, service: Catalog) -> UserRead:
    try:
        return UserRead.model_validate(service.create_user(payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/users", response_model=list[UserRead], dependencies=[can_view])
def list_users(service: Catalog) -> list[UserRead]:
    try:
        return [UserRead.model_validate(item) for item in service.list_users()]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/users/{user_id}", response_model=UserRead, dependencies=[can_view])
def get_user(user_id: int, service: Catalog) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(user_id))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.patch("/users/{user_id}", response_model=UserRead, dependencies=[can_edit])
def update_user(user_id: int, payload: UserUpdate, service: Catalog) -> UserRead:
    try:
        return UserRead.model_validate(service.update_user(user_id, payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/users/{user_id}/roles", response_model=list[UserRoleRead], dependencies=[can_view])
def list_user_roles(user_id: int, service: Assignments) -> list[UserRoleRead]:
    try:
        return [UserRoleRead.model_validate(item) for item in service.list_user_roles(user_id)]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.put("/users/{user_id}/roles", response_model=UserRoleReplaceRead, dependencies=[can_edit])
def replace_user_roles(user_id: int, payload: UserRoleReplaceRequest, service: Assignments) -> UserRoleReplaceRead:
    try:
        return UserRoleReplaceRead.model_validate(service.set_user_roles(user_id, payload.role_ids))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/users/{user_id}/permissions", response_model=list[UserPermissionRead], dependencies=[can_view])
def list_user_permissions(user_id: int, service: Assignments) -> list[UserPermissionRead]:
    try:
        return [UserPermissionRead.model_validate(item) for item in service.list_user_permissions(user_id)]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.put("/users/{user_id}/permissions", response_model=PermissionGrantBatchRead, dependencies=[can_edit])
def set_user_permissions(
    user_id: int,
    payload: PermissionGrantBatchRequest,
    service: Assignments,
) -> PermissionGrantBatchRead:
    try:
        return PermissionGrantBatchRead.model_validate(service.set_user_permissions(user_id, payload.updates))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


# pages


@router.post("/pages", response_model=PageRead, status_code=status.HTTP_201_CREATED, dependencies=[can_edit])
def create_page(payload: PageCreate, service: Catalog) -> PageRead:
    try:
        return PageRead.model_validate(service.create_page(payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/pages", response_model=list[PageRead], dependencies=[can_view])
def list_pages(service: Catalog) -> list[PageRead]:
    try:
        return [PageRead.model_validate(item) for item in service.list_pages()]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.post("/pages:sync", response_model=PageSyncRead, dependencies=[can_edit])
def sync_pages(payload: PageSyncRequest, service: Registrar) -> PageSyncRead:
    try:
        return PageSyncRead.model_validate(service.sync_pages(payload.pages))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/pages/{page_id}", response_model=PageRead, dependencies=[can_view])
def get_page(page_id: int, service: Catalog) -> PageRead:
    try:
        return PageRead.model_validate(service.get_page(page_id))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.patch("/pages/{page_id}", response_model=PageRead, dependencies=[can_edit])
def update_page(page_id: int, payload: PageUpdate, service: Catalog) -> PageRead:
    try:
        return PageRead.model_validate(service.update_page(page_id, payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.delete("/pages/{page_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_edit])
def delete_page(page_id: int, service: Catalog) -> Response:
    try:
        service.delete_page(page_id)
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# permissions


@router.post(
    "/permissions",
    response_model=PermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_edit],
)
def create_permission(payload: PermissionCreate, service: Catalog) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.create_permission(payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/permissions", response_model=list[PermissionRead], dependencies=[can_view])
def list_permissions(service: Catalog, page_id: int | None = None) -> list[PermissionRead]:
    try:
        return [PermissionRead.model_validate(item) for item in service.list_permissions(page_id)]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.post("/permissions:generate", response_model=PermissionGenerateRead, dependencies=[can_edit])
def generate_permissions(payload: PermissionGenerateRequest, service: Registrar) -> PermissionGenerateRead:
    try:
        return PermissionGenerateRead.model_validate(service.generate_permissions(payload.action_keys))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/permissions/{permission_id}", response_model=PermissionRead, dependencies=[can_view])
def get_permission(permission_id: int, service: Catalog) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.get_permission(permission_id))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.patch("/permissions/{permission_id}", response_model=PermissionRead, dependencies=[can_edit])
def update_permission(permission_id: int, payload: PermissionUpdate, service: Catalog) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.update_permission(permission_id, payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_edit])
def delete_permission(permission_id: int, service: Catalog) -> Response:
    try:
        service.delete_permission(permission_id)
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# roles


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED, dependencies=[can_edit])
def create_role(payload: RoleCreate, service: Catalog) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/roles", response_model=list[RoleRead], dependencies=[can_view])
def list_roles(service: Catalog) -> list[RoleRead]:
    try:
        return [RoleRead.model_validate(item) for item in service.list_roles()]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.get("/roles/{role_id}", response_model=RoleRead, dependencies=[can_view])
def get_role(role_id: int, service: Catalog) -> RoleRead:
    try:
        return RoleRead.model_validate(service.get_role(role_id))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.patch("/roles/{role_id}", response_model=RoleRead, dependencies=[can_edit])
def update_role(role_id: int, payload: RoleUpdate, service: Catalog) -> RoleRead:
    try:
        return RoleRead.model_validate(service.update_role(role_id, payload))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_edit])
def delete_role(role_id: int, service: Catalog) -> Response:
    try:
        service.delete_role(role_id)
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/roles/{role_id}/permissions", response_model=list[MatrixPageRead], dependencies=[can_view])
def get_role_permission_matrix(role_id: int, service: Assignments) -> list[MatrixPageRead]:
    try:
        return [MatrixPageRead.model_validate(item) for item in service.get_role_permission_matrix(role_id)]
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise


@router.put("/roles/{role_id}/permissions", response_model=PermissionGrantBatchRead, dependencies=[can_edit])
def set_role_permissions(
    role_id: int,
    payload: PermissionGrantBatchRequest,
    service: Assignments,
) -> PermissionGrantBatchRead:
    try:
        return PermissionGrantBatchRead.model_validate(service.set_role_permissions(role_id, payload.updates))
    except SETTINGS_ERRORS as exc:
        _handle_settings_error(exc)
        raise
