from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from route_access.domain.access import AccessPolicyConfig, BypassTable, DecisionLayer, Identity
from route_access.domain.models import (
    PageSyncItem,
    PageUpdate,
    Permission,
    PermissionGrantItem,
    PermissionUpdate,
    RoleCreate,
    RoleUpdate,
    UserCreate,
    UserUpdate,
)
from route_access.infra import db
from route_access.infra.db import StoreUnavailableError
from route_access.services.assignment_service import AssignmentService
from route_access.services.catalog_service import CatalogService
from route_access.services.decision_service import DecisionService, candidate_prefixes
from route_access.services.registrar_service import RegistrarService


@pytest.fixture()
def decision_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "decision_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def decisions() -> DecisionService:
    policy = AccessPolicyConfig(
        bypass=BypassTable.from_mapping({"REGIONAL AM": ["/dashboard"], "EDO": ["/dashboard/feasibility"]}),
        always_allowed_routes=("/dashboard/home", "/logout"),
    )
    return DecisionService(policy)


def _seed_catalog() -> None:
    RegistrarService().sync_pages(
        [
            PageSyncItem(page_key="dashboard", page_name="Dashboard", route_path="/dashboard"),
            PageSyncItem(page_key="reports", page_name="Reports", route_path="/dashboard/reports"),
            PageSyncItem(page_key="settings", page_name="Settings", route_path="/dashboard/settings"),
        ]
    )
    RegistrarService().generate_permissions(["view", "edit"])


def _permission_id(perm_key: str) -> int:
    with Session(db.get_engine()) as session:
        permission = session.exec(select(Permission).where(Permission.perm_key == perm_key)).one()
        assert permission.id is not None
        return permission.id


def _create_user(email: str, user_type: str | None = None) -> int:
    user = CatalogService().create_user(UserCreate(email=email, user_type=user_type))
    assert user.id is not None
    return user.id


def _create_role(name: str, grants: dict[str, bool]) -> int:
    role = CatalogService().create_role(RoleCreate(role_name=name))
    assert role.id is not None
    AssignmentService().set_role_permissions(
        role.id,
        [PermissionGrantItem(permission_id=_permission_id(key), is_allowed=value) for key, value in grants.items()],
    )
    return role.id


def test_candidate_prefixes_longest_first() -> None:
    assert candidate_prefixes("/dashboard/reports/2024") == [
        "/dashboard/reports/2024",
        "/dashboard/reports",
        "/dashboard",
        "/",
    ]
    assert candidate_prefixes("/") == ["/"]
    assert candidate_prefixes("") == []


def test_bypass_wins_over_user_denial(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("am@example.com", user_type="REGIONAL AM")
    AssignmentService().set_user_permissions(
        user_id,
        [PermissionGrantItem(permission_id=_permission_id("dashboard:view"), is_allowed=False)],
    )

    decision = decisions.explain(Identity(user_id=user_id, classifier="regional am "), "/dashboard")

    assert decision.allowed is True
    assert decision.layer == DecisionLayer.BYPASS


def test_bypass_allows_route_without_catalog_entry(decision_engine: Engine, decisions: DecisionService) -> None:
    identity = Identity(user_id=999, classifier="REGIONAL AM")

    assert decisions.authorize(identity, "/dashboard/unregistered/page", "delete") is True


def test_bypass_is_plain_prefix_match(decision_engine: Engine, decisions: DecisionService) -> None:
    identity = Identity(user_id=999, classifier="EDO")

    assert decisions.authorize(identity, "/dashboard/feasibility-approval") is True
    assert decisions.authorize(identity, "/dashboard/reports") is False


def test_allowlisted_route_skips_catalog(decision_engine: Engine, decisions: DecisionService) -> None:
    decision = decisions.explain(Identity(user_id=12345), "/logout?next=/", "view")

    assert decision.allowed is True
    assert decision.layer == DecisionLayer.ALLOWLIST
    assert decision.route == "/logout"


def test_user_override_beats_role_grant(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("editor@example.com")
    role_id = _create_role("report-editors", {"reports:edit": True})
    AssignmentService().set_user_roles(user_id, [role_id])
    AssignmentService().set_user_permissions(
        user_id,
        [PermissionGrantItem(permission_id=_permission_id("reports:edit"), is_allowed=False)],
    )

    decision = decisions.explain(Identity(user_id=user_id), "/dashboard/reports", "edit")

    assert decision.allowed is False
    assert decision.layer == DecisionLayer.USER_OVERRIDE
    assert decision.perm_key == "reports:edit"


def test_user_override_can_grant_without_roles(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("viewer@example.com")
    AssignmentService().set_user_permissions(
        user_id,
        [PermissionGrantItem(permission_id=_permission_id("reports:view"), is_allowed=True)],
    )

    assert decisions.authorize(Identity(user_id=user_id), "/dashboard/reports") is True


def test_most_permissive_role_wins(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("two-roles@example.com")
    denying = _create_role("report-deny", {"reports:view": False})
    granting = _create_role("report-allow", {"reports:view": True})
    AssignmentService().set_user_roles(user_id, [denying, granting])

    decision = decisions.explain(Identity(user_id=user_id), "/dashboard/reports", "VIEW")

    assert decision.allowed is True
    assert decision.layer == DecisionLayer.ROLE
    assert decision.action == "view"


def test_inactive_role_is_ignored(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("inactive-role@example.com")
    role_id = _create_role("report-allow", {"reports:view": True})
    AssignmentService().set_user_roles(user_id, [role_id])
    CatalogService().update_role(role_id, RoleUpdate(is_active=False))

    decision = decisions.explain(Identity(user_id=user_id), "/dashboard/reports")

    assert decision.allowed is False
    assert decision.layer == DecisionLayer.DEFAULT_DENY


def test_unregistered_route_is_denied(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("nobody@example.com")

    unregistered = decisions.explain(Identity(user_id=user_id), "/admin/tools")
    unknown_action = decisions.explain(Identity(user_id=user_id), "/dashboard/reports", "delete")

    assert unregistered.allowed is False
    assert unregistered.layer == DecisionLayer.UNRESOLVED
    assert unknown_action.allowed is False
    assert unknown_action.layer == DecisionLayer.UNRESOLVED


def test_nested_route_resolves_longest_registered_page(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("nested@example.com")
    role_id = _create_role("report-viewers", {"reports:view": True})
    AssignmentService().set_user_roles(user_id, [role_id])

    decision = decisions.explain(Identity(user_id=user_id), "/dashboard/reports/2024/q1/")

    assert decision.allowed is True
    assert decision.perm_key == "reports:view"
    # segment-aware: "/dashboard/reports-archive" belongs to "/dashboard", not to reports
    sibling = decisions.explain(Identity(user_id=user_id), "/dashboard/reports-archive")
    assert sibling.perm_key == "dashboard:view"
    assert sibling.allowed is False


def test_deactivated_page_or_permission_denies(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("deactivated@example.com")
    role_id = _create_role("all-view", {"reports:view": True, "settings:view": True})
    AssignmentService().set_user_roles(user_id, [role_id])
    identity = Identity(user_id=user_id)
    assert decisions.authorize(identity, "/dashboard/reports") is True
    assert decisions.authorize(identity, "/dashboard/settings") is True

    pages = {page.page_key: page for page in CatalogService().list_pages()}
    CatalogService().update_page(pages["reports"].id, PageUpdate(is_active=False))
    CatalogService().update_permission(_permission_id("settings:view"), PermissionUpdate(is_active=False))

    # the reports route now falls back to the dashboard page, which grants nothing
    assert decisions.explain(identity, "/dashboard/reports").perm_key == "dashboard:view"
    assert decisions.authorize(identity, "/dashboard/reports") is False
    assert decisions.explain(identity, "/dashboard/settings").layer == DecisionLayer.UNRESOLVED


def test_unknown_or_inactive_user_is_denied(decision_engine: Engine, decisions: DecisionService) -> None:
    _seed_catalog()
    user_id = _create_user("leaver@example.com")
    AssignmentService().set_user_permissions(
        user_id,
        [PermissionGrantItem(permission_id=_permission_id("reports:view"), is_allowed=True)],
    )
    CatalogService().update_user(user_id, UserUpdate(is_active=False))

    unknown = decisions.explain(Identity(user_id=424242), "/dashboard/reports")
    inactive = decisions.explain(Identity(user_id=user_id), "/dashboard/reports")

    assert unknown.allowed is False
    assert unknown.layer == DecisionLayer.UNKNOWN_IDENTITY
    assert inactive.allowed is False
    assert inactive.layer == DecisionLayer.UNKNOWN_IDENTITY


def test_empty_route_is_denied(decision_engine: Engine, decisions: DecisionService) -> None:
    assert decisions.authorize(Identity(user_id=1), "  ") is False


def test_store_failure_raises_instead_of_allowing(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    decisions: DecisionService,
) -> None:
    broken_engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'store.db'}")
    monkeypatch.setattr(db, "engine", broken_engine)

    with pytest.raises(StoreUnavailableError):
        decisions.authorize(Identity(user_id=1), "/dashboard/reports")

    # bypass and allowlist never touch the store
    assert decisions.authorize(Identity(user_id=1, classifier="REGIONAL AM"), "/dashboard/reports") is True
    assert decisions.authorize(Identity(user_id=1), "/logout") is True


def test_missing_action_is_inferred_from_route(decision_engine: Engine, decisions: DecisionService) -> None:
    RegistrarService().sync_pages(
        [PageSyncItem(page_key="baseline-qol", page_name="Baseline QoL", route_path="/dashboard/baseline-qol")]
    )
    RegistrarService().generate_permissions(["view", "add"])
    user_id = _create_user("surveyor@example.com")
    role_id = _create_role("baseline-viewers", {"baseline-qol:view": True})
    AssignmentService().set_user_roles(user_id, [role_id])
    identity = Identity(user_id=user_id)

    add_page = decisions.explain(identity, "/dashboard/baseline-qol/add")
    listing = decisions.explain(identity, "/dashboard/baseline-qol")
    explicit = decisions.explain(identity, "/dashboard/baseline-qol/add", "view")

    assert add_page.action == "add"
    assert add_page.perm_key == "baseline-qol:add"
    assert add_page.allowed is False
    assert listing.action == "view"
    assert listing.allowed is True
    assert explicit.action == "view"
    assert explicit.allowed is True


def test_resolve_identity_reads_current_user_row(decision_engine: Engine, decisions: DecisionService) -> None:
    user_id = _create_user("promoted@example.com", user_type="REGIONAL AM")

    assert decisions.resolve_identity(user_id) == Identity(user_id=user_id, classifier="REGIONAL AM")

    CatalogService().update_user(user_id, UserUpdate(user_type="JPO"))
    demoted = decisions.resolve_identity(user_id)
    assert demoted == Identity(user_id=user_id, classifier="JPO")
    assert demoted is not None
    assert decisions.authorize(demoted, "/dashboard/unregistered/page") is False

    CatalogService().update_user(user_id, UserUpdate(is_active=False))
    assert decisions.resolve_identity(user_id) is None
    assert decisions.resolve_identity(424242) is None
