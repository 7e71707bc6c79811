from __future__ import annotations

from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from route_access.domain.models import Page, PageSyncItem, PageUpdate, Permission
from route_access.infra import db
from route_access.services.catalog_service import CatalogService
from route_access.services.registrar_service import (
    ConflictError,
    RegistrarService,
    ValidationError,
    compose_perm_key,
    normalize_action_keys,
)


@pytest.fixture()
def registrar_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "registrar_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
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


ROUTE_CATALOG = [
    PageSyncItem(page_key="dashboard", page_name="Dashboard", route_path="/dashboard", section_key="main", sort_order=1),
    PageSyncItem(page_key="finance", page_name="Finance", route_path="/dashboard/finance/", section_key="finance"),
    PageSyncItem(page_key="loans", page_name="Loan Process", route_path="dashboard/finance/loan-process"),
]


def _pages() -> list[Page]:
    with Session(db.get_engine()) as session:
        return list(session.exec(select(Page).order_by(Page.page_key)).all())


def _perm_keys() -> list[str]:
    with Session(db.get_engine()) as session:
        return sorted(session.exec(select(Permission.perm_key)).all())


def test_compose_perm_key() -> None:
    assert compose_perm_key(" finance ", "EDIT") == "finance:edit"
    with pytest.raises(ValidationError):
        compose_perm_key("finance", " ")
    with pytest.raises(ValidationError):
        compose_perm_key("fin:ance", "view")


def test_normalize_action_keys_dedupes_and_lowercases() -> None:
    assert normalize_action_keys(["View", "view ", "", None, "EDIT"]) == ["view", "edit"]


def test_sync_pages_inserts_then_updates(registrar_engine: Engine) -> None:
    service = RegistrarService()

    first = service.sync_pages(ROUTE_CATALOG)
    second = service.sync_pages(ROUTE_CATALOG)

    assert first["inserted_count"] == 3
    assert first["updated_count"] == 0
    assert second["inserted_count"] == 0
    assert second["updated_count"] == 3
    pages = _pages()
    assert len(pages) == 3
    assert {page.route_path for page in pages} == {
        "/dashboard",
        "/dashboard/finance",
        "/dashboard/finance/loan-process",
    }


def test_sync_pages_matches_by_route_and_reactivates(registrar_engine: Engine) -> None:
    service = RegistrarService()
    service.sync_pages(ROUTE_CATALOG)
    finance = next(page for page in _pages() if page.page_key == "finance")
    CatalogService().update_page(finance.id, PageUpdate(is_active=False))

    result = service.sync_pages(
        [PageSyncItem(page_key="finance-v2", page_name="Finance Hub", route_path="/dashboard/finance", sort_order=7)]
    )

    assert result["updated_count"] == 1
    assert result["results"][0]["page_id"] == finance.id
    refreshed = CatalogService().get_page(finance.id)
    assert refreshed.page_name == "Finance Hub"
    assert refreshed.sort_order == 7
    assert refreshed.is_active is True
    assert len(_pages()) == 3


def test_sync_pages_skips_incomplete_items(registrar_engine: Engine) -> None:
    result = RegistrarService().sync_pages(
        [
            PageSyncItem(page_key="reports", page_name="Reports", route_path="/dashboard/reports"),
            PageSyncItem(page_key="orphan", route_path="/dashboard/orphan"),
            PageSyncItem(page_key="bad:key", page_name="Bad", route_path="/dashboard/bad"),
        ]
    )

    assert result["inserted_count"] == 1
    assert result["skipped_count"] == 2
    assert [item["status"] for item in result["results"]] == ["inserted", "skipped", "skipped"]
    assert result["results"][1]["reason"].startswith("missing required fields")
    assert [page.page_key for page in _pages()] == ["reports"]


def test_sync_pages_rejects_empty_batch(registrar_engine: Engine) -> None:
    with pytest.raises(ValidationError):
        RegistrarService().sync_pages([])


def test_sync_pages_rolls_back_whole_batch_on_conflict(registrar_engine: Engine) -> None:
    service = RegistrarService()
    service.sync_pages(ROUTE_CATALOG)

    with pytest.raises(ConflictError):
        service.sync_pages(
            [
                PageSyncItem(page_key="reports", page_name="Reports", route_path="/dashboard/reports"),
                # key matches "dashboard" while the route belongs to "finance"
                PageSyncItem(page_key="dashboard", page_name="Dashboard", route_path="/dashboard/finance"),
            ]
        )

    assert [page.page_key for page in _pages()] == ["dashboard", "finance", "loans"]


def test_generate_permissions_is_idempotent(registrar_engine: Engine) -> None:
    service = RegistrarService()
    service.sync_pages(ROUTE_CATALOG)

    first = service.generate_permissions(["view", "Edit"])
    second = service.generate_permissions(["edit", "view"])

    assert first["generated_count"] == 6
    assert first["skipped_count"] == 0
    assert second["generated_count"] == 0
    assert second["skipped_count"] == 6
    assert all(item["reason"] == "already exists" for item in second["results"])
    assert _perm_keys() == [
        "dashboard:edit",
        "dashboard:view",
        "finance:edit",
        "finance:view",
        "loans:edit",
        "loans:view",
    ]


def test_generate_permissions_only_covers_active_pages(registrar_engine: Engine) -> None:
    service = RegistrarService()
    service.sync_pages(ROUTE_CATALOG)
    loans = next(page for page in _pages() if page.page_key == "loans")
    CatalogService().update_page(loans.id, PageUpdate(is_active=False))

    result = service.generate_permissions(["view"])

    assert result["generated_count"] == 2
    assert "loans:view" not in _perm_keys()


def test_generate_permissions_rejects_empty_action_keys(registrar_engine: Engine) -> None:
    with pytest.raises(ValidationError):
        RegistrarService().generate_permissions([])
    with pytest.raises(ValidationError):
        RegistrarService().generate_permissions(["  "])


def test_concurrent_generate_never_duplicates_perm_keys(registrar_engine: Engine) -> None:
    RegistrarService().sync_pages(ROUTE_CATALOG)
    batches = [["view", "edit"], ["edit", "delete"], ["view", "delete"], ["view", "edit", "delete"]] * 2

    def _generate(action_keys: list[str]) -> dict[str, Any]:
        return RegistrarService().generate_permissions(action_keys)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(_generate, batches))

    keys = _perm_keys()
    assert len(keys) == len(set(keys)) == 9
    assert sum(item["generated_count"] for item in results) == 9
