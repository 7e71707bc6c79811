from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from route_access.domain.access import normalize_route
from route_access.domain.models import Page, PageSyncItem, Permission
from route_access.infra.db import get_engine, store_guard

logger = logging.getLogger(__name__)

PERM_KEY_SEPARATOR = ":"
MAX_GENERATE_ATTEMPTS = 3


class RegistrarError(Exception):
    pass


class ValidationError(RegistrarError):
    pass


class ConflictError(RegistrarError):
    pass


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def compose_perm_key(page_key: str, action_key: str) -> str:
    page_part = _clean(page_key)
    action_part = _clean(action_key)
    if page_part is None or action_part is None:
        raise ValidationError("page_key and action_key are required to build a perm key")
    if PERM_KEY_SEPARATOR in page_part or PERM_KEY_SEPARATOR in action_part:
        raise ValidationError(f"page_key and action_key must not contain '{PERM_KEY_SEPARATOR}'")
    return f"{page_part}{PERM_KEY_SEPARATOR}{action_part.lower()}"


def normalize_action_keys(action_keys: Iterable[Any]) -> list[str]:
    cleaned = (_clean(item) for item in action_keys)
    return list(dict.fromkeys(item.lower() for item in cleaned if item is not None))


class RegistrarService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _find_existing_page(self, session: Session, page_key: str, route_path: str) -> Page | None:
        matches = list(
            session.exec(
                select(Page).where(or_(col(Page.page_key) == page_key, col(Page.route_path) == route_path))
            ).all()
        )
        if not matches:
            return None
        by_key = next((item for item in matches if item.page_key == page_key), None)
        return by_key or matches[0]

    def sync_pages(self, items: list[PageSyncItem]) -> dict[str, Any]:
        if not items:
            raise ValidationError("pages must be a non-empty list")

        results: list[dict[str, Any]] = []
        with store_guard("sync_pages"), self._session() as session:
            try:
                for item in items:
                    page_key = _clean(item.page_key)
                    page_name = _clean(item.page_name)
                    route_path = normalize_route(item.route_path)
                    if page_key is None or page_name is None or not route_path:
                        reason = "missing required fields: page_key, page_name, route_path"
                        logger.warning(
                            "registrar.sync_pages.skipped",
                            extra={"page_key": item.page_key, "route_path": item.route_path, "reason": reason},
                        )
                        results.append(
                            {
                                "page_key": item.page_key,
                                "route_path": item.route_path,
                                "status": "skipped",
                                "reason": reason,
                            }
                        )
                        continue
                    if PERM_KEY_SEPARATOR in page_key:
                        reason = f"page_key must not contain '{PERM_KEY_SEPARATOR}'"
                        logger.warning(
                            "registrar.sync_pages.skipped",
                            extra={"page_key": page_key, "route_path": route_path, "reason": reason},
                        )
                        results.append(
                            {"page_key": page_key, "route_path": route_path, "status": "skipped", "reason": reason}
                        )
                        continue

                    page = self._find_existing_page(session, page_key, route_path)
                    if page is not None:
                        page.page_name = page_name
                        page.route_path = route_path
                        page.section_key = _clean(item.section_key)
                        page.sort_order = item.sort_order
                        page.is_active = True
                        status_name = "updated"
                    else:
                        page = Page(
                            page_key=page_key,
                            page_name=page_name,
                            route_path=route_path,
                            section_key=_clean(item.section_key),
                            sort_order=item.sort_order,
                            is_active=True,
                        )
                        status_name = "inserted"
                    session.add(page)
                    session.flush()
                    results.append(
                        {
                            "page_key": page_key,
                            "route_path": route_path,
                            "page_id": page.id,
                            "status": status_name,
                        }
                    )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("page sync conflicts with an existing page key or route path") from exc
            except Exception:
                session.rollback()
                raise

        summary = {
            "inserted_count": sum(1 for item in results if item["status"] == "inserted"),
            "updated_count": sum(1 for item in results if item["status"] == "updated"),
            "skipped_count": sum(1 for item in results if item["status"] == "skipped"),
            "results": results,
        }
        logger.info(
            "registrar.sync_pages.completed",
            extra={key: value for key, value in summary.items() if key != "results"},
        )
        return summary

    def _generate_once(self, action_keys: list[str]) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        with self._session() as session:
            try:
                pages = list(
                    session.exec(select(Page).where(col(Page.is_active).is_(True)).order_by(col(Page.id))).all()
                )
                existing_keys = set(session.exec(select(Permission.perm_key)).all())
                for page in pages:
                    for action_key in action_keys:
                        perm_key = compose_perm_key(page.page_key, action_key)
                        if perm_key in existing_keys:
                            results.append(
                                {
                                    "page_key": page.page_key,
                                    "action_key": action_key,
                                    "perm_key": perm_key,
                                    "status": "skipped",
                                    "reason": "already exists",
                                }
                            )
                            continue
                        permission = Permission(
                            perm_key=perm_key,
                            page_id=page.id,
                            action_key=action_key,
                            is_active=True,
                        )
                        session.add(permission)
                        session.flush()
                        existing_keys.add(perm_key)
                        results.append(
                            {
                                "page_key": page.page_key,
                                "action_key": action_key,
                                "perm_key": perm_key,
                                "permission_id": permission.id,
                                "status": "generated",
                            }
                        )
                session.commit()
            except Exception:
                session.rollback()
                raise
        return results

    def generate_permissions(self, action_keys: Iterable[Any]) -> dict[str, Any]:
        normalized = normalize_action_keys(action_keys)
        if not normalized:
            raise ValidationError("action_keys must be a non-empty list")
        for key in normalized:
            if PERM_KEY_SEPARATOR in key:
                raise ValidationError(f"action key must not contain '{PERM_KEY_SEPARATOR}': {key}")

        attempt = 0
        while True:
            attempt += 1
            try:
                with store_guard("generate_permissions"):
                    results = self._generate_once(normalized)
                break
            except IntegrityError as exc:
                # Another writer committed an overlapping perm key first.
                if attempt >= MAX_GENERATE_ATTEMPTS:
                    raise ConflictError("permission generation kept colliding with concurrent writers") from exc
                logger.warning(
                    "registrar.generate_permissions.retry",
                    extra={"attempt": attempt, "action_keys": normalized},
                )

        summary = {
            "generated_count": sum(1 for item in results if item["status"] == "generated"),
            "skipped_count": sum(1 for item in results if item["status"] == "skipped"),
            "results": results,
        }
        logger.info(
            "registrar.generate_permissions.completed",
            extra={
                "action_keys": normalized,
                "generated_count": summary["generated_count"],
                "skipped_count": summary["skipped_count"],
            },
        )
        return summary
