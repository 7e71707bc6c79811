from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlmodel import Session, col, select

from route_access.domain.access import (
    AccessPolicyConfig,
    DecisionLayer,
    Identity,
    normalize_action,
    normalize_route,
)
from route_access.domain.models import Page, Permission, Role, RolePermission, User, UserPermission, UserRole
from route_access.infra.db import get_engine, store_guard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    layer: DecisionLayer
    route: str
    action: str
    permission_id: int | None = None
    perm_key: str | None = None


def candidate_prefixes(route: str) -> list[str]:
    # longest first, ending with the root
    if not route:
        return []
    prefixes: list[str] = []
    current = route
    while current and current != "/":
        prefixes.append(current)
        current = current.rsplit("/", 1)[0]
    prefixes.append("/")
    return prefixes


class DecisionService:
    def __init__(self, policy: AccessPolicyConfig) -> None:
        self.policy = policy

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def resolve_identity(self, user_id: int) -> Identity | None:
        with store_guard("resolve_identity"), self._session() as session:
            user = session.get(User, user_id)
            if user is None or not user.is_active:
                return None
            return Identity(user_id=user_id, classifier=user.user_type)

    def authorize(self, identity: Identity, route: str | None, action: str | None = None) -> bool:
        return self.explain(identity, route, action).allowed

    def explain(self, identity: Identity, route: str | None, action: str | None = None) -> AccessDecision:
        normalized_route = normalize_route(route)
        action_key = normalize_action(action, default=self.policy.action_for_route(normalized_route))
        decision = self._evaluate(identity, normalized_route, action_key)
        logger.debug(
            "access.decision",
            extra={
                "user_id": identity.user_id,
                "classifier": identity.classifier,
                "route": decision.route,
                "action": decision.action,
                "allowed": decision.allowed,
                "layer": decision.layer.value,
                "permission_id": decision.permission_id,
            },
        )
        return decision

    def _evaluate(self, identity: Identity, route: str, action: str) -> AccessDecision:
        if self.policy.bypass.allows(identity.classifier, route):
            return AccessDecision(True, DecisionLayer.BYPASS, route, action)
        if self.policy.is_always_allowed(route):
            return AccessDecision(True, DecisionLayer.ALLOWLIST, route, action)
        if not route:
            return AccessDecision(False, DecisionLayer.UNRESOLVED, route, action)

        with store_guard("authorize"), self._session() as session:
            permission = self._resolve_permission(session, route, action)
            if permission is None:
                return AccessDecision(False, DecisionLayer.UNRESOLVED, route, action)

            def decided(allowed: bool, layer: DecisionLayer) -> AccessDecision:
                return AccessDecision(allowed, layer, route, action, permission.id, permission.perm_key)

            user = session.get(User, identity.user_id)
            if user is None or not user.is_active:
                return decided(False, DecisionLayer.UNKNOWN_IDENTITY)

            override = session.get(UserPermission, (identity.user_id, permission.id))
            if override is not None:
                return decided(override.is_allowed, DecisionLayer.USER_OVERRIDE)

            # Any active role granting the permission is enough.
            granting_role = session.exec(
                select(RolePermission.role_id)
                .join(UserRole, col(UserRole.role_id) == col(RolePermission.role_id))
                .join(Role, col(Role.id) == col(RolePermission.role_id))
                .where(
                    UserRole.user_id == identity.user_id,
                    RolePermission.permission_id == permission.id,
                    col(RolePermission.is_allowed).is_(True),
                    col(Role.is_active).is_(True),
                )
                .limit(1)
            ).first()
            if granting_role is not None:
                return decided(True, DecisionLayer.ROLE)
            return decided(False, DecisionLayer.DEFAULT_DENY)

    def _resolve_permission(self, session: Session, route: str, action: str) -> Permission | None:
        prefixes = candidate_prefixes(route)
        pages = session.exec(
            select(Page).where(col(Page.route_path).in_(prefixes), col(Page.is_active).is_(True))
        ).all()
        if not pages:
            return None
        page = max(pages, key=lambda item: len(item.route_path))
        return session.exec(
            select(Permission).where(
                Permission.page_id == page.id,
                Permission.action_key == action,
                col(Permission.is_active).is_(True),
            )
        ).first()
