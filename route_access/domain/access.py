from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "view"
SETTINGS_ROUTE = "/admin/settings"
SUPER_ADMIN_CLASSIFIER = "SUPER ADMIN"
ACTION_VIEW = "view"
ACTION_EDIT = "edit"

DEFAULT_BYPASS_ROUTES: dict[str, list[str]] = {
    SUPER_ADMIN_CLASSIFIER: ["/"],
    "REGIONAL AM": [
        "/dashboard",
        "/dashboard/approval-section/baseline-approval",
        "/dashboard/approval-section/family-development-plan-approval",
        "/dashboard/approval-section/intervention-approval",
        "/logout",
    ],
    "MANAGMENT": ["/dashboard", "/logout"],
    "JPO": ["/logout"],
    "FINANCE AND ADMINISTRATION": [
        "/dashboard",
        "/dashboard/finance",
        "/dashboard/finance/loan-process",
        "/dashboard/finance/bank-information",
        "/logout",
    ],
    "EDITOR": [
        "/dashboard",
        "/dashboard/baseline-qol",
        "/dashboard/family-development-plan",
        "/dashboard/actual-intervention",
        "/dashboard/rops",
        "/logout",
    ],
    "EDO": ["/dashboard", "/dashboard/feasibility-approval", "/logout"],
}

DEFAULT_ALWAYS_ALLOWED_ROUTES: tuple[str, ...] = (
    "/dashboard/home",
    "/logout",
    "/change-password",
)

# Action implied by a page route when the caller names none.
DEFAULT_ROUTE_ACTIONS: Mapping[str, str] = MappingProxyType(
    {
        "/dashboard": "view",
        "/dashboard/baseline-qol/add": "add",
        "/dashboard/baseline-qol/edit": "edit",
        "/dashboard/family-development-plan/add": "add",
        "/dashboard/family-development-plan/edit": "edit",
        "/dashboard/actual-intervention/add": "add",
        "/dashboard/actual-intervention/edit": "edit",
        "/dashboard/swb-families/add": "add",
        "/dashboard/swb-families/edit": "edit",
        "/dashboard/finance/loan-process/add": "add",
        "/dashboard/finance/loan-process/edit": "edit",
        "/dashboard/finance/bank-information/add": "add",
        "/dashboard/family-approval-crc/add": "add",
        "/dashboard/settings/edit": "edit",
        "/dashboard/documents/upload": "add",
        "/dashboard/others/rop-update": "edit",
        "/dashboard/others/delete-all": "delete",
        "/dashboard/others/delete-family": "delete",
    }
)


class DecisionLayer(StrEnum):
    BYPASS = "bypass"
    ALLOWLIST = "allowlist"
    UNRESOLVED = "unresolved"
    UNKNOWN_IDENTITY = "unknown_identity"
    USER_OVERRIDE = "user_override"
    ROLE = "role"
    DEFAULT_DENY = "default_deny"


class AccessConfigError(Exception):
    pass


def normalize_route(route: str | None) -> str:
    """Canonical form of a route path.

    Drops the query string and fragment, trims whitespace, removes a trailing
    slash (except for the root) and guarantees a leading slash. An empty input
    normalizes to ``""`` so that it can never match a registered page.
    """
    if not route or not isinstance(route, str):
        return ""
    normalized = route.split("?", 1)[0].split("#", 1)[0].strip()
    if not normalized:
        return ""
    if len(normalized) > 1 and normalized.endswith("/"):
        normalized = normalized.rstrip("/") or "/"
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


def route_within(route: str, prefix: str) -> bool:
    if not route or not prefix:
        return False
    if route == prefix or prefix == "/":
        return True
    return route.startswith(f"{prefix}/")


def normalize_classifier(classifier: str | None) -> str:
    if not isinstance(classifier, str):
        return ""
    return classifier.strip().upper()


def normalize_action(action: str | None, default: str = DEFAULT_ACTION) -> str:
    if not isinstance(action, str) or not action.strip():
        return default
    return action.strip().lower()


@dataclass(frozen=True)
class Identity:
    user_id: int
    classifier: str | None = None


@dataclass(frozen=True)
class BypassTable:
    """Classifier -> allowed route prefixes, fixed for the life of the process."""

    rules: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Iterable[str]]) -> BypassTable:
        rules: dict[str, tuple[str, ...]] = {}
        for classifier, prefixes in raw.items():
            key = normalize_classifier(classifier)
            if not key:
                raise AccessConfigError("bypass classifier must be a non-empty string")
            if isinstance(prefixes, str):
                raise AccessConfigError(f"bypass routes for {key} must be a list")
            normalized = tuple(dict.fromkeys(normalize_route(item) for item in prefixes))
            if "" in normalized:
                raise AccessConfigError(f"bypass routes for {key} contain an empty route")
            rules[key] = normalized
        return cls(rules=MappingProxyType(rules))

    def prefixes_for(self, classifier: str | None) -> tuple[str, ...]:
        return self.rules.get(normalize_classifier(classifier), ())

    def allows(self, classifier: str | None, route: str) -> bool:
        # Plain prefix semantics: "/dashboard" also covers "/dashboard-x".
        normalized = normalize_route(route)
        if not normalized:
            return False
        return any(normalized.startswith(prefix) for prefix in self.prefixes_for(classifier))


@dataclass(frozen=True)
class AccessPolicyConfig:
    bypass: BypassTable
    always_allowed_routes: tuple[str, ...] = DEFAULT_ALWAYS_ALLOWED_ROUTES
    route_actions: Mapping[str, str] = field(default_factory=lambda: DEFAULT_ROUTE_ACTIONS)

    def is_always_allowed(self, route: str) -> bool:
        normalized = normalize_route(route)
        return any(route_within(normalized, item) for item in self.always_allowed_routes)

    def action_for_route(self, route: str) -> str:
        normalized = normalize_route(route)
        matches = [prefix for prefix in self.route_actions if route_within(normalized, prefix)]
        if not matches:
            return DEFAULT_ACTION
        return self.route_actions[max(matches, key=len)]


def _read_json_object(source: str, what: str) -> dict:
    try:
        raw = json.loads(Path(source).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise AccessConfigError(f"cannot read {what} from {source}: {exc}") from exc
    if not isinstance(raw, dict):
        raise AccessConfigError(f"{what} must be a JSON object")
    return raw


def load_bypass_table(path: str | None = None) -> BypassTable:
    source = path or os.getenv("ACCESS_BYPASS_FILE")
    if not source:
        return BypassTable.from_mapping(DEFAULT_BYPASS_ROUTES)
    table = BypassTable.from_mapping(_read_json_object(source, "bypass table"))
    logger.info("access.bypass_table.loaded", extra={"source": source, "classifiers": len(table.rules)})
    return table


def build_route_actions(raw: Mapping[str, str]) -> Mapping[str, str]:
    route_actions: dict[str, str] = {}
    for route, action in raw.items():
        normalized = normalize_route(route)
        if not normalized:
            raise AccessConfigError("route action map contains an empty route")
        if not isinstance(action, str) or not action.strip():
            raise AccessConfigError(f"action for {normalized} must be a non-empty string")
        route_actions[normalized] = normalize_action(action)
    return MappingProxyType(route_actions)


def load_route_actions(path: str | None = None) -> Mapping[str, str]:
    source = path or os.getenv("ACCESS_ROUTE_ACTIONS_FILE")
    if not source:
        return DEFAULT_ROUTE_ACTIONS
    route_actions = build_route_actions(_read_json_object(source, "route action map"))
    logger.info("access.route_actions.loaded", extra={"source": source, "routes": len(route_actions)})
    return route_actions


def load_always_allowed_routes(raw: str | None = None) -> tuple[str, ...]:
    value = raw if raw is not None else os.getenv("ACCESS_ALWAYS_ALLOWED_ROUTES")
    if value is None:
        return DEFAULT_ALWAYS_ALLOWED_ROUTES
    routes = (normalize_route(item) for item in value.split(","))
    return tuple(dict.fromkeys(item for item in routes if item))


def load_access_policy() -> AccessPolicyConfig:
    return AccessPolicyConfig(
        bypass=load_bypass_table(),
        always_allowed_routes=load_always_allowed_routes(),
        route_actions=load_route_actions(),
    )
