from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from route_access.api.deps import get_current_identity, get_decision_service
from route_access.domain.access import Identity
from route_access.domain.models import AccessCheckRead, AccessDecisionRead
from route_access.infra.db import StoreUnavailableError
from route_access.services.decision_service import AccessDecision, DecisionService

router = APIRouter()

CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
Decisions = Annotated[DecisionService, Depends(get_decision_service)]


def _explain(decisions: DecisionService, identity: Identity, route: str, action: str | None) -> AccessDecision:
    try:
        return decisions.explain(identity, route, action)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access could not be determined",
        ) from exc


@router.get("/check", response_model=AccessCheckRead)
def check_route_access(
    identity: CurrentIdentity,
    decisions: Decisions,
    route: Annotated[str, Query(min_length=1)],
    action: str | None = None,
) -> AccessCheckRead:
    decision = _explain(decisions, identity, route, action)
    return AccessCheckRead(has_access=decision.allowed, route=decision.route, action=decision.action)


@router.get("/explain", response_model=AccessDecisionRead)
def explain_route_access(
    identity: CurrentIdentity,
    decisions: Decisions,
    route: Annotated[str, Query(min_length=1)],
    action: str | None = None,
) -> AccessDecisionRead:
    decision = _explain(decisions, identity, route, action)
    return AccessDecisionRead(
        allowed=decision.allowed,
        layer=decision.layer.value,
        route=decision.route,
        action=decision.action,
        permission_id=decision.permission_id,
        perm_key=decision.perm_key,
    )
