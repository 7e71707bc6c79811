from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from route_access.domain.access import AccessPolicyConfig, Identity
from route_access.infra.auth import decode_access_token
from route_access.infra.db import StoreUnavailableError
from route_access.services.decision_service import DecisionService

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Access could not be determined",
    )


def get_access_policy(request: Request) -> AccessPolicyConfig:
    return request.app.state.access_policy


def get_decision_service(
    policy: Annotated[AccessPolicyConfig, Depends(get_access_policy)],
) -> DecisionService:
    return DecisionService(policy)


def get_current_identity(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    decisions: Annotated[DecisionService, Depends(get_decision_service)],
) -> Identity:
    if credentials is None:
        raise _unauthorized("Missing bearer token")
    try:
        claims = decode_access_token(credentials.credentials)
        user_id = int(claims["sub"])
    except Exception as exc:
        raise _unauthorized("Invalid token") from exc

    # The classifier always comes from the stored user, never from the token.
    try:
        identity = decisions.resolve_identity(user_id)
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc
    if identity is None:
        raise _unauthorized("Unknown or inactive user")
    request.state.identity = identity
    return identity


def require_access(route: str, action: str) -> Callable[..., Identity]:
    def _checker(
        identity: Annotated[Identity, Depends(get_current_identity)],
        decisions: Annotated[DecisionService, Depends(get_decision_service)],
    ) -> Identity:
        try:
            allowed = decisions.authorize(identity, route, action)
        except StoreUnavailableError as exc:
            raise _store_unavailable() from exc
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied: {action} {route}",
            )
        return identity

    return _checker
