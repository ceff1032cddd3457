"""FastAPI dependencies for the estimator.

Provides shared collaborators (services, registry, auth) via FastAPI's
Depends() injection system. Everything lives on ``app.state``, set up by
``create_app``.
"""

import logging

from fastapi import Depends, Request

from ..core.auth import AuthUser
from ..core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


async def get_settings(request: Request):
    """Get EstimatorSettings from app state."""
    return request.app.state.settings


async def get_db_manager(request: Request):
    """Get DatabaseManager from app state."""
    return request.app.state.db_manager


async def get_project_manager(request: Request):
    """Get ProjectManager from app state."""
    return request.app.state.project_manager


async def get_estimate_service(request: Request):
    """Get EstimateService from app state."""
    return request.app.state.estimate_service


async def get_connection_manager(request: Request):
    """Get ConnectionManager from app state."""
    return request.app.state.connection_manager


async def get_current_user(request: Request) -> AuthUser:
    """FastAPI dependency for bearer authentication.

    Returns the verified user or raises 401.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authentication token is required")

    verifier = request.app.state.auth_verifier
    user = await verifier.verify(token.strip())
    request.state.user = user
    return user


async def get_project_for_user(
    project_id: int,
    user: AuthUser = Depends(get_current_user),
    service=Depends(get_estimate_service),
) -> dict:
    """Project owned by the caller (404 / 403 otherwise)."""
    return await service.get_owned_project(user.id, project_id)
