"""
Request dependencies for FastAPI.

Authentication is handled upstream; this module only resolves who is acting
(for the auto-schedule marker) and the process-wide scheduler.
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from backend.app.core.jwt import decode_access_token
from backend.app.services.scheduling_loop import SchedulingLoop

# Bearer token is optional: unattended callers act anonymously
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[int]:
    """
    Profile id of the caller, taken from the bearer token's user_id claim.

    Returns:
        The actor id, or None when no valid token was sent
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        return None

    user_id = payload.get("user_id")
    return int(user_id) if user_id is not None else None


def get_scheduling_loop(request: Request) -> SchedulingLoop:
    """The scheduler built during application startup."""
    return request.app.state.scheduling_loop
