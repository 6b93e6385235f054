from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import require_identity
from ..schemas import SessionInfo

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


# PUBLIC_INTERFACE
@router.get(
    "/session",
    response_model=SessionInfo,
    summary="Current Session",
    description="Return the user and session resolved for the caller.",
    responses={401: {"description": "No valid session"}},
)
def current_session(identity: SessionInfo = Depends(require_identity)) -> SessionInfo:
    return identity
