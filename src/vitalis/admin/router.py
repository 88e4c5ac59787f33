"""
Vitalis Admin Module

Operational endpoints for the AI governance layer:
- Cache management
- Session epoch control
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from vitalis.core.governance import AIGovernance
from vitalis.deps import get_governance
from vitalis.schemas import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"], responses={503: {"model": ErrorResponse}})


class CacheClearResponse(BaseModel):
    removed: int


class SessionResponse(BaseModel):
    session_id: str
    started_at: float


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(governance: Annotated[AIGovernance, Depends(get_governance)]):
    """Delete every cached AI response."""
    removed = await governance.cache.clear()
    logger.info(f"[ADMIN] AI cache cleared ({removed} entries)")
    return CacheClearResponse(removed=removed)


@router.post("/session/advance", response_model=SessionResponse)
async def advance_session(governance: Annotated[AIGovernance, Depends(get_governance)]):
    """
    Start a new cache session.

    Entries created before the new epoch stop being served; they are removed
    lazily on read or by the next sweep.
    """
    started_at = await governance.session.advance()
    logger.info(f"[ADMIN] Cache session advanced to {governance.session.session_id}")
    return SessionResponse(session_id=governance.session.session_id, started_at=started_at)
