"""Login throttling endpoints called by the authentication frontend."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.api.deps import get_attempt_recorder, get_db, get_login_guard
from resilience.schemas.login import (
    LoginCheckRequest,
    LoginCheckResponse,
    LoginRecordRequest,
    LoginRecordResponse,
)
from resilience.services.attempt_recorder import AttemptRecorder
from resilience.services.guard import LoginGuard
from resilience.services.redis_rate_limit import login_check_rate_limit
from resilience.utils.request import attempt_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/login", tags=["login"])


@router.post(
    "/check",
    response_model=LoginCheckResponse,
    response_model_exclude_none=True,
    responses={429: {"model": LoginCheckResponse}},
)
async def check_login(
    data: LoginCheckRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    guard: Annotated[LoginGuard, Depends(get_login_guard)],
):
    """
    Decide whether a login attempt may proceed.

    Returns 200 when allowed and 429 with ``remainingSeconds`` when the
    account or IP is throttled. Nothing is recorded here. The per-IP
    request budget is only charged once the body has validated.
    """
    await login_check_rate_limit(request)
    decision = await guard.check(db, data.email, attempt_ip(request, data.ip_address))

    body = LoginCheckResponse(
        allowed=decision.allowed,
        blocked=decision.blocked,
        message=decision.message,
        failed_attempts=decision.failed_attempts if decision.allowed else None,
        remaining_attempts=decision.remaining_attempts if decision.allowed else None,
        remaining_seconds=decision.remaining_seconds,
    )
    if decision.allowed:
        return body

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers={"Retry-After": str(decision.remaining_seconds or 1)},
    )


@router.post("/record", response_model=LoginRecordResponse)
async def record_login(
    data: LoginRecordRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    recorder: Annotated[AttemptRecorder, Depends(get_attempt_recorder)],
):
    """Persist the outcome of a credential check."""
    await recorder.record(
        db,
        data.email,
        data.success,
        ip_address=attempt_ip(request, data.ip_address),
        user_agent=(data.user_agent or request.headers.get("User-Agent") or "")[:500] or None,
    )
    return LoginRecordResponse(success=True)
