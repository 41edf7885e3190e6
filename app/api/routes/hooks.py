"""Server-to-server hooks: identity creation and the scheduled expiry sweep."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from app.core.security import require_hooks_secret
from app.domain.schemas import ProStatusRecord, SweepResponse, UserCreatedEvent
from app.services.pro_status import expire_orphan_pro, grant_trial

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_hooks_secret)])


@router.post("/user-created", response_model=ProStatusRecord)
def user_created(event: UserCreatedEvent):
    """Grant the signup trial. Safe to deliver more than once."""
    user_id = event.resolved_user_id()
    if not user_id:
        raise HTTPException(status_code=422, detail="Missing user id")

    record = grant_trial(user_id)
    if not record:
        raise HTTPException(status_code=500, detail="Failed to grant trial")
    return ProStatusRecord(**record)


@router.post("/expire-pro", response_model=SweepResponse)
async def expire_pro():
    """Run the expiry sweep. Returns 500 if any record failed, so the scheduler retries."""
    result = await run_in_threadpool(expire_orphan_pro)
    if not result.ok:
        raise HTTPException(
            status_code=500,
            detail={
                "downgraded": len(result.downgraded),
                "failed": result.failed,
            },
        )
    return SweepResponse(downgraded=len(result.downgraded))
