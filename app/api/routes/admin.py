"""Superadmin-only API routes for manual Pro comps."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.security import require_superadmin
from app.domain.schemas import AdminProStatusResponse, CompRequest, ProStatusRecord
from app.services.pro_status import compute_effective_status, fetch_record, revoke_comp, set_comp

logger = logging.getLogger(__name__)

router = APIRouter()


def _admin_view(record: dict | None) -> AdminProStatusResponse:
    effective = compute_effective_status(record)
    return AdminProStatusResponse(
        record=ProStatusRecord(**record) if record else None,
        effective_is_pro=effective.is_pro,
        plan=effective.plan,
        days_remaining=effective.days_remaining,
    )


@router.get("/pro-status/{user_id}", response_model=AdminProStatusResponse)
def get_pro_status(user_id: str, _: dict = Depends(require_superadmin)):
    """Raw record plus effective status for a user (superadmin only)."""
    return _admin_view(fetch_record(user_id))


@router.put("/pro-status/{user_id}/comp", response_model=AdminProStatusResponse)
def comp_user(
    user_id: str,
    data: CompRequest,
    admin: dict = Depends(require_superadmin),
):
    """Grant a manual comp (superadmin only). Immune to expiry and billing events."""
    record = set_comp(user_id, notes=data.notes)
    if not record:
        raise HTTPException(status_code=500, detail="Failed to grant comp")
    logger.info(f"Comp for user {user_id} set by {admin.get('sub')}")
    return _admin_view(record)


@router.delete("/pro-status/{user_id}/comp", response_model=AdminProStatusResponse)
def uncomp_user(user_id: str, admin: dict = Depends(require_superadmin)):
    """Revoke a manual comp (superadmin only)."""
    record = revoke_comp(user_id)
    if not record:
        raise HTTPException(status_code=404, detail="Pro status not found")
    logger.info(f"Comp for user {user_id} revoked by {admin.get('sub')}")
    return _admin_view(record)
