from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Plan(str, Enum):
    """Display plan tier derived from a pro status record."""
    PRO = "pro"
    TRIAL = "trial"
    FREE = "free"


# ============================================
# Pro Status Schemas
# ============================================

class ProStatusRecord(BaseModel):
    """Raw entitlement row from user_pro_status.

    Missing enhanced columns default to "no override, no expiry, no customer".
    """
    user_id: str
    is_pro: bool = False
    pro_expires_at: Optional[datetime] = None
    override_pro: bool = False
    stripe_customer_id: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class ProStatusResponse(BaseModel):
    is_pro: bool
    is_loading: bool = False
    plan: Plan = Plan.FREE
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    is_override: bool = False
    stripe_customer_id: Optional[str] = None
    notes: Optional[str] = None
    error: Optional[str] = None


class AdminProStatusResponse(BaseModel):
    record: Optional[ProStatusRecord] = None
    effective_is_pro: bool
    plan: Plan
    days_remaining: Optional[int] = None


class CompRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)


# ============================================
# Hook Schemas
# ============================================

class UserCreatedEvent(BaseModel):
    """Identity-creation payload.

    Accepts either a bare ``{"user_id": ...}`` body or a Supabase database
    webhook (``{"type": "INSERT", "table": "users", "record": {"id": ...}}``).
    """
    user_id: Optional[str] = None
    type: Optional[str] = None
    table: Optional[str] = None
    record: Optional[dict] = None

    def resolved_user_id(self) -> str | None:
        if self.user_id:
            return self.user_id
        if self.record and self.record.get("id"):
            return str(self.record["id"])
        return None


class SweepResponse(BaseModel):
    downgraded: int
    failed: list[str] = []


class CheckoutResponse(BaseModel):
    url: str
