"""
Pro entitlement engine.

Three independent writers feed the user_pro_status record:

- grant_trial: once per new identity, seeds a time-boxed trial
- sync_subscription: Stripe webhook deliveries (at-least-once, any order)
- expire_orphan_pro: scheduled sweep that clears lapsed grants

plus manual comps set by operators (override_pro). None of them coordinate;
compute_effective_status is the single read-side rule that makes any
combination of their writes resolve to one answer.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Union

import httpx
from postgrest.exceptions import APIError

from app.core.config import get_settings
from app.domain.schemas import Plan, ProStatusRecord
from app.repositories.pro_status import ProStatusRepository

logger = logging.getLogger(__name__)

UNDEFINED_COLUMN = "42703"

RecordLike = Union[ProStatusRecord, dict, None]


@dataclass(frozen=True)
class EffectiveStatus:
    is_pro: bool
    plan: Plan
    expires_at: datetime | None = None
    days_remaining: int | None = None
    is_override: bool = False


@dataclass(frozen=True)
class SyncResult:
    applied: bool
    record: dict | None


@dataclass
class SweepResult:
    downgraded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from the database are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(record: RecordLike) -> ProStatusRecord | None:
    if record is None or isinstance(record, ProStatusRecord):
        return record
    return ProStatusRecord.model_validate(record)


def period_end_to_datetime(value: int | float | datetime | None) -> datetime | None:
    """Convert a Stripe period end (epoch seconds) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def days_until(expires_at: datetime | None, now: datetime) -> int | None:
    """Whole days left until expiry, rounded up. Negative once expired."""
    if expires_at is None:
        return None
    remaining = _as_utc(expires_at) - now
    return math.ceil(remaining.total_seconds() / 86400)


# ============================================
# Effective status (read side)
# ============================================

def is_effectively_pro(record: ProStatusRecord, now: datetime) -> bool:
    """Precedence rule shared by every access-gated surface.

    1. is_pro false           -> not Pro (even with override_pro)
    2. override_pro           -> Pro, expiry ignored
    3. no pro_expires_at      -> Pro (permanent grant)
    4. pro_expires_at > now   -> Pro
    5. otherwise              -> not Pro (expired, not yet swept)
    """
    if not record.is_pro:
        return False
    if record.override_pro:
        return True
    if record.pro_expires_at is None:
        return True
    return _as_utc(record.pro_expires_at) > now


def compute_effective_status(record: RecordLike, now: datetime | None = None) -> EffectiveStatus:
    """Project a raw record onto the effective Pro decision and display plan.

    Pure: never writes. A missing record is the free default.
    """
    now = _as_utc(now) if now else utcnow()
    record = _to_record(record)
    if record is None:
        return EffectiveStatus(is_pro=False, plan=Plan.FREE)

    effective = is_effectively_pro(record, now)
    expires_at = _as_utc(record.pro_expires_at) if record.pro_expires_at else None

    if effective:
        plan = Plan.PRO
    elif expires_at is not None and expires_at > now:
        plan = Plan.TRIAL
    else:
        plan = Plan.FREE

    return EffectiveStatus(
        is_pro=effective,
        plan=plan,
        expires_at=expires_at,
        days_remaining=days_until(expires_at, now),
        is_override=record.override_pro,
    )


def fetch_record(user_id: str) -> dict | None:
    """Fetch a record, degrading to the basic column set before migration."""
    try:
        return ProStatusRepository.get(user_id)
    except APIError as e:
        if e.code != UNDEFINED_COLUMN:
            raise
        logger.warning(f"Enhanced pro status columns missing, using basic model: {e.message}")
        return ProStatusRepository.get_basic(user_id)


def get_effective_status(user_id: str, now: datetime | None = None) -> EffectiveStatus:
    """Fetch a user's record and compute its effective status."""
    return compute_effective_status(fetch_record(user_id), now)


# ============================================
# Writers
# ============================================

def grant_trial(user_id: str, now: datetime | None = None) -> dict | None:
    """Give a new identity its Pro trial, exactly once.

    Re-delivery of the creation event returns the existing record untouched;
    the trial window is never refreshed.
    """
    now = _as_utc(now) if now else utcnow()
    expires_at = now + timedelta(days=get_settings().pro_trial_days)

    created = ProStatusRepository.insert_if_absent(
        user_id,
        is_pro=True,
        pro_expires_at=expires_at,
        override_pro=False,
        stripe_customer_id=None,
        updated_at=now,
    )
    if created:
        logger.info(f"Granted Pro trial to user {user_id} until {expires_at.isoformat()}")
        return created

    logger.info(f"User {user_id} already has a pro status record, trial not re-granted")
    return ProStatusRepository.get(user_id)


def sync_subscription(
    user_id: str,
    stripe_customer_id: str,
    is_active: bool,
    current_period_end: int | float | datetime | None,
    now: datetime | None = None,
) -> SyncResult:
    """Reconcile a record with the provider's current subscription state.

    Callers pass the provider's full current truth, so replays and
    out-of-order deliveries are safe (last write wins). Manual comps are
    never modified, not even their stripe_customer_id.
    """
    now = _as_utc(now) if now else utcnow()
    fields = {
        "is_pro": bool(is_active),
        "stripe_customer_id": stripe_customer_id,
        "pro_expires_at": period_end_to_datetime(current_period_end),
        "updated_at": now,
    }

    updated = ProStatusRepository.update_unless_override(user_id, **fields)
    if updated:
        logger.info(f"Synced subscription for user {user_id}: is_pro={fields['is_pro']}")
        return SyncResult(applied=True, record=updated)

    # No record yet (webhook beat the trial grant) or a manual comp
    created = ProStatusRepository.insert_if_absent(user_id, override_pro=False, **fields)
    if created:
        logger.info(f"Created pro status for user {user_id} from subscription: is_pro={fields['is_pro']}")
        return SyncResult(applied=True, record=created)

    # A concurrent insert may have landed between the two statements
    updated = ProStatusRepository.update_unless_override(user_id, **fields)
    if updated:
        logger.info(f"Synced subscription for user {user_id}: is_pro={fields['is_pro']}")
        return SyncResult(applied=True, record=updated)

    logger.info(f"User {user_id} has a manual comp, ignoring subscription update")
    return SyncResult(applied=False, record=ProStatusRepository.get(user_id))


def expire_orphan_pro(now: datetime | None = None, batch_size: int | None = None) -> SweepResult:
    """Downgrade every non-comped grant whose expiry has passed.

    Each record is its own conditional update. A failure on one record is
    logged and reported in the result; the rest of the sweep continues and
    re-running is always safe.
    """
    now = _as_utc(now) if now else utcnow()
    batch_size = batch_size or get_settings().expiry_sweep_batch_size
    result = SweepResult()

    after = None
    while True:
        user_ids = ProStatusRepository.list_expired(now, after=after, limit=batch_size)
        if not user_ids:
            break

        for user_id in user_ids:
            try:
                if ProStatusRepository.downgrade_expired(user_id, now):
                    result.downgraded.append(user_id)
            except (APIError, httpx.HTTPError) as e:
                logger.error(f"Failed to expire pro status for user {user_id}: {e}")
                result.failed.append(user_id)

        if len(user_ids) < batch_size:
            break
        after = user_ids[-1]

    logger.info(
        f"Expiry sweep done: {len(result.downgraded)} downgraded, {len(result.failed)} failed"
    )
    return result


def set_comp(user_id: str, notes: str | None = None, now: datetime | None = None) -> dict | None:
    """Grant a manual comp: permanent Pro that ignores expiry and billing."""
    now = _as_utc(now) if now else utcnow()
    record = ProStatusRepository.upsert(
        user_id,
        is_pro=True,
        override_pro=True,
        pro_expires_at=None,
        notes=notes,
        updated_at=now,
    )
    logger.info(f"Manual comp granted to user {user_id}")
    return record


def revoke_comp(user_id: str, now: datetime | None = None) -> dict | None:
    """Remove a manual comp. The user is free until billing says otherwise."""
    now = _as_utc(now) if now else utcnow()
    record = ProStatusRepository.upsert(
        user_id,
        is_pro=False,
        override_pro=False,
        updated_at=now,
    )
    logger.info(f"Manual comp revoked for user {user_id}")
    return record
