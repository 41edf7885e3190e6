"""
UI-facing Pro status.

Mirrors what dashboard surfaces need: the effective flag, plan tier, and a
day countdown. Works against databases where the enhanced columns haven't
been migrated yet by falling back to the basic ``is_pro`` model.
"""
import logging
from datetime import datetime
from typing import Callable

from app.domain.schemas import Plan, ProStatusResponse
from app.services.pro_status import compute_effective_status, fetch_record, utcnow

logger = logging.getLogger(__name__)


def free_status(error: str | None = None) -> ProStatusResponse:
    return ProStatusResponse(is_pro=False, is_loading=False, plan=Plan.FREE, error=error)


def load_pro_status(user_id: str | None, now: datetime | None = None) -> ProStatusResponse:
    """Fetch and project the current user's Pro status.

    Store errors don't raise: the user sees the free plan and ``error``
    carries the reason so the caller can retry.
    """
    if not user_id:
        return free_status()

    try:
        record = fetch_record(user_id)
    except Exception as e:
        logger.error(f"Error fetching pro status for user {user_id}: {e}")
        return free_status(error=str(e))

    if record is None:
        return free_status()

    status = compute_effective_status(record, now)
    return ProStatusResponse(
        is_pro=status.is_pro,
        is_loading=False,
        plan=status.plan,
        expires_at=status.expires_at,
        days_remaining=status.days_remaining,
        is_override=status.is_override,
        stripe_customer_id=record.get("stripe_customer_id"),
        notes=record.get("notes"),
    )


class ProStatusTracker:
    """Holds the last known status for one identity at a time.

    Re-fetches when the identity changes or when refresh() is called;
    otherwise the cached status is returned as-is. No background polling.
    """

    def __init__(
        self,
        loader: Callable[[str | None], ProStatusResponse] = load_pro_status,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._loader = loader
        self._clock = clock
        self._user_id: str | None = None
        self._loaded = False
        self._status = ProStatusResponse(is_pro=False, is_loading=True)

    @property
    def status(self) -> ProStatusResponse:
        return self._status

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def status_for(self, user_id: str | None) -> ProStatusResponse:
        """Return the status for ``user_id``, fetching only on identity change."""
        if not self._loaded or user_id != self._user_id:
            self._user_id = user_id
            return self.refresh()
        return self._status

    def refresh(self) -> ProStatusResponse:
        """Force a re-fetch for the current identity."""
        if self._user_id is None:
            self._status = free_status()
        else:
            self._status = self._loader(self._user_id, self._clock())
        self._loaded = True
        return self._status
