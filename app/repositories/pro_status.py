"""
Repository for the user_pro_status table.

Every write is a single PostgREST statement. Guarded writers (subscription
sync, expiry sweep) put their conditions in the WHERE clause instead of
reading the row first, so concurrent writers never lose each other's updates
and a manual comp can't be overwritten between a read and a write.
"""
from datetime import datetime

from database.connection import get_db, with_retry

TABLE = "user_pro_status"

ENHANCED_COLUMNS = "user_id, is_pro, pro_expires_at, override_pro, stripe_customer_id, notes, updated_at"
BASIC_COLUMNS = "user_id, is_pro"


def _serialize(fields: dict) -> dict:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


class ProStatusRepository:

    @staticmethod
    @with_retry()
    def get(user_id: str) -> dict | None:
        """Get the full pro status record for a user.

        Raises postgrest APIError (code 42703) if the enhanced columns
        haven't been migrated yet.
        """
        db = get_db()
        result = db.table(TABLE).select(ENHANCED_COLUMNS).eq("user_id", user_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_basic(user_id: str) -> dict | None:
        """Get only the columns present before the enhanced migration."""
        db = get_db()
        result = db.table(TABLE).select(BASIC_COLUMNS).eq("user_id", user_id).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def get_by_customer(stripe_customer_id: str) -> dict | None:
        """Get a record by its Stripe customer id."""
        db = get_db()
        result = db.table(TABLE).select(ENHANCED_COLUMNS).eq(
            "stripe_customer_id", stripe_customer_id
        ).limit(1).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def upsert(user_id: str, **fields) -> dict | None:
        """Insert or update a record in one statement (ON CONFLICT DO UPDATE)."""
        db = get_db()
        data = {"user_id": user_id, **_serialize(fields)}
        result = db.table(TABLE).upsert(data, on_conflict="user_id").execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def insert_if_absent(user_id: str, **fields) -> dict | None:
        """Insert a record unless one already exists (ON CONFLICT DO NOTHING).

        Returns the inserted row, or None if the user already had a record.
        """
        db = get_db()
        data = {"user_id": user_id, **_serialize(fields)}
        result = db.table(TABLE).upsert(
            data, on_conflict="user_id", ignore_duplicates=True
        ).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def update_unless_override(user_id: str, **fields) -> dict | None:
        """Update a record only if it is not a manual comp.

        Returns the updated row, or None if there was no record or the
        record has override_pro set.
        """
        db = get_db()
        result = db.table(TABLE).update(_serialize(fields)).eq(
            "user_id", user_id
        ).eq("override_pro", False).execute()
        return result.data[0] if result and result.data else None

    @staticmethod
    @with_retry()
    def list_expired(now: datetime, after: str | None = None, limit: int = 500) -> list[str]:
        """List user ids eligible for the expiry sweep, ordered by user_id.

        Pass the last id of the previous page as ``after`` to continue.
        """
        db = get_db()
        query = db.table(TABLE).select("user_id").eq("is_pro", True).eq(
            "override_pro", False
        ).not_.is_("pro_expires_at", "null").lt("pro_expires_at", now.isoformat())
        if after is not None:
            query = query.gt("user_id", after)
        result = query.order("user_id").limit(limit).execute()
        return [row["user_id"] for row in result.data] if result and result.data else []

    @staticmethod
    @with_retry()
    def downgrade_expired(user_id: str, now: datetime) -> dict | None:
        """Clear is_pro on one expired, non-comped record.

        All sweep conditions are re-checked by the UPDATE itself, so a record
        that was comped or renewed after it was listed is left alone.
        """
        db = get_db()
        result = db.table(TABLE).update({
            "is_pro": False,
            "updated_at": now.isoformat(),
        }).eq("user_id", user_id).eq("is_pro", True).eq(
            "override_pro", False
        ).not_.is_("pro_expires_at", "null").lt("pro_expires_at", now.isoformat()).execute()
        return result.data[0] if result and result.data else None
