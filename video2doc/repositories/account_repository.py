from __future__ import annotations

from video2doc.repositories.common import utc_now_iso
from video2doc.repositories.database import Database


class AccountRepository:
    """Local mirror of the billing provider's subscription tier per account."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_tier(self, user_id: str) -> str | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT tier
                FROM account_subscriptions
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        tier = str(row["tier"]).strip().lower()
        return tier or None

    def set_tier(self, user_id: str, tier: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO account_subscriptions (user_id, tier, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    tier = excluded.tier,
                    updated_at = excluded.updated_at
                """,
                (user_id, tier.strip().lower(), utc_now_iso()),
            )
