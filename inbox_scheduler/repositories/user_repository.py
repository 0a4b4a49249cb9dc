"""
User lookups used to recognize senders and resolve exchange owners.
"""

from inbox_scheduler.db.helpers import fetch_one, with_db_retry
from inbox_scheduler.models.domain.user_domain import User


class UserRepository:
    """SQL access for the users table."""

    SELECT_COLUMNS = "id, email, display_name, timezone, signature, is_active, created_at"

    @classmethod
    def _row_to_user(cls, row: dict | None) -> User | None:
        if not row:
            return None
        return User(
            id=str(row["id"]),
            email=row["email"],
            display_name=row.get("display_name"),
            timezone=row.get("timezone") or "UTC",
            signature=row.get("signature"),
            is_active=row.get("is_active", True),
            created_at=row.get("created_at"),
        )

    @classmethod
    @with_db_retry()
    async def get_user_by_email(cls, email: str) -> User | None:
        """Active user whose address matches case-insensitively."""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM users
            WHERE lower(email) = lower(%s) AND is_active = true
        """
        return cls._row_to_user(await fetch_one(query, (email.strip(),)))

    @classmethod
    @with_db_retry()
    async def get_user_by_id(cls, user_id: str) -> User | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM users WHERE id = %s"
        return cls._row_to_user(await fetch_one(query, (user_id,)))
