"""
Calendar connection lookups.

A user may connect several provider accounts; each account exposes one or
more calendars. Rows are joined with the account so callers get the token
needed to query that account.
"""

from inbox_scheduler.db.helpers import fetch_all, fetch_one, with_db_retry
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.calendar_domain import CalendarConnection

logger = get_logger(__name__)


class CalendarConnectionRepository:
    """SQL access for calendar_connections joined with calendar_accounts."""

    SELECT_COLUMNS = """
        c.id, c.user_id, c.account_id, c.calendar_id, c.calendar_name,
        c.is_primary, c.include_in_availability,
        a.provider, a.access_token
    """

    @classmethod
    def _row_to_connection(cls, row: dict | None) -> CalendarConnection | None:
        if not row:
            return None
        return CalendarConnection(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            account_id=str(row["account_id"]),
            calendar_id=row["calendar_id"],
            calendar_name=row.get("calendar_name"),
            is_primary=bool(row.get("is_primary")),
            include_in_availability=bool(row.get("include_in_availability", True)),
            provider=row.get("provider") or "google",
            access_token=row["access_token"],
        )

    @classmethod
    @with_db_retry()
    async def get_active_connections(cls, user_id: str) -> list[CalendarConnection]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM calendar_connections c
            JOIN calendar_accounts a ON a.id = c.account_id
            WHERE c.user_id = %s AND c.is_active = true AND a.is_active = true
            ORDER BY c.is_primary DESC, c.calendar_name ASC
        """
        rows = await fetch_all(query, (user_id,))
        connections = [cls._row_to_connection(row) for row in rows]
        logger.debug("Calendar connections loaded", user_id=user_id, count=len(connections))
        return connections

    @classmethod
    @with_db_retry()
    async def get_primary_connection(cls, user_id: str) -> CalendarConnection | None:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM calendar_connections c
            JOIN calendar_accounts a ON a.id = c.account_id
            WHERE c.user_id = %s AND c.is_active = true AND a.is_active = true
            ORDER BY c.is_primary DESC, c.created_at ASC
            LIMIT 1
        """
        return cls._row_to_connection(await fetch_one(query, (user_id,)))
