"""
Persistence layer for exchange messages.

exchange_data is append-only: rows are inserted once (idempotent on the
transport message id) and only exchange_owner_id is ever updated, at most
once per exchange.
"""

from psycopg.types.json import Jsonb

from inbox_scheduler.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from inbox_scheduler.db.pool import get_db_transaction
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import ExchangeMessage, MessageType

logger = get_logger(__name__)


class ExchangeRepositoryError(DatabaseError):
    """More specific exception for exchange persistence failures."""


class ExchangeRepository:
    """SQL access for the exchange_data table."""

    SELECT_COLUMNS = """
        id, exchange_id, exchange_owner_id, message_id, previous_message_id,
        sender, recipients, timestamp, type
    """

    @classmethod
    def _row_to_message(cls, row: dict | None) -> ExchangeMessage | None:
        if not row:
            return None

        owner = row.get("exchange_owner_id")
        return ExchangeMessage(
            id=str(row["id"]),
            exchange_id=str(row["exchange_id"]),
            exchange_owner_id=str(owner) if owner else None,
            message_id=row["message_id"],
            previous_message_id=row.get("previous_message_id"),
            sender=row["sender"],
            recipients=list(row.get("recipients") or []),
            timestamp=row["timestamp"],
            type=MessageType(row["type"]),
        )

    @classmethod
    async def insert_message(cls, message: ExchangeMessage) -> ExchangeMessage:
        """
        Append a message. Re-delivering the same transport message id is a
        no-op that returns the row already stored.

        The stored owner is the exchange's existing owner when one is set.
        """

        query = f"""
            INSERT INTO exchange_data (
                id, exchange_id, exchange_owner_id, message_id, previous_message_id,
                sender, recipients, timestamp, type
            )
            VALUES (
                %s, %s,
                COALESCE(
                    (SELECT exchange_owner_id FROM exchange_data
                     WHERE exchange_id = %s AND exchange_owner_id IS NOT NULL
                     LIMIT 1),
                    %s
                ),
                %s, %s, %s, %s, %s, %s
            )
            ON CONFLICT (message_id) DO NOTHING
            RETURNING {cls.SELECT_COLUMNS}
        """

        row = await fetch_one(
            query,
            (
                message.id,
                message.exchange_id,
                message.exchange_id,
                message.exchange_owner_id,
                message.message_id,
                message.previous_message_id,
                message.sender,
                Jsonb(message.recipients),
                message.timestamp,
                message.type.value,
            ),
        )

        if row is None:
            existing = await cls.get_by_message_id(message.message_id)
            if existing is None:
                raise ExchangeRepositoryError(
                    "Insert skipped but no existing row found", operation="insert_message"
                )
            logger.info(
                "Exchange message already stored",
                message_id=message.message_id,
                exchange_id=existing.exchange_id,
            )
            return existing

        stored = cls._row_to_message(row)
        logger.info(
            "Exchange message stored",
            message_id=stored.message_id,
            exchange_id=stored.exchange_id,
            type=stored.type.value,
        )
        return stored

    @classmethod
    @with_db_retry()
    async def get_by_message_id(cls, message_id: str) -> ExchangeMessage | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM exchange_data WHERE message_id = %s"
        return cls._row_to_message(await fetch_one(query, (message_id,)))

    @classmethod
    @with_db_retry()
    async def list_messages_in_exchange(cls, exchange_id: str) -> list[ExchangeMessage]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM exchange_data
            WHERE exchange_id = %s
            ORDER BY timestamp ASC, id ASC
        """
        rows = await fetch_all(query, (exchange_id,))
        return [cls._row_to_message(row) for row in rows]

    @classmethod
    @with_db_retry()
    async def get_exchange_owner(cls, exchange_id: str) -> str | None:
        owner = await fetch_val(
            """
            SELECT exchange_owner_id FROM exchange_data
            WHERE exchange_id = %s AND exchange_owner_id IS NOT NULL
            LIMIT 1
            """,
            (exchange_id,),
        )
        return str(owner) if owner else None

    @classmethod
    async def set_owner_if_unset(cls, exchange_id: str, owner_id: str) -> str | None:
        """
        Compare-and-set the exchange owner.

        Runs under a per-exchange advisory lock so racing callers serialize;
        the UPDATE only touches rows while no row of the exchange has an
        owner. Returns the effective owner after the call.
        """

        try:
            async with get_db_transaction() as conn:
                await execute_query(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))", (exchange_id,), connection=conn
                )
                updated = await execute_query(
                    """
                    UPDATE exchange_data
                    SET exchange_owner_id = %s
                    WHERE exchange_id = %s
                      AND exchange_owner_id IS NULL
                      AND NOT EXISTS (
                          SELECT 1 FROM exchange_data
                          WHERE exchange_id = %s AND exchange_owner_id IS NOT NULL
                      )
                    """,
                    (owner_id, exchange_id, exchange_id),
                    connection=conn,
                )
                owner = await fetch_val(
                    """
                    SELECT exchange_owner_id FROM exchange_data
                    WHERE exchange_id = %s AND exchange_owner_id IS NOT NULL
                    LIMIT 1
                    """,
                    (exchange_id,),
                    connection=conn,
                )
        except DatabaseError:
            raise
        except Exception as e:
            raise ExchangeRepositoryError(
                f"Failed to set exchange owner: {e}", operation="set_owner_if_unset"
            ) from e

        logger.info(
            "Exchange owner resolved",
            exchange_id=exchange_id,
            rows_updated=updated,
            owner_id=str(owner) if owner else None,
        )
        return str(owner) if owner else None
