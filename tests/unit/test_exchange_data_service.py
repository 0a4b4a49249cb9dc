import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from inbox_scheduler.models.domain.user_domain import User

NOW = datetime(2025, 10, 20, 12, 0, tzinfo=UTC)


async def seed(exchange_repo, message_factory, count, first_at=NOW - timedelta(days=1), owner_id=None):
    messages = []
    for index in range(count):
        message = message_factory(
            "exchange-1",
            f"msg-{index}@example.com",
            timestamp=first_at + timedelta(minutes=index),
            owner_id=owner_id,
        )
        messages.append(await exchange_repo.insert_message(message))
    return messages


@pytest.mark.asyncio
async def test_exchange_with_25_messages_is_valid(data_service, exchange_repo, message_factory):
    messages = await seed(exchange_repo, message_factory, 25)

    assert await data_service.is_valid_engagement(messages[-1], now=NOW)


@pytest.mark.asyncio
async def test_exchange_with_26_messages_is_invalid(data_service, exchange_repo, message_factory):
    messages = await seed(exchange_repo, message_factory, 26)

    assert not await data_service.is_valid_engagement(messages[-1], now=NOW)


@pytest.mark.asyncio
async def test_first_message_exactly_30_days_old_is_valid(data_service, exchange_repo, message_factory):
    messages = await seed(exchange_repo, message_factory, 2, first_at=NOW - timedelta(days=30))

    assert await data_service.is_valid_engagement(messages[-1], now=NOW)


@pytest.mark.asyncio
async def test_first_message_older_than_30_days_is_invalid(data_service, exchange_repo, message_factory):
    messages = await seed(
        exchange_repo, message_factory, 2, first_at=NOW - timedelta(days=30, seconds=1)
    )

    assert not await data_service.is_valid_engagement(messages[-1], now=NOW)


@pytest.mark.asyncio
async def test_exchange_without_stored_messages_is_invalid(data_service, message_factory):
    message = message_factory("exchange-empty", "msg-x@example.com")

    assert not await data_service.is_valid_engagement(message, now=NOW)


@pytest.mark.asyncio
async def test_is_first_message_in_exchange(data_service, exchange_repo, message_factory):
    unsaved = message_factory("exchange-1", "msg-new@example.com")
    assert await data_service.is_first_message_in_exchange(unsaved)

    first, second = await seed(exchange_repo, message_factory, 2)

    assert await data_service.is_first_message_in_exchange(first)
    assert not await data_service.is_first_message_in_exchange(second)


@pytest.mark.asyncio
async def test_messages_are_listed_oldest_first(data_service, exchange_repo, message_factory):
    late = message_factory("exchange-1", "late@example.com", timestamp=NOW)
    early = message_factory("exchange-1", "early@example.com", timestamp=NOW - timedelta(hours=1))
    await exchange_repo.insert_message(late)
    await exchange_repo.insert_message(early)

    messages = await data_service.get_all_messages_in_exchange("exchange-1")

    assert [m.message_id for m in messages] == ["early@example.com", "late@example.com"]


@pytest.mark.asyncio
async def test_redelivered_message_is_stored_once(data_service, exchange_repo, message_factory):
    await data_service.save_message(message_factory("exchange-1", "dup@example.com"))
    await data_service.save_message(message_factory("exchange-1", "dup@example.com"))

    assert len(exchange_repo.rows) == 1


@pytest.mark.asyncio
async def test_save_message_keeps_existing_owner(data_service, exchange_repo, message_factory):
    await seed(exchange_repo, message_factory, 1, owner_id="user-alice")

    stored = await data_service.save_message(
        message_factory("exchange-1", "msg-late@example.com", owner_id="user-mallory")
    )

    assert stored.exchange_owner_id == "user-alice"
    assert {row.exchange_owner_id for row in exchange_repo.rows} == {"user-alice"}


@pytest.mark.asyncio
async def test_associate_sets_owner_once(data_service, exchange_repo, user_repo, message_factory, alice):
    await seed(exchange_repo, message_factory, 2)
    user_repo.add(User(id="user-bob", email="bob@example.com"))

    first = await data_service.associate_exchange_with_user("exchange-1", "ALICE@example.com")
    second = await data_service.associate_exchange_with_user("exchange-1", "bob@example.com")

    assert first == alice.id
    assert second == alice.id
    assert await data_service.get_exchange_owner("exchange-1") == alice.id


@pytest.mark.asyncio
async def test_associate_with_unknown_user_is_a_no_op(data_service, exchange_repo, message_factory):
    await seed(exchange_repo, message_factory, 1)

    owner = await data_service.associate_exchange_with_user("exchange-1", "stranger@example.com")

    assert owner is None
    assert await data_service.get_exchange_owner("exchange-1") is None


@pytest.mark.asyncio
async def test_concurrent_association_has_a_single_winner(
    data_service, exchange_repo, user_repo, message_factory
):
    await seed(exchange_repo, message_factory, 3)
    for index in range(5):
        user_repo.add(User(id=f"user-{index}", email=f"user{index}@example.com"))

    results = await asyncio.gather(
        *(
            data_service.associate_exchange_with_user("exchange-1", f"user{index}@example.com")
            for index in range(5)
        )
    )

    assert len(set(results)) == 1
    assert {row.exchange_owner_id for row in exchange_repo.rows} == {results[0]}


@pytest.mark.asyncio
async def test_signature_for_unowned_exchange(data_service):
    assert await data_service.get_signature("exchange-1") == "Best,\nScheduling Assistant"


@pytest.mark.asyncio
async def test_signature_for_owner_without_signature(data_service, exchange_repo, message_factory):
    await seed(exchange_repo, message_factory, 1, owner_id="user-alice")

    assert await data_service.get_signature("exchange-1") == "Best,\nalice@example.com's AI Assistant"


@pytest.mark.asyncio
async def test_signature_uses_owner_signature(data_service, exchange_repo, user_repo, message_factory):
    user_repo.add(User(id="user-dana", email="dana@example.com", signature="Dana Scully"))
    await seed(exchange_repo, message_factory, 1, owner_id="user-dana")

    assert await data_service.get_signature("exchange-1") == "Best,\nDana Scully"
