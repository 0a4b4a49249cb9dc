"""
Engagement classification for inbound messages.

Decides which handling path applies:

    NewUser                  unknown sender, exchange has no owner
    ExistingUserContinuing   registered sender, first message or valid exchange
    NonUserContinuing        unknown sender in a valid exchange that has an owner
    InvalidReengagement      stale or oversized exchange (existing_user | non_user)
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import ResolvedMessage
from inbox_scheduler.models.domain.user_domain import User

logger = get_logger(__name__)


class EngagementState(StrEnum):
    NEW_USER = "new_user"
    EXISTING_USER_CONTINUING = "existing_user_continuing"
    NON_USER_CONTINUING = "non_user_continuing"
    INVALID_REENGAGEMENT = "invalid_reengagement"


class Party(StrEnum):
    EXISTING_USER = "existing_user"
    NON_USER = "non_user"


@dataclass(slots=True)
class EngagementDecision:
    state: EngagementState
    sender_user: User | None = None
    owner_id: str | None = None
    party: Party | None = None
    is_first_message: bool = False
    is_valid_engagement: bool = False

    @property
    def action(self) -> str:
        if self.state == EngagementState.INVALID_REENGAGEMENT:
            return f"{self.state.value}:{self.party.value}"
        return self.state.value


def classify(
    sender_user: User | None,
    owner_id: str | None,
    is_first_message: bool,
    is_valid_engagement: bool,
) -> EngagementDecision:
    """Pure routing decision from the facts gathered about an inbound message."""
    facts = {
        "sender_user": sender_user,
        "owner_id": owner_id,
        "is_first_message": is_first_message,
        "is_valid_engagement": is_valid_engagement,
    }

    if sender_user is not None:
        if is_first_message or is_valid_engagement:
            return EngagementDecision(EngagementState.EXISTING_USER_CONTINUING, **facts)
        return EngagementDecision(
            EngagementState.INVALID_REENGAGEMENT, party=Party.EXISTING_USER, **facts
        )

    if owner_id is None:
        return EngagementDecision(EngagementState.NEW_USER, **facts)

    if is_valid_engagement:
        return EngagementDecision(EngagementState.NON_USER_CONTINUING, **facts)
    return EngagementDecision(EngagementState.INVALID_REENGAGEMENT, party=Party.NON_USER, **facts)


class EngagementClassifier:
    """Gathers sender, owner and validity facts, then classifies."""

    def __init__(self, exchange_data_service, user_repository):
        self.exchange_data_service = exchange_data_service
        self.user_repository = user_repository

    async def classify(self, message: ResolvedMessage, now: datetime | None = None) -> EngagementDecision:
        sender_user = await self.user_repository.get_user_by_email(message.sender)

        owner_id = None
        is_first_message = True
        is_valid_engagement = False
        if not message.is_new_exchange:
            owner_id = await self.exchange_data_service.get_exchange_owner(message.exchange_id)
            is_first_message = await self.exchange_data_service.is_first_message_in_exchange(message)
            is_valid_engagement = await self.exchange_data_service.is_valid_engagement(message, now=now)

        decision = classify(sender_user, owner_id, is_first_message, is_valid_engagement)

        logger.info(
            "Engagement classified",
            message_id=message.message_id,
            exchange_id=message.exchange_id,
            action=decision.action,
            sender_is_user=sender_user is not None,
            owner_id=owner_id,
            is_first_message=is_first_message,
            is_valid_engagement=is_valid_engagement,
        )
        return decision
