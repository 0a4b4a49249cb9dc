"""
Inbound email processing.

Resolves the thread, classifies the engagement and runs the matching
branch. Every branch acknowledges the sender: an agent failure or a missing
owner still produces a notice. Inbound messages are stored before any reply
is sent and outbound messages right after their send succeeds. A message
whose id is already stored is a redelivery and is not answered again.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from inbox_scheduler.config import settings
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.exchange_domain import ExchangeMessage, RawMessage, ResolvedMessage
from inbox_scheduler.models.domain.user_domain import User
from inbox_scheduler.services.agent.profiles import AgentFlow, resolve_agent_profile
from inbox_scheduler.services.agent.runner import SchedulingAgent
from inbox_scheduler.services.email import templates
from inbox_scheduler.services.email.email_service import EmailService, ReplyType
from inbox_scheduler.services.exchange.classifier import (
    EngagementClassifier,
    EngagementDecision,
    EngagementState,
    Party,
)
from inbox_scheduler.services.exchange.data_service import ExchangeDataService
from inbox_scheduler.services.exchange.thread_resolver import ThreadResolver, merge_recipients
from inbox_scheduler.services.scheduling.tools import SchedulingTools

logger = get_logger(__name__)

DUPLICATE_ACTION = "duplicate"
HISTORY_LIMIT = 10


@dataclass(slots=True)
class ProcessingOutcome:
    decision: EngagementDecision | None
    inbound: ExchangeMessage
    sent: list[ExchangeMessage] = field(default_factory=list)

    @property
    def action(self) -> str:
        if self.decision is None:
            return DUPLICATE_ACTION
        return self.decision.action


class ExchangeProcessingService:
    """Routes inbound email to onboarding, agent engagement or stale-thread notices."""

    def __init__(
        self,
        resolver: ThreadResolver,
        classifier: EngagementClassifier,
        exchange_data_service: ExchangeDataService,
        email_service: EmailService,
        user_repository,
        agent: SchedulingAgent,
        tools_factory: Callable[[User], SchedulingTools],
        founder_email: str | None = None,
        own_domain: str | None = None,
    ):
        self.resolver = resolver
        self.classifier = classifier
        self.exchange_data_service = exchange_data_service
        self.email_service = email_service
        self.user_repository = user_repository
        self.agent = agent
        self.tools_factory = tools_factory
        self.founder_email = founder_email if founder_email is not None else settings.FOUNDER_EMAIL
        self.own_domain = own_domain or settings.own_domain()

    async def process_inbound(self, raw: RawMessage, now: datetime | None = None) -> ProcessingOutcome:
        """Handle one inbound email end to end. A redelivered message sends nothing."""
        stored = await self.exchange_data_service.get_by_message_id(raw.message_id)
        if stored is not None:
            logger.info(
                "Inbound email already processed, skipping",
                message_id=raw.message_id,
                exchange_id=stored.exchange_id,
            )
            return ProcessingOutcome(None, stored)

        resolved = await self.resolver.resolve_thread(raw)
        decision = await self.classifier.classify(resolved, now=now)

        match decision.state:
            case EngagementState.NEW_USER:
                outcome = await self._handle_new_user(resolved, decision)
            case EngagementState.EXISTING_USER_CONTINUING:
                outcome = await self._handle_existing_user(resolved, decision)
            case EngagementState.NON_USER_CONTINUING:
                outcome = await self._handle_non_user(resolved, decision)
            case EngagementState.INVALID_REENGAGEMENT:
                outcome = await self._handle_invalid_reengagement(resolved, decision)

        logger.info(
            "Inbound email processed",
            message_id=raw.message_id,
            exchange_id=resolved.exchange_id,
            action=outcome.action,
            sent_count=len(outcome.sent),
        )
        return outcome

    def _merged_recipients(self, resolved: ResolvedMessage) -> list[str]:
        previous = resolved.previous_message.recipients if resolved.previous_message else []
        return merge_recipients(previous, resolved.recipients, resolved.sender, self.own_domain)

    async def _reply(
        self,
        inbound: ExchangeMessage,
        resolved: ResolvedMessage,
        body: str,
        reply_type: ReplyType,
    ) -> ExchangeMessage:
        outbound = await self.email_service.send_reply(
            inbound, body, reply_type=reply_type, subject=resolved.subject
        )
        return await self.exchange_data_service.save_message(outbound)

    async def _signed(self, exchange_id: str, body: str) -> str:
        signature = await self.exchange_data_service.get_signature(exchange_id)
        return templates.with_signature(body, signature)

    async def _exchange_history(self, resolved: ResolvedMessage) -> list[str]:
        messages = await self.exchange_data_service.get_all_messages_in_exchange(resolved.exchange_id)
        earlier = [m for m in messages if m.message_id != resolved.message_id]
        return [
            f"- {m.timestamp.astimezone(UTC):%Y-%m-%d %H:%M} UTC {m.type.value} from {m.sender}"
            f" to {', '.join(m.recipients) or 'nobody'}"
            for m in earlier[-HISTORY_LIMIT:]
        ]

    async def _agent_prompt(self, resolved: ResolvedMessage, recipients: list[str]) -> str:
        lines = [
            f"Subject: {resolved.subject}",
            f"From: {resolved.sender}",
            f"Other participants: {', '.join(recipients) or 'none'}",
        ]
        history = await self._exchange_history(resolved)
        if history:
            lines += ["", f"Earlier messages in this thread ({len(history)} most recent):", *history]
        lines += ["", resolved.body]
        return "\n".join(lines)

    async def _run_agent(
        self,
        resolved: ResolvedMessage,
        recipients: list[str],
        flow: AgentFlow,
        user: User,
    ) -> str:
        """Agent reply body, or the fallback notice if the agent fails."""
        profile = resolve_agent_profile(flow)
        context = {
            "assistant_name": settings.ASSISTANT_NAME,
            "user_name": user.name,
            "user_email": user.email,
            "timezone": user.timezone,
            "today": datetime.now(UTC).strftime("%A, %B %d, %Y"),
        }
        prompt = await self._agent_prompt(resolved, recipients)
        try:
            return await self.agent.generate(
                prompt,
                profile=profile,
                tools=self.tools_factory(user),
                context=context,
            )
        except Exception as e:
            logger.error(
                "Agent failed, sending fallback notice",
                exchange_id=resolved.exchange_id,
                message_id=resolved.message_id,
                flow=flow.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ""

    async def _handle_new_user(
        self, resolved: ResolvedMessage, decision: EngagementDecision
    ) -> ProcessingOutcome:
        inbound = await self.exchange_data_service.save_message(resolved.to_exchange_message())

        ack = await self._reply(inbound, resolved, templates.onboarding_reply(), ReplyType.SENDER_ONLY)

        onboarding = await self.email_service.send_email(
            to=[resolved.sender],
            cc=[self.founder_email] if self.founder_email else None,
            subject=templates.random_onboarding_subject(),
            body=templates.onboarding_email(),
        )
        onboarding = await self.exchange_data_service.save_message(onboarding)

        return ProcessingOutcome(decision, inbound, [ack, onboarding])

    async def _handle_existing_user(
        self, resolved: ResolvedMessage, decision: EngagementDecision
    ) -> ProcessingOutcome:
        user = decision.sender_user
        recipients = self._merged_recipients(resolved)
        inbound = await self.exchange_data_service.save_message(
            resolved.to_exchange_message(recipients=recipients)
        )
        await self.exchange_data_service.associate_exchange_with_user(resolved.exchange_id, user.email)

        body = await self._run_agent(resolved, recipients, AgentFlow.FIRST_PARTY, user)
        if not body:
            notice = await self._signed(resolved.exchange_id, templates.AGENT_FAILURE_TEMPLATE)
            reply = await self._reply(inbound, resolved, notice, ReplyType.SENDER_ONLY)
            return ProcessingOutcome(decision, inbound, [reply])

        reply = await self._reply(
            inbound,
            resolved,
            await self._signed(resolved.exchange_id, body),
            ReplyType.ALL_INCLUDING_SENDER,
        )
        return ProcessingOutcome(decision, inbound, [reply])

    async def _handle_non_user(
        self, resolved: ResolvedMessage, decision: EngagementDecision
    ) -> ProcessingOutcome:
        recipients = self._merged_recipients(resolved)
        inbound = await self.exchange_data_service.save_message(
            resolved.to_exchange_message(recipients=recipients, owner_id=decision.owner_id)
        )

        owner = None
        if resolved.previous_message is not None and decision.owner_id:
            owner = await self.user_repository.get_user_by_id(decision.owner_id)
        if owner is None:
            logger.warning(
                "Exchange owner unavailable, sending stale-thread notice",
                exchange_id=resolved.exchange_id,
                owner_id=decision.owner_id,
            )
            notice = await self._signed(
                resolved.exchange_id, templates.NON_USER_REPLYING_TO_OLDER_EMAIL_TEMPLATE
            )
            reply = await self._reply(inbound, resolved, notice, ReplyType.SENDER_ONLY)
            return ProcessingOutcome(decision, inbound, [reply])

        body = await self._run_agent(resolved, recipients, AgentFlow.THIRD_PARTY, owner)
        if not body:
            notice = await self._signed(resolved.exchange_id, templates.AGENT_FAILURE_TEMPLATE)
            reply = await self._reply(inbound, resolved, notice, ReplyType.SENDER_ONLY)
            return ProcessingOutcome(decision, inbound, [reply])

        reply = await self._reply(
            inbound,
            resolved,
            await self._signed(resolved.exchange_id, body),
            ReplyType.ALL_INCLUDING_SENDER,
        )
        return ProcessingOutcome(decision, inbound, [reply])

    async def _handle_invalid_reengagement(
        self, resolved: ResolvedMessage, decision: EngagementDecision
    ) -> ProcessingOutcome:
        inbound = await self.exchange_data_service.save_message(resolved.to_exchange_message())

        if decision.party == Party.EXISTING_USER:
            template = templates.USER_REPLYING_TO_OLDER_EMAIL_TEMPLATE
        else:
            template = templates.NON_USER_REPLYING_TO_OLDER_EMAIL_TEMPLATE

        notice = await self._signed(resolved.exchange_id, template)
        reply = await self._reply(inbound, resolved, notice, ReplyType.SENDER_ONLY)
        return ProcessingOutcome(decision, inbound, [reply])
