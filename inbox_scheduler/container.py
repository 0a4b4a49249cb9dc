"""
Service wiring.

Built once in the application lifespan and stored on ``app.state``; routes
read collaborators from here instead of module-level singletons.
"""

from dataclasses import dataclass

from inbox_scheduler.config import Settings, settings
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.domain.user_domain import User
from inbox_scheduler.repositories.calendar_repository import CalendarConnectionRepository
from inbox_scheduler.repositories.exchange_repository import ExchangeRepository
from inbox_scheduler.repositories.user_repository import UserRepository
from inbox_scheduler.services.agent.runner import OpenAIAgentRunner
from inbox_scheduler.services.calendar.availability_service import AvailabilityService
from inbox_scheduler.services.calendar.google_client import GoogleCalendarService
from inbox_scheduler.services.email.email_service import EmailService
from inbox_scheduler.services.email.mailgun_client import MailgunClient
from inbox_scheduler.services.exchange.classifier import EngagementClassifier
from inbox_scheduler.services.exchange.data_service import ExchangeDataService
from inbox_scheduler.services.exchange.processing_service import ExchangeProcessingService
from inbox_scheduler.services.exchange.thread_resolver import ThreadResolver
from inbox_scheduler.services.scheduling.request_service import SchedulingRequestService
from inbox_scheduler.services.scheduling.tools import SchedulingTools

logger = get_logger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    calendar_client: GoogleCalendarService
    mail_transport: MailgunClient
    email_service: EmailService
    exchange_data_service: ExchangeDataService
    availability_service: AvailabilityService
    request_service: SchedulingRequestService
    agent: OpenAIAgentRunner
    processing_service: ExchangeProcessingService

    async def close(self) -> None:
        for name, resource in (
            ("calendar_client", self.calendar_client),
            ("mail_transport", self.mail_transport),
            ("agent", self.agent),
        ):
            try:
                await resource.close()
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))


def build_container(config: Settings = settings) -> ServiceContainer:
    """Wire the production services against the database repositories."""
    calendar_client = GoogleCalendarService()
    mail_transport = MailgunClient(
        api_key=config.MAILGUN_API_KEY,
        domain=config.MAILGUN_DOMAIN,
        base_url=config.MAILGUN_API_BASE_URL,
    )
    email_service = EmailService(
        mail_transport,
        sender_address=config.ASSISTANT_EMAIL_ADDRESS,
        sender_name=config.ASSISTANT_NAME,
        own_domain=config.own_domain(),
    )
    exchange_data_service = ExchangeDataService(
        repository=ExchangeRepository,
        user_repository=UserRepository,
        max_messages=config.MAX_MESSAGES_IN_EXCHANGE,
        max_age_days=config.EXCHANGE_MAX_AGE_DAYS,
        assistant_name=config.ASSISTANT_NAME,
    )
    availability_service = AvailabilityService(
        calendar_client,
        connection_repository=CalendarConnectionRepository,
        max_window_days=config.MAX_AVAILABILITY_WINDOW_DAYS,
        default_timezone=config.DEFAULT_TIMEZONE,
    )
    request_service = SchedulingRequestService(
        email_service, exchange_data_service, calendar_client, availability_service
    )
    agent = OpenAIAgentRunner(max_steps=config.AGENT_MAX_STEPS, max_retries=config.OPENAI_MAX_RETRIES)

    def tools_factory(user: User) -> SchedulingTools:
        return SchedulingTools(user, availability_service, request_service)

    processing_service = ExchangeProcessingService(
        resolver=ThreadResolver(ExchangeRepository, body_max_length=config.BODY_MAX_LENGTH),
        classifier=EngagementClassifier(exchange_data_service, UserRepository),
        exchange_data_service=exchange_data_service,
        email_service=email_service,
        user_repository=UserRepository,
        agent=agent,
        tools_factory=tools_factory,
        founder_email=config.FOUNDER_EMAIL,
        own_domain=config.own_domain(),
    )

    logger.info("Service container built", environment=config.environment)
    return ServiceContainer(
        calendar_client=calendar_client,
        mail_transport=mail_transport,
        email_service=email_service,
        exchange_data_service=exchange_data_service,
        availability_service=availability_service,
        request_service=request_service,
        agent=agent,
        processing_service=processing_service,
    )
