"""
Inbound email webhook.

The mail provider posts each received email here. The raw body is
authenticated with an HMAC-SHA256 signature before it is parsed.
"""

import hashlib
import hmac

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request, status

from inbox_scheduler.config import settings
from inbox_scheduler.db.helpers import DatabaseError
from inbox_scheduler.errors import SchedulingError, TransportError, ValidationError
from inbox_scheduler.infrastructure.observability.logging import get_logger
from inbox_scheduler.models.api.inbox_request import InboundEmailRequest, InboundEmailResponse
from inbox_scheduler.services.exchange.processing_service import ExchangeProcessingService

logger = get_logger(__name__)

router = APIRouter(prefix="/inbox", tags=["inbox"])

INBOX_SIGNATURE_HEADER = "x-inbox-signature"


def sign_payload(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def verify_inbox_hmac(raw: bytes, signature: str | None):
    secret = settings.INBOUND_WEBHOOK_SECRET
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Webhook secret not configured"
        )
    if not signature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")
    if not hmac.compare_digest(sign_payload(raw, secret), signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")


def get_processing_service(request: Request) -> ExchangeProcessingService:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialized"
        )
    return container.processing_service


@router.post("/webhook", response_model=InboundEmailResponse)
async def inbox_webhook(
    request: Request,
    processing_service: ExchangeProcessingService = Depends(get_processing_service),
):
    """Process one inbound email and reply on the assistant's behalf."""
    raw = await request.body()
    verify_inbox_hmac(raw, request.headers.get(INBOX_SIGNATURE_HEADER))

    try:
        payload = InboundEmailRequest.model_validate_json(raw)
    except pydantic.ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False)
        )

    try:
        outcome = await processing_service.process_inbound(payload.to_raw_message())

    except ValidationError as e:
        logger.warning("Inbound email rejected", message_id=payload.message_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransportError as e:
        logger.error(
            "Mail transport failed while processing inbound email",
            message_id=payload.message_id,
            status_code=e.status_code,
            error=str(e),
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Mail delivery failed")
    except (SchedulingError, DatabaseError) as e:
        logger.error(
            "Inbound email processing failed",
            message_id=payload.message_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Inbound email processing failed"
        )

    return InboundEmailResponse(sender=outcome.inbound.sender, action=outcome.action)
