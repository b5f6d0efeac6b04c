from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from wendi_api.config import settings
from wendi_api.database import get_db
from wendi_api.errors import ConcurrentUpdateError
from wendi_api.logging_config import get_logger
from wendi_api.models import Workspace
from wendi_api.schemas.webhook import InboundResult, WebhookResponse, WhatsAppWebhook
from wendi_api.services.ai_service import get_text_generator
from wendi_api.services.automation_service import AutomationRuleEngine
from wendi_api.services.chatbot_engine import ChatbotEngine
from wendi_api.services.dispatcher import Dispatcher
from wendi_api.services.message_service import apply_delivery_status
from wendi_api.services.sql_stores import (
    SqlAutomationSettingsStore,
    SqlBotDefinitionStore,
    SqlConversationStore,
    SqlMessageLog,
)
from wendi_api.services.whatsapp_service import WhatsAppTransport

logger = get_logger("webhook")

router = APIRouter()


def get_dispatcher(db: Session = Depends(get_db)) -> Dispatcher:
    """Dispatcher wired to the request's session."""
    messages = SqlMessageLog(db)
    settings_store = SqlAutomationSettingsStore(db)
    return Dispatcher(
        conversations=SqlConversationStore(db),
        messages=messages,
        settings_store=settings_store,
        transport=WhatsAppTransport(db),
        engine=ChatbotEngine(SqlBotDefinitionStore(db)),
        rules=AutomationRuleEngine(messages, generator=get_text_generator(), settings_store=settings_store),
    )


@router.get("/webhook/whatsapp", response_class=PlainTextResponse)
def verify_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge if the verify token matches."""
    if not settings.whatsapp_verify_token:
        logger.error("WHATSAPP_VERIFY_TOKEN is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook token not configured")
    if mode != "subscribe":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid hub.mode")
    if token != settings.whatsapp_verify_token:
        logger.warning("Webhook verification with wrong token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid verify token")
    logger.info("Webhook verified")
    return challenge or ""


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
def handle_whatsapp_webhook(
    payload: WhatsAppWebhook,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Handle WhatsApp Cloud API notifications (inbound messages and delivery receipts)."""
    response = WebhookResponse(success=True)

    for entry in payload.entry:
        for change in entry.changes:
            value = change.value

            for receipt in value.statuses:
                response.statuses_updated += apply_delivery_status(db, receipt.id, receipt.status, receipt.error_text())
            db.commit()

            if not value.messages:
                continue

            phone_id = value.metadata.phone_number_id if value.metadata else None
            workspace = db.query(Workspace).filter(Workspace.phone_id == phone_id).first() if phone_id else None
            if workspace is None:
                logger.warning(
                    "Webhook for unknown phone number id",
                    extra={"context": {"phone_number_id": phone_id, "messages": len(value.messages)}},
                )
                response.skipped += len(value.messages)
                continue

            for message in value.messages:
                try:
                    result = dispatcher.receive(
                        workspace.id,
                        message.sender,
                        message.content(),
                        message.is_interactive,
                        reply_id=message.reply_id,
                        provider_message_id=message.id,
                        file_type=message.file_type(),
                    )
                    db.commit()
                except ConcurrentUpdateError as e:
                    db.rollback()
                    logger.error(
                        "Giving up on inbound message, asking provider to redeliver",
                        extra={"context": {"message_id": message.id, "error": str(e)}},
                    )
                    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

                response.processed.append(
                    InboundResult(
                        message_id=message.id,
                        conversation_id=result.conversation_id,
                        action=result.action,
                        sent=result.sent,
                    )
                )

    return response
