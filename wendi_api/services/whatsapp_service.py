import re
from typing import Optional
from urllib.parse import urljoin

import httpx
from sqlalchemy.orm import Session

from wendi_api.config import settings
from wendi_api.logging_config import get_logger
from wendi_api.models import Workspace
from wendi_api.services.result import Result
from wendi_api.services.stores import OutboundMessage, Transport

logger = get_logger("whatsapp_service")

MEDIA_TYPES = {"image", "video", "audio", "document"}
CAPTION_TYPES = {"image", "video", "document"}
MAX_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE = 20


def normalize_recipient(phone: str) -> str:
    """Cloud API wants the international number as bare digits."""
    return re.sub(r"\D", "", phone or "")


def resolve_media_link(link: str) -> str:
    if re.match(r"^https?://", link, re.IGNORECASE):
        return link
    return urljoin(settings.public_base_url.rstrip("/") + "/", link.lstrip("/"))


def numbered_options(text: str, options: tuple[str, ...]) -> str:
    lines = [f"{index}. {label}" for index, label in enumerate(options, start=1)]
    if not text:
        return "\n".join(lines)
    return text + "\n\n" + "\n".join(lines)


def build_payloads(phone: str, message: OutboundMessage) -> list[dict]:
    """Translate one outbound message into Cloud API request bodies.

    Media whose type cannot carry a caption is followed by a separate text.
    Button messages with more buttons than WhatsApp allows fall back to a
    numbered list.
    """
    base = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": normalize_recipient(phone)}
    payloads = []
    text = message.text or ""

    if message.link:
        media_type = message.file_type if message.file_type in MEDIA_TYPES else "document"
        media = {"link": resolve_media_link(message.link)}
        if text and media_type in CAPTION_TYPES:
            media["caption"] = text
            text = ""
        payloads.append({**base, "type": media_type, media_type: media})

    if message.options and message.interactive and len(message.options) <= MAX_REPLY_BUTTONS:
        option_ids = message.option_ids or tuple(str(index) for index in range(1, len(message.options) + 1))
        buttons = [
            {"type": "reply", "reply": {"id": option_id, "title": label[:MAX_BUTTON_TITLE]}}
            for option_id, label in zip(option_ids, message.options)
        ]
        payloads.append(
            {
                **base,
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "body": {"text": text or "Please choose an option"},
                    "action": {"buttons": buttons},
                },
            }
        )
        return payloads

    if message.options:
        text = numbered_options(text, message.options)

    if text:
        payloads.append({**base, "type": "text", "text": {"preview_url": False, "body": text}})
    return payloads


class WhatsAppTransport(Transport):
    """WhatsApp Cloud API sender using each workspace's phone id and token."""

    def __init__(self, db: Session, *, api_url: Optional[str] = None, timeout: float = 30.0):
        self.db = db
        self.api_url = (api_url or settings.whatsapp_api_url).rstrip("/")
        self.timeout = timeout

    def _credentials(self, workspace_id: int) -> Optional[tuple[str, str]]:
        workspace = self.db.get(Workspace, workspace_id)
        if workspace is None or not workspace.phone_id or not workspace.access_token:
            return None
        return workspace.phone_id, workspace.access_token

    def send(self, workspace_id: int, phone: str, message: OutboundMessage) -> Result[str]:
        credentials = self._credentials(workspace_id)
        if credentials is None:
            logger.error("WhatsApp credentials missing", extra={"context": {"workspace_id": workspace_id}})
            return Result.failure("Workspace WhatsApp phone id or access token missing", "not_configured")

        payloads = build_payloads(phone, message)
        if not payloads:
            return Result.failure("Nothing to send", "empty_message")

        phone_id, token = credentials
        url = f"{self.api_url}/{phone_id}/messages"
        provider_ids = []
        try:
            with httpx.Client(timeout=self.timeout) as client:
                for payload in payloads:
                    response = client.post(
                        url,
                        headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                        json=payload,
                    )
                    if response.status_code >= 400:
                        logger.warning(
                            "WhatsApp send rejected",
                            extra={
                                "context": {
                                    "workspace_id": workspace_id,
                                    "status": response.status_code,
                                    "body": response.text[:300],
                                }
                            },
                        )
                        code = "rate_limited" if response.status_code == 429 else "http_error"
                        return Result.failure(f"HTTP {response.status_code}: {response.text[:300]}", code)
                    try:
                        data = response.json()
                    except ValueError:
                        data = None
                    if not isinstance(data, dict):
                        logger.warning(
                            "WhatsApp send returned an unreadable body",
                            extra={
                                "context": {
                                    "workspace_id": workspace_id,
                                    "status": response.status_code,
                                    "body": response.text[:300],
                                }
                            },
                        )
                        return Result.failure(f"HTTP {response.status_code}: response body is not JSON", "http_error")
                    messages = data.get("messages") or [{}]
                    provider_ids.append(messages[0].get("id"))
        except httpx.HTTPError as e:
            logger.error(
                "Error sending WhatsApp message",
                extra={"context": {"workspace_id": workspace_id, "error": str(e)}},
            )
            return Result.failure(str(e), "network_error")

        logger.info(
            "WhatsApp message sent",
            extra={"context": {"workspace_id": workspace_id, "parts": len(payloads)}},
        )
        # The last part is what the customer sees last; receipts for it are the useful ones.
        return Result.success(provider_ids[-1])
