from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WhatsAppMetadata(_Payload):
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class WhatsAppText(_Payload):
    body: str = ""


class WhatsAppReply(_Payload):
    id: Optional[str] = None
    title: str = ""


class WhatsAppInteractive(_Payload):
    type: Optional[str] = None
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None

    def reply(self) -> Optional[WhatsAppReply]:
        return self.button_reply or self.list_reply


class WhatsAppMedia(_Payload):
    id: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None


class WhatsAppMessage(_Payload):
    id: str
    sender: str = Field(alias="from")
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[WhatsAppText] = None
    interactive: Optional[WhatsAppInteractive] = None
    image: Optional[WhatsAppMedia] = None
    video: Optional[WhatsAppMedia] = None
    audio: Optional[WhatsAppMedia] = None
    document: Optional[WhatsAppMedia] = None

    @property
    def is_interactive(self) -> bool:
        return self.type == "interactive" and self.interactive is not None

    @property
    def reply_id(self) -> Optional[str]:
        if not self.is_interactive:
            return None
        reply = self.interactive.reply()
        return reply.id if reply else None

    def content(self) -> str:
        """Customer-visible text of the message, whatever its type."""
        if self.type == "text" and self.text:
            return self.text.body
        if self.is_interactive:
            reply = self.interactive.reply()
            if reply:
                return reply.title
            return f"Interactive: {self.interactive.type or 'unknown'}"
        if self.type in ("image", "video"):
            media = getattr(self, self.type)
            return (media.caption or "") if media else ""
        if self.type == "document" and self.document:
            return self.document.caption or self.document.filename or ""
        if self.type == "audio":
            return "Audio message"
        return f"[{self.type.upper()}]"

    def file_type(self) -> str:
        if self.type in ("image", "video", "audio", "document"):
            return self.type
        return "none"


class WhatsAppStatus(_Payload):
    id: str
    status: str
    recipient_id: Optional[str] = None
    timestamp: Optional[str] = None
    errors: list[dict] = Field(default_factory=list)

    def error_text(self) -> Optional[str]:
        if not self.errors:
            return None
        first = self.errors[0]
        return first.get("title") or first.get("message") or str(first.get("code"))


class WhatsAppValue(_Payload):
    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    statuses: list[WhatsAppStatus] = Field(default_factory=list)


class WhatsAppChange(_Payload):
    field: Optional[str] = None
    value: WhatsAppValue


class WhatsAppEntry(_Payload):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhook(_Payload):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)


class InboundResult(BaseModel):
    message_id: str
    conversation_id: Optional[int] = None
    action: str
    sent: int = 0


class WebhookResponse(BaseModel):
    success: bool
    processed: list[InboundResult] = Field(default_factory=list)
    statuses_updated: int = 0
    skipped: int = 0
