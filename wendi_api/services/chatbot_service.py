from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from wendi_api.errors import GraphValidationError
from wendi_api.logging_config import get_logger
from wendi_api.models import Chatbot, Workspace
from wendi_api.schemas.bot_graph import parse_bot_graph
from wendi_api.schemas.chatbot import ChatbotFlagsRequest, ChatbotResponse, ChatbotSaveRequest
from wendi_api.services.result import Result

logger = get_logger("chatbot_service")


def _clean_trigger(trigger: Optional[str]) -> Optional[str]:
    if trigger is None:
        return None
    trigger = trigger.strip()
    return trigger or None


def _clear_other_defaults(db: Session, workspace_id: int, keep_id: Optional[int]) -> None:
    """At most one default chatbot per workspace."""
    stmt = update(Chatbot).where(Chatbot.workspace_id == workspace_id, Chatbot.default == True)  # noqa: E712
    if keep_id is not None:
        stmt = stmt.where(Chatbot.id != keep_id)
    db.execute(stmt.values(default=False).execution_options(synchronize_session="fetch"))


def save_chatbot(
    db: Session,
    workspace_id: int,
    request: ChatbotSaveRequest,
    chatbot_id: Optional[int] = None,
) -> Result[Chatbot]:
    """Create (chatbot_id=None) or replace a chatbot after validating its graph."""
    if db.get(Workspace, workspace_id) is None:
        return Result.failure(f"Workspace {workspace_id} not found", "workspace_not_found")

    try:
        graph = parse_bot_graph(request.bot)
    except GraphValidationError as e:
        logger.info("Rejected invalid chatbot graph", extra={"context": {"workspace_id": workspace_id, "error": str(e)}})
        return Result.failure(str(e), "invalid_graph")

    now = datetime.now(timezone.utc)
    if chatbot_id is None:
        chatbot = Chatbot(workspace_id=workspace_id, created_at=now)
        db.add(chatbot)
    else:
        chatbot = db.get(Chatbot, chatbot_id)
        if chatbot is None or chatbot.workspace_id != workspace_id:
            return Result.failure(f"Chatbot {chatbot_id} not found", "not_found")

    chatbot.name = request.name
    chatbot.trigger = _clean_trigger(request.trigger)
    chatbot.publish = request.publish
    chatbot.default = request.default
    chatbot.bot = graph.model_dump(mode="json", by_alias=True)
    chatbot.updated_at = now
    db.flush()

    if chatbot.default:
        _clear_other_defaults(db, workspace_id, chatbot.id)

    logger.info(
        "Chatbot saved",
        extra={"context": {"workspace_id": workspace_id, "chatbot_id": chatbot.id, "nodes": len(graph)}},
    )
    return Result.success(chatbot)


def set_flags(db: Session, workspace_id: int, chatbot_id: int, flags: ChatbotFlagsRequest) -> Result[Chatbot]:
    chatbot = db.get(Chatbot, chatbot_id)
    if chatbot is None or chatbot.workspace_id != workspace_id:
        return Result.failure(f"Chatbot {chatbot_id} not found", "not_found")

    if flags.publish is not None:
        chatbot.publish = flags.publish
    if flags.default is not None:
        chatbot.default = flags.default
    chatbot.updated_at = datetime.now(timezone.utc)
    db.flush()

    if chatbot.default:
        _clear_other_defaults(db, workspace_id, chatbot.id)
    return Result.success(chatbot)


def list_chatbots(db: Session, workspace_id: int) -> list[Chatbot]:
    return db.query(Chatbot).filter(Chatbot.workspace_id == workspace_id).order_by(Chatbot.id).all()


def to_response(chatbot: Chatbot) -> ChatbotResponse:
    return ChatbotResponse(
        id=chatbot.id,
        workspace_id=chatbot.workspace_id,
        name=chatbot.name or "",
        trigger=chatbot.trigger,
        default=bool(chatbot.default),
        publish=bool(chatbot.publish),
        node_count=len(chatbot.bot or {}),
        updated_at=chatbot.updated_at,
    )
