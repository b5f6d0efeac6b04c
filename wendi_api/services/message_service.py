from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from wendi_api.models import Message
from wendi_api.models.message import INBOUND_PROVIDER_ID_WHERE
from wendi_api.services.stores import ConversationActivity, MessageRecord

OUTBOUND_ROLES = ("bot", "agent")

# Receipts can arrive out of order; a message never moves back down this ladder.
_STATUS_RANK = {"pending": 0, "sent": 1, "delivered": 2, "read": 3}


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _columns(record: MessageRecord) -> dict:
    return {
        "conversation_id": record.conversation_id,
        "workspace_id": record.workspace_id,
        "phone": record.phone,
        "role": record.role,
        "source": record.source,
        "content": record.content or "",
        "link": record.link,
        "file_type": record.file_type or "none",
        "node_id": record.node_id,
        "rule_id": record.rule_id,
        "provider_message_id": record.provider_message_id,
        "status": record.status,
        "error": record.error,
        "created_at": record.created_at or datetime.now(timezone.utc),
    }


def save_message(db: Session, record: MessageRecord) -> Message:
    """Save message to database."""
    message = Message(**_columns(record))
    db.add(message)
    db.flush()
    return message


def save_inbound_message(db: Session, record: MessageRecord) -> Optional[int]:
    """Insert a customer message unless its provider id is already stored.

    Returns the new message id, or None when the provider redelivered a
    message that is already in the log.
    """
    if not record.provider_message_id:
        return save_message(db, record).id

    insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    stmt = (
        insert(Message)
        .values(**_columns(record))
        .on_conflict_do_nothing(
            index_elements=["workspace_id", "provider_message_id"],
            index_where=INBOUND_PROVIDER_ID_WHERE,
        )
    )
    if db.execute(stmt).rowcount == 0:
        return None

    message = (
        db.query(Message)
        .filter(
            Message.workspace_id == record.workspace_id,
            Message.provider_message_id == record.provider_message_id,
            Message.role == record.role,
        )
        .one()
    )
    return message.id


def mark_message_sent(db: Session, message_id: int, provider_message_id: Optional[str]) -> None:
    db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(status="sent", provider_message_id=provider_message_id, error=None)
        .execution_options(synchronize_session=False)
    )


def mark_message_failed(db: Session, message_id: int, error: str) -> None:
    db.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(status="failed", error=error[:1000])
        .execution_options(synchronize_session=False)
    )


def find_by_provider_id(db: Session, workspace_id: int, provider_message_id: str) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(Message.workspace_id == workspace_id, Message.provider_message_id == provider_message_id)
        .first()
    )


def apply_delivery_status(db: Session, provider_message_id: str, status: str, error: Optional[str] = None) -> int:
    """Apply a WhatsApp delivery receipt. Returns the number of messages updated."""
    status = (status or "").strip().lower()
    messages = (
        db.query(Message)
        .filter(Message.provider_message_id == provider_message_id)
        .populate_existing()
        .all()
    )
    updated = 0
    for message in messages:
        if status == "failed":
            message.status = "failed"
            message.error = error or message.error
            updated += 1
            continue
        if status not in _STATUS_RANK:
            continue
        if _STATUS_RANK[status] > _STATUS_RANK.get(message.status, -1):
            message.status = status
            updated += 1
    db.flush()
    return updated


def conversation_activity(db: Session, conversation_id: int) -> ConversationActivity:
    """Counts used by the rule engine to tell a new, waiting or stale conversation apart."""
    rows = (
        db.query(Message.role, func.count(Message.id), func.max(Message.created_at))
        .filter(Message.conversation_id == conversation_id)
        .group_by(Message.role)
        .all()
    )
    counts = {role: (count, last) for role, count, last in rows}

    outbound_times = [
        _ensure_timezone(counts[role][1]) for role in OUTBOUND_ROLES if role in counts and counts[role][1]
    ]
    return ConversationActivity(
        customer_messages=counts.get("customer", (0, None))[0],
        outbound_messages=sum(counts.get(role, (0, None))[0] for role in OUTBOUND_ROLES),
        agent_replies=counts.get("agent", (0, None))[0],
        last_outbound_at=max(outbound_times) if outbound_times else None,
    )
