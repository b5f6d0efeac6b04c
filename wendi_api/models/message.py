from sqlalchemy import Column, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import relationship

from wendi_api.database import Base

# Inbound provider ids are unique per workspace; outbound ids come from the provider and are not checked.
INBOUND_PROVIDER_ID_WHERE = text("role = 'customer'")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index(
            "uq_messages_inbound_provider_id",
            "workspace_id",
            "provider_message_id",
            unique=True,
            postgresql_where=INBOUND_PROVIDER_ID_WHERE,
            sqlite_where=INBOUND_PROVIDER_ID_WHERE,
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    workspace_id = Column(Integer, nullable=False)
    phone = Column(Text, nullable=False)
    role = Column(Text, nullable=False)  # customer, bot, agent
    source = Column(Text, nullable=False)  # customer, chatbot, automation, agent
    content = Column(Text, nullable=False, default="")
    link = Column(Text)
    file_type = Column(Text, default="none")
    node_id = Column(Text)
    rule_id = Column(Text)
    provider_message_id = Column(Text, index=True)
    status = Column(Text, nullable=False)  # received, pending, sent, failed, delivered, read
    error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
