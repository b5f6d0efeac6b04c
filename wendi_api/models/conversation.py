from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import relationship

from wendi_api.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("workspace_id", "phone", name="uq_conversations_workspace_phone"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=False)
    phone = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="open")  # open, closed
    assigned = Column(Boolean, nullable=False, default=False)
    member_id = Column(Integer)
    chatbot_id = Column(Integer, ForeignKey("chatbots.id"))
    current_node = Column(Text)
    chatbot_timeout = Column(TIMESTAMP(timezone=True))
    version = Column(Integer, nullable=False, default=0)  # bumped by every compare-and-swap write
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    workspace = relationship("Workspace", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
