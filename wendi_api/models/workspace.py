from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import relationship

from wendi_api.database import Base


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    phone_id = Column(Text, unique=True)  # WhatsApp Cloud phone_number_id
    access_token = Column(Text)
    time_zone = Column(Text)  # IANA name, falls back to settings.default_time_zone
    created_at = Column(TIMESTAMP(timezone=True))

    chatbots = relationship("Chatbot", back_populates="workspace")
    conversations = relationship("Conversation", back_populates="workspace")
