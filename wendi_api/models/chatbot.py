from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import relationship

from wendi_api.database import Base, JSONType


class Chatbot(Base):
    __tablename__ = "chatbots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    trigger = Column(Text)
    default = Column(Boolean, nullable=False, default=False)
    publish = Column(Boolean, nullable=False, default=False)
    bot = Column(JSONType, nullable=False, default=dict)  # node graph keyed by nodeId
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    workspace = relationship("Workspace", back_populates="chatbots")
