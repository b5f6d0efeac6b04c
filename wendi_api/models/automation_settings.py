from sqlalchemy import Boolean, Column, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import TIMESTAMP

from wendi_api.database import Base, JSONType


class AutomationSettings(Base):
    __tablename__ = "automation_settings"

    workspace_id = Column(Integer, ForeignKey("workspaces.id"), primary_key=True)
    holiday_mode = Column(Boolean, nullable=False, default=False)
    working_hours = Column(JSONType, nullable=False, default=list)
    automation_rules = Column(JSONType, nullable=False, default=list)
    updated_at = Column(TIMESTAMP(timezone=True))
