from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssignRequest(_CamelModel):
    member_id: Optional[int] = None


class StatusRequest(_CamelModel):
    status: Literal["open", "closed"]


class ConversationResponse(_CamelModel):
    id: int
    workspace_id: int
    phone: str
    status: str
    assigned: bool
    member_id: Optional[int] = None
    chatbot_id: Optional[int] = None
    current_node: Optional[str] = None
    chatbot_timeout: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int
