from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wendi_api.schemas.bot_graph import BotGraph


class ChatbotDefinition(BaseModel):
    """A chatbot as the core sees it: read-only, graph already validated."""

    model_config = ConfigDict(frozen=True)

    id: int
    workspace_id: int
    name: str = ""
    trigger: Optional[str] = None
    default: bool = False
    publish: bool = False
    graph: BotGraph


class ChatbotSaveRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(default="", max_length=200)
    trigger: Optional[str] = None
    default: bool = False
    publish: bool = False
    bot: dict[str, Any]


class ChatbotFlagsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    publish: Optional[bool] = None
    default: Optional[bool] = None


class ChatbotResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    workspace_id: int
    name: str
    trigger: Optional[str] = None
    default: bool
    publish: bool
    node_count: int
    updated_at: Optional[datetime] = None
