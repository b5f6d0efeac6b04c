"""Chatbot node graph as stored by the flow builder.

Each node kind is its own model and carries only the fields that kind uses.
The graph is a mapping of ``nodeId`` to node; option and button nodes live
inside their parent's ``children`` and point onward through their own ``next``.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from wendi_api.errors import GraphValidationError


class NodeType(str, Enum):
    START = "START_NODE"
    TEXT_MESSAGE = "TEXT_NODE"
    MESSAGE_REPLY = "MESSAGE_REPLY_NODE"
    CHATBOT_MESSAGE = "CHAT_BOT_MSG_NODE"
    IMAGE = "IMAGE_NODE"
    OPTION_MESSAGE = "OPTION_MESSAGE_NODE"
    OPTION = "OPTION_NODE"
    BUTTON_MESSAGE = "BUTTON_MESSAGE_NODE"
    BUTTON = "BUTTON_NODE"
    CHAT_WITH_AGENT = "CHAT_WITH_AGENT"


class _Node(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    node_id: str

    def successor(self) -> Optional[str]:
        return getattr(self, "next", None)

    def awaits_reply(self) -> bool:
        return bool(getattr(self, "need_response", False))

    def options(self) -> list["_Node"]:
        return list(getattr(self, "children", []))

    def media_link(self) -> Optional[str]:
        return getattr(self, "link", None)

    def text(self) -> str:
        return getattr(self, "message", "") or ""


class StartNode(_Node):
    type: Literal["START_NODE"] = "START_NODE"
    next: Optional[str] = None


class TextMessageNode(_Node):
    type: Literal["TEXT_NODE", "MESSAGE_REPLY_NODE"] = "TEXT_NODE"
    message: str = ""
    next: Optional[str] = None
    need_response: bool = False


class ChatbotMessageNode(_Node):
    type: Literal["CHAT_BOT_MSG_NODE"] = "CHAT_BOT_MSG_NODE"
    message: str = ""
    next: Optional[str] = None
    need_response: bool = False


class ImageNode(_Node):
    type: Literal["IMAGE_NODE"] = "IMAGE_NODE"
    message: str = ""
    link: Optional[str] = None
    file_type: str = "image"
    next: Optional[str] = None
    need_response: bool = False


class OptionNode(_Node):
    type: Literal["OPTION_NODE"] = "OPTION_NODE"
    message: str = ""
    next: Optional[str] = None


class ButtonNode(_Node):
    type: Literal["BUTTON_NODE"] = "BUTTON_NODE"
    message: str = ""
    next: Optional[str] = None


class OptionMessageNode(_Node):
    type: Literal["OPTION_MESSAGE_NODE"] = "OPTION_MESSAGE_NODE"
    message: str = ""
    children: list[OptionNode] = Field(default_factory=list)
    need_response: bool = True

    @field_validator("need_response")
    @classmethod
    def _always_waits(cls, value: bool) -> bool:
        return True


class ButtonMessageNode(_Node):
    type: Literal["BUTTON_MESSAGE_NODE"] = "BUTTON_MESSAGE_NODE"
    message: str = ""
    children: list[ButtonNode] = Field(default_factory=list)
    need_response: bool = True

    @field_validator("need_response")
    @classmethod
    def _always_waits(cls, value: bool) -> bool:
        return True


class ChatWithAgentNode(_Node):
    type: Literal["CHAT_WITH_AGENT"] = "CHAT_WITH_AGENT"
    message: str = ""


Node = Annotated[
    Union[
        StartNode,
        TextMessageNode,
        ChatbotMessageNode,
        ImageNode,
        OptionMessageNode,
        ButtonMessageNode,
        ChatWithAgentNode,
    ],
    Field(discriminator="type"),
]


class BotGraph(RootModel[dict[str, Node]]):
    """Immutable node graph of one chatbot version."""

    @model_validator(mode="after")
    def _check_references(self) -> "BotGraph":
        nodes = self.root
        starts = [node_id for node_id, node in nodes.items() if node.type == NodeType.START]
        if len(starts) != 1:
            raise ValueError(f"graph must contain exactly one START node, found {len(starts)}")

        for key, node in nodes.items():
            if key != node.node_id:
                raise ValueError(f"node stored under '{key}' declares nodeId '{node.node_id}'")
            targets = [node.successor()] + [child.successor() for child in node.options()]
            for target in targets:
                if target is not None and target not in nodes:
                    raise ValueError(f"node '{key}' points to unknown node '{target}'")
        return self

    def __len__(self) -> int:
        return len(self.root)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.root

    def get(self, node_id: Optional[str]):
        if node_id is None:
            return None
        return self.root.get(node_id)

    @property
    def start_node_id(self) -> str:
        for node_id, node in self.root.items():
            if node.type == NodeType.START:
                return node_id
        raise GraphValidationError("graph has no START node")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def parse_bot_graph(data: Any) -> BotGraph:
    """Validate builder JSON (dict or JSON string) into a BotGraph."""
    try:
        if isinstance(data, (str, bytes)):
            return BotGraph.model_validate_json(data)
        return BotGraph.model_validate(data)
    except ValidationError as e:
        raise GraphValidationError(str(e)) from e
