from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TITLE_MAX_CHARS = 50


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolInvocationState(str, Enum):
    CALLING = "calling"
    CALLED = "called"
    RESULT = "result"


class TextPart(_CamelModel):
    type: Literal["text"] = "text"
    text: str


class ToolInvocationPart(_CamelModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: ToolInvocationState = ToolInvocationState.CALLING
    result: Any = None


MessagePart = Annotated[Union[TextPart, ToolInvocationPart], Field(discriminator="type")]


class Message(_CamelModel):
    """One chat message. `content` is the flat text kept for older clients."""

    id: str | None = None
    role: Role
    content: str = ""
    parts: list[MessagePart] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sync_content_and_parts(self) -> "Message":
        if not self.parts and self.content:
            self.parts = [TextPart(text=self.content)]
        elif self.parts and not self.content:
            self.content = "".join(p.text for p in self.parts if isinstance(p, TextPart))
        return self

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_invocations(self) -> list[ToolInvocationPart]:
        return [p for p in self.parts if isinstance(p, ToolInvocationPart)]


class Chat(_CamelModel):
    id: str
    user_id: str
    title: str
    updated_at: datetime
    messages: list[Message] = Field(default_factory=list)


def derive_title(messages: list[Message]) -> str:
    """Title a chat after the text of its most recent message."""
    if not messages:
        return "New Chat"
    text = " ".join(messages[-1].text.split())
    if not text:
        return "New Chat"
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text
