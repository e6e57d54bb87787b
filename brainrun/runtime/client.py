# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""LLM capability contract.

The runtime never talks to a model provider directly. Hosts inject a
client implementing :class:`ObjectGenerator`; agent steps additionally
require :meth:`ObjectGenerator.generate_text` (tool-augmented
generation).
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .errors import ClientCapabilityError


class MessageRole:
    """Conversation role constants."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A single tool invocation requested by the model."""

    tool_call_id: str
    tool_name: str
    args: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"toolCallId": self.tool_call_id, "toolName": self.tool_name, "args": self.args}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        """Create from a dictionary."""
        return cls(
            tool_call_id=data["toolCallId"],
            tool_name=data["toolName"],
            args=data.get("args"),
        )


@dataclass
class AgentMessage:
    """One entry of an agent conversation.

    Assistant messages may carry the tool calls the model made; tool
    messages carry the result for one ``tool_call_id``.
    """

    role: str
    content: Any = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    tool_name: str | None = None

    @classmethod
    def user(cls, content: str) -> "AgentMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> "AgentMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, tool_name: str, content: Any) -> "AgentMessage":
        return cls(
            role=MessageRole.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            result["toolCalls"] = [c.to_dict() for c in self.tool_calls]
        if self.tool_call_id is not None:
            result["toolCallId"] = self.tool_call_id
        if self.tool_name is not None:
            result["toolName"] = self.tool_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentMessage":
        """Create from a dictionary."""
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("toolCalls", [])],
            tool_call_id=data.get("toolCallId"),
            tool_name=data.get("toolName"),
        )


@dataclass
class TokenUsage:
    """Token accounting for one model call."""

    total_tokens: int = 0


@dataclass
class TextGeneration:
    """Result of a tool-augmented generation call."""

    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ToolSpec:
    """What the model sees of a tool: its description and input schema."""

    description: str
    input_schema: dict[str, Any]


@runtime_checkable
class ObjectGenerator(Protocol):
    """Structured generation capability."""

    def generate_object(
        self,
        *,
        schema: dict[str, Any],
        schema_name: str,
        prompt: str | None = None,
        messages: list[AgentMessage] | None = None,
        system: str | None = None,
    ) -> Any:
        """Return a value conforming to *schema*."""
        ...


@runtime_checkable
class TextGenerator(Protocol):
    """Tool-augmented generation capability."""

    def generate_text(
        self,
        *,
        system: str | None,
        messages: list[AgentMessage],
        tools: dict[str, ToolSpec],
        tool_choice: str | None = None,
    ) -> TextGeneration:
        """Run one model turn over the full conversation."""
        ...


def require_text_generation(client: Any) -> TextGenerator:
    """Return *client* if it can drive an agent loop.

    Raises:
        ClientCapabilityError: If ``generate_text`` is missing
    """
    if client is None or not callable(getattr(client, "generate_text", None)):
        raise ClientCapabilityError("generate_text")
    return client


def require_object_generation(client: Any) -> ObjectGenerator:
    """Return *client* if it supports structured generation.

    Raises:
        ClientCapabilityError: If ``generate_object`` is missing
    """
    if client is None or not callable(getattr(client, "generate_object", None)):
        raise ClientCapabilityError("generate_object")
    return client
