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

"""brainrun lifecycle events.

Events are the only durable record of a run. Every event carries the
run id and the run options; the rest of its payload depends on its type.
The set of event classes is closed: :data:`BrainEvent` is their union and
consumers match on it exhaustively.

Wire form is a camelCase dictionary with a ``type`` key, e.g.::

    {"type": "step:complete", "brainRunId": "...", "options": {},
     "stepTitle": "Init", "stepId": "...", "patch": [...], "skipped": false}
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Union

from .client import AgentMessage
from .errors import InvalidEventError, SerializedError
from .types import BrainEventType, JsonObject
from .webhook import WebhookRegistration


@dataclass(kw_only=True)
class BaseEvent:
    """Fields shared by all events."""

    type: ClassVar[str] = ""

    brain_run_id: str
    options: JsonObject = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire form."""
        result: dict[str, Any] = {"type": self.type}
        for f in fields(self):
            result[_camel(f.name)] = _encode(f.name, getattr(self, f.name))
        return result


# -- Brain lifecycle ---------------------------------------------------------


@dataclass(kw_only=True)
class BrainStartEvent(BaseEvent):
    """A brain (root or nested) started from its initial state.

    ``depth`` is 0 for the root brain and n for a brain nested n levels
    deep. ``parent_step_id`` names the outer step running a nested brain.
    """

    type: ClassVar[str] = BrainEventType.START

    brain_title: str
    brain_description: str | None = None
    initial_state: JsonObject = field(default_factory=dict)
    depth: int = 0
    parent_step_id: str | None = None


@dataclass(kw_only=True)
class BrainRestartEvent(BaseEvent):
    """A brain resumed past already completed steps.

    ``initial_state`` is the state the brain resumes with.
    """

    type: ClassVar[str] = BrainEventType.RESTART

    brain_title: str
    brain_description: str | None = None
    initial_state: JsonObject = field(default_factory=dict)
    depth: int = 0
    parent_step_id: str | None = None


@dataclass(kw_only=True)
class BrainCompleteEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.COMPLETE

    brain_title: str
    brain_description: str | None = None
    depth: int = 0


@dataclass(kw_only=True)
class BrainErrorEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.ERROR

    brain_title: str
    error: SerializedError
    brain_description: str | None = None
    depth: int = 0


@dataclass(kw_only=True)
class BrainCancelledEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.CANCELLED

    brain_title: str
    brain_description: str | None = None
    depth: int = 0


# -- Step lifecycle ----------------------------------------------------------


@dataclass(kw_only=True)
class StepStartEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.STEP_START

    step_title: str
    step_id: str
    step_index: int


@dataclass(kw_only=True)
class StepCompleteEvent(BaseEvent):
    """A step finished with ``patch``; ``skipped`` marks an unchosen branch."""

    type: ClassVar[str] = BrainEventType.STEP_COMPLETE

    step_title: str
    step_id: str
    patch: list[dict[str, Any]] = field(default_factory=list)
    skipped: bool = False


@dataclass(kw_only=True)
class StepRetryEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.STEP_RETRY

    step_title: str
    step_id: str
    error: SerializedError
    attempt: int


@dataclass(kw_only=True)
class StepStatusEvent(BaseEvent):
    """Snapshot of every step of the emitting brain (id, title, status)."""

    type: ClassVar[str] = BrainEventType.STEP_STATUS

    steps: list[dict[str, Any]] = field(default_factory=list)


# -- Suspension --------------------------------------------------------------


@dataclass(kw_only=True)
class WebhookEvent(BaseEvent):
    """The run suspends until one of ``wait_for`` fires."""

    type: ClassVar[str] = BrainEventType.WEBHOOK

    wait_for: list[WebhookRegistration] = field(default_factory=list)


@dataclass(kw_only=True)
class WebhookResponseEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.WEBHOOK_RESPONSE

    response: Any = None


# -- Agent loop --------------------------------------------------------------


@dataclass(kw_only=True)
class AgentStartEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_START

    step_title: str
    step_id: str
    prompt: str
    system: str | None = None
    tools: list[str] = field(default_factory=list)


@dataclass(kw_only=True)
class AgentIterationEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_ITERATION

    step_title: str
    step_id: str
    iteration: int
    tokens_this_iteration: int
    total_tokens: int


@dataclass(kw_only=True)
class AgentToolCallEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_TOOL_CALL

    step_title: str
    step_id: str
    tool_name: str
    tool_call_id: str
    input: Any = None


@dataclass(kw_only=True)
class AgentToolResultEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_TOOL_RESULT

    step_title: str
    step_id: str
    tool_name: str
    tool_call_id: str
    result: Any = None


@dataclass(kw_only=True)
class AgentAssistantMessageEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_ASSISTANT_MESSAGE

    step_title: str
    step_id: str
    content: str


@dataclass(kw_only=True)
class AgentCompleteEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_COMPLETE

    step_title: str
    step_id: str
    terminal_tool_name: str
    result: Any
    total_iterations: int
    total_tokens: int


@dataclass(kw_only=True)
class AgentTokenLimitEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_TOKEN_LIMIT

    step_title: str
    step_id: str
    total_tokens: int
    max_tokens: int


@dataclass(kw_only=True)
class AgentIterationLimitEvent(BaseEvent):
    type: ClassVar[str] = BrainEventType.AGENT_ITERATION_LIMIT

    step_title: str
    step_id: str
    iteration: int
    max_iterations: int
    total_tokens: int


@dataclass(kw_only=True)
class AgentWebhookEvent(BaseEvent):
    """An agent tool asked to wait for a webhook.

    Carries the conversation and counters needed to resume the loop.
    """

    type: ClassVar[str] = BrainEventType.AGENT_WEBHOOK

    step_title: str
    step_id: str
    tool_call_id: str
    tool_name: str
    input: Any = None
    messages: list[AgentMessage] = field(default_factory=list)
    iteration: int = 0
    total_tokens: int = 0


BrainEvent = Union[
    BrainStartEvent,
    BrainRestartEvent,
    BrainCompleteEvent,
    BrainErrorEvent,
    BrainCancelledEvent,
    StepStartEvent,
    StepCompleteEvent,
    StepRetryEvent,
    StepStatusEvent,
    WebhookEvent,
    WebhookResponseEvent,
    AgentStartEvent,
    AgentIterationEvent,
    AgentToolCallEvent,
    AgentToolResultEvent,
    AgentAssistantMessageEvent,
    AgentCompleteEvent,
    AgentTokenLimitEvent,
    AgentIterationLimitEvent,
    AgentWebhookEvent,
]

EVENT_CLASSES: dict[str, type] = {
    cls.type: cls
    for cls in (
        BrainStartEvent,
        BrainRestartEvent,
        BrainCompleteEvent,
        BrainErrorEvent,
        BrainCancelledEvent,
        StepStartEvent,
        StepCompleteEvent,
        StepRetryEvent,
        StepStatusEvent,
        WebhookEvent,
        WebhookResponseEvent,
        AgentStartEvent,
        AgentIterationEvent,
        AgentToolCallEvent,
        AgentToolResultEvent,
        AgentAssistantMessageEvent,
        AgentCompleteEvent,
        AgentTokenLimitEvent,
        AgentIterationLimitEvent,
        AgentWebhookEvent,
    )
}


# -- Wire codec --------------------------------------------------------------


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _encode(name: str, value: Any) -> Any:
    if name == "error":
        return value.to_dict()
    if name == "wait_for":
        return [r.to_dict() for r in value]
    if name == "messages":
        return [m.to_dict() for m in value]
    return value


def _decode(name: str, value: Any) -> Any:
    if name == "error":
        return SerializedError.from_dict(value)
    if name == "wait_for":
        return [WebhookRegistration.from_dict(r) for r in value]
    if name == "messages":
        return [AgentMessage.from_dict(m) for m in value]
    return value


def event_from_dict(data: dict[str, Any]) -> BrainEvent:
    """Parse the wire form of an event.

    Raises:
        InvalidEventError: On an unknown type or a missing required field
    """
    event_type = data.get("type")
    cls = EVENT_CLASSES.get(event_type)  # type: ignore[arg-type]
    if cls is None:
        raise InvalidEventError(f"unknown event type {event_type!r}")
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key in data:
            kwargs[f.name] = _decode(f.name, data[key])
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise InvalidEventError(f"{event_type}: {e}") from e


def as_event(event: BrainEvent | dict[str, Any]) -> BrainEvent:
    """Accept either an event object or its wire form."""
    if isinstance(event, dict):
        return event_from_dict(event)
    return event
