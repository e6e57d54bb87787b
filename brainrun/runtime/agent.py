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

"""Agent tool-calling loop.

An agent step hands the conversation to the model, executes the tools it
calls and feeds their results back until one of:

- a terminal tool (always including ``done``) is called
- the model answers without calling any tool
- the token or iteration budget is exhausted
- a tool asks to wait for a webhook (the run suspends)

Only the last of these ends the run; all others complete the step.
"""

import copy
import logging
from collections.abc import Generator, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .client import AgentMessage, MessageRole, require_text_generation
from .errors import UnknownToolError
from .events import (
    AgentAssistantMessageEvent,
    AgentCompleteEvent,
    AgentIterationEvent,
    AgentIterationLimitEvent,
    AgentStartEvent,
    AgentTokenLimitEvent,
    AgentToolCallEvent,
    AgentToolResultEvent,
    AgentWebhookEvent,
    BrainEvent,
    WebhookEvent,
    WebhookResponseEvent,
    as_event,
)
from .schema import check_schema, validation_errors
from .tools import DONE_TOOL_NAME, AgentTool, ToolWaitFor
from .types import JsonObject
from .webhook import WebhookRegistration

if TYPE_CHECKING:
    from ..config import RuntimeConfig
    from .blocks import StepContext

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Begin."

WAITING_FOR_WEBHOOK = "waiting_for_webhook"
INVALID_INPUT = "invalid_input"


@dataclass
class AgentOutputSchema:
    """Structured result of an agent, stored in state under ``name``."""

    name: str
    schema: dict[str, Any]


@dataclass
class AgentConfig:
    """What an agent closure returns.

    Attributes:
        prompt: First user message
        system: Appended to the runtime's default agent system prompt
        tools: Step tools, overriding the brain's default tools by name
        output_schema: Schema of the ``done`` tool's input
        max_tokens: Cumulative token budget (no limit when None)
        max_iterations: Model call budget (runtime default when None)
        tool_choice: Passed through to the model client
    """

    prompt: str = DEFAULT_PROMPT
    system: str | None = None
    tools: Mapping[str, AgentTool] | None = None
    output_schema: AgentOutputSchema | None = None
    max_tokens: int | None = None
    max_iterations: int | None = None
    tool_choice: str | None = None


@dataclass
class AgentResumeContext:
    """Everything needed to continue a suspended agent loop."""

    messages: list[AgentMessage]
    pending_tool_call_id: str
    pending_tool_name: str
    prompt: str = DEFAULT_PROMPT
    system: str | None = None
    step_id: str | None = None
    iteration: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "messages": [m.to_dict() for m in self.messages],
            "pendingToolCallId": self.pending_tool_call_id,
            "pendingToolName": self.pending_tool_name,
            "prompt": self.prompt,
            "system": self.system,
            "stepId": self.step_id,
            "iteration": self.iteration,
            "totalTokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentResumeContext":
        """Create from a dictionary."""
        return cls(
            messages=[AgentMessage.from_dict(m) for m in data.get("messages", [])],
            pending_tool_call_id=data["pendingToolCallId"],
            pending_tool_name=data["pendingToolName"],
            prompt=data.get("prompt", DEFAULT_PROMPT),
            system=data.get("system"),
            step_id=data.get("stepId"),
            iteration=data.get("iteration", 0),
            total_tokens=data.get("totalTokens", 0),
        )


def reconstruct_agent_context(
    events: Iterable[BrainEvent | dict[str, Any]], step_id: str | None = None
) -> AgentResumeContext | None:
    """Rebuild the resume context of a suspended agent from its events.

    Uses the last ``agent:webhook`` event (of ``step_id`` when given) for
    the conversation, pending tool and counters, and the matching
    ``agent:start`` for prompt and system.

    Returns:
        The context, or None if no agent is waiting on a webhook
    """
    parsed = [as_event(e) for e in events]
    webhook: AgentWebhookEvent | None = None
    for event in parsed:
        if isinstance(event, AgentWebhookEvent) and (step_id is None or event.step_id == step_id):
            webhook = event
    if webhook is None:
        return None

    start: AgentStartEvent | None = None
    for event in parsed:
        if isinstance(event, AgentStartEvent) and event.step_id == webhook.step_id:
            start = event

    if start is not None:
        prompt, system = start.prompt, start.system
    else:
        first_user = next((m for m in webhook.messages if m.role == MessageRole.USER), None)
        prompt = first_user.content if first_user else DEFAULT_PROMPT
        system = None

    return AgentResumeContext(
        messages=list(webhook.messages),
        pending_tool_call_id=webhook.tool_call_id,
        pending_tool_name=webhook.tool_name,
        prompt=prompt,
        system=system,
        step_id=webhook.step_id,
        iteration=webhook.iteration,
        total_tokens=webhook.total_tokens,
    )


@dataclass
class AgentOutcome:
    """How the loop ended: with a new state, or suspended on webhooks."""

    state: JsonObject
    wait_for: list[WebhookRegistration] = field(default_factory=list)

    @property
    def suspended(self) -> bool:
        return bool(self.wait_for)


class AgentLoop:
    """Runs one agent step, yielding its events.

    Tool arguments are checked against the tool's input schema (for
    ``done`` with an output schema, that schema). A call that fails is
    not executed; the errors go back to the model as the tool result.

    Usage:
        loop = AgentLoop(step_title="Research", step_id=sid, config=cfg,
                         tools=tools, ctx=ctx, runtime=runtime_config)
        outcome = yield from loop.run()
    """

    def __init__(
        self,
        *,
        step_title: str,
        step_id: str,
        config: AgentConfig,
        tools: Mapping[str, AgentTool],
        ctx: "StepContext",
        runtime: "RuntimeConfig",
        resume: AgentResumeContext | None = None,
        webhook_response: Any = None,
    ):
        self.step_title = step_title
        self.step_id = step_id
        self.config = config
        self.tools = dict(tools)
        self.ctx = ctx
        self.runtime = runtime
        self.resume = resume
        self.webhook_response = webhook_response

    def _common(self) -> dict[str, Any]:
        return {
            "brain_run_id": self.ctx.brain_run_id,
            "options": self.ctx.options,
            "step_title": self.step_title,
            "step_id": self.step_id,
        }

    def _system_prompt(self) -> str:
        if self.config.system:
            return f"{self.runtime.agent_system_prompt}\n\n{self.config.system}"
        return self.runtime.agent_system_prompt

    def run(self) -> Generator[BrainEvent, None, AgentOutcome]:
        """Drive the loop until the step completes or the run suspends."""
        client = require_text_generation(self.ctx.client)
        config = self.config
        if config.output_schema is not None:
            check_schema(config.output_schema.schema)

        state = copy.deepcopy(self.ctx.state)
        common = self._common()

        if self.resume is not None:
            messages = list(self.resume.messages)
            iteration = self.resume.iteration
            total_tokens = self.resume.total_tokens
            if self.webhook_response is not None:
                yield WebhookResponseEvent(
                    brain_run_id=common["brain_run_id"],
                    options=common["options"],
                    response=self.webhook_response,
                )
                yield AgentToolResultEvent(
                    **common,
                    tool_name=self.resume.pending_tool_name,
                    tool_call_id=self.resume.pending_tool_call_id,
                    result=self.webhook_response,
                )
                messages.append(
                    AgentMessage.tool(
                        self.resume.pending_tool_call_id,
                        self.resume.pending_tool_name,
                        self.webhook_response,
                    )
                )
            logger.info(
                "Agent resumed: step_id=%s iteration=%d total_tokens=%d",
                self.step_id,
                iteration,
                total_tokens,
            )
        else:
            prompt = config.prompt or DEFAULT_PROMPT
            yield AgentStartEvent(
                **common,
                prompt=prompt,
                system=config.system,
                tools=list(self.tools),
            )
            messages = [AgentMessage.user(prompt)]
            iteration = 0
            total_tokens = 0

        max_iterations = config.max_iterations or self.runtime.max_iterations
        system = self._system_prompt()
        tool_specs = {name: tool.spec() for name, tool in self.tools.items()}

        while True:
            iteration += 1

            if iteration > max_iterations:
                logger.info(
                    "Agent iteration limit: step_id=%s max_iterations=%d",
                    self.step_id,
                    max_iterations,
                )
                yield AgentIterationLimitEvent(
                    **common,
                    iteration=iteration - 1,
                    max_iterations=max_iterations,
                    total_tokens=total_tokens,
                )
                return AgentOutcome(state=state)

            response = client.generate_text(
                system=system,
                messages=list(messages),
                tools=tool_specs,
                tool_choice=config.tool_choice,
            )
            tokens = response.usage.total_tokens
            total_tokens += tokens
            messages.append(AgentMessage.assistant(response.text or "", response.tool_calls))

            yield AgentIterationEvent(
                **common,
                iteration=iteration,
                tokens_this_iteration=tokens,
                total_tokens=total_tokens,
            )

            if config.max_tokens and total_tokens > config.max_tokens:
                logger.info(
                    "Agent token limit: step_id=%s total_tokens=%d max_tokens=%d",
                    self.step_id,
                    total_tokens,
                    config.max_tokens,
                )
                yield AgentTokenLimitEvent(
                    **common,
                    total_tokens=total_tokens,
                    max_tokens=config.max_tokens,
                )
                return AgentOutcome(state=state)

            if response.text:
                logger.info("[Assistant] %s", response.text)
                yield AgentAssistantMessageEvent(**common, content=response.text)

            if not response.tool_calls:
                return AgentOutcome(state=state)

            pending: tuple[Any, list[WebhookRegistration]] | None = None

            for call in response.tool_calls:
                yield AgentToolCallEvent(
                    **common,
                    tool_name=call.tool_name,
                    tool_call_id=call.tool_call_id,
                    input=call.args,
                )

                tool = self.tools.get(call.tool_name)
                if tool is None:
                    raise UnknownToolError(call.tool_name, self.step_title)

                errors = validation_errors(
                    tool.input_schema, call.args if call.args is not None else {}
                )
                if errors:
                    logger.warning(
                        "Invalid tool input: step_id=%s tool=%s errors=%s",
                        self.step_id,
                        call.tool_name,
                        "; ".join(errors),
                    )
                    rejected = {"status": INVALID_INPUT, "errors": errors}
                    yield AgentToolResultEvent(
                        **common,
                        tool_name=call.tool_name,
                        tool_call_id=call.tool_call_id,
                        result=rejected,
                    )
                    messages.append(AgentMessage.tool(call.tool_call_id, call.tool_name, rejected))
                    continue

                if tool.terminal:
                    yield AgentCompleteEvent(
                        **common,
                        terminal_tool_name=call.tool_name,
                        result=call.args,
                        total_iterations=iteration,
                        total_tokens=total_tokens,
                    )
                    args = copy.deepcopy(call.args)
                    if config.output_schema is not None and call.tool_name == DONE_TOOL_NAME:
                        state = {**state, config.output_schema.name: args}
                    else:
                        state = {**state, **(args or {})}
                    return AgentOutcome(state=state)

                if tool.execute is None:
                    logger.debug("Tool without execute: %s", call.tool_name)
                    continue

                tool_ctx = replace(self.ctx, state=copy.deepcopy(state), step_id=self.step_id)
                result = tool.execute(call.args, tool_ctx)

                if isinstance(result, ToolWaitFor):
                    registrations = result.registrations()
                    pending = (call, registrations)
                    yield AgentToolResultEvent(
                        **common,
                        tool_name=call.tool_name,
                        tool_call_id=call.tool_call_id,
                        result={
                            "status": WAITING_FOR_WEBHOOK,
                            "webhooks": [r.to_dict() for r in registrations],
                        },
                    )
                    continue

                yield AgentToolResultEvent(
                    **common,
                    tool_name=call.tool_name,
                    tool_call_id=call.tool_call_id,
                    result=result,
                )
                messages.append(AgentMessage.tool(call.tool_call_id, call.tool_name, result))

            if pending is not None:
                call, registrations = pending
                logger.info(
                    "Agent waiting for webhook: step_id=%s tool=%s",
                    self.step_id,
                    call.tool_name,
                )
                yield AgentWebhookEvent(
                    **common,
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    input=call.args,
                    messages=list(messages),
                    iteration=iteration,
                    total_tokens=total_tokens,
                )
                yield WebhookEvent(
                    brain_run_id=common["brain_run_id"],
                    options=common["options"],
                    wait_for=registrations,
                )
                return AgentOutcome(state=state, wait_for=registrations)
