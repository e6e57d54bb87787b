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

"""Agent tools.

A tool is a description plus a JSON Schema for its input, an optional
``execute(input, ctx)`` callable and a ``terminal`` flag. Executing a
tool may return :class:`ToolWaitFor` to suspend the run until a webhook
fires; the webhook response then becomes the tool's result.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .client import ToolSpec
from .schema import check_schema
from .webhook import WebhookRegistration, normalize_wait_for

if TYPE_CHECKING:
    from .blocks import StepContext

agent_logger = logging.getLogger("brainrun.agent")

DONE_TOOL_NAME = "done"

DEFAULT_DONE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "result": {
            "type": "string",
            "description": "The final result or summary of the completed task",
        }
    },
    "required": ["result"],
}


@dataclass(frozen=True)
class AgentTool:
    """A tool the model may call."""

    description: str
    input_schema: dict[str, Any]
    execute: Callable[[Any, "StepContext"], Any] | None = None
    terminal: bool = False

    def spec(self) -> ToolSpec:
        """What the model is shown of this tool."""
        return ToolSpec(description=self.description, input_schema=self.input_schema)


@dataclass
class ToolWaitFor:
    """Returned by a tool to suspend until a webhook fires."""

    wait_for: WebhookRegistration | list[WebhookRegistration]

    def registrations(self) -> list[WebhookRegistration]:
        return normalize_wait_for(self.wait_for)


def create_tool(
    description: str,
    input_schema: dict[str, Any],
    execute: Callable[[Any, "StepContext"], Any] | None = None,
    terminal: bool = False,
) -> AgentTool:
    """Create a tool, checking its input schema.

    Raises:
        InvalidSchemaError: If ``input_schema`` is not valid JSON Schema
    """
    check_schema(input_schema)
    return AgentTool(
        description=description,
        input_schema=input_schema,
        execute=execute,
        terminal=terminal,
    )


_DONE_DESCRIPTION = """Signal that the task is complete and provide {what}.

This is a terminal tool: calling it ends the agent immediately and no
further tools run. Call it once the task is finished and the final
answer is ready. Do not call it while you still need information or are
waiting for user input (use waitForWebhook for that)."""


def build_done_tool(output_schema: Any = None) -> AgentTool:
    """Synthesize the terminal ``done`` tool of an agent step.

    With an output schema the tool's input is that schema and the result
    is stored under the schema's name; otherwise it takes a free-text
    ``result`` merged at the state root.
    """
    if output_schema is not None:
        return AgentTool(
            description=_DONE_DESCRIPTION.format(what=f"the final {output_schema.name} result"),
            input_schema=output_schema.schema,
            terminal=True,
        )
    return AgentTool(
        description=_DONE_DESCRIPTION.format(what="a summary of what was accomplished"),
        input_schema=DEFAULT_DONE_SCHEMA,
        terminal=True,
    )


def merge_tools(
    defaults: Mapping[str, AgentTool],
    step_tools: Mapping[str, AgentTool] | None,
    output_schema: Any = None,
) -> dict[str, AgentTool]:
    """Effective tool set: defaults, overridden by step tools, plus ``done``."""
    merged = {**defaults, **(step_tools or {})}
    merged[DONE_TOOL_NAME] = build_done_tool(output_schema)
    return merged


# -- Default tools -----------------------------------------------------------

_LOG_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _console_log(args: dict[str, Any], ctx: "StepContext") -> dict[str, Any]:
    level = _LOG_LEVELS.get(args.get("level", "info"), logging.INFO)
    agent_logger.log(level, "[Agent] %s", args.get("message", ""))
    return {"logged": True}


def _wait_for_webhook(args: dict[str, Any], ctx: "StepContext") -> ToolWaitFor:
    return ToolWaitFor(
        wait_for=WebhookRegistration(
            slug=args["slug"],
            identifier=args["identifier"],
            token=args.get("token"),
        )
    )


console_log = AgentTool(
    description="Log a message for debugging or informational purposes",
    input_schema={
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "The message to log"},
            "level": {
                "type": "string",
                "enum": ["info", "warn", "error"],
                "description": "Log level (defaults to info)",
            },
        },
        "required": ["message"],
    },
    execute=_console_log,
)

wait_for_webhook = AgentTool(
    description=(
        "Pause until a webhook fires. Pass the slug, identifier and token of a "
        "webhook (for example one returned with a generated page). The webhook "
        "response becomes this tool's result when execution resumes."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "slug": {"type": "string"},
            "identifier": {"type": "string"},
            "token": {"type": "string"},
        },
        "required": ["slug", "identifier"],
    },
    execute=_wait_for_webhook,
)


def default_tools() -> dict[str, AgentTool]:
    """The standard tool bundle (``consoleLog``, ``waitForWebhook``)."""
    return {"consoleLog": console_log, "waitForWebhook": wait_for_webhook}
