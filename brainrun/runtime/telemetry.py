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

"""brainrun runtime telemetry.

Structured records derived from the event stream. Telemetry is an
event adapter; it MUST NOT affect execution semantics.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, assert_never

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
    BrainCancelledEvent,
    BrainCompleteEvent,
    BrainErrorEvent,
    BrainEvent,
    BrainRestartEvent,
    BrainStartEvent,
    StepCompleteEvent,
    StepRetryEvent,
    StepStartEvent,
    StepStatusEvent,
    WebhookEvent,
    WebhookResponseEvent,
)


@dataclass
class TelemetryEvent:
    """A single telemetry record."""

    timestamp: str
    event_type: str
    brain_run_id: str | None = None
    step_id: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {
            "timestamp": self.timestamp,
            "eventType": self.event_type,
        }
        if self.brain_run_id:
            result["brainRunId"] = self.brain_run_id
        if self.step_id:
            result["stepId"] = self.step_id
        if self.details:
            result["details"] = self.details
        return result


class Telemetry:
    """Telemetry collector for brain runs.

    Collects structured records for:
    - Brain start, restart, completion, errors and cancellation
    - Step retries
    - Webhook waits and responses
    - Agent completion and limit breaches
    """

    def __init__(self, enabled: bool = True):
        """Initialize telemetry.

        Args:
            enabled: Whether telemetry is enabled
        """
        self.enabled = enabled
        self.events: list[TelemetryEvent] = []

    def _now(self) -> str:
        """Get current timestamp."""
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _log(
        self,
        event_type: str,
        brain_run_id: str | None = None,
        step_id: str | None = None,
        **details: Any,
    ) -> None:
        """Log a telemetry record."""
        if not self.enabled:
            return

        self.events.append(
            TelemetryEvent(
                timestamp=self._now(),
                event_type=event_type,
                brain_run_id=brain_run_id,
                step_id=step_id,
                details=details,
            )
        )

    def dispatch(self, event: BrainEvent) -> None:
        """Record the telemetry of one brain event."""
        run = event.brain_run_id
        match event:
            case BrainStartEvent() | BrainRestartEvent():
                self._log(
                    "brain.restart" if isinstance(event, BrainRestartEvent) else "brain.start",
                    run,
                    brainTitle=event.brain_title,
                    depth=event.depth,
                )
            case BrainCompleteEvent():
                self._log("brain.complete", run, brainTitle=event.brain_title, depth=event.depth)
            case BrainErrorEvent():
                self._log(
                    "brain.error",
                    run,
                    brainTitle=event.brain_title,
                    depth=event.depth,
                    error=event.error.message,
                    errorType=event.error.name,
                )
            case BrainCancelledEvent():
                self._log("brain.cancelled", run, brainTitle=event.brain_title)
            case StepRetryEvent():
                self._log(
                    "step.retry",
                    run,
                    event.step_id,
                    attempt=event.attempt,
                    error=event.error.message,
                )
            case WebhookEvent():
                self._log(
                    "webhook.wait",
                    run,
                    webhooks=[f"{r.slug}/{r.identifier}" for r in event.wait_for],
                )
            case WebhookResponseEvent():
                self._log("webhook.response", run)
            case AgentCompleteEvent():
                self._log(
                    "agent.complete",
                    run,
                    event.step_id,
                    terminalTool=event.terminal_tool_name,
                    iterations=event.total_iterations,
                    totalTokens=event.total_tokens,
                )
            case AgentTokenLimitEvent():
                self._log(
                    "agent.token_limit",
                    run,
                    event.step_id,
                    totalTokens=event.total_tokens,
                    maxTokens=event.max_tokens,
                )
            case AgentIterationLimitEvent():
                self._log(
                    "agent.iteration_limit",
                    run,
                    event.step_id,
                    iteration=event.iteration,
                    maxIterations=event.max_iterations,
                )
            case AgentWebhookEvent():
                self._log("agent.webhook", run, event.step_id, toolName=event.tool_name)
            case (
                StepStartEvent()
                | StepCompleteEvent()
                | StepStatusEvent()
                | AgentStartEvent()
                | AgentIterationEvent()
                | AgentToolCallEvent()
                | AgentToolResultEvent()
                | AgentAssistantMessageEvent()
            ):
                pass
            case _:
                assert_never(event)

    def clear(self) -> None:
        """Clear all records."""
        self.events.clear()

    def get_events(self) -> list[dict]:
        """Get all records as dictionaries."""
        return [e.to_dict() for e in self.events]

    def to_json(self, indent: int = 2) -> str:
        """Export records as JSON."""
        return json.dumps(self.get_events(), indent=indent)
