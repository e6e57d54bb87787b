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

"""brainrun runtime core type definitions."""

import uuid
from typing import Any, NewType

# Type aliases for IDs
RunId = NewType("RunId", str)
StepId = NewType("StepId", str)

# State documents are plain JSON-compatible dictionaries
JsonObject = dict[str, Any]


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def run_id() -> RunId:
    """Generate a new RunId."""
    return RunId(generate_id())


def step_id() -> StepId:
    """Generate a new StepId."""
    return StepId(generate_id())


class Status:
    """Status constants shared by steps, frames and runs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @classmethod
    def is_done(cls, status: str) -> bool:
        """Check if a step status means the step will not run again."""
        return status in (cls.COMPLETE, cls.SKIPPED)

    @classmethod
    def all(cls) -> tuple[str, ...]:
        """All known status values."""
        return (
            cls.PENDING,
            cls.RUNNING,
            cls.COMPLETE,
            cls.ERROR,
            cls.SKIPPED,
            cls.CANCELLED,
        )


class BrainEventType:
    """Event type constants using the ``scope:action`` naming convention."""

    # Brain lifecycle
    START = "brain:start"
    RESTART = "brain:restart"
    COMPLETE = "brain:complete"
    ERROR = "brain:error"
    CANCELLED = "brain:cancelled"

    # Step lifecycle
    STEP_START = "step:start"
    STEP_COMPLETE = "step:complete"
    STEP_RETRY = "step:retry"
    STEP_STATUS = "step:status"

    # Suspension
    WEBHOOK = "webhook"
    WEBHOOK_RESPONSE = "webhook:response"

    # Agent loop
    AGENT_START = "agent:start"
    AGENT_ITERATION = "agent:iteration"
    AGENT_TOOL_CALL = "agent:tool_call"
    AGENT_TOOL_RESULT = "agent:tool_result"
    AGENT_ASSISTANT_MESSAGE = "agent:assistant_message"
    AGENT_COMPLETE = "agent:complete"
    AGENT_TOKEN_LIMIT = "agent:token_limit"
    AGENT_ITERATION_LIMIT = "agent:iteration_limit"
    AGENT_WEBHOOK = "agent:webhook"

    @classmethod
    def is_agent_event(cls, event_type: str) -> bool:
        """Check if event type belongs to the agent loop."""
        return event_type.startswith("agent:")
