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

"""Resume contexts.

A resume context says where a suspended run picks up: the step index
and state of each brain level, forming a tree for nested brains. The
deepest level may carry an agent resume context and the webhook
response that ended the suspension.
"""

import copy
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from .agent import AgentResumeContext, reconstruct_agent_context
from .errors import ResumeContextError
from .events import BrainEvent, as_event
from .patch import apply_patches
from .state_machine import BrainStateMachine, create_machine
from .types import JsonObject, Status


@dataclass
class ResumeContext:
    """Where one brain level resumes.

    Attributes:
        step_index: First step to execute (earlier steps are done)
        state: State of this brain level at that point
        steps: Persisted step records (``id``, ``title``, ``status``)
        inner: Resume context of a nested brain suspended at ``step_index``
        agent_context: Suspended agent at ``step_index`` (deepest level only)
        webhook_response: Response that ended the suspension (deepest level only)
    """

    step_index: int
    state: JsonObject
    steps: list[dict[str, Any]] = field(default_factory=list)
    inner: "ResumeContext | None" = None
    agent_context: AgentResumeContext | None = None
    webhook_response: Any = None

    def deepest(self) -> "ResumeContext":
        """The innermost level of the tree."""
        context = self
        while context.inner is not None:
            context = context.inner
        return context

    def with_webhook_response(self, response: Any) -> "ResumeContext":
        """Copy of the tree with ``response`` attached at the deepest level."""
        if self.inner is None:
            return replace(self, webhook_response=response)
        return replace(self, inner=self.inner.with_webhook_response(response))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "stepIndex": self.step_index,
            "state": self.state,
            "steps": self.steps,
        }
        if self.inner is not None:
            result["inner"] = self.inner.to_dict()
        if self.agent_context is not None:
            result["agentContext"] = self.agent_context.to_dict()
        if self.webhook_response is not None:
            result["webhookResponse"] = self.webhook_response
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResumeContext":
        """Create from a dictionary."""
        inner = data.get("inner")
        agent = data.get("agentContext")
        return cls(
            step_index=data["stepIndex"],
            state=data.get("state", {}),
            steps=list(data.get("steps", [])),
            inner=cls.from_dict(inner) if inner else None,
            agent_context=AgentResumeContext.from_dict(agent) if agent else None,
            webhook_response=data.get("webhookResponse"),
        )


def resume_context_from_steps(
    steps: Sequence[dict[str, Any]],
    initial_state: JsonObject,
    webhook_response: Any = None,
) -> ResumeContext:
    """Build a single-level context from persisted step records.

    Each record is ``{id, title, status, patch}``. The state is the
    initial state with the patches of all done steps applied, and the
    step index is the first step that is not done.
    """
    done = 0
    patches = []
    for record in steps:
        if not Status.is_done(record.get("status", "")):
            break
        done += 1
        patches.append(record.get("patch") or [])
    return ResumeContext(
        step_index=done,
        state=apply_patches(initial_state, patches),
        steps=[{k: v for k, v in r.items() if k != "patch"} for r in steps],
        webhook_response=webhook_response,
    )


def resume_context_from_machine(
    machine: BrainStateMachine,
    events: Iterable[BrainEvent | dict[str, Any]] = (),
    webhook_response: Any = None,
) -> ResumeContext:
    """Build the resume tree from a reconstruction machine's frame stack.

    Args:
        machine: Machine that has folded the run's events
        events: The same events, used to recover a suspended agent
        webhook_response: Response to attach at the deepest level

    Raises:
        ResumeContextError: If the run has no frames or already finished
    """
    if not machine.stack:
        raise ResumeContextError("no brain has started")
    if machine.is_complete:
        raise ResumeContextError("the run is already complete")

    context: ResumeContext | None = None
    for depth in range(len(machine.stack) - 1, -1, -1):
        frame = machine.stack[depth]
        index = frame.resume_index()
        agent_context = None
        if context is None and index < len(frame.steps):
            step = frame.steps[index]
            if step.status == Status.RUNNING:
                agent_context = reconstruct_agent_context(events, step_id=step.id)
        context = ResumeContext(
            step_index=index,
            state=copy.deepcopy(frame.state),
            steps=[s.record() for s in frame.steps],
            inner=context,
            agent_context=agent_context,
        )
    assert context is not None
    if webhook_response is not None:
        context = context.with_webhook_response(webhook_response)
    return context


def resume_context_from_events(
    events: Iterable[BrainEvent | dict[str, Any]], webhook_response: Any = None
) -> ResumeContext:
    """Replay a persisted log and build the resume tree from it."""
    parsed = [as_event(e) for e in events]
    machine = create_machine(events=parsed)
    return resume_context_from_machine(machine, parsed, webhook_response)
