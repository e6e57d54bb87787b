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

"""brainrun execution state reconstruction.

Folds an ordered event sequence, live or replayed from storage, into a
snapshot of the run: a stack of frames (one per brain currently running
under the run id), per-step statuses, the running/waiting/complete flags
and the cumulative token count.

The fold is pure. It performs no I/O and shares no state between
instances, so any number of observers may fold the same log, and
folding it twice yields equal snapshots.

Nesting is decided structurally: ``brain:start`` and ``brain:restart``
carry the brain's depth. An event at a depth below the stack height
resumes the frame at that depth; an event at the stack height pushes a
new frame.
"""

import copy
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, assert_never

from .errors import InvalidEventError, SerializedError
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
    as_event,
)
from .patch import apply_patch
from .types import BrainEventType, JsonObject, Status
from .webhook import WebhookRegistration

logger = logging.getLogger(__name__)


class ExecutionState:
    """Execution state constants of the reconstruction machine."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @classmethod
    def is_terminal(cls, state: str) -> bool:
        """Check if no further events change the run."""
        return state in (cls.COMPLETE, cls.ERROR, cls.CANCELLED)


_ALL_EVENTS = frozenset(
    value
    for name, value in vars(BrainEventType).items()
    if name.isupper() and isinstance(value, str)
)

# Event types accepted in each execution state; others are ignored
TRANSITIONS: dict[str, frozenset[str]] = {
    ExecutionState.IDLE: frozenset({BrainEventType.START, BrainEventType.RESTART}),
    ExecutionState.RUNNING: _ALL_EVENTS,
    ExecutionState.PAUSED: frozenset(
        {
            BrainEventType.RESTART,
            BrainEventType.WEBHOOK_RESPONSE,
            BrainEventType.CANCELLED,
        }
    ),
    ExecutionState.COMPLETE: frozenset(),
    ExecutionState.ERROR: frozenset({BrainEventType.STEP_STATUS, BrainEventType.RESTART}),
    ExecutionState.CANCELLED: frozenset(),
}

_STATUS_BY_STATE = {
    ExecutionState.IDLE: Status.PENDING,
    ExecutionState.RUNNING: Status.RUNNING,
    ExecutionState.PAUSED: Status.RUNNING,
    ExecutionState.COMPLETE: Status.COMPLETE,
    ExecutionState.ERROR: Status.ERROR,
    ExecutionState.CANCELLED: Status.CANCELLED,
}


@dataclass
class StepInfo:
    """Reconstructed view of one step."""

    id: str
    title: str
    status: str
    patch: list[dict[str, Any]] | None = None
    inner_steps: list["StepInfo"] | None = None

    def record(self) -> dict[str, Any]:
        """Persistable ``{id, title, status}`` record."""
        return {"id": self.id, "title": self.title, "status": self.status}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result = self.record()
        if self.patch is not None:
            result["patch"] = self.patch
        if self.inner_steps is not None:
            result["innerSteps"] = [s.to_dict() for s in self.inner_steps]
        return result


@dataclass
class RunFrame:
    """One brain on the stack.

    ``state`` is this brain's own state: its initial (or resumed) state
    with the patches of its completed steps applied. ``cursor`` is the
    index of the step most recently started.
    """

    brain_run_id: str
    brain_title: str
    depth: int
    brain_description: str | None = None
    parent_step_id: str | None = None
    steps: list[StepInfo] = field(default_factory=list)
    cursor: int = 0
    state: JsonObject = field(default_factory=dict)

    def find_step(self, step_id: str) -> StepInfo | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def running_step(self) -> StepInfo | None:
        return next((s for s in self.steps if s.status == Status.RUNNING), None)

    def resume_index(self) -> int:
        """Index of the first step that is not done."""
        for index, step in enumerate(self.steps):
            if not Status.is_done(step.status):
                return index
        return len(self.steps)


@dataclass
class MachineSnapshot:
    """Immutable copy of the machine's observable state."""

    execution_state: str
    status: str
    depth: int
    brain_run_id: str | None
    stack: list[RunFrame]
    current_state: JsonObject
    current_step_id: str | None
    total_tokens: int
    top_level_step_count: int
    pending_webhooks: list[WebhookRegistration] | None
    error: SerializedError | None


class BrainStateMachine:
    """Reconstructs execution state from brain events.

    Usage:
        machine = BrainStateMachine()
        for event in events:
            machine.send(event)
        machine.is_complete, machine.current_state, machine.total_tokens
    """

    def __init__(self, initial_state: JsonObject | None = None, options: JsonObject | None = None):
        self.execution_state = ExecutionState.IDLE
        self.stack: list[RunFrame] = []
        self.brain_run_id: str | None = None
        self.current_step_id: str | None = None
        self.current_step_title: str | None = None
        self.error: SerializedError | None = None
        self.pending_webhooks: list[WebhookRegistration] | None = None
        # Cumulative agent tokens per step id, carried across suspensions
        self._step_tokens: dict[str, int] = {}
        self.top_level_step_count = 0
        self.options: JsonObject = dict(options or {})
        self.current_event: BrainEvent | None = None
        self._initial_state: JsonObject = copy.deepcopy(initial_state or {})
        # Frames dropped by a resume, keyed by (depth, parent_step_id)
        self._detached: dict[tuple[int, str | None], RunFrame] = {}

    # -- Derived state -------------------------------------------------------

    @property
    def depth(self) -> int:
        return len(self.stack)

    @property
    def total_tokens(self) -> int:
        """Tokens used by every agent step of the run, including earlier legs."""
        return sum(self._step_tokens.values())

    @property
    def status(self) -> str:
        return _STATUS_BY_STATE[self.execution_state]

    @property
    def is_running(self) -> bool:
        return self.execution_state == ExecutionState.RUNNING

    @property
    def is_waiting(self) -> bool:
        return self.execution_state == ExecutionState.PAUSED

    @property
    def is_complete(self) -> bool:
        return self.execution_state == ExecutionState.COMPLETE

    @property
    def is_error(self) -> bool:
        return self.execution_state == ExecutionState.ERROR

    @property
    def is_cancelled(self) -> bool:
        return self.execution_state == ExecutionState.CANCELLED

    @property
    def is_top_level(self) -> bool:
        return self.depth == 1

    @property
    def root(self) -> RunFrame | None:
        return self.stack[0] if self.stack else None

    @property
    def current_frame(self) -> RunFrame | None:
        return self.stack[-1] if self.stack else None

    @property
    def current_state(self) -> JsonObject:
        """State of the root brain."""
        if self.root is None:
            return self._initial_state
        return self.root.state

    def current_step(self) -> StepInfo | None:
        frame = self.current_frame
        if frame is None or self.current_step_id is None:
            return None
        return frame.find_step(self.current_step_id)

    # -- Folding -------------------------------------------------------------

    def send(self, event: BrainEvent | dict[str, Any]) -> None:
        """Fold one event into the machine.

        Events not accepted in the current execution state are ignored.

        Raises:
            InvalidEventError: On an unparseable event or an impossible depth
        """
        event = as_event(event)
        if event.type not in TRANSITIONS[self.execution_state]:
            logger.debug(
                "Ignoring %s in state %s for brain_run_id=%s",
                event.type,
                self.execution_state,
                event.brain_run_id,
            )
            return

        self.current_event = event
        match event:
            case BrainStartEvent() | BrainRestartEvent():
                self._start_brain(event)
            case BrainCompleteEvent():
                self._complete_brain(event)
            case BrainErrorEvent():
                self._error_brain(event)
            case BrainCancelledEvent():
                self.execution_state = ExecutionState.CANCELLED
            case StepStartEvent():
                self._start_step(event)
            case StepCompleteEvent():
                self._complete_step(event)
            case StepStatusEvent():
                self._step_status(event)
            case WebhookEvent():
                self.pending_webhooks = list(event.wait_for)
                self.execution_state = ExecutionState.PAUSED
            case WebhookResponseEvent():
                self.pending_webhooks = None
                self.execution_state = ExecutionState.RUNNING
            case AgentIterationEvent():
                self._step_tokens[event.step_id] = event.total_tokens
            case (
                StepRetryEvent()
                | AgentStartEvent()
                | AgentToolCallEvent()
                | AgentToolResultEvent()
                | AgentAssistantMessageEvent()
                | AgentCompleteEvent()
                | AgentTokenLimitEvent()
                | AgentIterationLimitEvent()
                | AgentWebhookEvent()
            ):
                pass
            case _:
                assert_never(event)

    def send_all(self, events: Iterable[BrainEvent | dict[str, Any]]) -> "BrainStateMachine":
        for event in events:
            self.send(event)
        return self

    def _start_brain(self, event: BrainStartEvent | BrainRestartEvent) -> None:
        if event.depth > len(self.stack):
            raise InvalidEventError(
                f"{event.type} at depth {event.depth} with only {len(self.stack)} active frames"
            )
        resuming = isinstance(event, BrainRestartEvent)

        previous: RunFrame | None = None
        if event.depth < len(self.stack):
            previous = self.stack[event.depth]
            for dropped in self.stack[event.depth + 1 :]:
                self._detached[(dropped.depth, dropped.parent_step_id)] = dropped
            del self.stack[event.depth :]
        elif resuming:
            previous = self._detached.pop((event.depth, event.parent_step_id), None)

        frame = RunFrame(
            brain_run_id=event.brain_run_id,
            brain_title=event.brain_title,
            brain_description=event.brain_description,
            depth=event.depth,
            parent_step_id=event.parent_step_id,
            state=copy.deepcopy(event.initial_state),
        )
        if resuming and previous is not None:
            frame.steps = previous.steps
            frame.cursor = previous.cursor
        self.stack.append(frame)

        if event.depth == 0:
            self.brain_run_id = self.brain_run_id or event.brain_run_id
            self.options = dict(event.options)
            self.error = None
        self.execution_state = ExecutionState.RUNNING
        logger.debug(
            "Frame %s: title=%s depth=%d",
            "resumed" if resuming else "started",
            event.brain_title,
            event.depth,
        )

    def _complete_brain(self, event: BrainCompleteEvent) -> None:
        if not self.stack:
            return
        if len(self.stack) == 1:
            self.execution_state = ExecutionState.COMPLETE
            return

        completed = self.stack.pop()
        parent = self.stack[-1]
        if completed.parent_step_id is not None:
            parent_step = parent.find_step(completed.parent_step_id)
            if parent_step is not None:
                parent_step.inner_steps = completed.steps

    def _error_brain(self, event: BrainErrorEvent) -> None:
        self.error = event.error
        if event.depth < len(self.stack):
            for dropped in self.stack[event.depth + 1 :]:
                running = dropped.running_step()
                if running is not None:
                    running.status = Status.ERROR
            del self.stack[event.depth + 1 :]
            running = self.stack[event.depth].running_step()
            if running is not None:
                running.status = Status.ERROR
        if event.depth == 0:
            self.execution_state = ExecutionState.ERROR

    def _start_step(self, event: StepStartEvent) -> None:
        frame = self.current_frame
        if frame is not None:
            step = frame.find_step(event.step_id)
            if step is None:
                frame.steps.append(
                    StepInfo(id=event.step_id, title=event.step_title, status=Status.RUNNING)
                )
            else:
                step.status = Status.RUNNING
            frame.cursor = event.step_index
        self.current_step_id = event.step_id
        self.current_step_title = event.step_title

    def _complete_step(self, event: StepCompleteEvent) -> None:
        frame = self.current_frame
        if frame is None:
            return
        status = Status.SKIPPED if event.skipped else Status.COMPLETE
        step = frame.find_step(event.step_id)
        if step is None:
            step = StepInfo(id=event.step_id, title=event.step_title, status=status)
            frame.steps.append(step)
        step.status = status
        step.patch = event.patch
        frame.state = apply_patch(frame.state, event.patch)
        if len(self.stack) == 1:
            self.top_level_step_count += 1

    def _step_status(self, event: StepStatusEvent) -> None:
        frame = self.current_frame
        if frame is None:
            return
        existing = {s.id: s for s in frame.steps}
        steps = []
        for item in event.steps:
            known = existing.get(item["id"])
            steps.append(
                StepInfo(
                    id=item["id"],
                    title=item["title"],
                    status=item["status"],
                    patch=known.patch if known else None,
                    inner_steps=known.inner_steps if known else None,
                )
            )
        frame.steps = steps

    # -- Queries -------------------------------------------------------------

    def get_completed_steps(self) -> list[StepInfo]:
        """Step tree of the run, nested frames attached to their parent steps.

        Returns copies; mutating them does not affect the machine.
        """
        if not self.stack:
            return []
        frames = copy.deepcopy(self.stack)
        for child, parent in zip(reversed(frames[1:]), reversed(frames[:-1])):
            if child.parent_step_id is None:
                continue
            parent_step = parent.find_step(child.parent_step_id)
            if parent_step is not None:
                parent_step.inner_steps = child.steps
        return frames[0].steps

    def snapshot(self) -> MachineSnapshot:
        """Copy of everything an observer can read."""
        return MachineSnapshot(
            execution_state=self.execution_state,
            status=self.status,
            depth=self.depth,
            brain_run_id=self.brain_run_id,
            stack=copy.deepcopy(self.stack),
            current_state=copy.deepcopy(self.current_state),
            current_step_id=self.current_step_id,
            total_tokens=self.total_tokens,
            top_level_step_count=self.top_level_step_count,
            pending_webhooks=list(self.pending_webhooks) if self.pending_webhooks else None,
            error=self.error,
        )


def create_machine(
    events: Iterable[BrainEvent | dict[str, Any]] | None = None,
    initial_state: JsonObject | None = None,
    options: JsonObject | None = None,
) -> BrainStateMachine:
    """Create a machine, optionally folding a log into it."""
    machine = BrainStateMachine(initial_state=initial_state, options=options)
    if events:
        machine.send_all(events)
    return machine
