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

"""brainrun host driver.

Pulls events out of the executor, folds them into a reconstruction
machine, fans them out to adapters (event stores, telemetry) and turns
the way the run ended into a :class:`RunResult`. A suspended run comes
back as a paused result carrying the resume context; the caller decides
whether and when to resume it.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import RuntimeConfig
from .blocks import Brain, RuntimeEnv
from .errors import ResumeContextError
from .events import BrainCancelledEvent, BrainEvent, StepCompleteEvent, as_event
from .executor import EventStream
from .pages import PageGenerator, PagesService
from .persistence import EventAdapter
from .resume import ResumeContext, resume_context_from_machine
from .state_machine import BrainStateMachine, create_machine
from .types import JsonObject, run_id
from .webhook import WebhookRegistration, match_webhook, validate_response

logger = logging.getLogger(__name__)


class RunStatus:
    """How a driven run ended."""

    COMPLETED = "completed"
    PAUSED = "paused"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Outcome of :meth:`BrainRunner.run` and the resume methods.

    Attributes:
        status: One of :class:`RunStatus`
        brain_run_id: Run identifier
        state: Root state when the run stopped
        events: Events produced by this invocation
        resume_context: Where to pick up again (paused runs only)
        wait_for: Webhooks the run is waiting for (webhook suspensions only)
        error: The exception that failed the run
        machine: Reconstruction machine holding the full snapshot
    """

    status: str
    brain_run_id: str
    state: JsonObject
    events: list[BrainEvent] = field(default_factory=list)
    resume_context: ResumeContext | None = None
    wait_for: list[WebhookRegistration] = field(default_factory=list)
    error: Exception | None = None
    machine: BrainStateMachine | None = None

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def paused(self) -> bool:
        return self.status == RunStatus.PAUSED

    def raise_for_error(self) -> None:
        """Re-raise the exception of a failed run."""
        if self.error is not None:
            raise self.error


class BrainRunner:
    """Runs brains on behalf of a host.

    Usage:
        runner = BrainRunner(client, adapters=[EventStoreAdapter(store)])
        result = runner.run(brain, initial_state={"count": 0})
        if result.paused:
            ...
            result = runner.resume_from_events(
                brain, store.get_events(result.brain_run_id),
                webhook_response=payload, slug="ui-form", identifier=ident,
            )
    """

    def __init__(
        self,
        client: Any = None,
        *,
        adapters: Iterable[EventAdapter] = (),
        resources: Any = None,
        pages: PagesService | None = None,
        page_generator: PageGenerator | None = None,
        env: RuntimeEnv | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.client = client
        self.adapters: list[EventAdapter] = list(adapters)
        self.resources = resources
        self.pages = pages
        self.page_generator = page_generator
        self.env = env
        self.config = config or RuntimeConfig()

    def add_adapter(self, adapter: EventAdapter) -> None:
        """Receive every event of subsequent runs."""
        self.adapters.append(adapter)

    def _start(
        self,
        brain: Brain,
        *,
        brain_run_id: str,
        initial_state: JsonObject | None = None,
        options: JsonObject | None = None,
        resume: ResumeContext | None = None,
    ) -> EventStream:
        return brain.run(
            client=self.client,
            initial_state=initial_state,
            options=options,
            brain_run_id=brain_run_id,
            resume=resume,
            resources=self.resources,
            pages=self.pages,
            page_generator=self.page_generator,
            env=self.env,
            config=self.config,
        )

    def run(
        self,
        brain: Brain,
        *,
        initial_state: JsonObject | None = None,
        options: JsonObject | None = None,
        brain_run_id: str | None = None,
        end_after: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> RunResult:
        """Run a brain from its first step.

        Args:
            brain: Workflow to run
            initial_state: State before the first step
            options: Run options passed to every step
            brain_run_id: Run identifier (generated when omitted)
            end_after: Pause after this many top-level steps complete
            should_cancel: Polled before every event; True cancels the run
        """
        brain_run_id = brain_run_id or run_id()
        events = self._start(
            brain, brain_run_id=brain_run_id, initial_state=initial_state, options=options
        )
        machine = create_machine(initial_state=initial_state, options=options)
        return self._drive(brain, events, machine, brain_run_id, (), end_after, should_cancel)

    def resume(
        self,
        brain: Brain,
        resume_context: ResumeContext,
        *,
        brain_run_id: str,
        webhook_response: Any = None,
        slug: str | None = None,
        identifier: str = "",
        token: str | None = None,
        wait_for: Sequence[WebhookRegistration] = (),
        options: JsonObject | None = None,
        end_after: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> RunResult:
        """Resume a paused run from a stored resume context.

        When ``slug`` is given the response is matched against
        ``wait_for`` and validated before the run continues.

        Raises:
            WebhookMismatchError: If no registration matches ``(slug, identifier)``
            WebhookValidationError: If the response fails validation
        """
        if slug is not None:
            registration = match_webhook(wait_for, slug, identifier)
            validate_response(registration, webhook_response, token)
        context = resume_context
        if webhook_response is not None:
            context = resume_context.with_webhook_response(webhook_response)

        events = self._start(brain, brain_run_id=brain_run_id, options=options, resume=context)
        machine = create_machine(options=options)
        return self._drive(brain, events, machine, brain_run_id, (), end_after, should_cancel)

    def resume_from_events(
        self,
        brain: Brain,
        events: Iterable[BrainEvent | dict[str, Any]],
        *,
        webhook_response: Any = None,
        slug: str | None = None,
        identifier: str = "",
        token: str | None = None,
        end_after: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> RunResult:
        """Resume a run from its persisted event log.

        The log is replayed into a machine, the response is checked
        against the run's pending webhooks, and execution continues from
        the reconstructed resume context.

        Raises:
            ResumeContextError: If the log holds no run or a finished one
            WebhookMismatchError: If no pending registration matches
            WebhookValidationError: If the response fails validation
        """
        history = [as_event(e) for e in events]
        machine = create_machine(events=history)
        if machine.brain_run_id is None:
            raise ResumeContextError("the event log holds no run")
        if slug is not None:
            registration = match_webhook(machine.pending_webhooks or [], slug, identifier)
            validate_response(registration, webhook_response, token)

        context = resume_context_from_machine(machine, history, webhook_response)
        logger.info(
            "Resuming from events: brain_run_id=%s step_index=%d events=%d",
            machine.brain_run_id,
            context.step_index,
            len(history),
        )
        stream = self._start(
            brain,
            brain_run_id=machine.brain_run_id,
            options=machine.options,
            resume=context,
        )
        return self._drive(
            brain, stream, machine, machine.brain_run_id, history, end_after, should_cancel
        )

    def _drive(
        self,
        brain: Brain,
        stream: EventStream,
        machine: BrainStateMachine,
        brain_run_id: str,
        history: Sequence[BrainEvent],
        end_after: int | None,
        should_cancel: Callable[[], bool] | None,
    ) -> RunResult:
        produced: list[BrainEvent] = []
        completed_steps = 0

        def record(event: BrainEvent) -> None:
            produced.append(event)
            machine.send(event)
            for adapter in self.adapters:
                adapter.dispatch(event)

        def result(status: str, **kwargs: Any) -> RunResult:
            return RunResult(
                status=status,
                brain_run_id=brain_run_id,
                state=machine.current_state,
                events=produced,
                machine=machine,
                **kwargs,
            )

        def paused_context() -> ResumeContext:
            return resume_context_from_machine(machine, [*history, *produced])

        while True:
            if should_cancel is not None and should_cancel():
                stream.close()
                record(
                    BrainCancelledEvent(
                        brain_run_id=brain_run_id,
                        options=machine.options,
                        brain_title=brain.title,
                        brain_description=brain.description,
                    )
                )
                logger.info("Run cancelled: brain_run_id=%s", brain_run_id)
                return result(RunStatus.CANCELLED)

            try:
                event = next(stream)
            except StopIteration as stop:
                outcome = stop.value
                break
            except Exception as error:
                logger.error("Run failed: brain_run_id=%s error=%s", brain_run_id, error)
                return result(RunStatus.ERROR, error=error)

            record(event)

            if (
                end_after is not None
                and isinstance(event, StepCompleteEvent)
                and machine.is_top_level
            ):
                completed_steps += 1
                if completed_steps >= end_after:
                    stream.close()
                    logger.info(
                        "Run paused after %d steps: brain_run_id=%s", completed_steps, brain_run_id
                    )
                    return result(RunStatus.PAUSED, resume_context=paused_context())

        if outcome.suspended:
            return result(
                RunStatus.PAUSED,
                resume_context=paused_context(),
                wait_for=list(outcome.wait_for),
            )
        return result(RunStatus.COMPLETED)
