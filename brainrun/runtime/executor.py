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

"""brainrun step executor.

Drives a brain block by block and yields its lifecycle events in order.
The executor is a generator: callers pull events with ``next()`` (or
``yield from`` for nested brains) and receive an
:class:`ExecutionOutcome` as the generator's return value.

A run ends in one of three ways:

- completion: the last event is ``brain:complete``
- suspension: the last event is ``webhook``; the outcome carries the
  registrations the run is waiting for
- failure: ``brain:error`` is yielded and the exception propagates
"""

import copy
import logging
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from typing import Any, assert_never

from ..config import RuntimeConfig
from .agent import AgentLoop
from .blocks import (
    AgentBlock,
    Brain,
    BrainBlock,
    ConditionalBlock,
    RuntimeEnv,
    StepBlock,
    StepContext,
    StepResult,
    UIBlock,
)
from .client import require_object_generation
from .errors import MissingCollaboratorError, ResumeContextError, SerializedError
from .events import (
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
from .pages import UI_FORM_SLUG, GeneratedPage, PageGenerator, PagesService, form_action_url
from .patch import JsonPatch, apply_patches, create_patch
from .resume import ResumeContext
from .step import Branch, Step, build_steps, restore_steps
from .tools import default_tools, merge_tools
from .types import JsonObject, Status, generate_id, run_id
from .webhook import WebhookRegistration, normalize_wait_for

logger = logging.getLogger(__name__)

EventStream = Generator[BrainEvent, None, "ExecutionOutcome"]
StepOutcome = Generator[BrainEvent, None, "ExecutionOutcome | None"]


class ExecutionStatus:
    """How an executor run ended."""

    COMPLETE = "complete"
    SUSPENDED = "suspended"


@dataclass
class ExecutionOutcome:
    """Return value of :meth:`BrainExecutor.run`."""

    status: str
    state: JsonObject
    wait_for: list[WebhookRegistration] = field(default_factory=list)

    @property
    def suspended(self) -> bool:
        return self.status == ExecutionStatus.SUSPENDED


class BrainExecutor:
    """Executes one brain, yielding events.

    Nested brains run in their own executor at ``depth + 1`` under the
    same run id; their events are forwarded unchanged.

    Usage:
        executor = BrainExecutor(brain, client=client, initial_state={})
        events = executor.run()
        for event in events:
            store.append(event)
    """

    def __init__(
        self,
        brain: Brain,
        *,
        client: Any = None,
        initial_state: JsonObject | None = None,
        options: JsonObject | None = None,
        brain_run_id: str | None = None,
        resume: ResumeContext | None = None,
        resources: Any = None,
        pages: PagesService | None = None,
        page_generator: PageGenerator | None = None,
        env: RuntimeEnv | None = None,
        config: RuntimeConfig | None = None,
        depth: int = 0,
        parent_step_id: str | None = None,
    ):
        self.brain = brain
        self.client = client
        self.options: JsonObject = dict(options or {})
        self.brain_run_id = brain_run_id or run_id()
        self.resume = resume
        self.resources = resources
        self.pages = pages
        self.page_generator = page_generator
        self.config = config or RuntimeConfig()
        self.env = env or RuntimeEnv(origin=self.config.origin)
        self.depth = depth
        self.parent_step_id = parent_step_id

        self.steps: list[Step] = build_steps(brain.blocks)
        self.patches: list[JsonPatch] = []
        self.current_index = 0
        self._response: Any = None
        self._page: GeneratedPage | None = None

        if resume is None:
            self.initial_state = copy.deepcopy(initial_state or {})
        else:
            restore_steps(self.steps, resume.step_index, resume.steps)
            self._check_resume(resume)
            self.initial_state = copy.deepcopy(resume.state)
            self.current_index = resume.step_index
            if resume.agent_context is None:
                self._response = resume.webhook_response
        self.state: JsonObject = copy.deepcopy(self.initial_state)

    def _check_resume(self, resume: ResumeContext) -> None:
        if resume.inner is None and resume.agent_context is None:
            return
        if resume.inner is not None and resume.agent_context is not None:
            raise ResumeContextError("a level cannot resume both a nested brain and an agent")
        if resume.step_index >= len(self.steps):
            raise ResumeContextError(
                f"no step at index {resume.step_index} of '{self.brain.title}'"
            )
        step = self.steps[resume.step_index]
        if resume.inner is not None and not isinstance(step.block, BrainBlock):
            raise ResumeContextError(f"step '{step.title}' is not a nested brain")
        if resume.agent_context is not None:
            if not isinstance(step.block, AgentBlock):
                raise ResumeContextError(f"step '{step.title}' is not an agent step")
            if resume.agent_context.step_id:
                step.id = resume.agent_context.step_id

    # -- Event helpers -------------------------------------------------------

    def _common(self) -> dict[str, Any]:
        return {"brain_run_id": self.brain_run_id, "options": self.options}

    def _start_event(self) -> BrainStartEvent | BrainRestartEvent:
        event_class = BrainRestartEvent if self.resume is not None else BrainStartEvent
        return event_class(
            **self._common(),
            brain_title=self.brain.title,
            brain_description=self.brain.description,
            initial_state=copy.deepcopy(self.state),
            depth=self.depth,
            parent_step_id=self.parent_step_id,
        )

    def _status_event(self) -> StepStatusEvent:
        return StepStatusEvent(**self._common(), steps=[s.status_dict() for s in self.steps])

    def _start_step(self, step: Step, index: int) -> Generator[BrainEvent, None, None]:
        logger.debug("Step started: title=%s step_id=%s index=%d", step.title, step.id, index)
        yield StepStartEvent(
            **self._common(), step_title=step.title, step_id=step.id, step_index=index
        )
        step.with_status(Status.RUNNING)
        yield self._status_event()

    def _complete(self, step: Step, new_state: JsonObject) -> Generator[BrainEvent, None, None]:
        patch = create_patch(self.state, new_state)
        self.state = copy.deepcopy(new_state)
        self.patches.append(patch)
        step.with_patch(patch).with_status(Status.COMPLETE)
        logger.debug("Step complete: title=%s ops=%d", step.title, len(patch))
        yield StepCompleteEvent(
            **self._common(), step_title=step.title, step_id=step.id, patch=patch
        )

    def _skip(self, step: Step) -> Generator[BrainEvent, None, None]:
        self.patches.append([])
        step.with_patch([]).with_status(Status.SKIPPED)
        logger.debug("Step skipped: title=%s", step.title)
        yield StepCompleteEvent(
            **self._common(), step_title=step.title, step_id=step.id, patch=[], skipped=True
        )

    def _suspend(self, wait_for: list[WebhookRegistration]) -> EventStream:
        yield self._status_event()
        yield WebhookEvent(**self._common(), wait_for=wait_for)
        logger.info(
            "Run suspended: brain_run_id=%s depth=%d webhooks=%s",
            self.brain_run_id,
            self.depth,
            ", ".join(f"{r.slug}/{r.identifier}" for r in wait_for),
        )
        return ExecutionOutcome(ExecutionStatus.SUSPENDED, self.state, wait_for)

    def _context(self, step: Step) -> StepContext:
        return StepContext(
            state=copy.deepcopy(self.state),
            options=self.options,
            client=self.client,
            resources=self.resources,
            response=self._response,
            page=self._page,
            pages=self.pages,
            env=self.env,
            services=self.brain.services,
            brain_run_id=self.brain_run_id,
            step_id=step.id,
        )

    # -- Main loop -----------------------------------------------------------

    def run(self) -> EventStream:
        """Execute the brain, yielding every event."""
        logger.info(
            "Brain %s: title=%s brain_run_id=%s depth=%d",
            "restarted" if self.resume is not None else "started",
            self.brain.title,
            self.brain_run_id,
            self.depth,
        )
        try:
            yield self._start_event()
            yield self._status_event()

            if self.depth == 0 and self.resume is not None:
                deepest = self.resume.deepest()
                if deepest.webhook_response is not None and deepest.agent_context is None:
                    yield WebhookResponseEvent(**self._common(), response=deepest.webhook_response)

            while self.current_index < len(self.steps):
                step = self.steps[self.current_index]
                if Status.is_done(step.status):
                    self.current_index += 1
                    continue

                if step.branch is not None:
                    outcome = yield from self._run_conditional(step)
                else:
                    yield from self._start_step(step, self.current_index)
                    outcome = yield from self._execute(step)
                if outcome is not None:
                    return outcome

                yield self._status_event()
                self.current_index += 1
        except Exception as error:
            for running in self.steps:
                if running.status == Status.RUNNING:
                    running.with_status(Status.ERROR)
            logger.warning(
                "Brain failed: title=%s brain_run_id=%s depth=%d error=%s",
                self.brain.title,
                self.brain_run_id,
                self.depth,
                error,
            )
            yield BrainErrorEvent(
                **self._common(),
                brain_title=self.brain.title,
                brain_description=self.brain.description,
                error=SerializedError.from_exception(error),
                depth=self.depth,
            )
            yield self._status_event()
            raise

        yield BrainCompleteEvent(
            **self._common(),
            brain_title=self.brain.title,
            brain_description=self.brain.description,
            depth=self.depth,
        )
        logger.info(
            "Brain complete: title=%s brain_run_id=%s depth=%d",
            self.brain.title,
            self.brain_run_id,
            self.depth,
        )
        return ExecutionOutcome(ExecutionStatus.COMPLETE, self.state)

    def _execute(self, step: Step) -> StepOutcome:
        block = step.block
        match block:
            case StepBlock():
                return (yield from self._run_step(step, block))
            case BrainBlock():
                return (yield from self._run_nested(step, block))
            case AgentBlock():
                return (yield from self._run_agent(step, block))
            case UIBlock():
                yield from self._run_ui(step, block)
                return None
            case ConditionalBlock():
                return (yield from self._run_conditional(step))
            case _:
                assert_never(block)

    # -- Retry ---------------------------------------------------------------

    def _call_with_retry(
        self, step: Step, call: Callable[[], Any]
    ) -> Generator[BrainEvent, None, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except Exception as error:
                if attempt > self.config.max_retries:
                    raise
                logger.warning(
                    "Step failed, retrying: title=%s attempt=%d error=%s",
                    step.title,
                    attempt,
                    error,
                )
                yield StepRetryEvent(
                    **self._common(),
                    step_title=step.title,
                    step_id=step.id,
                    error=SerializedError.from_exception(error),
                    attempt=attempt,
                )
                if self.config.retry_delay > 0:
                    time.sleep(self.config.retry_delay)

    # -- Block variants ------------------------------------------------------

    def _run_action(
        self, step: Step, block: StepBlock
    ) -> Generator[BrainEvent, None, list[WebhookRegistration]]:
        """Run a step action with retry and complete the step.

        Returns the registrations the action asked to wait for.
        """
        result = yield from self._call_with_retry(step, lambda: block.action(self._context(step)))
        if isinstance(result, StepResult):
            new_state, wait_for, response = result.state, result.wait_for, result.response
        else:
            new_state, wait_for, response = result, None, None
        yield from self._complete(step, new_state)
        self._response = response
        self._page = None
        return normalize_wait_for(wait_for)

    def _run_step(self, step: Step, block: StepBlock) -> StepOutcome:
        wait_for = yield from self._run_action(step, block)
        if wait_for:
            return (yield from self._suspend(wait_for))
        return None

    def _run_conditional(self, step: Step) -> StepOutcome:
        block = step.block
        assert isinstance(block, ConditionalBlock)
        index = self.current_index
        sibling_index = index + 1 if step.branch == Branch.THEN else index - 1
        sibling = self.steps[sibling_index]

        # The other branch already ran in an earlier invocation
        if Status.is_done(sibling.status):
            yield from self._skip(step)
            return None

        chosen_branch = Branch.THEN if block.predicate(copy.deepcopy(self.state)) else Branch.ELSE
        if chosen_branch == step.branch:
            chosen, chosen_index, unchosen = step, index, sibling
        else:
            chosen, chosen_index, unchosen = sibling, sibling_index, step
        logger.debug("Conditional: chose %s (%s)", chosen.title, chosen_branch)

        yield from self._start_step(chosen, chosen_index)
        wait_for = yield from self._run_action(chosen, chosen.branch_block)
        yield from self._skip(unchosen)
        if wait_for:
            return (yield from self._suspend(wait_for))
        return None

    def _run_nested(self, step: Step, block: BrainBlock) -> StepOutcome:
        inner_resume = None
        if self.resume is not None and self.current_index == self.resume.step_index:
            inner_resume = self.resume.inner

        executor = BrainExecutor(
            block.inner_brain,
            client=self.client,
            initial_state=block.initial_state_for(copy.deepcopy(self.state)),
            options=self.options,
            brain_run_id=self.brain_run_id,
            resume=inner_resume,
            resources=self.resources,
            pages=self.pages,
            page_generator=self.page_generator,
            env=self.env,
            config=self.config,
            depth=self.depth + 1,
            parent_step_id=step.id,
        )
        outcome = yield from executor.run()
        if outcome.suspended:
            return outcome

        inner_state = apply_patches(executor.initial_state, executor.patches)
        new_state = block.action(copy.deepcopy(self.state), inner_state, self.brain.services)
        yield from self._complete(step, new_state)
        self._response = None
        self._page = None
        return None

    def _run_agent(self, step: Step, block: AgentBlock) -> StepOutcome:
        ctx = self._context(step)
        ctx.tools = {**default_tools(), **self.brain.default_tools}
        agent_config = block.config_fn(ctx)

        agent_resume = None
        webhook_response = None
        if (
            self.resume is not None
            and self.current_index == self.resume.step_index
            and self.resume.agent_context is not None
        ):
            agent_resume = self.resume.agent_context
            webhook_response = self.resume.webhook_response

        self._response = None
        self._page = None

        loop = AgentLoop(
            step_title=step.title,
            step_id=step.id,
            config=agent_config,
            tools=merge_tools(ctx.tools, agent_config.tools, agent_config.output_schema),
            ctx=ctx,
            runtime=self.config,
            resume=agent_resume,
            webhook_response=webhook_response,
        )
        outcome = yield from loop.run()
        if outcome.suspended:
            logger.info(
                "Run suspended by agent: title=%s brain_run_id=%s",
                step.title,
                self.brain_run_id,
            )
            return ExecutionOutcome(ExecutionStatus.SUSPENDED, self.state, outcome.wait_for)

        yield from self._complete(step, outcome.state)
        return None

    def _run_ui(self, step: Step, block: UIBlock) -> Generator[BrainEvent, None, None]:
        if self.page_generator is None:
            raise MissingCollaboratorError(step.title, "a page generator")
        if self.pages is None:
            raise MissingCollaboratorError(step.title, "a pages service")
        client = require_object_generation(self.client)

        prompt = block.template(copy.deepcopy(self.state), self.resources)
        identifier = f"{self.brain_run_id}-{step.id}"
        token = generate_id()
        html = self.page_generator.generate(
            client=client,
            prompt=prompt,
            title=step.title,
            data=copy.deepcopy(self.state),
            response_schema=block.response_schema,
            form_action=form_action_url(self.env.origin, identifier),
            form_token=token,
        )
        page = self.pages.create(html)
        logger.info("Page generated: title=%s url=%s", step.title, page.url)

        yield from self._complete(step, self.state)
        self._response = None
        webhook = None
        if block.response_schema is not None:
            webhook = WebhookRegistration(
                slug=UI_FORM_SLUG,
                identifier=identifier,
                validation_schema=block.response_schema,
                token=token,
            )
        self._page = GeneratedPage(url=page.url, webhook=webhook)
