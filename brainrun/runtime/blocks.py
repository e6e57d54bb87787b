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

"""brainrun workflow definitions.

A brain is an ordered, immutable list of blocks. Each block variant
describes one node of the workflow:

- ``StepBlock``: an action over the current state
- ``BrainBlock``: a nested brain plus a reducer merging its final state
- ``AgentBlock``: a closure producing an :class:`~brainrun.runtime.agent.AgentConfig`
- ``ConditionalBlock``: a predicate choosing between two step blocks
- ``UIBlock``: a template from which a form page is generated

Brains are built fluently; every builder call returns a new brain::

    brain = (
        Brain("triage")
        .step("Init", lambda ctx: {"important": True})
        .conditional(
            lambda state: state["important"],
            then=("Notify", lambda ctx: {**ctx.state, "notified": True}),
            otherwise=("Skip", lambda ctx: {**ctx.state, "notified": False}),
        )
    )
"""

from collections.abc import Callable, Generator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Union

from .types import JsonObject
from .webhook import WebhookRegistration

if TYPE_CHECKING:
    from ..config import RuntimeConfig
    from .agent import AgentConfig
    from .events import BrainEvent
    from .executor import ExecutionOutcome
    from .pages import GeneratedPage, PageGenerator, PagesService
    from .resume import ResumeContext
    from .tools import AgentTool


class BlockType:
    """Block variant constants."""

    STEP = "step"
    BRAIN = "brain"
    AGENT = "agent"
    CONDITIONAL = "conditional"
    UI = "ui"


@dataclass(frozen=True)
class RuntimeEnv:
    """Host environment visible to steps."""

    origin: str = "http://localhost:3000"
    secrets: Mapping[str, str] = field(default_factory=dict)


@dataclass
class StepContext:
    """Everything a step action, agent config closure or tool receives.

    Attributes:
        state: Current state document (treat as read-only)
        options: Run options
        client: LLM client
        resources: Read-only resources passed through from the host
        response: Webhook or prompt response handed to this step
        page: Page generated by an immediately preceding UI step
        pages: Pages service
        env: Host environment
        services: Services registered with :meth:`Brain.with_services`
        tools: Default tools of the brain (agent closures only)
        brain_run_id: Run identifier
        step_id: Identifier of the step being executed
    """

    state: JsonObject
    options: JsonObject = field(default_factory=dict)
    client: Any = None
    resources: Any = None
    response: Any = None
    page: "GeneratedPage | None" = None
    pages: "PagesService | None" = None
    env: RuntimeEnv = field(default_factory=RuntimeEnv)
    services: Mapping[str, Any] = field(default_factory=dict)
    tools: Mapping[str, "AgentTool"] = field(default_factory=dict)
    brain_run_id: str = ""
    step_id: str = ""


@dataclass
class StepResult:
    """Richer return value of a step action.

    Attributes:
        state: The new state document
        wait_for: Registration(s) to suspend on after the step completes
        response: Value handed to the next step as ``ctx.response``
    """

    state: JsonObject
    wait_for: WebhookRegistration | list[WebhookRegistration] | None = None
    response: Any = None


StepAction = Callable[[StepContext], Union[JsonObject, StepResult]]
Reducer = Callable[[JsonObject, JsonObject, Mapping[str, Any]], JsonObject]


@dataclass(frozen=True)
class StepBlock:
    """A plain action over the current state."""

    title: str
    action: StepAction
    type: str = field(default=BlockType.STEP, init=False)


@dataclass(frozen=True)
class BrainBlock:
    """A nested brain.

    ``initial_state`` is either a document or a function of the outer
    state. ``action`` reduces ``(outer_state, inner_final_state, services)``
    to the new outer state.
    """

    title: str
    inner_brain: "Brain"
    action: Reducer
    initial_state: JsonObject | Callable[[JsonObject], JsonObject] | None = None
    type: str = field(default=BlockType.BRAIN, init=False)

    def initial_state_for(self, outer_state: JsonObject) -> JsonObject:
        """Map the outer state to the nested brain's initial state."""
        if callable(self.initial_state):
            return self.initial_state(outer_state)
        return dict(self.initial_state or {})


@dataclass(frozen=True)
class AgentBlock:
    """A bounded tool-calling loop configured per run."""

    title: str
    config_fn: Callable[[StepContext], "AgentConfig"]
    type: str = field(default=BlockType.AGENT, init=False)


@dataclass(frozen=True)
class ConditionalBlock:
    """Two alternative step blocks selected by a predicate on state.

    Occupies two consecutive positions in the step list: the then-branch
    followed by the else-branch.
    """

    predicate: Callable[[JsonObject], bool]
    then_block: StepBlock
    else_block: StepBlock
    type: str = field(default=BlockType.CONDITIONAL, init=False)

    @property
    def title(self) -> str:
        return f"{self.then_block.title} / {self.else_block.title}"


@dataclass(frozen=True)
class UIBlock:
    """Generates a form page from a prompt template.

    ``template`` maps ``(state, resources)`` to the prompt handed to the
    page generator. ``response_schema`` describes the expected form data.
    """

    title: str
    template: Callable[[JsonObject, Any], str]
    response_schema: JsonObject | None = None
    type: str = field(default=BlockType.UI, init=False)


Block = StepBlock | BrainBlock | AgentBlock | ConditionalBlock | UIBlock


@dataclass(frozen=True)
class Brain:
    """An immutable workflow definition."""

    title: str
    description: str | None = None
    blocks: tuple[Block, ...] = ()
    default_tools: Mapping[str, "AgentTool"] = field(default_factory=dict)
    services: Mapping[str, Any] = field(default_factory=dict)

    def _with_block(self, block: Block) -> "Brain":
        return replace(self, blocks=self.blocks + (block,))

    def step(self, title: str, action: StepAction) -> "Brain":
        """Append a step block."""
        return self._with_block(StepBlock(title=title, action=action))

    def brain(
        self,
        title: str,
        inner_brain: "Brain",
        action: Reducer,
        initial_state: JsonObject | Callable[[JsonObject], JsonObject] | None = None,
    ) -> "Brain":
        """Append a nested brain block."""
        return self._with_block(
            BrainBlock(
                title=title,
                inner_brain=inner_brain,
                action=action,
                initial_state=initial_state,
            )
        )

    def agent(self, title: str, config_fn: Callable[[StepContext], "AgentConfig"]) -> "Brain":
        """Append an agent block."""
        return self._with_block(AgentBlock(title=title, config_fn=config_fn))

    def conditional(
        self,
        predicate: Callable[[JsonObject], bool],
        then: tuple[str, StepAction],
        otherwise: tuple[str, StepAction],
    ) -> "Brain":
        """Append a conditional block.

        Args:
            predicate: Function of the current state
            then: ``(title, action)`` run when the predicate holds
            otherwise: ``(title, action)`` run when it does not
        """
        return self._with_block(
            ConditionalBlock(
                predicate=predicate,
                then_block=StepBlock(title=then[0], action=then[1]),
                else_block=StepBlock(title=otherwise[0], action=otherwise[1]),
            )
        )

    def ui(
        self,
        title: str,
        template: Callable[[JsonObject, Any], str],
        response_schema: JsonObject | None = None,
    ) -> "Brain":
        """Append a UI block."""
        return self._with_block(
            UIBlock(title=title, template=template, response_schema=response_schema)
        )

    def with_tools(self, tools: Mapping[str, "AgentTool"]) -> "Brain":
        """Add default tools available to every agent step."""
        return replace(self, default_tools={**self.default_tools, **tools})

    def with_services(self, services: Mapping[str, Any]) -> "Brain":
        """Add services passed to every step as ``ctx.services``."""
        return replace(self, services={**self.services, **services})

    def structure(self) -> dict[str, Any]:
        """Describe the workflow as a nested title/type tree."""
        steps: list[dict[str, Any]] = []
        for block in self.blocks:
            if isinstance(block, ConditionalBlock):
                steps.append({"type": BlockType.STEP, "title": block.then_block.title})
                steps.append({"type": BlockType.STEP, "title": block.else_block.title})
            elif isinstance(block, BrainBlock):
                steps.append(
                    {
                        "type": BlockType.BRAIN,
                        "title": block.title,
                        "innerBrain": block.inner_brain.structure(),
                    }
                )
            else:
                steps.append({"type": block.type, "title": block.title})
        result: dict[str, Any] = {"title": self.title, "steps": steps}
        if self.description:
            result["description"] = self.description
        return result

    def run(
        self,
        *,
        client: Any = None,
        initial_state: JsonObject | None = None,
        options: JsonObject | None = None,
        brain_run_id: str | None = None,
        resume: "ResumeContext | None" = None,
        resources: Any = None,
        pages: "PagesService | None" = None,
        page_generator: "PageGenerator | None" = None,
        env: RuntimeEnv | None = None,
        config: "RuntimeConfig | None" = None,
    ) -> Generator["BrainEvent", None, "ExecutionOutcome"]:
        """Execute this brain, yielding its events.

        The generator's return value is the
        :class:`~brainrun.runtime.executor.ExecutionOutcome`.
        """
        from .executor import BrainExecutor

        executor = BrainExecutor(
            self,
            client=client,
            initial_state=initial_state,
            options=options,
            brain_run_id=brain_run_id,
            resume=resume,
            resources=resources,
            pages=pages,
            page_generator=page_generator,
            env=env,
            config=config,
        )
        return executor.run()


def brain(title: str, description: str | None = None) -> Brain:
    """Start a new brain definition."""
    return Brain(title=title, description=description)
