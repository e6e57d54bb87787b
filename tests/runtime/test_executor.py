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

"""Tests for the brainrun step executor.

Covers step execution and patches, retry, resume from an index,
webhook suspension, and nested brains.
"""

import pytest

from brainrun.config import RuntimeConfig
from brainrun.runtime import (
    BrainExecutor,
    BrainEventType,
    ResumeContext,
    ResumeContextError,
    Status,
    StepResult,
    WebhookRegistration,
    apply_patches,
    brain,
    create_machine,
    resume_context_from_events,
)
from brainrun.runtime.agent import AgentResumeContext
from tests.fakes import drain, types_of


def _add(key, value):
    return lambda ctx: {**ctx.state, key: value}


def _completes(events):
    return [e for e in events if e.type == BrainEventType.STEP_COMPLETE]


# =========================================================================
# Plain steps
# =========================================================================


class TestStepExecution:
    """Sequential step execution."""

    def test_event_framing(self):
        """A run opens with start and a status snapshot and ends with complete."""
        events = []
        outcome = drain(BrainExecutor(brain("simple").step("A", _add("a", 1))).run(), events)

        assert types_of(events) == [
            BrainEventType.START,
            BrainEventType.STEP_STATUS,
            BrainEventType.STEP_START,
            BrainEventType.STEP_STATUS,
            BrainEventType.STEP_COMPLETE,
            BrainEventType.STEP_STATUS,
            BrainEventType.COMPLETE,
        ]
        assert outcome.state == {"a": 1}
        assert not outcome.suspended

    def test_status_snapshots_track_steps(self):
        events = []
        workflow = brain("two").step("A", _add("a", 1)).step("B", _add("b", 2))
        drain(BrainExecutor(workflow).run(), events)

        statuses = [e.steps for e in events if e.type == BrainEventType.STEP_STATUS]
        assert [s["status"] for s in statuses[0]] == [Status.PENDING, Status.PENDING]
        assert [s["status"] for s in statuses[1]] == [Status.RUNNING, Status.PENDING]
        assert [s["status"] for s in statuses[-1]] == [Status.COMPLETE, Status.COMPLETE]

    def test_patches_reproduce_final_state(self):
        """Replaying step patches over the initial state yields the final state."""
        workflow = (
            brain("patches")
            .step("Add", lambda ctx: {**ctx.state, "items": [1, 2], "meta": {"n": 1}})
            .step("Change", lambda ctx: {"items": [1], "meta": {"n": 2, "tag": "x"}})
            .step("Noop", lambda ctx: ctx.state)
        )
        initial = {"seed": True}
        events = []
        outcome = drain(BrainExecutor(workflow, initial_state=initial).run(), events)

        patches = [e.patch for e in _completes(events)]
        assert patches[2] == []
        assert apply_patches(initial, patches) == outcome.state
        assert outcome.state == {"items": [1], "meta": {"n": 2, "tag": "x"}}

    def test_action_mutation_does_not_leak(self):
        """Steps receive a copy of the state."""

        def mutate(ctx):
            ctx.state["leaked"] = True
            return {"clean": True}

        events = []
        outcome = drain(BrainExecutor(brain("m").step("Mutate", mutate)).run(), events)
        assert outcome.state == {"clean": True}

    def test_response_handed_to_next_step_only(self):
        seen = []

        def second(ctx):
            seen.append(ctx.response)
            return ctx.state

        def third(ctx):
            seen.append(ctx.response)
            return ctx.state

        workflow = (
            brain("handoff")
            .step("Ask", lambda ctx: StepResult(state={"asked": True}, response="yes"))
            .step("Read", second)
            .step("After", third)
        )
        drain(BrainExecutor(workflow).run(), [])
        assert seen == ["yes", None]

    def test_same_run_id_and_options_on_every_event(self):
        events = []
        drain(
            BrainExecutor(
                brain("ids").step("A", _add("a", 1)),
                brain_run_id="run-1",
                options={"channel": "test"},
            ).run(),
            events,
        )
        assert {e.brain_run_id for e in events} == {"run-1"}
        assert all(e.options == {"channel": "test"} for e in events)

    def test_services_reach_steps(self):
        workflow = (
            brain("svc")
            .with_services({"greeting": "hello"})
            .step("Greet", lambda ctx: {"message": ctx.services["greeting"]})
        )
        outcome = drain(BrainExecutor(workflow).run(), [])
        assert outcome.state == {"message": "hello"}


# =========================================================================
# Conditionals
# =========================================================================


def _triage():
    return (
        brain("triage")
        .step("Init", _add("important", True))
        .conditional(
            lambda state: state["important"],
            then=("Notify", _add("notified", True)),
            otherwise=("Skip", _add("notified", False)),
        )
        .step("Done", _add("done", True))
    )


class TestConditional:
    """Branch selection and the synthetic skip."""

    def test_then_branch(self):
        """Init, Notify, Skip (empty, skipped), Done."""
        events = []
        outcome = drain(BrainExecutor(_triage()).run(), events)

        completes = _completes(events)
        assert [e.step_title for e in completes] == ["Init", "Notify", "Skip", "Done"]
        assert completes[2].patch == []
        assert completes[2].skipped is True
        assert [e.skipped for e in completes] == [False, False, True, False]
        assert outcome.state == {"important": True, "notified": True, "done": True}

    def test_else_branch(self):
        workflow = brain("triage-else").step("Init", _add("important", False))
        workflow = workflow.conditional(
            lambda state: state["important"],
            then=("Notify", _add("notified", True)),
            otherwise=("Skip", _add("notified", False)),
        )
        events = []
        outcome = drain(BrainExecutor(workflow).run(), events)

        completes = _completes(events)
        assert [e.step_title for e in completes] == ["Init", "Skip", "Notify"]
        assert completes[2].skipped is True
        assert completes[2].patch == []
        assert outcome.state == {"important": False, "notified": False}

    def test_exactly_one_branch_has_a_patch(self):
        events = []
        drain(BrainExecutor(_triage()).run(), events)
        branch_patches = [e.patch for e in _completes(events) if e.step_title in ("Notify", "Skip")]
        assert sum(1 for p in branch_patches if p) == 1

    def test_chosen_branch_start_carries_its_position(self):
        workflow = brain("pos").conditional(
            lambda state: False, then=("Yes", _add("x", 1)), otherwise=("No", _add("x", 0))
        )
        events = []
        drain(BrainExecutor(workflow).run(), events)
        starts = [e for e in events if e.type == BrainEventType.STEP_START]
        assert [(s.step_title, s.step_index) for s in starts] == [("No", 1)]

    def test_final_status_marks_skipped(self):
        events = []
        drain(BrainExecutor(_triage()).run(), events)
        final = [e for e in events if e.type == BrainEventType.STEP_STATUS][-1]
        assert [s["status"] for s in final.steps] == [
            Status.COMPLETE,
            Status.COMPLETE,
            Status.SKIPPED,
            Status.COMPLETE,
        ]


# =========================================================================
# Retry
# =========================================================================


class TestRetry:
    """Retry bound of step actions."""

    def _always_fails(self, ctx):
        raise ValueError("boom")

    def test_default_bound(self):
        """One retry, then error, and no completion for the failing step."""
        events = []
        with pytest.raises(ValueError, match="boom"):
            drain(BrainExecutor(brain("fail").step("Bad", self._always_fails)).run(), events)

        assert types_of(events).count(BrainEventType.STEP_RETRY) == 1
        assert BrainEventType.STEP_COMPLETE not in types_of(events)
        assert types_of(events)[-2:] == [BrainEventType.ERROR, BrainEventType.STEP_STATUS]
        assert events[-1].steps[0]["status"] == Status.ERROR

    def test_configured_bound(self):
        events = []
        config = RuntimeConfig(max_retries=3)
        with pytest.raises(ValueError):
            drain(
                BrainExecutor(brain("fail").step("Bad", self._always_fails), config=config).run(),
                events,
            )

        retries = [e for e in events if e.type == BrainEventType.STEP_RETRY]
        assert [r.attempt for r in retries] == [1, 2, 3]
        assert retries[0].error.name == "ValueError"
        assert retries[0].error.message == "boom"

    def test_error_event_carries_serialized_error(self):
        events = []
        with pytest.raises(ValueError):
            drain(BrainExecutor(brain("fail").step("Bad", self._always_fails)).run(), events)
        error = next(e for e in events if e.type == BrainEventType.ERROR)
        assert error.error.name == "ValueError"
        assert error.depth == 0

    def test_recovers_within_bound(self):
        attempts = []

        def flaky(ctx):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")
            return {"ok": True}

        events = []
        outcome = drain(BrainExecutor(brain("flaky").step("Flaky", flaky)).run(), events)
        assert types_of(events).count(BrainEventType.STEP_RETRY) == 1
        assert outcome.state == {"ok": True}

    def test_later_steps_do_not_run_after_failure(self):
        ran = []
        workflow = (
            brain("stop")
            .step("Bad", self._always_fails)
            .step("Never", lambda ctx: ran.append(True) or ctx.state)
        )
        with pytest.raises(ValueError):
            drain(BrainExecutor(workflow).run(), [])
        assert ran == []


# =========================================================================
# Resume from index
# =========================================================================


def _abc():
    return brain("abc").step("A", _add("a", 1)).step("B", _add("b", 2)).step("C", _add("c", 3))


class TestResumeFromIndex:
    """Resuming past completed steps."""

    def test_skips_completed_steps(self):
        events = []
        context = ResumeContext(step_index=2, state={"a": 1, "b": 2})
        outcome = drain(BrainExecutor(_abc(), resume=context).run(), events)

        assert events[0].type == BrainEventType.RESTART
        assert events[0].initial_state == {"a": 1, "b": 2}
        starts = [e for e in events if e.type == BrainEventType.STEP_START]
        assert [(s.step_title, s.step_index) for s in starts] == [("C", 2)]
        assert outcome.state == {"a": 1, "b": 2, "c": 3}

    def test_restored_status_snapshot(self):
        events = []
        context = ResumeContext(step_index=1, state={"a": 1})
        drain(BrainExecutor(_abc(), resume=context).run(), events)
        assert [s["status"] for s in events[1].steps] == [
            Status.COMPLETE,
            Status.PENDING,
            Status.PENDING,
        ]

    def test_keeps_step_ids_from_records(self):
        records = [
            {"id": "step-a", "title": "A", "status": Status.COMPLETE},
            {"id": "step-b", "title": "B", "status": Status.PENDING},
        ]
        events = []
        drain(
            BrainExecutor(
                _abc(), resume=ResumeContext(step_index=1, state={"a": 1}, steps=records)
            ).run(),
            events,
        )
        start = next(e for e in events if e.type == BrainEventType.STEP_START)
        assert start.step_id == "step-b"
        assert events[1].steps[0]["id"] == "step-a"

    def test_index_out_of_range(self):
        with pytest.raises(ResumeContextError):
            BrainExecutor(_abc(), resume=ResumeContext(step_index=7, state={}))

    def test_agent_context_at_plain_step(self):
        context = ResumeContext(
            step_index=0,
            state={},
            agent_context=AgentResumeContext(
                messages=[], pending_tool_call_id="c1", pending_tool_name="waitForWebhook"
            ),
        )
        with pytest.raises(ResumeContextError, match="not an agent step"):
            BrainExecutor(_abc(), resume=context)

    def test_resume_after_taken_branch(self):
        """A resumed conditional whose chosen branch already ran only skips."""
        records = [
            {"id": "i", "title": "Init", "status": Status.COMPLETE},
            {"id": "n", "title": "Notify", "status": Status.COMPLETE},
            {"id": "s", "title": "Skip", "status": Status.PENDING},
        ]
        events = []
        outcome = drain(
            BrainExecutor(
                _triage(),
                resume=ResumeContext(
                    step_index=2, state={"important": True, "notified": True}, steps=records
                ),
            ).run(),
            events,
        )
        completes = _completes(events)
        assert [(e.step_title, e.skipped) for e in completes] == [("Skip", True), ("Done", False)]
        assert outcome.state == {"important": True, "notified": True, "done": True}


# =========================================================================
# Webhook suspension
# =========================================================================


def _approval():
    registration = WebhookRegistration(slug="approval", identifier="req-1")
    return (
        brain("approval")
        .step("Request", lambda ctx: StepResult(state={"requested": True}, wait_for=registration))
        .step("Apply", lambda ctx: {**ctx.state, "approved": ctx.response["approved"]})
    )


class TestWebhookSuspension:
    """Steps that wait for an external event."""

    def test_step_completes_then_run_suspends(self):
        events = []
        outcome = drain(BrainExecutor(_approval()).run(), events)

        assert types_of(events)[-3:] == [
            BrainEventType.STEP_COMPLETE,
            BrainEventType.STEP_STATUS,
            BrainEventType.WEBHOOK,
        ]
        assert BrainEventType.COMPLETE not in types_of(events)
        assert outcome.suspended
        assert outcome.wait_for == [WebhookRegistration(slug="approval", identifier="req-1")]
        assert events[-1].wait_for[0].slug == "approval"

    def test_resume_hands_response_to_next_step(self):
        context = ResumeContext(
            step_index=1, state={"requested": True}, webhook_response={"approved": True}
        )
        events = []
        outcome = drain(BrainExecutor(_approval(), resume=context).run(), events)

        assert types_of(events)[:3] == [
            BrainEventType.RESTART,
            BrainEventType.STEP_STATUS,
            BrainEventType.WEBHOOK_RESPONSE,
        ]
        assert events[2].response == {"approved": True}
        assert outcome.state == {"requested": True, "approved": True}

    def test_conditional_branch_suspends_after_skip(self):
        registration = WebhookRegistration(slug="review", identifier="r")
        workflow = brain("cond-wait").conditional(
            lambda state: True,
            then=("Ask", lambda ctx: StepResult(state={"asked": True}, wait_for=[registration])),
            otherwise=("Auto", _add("asked", False)),
        )
        events = []
        outcome = drain(BrainExecutor(workflow).run(), events)

        assert [(e.step_title, e.skipped) for e in _completes(events)] == [
            ("Ask", False),
            ("Auto", True),
        ]
        assert events[-1].type == BrainEventType.WEBHOOK
        assert outcome.suspended


# =========================================================================
# Nested brains
# =========================================================================


def _counter():
    inner = brain("counter").step("Double", lambda ctx: {"value": ctx.state["value"] * 2})
    inner = inner.step("Increment", lambda ctx: {"value": ctx.state["value"] + 1})
    return (
        brain("outer")
        .step("Prepare", _add("count", 1))
        .brain(
            "Count",
            inner,
            lambda outer, inner_state, services: {**outer, "result": inner_state["value"]},
            initial_state=lambda state: {"value": state["count"]},
        )
        .step("Finish", _add("finished", True))
    )


def _interview():
    registration = WebhookRegistration(slug="answer", identifier="q-1")
    inner = (
        brain("questions")
        .step(
            "Ask",
            lambda ctx: StepResult(state={**ctx.state, "asked": True}, wait_for=registration),
        )
        .step("Use", lambda ctx: {**ctx.state, "answer": ctx.response["answer"]})
    )
    return (
        brain("interview")
        .step("Prepare", _add("count", 1))
        .brain(
            "Interview",
            inner,
            lambda outer, inner_state, services: {**outer, "answer": inner_state["answer"]},
            initial_state=lambda state: {"count": state["count"]},
        )
        .step("Finish", _add("done", True))
    )


class TestNestedBrain:
    """Nested brains share the run id and run one level deeper."""

    def test_reducer_merges_inner_state(self):
        events = []
        outcome = drain(BrainExecutor(_counter(), brain_run_id="run-n").run(), events)

        assert outcome.state == {"count": 1, "result": 3, "finished": True}
        assert {e.brain_run_id for e in events} == {"run-n"}

    def test_inner_events_are_forwarded_with_depth(self):
        events = []
        drain(BrainExecutor(_counter()).run(), events)

        starts = [e for e in events if e.type == BrainEventType.START]
        assert [(s.brain_title, s.depth) for s in starts] == [("outer", 0), ("counter", 1)]
        outer_step = next(
            e for e in events if e.type == BrainEventType.STEP_START and e.step_title == "Count"
        )
        assert starts[1].parent_step_id == outer_step.step_id
        assert starts[1].initial_state == {"value": 1}
        completes = [e for e in events if e.type == BrainEventType.COMPLETE]
        assert [c.depth for c in completes] == [1, 0]

    def test_outer_step_completes_after_inner(self):
        events = []
        drain(BrainExecutor(_counter()).run(), events)
        titles = [e.step_title for e in _completes(events)]
        assert titles == ["Prepare", "Double", "Increment", "Count", "Finish"]

    def test_inner_suspension_propagates(self):
        events = []
        outcome = drain(BrainExecutor(_interview()).run(), events)

        assert outcome.suspended
        assert "Interview" not in [e.step_title for e in _completes(events)]
        assert events[-1].type == BrainEventType.WEBHOOK

    def test_inner_failure_fails_outer(self):
        def broken(ctx):
            raise KeyError("missing")

        workflow = brain("outer").brain(
            "Nested", brain("inner").step("Broken", broken), lambda o, i, s: {**o, **i}
        )
        events = []
        with pytest.raises(KeyError):
            drain(BrainExecutor(workflow).run(), events)

        errors = [e for e in events if e.type == BrainEventType.ERROR]
        assert [e.depth for e in errors] == [1, 0]

    def test_resume_nested_from_events(self):
        first = []
        drain(BrainExecutor(_interview(), brain_run_id="run-i").run(), first)

        context = resume_context_from_events(first, webhook_response={"answer": 42})
        assert context.step_index == 1
        assert context.inner is not None
        assert context.inner.step_index == 1
        assert context.inner.state == {"count": 1, "asked": True}
        assert context.deepest().webhook_response == {"answer": 42}

        second = []
        outcome = drain(
            BrainExecutor(_interview(), brain_run_id="run-i", resume=context).run(), second
        )
        assert outcome.state == {"count": 1, "answer": 42, "done": True}

        restarts = [e for e in second if e.type == BrainEventType.RESTART]
        assert [r.depth for r in restarts] == [0, 1]
        interview_start = next(
            e for e in first if e.type == BrainEventType.STEP_START and e.step_title == "Interview"
        )
        assert restarts[1].parent_step_id == interview_start.step_id

        machine = create_machine(events=first + second)
        assert machine.is_complete
        assert machine.current_state == outcome.state


# =========================================================================
# Structure
# =========================================================================


class TestStructure:
    """Tests for Brain.structure."""

    def test_nested_tree(self):
        inner = brain("inner", "Asks a question").step("Ask", _add("asked", True))
        workflow = (
            _triage()
            .brain("Interview", inner, lambda outer, inner_state, services: outer)
            .agent("Research", lambda ctx: None)
        )

        assert workflow.structure() == {
            "title": "triage",
            "steps": [
                {"type": "step", "title": "Init"},
                {"type": "step", "title": "Notify"},
                {"type": "step", "title": "Skip"},
                {"type": "step", "title": "Done"},
                {
                    "type": "brain",
                    "title": "Interview",
                    "innerBrain": {
                        "title": "inner",
                        "description": "Asks a question",
                        "steps": [{"type": "step", "title": "Ask"}],
                    },
                },
                {"type": "agent", "title": "Research"},
            ],
        }
