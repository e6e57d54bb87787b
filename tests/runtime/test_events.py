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

"""Tests for brain events and their wire form."""

import json

import pytest

from brainrun.runtime import (
    AgentConfig,
    BrainEventType,
    BrainExecutor,
    InvalidEventError,
    SerializedError,
    WebhookRegistration,
    as_event,
    brain,
    event_from_dict,
)
from brainrun.runtime.events import (
    EVENT_CLASSES,
    AgentWebhookEvent,
    BrainErrorEvent,
    StepCompleteEvent,
    WebhookEvent,
)
from tests.fakes import ScriptedClient, call, drain, reply


class TestEventTypes:
    """Tests for BrainEventType."""

    def test_every_type_has_a_class(self):
        types = {
            value
            for name, value in vars(BrainEventType).items()
            if name.isupper() and isinstance(value, str)
        }
        assert types == set(EVENT_CLASSES)

    def test_scope_action_naming(self):
        assert BrainEventType.START == "brain:start"
        assert BrainEventType.STEP_COMPLETE == "step:complete"
        assert BrainEventType.WEBHOOK == "webhook"
        assert BrainEventType.is_agent_event(BrainEventType.AGENT_WEBHOOK)
        assert not BrainEventType.is_agent_event(BrainEventType.STEP_START)


class TestWireForm:
    """camelCase dictionaries with a type discriminator."""

    def test_step_complete(self):
        event = StepCompleteEvent(
            brain_run_id="r1",
            step_title="Fetch",
            step_id="s1",
            patch=[{"op": "add", "path": "/a", "value": 1}],
        )
        assert event.to_dict() == {
            "type": "step:complete",
            "brainRunId": "r1",
            "options": {},
            "stepTitle": "Fetch",
            "stepId": "s1",
            "patch": [{"op": "add", "path": "/a", "value": 1}],
            "skipped": False,
        }

    def test_error_is_serialized(self):
        event = BrainErrorEvent(
            brain_run_id="r1",
            brain_title="b",
            error=SerializedError(name="ValueError", message="bad"),
        )
        data = event.to_dict()
        assert data["error"] == {"name": "ValueError", "message": "bad"}
        assert event_from_dict(data) == event

    def test_webhook_registrations(self):
        registration = WebhookRegistration("form", "i-1", {"type": "object"}, "tok")
        data = WebhookEvent(brain_run_id="r1", wait_for=[registration]).to_dict()
        assert data["waitFor"] == [
            {
                "slug": "form",
                "identifier": "i-1",
                "validationSchema": {"type": "object"},
                "token": "tok",
            }
        ]
        assert event_from_dict(data).wait_for == [registration]

    def test_agent_run_survives_json(self):
        """Every event of a suspended agent run parses back from JSON."""
        workflow = brain("agent").agent("Ask", lambda ctx: AgentConfig(prompt="Hello"))
        client = ScriptedClient(
            reply("thinking", call("consoleLog", {"message": "x"}), tokens=3),
            reply(None, call("waitForWebhook", {"slug": "s", "identifier": "i"}), tokens=4),
        )
        events = []
        drain(BrainExecutor(workflow, client=client).run(), events)

        restored = [event_from_dict(json.loads(json.dumps(e.to_dict()))) for e in events]
        assert restored == events
        webhook = next(e for e in restored if isinstance(e, AgentWebhookEvent))
        assert webhook.messages[1].tool_calls[0].tool_name == "consoleLog"

    def test_unknown_type(self):
        with pytest.raises(InvalidEventError, match="unknown event type"):
            event_from_dict({"type": "brain:explode", "brainRunId": "r"})

    def test_missing_required_field(self):
        with pytest.raises(InvalidEventError, match="step:start"):
            event_from_dict({"type": "step:start", "brainRunId": "r", "stepTitle": "x"})

    def test_as_event_accepts_both_forms(self):
        event = WebhookEvent(brain_run_id="r1")
        assert as_event(event) is event
        assert as_event(event.to_dict()) == event


class TestSerializedError:
    """Tests for SerializedError."""

    def test_from_exception(self):
        try:
            raise KeyError("k")
        except KeyError as e:
            error = SerializedError.from_exception(e)
        assert error.name == "KeyError"
        assert error.message == "'k'"
        assert "KeyError" in error.stack

    def test_from_dict_defaults(self):
        error = SerializedError.from_dict({})
        assert (error.name, error.message, error.stack) == ("Error", "", None)
