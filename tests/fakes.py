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

"""Scripted collaborators shared by the runtime tests."""

from typing import Any

from brainrun.runtime.client import TextGeneration, TokenUsage, ToolCall
from brainrun.runtime.pages import Page


def reply(text: str | None = None, *calls: ToolCall, tokens: int = 0) -> TextGeneration:
    """Build one canned model turn."""
    return TextGeneration(text=text, tool_calls=list(calls), usage=TokenUsage(tokens))


def call(tool_name: str, args: Any = None, call_id: str | None = None) -> ToolCall:
    """Build a tool call; the id defaults to ``call-<tool_name>``."""
    return ToolCall(tool_call_id=call_id or f"call-{tool_name}", tool_name=tool_name, args=args)


class ScriptedClient:
    """LLM client that returns canned generations in order.

    Every ``generate_text`` call is recorded in ``calls`` with copies of
    its arguments.
    """

    def __init__(self, *responses: TextGeneration, objects: list[Any] | None = None):
        self.responses = list(responses)
        self.objects = list(objects or [])
        self.calls: list[dict[str, Any]] = []
        self.object_calls: list[dict[str, Any]] = []

    def generate_text(self, *, system, messages, tools, tool_choice=None) -> TextGeneration:
        self.calls.append(
            {
                "system": system,
                "messages": list(messages),
                "tools": dict(tools),
                "tool_choice": tool_choice,
            }
        )
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses")
        return self.responses.pop(0)

    def generate_object(self, *, schema, schema_name, prompt=None, messages=None, system=None):
        self.object_calls.append({"schema": schema, "schema_name": schema_name, "prompt": prompt})
        return self.objects.pop(0) if self.objects else {}


class ObjectOnlyClient:
    """Client supporting structured generation only."""

    def generate_object(self, *, schema, schema_name, prompt=None, messages=None, system=None):
        return {}


class FakePages:
    """Pages service keeping documents in a dictionary."""

    def __init__(self):
        self.documents: dict[str, str] = {}

    def create(self, html: str, slug: str | None = None, persist: bool = False) -> Page:
        slug = slug or f"page-{len(self.documents) + 1}"
        self.documents[slug] = html
        return Page(slug=slug, url=f"http://pages.test/{slug}", persist=persist)

    def get(self, slug: str) -> str | None:
        return self.documents.get(slug)

    def update(self, slug: str, html: str) -> Page:
        self.documents[slug] = html
        return Page(slug=slug, url=f"http://pages.test/{slug}")


class FakePageGenerator:
    """Page generator that renders a minimal form and records its calls."""

    def __init__(self):
        self.calls: list[dict[str, Any]] = []

    def generate(
        self, *, client, prompt, title, data, response_schema, form_action, form_token
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "title": title,
                "data": data,
                "response_schema": response_schema,
                "form_action": form_action,
                "form_token": form_token,
            }
        )
        return f'<form action="{form_action}"><input name="token" value="{form_token}"></form>'


def drain(stream, events: list) -> Any:
    """Pull every event out of an executor stream into ``events``.

    Returns the stream's return value; exceptions propagate after the
    events yielded before them have been collected.
    """
    while True:
        try:
            events.append(next(stream))
        except StopIteration as stop:
            return stop.value


def types_of(events) -> list[str]:
    return [e.type for e in events]
