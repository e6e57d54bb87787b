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

"""Pages and UI collaborators.

UI steps delegate HTML generation to a :class:`PageGenerator` and store
the result through a :class:`PagesService`. Neither is implemented by the
runtime; hosts inject them.
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

from .webhook import WebhookRegistration

# Built-in webhook slug hosts route form submissions to
UI_FORM_SLUG = "ui-form"


@dataclass
class Page:
    """Page metadata returned by a pages service."""

    slug: str
    url: str
    brain_run_id: str | None = None
    persist: bool = False


@dataclass
class GeneratedPage:
    """Handoff from a UI step to the step that follows it.

    The next step typically shows ``url`` to a user and suspends on
    ``webhook`` until the form is submitted. ``webhook`` is only set
    when the UI step declares a response schema.
    """

    url: str
    webhook: WebhookRegistration | None = None


@runtime_checkable
class PagesService(Protocol):
    """Stores HTML documents and serves them by URL."""

    def create(self, html: str, slug: str | None = None, persist: bool = False) -> Page: ...

    def get(self, slug: str) -> str | None: ...

    def update(self, slug: str, html: str) -> Page: ...


@runtime_checkable
class PageGenerator(Protocol):
    """Turns a prompt into a complete HTML form page."""

    def generate(
        self,
        *,
        client: Any,
        prompt: str,
        title: str,
        data: dict[str, Any],
        response_schema: dict[str, Any] | None,
        form_action: str,
        form_token: str,
    ) -> str: ...


def form_action_url(origin: str, identifier: str) -> str:
    """Build the URL a UI form posts to."""
    query = quote(identifier, safe="")
    return f"{origin.rstrip('/')}/webhooks/system/{UI_FORM_SLUG}?identifier={query}"
