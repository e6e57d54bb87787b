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

"""Webhook registrations.

A suspended step or tool returns one or more registrations naming the
external event it waits for. The host later matches an inbound event
``(slug, identifier)`` against the pending registrations, validates the
payload and resumes the run with it.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .errors import WebhookMismatchError, WebhookValidationError
from .schema import JsonSchema, validation_errors


@dataclass(frozen=True)
class WebhookRegistration:
    """Names the external event a suspended run is waiting for.

    Attributes:
        slug: Webhook family (e.g. ``"ui-form"``, ``"approval"``)
        identifier: Instance key within the family
        validation_schema: JSON Schema the response must satisfy
        token: Opaque token a form submission must echo back
    """

    slug: str
    identifier: str
    validation_schema: JsonSchema | None = None
    token: str | None = None

    def matches(self, slug: str, identifier: str) -> bool:
        """Check if an inbound event is addressed to this registration."""
        return self.slug == slug and self.identifier == identifier

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"slug": self.slug, "identifier": self.identifier}
        if self.validation_schema is not None:
            result["validationSchema"] = self.validation_schema
        if self.token is not None:
            result["token"] = self.token
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookRegistration":
        """Create from a dictionary."""
        return cls(
            slug=data["slug"],
            identifier=data["identifier"],
            validation_schema=data.get("validationSchema"),
            token=data.get("token"),
        )


class WebhookFunction:
    """Factory for registrations of one webhook slug.

    Calling the function with an identifier yields the registration a
    step returns to suspend::

        approval = create_webhook("approval", {"type": "object"})
        return StepResult(state, wait_for=approval(ticket_id))
    """

    def __init__(self, slug: str, schema: JsonSchema | None = None):
        self.slug = slug
        self.schema = schema

    def __call__(self, identifier: str, token: str | None = None) -> WebhookRegistration:
        return WebhookRegistration(
            slug=self.slug,
            identifier=identifier,
            validation_schema=self.schema,
            token=token,
        )

    def __repr__(self) -> str:
        return f"WebhookFunction(slug={self.slug!r})"


def create_webhook(slug: str, schema: JsonSchema | None = None) -> WebhookFunction:
    """Create a webhook factory.

    Args:
        slug: Webhook family name
        schema: Optional JSON Schema for responses

    Returns:
        Callable producing :class:`WebhookRegistration` instances
    """
    return WebhookFunction(slug, schema)


WaitFor = WebhookRegistration | Iterable[WebhookRegistration]


def normalize_wait_for(wait_for: Any) -> list[WebhookRegistration]:
    """Turn a single registration, a list, or their dict forms into a list."""
    if wait_for is None:
        return []
    if isinstance(wait_for, (WebhookRegistration, dict)):
        items = [wait_for]
    else:
        items = list(wait_for)
    return [
        item if isinstance(item, WebhookRegistration) else WebhookRegistration.from_dict(item)
        for item in items
    ]


def match_webhook(
    wait_for: Iterable[WebhookRegistration], slug: str, identifier: str
) -> WebhookRegistration:
    """Select the pending registration addressed by ``(slug, identifier)``.

    Raises:
        WebhookMismatchError: If none matches
    """
    for registration in wait_for:
        if registration.matches(slug, identifier):
            return registration
    raise WebhookMismatchError(slug, identifier)


def validate_webhook_token(expected: str | None, submitted: str | None) -> bool:
    """Check a submitted form token against the registered one.

    No token on either side is valid; otherwise both must be equal.
    """
    if (expected or submitted) and expected != submitted:
        return False
    return True


def validate_response(
    registration: WebhookRegistration, response: Any, token: str | None = None
) -> None:
    """Validate an inbound payload against its registration.

    Raises:
        WebhookValidationError: On a token mismatch or schema violation
    """
    if not validate_webhook_token(registration.token, token):
        raise WebhookValidationError(
            registration.slug, registration.identifier, "invalid form token"
        )
    if registration.validation_schema is None:
        return
    errors = validation_errors(registration.validation_schema, response)
    if errors:
        raise WebhookValidationError(registration.slug, registration.identifier, "; ".join(errors))
