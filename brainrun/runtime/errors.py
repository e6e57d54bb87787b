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

"""brainrun runtime error types."""

import traceback
from dataclasses import dataclass
from typing import Any


class BrainrunError(Exception):
    """Base class for all brainrun runtime errors."""

    pass


@dataclass
class UnknownToolError(BrainrunError):
    """Raised when the model calls a tool that is not in the agent's tool set."""

    tool_name: str
    step_title: str = ""

    def __str__(self) -> str:
        loc = f" in agent step '{self.step_title}'" if self.step_title else ""
        return f"Unknown tool{loc}: {self.tool_name}"


@dataclass
class ClientCapabilityError(BrainrunError):
    """Raised when the LLM client does not provide a required capability."""

    capability: str

    def __str__(self) -> str:
        return (
            f"Client does not support {self.capability}. "
            f"Use a client that implements {self.capability}."
        )


@dataclass
class MissingCollaboratorError(BrainrunError):
    """Raised when a step needs a collaborator the run was not given."""

    step_title: str
    collaborator: str

    def __str__(self) -> str:
        return f"Step '{self.step_title}' requires {self.collaborator} to be configured"


@dataclass
class InvalidPatchError(BrainrunError):
    """Raised when a patch operation cannot be applied to a document."""

    op: str
    path: str
    message: str

    def __str__(self) -> str:
        return f"Cannot apply '{self.op}' at '{self.path}': {self.message}"


@dataclass
class PatchTestFailedError(InvalidPatchError):
    """Raised when a ``test`` operation does not match the document."""


@dataclass
class InvalidEventError(BrainrunError):
    """Raised when an event cannot be parsed or is out of sequence."""

    message: str

    def __str__(self) -> str:
        return f"Invalid event: {self.message}"


@dataclass
class WebhookValidationError(BrainrunError):
    """Raised when a webhook response does not match its registration schema."""

    slug: str
    identifier: str
    message: str

    def __str__(self) -> str:
        return f"Webhook response for {self.slug}/{self.identifier} is invalid: {self.message}"


@dataclass
class WebhookMismatchError(BrainrunError):
    """Raised when no pending registration matches an inbound webhook."""

    slug: str
    identifier: str

    def __str__(self) -> str:
        return f"No pending webhook registration for {self.slug}/{self.identifier}"


@dataclass
class ResumeContextError(BrainrunError):
    """Raised when a resume context does not fit the brain being resumed."""

    message: str

    def __str__(self) -> str:
        return f"Cannot resume: {self.message}"


@dataclass
class InvalidSchemaError(BrainrunError):
    """Raised when a tool or output schema is not valid JSON Schema."""

    message: str

    def __str__(self) -> str:
        return f"Invalid schema: {self.message}"


@dataclass
class SerializedError:
    """Wire form of an exception carried by error and retry events."""

    name: str
    message: str
    stack: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "SerializedError":
        """Capture name, message and traceback of an exception."""
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(name=type(error).__name__, message=str(error), stack=stack or None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"name": self.name, "message": self.message}
        if self.stack:
            result["stack"] = self.stack
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SerializedError":
        """Create from a dictionary."""
        return cls(
            name=data.get("name", "Error"),
            message=data.get("message", ""),
            stack=data.get("stack"),
        )
