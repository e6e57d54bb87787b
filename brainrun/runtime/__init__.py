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

"""brainrun runtime package.

Executes brains step by step, emitting an ordered event stream, and
reconstructs execution state from that stream.
"""

from .agent import (
    AgentConfig,
    AgentLoop,
    AgentOutcome,
    AgentOutputSchema,
    AgentResumeContext,
    reconstruct_agent_context,
)
from .blocks import (
    AgentBlock,
    BlockType,
    Brain,
    BrainBlock,
    ConditionalBlock,
    RuntimeEnv,
    StepBlock,
    StepContext,
    StepResult,
    UIBlock,
    brain,
)
from .client import (
    AgentMessage,
    MessageRole,
    ObjectGenerator,
    TextGeneration,
    TextGenerator,
    TokenUsage,
    ToolCall,
    ToolSpec,
)
from .errors import (
    BrainrunError,
    ClientCapabilityError,
    InvalidEventError,
    InvalidPatchError,
    InvalidSchemaError,
    MissingCollaboratorError,
    PatchTestFailedError,
    ResumeContextError,
    SerializedError,
    UnknownToolError,
    WebhookMismatchError,
    WebhookValidationError,
)
from .events import BrainEvent, as_event, event_from_dict
from .executor import BrainExecutor, ExecutionOutcome, ExecutionStatus
from .memory_store import MemoryEventStore
from .pages import UI_FORM_SLUG, GeneratedPage, Page, PageGenerator, PagesService
from .patch import JsonPatch, apply_patch, apply_patches, create_patch
from .persistence import EventAdapter, EventStore, EventStoreAdapter
from .resume import (
    ResumeContext,
    resume_context_from_events,
    resume_context_from_machine,
    resume_context_from_steps,
)
from .runner import BrainRunner, RunResult, RunStatus
from .state_machine import (
    TRANSITIONS,
    BrainStateMachine,
    ExecutionState,
    MachineSnapshot,
    RunFrame,
    StepInfo,
    create_machine,
)
from .step import Branch, Step
from .telemetry import Telemetry, TelemetryEvent
from .tools import (
    DONE_TOOL_NAME,
    AgentTool,
    ToolWaitFor,
    create_tool,
    default_tools,
)
from .types import BrainEventType, JsonObject, RunId, Status, StepId
from .webhook import WebhookRegistration, create_webhook

__all__ = [
    # Definitions
    "Brain",
    "brain",
    "BlockType",
    "StepBlock",
    "BrainBlock",
    "AgentBlock",
    "ConditionalBlock",
    "UIBlock",
    "StepContext",
    "StepResult",
    "RuntimeEnv",
    # Steps
    "Step",
    "Branch",
    "Status",
    # Events
    "BrainEvent",
    "BrainEventType",
    "as_event",
    "event_from_dict",
    # Patches
    "JsonPatch",
    "create_patch",
    "apply_patch",
    "apply_patches",
    # Execution
    "BrainExecutor",
    "ExecutionOutcome",
    "ExecutionStatus",
    "BrainRunner",
    "RunResult",
    "RunStatus",
    # Reconstruction
    "BrainStateMachine",
    "ExecutionState",
    "TRANSITIONS",
    "MachineSnapshot",
    "RunFrame",
    "StepInfo",
    "create_machine",
    # Resume
    "ResumeContext",
    "resume_context_from_steps",
    "resume_context_from_machine",
    "resume_context_from_events",
    # Agents
    "AgentConfig",
    "AgentLoop",
    "AgentOutcome",
    "AgentOutputSchema",
    "AgentResumeContext",
    "reconstruct_agent_context",
    "AgentTool",
    "ToolWaitFor",
    "create_tool",
    "default_tools",
    "DONE_TOOL_NAME",
    # LLM client contract
    "AgentMessage",
    "MessageRole",
    "ToolCall",
    "ToolSpec",
    "TokenUsage",
    "TextGeneration",
    "TextGenerator",
    "ObjectGenerator",
    # Webhooks and pages
    "WebhookRegistration",
    "create_webhook",
    "Page",
    "GeneratedPage",
    "PagesService",
    "PageGenerator",
    "UI_FORM_SLUG",
    # Persistence and telemetry
    "EventAdapter",
    "EventStore",
    "EventStoreAdapter",
    "MemoryEventStore",
    "Telemetry",
    "TelemetryEvent",
    # Errors
    "BrainrunError",
    "ClientCapabilityError",
    "InvalidEventError",
    "InvalidPatchError",
    "InvalidSchemaError",
    "MissingCollaboratorError",
    "PatchTestFailedError",
    "ResumeContextError",
    "SerializedError",
    "UnknownToolError",
    "WebhookMismatchError",
    "WebhookValidationError",
    # Types
    "JsonObject",
    "RunId",
    "StepId",
]
