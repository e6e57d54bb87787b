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

"""brainrun: a durable runtime for LLM-driven workflows."""

from .config import BrainrunConfig, MongoDBConfig, RuntimeConfig, load_config
from .runtime import (
    AgentConfig,
    AgentOutputSchema,
    Brain,
    BrainRunner,
    BrainStateMachine,
    ResumeContext,
    RunResult,
    StepResult,
    WebhookRegistration,
    brain,
    create_machine,
    create_tool,
    create_webhook,
)

__version__ = "0.1.0"

__all__ = [
    "Brain",
    "brain",
    "BrainRunner",
    "RunResult",
    "StepResult",
    "ResumeContext",
    "BrainStateMachine",
    "create_machine",
    "AgentConfig",
    "AgentOutputSchema",
    "create_tool",
    "create_webhook",
    "WebhookRegistration",
    "BrainrunConfig",
    "RuntimeConfig",
    "MongoDBConfig",
    "load_config",
]
