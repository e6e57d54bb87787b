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

"""brainrun configuration management.

Provides configuration dataclasses for the runtime and the event log
database, and a loader that reads from config files or environment
variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

DEFAULT_AGENT_SYSTEM_PROMPT = """## Headless Agent

You are running as an automated agent inside a headless workflow. This is
not a chat interface and nobody reads your plain text output.

**To communicate with people you must call tools.** Check the tools you
have for sending messages, notifications or creating pages.

## Tool Execution
- Tools execute sequentially in the order you call them
- Webhook tools pause execution until the webhook fires
- Terminal tools (like 'done') end the agent immediately

## Resumption
When execution resumes after a webhook, the webhook response appears as
the result of the tool that was waiting."""


@dataclass
class RuntimeConfig:
    """Executor configuration.

    Attributes:
        max_retries: Retries of a failing step action before the run fails
        retry_delay: Seconds to wait between attempts
        max_iterations: Default iteration cap of agent steps
        agent_system_prompt: Prepended to every agent's system prompt
        origin: Public origin used to build UI form URLs
    """

    max_retries: int = 1
    retry_delay: float = 0.0
    max_iterations: int = 100
    agent_system_prompt: str = DEFAULT_AGENT_SYSTEM_PROMPT
    origin: str = "http://localhost:3000"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeConfig:
        """Create from a dictionary.

        Keys may use either snake_case (``max_retries``) or
        camelCase (``maxRetries``).
        """
        defaults = cls()
        return cls(
            max_retries=int(data.get("max_retries", data.get("maxRetries", defaults.max_retries))),
            retry_delay=float(
                data.get("retry_delay", data.get("retryDelay", defaults.retry_delay))
            ),
            max_iterations=int(
                data.get("max_iterations", data.get("maxIterations", defaults.max_iterations))
            ),
            agent_system_prompt=data.get(
                "agent_system_prompt",
                data.get("agentSystemPrompt", defaults.agent_system_prompt),
            ),
            origin=data.get("origin", defaults.origin),
        )

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        """Create from environment variables.

        Recognised variables (all optional, defaults apply for missing vars):
            BRAINRUN_MAX_RETRIES
            BRAINRUN_RETRY_DELAY
            BRAINRUN_MAX_ITERATIONS
            BRAINRUN_AGENT_SYSTEM_PROMPT
            BRAINRUN_ORIGIN
        """
        defaults = cls()
        return cls(
            max_retries=int(os.environ.get("BRAINRUN_MAX_RETRIES", defaults.max_retries)),
            retry_delay=float(os.environ.get("BRAINRUN_RETRY_DELAY", defaults.retry_delay)),
            max_iterations=int(os.environ.get("BRAINRUN_MAX_ITERATIONS", defaults.max_iterations)),
            agent_system_prompt=os.environ.get(
                "BRAINRUN_AGENT_SYSTEM_PROMPT", defaults.agent_system_prompt
            ),
            origin=os.environ.get("BRAINRUN_ORIGIN", defaults.origin),
        )


@dataclass
class MongoDBConfig:
    """MongoDB connection configuration for the event log.

    Attributes:
        url: MongoDB connection URL
        username: Authentication username
        password: Authentication password
        auth_source: Authentication database name
        database: Target database name
    """

    url: str = "mongodb://localhost:27017"
    username: str = ""
    password: str = ""
    auth_source: str = "admin"
    database: str = "brainrun"

    def connection_string(self) -> str:
        """Build the effective connection string.

        Explicit credentials and auth_source are added to the URL when it
        does not already carry credentials. Credentials are percent-encoded,
        and a ``/`` is added before the query when the URL has no path.
        """
        if not self.username or "@" in self.url:
            return self.url
        scheme, _, rest = self.url.partition("://")
        hosts, query_mark, query = rest.partition("?")
        if "/" not in hosts:
            hosts += "/"
        if query_mark:
            options = f"?{query}&authSource={self.auth_source}"
        else:
            options = f"?authSource={self.auth_source}"
        user = quote_plus(self.username)
        password = quote_plus(self.password)
        return f"{scheme}://{user}:{password}@{hosts}{options}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MongoDBConfig:
        """Create from a dictionary.

        Keys may use either snake_case (``auth_source``) or
        camelCase (``authSource``).
        """
        return cls(
            url=data.get("url", cls.url),
            username=data.get("username", cls.username),
            password=data.get("password", cls.password),
            auth_source=data.get("auth_source", data.get("authSource", cls.auth_source)),
            database=data.get("database", cls.database),
        )

    @classmethod
    def from_env(cls) -> MongoDBConfig:
        """Create from environment variables.

        Recognised variables (all optional, defaults apply for missing vars):
            BRAINRUN_MONGODB_URL
            BRAINRUN_MONGODB_USERNAME
            BRAINRUN_MONGODB_PASSWORD
            BRAINRUN_MONGODB_AUTH_SOURCE
            BRAINRUN_MONGODB_DATABASE
        """
        defaults = cls()
        return cls(
            url=os.environ.get("BRAINRUN_MONGODB_URL", defaults.url),
            username=os.environ.get("BRAINRUN_MONGODB_USERNAME", defaults.username),
            password=os.environ.get("BRAINRUN_MONGODB_PASSWORD", defaults.password),
            auth_source=os.environ.get("BRAINRUN_MONGODB_AUTH_SOURCE", defaults.auth_source),
            database=os.environ.get("BRAINRUN_MONGODB_DATABASE", defaults.database),
        )


@dataclass
class BrainrunConfig:
    """Top-level brainrun configuration.

    Attributes:
        runtime: Executor settings
        mongodb: Event log database settings
    """

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    mongodb: MongoDBConfig = field(default_factory=MongoDBConfig)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return {
            "runtime": self.runtime.to_dict(),
            "mongodb": self.mongodb.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BrainrunConfig:
        """Create from a dictionary (e.g. parsed JSON)."""
        return cls(
            runtime=RuntimeConfig.from_dict(data.get("runtime", {})),
            mongodb=MongoDBConfig.from_dict(data.get("mongodb", {})),
        )

    @classmethod
    def from_env(cls) -> BrainrunConfig:
        """Create from environment variables."""
        return cls(
            runtime=RuntimeConfig.from_env(),
            mongodb=MongoDBConfig.from_env(),
        )


# -- Config file loading -----------------------------------------------------

DEFAULT_CONFIG_FILENAME = "brainrun.config.json"

_SEARCH_PATHS = [
    Path.cwd,  # current directory
    lambda: Path.home() / ".brainrun",  # user home
    lambda: Path("/etc/brainrun"),  # system-wide
]


def _find_config_file(filename: str = DEFAULT_CONFIG_FILENAME) -> Path | None:
    """Search well-known locations for a config file.

    Search order:
        1. ``$BRAINRUN_CONFIG`` environment variable (explicit path)
        2. Current working directory
        3. ``~/.brainrun/``
        4. ``/etc/brainrun/``

    Returns:
        Path to the first config file found, or ``None``.
    """
    explicit = os.environ.get("BRAINRUN_CONFIG")
    if explicit:
        path = Path(explicit)
        if path.is_file():
            return path
        return None

    for path_fn in _SEARCH_PATHS:
        candidate = path_fn() / filename
        if candidate.is_file():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> BrainrunConfig:
    """Load brainrun configuration.

    Resolution order:
        1. Explicit *path* argument
        2. Config file found via :func:`_find_config_file`
        3. Environment variables (``BRAINRUN_*``)
        4. Built-in defaults

    Args:
        path: Optional explicit path to a JSON config file.

    Returns:
        Populated :class:`BrainrunConfig` instance.
    """
    config_path: Path | None = Path(path) if path else _find_config_file()

    if config_path and config_path.is_file():
        data = json.loads(config_path.read_text())
        return BrainrunConfig.from_dict(data)

    return BrainrunConfig.from_env()
