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

"""In-memory implementation of EventStore for testing."""

import copy
import threading
from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from .persistence import EventStore


class MemoryEventStore(EventStore):
    """In-memory event log.

    Used for testing without external database dependencies.
    Events are deep-copied on the way in and out for isolation.
    """

    def __init__(self):
        self._events: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, brain_run_id: str, event: dict[str, Any]) -> int:
        """Append an event and return its sequence number."""
        with self._lock:
            log = self._events[brain_run_id]
            log.append(copy.deepcopy(event))
            return len(log) - 1

    def get_events(self, brain_run_id: str) -> Sequence[dict[str, Any]]:
        """Return all events of a run in append order."""
        with self._lock:
            return copy.deepcopy(self._events.get(brain_run_id, []))

    def list_runs(self) -> Sequence[str]:
        """Return the ids of all runs with at least one event."""
        with self._lock:
            return [run for run, log in self._events.items() if log]

    def delete_run(self, brain_run_id: str) -> int:
        """Delete a run's events."""
        with self._lock:
            return len(self._events.pop(brain_run_id, []))

    def clear(self) -> None:
        """Clear all data."""
        with self._lock:
            self._events.clear()
