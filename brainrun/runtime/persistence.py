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

"""brainrun event log abstraction.

The executor never touches a database. Hosts persist the event stream
through an :class:`EventStore`, usually by registering an
:class:`EventStoreAdapter` with the runner, and replay it later to
monitor or resume a run.
"""

from abc import abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from .events import BrainEvent, event_from_dict


@runtime_checkable
class EventAdapter(Protocol):
    """Receives every event of a run, in order."""

    def dispatch(self, event: BrainEvent) -> None: ...


@runtime_checkable
class EventStore(Protocol):
    """Append-only event log keyed by run id.

    Events are stored in their wire form and returned in append order.
    """

    @abstractmethod
    def append(self, brain_run_id: str, event: dict[str, Any]) -> int:
        """Append an event and return its sequence number (from 0)."""
        ...

    @abstractmethod
    def get_events(self, brain_run_id: str) -> Sequence[dict[str, Any]]:
        """Return all events of a run in append order."""
        ...

    @abstractmethod
    def list_runs(self) -> Sequence[str]:
        """Return the ids of all runs with at least one event."""
        ...

    @abstractmethod
    def delete_run(self, brain_run_id: str) -> int:
        """Delete a run's events and return how many were removed."""
        ...


class EventStoreAdapter:
    """Appends every dispatched event to an event store.

    Usage:
        store = MemoryEventStore()
        runner = BrainRunner(client, adapters=[EventStoreAdapter(store)])
    """

    def __init__(self, store: EventStore):
        self.store = store

    def dispatch(self, event: BrainEvent) -> None:
        self.store.append(event.brain_run_id, event.to_dict())

    def load(self, brain_run_id: str) -> list[BrainEvent]:
        """Read a run's log back as typed events."""
        return [event_from_dict(data) for data in self.store.get_events(brain_run_id)]
