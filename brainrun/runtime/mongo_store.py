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

"""MongoDB implementation of EventStore.

Each event is one document in the ``brain_events`` collection::

    {"brain_run_id": ..., "sequence": 0, "type": "brain:start", "event": {...}}

A unique ``(brain_run_id, sequence)`` index keeps the log strictly
ordered even if two writers race on the same run.
"""

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from .persistence import EventStore

if TYPE_CHECKING:
    from ..config import MongoDBConfig

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "brain_events"

_APPEND_ATTEMPTS = 5


def _current_time_ms() -> int:
    """Get current time in milliseconds."""
    return int(time.time() * 1000)


class MongoEventStore(EventStore):
    """MongoDB-backed event log.

    Usage:
        store = MongoEventStore("mongodb://localhost:27017", "brainrun")
        store.append(brain_run_id, event.to_dict())

        # Or create from a BrainrunConfig / MongoDBConfig:
        from brainrun.config import load_config
        config = load_config()
        store = MongoEventStore.from_config(config.mongodb)
    """

    def __init__(
        self,
        connection_string: str = "",
        database_name: str = "brainrun",
        create_indexes: bool = True,
        client: Any = None,
    ):
        """Initialize the MongoDB store.

        Args:
            connection_string: MongoDB connection string
            database_name: Database name (default: "brainrun")
            create_indexes: Whether to create indexes on initialization
            client: Optional pre-built MongoClient (e.g. mongomock.MongoClient for testing)
        """
        if client is not None:
            self._client = client
        else:
            self._client = MongoClient(connection_string)

        self._db: Database = self._client[database_name]

        if create_indexes:
            self._ensure_indexes()

    @classmethod
    def from_config(
        cls,
        config: "MongoDBConfig",
        create_indexes: bool = True,
    ) -> "MongoEventStore":
        """Create a store from a MongoDBConfig instance."""
        return cls(
            connection_string=config.connection_string(),
            database_name=config.database,
            create_indexes=create_indexes,
        )

    def _ensure_indexes(self) -> None:
        events = self._db[EVENTS_COLLECTION]
        events.create_index(
            [("brain_run_id", ASCENDING), ("sequence", ASCENDING)],
            unique=True,
            name="event_run_sequence_index",
        )
        events.create_index("type", name="event_type_index")

    def _next_sequence(self, brain_run_id: str) -> int:
        last = self._db[EVENTS_COLLECTION].find_one(
            {"brain_run_id": brain_run_id},
            sort=[("sequence", DESCENDING)],
            projection={"sequence": 1},
        )
        return 0 if last is None else last["sequence"] + 1

    def append(self, brain_run_id: str, event: dict[str, Any]) -> int:
        """Append an event and return its sequence number.

        Raises:
            DuplicateKeyError: If concurrent writers keep claiming the same sequence
        """
        attempt = 0
        while True:
            attempt += 1
            sequence = self._next_sequence(brain_run_id)
            try:
                self._db[EVENTS_COLLECTION].insert_one(
                    {
                        "brain_run_id": brain_run_id,
                        "sequence": sequence,
                        "type": event.get("type"),
                        "created": _current_time_ms(),
                        "event": event,
                    }
                )
                return sequence
            except DuplicateKeyError:
                if attempt == _APPEND_ATTEMPTS:
                    raise
                logger.debug(
                    "Sequence %d taken for brain_run_id=%s, retrying", sequence, brain_run_id
                )

    def get_events(self, brain_run_id: str) -> Sequence[dict[str, Any]]:
        """Return all events of a run in append order."""
        docs = self._db[EVENTS_COLLECTION].find({"brain_run_id": brain_run_id}).sort(
            "sequence", ASCENDING
        )
        return [doc["event"] for doc in docs]

    def list_runs(self) -> Sequence[str]:
        """Return the ids of all runs with at least one event."""
        return sorted(self._db[EVENTS_COLLECTION].distinct("brain_run_id"))

    def delete_run(self, brain_run_id: str) -> int:
        """Delete a run's events."""
        result = self._db[EVENTS_COLLECTION].delete_many({"brain_run_id": brain_run_id})
        return result.deleted_count

    def drop_database(self) -> None:
        """Drop the entire database. Use with caution!"""
        self._client.drop_database(self._db.name)

    def close(self) -> None:
        """Close the MongoDB connection."""
        self._client.close()
