import threading
from typing import Dict, Mapping, Optional

from hangouts.models import Outcome, StatsRecord


class StatsTracker:
    """Running win/loss/streak counters keyed by connection id.

    Records live for the lifetime of the connection, not the room, so a
    player's record carries across rounds and rematches in the same room.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, StatsRecord] = {}

    def get_or_create(self, connection_id: str, display_name: str) -> StatsRecord:
        with self._lock:
            record = self._records.get(connection_id)
            if record is None:
                record = StatsRecord(connection_id=connection_id, display_name=display_name)
                self._records[connection_id] = record
            else:
                record.display_name = display_name
            return record

    def get(self, connection_id: str) -> Optional[StatsRecord]:
        with self._lock:
            return self._records.get(connection_id)

    def update(self, connection_id: str, outcome) -> Optional[StatsRecord]:
        with self._lock:
            record = self._records.get(connection_id)
            if record is None:
                return None
            record.apply(Outcome(outcome))
            return record

    def apply_outcomes(self, outcomes: Mapping[str, Outcome]) -> None:
        for connection_id, outcome in outcomes.items():
            self.update(connection_id, outcome)

    def rebind(self, old_id: str, new_id: str) -> Optional[StatsRecord]:
        """Move a record to a new connection id (reconnection by name)."""
        with self._lock:
            record = self._records.pop(old_id, None)
            if record is None:
                return None
            record.connection_id = new_id
            self._records[new_id] = record
            return record

    def discard(self, connection_id: str) -> None:
        with self._lock:
            self._records.pop(connection_id, None)
