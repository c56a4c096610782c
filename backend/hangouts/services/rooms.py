import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Mapping, Optional, Tuple

from hangouts.models import GameType, Room


def normalize_room_id(room_id) -> str:
    return str(room_id or '').strip().upper()


class _RoomLock:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.RLock()
        # threads holding or waiting on ``lock``
        self.users = 0


class RoomStore:
    """In-memory rooms keyed by upper-cased id.

    Each room id gets its own re-entrant lock; everything that mutates or
    broadcasts a room runs while holding it. Locks are handed out under a
    store-wide lock, so two joins racing on a new id end up serialized and
    only one room is created. A lock lives only while someone holds or waits
    on it, whether or not the room exists or is removed meanwhile.
    """

    def __init__(self, engines: Mapping[GameType, object]):
        self.engines = engines
        self._lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}
        self._room_locks: Dict[str, _RoomLock] = {}

    @contextmanager
    def lock(self, room_id: str):
        room_id = normalize_room_id(room_id)
        with self._lock:
            entry = self._room_locks.get(room_id)
            if entry is None:
                entry = self._room_locks[room_id] = _RoomLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if not entry.users:
                    del self._room_locks[room_id]

    @property
    def lock_count(self) -> int:
        with self._lock:
            return len(self._room_locks)

    def get(self, room_id: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(normalize_room_id(room_id))

    def get_or_create(self, room_id: str, game_type: GameType, variant=None) -> Tuple[Room, bool]:
        """Return ``(room, created)``. Callers hold ``lock(room_id)``."""
        room_id = normalize_room_id(room_id)
        with self._lock:
            room = self._rooms.get(room_id)
            if room is not None:
                return room, False
        engine = self.engines[GameType.parse(game_type)]
        room = engine.create_room(room_id, variant or {})
        with self._lock:
            # another thread may have won without holding the room lock
            existing = self._rooms.setdefault(room_id, room)
        return existing, existing is room

    def remove(self, room_id: str) -> Optional[Room]:
        room_id = normalize_room_id(room_id)
        with self._lock:
            return self._rooms.pop(room_id, None)

    def all(self) -> List[Room]:
        with self._lock:
            return list(self._rooms.values())

    def idle_since(self, max_idle_sec: float) -> List[Room]:
        cutoff = time.time() - max_idle_sec
        return [room for room in self.all() if room.last_activity_at < cutoff]

    def __contains__(self, room_id):
        return self.get(room_id) is not None

    def __len__(self):
        with self._lock:
            return len(self._rooms)
