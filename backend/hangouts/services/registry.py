import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from hangouts.models import GameType


@dataclass
class Binding:
    connection_id: str
    room_id: str
    game_type: GameType
    display_name: str
    role: dict = field(default_factory=dict)


@dataclass
class Connection:
    connection_id: str
    connected_at: float = field(default_factory=time.time)
    binding: Optional[Binding] = None


class ConnectionRegistry:
    """Live connections and the room each one has joined.

    Pure bookkeeping: a lookup miss just means "not joined".
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str) -> Connection:
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                conn = Connection(connection_id)
                self._connections[connection_id] = conn
            return conn

    def unregister(self, connection_id: str) -> Optional[Binding]:
        """Forget the connection, returning the binding it had (if any)."""
        with self._lock:
            conn = self._connections.pop(connection_id, None)
        return conn.binding if conn else None

    def bind(self, connection_id, room_id, game_type, display_name, role=None) -> Binding:
        binding = Binding(connection_id, room_id, game_type, display_name, dict(role or {}))
        with self._lock:
            conn = self._connections.setdefault(connection_id, Connection(connection_id))
            conn.binding = binding
        return binding

    def unbind(self, connection_id: str, room_id: Optional[str] = None) -> Optional[Binding]:
        with self._lock:
            conn = self._connections.get(connection_id)
            if not conn or not conn.binding:
                return None
            if room_id is not None and conn.binding.room_id != room_id:
                return None
            binding, conn.binding = conn.binding, None
            return binding

    def lookup(self, connection_id: str) -> Optional[Binding]:
        with self._lock:
            conn = self._connections.get(connection_id)
            return conn.binding if conn else None

    def members(self, room_id: str) -> List[str]:
        with self._lock:
            return [cid for cid, conn in self._connections.items()
                    if conn.binding and conn.binding.room_id == room_id]

    def __len__(self):
        with self._lock:
            return len(self._connections)
