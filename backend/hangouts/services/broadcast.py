"""Snapshot serialization and Socket.IO delivery.

Snapshots are plain JSON-safe dicts built field by field from the room, so
timer handles, locks and other runtime objects never reach a client.
"""

from typing import Any, Dict


def socket_room(room_id: str) -> str:
    return f"room:{room_id}"


def snapshot(room, engine) -> Dict[str, Any]:
    data = {
        'id': room.id,
        'game_type': room.game_type.value,
        'status': room.status.value,
        'variant': dict(room.variant),
        'max_players': room.max_players,
        'players': [p.to_dict() for p in room.players],
        'turn': engine.turn_view(room),
        'round_count': room.round_count,
        'round_history': list(room.round_history),
        'last_result': room.last_result,
        'messages': [m.to_dict() for m in room.chat_log],
        'terminating': room.terminating,
    }
    data.update(engine.board_view(room))
    return data


def room_summary(room) -> Dict[str, Any]:
    return {
        'id': room.id,
        'game_type': room.game_type.value,
        'status': room.status.value,
        'players': len(room.players),
        'max_players': room.max_players,
        'round_count': room.round_count,
    }


class SocketIOBroadcaster:
    """Delivers events to a whole room, to the sender only, or to everyone but the sender."""

    def __init__(self, socketio, namespace: str = '/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def enter(self, connection_id: str, room_id: str) -> None:
        self.socketio.server.enter_room(connection_id, socket_room(room_id), namespace=self.namespace)

    def leave(self, connection_id: str, room_id: str) -> None:
        self.socketio.server.leave_room(connection_id, socket_room(room_id), namespace=self.namespace)

    def close(self, room_id: str) -> None:
        self.socketio.close_room(socket_room(room_id), namespace=self.namespace)

    def to_room(self, room_id: str, event: str, payload=None) -> None:
        self.socketio.emit(event, payload, to=socket_room(room_id), namespace=self.namespace)

    def to_sender(self, connection_id: str, event: str, payload=None) -> None:
        self.socketio.emit(event, payload, to=connection_id, namespace=self.namespace)

    def to_others(self, room_id: str, connection_id: str, event: str, payload=None) -> None:
        self.socketio.emit(event, payload, to=socket_room(room_id), skip_sid=connection_id,
                           namespace=self.namespace)
