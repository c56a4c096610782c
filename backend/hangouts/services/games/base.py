from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from hangouts.errors import CapacityRejected, NotInRoom, ValidationRejected
from hangouts.models import GameType, Outcome, Player, Room, RoomStatus


@dataclass
class Transition:
    """What an accepted move changed, as semantic events for the room.

    ``events`` are always broadcast; ``if_continuing`` only when the move did
    not end the round (e.g. ``turn-change``).
    """

    events: List[Tuple[str, dict]] = field(default_factory=list)
    if_continuing: List[Tuple[str, dict]] = field(default_factory=list)


@dataclass
class EndResult:
    reason: str
    winners: List[Player]
    outcomes: Dict[str, Outcome]
    summary: Dict[str, Any]

    @property
    def is_draw(self) -> bool:
        return bool(self.summary.get('draw'))


class GameEngine:
    """Rules for one game type. Engines mutate only the room they are given."""

    game_type: GameType
    max_players = 2
    # players needed before a waiting room starts on its own
    min_players = 2
    # players needed for an explicit start-game
    min_start_players = 2
    move_event = ''
    default_variant: Dict[str, Any] = {}
    # schedule the next round automatically once one finishes
    auto_next_round = False

    def __init__(self, settings=None):
        self.settings = dict(settings or {})

    # -- rooms -------------------------------------------------------------

    def normalize_variant(self, variant) -> Dict[str, Any]:
        return dict(self.default_variant)

    def new_board(self, variant: Dict[str, Any]):
        raise NotImplementedError

    def create_room(self, room_id: str, variant=None) -> Room:
        variant = self.normalize_variant(variant or {})
        return Room.create(
            room_id,
            self.game_type,
            self.max_players,
            self.new_board(variant),
            variant=variant,
            history_limit=int(self.settings.get('ROUND_HISTORY_LIMIT', 50)),
            chat_limit=int(self.settings.get('CHAT_HISTORY_LIMIT', 50)),
        )

    # -- players -----------------------------------------------------------

    def join(self, room: Room, connection_id: str, display_name: str, stats) -> Player:
        if room.is_full:
            raise CapacityRejected(f'Room is full! Maximum {room.max_players} players allowed.')
        player = Player(connection_id=connection_id, display_name=display_name, stats=stats)
        self.assign_role(room, player)
        room.players.append(player)
        room.touch()
        return player

    def assign_role(self, room: Room, player: Player) -> None:
        pass

    def rebind_player(self, room: Room, old_id: str, new_id: str) -> None:
        """Carry engine state keyed by connection id over to a new connection."""
        player = room.find_player(old_id)
        if player is not None:
            player.connection_id = new_id

    def remove_player(self, room: Room, connection_id: str) -> Tuple[Optional[Player], Dict[str, Any]]:
        """Drop a player; returns ``(player, notes)`` where notes describe reassignments."""
        idx = room.player_index(connection_id)
        if idx < 0:
            return None, {}
        player = room.players.pop(idx)
        if room.status == RoomStatus.PLAYING and len(room.players) < self.min_players:
            room.status = RoomStatus.WAITING
        room.touch()
        return player, {'index': idx}

    # -- round lifecycle ---------------------------------------------------

    def can_auto_start(self, room: Room) -> bool:
        return room.status == RoomStatus.WAITING and len(room.players) >= self.min_players

    def can_start(self, room: Room) -> bool:
        return room.status == RoomStatus.WAITING and len(room.players) >= self.min_start_players

    def start(self, room: Room) -> None:
        room.status = RoomStatus.PLAYING
        room.touch()

    def require_controller(self, room: Room, connection_id: str, action: str) -> None:
        """Raise if this connection may not ``action`` (start, reset...) the round."""
        self.require_player(room, connection_id)

    def auto_call_enabled(self, room: Room) -> bool:
        return False

    def stop_auto_call(self, room: Room) -> None:
        pass

    def apply_move(self, room: Room, connection_id: str, **move) -> Transition:
        raise NotImplementedError

    def check_end(self, room: Room) -> Optional[EndResult]:
        raise NotImplementedError

    def reset(self, room: Room) -> Dict[str, Any]:
        """Fresh board for the next round; ``round_count`` is left alone."""
        room.board = self.new_board(room.variant)
        room.status = RoomStatus.PLAYING if len(room.players) >= self.min_players else RoomStatus.WAITING
        room.touch()
        return {'round_count': room.round_count, 'next_starter': None}

    # -- views -------------------------------------------------------------

    def board_view(self, room: Room) -> Dict[str, Any]:
        return {}

    def turn_view(self, room: Room):
        return room.turn

    # -- helpers -----------------------------------------------------------

    def require_playing(self, room: Room, message: str = 'Game is not active') -> None:
        if room.status != RoomStatus.PLAYING:
            raise ValidationRejected(message)

    def require_player(self, room: Room, connection_id: str) -> Player:
        player = room.find_player(connection_id)
        if player is None:
            raise NotInRoom(room.id)
        return player

    @staticmethod
    def require_int(value, message: str) -> int:
        if isinstance(value, bool):
            raise ValidationRejected(message)
        if isinstance(value, str) and value.strip().lstrip('-').isdigit():
            value = int(value.strip())
        if not isinstance(value, int):
            raise ValidationRejected(message)
        return value
