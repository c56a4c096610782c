import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from hangouts.errors import ValidationRejected
from hangouts.models import BingoCell, GameType, Outcome, Player, Room, RoomStatus, utc_iso

from .base import EndResult, GameEngine, Transition

BOARD_SIZES = {
    'small': 3,   # 3x3
    'medium': 5,  # 5x5, classic BINGO
    'large': 7,   # 7x7
}
NUMBER_RANGES = {
    'small': (1, 25),
    'medium': (1, 75),
    'large': (1, 100),
}
FREE = 'FREE'
AUTO_CALLER = 'Auto-Caller'


@dataclass
class BingoBoard:
    size_key: str
    grid_size: int
    number_min: int
    number_max: int
    called: List[int] = field(default_factory=list)
    last_called: Optional[dict] = None
    winners: List[dict] = field(default_factory=list)
    # connection id -> pattern types already awarded this round
    awarded: Dict[str, Set[str]] = field(default_factory=dict)
    auto_call: bool = False

    @property
    def pool_size(self) -> int:
        return self.number_max - self.number_min + 1

    def in_range(self, number: int) -> bool:
        return self.number_min <= number <= self.number_max

    def uncalled(self) -> List[int]:
        called = set(self.called)
        return [n for n in range(self.number_min, self.number_max + 1) if n not in called]


def win_patterns(size: int):
    """Yield ``(type, indices)`` for every row, column, diagonal and the full card."""
    for row in range(size):
        yield 'row', [row * size + col for col in range(size)]
    for col in range(size):
        yield 'column', [row * size + col for row in range(size)]
    yield 'diagonal', [i * size + i for i in range(size)]
    yield 'diagonal', [i * size + (size - 1 - i) for i in range(size)]
    yield 'full-house', list(range(size * size))


def completed_patterns(card: List[BingoCell], size: int):
    return [(kind, idx) for kind, idx in win_patterns(size) if all(card[i].marked for i in idx)]


class BingoEngine(GameEngine):
    game_type = GameType.BINGO
    max_players = 100
    min_players = 2
    # the caller may start a solo round explicitly
    min_start_players = 1
    move_event = 'call-number'
    default_variant = {'size': 'medium'}

    def __init__(self, settings=None, rng=None):
        super().__init__(settings)
        self.rng = rng or random.Random()
        self.max_winners = int(self.settings.get('BINGO_MAX_WINNERS', 3))

    def normalize_variant(self, variant):
        size = (variant or {}).get('size')
        if isinstance(size, int) and not isinstance(size, bool):
            size = next((k for k, v in BOARD_SIZES.items() if v == size), None)
        elif isinstance(size, str):
            size = size.strip().lower()
            if size.isdigit():
                size = next((k for k, v in BOARD_SIZES.items() if v == int(size)), None)
        if size not in BOARD_SIZES:
            size = self.default_variant['size']
        return {'size': size}

    def new_board(self, variant) -> BingoBoard:
        key = variant['size']
        low, high = NUMBER_RANGES[key]
        return BingoBoard(size_key=key, grid_size=BOARD_SIZES[key], number_min=low, number_max=high)

    def generate_card(self, board: BingoBoard) -> List[BingoCell]:
        total = board.grid_size * board.grid_size
        numbers = self.rng.sample(range(board.number_min, board.number_max + 1), total)
        card = [BingoCell(number=n) for n in numbers]
        if board.grid_size >= 5:
            card[total // 2] = BingoCell(number=FREE, marked=True, marked_by='system', marked_at=time.time())
        return card

    # -- players -----------------------------------------------------------

    def assign_role(self, room: Room, player: Player) -> None:
        player.card = self.generate_card(room.board)
        if room.turn is None or room.find_player(room.turn) is None:
            room.turn = player.connection_id

    def caller(self, room: Room) -> Optional[Player]:
        return room.find_player(room.turn) if room.turn else None

    def rebind_player(self, room: Room, old_id: str, new_id: str) -> None:
        super().rebind_player(room, old_id, new_id)
        if room.turn == old_id:
            room.turn = new_id
        board = room.board
        if old_id in board.awarded:
            board.awarded[new_id] = board.awarded.pop(old_id)
        for entry in board.winners:
            if entry['player_id'] == old_id:
                entry['player_id'] = new_id

    def remove_player(self, room: Room, connection_id: str):
        was_caller = room.turn == connection_id
        player, notes = super().remove_player(room, connection_id)
        if player is None:
            return player, notes
        if was_caller:
            room.board.auto_call = False
            if room.players:
                # the seat after the old caller inherits the role
                successor = room.players[notes['index'] % len(room.players)]
                room.turn = successor.connection_id
                notes['caller_changed'] = {
                    'new_caller': successor.display_name,
                    'caller_id': successor.connection_id,
                    'reason': 'Previous caller disconnected',
                }
            else:
                room.turn = None
        if room.status != RoomStatus.PLAYING:
            room.board.auto_call = False
        return player, notes

    def require_controller(self, room: Room, connection_id: str, action: str) -> None:
        self.require_player(room, connection_id)
        if room.turn != connection_id:
            raise ValidationRejected(f'Only the caller can {action}')

    def auto_call_enabled(self, room: Room) -> bool:
        return room.board.auto_call

    def stop_auto_call(self, room: Room) -> None:
        room.board.auto_call = False

    def claim_caller(self, room: Room, connection_id: str) -> Player:
        player = self.require_player(room, connection_id)
        if self.caller(room) is not None:
            raise ValidationRejected('The current caller is still connected')
        room.turn = connection_id
        room.touch()
        return player

    # -- moves -------------------------------------------------------------

    def apply_move(self, room: Room, connection_id: str, number=None, **_) -> Transition:
        self.require_playing(room)
        player = self.require_player(room, connection_id)
        if room.turn != connection_id:
            raise ValidationRejected('Only the current caller can call numbers!')
        number = self.require_int(number, 'Invalid number for this board size!')
        if not room.board.in_range(number):
            raise ValidationRejected('Invalid number for this board size!')
        if number in room.board.called:
            raise ValidationRejected('Number already called')
        return self.call_number(room, number, player.display_name, connection_id)

    def auto_call(self, room: Room) -> Optional[Transition]:
        """Call a uniformly random uncalled number on the caller's behalf."""
        if room.status != RoomStatus.PLAYING:
            return None
        remaining = room.board.uncalled()
        if not remaining:
            return None
        return self.call_number(room, self.rng.choice(remaining), AUTO_CALLER, room.turn, is_auto=True)

    def call_number(self, room: Room, number: int, called_by: str, caller_id, is_auto=False) -> Transition:
        board = room.board
        now = time.time()
        board.called.append(number)
        board.last_called = {'number': number, 'called_by': called_by, 'timestamp': utc_iso(now)}

        marked_players = []
        for p in room.players:
            for cell in p.card:
                if cell.number == number and not cell.marked:
                    cell.marked = True
                    cell.marked_by = caller_id
                    cell.marked_at = now
                    marked_players.append(p.display_name)
        room.touch()

        events = [('number-called', {
            'number': number,
            'called_by': called_by,
            'marked_players': marked_players,
            'total_called': len(board.called),
            'is_auto': is_auto,
            'timestamp': utc_iso(now),
        })]
        new_winners = self.award_patterns(room)
        if new_winners:
            events.append(('bingo-winners', {
                'winners': new_winners,
                'total_winners': len(board.winners),
            }))
        return Transition(events=events)

    def award_patterns(self, room: Room) -> List[dict]:
        """Record each player's first completed pattern of every type this round."""
        board = room.board
        new_winners = []
        for p in room.players:
            awarded = board.awarded.setdefault(p.connection_id, set())
            for kind, indices in completed_patterns(p.card, board.grid_size):
                if kind in awarded:
                    continue
                awarded.add(kind)
                entry = {
                    'player_id': p.connection_id,
                    'display_name': p.display_name,
                    'win_type': kind,
                    'pattern': indices,
                    'timestamp': utc_iso(),
                }
                board.winners.append(entry)
                new_winners.append(entry)
        return new_winners

    def winning_players(self, room: Room) -> List[Player]:
        ids = []
        for entry in room.board.winners:
            if entry['player_id'] not in ids:
                ids.append(entry['player_id'])
        return [p for p in (room.find_player(i) for i in ids) if p is not None]

    def check_end(self, room: Room) -> Optional[EndResult]:
        board = room.board
        distinct = {w['player_id'] for w in board.winners}
        if any(w['win_type'] == 'full-house' for w in board.winners):
            reason = 'full-house'
        elif len(distinct) >= self.max_winners:
            reason = 'max-winners'
        elif len(board.called) >= board.pool_size:
            reason = 'no-numbers-left'
        else:
            return None

        winners = self.winning_players(room)
        if winners:
            win_ids = {p.connection_id for p in winners}
            outcomes = {p.connection_id: (Outcome.WIN if p.connection_id in win_ids else Outcome.LOSS)
                        for p in room.players}
        else:
            outcomes = {p.connection_id: Outcome.TIE for p in room.players}
        board.auto_call = False
        return EndResult(
            reason=reason,
            winners=winners,
            outcomes=outcomes,
            summary={
                'winner': winners[0].display_name if winners else None,
                'winners': [dict(w) for w in board.winners],
                'draw': not winners,
                'called_numbers': list(board.called),
                'message': 'All numbers called' if reason == 'no-numbers-left' else None,
            },
        )

    def reset(self, room: Room):
        super().reset(room)
        for p in room.players:
            p.card = self.generate_card(room.board)
        caller = self.caller(room)
        return {'round_count': room.round_count, 'next_starter': caller.display_name if caller else None}

    # -- views -------------------------------------------------------------

    def game_stats(self, room: Room):
        board = room.board
        return {
            'total_players': len(room.players),
            'numbers_called': len(board.called),
            'total_numbers': board.pool_size,
            'called_percentage': round(len(board.called) * 100 / board.pool_size),
            'winners': len(board.winners),
            'status': room.status.value,
        }

    def board_view(self, room: Room):
        board = room.board
        return {
            'board_size': board.size_key,
            'grid_size': board.grid_size,
            'number_range': {'min': board.number_min, 'max': board.number_max},
            'called_numbers': list(board.called),
            'last_called': board.last_called,
            'winners': [dict(w) for w in board.winners],
            'auto_call_enabled': board.auto_call,
            'game_stats': self.game_stats(room),
        }

    def turn_view(self, room: Room):
        caller = self.caller(room)
        return {
            'caller_id': caller.connection_id if caller else None,
            'display_name': caller.display_name if caller else None,
        }
