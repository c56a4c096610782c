import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from hangouts.errors import NotInRoom, ValidationRejected
from hangouts.models import GameType, Outcome, Player, Room, RoomStatus, utc_iso

from .base import EndResult, GameEngine, Transition

GRID_SIZES = {
    'small': 3,   # 3x3 dots, 2x2 boxes
    'medium': 4,  # 4x4 dots, 3x3 boxes
    'large': 5,   # 5x5 dots, 4x4 boxes
    'huge': 6,    # 6x6 dots, 5x5 boxes
}
PLAYER_COLORS = (
    '#FF6B6B', '#4ECDC4', '#45B7D1', '#96CEB4',
    '#FECA57', '#FF9FF3', '#54A0FF', '#5F27CD',
)
LINE_TYPES = ('horizontal', 'vertical')


def _grid(rows: int, cols: int):
    return [[None] * cols for _ in range(rows)]


@dataclass
class DotsBoard:
    size_key: str
    dot_count: int
    # horizontal[r][c] joins dot (r, c) to (r, c+1); vertical[r][c] joins (r, c) to (r+1, c).
    # A drawn line or completed box holds an owner dict, undrawn is None.
    horizontal: List[List[Optional[dict]]] = field(default_factory=list)
    vertical: List[List[Optional[dict]]] = field(default_factory=list)
    boxes: List[List[Optional[dict]]] = field(default_factory=list)
    scores: Dict[str, int] = field(default_factory=dict)
    completed: int = 0
    last_move: Optional[dict] = None
    started_at: Optional[float] = None

    @classmethod
    def empty(cls, size_key: str) -> 'DotsBoard':
        n = GRID_SIZES[size_key]
        return cls(size_key=size_key, dot_count=n,
                   horizontal=_grid(n, n - 1), vertical=_grid(n - 1, n), boxes=_grid(n - 1, n - 1))

    @property
    def box_count(self) -> int:
        return self.dot_count - 1

    @property
    def total_boxes(self) -> int:
        return self.box_count * self.box_count

    @property
    def total_lines(self) -> int:
        return 2 * self.dot_count * (self.dot_count - 1)

    def lines(self, line_type: str):
        return self.horizontal if line_type == 'horizontal' else self.vertical

    def in_bounds(self, line_type: str, row: int, col: int) -> bool:
        grid = self.lines(line_type)
        return 0 <= row < len(grid) and 0 <= col < len(grid[row])

    def drawn_lines(self) -> int:
        return sum(1 for grid in (self.horizontal, self.vertical) for row in grid for line in row if line)

    def sides_drawn(self, row: int, col: int) -> int:
        return sum(1 for side in (
            self.horizontal[row][col], self.horizontal[row + 1][col],
            self.vertical[row][col], self.vertical[row][col + 1],
        ) if side)

    def adjacent_boxes(self, line_type: str, row: int, col: int):
        if line_type == 'horizontal':
            candidates = [(row - 1, col), (row, col)]  # above, below
        else:
            candidates = [(row, col - 1), (row, col)]  # left, right
        return [(r, c) for r, c in candidates if 0 <= r < self.box_count and 0 <= c < self.box_count]

    def free_lines(self):
        for line_type in LINE_TYPES:
            for r, row in enumerate(self.lines(line_type)):
                for c, line in enumerate(row):
                    if line is None:
                        yield line_type, r, c


class DotsEngine(GameEngine):
    game_type = GameType.DOTS_AND_BOXES
    max_players = 8
    move_event = 'draw-line'
    default_variant = {'size': 'medium'}

    def __init__(self, settings=None, rng=None):
        super().__init__(settings)
        self.rng = rng or random.Random()

    def normalize_variant(self, variant):
        size = (variant or {}).get('size')
        if isinstance(size, str):
            size = size.strip().lower()
            if size.isdigit():
                size = int(size)
        if isinstance(size, int) and not isinstance(size, bool):
            size = next((k for k, v in GRID_SIZES.items() if v == size), None)
        if size not in GRID_SIZES:
            size = self.default_variant['size']
        return {'size': size}

    def new_board(self, variant) -> DotsBoard:
        return DotsBoard.empty(variant['size'])

    # -- players -----------------------------------------------------------

    def assign_role(self, room: Room, player: Player) -> None:
        used = {p.color for p in room.players}
        player.color = next((c for c in PLAYER_COLORS if c not in used),
                            PLAYER_COLORS[len(room.players) % len(PLAYER_COLORS)])
        if room.turn is None:
            room.turn = 0

    def current_player(self, room: Room) -> Optional[Player]:
        if not room.players or room.turn is None:
            return None
        return room.players[room.turn % len(room.players)]

    def next_active(self, room: Room, start: int) -> int:
        """First seat from ``start`` onwards that is not spectating."""
        count = len(room.players)
        if not count:
            return 0
        for step in range(count):
            idx = (start + step) % count
            if not room.players[idx].is_spectator:
                return idx
        return start % count

    def rebind_player(self, room: Room, old_id: str, new_id: str) -> None:
        super().rebind_player(room, old_id, new_id)
        board = room.board
        if old_id in board.scores:
            board.scores[new_id] = board.scores.pop(old_id)
        for grid in (board.horizontal, board.vertical, board.boxes):
            for row in grid:
                for owner in row:
                    if owner and owner['player_id'] == old_id:
                        owner['player_id'] = new_id

    def remove_player(self, room: Room, connection_id: str):
        player, notes = super().remove_player(room, connection_id)
        if player is None:
            return player, notes
        idx = notes['index']
        if not room.players:
            room.turn = 0
            return player, notes
        old_turn = room.turn or 0
        turn = old_turn - 1 if idx < old_turn else old_turn
        # when the mover leaves, the next active seat slides into their index
        room.turn = self.next_active(room, turn % len(room.players))
        notes['turn_changed'] = idx == old_turn
        return player, notes

    def toggle_spectator(self, room: Room, connection_id: str):
        """Flip a player's spectator flag; returns ``(player, turn_changed)``."""
        player = self.require_player(room, connection_id)
        player.is_spectator = not player.is_spectator
        turn_changed = False
        if player.is_spectator and room.player_index(connection_id) == room.turn:
            room.turn = self.next_active(room, room.turn + 1)
            turn_changed = room.player_index(connection_id) != room.turn
        room.touch()
        return player, turn_changed

    def start(self, room: Room) -> None:
        # a round that lost its table starts over rather than resuming
        room.board = self.new_board(room.variant)
        room.board.started_at = time.time()
        room.turn = self.next_active(room, room.turn if room.turn is not None else 0)
        super().start(room)

    # -- moves -------------------------------------------------------------

    def apply_move(self, room: Room, connection_id: str, line_type=None, row=None, col=None, **_) -> Transition:
        self.require_playing(room)
        idx = room.player_index(connection_id)
        if idx < 0:
            raise NotInRoom(room.id)
        if room.players[idx].is_spectator:
            raise ValidationRejected('Spectators cannot draw lines')
        if idx != room.turn:
            raise ValidationRejected('Not your turn')
        if line_type not in LINE_TYPES:
            raise ValidationRejected('Invalid line type')
        row = self.require_int(row, 'Invalid line position')
        col = self.require_int(col, 'Invalid line position')
        board = room.board
        if not board.in_bounds(line_type, row, col):
            raise ValidationRejected('Invalid line position')
        if board.lines(line_type)[row][col] is not None:
            raise ValidationRejected('Line already drawn')

        player = room.players[idx]
        now = time.time()
        owner = {'player_id': player.connection_id, 'display_name': player.display_name,
                 'color': player.color, 'timestamp': utc_iso(now)}
        board.lines(line_type)[row][col] = owner

        completed = []
        for r, c in board.adjacent_boxes(line_type, row, col):
            # a box is claimed once, by whoever draws its fourth side
            if board.boxes[r][c] is None and board.sides_drawn(r, c) == 4:
                board.boxes[r][c] = dict(owner, completing_line={'line_type': line_type, 'row': row, 'col': col})
                completed.append({'row': r, 'col': c})

        if completed:
            board.scores[player.connection_id] = board.scores.get(player.connection_id, 0) + len(completed)
            board.completed += len(completed)
        else:
            room.turn = self.next_active(room, room.turn + 1)

        board.last_move = {
            'player_id': player.connection_id,
            'display_name': player.display_name,
            'line_type': line_type,
            'row': row,
            'col': col,
            'completed_boxes': len(completed),
            'timestamp': utc_iso(now),
        }
        room.touch()

        next_player = self.current_player(room)
        transition = Transition(
            events=[('line-drawn', {
                'display_name': player.display_name,
                'player_id': player.connection_id,
                'line_type': line_type,
                'row': row,
                'col': col,
                'completed_boxes': completed,
                'new_score': board.scores.get(player.connection_id, 0),
                'consecutive_turn': bool(completed),
            })],
        )
        if not completed:
            transition.if_continuing.append(('turn-change', {
                'next_player': next_player.to_dict() if next_player else None,
                'index': room.turn,
            }))
        return transition

    def skip_turn(self, room: Room, connection_id: str) -> Transition:
        """Pass without drawing; the turn moves on as after a line that completes nothing."""
        self.require_playing(room)
        idx = room.player_index(connection_id)
        if idx < 0:
            raise NotInRoom(room.id)
        if idx != room.turn:
            raise ValidationRejected('Not your turn')
        player = room.players[idx]
        room.turn = self.next_active(room, room.turn + 1)
        room.touch()
        next_player = self.current_player(room)
        return Transition(events=[('turn-skipped', {
            'display_name': player.display_name,
            'next_player': next_player.display_name if next_player else None,
            'index': room.turn,
        })])

    def check_end(self, room: Room) -> Optional[EndResult]:
        board = room.board
        if board.completed < board.total_boxes:
            return None
        rankings = []
        for p in room.players:
            score = board.scores.get(p.connection_id, 0)
            rankings.append({
                'player_id': p.connection_id,
                'display_name': p.display_name,
                'score': score,
                'percentage': round(score * 100 / board.total_boxes),
            })
        # sort is stable, so equal scores keep seat order
        rankings.sort(key=lambda r: r['score'], reverse=True)
        top = rankings[0]['score'] if rankings else 0
        winner_ids = [r['player_id'] for r in rankings if r['score'] == top]
        is_draw = len(winner_ids) > 1
        outcomes = {}
        for p in room.players:
            if p.connection_id not in winner_ids:
                if p.is_spectator:
                    continue
                outcomes[p.connection_id] = Outcome.LOSS
            else:
                outcomes[p.connection_id] = Outcome.TIE if is_draw else Outcome.WIN
        winners = [room.find_player(pid) for pid in winner_ids]
        return EndResult(
            reason='draw' if is_draw else 'win',
            winners=winners,
            outcomes=outcomes,
            summary={
                'winner': None if is_draw else winners[0].display_name,
                'winners': [r for r in rankings if r['player_id'] in winner_ids],
                'rankings': rankings,
                'draw': is_draw,
                'total_boxes': board.total_boxes,
                'total_moves': board.drawn_lines(),
                'duration_sec': round(time.time() - board.started_at, 1) if board.started_at else None,
            },
        )

    def reset(self, room: Room):
        super().reset(room)
        for idx, p in enumerate(room.players):
            p.color = PLAYER_COLORS[idx % len(PLAYER_COLORS)]
        # rotate the opening seat between rounds
        room.turn = self.next_active(room, room.round_count % len(room.players)) if room.players else 0
        if room.status == RoomStatus.PLAYING:
            room.board.started_at = time.time()
        starter = self.current_player(room)
        return {'round_count': room.round_count, 'next_starter': starter.display_name if starter else None}

    def hint(self, room: Room, connection_id: str) -> dict:
        """Suggest a line: complete a box if possible, else avoid handing one over."""
        self.require_playing(room)
        if room.player_index(connection_id) != room.turn:
            raise ValidationRejected('Not your turn')
        board = room.board
        free = list(board.free_lines())
        if not free:
            raise ValidationRejected('No lines left to draw')

        def sides_after(move):
            return [board.sides_drawn(r, c) + 1 for r, c in board.adjacent_boxes(*move)]

        completing = [m for m in free if 4 in sides_after(m)]
        safe = [m for m in free if 3 not in sides_after(m)]
        if completing:
            move, reason = self.rng.choice(completing), 'Completes a box'
        elif safe:
            move, reason = self.rng.choice(safe), 'Does not give away a box'
        else:
            move, reason = self.rng.choice(free), 'No safe lines left'
        line_type, row, col = move
        return {'line_type': line_type, 'row': row, 'col': col, 'reason': reason}

    # -- views -------------------------------------------------------------

    def game_stats(self, room: Room):
        board = room.board
        current = self.current_player(room)
        return {
            'total_boxes': board.total_boxes,
            'completed_boxes': board.completed,
            'box_progress': round(board.completed * 100 / board.total_boxes),
            'total_lines': board.total_lines,
            'drawn_lines': board.drawn_lines(),
            'current_player': current.display_name if current else None,
        }

    def board_view(self, room: Room):
        board = room.board
        return {
            'grid_size': board.size_key,
            'dot_count': board.dot_count,
            'box_count': board.box_count,
            'horizontal_lines': [list(row) for row in board.horizontal],
            'vertical_lines': [list(row) for row in board.vertical],
            'boxes': [list(row) for row in board.boxes],
            'scores': dict(board.scores),
            'completed_boxes': board.completed,
            'total_boxes': board.total_boxes,
            'last_move': board.last_move,
            'game_stats': self.game_stats(room),
        }

    def turn_view(self, room: Room):
        current = self.current_player(room)
        return {
            'index': room.turn,
            'player_id': current.connection_id if current else None,
            'display_name': current.display_name if current else None,
        }
