from typing import List, Optional, Tuple, Union

from hangouts.errors import ValidationRejected
from hangouts.models import GameType, Outcome, Player, Room

from .base import EndResult, GameEngine, Transition

WIN_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),             # diagonals
)
SYMBOLS = ('X', 'O')


def empty_board() -> List[Optional[str]]:
    return [None] * 9


def find_winner(board) -> Union[None, str, Tuple[str, Tuple[int, int, int]]]:
    """``(symbol, line)`` for a win, ``'draw'`` for a full board, else None."""
    for line in WIN_LINES:
        a, b, c = line
        if board[a] is not None and board[a] == board[b] == board[c]:
            return board[a], line
    if all(cell is not None for cell in board):
        return 'draw'
    return None


class TicTacToeEngine(GameEngine):
    game_type = GameType.TIC_TAC_TOE
    max_players = 2
    move_event = 'make-move'
    auto_next_round = True

    def new_board(self, variant):
        return empty_board()

    def starter(self, room: Room) -> str:
        # alternate who opens so neither seat keeps the first-move advantage
        return SYMBOLS[room.round_count % 2]

    def assign_role(self, room: Room, player: Player) -> None:
        taken = {p.symbol for p in room.players}
        player.symbol = next(s for s in SYMBOLS if s not in taken)

    def start(self, room: Room) -> None:
        room.board = empty_board()
        room.turn = self.starter(room)
        super().start(room)

    def apply_move(self, room: Room, connection_id: str, position=None, **_) -> Transition:
        self.require_playing(room, 'Game not active')
        player = self.require_player(room, connection_id)
        if player.symbol != room.turn:
            raise ValidationRejected('Not your turn')
        position = self.require_int(position, 'Invalid position')
        if not 0 <= position < 9:
            raise ValidationRejected('Invalid position')
        if room.board[position] is not None:
            raise ValidationRejected('Position taken')

        room.board[position] = player.symbol
        room.turn = 'O' if room.turn == 'X' else 'X'
        room.touch()

        next_player = next((p for p in room.players if p.symbol == room.turn), None)
        return Transition(
            events=[('move-made', {
                'display_name': player.display_name,
                'symbol': player.symbol,
                'position': position,
            })],
            if_continuing=[('turn-change', {
                'next_player': next_player.to_dict() if next_player else None,
                'symbol': room.turn,
                'message': f"{next_player.display_name}'s turn ({room.turn})" if next_player else None,
            })],
        )

    def check_end(self, room: Room) -> Optional[EndResult]:
        result = find_winner(room.board)
        if result is None:
            return None
        if result == 'draw':
            return EndResult(
                reason='draw',
                winners=[],
                outcomes={p.connection_id: Outcome.TIE for p in room.players},
                summary={'winner': None, 'symbol': None, 'line': None, 'draw': True,
                         'board': list(room.board)},
            )
        symbol, line = result
        winner = next((p for p in room.players if p.symbol == symbol), None)
        outcomes = {p.connection_id: (Outcome.WIN if p is winner else Outcome.LOSS) for p in room.players}
        return EndResult(
            reason='win',
            winners=[winner] if winner else [],
            outcomes=outcomes,
            summary={
                'winner': winner.display_name if winner else symbol,
                'symbol': symbol,
                'line': list(line),
                'draw': False,
                'board': list(room.board),
            },
        )

    def reset(self, room: Room):
        super().reset(room)
        room.turn = self.starter(room)
        return {'round_count': room.round_count, 'next_starter': room.turn}

    def board_view(self, room: Room):
        return {'board': list(room.board)}

    def turn_view(self, room: Room):
        holder = next((p for p in room.players if p.symbol == room.turn), None)
        return {
            'symbol': room.turn,
            'player_id': holder.connection_id if holder else None,
            'display_name': holder.display_name if holder else None,
        }
