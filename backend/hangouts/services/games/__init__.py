"""Game rule engines.

Pure(ish) rules for each game type: validate a move against a room, apply
the transition and detect the end of a round. Transport, timers and stats
live in the session controller.
"""

from hangouts.models import GameType

from .base import EndResult, GameEngine, Transition
from .bingo import BingoEngine
from .dots import DotsEngine
from .tictactoe import TicTacToeEngine


def build_engines(settings=None, rng=None):
    return {
        GameType.TIC_TAC_TOE: TicTacToeEngine(settings),
        GameType.BINGO: BingoEngine(settings, rng=rng),
        GameType.DOTS_AND_BOXES: DotsEngine(settings, rng=rng),
    }


__all__ = [
    'BingoEngine',
    'DotsEngine',
    'EndResult',
    'GameEngine',
    'TicTacToeEngine',
    'Transition',
    'build_engines',
]
