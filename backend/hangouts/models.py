import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, List, Optional


class GameType(str, Enum):
    TIC_TAC_TOE = 'tic-tac-toe'
    BINGO = 'bingo'
    DOTS_AND_BOXES = 'dots-and-boxes'

    @classmethod
    def parse(cls, value) -> 'GameType':
        """Accept the canonical names plus the short forms old clients send."""
        if isinstance(value, cls):
            return value
        key = str(value or '').strip().lower().replace('_', '-')
        aliases = {
            'tictactoe': cls.TIC_TAC_TOE,
            'ttt': cls.TIC_TAC_TOE,
            'dotslines': cls.DOTS_AND_BOXES,
            'dots': cls.DOTS_AND_BOXES,
            'dots-and-lines': cls.DOTS_AND_BOXES,
        }
        if key in aliases:
            return aliases[key]
        return cls(key)


class RoomStatus(str, Enum):
    WAITING = 'waiting'
    PLAYING = 'playing'
    FINISHED = 'finished'
    STOPPED = 'stopped'


class Outcome(str, Enum):
    WIN = 'win'
    LOSS = 'loss'
    TIE = 'tie'


def utc_iso(ts: Optional[float] = None) -> str:
    return datetime.fromtimestamp(ts if ts is not None else time.time(), tz=timezone.utc).isoformat()


@dataclass
class StatsRecord:
    connection_id: str
    display_name: str
    wins: int = 0
    losses: int = 0
    ties: int = 0
    games_played: int = 0
    current_streak: int = 0
    best_streak: int = 0
    last_active: float = field(default_factory=time.time)

    def apply(self, outcome: Outcome) -> None:
        self.games_played += 1
        self.last_active = time.time()
        if outcome == Outcome.WIN:
            self.wins += 1
            self.current_streak += 1
            self.best_streak = max(self.best_streak, self.current_streak)
        elif outcome == Outcome.LOSS:
            self.losses += 1
            self.current_streak = 0
        else:
            # ties leave the streak alone
            self.ties += 1

    def to_dict(self):
        return {
            'display_name': self.display_name,
            'wins': self.wins,
            'losses': self.losses,
            'ties': self.ties,
            'games_played': self.games_played,
            'current_streak': self.current_streak,
            'best_streak': self.best_streak,
        }


@dataclass
class BingoCell:
    number: Any  # int, or 'FREE' for the centre of 5x5 and 7x7 cards
    marked: bool = False
    marked_by: Optional[str] = None
    marked_at: Optional[float] = None

    def to_dict(self):
        return {
            'number': self.number,
            'marked': self.marked,
            'marked_by': self.marked_by,
            'marked_at': utc_iso(self.marked_at) if self.marked_at else None,
        }


@dataclass
class Player:
    connection_id: str
    display_name: str
    stats: StatsRecord
    symbol: Optional[str] = None
    color: Optional[str] = None
    card: Optional[List[BingoCell]] = None
    # dots-and-boxes: keeps the seat but is skipped by the turn rotation
    is_spectator: bool = False
    joined_at: float = field(default_factory=time.time)

    def to_dict(self):
        data = {
            'id': self.connection_id,
            'display_name': self.display_name,
            'stats': self.stats.to_dict() if self.stats else None,
            'joined_at': utc_iso(self.joined_at),
        }
        if self.symbol is not None:
            data['symbol'] = self.symbol
        if self.color is not None:
            data['color'] = self.color
        if self.card is not None:
            data['card'] = [cell.to_dict() for cell in self.card]
        if self.is_spectator:
            data['is_spectator'] = True
        return data


@dataclass
class ChatMessage:
    id: int
    author: str
    connection_id: str
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            'id': self.id,
            'author': self.author,
            'text': self.text,
            'timestamp': utc_iso(self.timestamp),
        }


@dataclass
class Room:
    id: str
    game_type: GameType
    max_players: int
    board: Any
    variant: dict = field(default_factory=dict)
    players: List[Player] = field(default_factory=list)
    status: RoomStatus = RoomStatus.WAITING
    # symbol (tic-tac-toe), seat index (dots-and-boxes) or caller connection id (bingo)
    turn: Any = None
    round_count: int = 0
    round_history: Deque[dict] = field(default_factory=lambda: deque(maxlen=50))
    chat_log: Deque[ChatMessage] = field(default_factory=lambda: deque(maxlen=50))
    last_result: Optional[dict] = None
    terminating: bool = False
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    _message_ids: Any = field(default_factory=lambda: itertools.count(1), repr=False)

    @classmethod
    def create(cls, room_id, game_type, max_players, board, variant=None,
               history_limit=50, chat_limit=50):
        return cls(
            id=room_id,
            game_type=game_type,
            max_players=max_players,
            board=board,
            variant=dict(variant or {}),
            round_history=deque(maxlen=history_limit),
            chat_log=deque(maxlen=chat_limit),
        )

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    def find_player(self, connection_id) -> Optional[Player]:
        return next((p for p in self.players if p.connection_id == connection_id), None)

    def find_by_name(self, display_name) -> Optional[Player]:
        return next((p for p in self.players if p.display_name == display_name), None)

    def player_index(self, connection_id) -> int:
        for idx, p in enumerate(self.players):
            if p.connection_id == connection_id:
                return idx
        return -1

    def touch(self) -> None:
        self.last_activity_at = time.time()

    def add_message(self, author: str, connection_id: str, text: str) -> ChatMessage:
        message = ChatMessage(id=next(self._message_ids), author=author,
                              connection_id=connection_id, text=text)
        # deque(maxlen) evicts the oldest entry
        self.chat_log.append(message)
        self.touch()
        return message

    def record_round(self, summary: dict) -> dict:
        self.round_count += 1
        entry = {'round': self.round_count, 'timestamp': utc_iso(), **summary}
        self.round_history.append(entry)
        self.last_result = entry
        return entry
