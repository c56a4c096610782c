"""Inbound socket events as typed commands.

Clients send either one object (``{"roomId": "R1", "position": 4}``) or
positional arguments (``"R1", 4``); both are folded into the command's
fields and validated here, before anything reaches a room or an engine.
"""

from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Tuple, Type

from pydantic import (AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field,
                      ValidationError, field_validator, model_validator)

from hangouts.errors import ChatRejected, GameError, JoinRejected, ValidationRejected
from hangouts.models import GameType


def _reject_bool(value):
    if isinstance(value, bool):
        raise ValueError('Input should be a valid integer')
    return value


Int = Annotated[int, BeforeValidator(_reject_bool)]


def _alias(*names):
    return AliasChoices(*names)


class Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore', str_strip_whitespace=True,
                              frozen=True)

    event: ClassVar[str] = ''
    positional: ClassVar[Tuple[str, ...]] = ('room_id',)
    # fields that take a whole object as their positional value
    object_fields: ClassVar[Tuple[str, ...]] = ()
    # error raised (and so the private event sent) when the payload is malformed
    rejection: ClassVar[Type[GameError]] = ValidationRejected

    room_id: str = Field(..., min_length=1, max_length=64,
                         validation_alias=_alias('room_id', 'roomId', 'room', 'game_code'))

    @field_validator('room_id', mode='before')
    @classmethod
    def normalize_room_id(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        return v.strip().upper() if isinstance(v, str) else v


class JoinRoom(Command):
    event = 'join-room'
    rejection = JoinRejected
    positional = ('room_id', 'display_name', 'game_type', 'variant')
    object_fields = ('variant',)

    display_name: str = Field('', max_length=30,
                              validation_alias=_alias('display_name', 'displayName', 'playerName',
                                                      'player_name', 'name'))
    # None joins whatever the room already is; new rooms default to tic-tac-toe
    game_type: Optional[GameType] = Field(None, validation_alias=_alias('game_type', 'gameType'))
    variant: Dict[str, Any] = Field(default_factory=dict,
                                    validation_alias=_alias('variant', 'variantParams', 'variant_params'))

    @model_validator(mode='before')
    @classmethod
    def fold_variant(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        variant = data.get('variant', data.get('variantParams', data.get('variant_params')))
        if variant is None:
            variant = {}
        elif not isinstance(variant, dict):
            # e.g. join-room("R1", "Ann", "bingo", "small")
            variant = {'size': variant}
        else:
            variant = dict(variant)
        for key in ('boardSize', 'board_size', 'gridSize', 'grid_size', 'size'):
            if key in data:
                variant.setdefault('size', data[key])
            if key in variant and key != 'size':
                variant.setdefault('size', variant.pop(key))
        data['variant'] = variant
        data.pop('variantParams', None)
        data.pop('variant_params', None)
        return data

    @field_validator('game_type', mode='before')
    @classmethod
    def parse_game_type(cls, v):
        if v is None or v == '':
            return None
        return GameType.parse(v)


class MakeMove(Command):
    event = 'make-move'
    positional = ('room_id', 'position')

    position: Int = Field(..., validation_alias=_alias('position', 'cellIndex', 'cell_index', 'index'))

    def move_args(self):
        return {'position': self.position}


class CallNumber(Command):
    event = 'call-number'
    positional = ('room_id', 'number')

    number: Int

    def move_args(self):
        return {'number': self.number}


class DrawLine(Command):
    event = 'draw-line'
    positional = ('room_id', 'line_type', 'row', 'col')

    line_type: Literal['horizontal', 'vertical'] = Field(
        ..., validation_alias=_alias('line_type', 'lineType', 'type'))
    row: Int
    col: Int

    def move_args(self):
        return {'line_type': self.line_type, 'row': self.row, 'col': self.col}


class ResetGame(Command):
    event = 'reset-game'


class NextGame(Command):
    event = 'next-game'


class StartGame(Command):
    event = 'start-game'


class StopPlaying(Command):
    event = 'stop-playing'


class RestartSession(Command):
    event = 'restart-session'


class TerminateRoom(Command):
    event = 'terminate-room'
    rejection = GameError


class LeaveRoom(Command):
    event = 'leave-room'
    rejection = GameError


class ToggleAutoCall(Command):
    event = 'toggle-auto-call'


class RequestCaller(Command):
    event = 'request-caller'


class RequestHint(Command):
    event = 'request-hint'


class SkipTurn(Command):
    event = 'skip-turn'


class ToggleSpectator(Command):
    event = 'toggle-spectator'


class SendMessage(Command):
    event = 'send-message'
    rejection = ChatRejected
    positional = ('room_id', 'text')

    # length rules live in the controller so they follow CHAT_MAX_LENGTH
    text: str = Field('', validation_alias=_alias('text', 'message'))

    @field_validator('text', mode='before')
    @classmethod
    def coerce_text(cls, v):
        return '' if v is None else str(v)


class GetChatHistory(Command):
    event = 'get-chat-history'
    rejection = ChatRejected


class TypingStart(Command):
    event = 'typing-start'


class TypingStop(Command):
    event = 'typing-stop'


class SendReaction(Command):
    event = 'send-reaction'
    rejection = GameError
    positional = ('room_id', 'payload')
    object_fields = ('payload',)

    payload: Any = Field(None, validation_alias=_alias('payload', 'reaction', 'reactionData', 'reaction_data'))


COMMANDS: Dict[str, Type[Command]] = {
    cls.event: cls
    for cls in (
        JoinRoom, MakeMove, CallNumber, DrawLine, ResetGame, NextGame, StartGame, StopPlaying,
        RestartSession, TerminateRoom, LeaveRoom, ToggleAutoCall, RequestCaller, RequestHint,
        SkipTurn, ToggleSpectator, SendMessage, GetChatHistory, TypingStart, TypingStop, SendReaction,
    )
}


def _describe(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = '.'.join(str(part) for part in err.get('loc', ())) or 'payload'
    return f"Invalid {field}: {err.get('msg', 'bad value')}"


def _field_names(cls: Type[Command], keys) -> set:
    """Map payload keys (field names or aliases) back to field names."""
    names = set()
    for name, info in cls.model_fields.items():
        aliases = {name}
        if isinstance(info.validation_alias, AliasChoices):
            aliases.update(c for c in info.validation_alias.choices if isinstance(c, str))
        if aliases & set(keys):
            names.add(name)
    return names


def parse_command(event: str, args) -> Command:
    """Build the command for ``event`` from the raw Socket.IO arguments."""
    cls = COMMANDS.get(event)
    if cls is None:
        raise ValidationRejected(f'Unknown event {event}')
    data: Dict[str, Any] = {}
    pending = list(cls.positional)
    for arg in args:
        if isinstance(arg, dict) and not (pending and pending[0] in cls.object_fields):
            data.update(arg)
            # keys in the object count as filled positionals
            filled = _field_names(cls, data)
            pending = [name for name in pending if name not in filled]
        elif pending:
            data[pending.pop(0)] = arg
    try:
        return cls.model_validate(data)
    except ValidationError as exc:
        raise cls.rejection(_describe(exc)) from exc
