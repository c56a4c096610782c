"""Room session controller.

Takes one validated command at a time, loads the room under its lock, runs
the matching engine, updates stats and broadcasts the result. Everything a
room emits happens while its lock is held, so clients see snapshots in the
order the mutations were applied. Deferred work (next round, auto-caller,
empty-room and terminated-room teardown) goes through the scheduler.
"""

import logging
from contextlib import contextmanager
from typing import List, Optional

from hangouts import commands as cmds
from hangouts.errors import (ChatRejected, GameError, JoinRejected, NotInRoom, RoomNotFound,
                             ValidationRejected)
from hangouts.models import GameType, RoomStatus

from .broadcast import room_summary, snapshot

AUTO_NEXT = 'auto-next'
AUTO_CALL = 'auto-call'
REMOVE = 'remove'
TERMINATE = 'terminate'


class SessionController:
    def __init__(self, store, registry, stats, broadcaster, scheduler, settings=None, logger=None):
        self.store = store
        self.engines = store.engines
        self.registry = registry
        self.stats = stats
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        settings = settings or {}
        self.auto_next_sec = float(settings.get('AUTO_NEXT_ROUND_SEC', 3))
        self.auto_call_sec = float(settings.get('AUTO_CALL_DELAY_SEC', 5))
        self.grace_sec = float(settings.get('ROOM_GRACE_SEC', 30))
        self.terminate_sec = float(settings.get('TERMINATE_DELAY_SEC', 2))
        self.chat_max_length = int(settings.get('CHAT_MAX_LENGTH', 200))
        self._handlers = {
            cmds.JoinRoom: self.join_room,
            cmds.MakeMove: self.play,
            cmds.CallNumber: self.play,
            cmds.DrawLine: self.play,
            cmds.ResetGame: self.reset_game,
            cmds.NextGame: self.reset_game,
            cmds.StartGame: self.start_game,
            cmds.StopPlaying: self.stop_playing,
            cmds.RestartSession: self.restart_session,
            cmds.TerminateRoom: self.terminate_room,
            cmds.LeaveRoom: self.leave_room,
            cmds.ToggleAutoCall: self.toggle_auto_call,
            cmds.RequestCaller: self.request_caller,
            cmds.RequestHint: self.request_hint,
            cmds.SkipTurn: self.skip_turn,
            cmds.ToggleSpectator: self.toggle_spectator,
            cmds.SendMessage: self.send_message,
            cmds.GetChatHistory: self.get_chat_history,
            cmds.TypingStart: self.typing,
            cmds.TypingStop: self.typing,
            cmds.SendReaction: self.send_reaction,
        }

    # -- entry points --------------------------------------------------------

    def dispatch(self, connection_id: str, command: cmds.Command):
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ValidationRejected(f'Unsupported event {command.event}')
        return handler(connection_id, command)

    def connect(self, connection_id: str) -> None:
        self.registry.register(connection_id)

    def disconnect(self, connection_id: str) -> None:
        binding = self.registry.unregister(connection_id)
        if binding is not None:
            self.logger.info(f"[disconnect] room={binding.room_id} player={binding.display_name} sid={connection_id}")
            self._leave(connection_id, binding.room_id)
        self.stats.discard(connection_id)

    # -- helpers ---------------------------------------------------------------

    @contextmanager
    def _locked_room(self, room_id: str, rejection=None):
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None:
                if rejection is not None:
                    raise rejection(f'Room {room_id} not found')
                raise RoomNotFound(room_id)
            yield room, self.engines[room.game_type]

    def _require_player(self, room, connection_id, rejection=None):
        player = room.find_player(connection_id)
        if player is None:
            if rejection is not None:
                raise rejection(f'You are not in room {room.id}')
            raise NotInRoom(room.id)
        return player

    def _broadcast_state(self, room, engine) -> None:
        self.broadcaster.to_room(room.id, 'game-state', snapshot(room, engine))

    def _send_stats(self, room) -> None:
        self.broadcaster.to_room(room.id, 'stats-update', {
            'players': [{
                'display_name': p.display_name,
                'symbol': p.symbol,
                'color': p.color,
                'stats': p.stats.to_dict() if p.stats else None,
            } for p in room.players],
        })

    def _cancel_round_timers(self, room, engine) -> None:
        self.scheduler.cancel((room.id, AUTO_NEXT))
        self.scheduler.cancel((room.id, AUTO_CALL))
        engine.stop_auto_call(room)

    # -- joining and leaving -----------------------------------------------------

    def join_room(self, connection_id: str, command: cmds.JoinRoom):
        self.registry.register(connection_id)
        previous = self.registry.lookup(connection_id)

        with self.store.lock(command.room_id):
            room = self.store.get(command.room_id)
            if room is None:
                room, created = self.store.get_or_create(
                    command.room_id, command.game_type or GameType.TIC_TAC_TOE, command.variant)
                if created:
                    self.logger.info(f"[room-create] room={room.id} game={room.game_type.value} variant={room.variant}")
            elif command.game_type is not None and command.game_type != room.game_type:
                raise JoinRejected(f'Room {room.id} is a {room.game_type.value} room')
            if room.terminating:
                raise JoinRejected(f'Room {room.id} is closing')
            engine = self.engines[room.game_type]

            reconnected = False
            player = room.find_player(connection_id)
            display_name = command.display_name or self._fallback_name(room)
            if player is not None:
                reconnected = True
            else:
                # generated names never claim a seat
                seat = room.find_by_name(display_name) if command.display_name else None
                if seat is not None:
                    player = self._take_over_seat(room, engine, seat, connection_id)
                    reconnected = True
                else:
                    record = self.stats.get_or_create(connection_id, display_name)
                    player = engine.join(room, connection_id, display_name, record)

            self.scheduler.cancel((room.id, REMOVE))
            self.registry.bind(connection_id, room.id, room.game_type, player.display_name,
                               role={'symbol': player.symbol, 'color': player.color})
            self.broadcaster.enter(connection_id, room.id)

            started = engine.can_auto_start(room)
            if started:
                engine.start(room)
            room.touch()
            self.logger.info(
                f"[join] room={room.id} player={player.display_name} sid={connection_id} "
                f"players={len(room.players)}/{room.max_players} reconnected={reconnected} status={room.status.value}"
            )

            self._broadcast_state(room, engine)
            self.broadcaster.to_room(room.id, 'player-joined', {
                'display_name': player.display_name,
                'count': len(room.players),
                'max_players': room.max_players,
            })
            self.broadcaster.to_sender(connection_id, 'joined', {
                'room_id': room.id,
                'game_type': room.game_type.value,
                'player': player.to_dict(),
                'reconnected': reconnected,
            })
            if started:
                self.broadcaster.to_room(room.id, 'game-started', {'round_count': room.round_count})
            self._send_stats(room)
            joined_id = room.id

        if previous is not None and previous.room_id != joined_id:
            self._leave(connection_id, previous.room_id)
            self.broadcaster.leave(connection_id, previous.room_id)
        return player

    @staticmethod
    def _fallback_name(room) -> str:
        taken = {p.display_name for p in room.players}
        n = 1
        while f'Player {n}' in taken:
            n += 1
        return f'Player {n}'

    def _take_over_seat(self, room, engine, seat, connection_id):
        """Hand an existing seat with the same display name to a new connection."""
        old_id = seat.connection_id
        engine.rebind_player(room, old_id, connection_id)
        record = self.stats.rebind(old_id, connection_id)
        seat.stats = record or self.stats.get_or_create(connection_id, seat.display_name)
        self.registry.unbind(old_id, room.id)
        self.broadcaster.leave(old_id, room.id)
        self.broadcaster.to_sender(old_id, 'session-replaced', {
            'room_id': room.id,
            'message': f'{seat.display_name} joined from another connection',
        })
        self.logger.info(f"[rebind] room={room.id} player={seat.display_name} old={old_id} new={connection_id}")
        return seat

    def leave_room(self, connection_id: str, command: cmds.LeaveRoom):
        binding = self.registry.lookup(connection_id)
        if binding is None or binding.room_id != command.room_id:
            raise GameError(f'You are not in room {command.room_id}')
        self.registry.unbind(connection_id, command.room_id)
        self._leave(connection_id, command.room_id)
        self.broadcaster.leave(connection_id, command.room_id)
        self.broadcaster.to_sender(connection_id, 'left', {'room_id': command.room_id})

    def _leave(self, connection_id: str, room_id: str) -> None:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None:
                return
            engine = self.engines[room.game_type]
            player, notes = engine.remove_player(room, connection_id)
            if player is None:
                return
            # the next round needs the full table, and a dead caller cannot auto-call
            self.scheduler.cancel((room.id, AUTO_NEXT))
            if not engine.auto_call_enabled(room):
                self.scheduler.cancel((room.id, AUTO_CALL))
            self.logger.info(
                f"[leave] room={room.id} player={player.display_name} remaining={len(room.players)} "
                f"status={room.status.value}"
            )
            if not room.players:
                self._schedule_removal(room)
                return
            self.broadcaster.to_room(room.id, 'player-left', {
                'display_name': player.display_name,
                'count': len(room.players),
            })
            if notes.get('caller_changed'):
                self.broadcaster.to_room(room.id, 'caller-changed', notes['caller_changed'])
            if notes.get('turn_changed') and room.status == RoomStatus.PLAYING:
                self.broadcaster.to_room(room.id, 'turn-change', {'turn': engine.turn_view(room)})
            self._broadcast_state(room, engine)

    def _schedule_removal(self, room) -> None:
        if self.grace_sec <= 0:
            self._teardown(room.id)
            return
        self.scheduler.schedule((room.id, REMOVE), self.grace_sec,
                                lambda room_id=room.id: self._remove_if_empty(room_id))

    def _remove_if_empty(self, room_id: str) -> None:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None or room.players:
                self.logger.info(f"[room-keep] room={room_id} repopulated or already gone")
                return
            self._teardown(room_id)

    def _teardown(self, room_id: str) -> None:
        with self.store.lock(room_id):
            for member in self.registry.members(room_id):
                self.registry.unbind(member, room_id)
            self.scheduler.cancel_room(room_id)
            self.broadcaster.close(room_id)
            self.store.remove(room_id)
            self.logger.info(f"[room-remove] room={room_id}")

    # -- moves -------------------------------------------------------------------

    def play(self, connection_id: str, command):
        with self._locked_room(command.room_id) as (room, engine):
            if command.event != engine.move_event:
                raise ValidationRejected(f'{command.event} is not valid in a {room.game_type.value} room')
            transition = engine.apply_move(room, connection_id, **command.move_args())
            self.logger.info(f"[move] room={room.id} sid={connection_id} event={command.event} args={command.move_args()}")
            self._after_move(room, engine, transition)

    def _after_move(self, room, engine, transition) -> None:
        end = engine.check_end(room)
        if end is not None:
            self._finish_round(room, engine, end)
        self._broadcast_state(room, engine)
        for event, payload in transition.events:
            self.broadcaster.to_room(room.id, event, payload)
        if end is None:
            for event, payload in transition.if_continuing:
                self.broadcaster.to_room(room.id, event, payload)
            return
        self.broadcaster.to_room(room.id, 'game-over', {
            **end.summary,
            'reason': end.reason,
            'round_count': room.round_count,
            'round_history': list(room.round_history),
        })
        self._send_stats(room)
        if engine.auto_next_round and len(room.players) >= engine.max_players:
            self.scheduler.schedule(
                (room.id, AUTO_NEXT), self.auto_next_sec,
                lambda room_id=room.id, expected=room.round_count: self._auto_next(room_id, expected),
            )

    def _finish_round(self, room, engine, end) -> None:
        room.status = RoomStatus.FINISHED
        self._cancel_round_timers(room, engine)
        room.record_round({'reason': end.reason, **end.summary})
        self.stats.apply_outcomes(end.outcomes)
        self.logger.info(
            f"[finish] room={room.id} round={room.round_count} reason={end.reason} "
            f"winners={[p.display_name for p in end.winners]}"
        )

    def _auto_next(self, room_id: str, expected_round: int) -> None:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None:
                return
            engine = self.engines[room.game_type]
            if (room.status != RoomStatus.FINISHED or room.round_count != expected_round
                    or len(room.players) < engine.max_players):
                self.logger.info(f"[auto-next-abort] room={room_id} status={room.status.value} round={room.round_count}")
                return
            info = engine.reset(room)
            self._broadcast_state(room, engine)
            self.broadcaster.to_room(room.id, 'game-reset', info)
            self.broadcaster.to_room(room.id, 'auto-next-game', {
                'message': 'Starting next game...',
                'round_count': room.round_count,
                'next_starter': info.get('next_starter'),
            })

    # -- round control -----------------------------------------------------------

    def reset_game(self, connection_id: str, command):
        with self._locked_room(command.room_id) as (room, engine):
            player = self._require_player(room, connection_id)
            if room.status == RoomStatus.STOPPED:
                raise ValidationRejected('Session stopped; restart it to play again')
            engine.require_controller(room, connection_id, 'reset the game')
            self._cancel_round_timers(room, engine)
            info = engine.reset(room)
            self.logger.info(f"[reset] room={room.id} by={player.display_name} round={room.round_count}")
            self._broadcast_state(room, engine)
            self.broadcaster.to_room(room.id, 'game-reset', {**info, 'reset_by': player.display_name})

    def start_game(self, connection_id: str, command: cmds.StartGame):
        with self._locked_room(command.room_id) as (room, engine):
            player = self._require_player(room, connection_id)
            engine.require_controller(room, connection_id, 'start the game')
            if room.status != RoomStatus.WAITING:
                raise ValidationRejected('Game already started')
            if not engine.can_start(room):
                raise ValidationRejected(f'Need at least {engine.min_start_players} players to start')
            engine.start(room)
            self.logger.info(f"[start] room={room.id} by={player.display_name} players={len(room.players)}")
            self._broadcast_state(room, engine)
            self.broadcaster.to_room(room.id, 'game-started', {
                'round_count': room.round_count,
                'started_by': player.display_name,
            })

    def stop_playing(self, connection_id: str, command: cmds.StopPlaying):
        with self._locked_room(command.room_id) as (room, engine):
            player = self._require_player(room, connection_id)
            if room.status not in (RoomStatus.PLAYING, RoomStatus.FINISHED):
                raise ValidationRejected('No game to stop')
            self._cancel_round_timers(room, engine)
            room.status = RoomStatus.STOPPED
            room.touch()
            self.logger.info(f"[stop] room={room.id} by={player.display_name}")
            self.broadcaster.to_room(room.id, 'game-stopped', {'stopped_by': player.display_name})
            self._broadcast_state(room, engine)

    def restart_session(self, connection_id: str, command: cmds.RestartSession):
        """Fresh session after a stop: clears history, keeps the round counter."""
        with self._locked_room(command.room_id) as (room, engine):
            player = self._require_player(room, connection_id)
            if room.status != RoomStatus.STOPPED:
                raise ValidationRejected('Session is not stopped')
            self.scheduler.cancel((room.id, TERMINATE))
            room.terminating = False
            room.round_history.clear()
            room.last_result = None
            info = engine.reset(room)
            self.logger.info(f"[restart] room={room.id} by={player.display_name} status={room.status.value}")
            self._broadcast_state(room, engine)
            self.broadcaster.to_room(room.id, 'game-reset', info)
            self.broadcaster.to_room(room.id, 'session-restarted', {'restarted_by': player.display_name})

    def terminate_room(self, connection_id: str, command: cmds.TerminateRoom):
        with self._locked_room(command.room_id, rejection=GameError) as (room, engine):
            player = self._require_player(room, connection_id, rejection=GameError)
            self._cancel_round_timers(room, engine)
            room.terminating = True
            room.status = RoomStatus.STOPPED
            self.logger.info(f"[terminate] room={room.id} by={player.display_name}")
            self.broadcaster.to_room(room.id, 'room-terminated', {
                'message': f'Room terminated by {player.display_name}',
                'terminated_by': player.display_name,
            })
            if self.terminate_sec <= 0:
                self._teardown(room.id)
            else:
                self.scheduler.schedule((room.id, TERMINATE), self.terminate_sec,
                                        lambda room_id=room.id: self._finish_termination(room_id))

    def _finish_termination(self, room_id: str) -> None:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None or not room.terminating:
                return
            self._teardown(room_id)

    # -- bingo / dots extras -------------------------------------------------------

    def toggle_auto_call(self, connection_id: str, command: cmds.ToggleAutoCall):
        with self._locked_room(command.room_id) as (room, engine):
            if room.game_type != GameType.BINGO:
                raise ValidationRejected('Auto-call is only available in bingo rooms')
            player = self._require_player(room, connection_id)
            engine.require_controller(room, connection_id, 'toggle auto-call')
            enabled = not engine.auto_call_enabled(room)
            if enabled:
                engine.require_playing(room)
                room.board.auto_call = True
                self.scheduler.schedule((room.id, AUTO_CALL), self.auto_call_sec,
                                        lambda room_id=room.id: self._auto_call_tick(room_id), repeat=True)
            else:
                engine.stop_auto_call(room)
                self.scheduler.cancel((room.id, AUTO_CALL))
            self.logger.info(f"[auto-call] room={room.id} enabled={enabled} by={player.display_name}")
            self.broadcaster.to_room(room.id, 'auto-call-toggled', {
                'enabled': enabled,
                'toggled_by': player.display_name,
            })
            self._broadcast_state(room, engine)

    def _auto_call_tick(self, room_id: str) -> bool:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None:
                return False
            engine = self.engines[room.game_type]
            if not engine.auto_call_enabled(room) or room.status != RoomStatus.PLAYING:
                engine.stop_auto_call(room)
                return False
            transition = engine.auto_call(room)
            if transition is None:
                engine.stop_auto_call(room)
                return False
            self._after_move(room, engine, transition)
            return engine.auto_call_enabled(room) and room.status == RoomStatus.PLAYING

    def request_caller(self, connection_id: str, command: cmds.RequestCaller):
        with self._locked_room(command.room_id) as (room, engine):
            if room.game_type != GameType.BINGO:
                raise ValidationRejected('Only bingo rooms have a caller')
            player = engine.claim_caller(room, connection_id)
            self.broadcaster.to_room(room.id, 'caller-changed', {
                'new_caller': player.display_name,
                'caller_id': player.connection_id,
                'reason': 'Caller role claimed',
            })
            self._broadcast_state(room, engine)

    def request_hint(self, connection_id: str, command: cmds.RequestHint):
        with self._locked_room(command.room_id) as (room, engine):
            if room.game_type != GameType.DOTS_AND_BOXES:
                raise ValidationRejected('Hints are only available in dots-and-boxes rooms')
            self._require_player(room, connection_id)
            hint = engine.hint(room, connection_id)
            self.broadcaster.to_sender(connection_id, 'hint-suggestion', hint)

    def skip_turn(self, connection_id: str, command: cmds.SkipTurn):
        with self._locked_room(command.room_id) as (room, engine):
            if room.game_type != GameType.DOTS_AND_BOXES:
                raise ValidationRejected('Turns can only be skipped in dots-and-boxes rooms')
            transition = engine.skip_turn(room, connection_id)
            self.logger.info(f"[skip] room={room.id} sid={connection_id} next={room.turn}")
            self._broadcast_state(room, engine)
            for event, payload in transition.events:
                self.broadcaster.to_room(room.id, event, payload)

    def toggle_spectator(self, connection_id: str, command: cmds.ToggleSpectator):
        with self._locked_room(command.room_id) as (room, engine):
            if room.game_type != GameType.DOTS_AND_BOXES:
                raise ValidationRejected('Spectating is only available in dots-and-boxes rooms')
            player, turn_changed = engine.toggle_spectator(room, connection_id)
            self.logger.info(f"[spectator] room={room.id} player={player.display_name} on={player.is_spectator}")
            self.broadcaster.to_room(room.id, 'player-spectator-toggle', {
                'display_name': player.display_name,
                'is_spectator': player.is_spectator,
            })
            if turn_changed and room.status == RoomStatus.PLAYING:
                self.broadcaster.to_room(room.id, 'turn-change', {'turn': engine.turn_view(room)})
            self._broadcast_state(room, engine)

    # -- chat ------------------------------------------------------------------------

    def send_message(self, connection_id: str, command: cmds.SendMessage):
        text = command.text.strip()
        if not text:
            raise ChatRejected('Message cannot be empty')
        if len(text) > self.chat_max_length:
            raise ChatRejected(f'Message too long (max {self.chat_max_length} characters)')
        with self.store.lock(command.room_id):
            room = self.store.get(command.room_id)
            if room is None:
                raise ChatRejected(f'Room {command.room_id} not found')
            player = room.find_player(connection_id)
            if player is None:
                raise ChatRejected('You are not in this room')
            message = room.add_message(player.display_name, connection_id, text)
            self.broadcaster.to_room(room.id, 'new-message', message.to_dict())
            return message

    def get_chat_history(self, connection_id: str, command: cmds.GetChatHistory):
        with self.store.lock(command.room_id):
            room = self.store.get(command.room_id)
            messages = []
            if room is not None:
                messages = [dict(m.to_dict(), is_own=m.connection_id == connection_id) for m in room.chat_log]
            self.broadcaster.to_sender(connection_id, 'chat-history', {'messages': messages})

    def typing(self, connection_id: str, command):
        with self._locked_room(command.room_id) as (room, engine):
            player = self._require_player(room, connection_id)
            self.broadcaster.to_others(room.id, connection_id, 'player-typing', {
                'display_name': player.display_name,
                'typing': isinstance(command, cmds.TypingStart),
            })

    def send_reaction(self, connection_id: str, command: cmds.SendReaction):
        with self._locked_room(command.room_id, rejection=GameError) as (room, engine):
            self._require_player(room, connection_id, rejection=GameError)
            self.broadcaster.to_room(room.id, 'show-reaction', command.payload)

    # -- queries / maintenance ---------------------------------------------------------

    def room_snapshot(self, room_id: str) -> Optional[dict]:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            if room is None:
                return None
            return snapshot(room, self.engines[room.game_type])

    def chat_history(self, room_id: str) -> Optional[List[dict]]:
        with self.store.lock(room_id):
            room = self.store.get(room_id)
            return None if room is None else [m.to_dict() for m in room.chat_log]

    def list_rooms(self) -> List[dict]:
        return [room_summary(room) for room in self.store.all()]

    def reap_idle_rooms(self, max_idle_sec: float) -> List[str]:
        removed = []
        for room in self.store.idle_since(max_idle_sec):
            with self.store.lock(room.id):
                if self.store.get(room.id) is not room:
                    continue
                self.broadcaster.to_room(room.id, 'room-terminated', {
                    'message': 'Room closed after inactivity',
                    'terminated_by': None,
                })
                self._teardown(room.id)
                removed.append(room.id)
        if removed:
            self.logger.info(f"[reap] removed={removed}")
        return removed
