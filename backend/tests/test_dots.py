import random

import pytest

from hangouts.errors import NotInRoom, ValidationRejected
from hangouts.models import Outcome, StatsRecord
from hangouts.services.games.dots import PLAYER_COLORS, DotsEngine


@pytest.fixture()
def engine(settings):
    return DotsEngine(settings, rng=random.Random(3))


@pytest.fixture()
def room(engine):
    # 3x3 dots -> 2x2 boxes
    room = engine.create_room('D1', {'size': 'small'})
    for cid, name in (('a', 'Ann'), ('b', 'Ben')):
        engine.join(room, cid, name, StatsRecord(cid, name))
    engine.start(room)
    return room


def pre_draw(room, *lines):
    owner = {'player_id': 'x', 'display_name': 'X', 'color': None, 'timestamp': None}
    for line_type, r, c in lines:
        room.board.lines(line_type)[r][c] = dict(owner)


def test_board_dimensions_and_colors(room):
    board = room.board
    assert len(board.horizontal) == 3 and len(board.horizontal[0]) == 2
    assert len(board.vertical) == 2 and len(board.vertical[0]) == 3
    assert board.total_boxes == 4
    assert board.total_lines == 12
    assert [p.color for p in room.players] == list(PLAYER_COLORS[:2])


def test_plain_line_passes_the_turn(engine, room):
    transition = engine.apply_move(room, 'a', line_type='horizontal', row=0, col=0)
    assert room.turn == 1
    assert transition.events[0][0] == 'line-drawn'
    assert transition.if_continuing[0][0] == 'turn-change'
    assert room.board.horizontal[0][0]['player_id'] == 'a'


def test_line_closing_two_boxes_keeps_the_turn(engine, room):
    pre_draw(room,
             ('horizontal', 0, 0), ('horizontal', 0, 1),
             ('horizontal', 1, 0), ('horizontal', 1, 1),
             ('vertical', 0, 0), ('vertical', 0, 2))
    transition = engine.apply_move(room, 'a', line_type='vertical', row=0, col=1)
    drawn = transition.events[0][1]
    assert drawn['completed_boxes'] == [{'row': 0, 'col': 0}, {'row': 0, 'col': 1}]
    assert drawn['new_score'] == 2
    assert room.board.scores['a'] == 2
    assert room.board.completed == 2
    assert room.turn == 0
    assert transition.if_continuing == []
    assert room.board.boxes[0][0]['player_id'] == 'a'


def test_move_rejections(engine, room):
    with pytest.raises(ValidationRejected, match='Not your turn'):
        engine.apply_move(room, 'b', line_type='horizontal', row=0, col=0)
    with pytest.raises(NotInRoom):
        engine.apply_move(room, 'zed', line_type='horizontal', row=0, col=0)
    with pytest.raises(ValidationRejected, match='Invalid line position'):
        engine.apply_move(room, 'a', line_type='horizontal', row=0, col=2)
    with pytest.raises(ValidationRejected, match='Invalid line type'):
        engine.apply_move(room, 'a', line_type='diagonal', row=0, col=0)
    engine.apply_move(room, 'a', line_type='vertical', row=1, col=2)
    with pytest.raises(ValidationRejected, match='Line already drawn'):
        engine.apply_move(room, 'b', line_type='vertical', row=1, col=2)


def test_full_board_ranks_players(engine, room):
    # only the two middle verticals are left; each closes two boxes
    pre_draw(room,
             ('horizontal', 0, 0), ('horizontal', 0, 1), ('horizontal', 1, 0),
             ('horizontal', 1, 1), ('horizontal', 2, 0), ('horizontal', 2, 1),
             ('vertical', 0, 0), ('vertical', 0, 2), ('vertical', 1, 0), ('vertical', 1, 2))
    room.turn = 1
    engine.apply_move(room, 'b', line_type='vertical', row=0, col=1)
    assert room.board.scores == {'b': 2}
    assert engine.check_end(room) is None
    room.turn = 0
    engine.apply_move(room, 'a', line_type='vertical', row=1, col=1)
    end = engine.check_end(room)
    assert end.reason == 'draw'
    assert end.outcomes == {'a': Outcome.TIE, 'b': Outcome.TIE}
    assert [r['score'] for r in end.summary['rankings']] == [2, 2]
    assert end.summary['winner'] is None


def test_outright_winner(engine, room):
    room.board.scores = {'a': 3, 'b': 1}
    room.board.completed = 4
    end = engine.check_end(room)
    assert end.reason == 'win'
    assert end.summary['winner'] == 'Ann'
    assert end.outcomes == {'a': Outcome.WIN, 'b': Outcome.LOSS}
    assert end.summary['rankings'][0]['percentage'] == 75


def test_hint_prefers_closing_a_box(engine, room):
    pre_draw(room, ('horizontal', 0, 0), ('horizontal', 1, 0), ('vertical', 0, 0))
    hint = engine.hint(room, 'a')
    assert (hint['line_type'], hint['row'], hint['col']) == ('vertical', 0, 1)
    assert hint['reason'] == 'Completes a box'
    with pytest.raises(ValidationRejected, match='Not your turn'):
        engine.hint(room, 'b')


def test_hint_avoids_giving_away_boxes(engine, room):
    pre_draw(room, ('horizontal', 0, 0), ('horizontal', 1, 0))
    hint = engine.hint(room, 'a')
    assert hint['reason'] == 'Does not give away a box'
    assert (hint['line_type'], hint['row'], hint['col']) not in {('vertical', 0, 0), ('vertical', 0, 1)}


def test_leaving_seat_before_mover_shifts_turn(engine):
    room = engine.create_room('D2', {'size': 'medium'})
    for cid in ('a', 'b', 'c'):
        engine.join(room, cid, cid.upper(), StatsRecord(cid, cid.upper()))
    engine.start(room)
    room.turn = 2
    _, notes = engine.remove_player(room, 'a')
    assert room.turn == 1
    assert engine.current_player(room).connection_id == 'c'
    assert notes['turn_changed'] is False

    _, notes = engine.remove_player(room, 'c')
    assert notes['turn_changed'] is True
    assert engine.current_player(room).connection_id == 'b'
    # a lone player cannot keep the round going
    assert room.status.value == 'waiting'


def test_reset_rotates_opening_seat(engine, room):
    room.round_count = 1
    info = engine.reset(room)
    assert room.turn == 1
    assert info['next_starter'] == 'Ben'
    assert room.board.completed == 0


def test_draw_line_through_controller(send, services, broadcaster):
    send('a', 'join-room', 'D3', 'Ann', 'dots', 'small')
    send('b', 'join-room', 'D3', 'Ben')
    send('a', 'draw-line', {'roomId': 'D3', 'lineType': 'horizontal', 'row': 0, 'col': 0})
    assert broadcaster.last('line-drawn')['display_name'] == 'Ann'
    assert broadcaster.last('turn-change')['next_player']['display_name'] == 'Ben'
    send('b', 'request-hint', 'D3')
    assert broadcaster.last('hint-suggestion', to='b')['line_type'] in ('horizontal', 'vertical')
    assert services.store.get('D3').variant == {'size': 'small'}


def test_skip_turn_passes_to_the_next_seat(engine, room):
    with pytest.raises(ValidationRejected, match='Not your turn'):
        engine.skip_turn(room, 'b')
    transition = engine.skip_turn(room, 'a')
    assert room.turn == 1
    assert transition.events == [('turn-skipped', {'display_name': 'Ann', 'next_player': 'Ben', 'index': 1})]
    assert room.board.drawn_lines() == 0


def test_spectators_are_left_out_of_the_rotation(engine):
    room = engine.create_room('D5', {'size': 'medium'})
    for cid in ('a', 'b', 'c'):
        engine.join(room, cid, cid.upper(), StatsRecord(cid, cid.upper()))
    engine.start(room)

    player, turn_changed = engine.toggle_spectator(room, 'b')
    assert player.is_spectator and not turn_changed
    assert player.to_dict()['is_spectator'] is True
    engine.apply_move(room, 'a', line_type='horizontal', row=0, col=0)
    assert engine.current_player(room).connection_id == 'c'
    with pytest.raises(ValidationRejected, match='Spectators cannot draw lines'):
        engine.apply_move(room, 'b', line_type='horizontal', row=0, col=1)
    engine.skip_turn(room, 'c')
    assert room.turn == 0

    # the mover stepping aside hands the turn on
    _, turn_changed = engine.toggle_spectator(room, 'a')
    assert turn_changed
    assert engine.current_player(room).connection_id == 'c'
    engine.toggle_spectator(room, 'b')
    assert not room.players[1].is_spectator


def test_refilled_table_starts_on_a_fresh_board(engine, room):
    engine.apply_move(room, 'a', line_type='horizontal', row=0, col=0)
    engine.remove_player(room, 'b')
    assert room.status.value == 'waiting'

    engine.join(room, 'c', 'Cat', StatsRecord('c', 'Cat'))
    assert engine.can_auto_start(room)
    engine.start(room)
    assert room.status.value == 'playing'
    assert room.board.horizontal[0][0] is None
    assert room.board.drawn_lines() == 0
    assert room.board.scores == {}


def test_skip_and_spectate_through_controller(send, services, broadcaster):
    send('a', 'join-room', 'D4', 'Ann', 'dots', 'small')
    send('b', 'join-room', 'D4', 'Ben')
    send('c', 'join-room', 'D4', 'Cat')

    send('b', 'toggle-spectator', 'D4')
    assert broadcaster.last('player-spectator-toggle') == {'display_name': 'Ben', 'is_spectator': True}
    send('a', 'skip-turn', {'roomId': 'D4'})
    assert broadcaster.last('turn-skipped')['next_player'] == 'Cat'
    assert broadcaster.names()[-2:] == ['game-state', 'turn-skipped']
    assert services.store.get('D4').turn == 2

    send('x', 'join-room', 'T4', 'Xena')
    with pytest.raises(ValidationRejected, match='dots-and-boxes'):
        send('x', 'toggle-spectator', 'T4')
    with pytest.raises(ValidationRejected, match='dots-and-boxes'):
        send('x', 'skip-turn', 'T4')
