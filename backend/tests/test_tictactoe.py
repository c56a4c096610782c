import pytest

from hangouts.errors import CapacityRejected, ValidationRejected
from hangouts.services.games.tictactoe import find_winner


@pytest.fixture()
def table(send):
    send('a', 'join-room', {'roomId': 'r1', 'displayName': 'Ann', 'gameType': 'tic-tac-toe'})
    send('b', 'join-room', {'roomId': 'R1', 'displayName': 'Ben'})
    return send


def play(send, moves):
    for sid, position in moves:
        send(sid, 'make-move', 'R1', position)


def test_find_winner_lines_and_draw():
    assert find_winner(['X', 'X', 'X', None, 'O', 'O', None, None, None]) == ('X', (0, 1, 2))
    assert find_winner(['O', 'X', None, 'O', 'X', None, 'O', None, None]) == ('O', (0, 3, 6))
    assert find_winner(['X', 'O', 'X', 'X', 'O', 'O', 'O', 'X', 'X']) == 'draw'
    assert find_winner([None] * 9) is None


def test_second_join_starts_round_with_x(table, services, broadcaster):
    room = services.store.get('R1')
    assert room.status.value == 'playing'
    assert [p.symbol for p in room.players] == ['X', 'O']
    state = broadcaster.last('game-state')
    assert state['turn']['symbol'] == 'X'
    assert state['turn']['display_name'] == 'Ann'
    assert 'game-started' in broadcaster.names()
    joined = broadcaster.last('joined', to='b')
    assert joined['player']['symbol'] == 'O'
    assert joined['reconnected'] is False


def test_top_row_win_updates_history_and_stats(table, services, broadcaster):
    play(table, [('a', 0), ('b', 3), ('a', 1), ('b', 4), ('a', 2)])

    over = broadcaster.last('game-over')
    assert over['winner'] == 'Ann'
    assert over['symbol'] == 'X'
    assert over['line'] == [0, 1, 2]
    assert over['round_count'] == 1
    assert len(over['round_history']) == 1

    state = broadcaster.last('game-state')
    assert state['status'] == 'finished'
    assert state['board'][:3] == ['X', 'X', 'X']

    ann = services.stats.get('a')
    ben = services.stats.get('b')
    assert (ann.wins, ann.current_streak, ann.best_streak) == (1, 1, 1)
    assert (ben.losses, ben.current_streak) == (1, 0)
    assert broadcaster.last('stats-update')['players'][0]['stats']['wins'] == 1
    # no turn-change once the round is over
    assert broadcaster.names()[-3:] == ['move-made', 'game-over', 'stats-update']


def test_draw_counts_as_tie_for_both(table, services, broadcaster):
    play(table, [('a', 0), ('b', 1), ('a', 2), ('b', 4), ('a', 3),
                 ('b', 5), ('a', 7), ('b', 6), ('a', 8)])
    over = broadcaster.last('game-over')
    assert over['draw'] is True
    assert over['winner'] is None
    assert services.stats.get('a').ties == 1
    assert services.stats.get('b').ties == 1
    assert services.stats.get('a').current_streak == 0


def test_move_rejections(table, services):
    with pytest.raises(ValidationRejected, match='Not your turn'):
        table('b', 'make-move', 'R1', 0)
    table('a', 'make-move', 'R1', 4)
    with pytest.raises(ValidationRejected, match='Position taken'):
        table('b', 'make-move', 'R1', 4)
    with pytest.raises(ValidationRejected, match='Invalid position'):
        table('b', 'make-move', 'R1', 9)
    with pytest.raises(ValidationRejected):
        table('b', 'make-move', 'R1', True)
    with pytest.raises(ValidationRejected):
        table('b', 'call-number', 'R1', 5)
    assert services.store.get('R1').board.count('X') == 1


def test_move_before_opponent_arrives_is_rejected(send):
    send('a', 'join-room', 'R2', 'Ann')
    with pytest.raises(ValidationRejected, match='Game not active'):
        send('a', 'make-move', 'R2', 0)


def test_third_joiner_is_rejected_without_changes(table, services):
    room = services.store.get('R1')
    before = [p.connection_id for p in room.players]
    with pytest.raises(CapacityRejected, match='Maximum 2 players'):
        table('c', 'join-room', 'R1', 'Cat')
    assert [p.connection_id for p in room.players] == before
    assert services.registry.lookup('c') is None


def test_reset_keeps_round_count_and_alternates_starter(table, services, broadcaster):
    play(table, [('a', 0), ('b', 3), ('a', 1), ('b', 4), ('a', 2)])
    table('b', 'reset-game', 'R1')

    reset = broadcaster.last('game-reset')
    assert reset['round_count'] == 1
    assert reset['next_starter'] == 'O'
    assert reset['reset_by'] == 'Ben'
    room = services.store.get('R1')
    assert room.round_count == 1
    assert room.board == [None] * 9
    assert room.turn == 'O'
    assert room.status.value == 'playing'
    # the pending automatic round is superseded by the manual reset
    assert not services.scheduler.is_pending(('R1', 'auto-next'))


def test_auto_next_round_after_finish(table, services, broadcaster):
    play(table, [('a', 0), ('b', 3), ('a', 1), ('b', 4), ('a', 2)])
    assert services.scheduler.is_pending(('R1', 'auto-next'))
    assert services.scheduler.get(('R1', 'auto-next')).delay == 3

    assert services.scheduler.fire(('R1', 'auto-next'))
    assert broadcaster.last('auto-next-game')['round_count'] == 1
    room = services.store.get('R1')
    assert room.status.value == 'playing'
    assert room.turn == 'O'


def test_auto_next_is_cancelled_when_a_player_leaves(table, services):
    play(table, [('a', 0), ('b', 3), ('a', 1), ('b', 4), ('a', 2)])
    services.controller.disconnect('b')
    assert not services.scheduler.is_pending(('R1', 'auto-next'))
    assert services.store.get('R1').status.value == 'finished'


def test_disconnect_mid_round_returns_room_to_waiting(table, services, broadcaster):
    table('a', 'make-move', 'R1', 4)
    services.controller.disconnect('b')
    room = services.store.get('R1')
    assert room.status.value == 'waiting'
    assert broadcaster.last('player-left') == {'display_name': 'Ben', 'count': 1}

    # a fresh board when the seat is filled again
    table('c', 'join-room', 'R1', 'Cat')
    assert room.status.value == 'playing'
    assert room.board == [None] * 9
    assert room.find_player('c').symbol == 'O'


def test_round_history_keeps_the_last_fifty_rounds(table, services, broadcaster):
    for n in range(51):
        # the opening symbol alternates, so the opener wins the top row each time
        opener, other = ('a', 'b') if n % 2 == 0 else ('b', 'a')
        play(table, [(opener, 0), (other, 3), (opener, 1), (other, 4), (opener, 2)])
        if n < 50:
            assert services.scheduler.fire(('R1', 'auto-next'))

    room = services.store.get('R1')
    assert room.round_count == 51
    assert len(room.round_history) == 50
    assert room.round_history[0]['round'] == 2
    assert room.round_history[-1]['round'] == 51
    assert len(broadcaster.last('game-over')['round_history']) == 50
    assert services.stats.get('a').wins == 26
    assert services.stats.get('b').wins == 25
