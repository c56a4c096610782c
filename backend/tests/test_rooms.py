import threading

from hangouts.models import GameType
from hangouts.services.games import build_engines
from hangouts.services.rooms import RoomStore


def test_lookups_of_unknown_rooms_leave_no_locks(services):
    controller = services.controller
    for n in range(1000):
        assert controller.room_snapshot(f'GHOST{n}') is None
        assert controller.chat_history(f'GHOST{n}') is None
    assert len(services.store) == 0
    assert services.store.lock_count == 0


def test_lock_is_released_once_nobody_holds_it(send, services):
    send('a', 'join-room', 'L1', 'Ann')
    assert services.store.lock_count == 0
    with services.store.lock('l1'):
        with services.store.lock('L1'):
            assert services.store.lock_count == 1
    assert services.store.lock_count == 0


def test_removal_does_not_split_the_room_lock(settings):
    store = RoomStore(build_engines(settings))
    entered = threading.Event()

    def contender():
        with store.lock('R1'):
            entered.set()

    with store.lock('R1'):
        store.get_or_create('R1', GameType.TIC_TAC_TOE)
        store.remove('R1')
        worker = threading.Thread(target=contender)
        worker.start()
        # the waiting thread must still be queued on the same lock
        assert not entered.wait(0.2)
        store.get_or_create('R1', GameType.BINGO)
    worker.join(2)
    assert entered.is_set()
    assert store.get('R1').game_type == GameType.BINGO
    assert store.lock_count == 0
