import os
import random
import sys
from collections import defaultdict

import pytest

# Ensure the backend root (containing the `hangouts` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from hangouts import create_app, socketio
from hangouts.commands import parse_command
from hangouts.services import Services
from hangouts.services.games import build_engines
from hangouts.services.registry import ConnectionRegistry
from hangouts.services.rooms import RoomStore
from hangouts.services.scheduler import Scheduler
from hangouts.services.session import SessionController
from hangouts.services.stats import StatsTracker


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SOCKETIO_NAMESPACE = '/ws'
    AUTO_NEXT_ROUND_SEC = 3
    AUTO_CALL_DELAY_SEC = 5
    ROOM_GRACE_SEC = 30
    TERMINATE_DELAY_SEC = 2
    CHAT_MAX_LENGTH = 200
    CHAT_HISTORY_LIMIT = 50
    ROUND_HISTORY_LIMIT = 50
    BINGO_MAX_WINNERS = 3
    IDLE_ROOM_MINUTES = 60


class RecordingBroadcaster:
    """Stands in for Socket.IO delivery and remembers what went where."""

    def __init__(self):
        self.sent = []
        self.rooms = defaultdict(set)

    def enter(self, connection_id, room_id):
        self.rooms[room_id].add(connection_id)

    def leave(self, connection_id, room_id):
        self.rooms[room_id].discard(connection_id)

    def close(self, room_id):
        self.rooms.pop(room_id, None)

    def to_room(self, room_id, event, payload=None):
        self.sent.append({'target': 'room', 'to': room_id, 'event': event, 'payload': payload})

    def to_sender(self, connection_id, event, payload=None):
        self.sent.append({'target': 'sender', 'to': connection_id, 'event': event, 'payload': payload})

    def to_others(self, room_id, connection_id, event, payload=None):
        self.sent.append({'target': 'others', 'to': room_id, 'skip': connection_id,
                          'event': event, 'payload': payload})

    def names(self):
        return [m['event'] for m in self.sent]

    def payloads(self, event, to=None):
        return [m['payload'] for m in self.sent if m['event'] == event and (to is None or m['to'] == to)]

    def last(self, event, to=None):
        found = self.payloads(event, to)
        return found[-1] if found else None

    def clear(self):
        self.sent.clear()


def settings_of(config_class):
    return {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
def settings():
    return settings_of(TestConfig)


@pytest.fixture()
def services(settings, rng):
    engines = build_engines(settings, rng=rng)
    store = RoomStore(engines)
    registry = ConnectionRegistry()
    stats = StatsTracker()
    scheduler = Scheduler(socketio=None, background=False)
    broadcaster = RecordingBroadcaster()
    controller = SessionController(store, registry, stats, broadcaster, scheduler, settings=settings)
    return Services(store, registry, stats, scheduler, broadcaster, controller)


@pytest.fixture()
def broadcaster(services):
    return services.broadcaster


@pytest.fixture()
def send(services):
    """send(sid, event, *args) runs one inbound event through parsing and dispatch."""
    def _send(connection_id, event, *args):
        services.controller.connect(connection_id)
        return services.controller.dispatch(connection_id, parse_command(event, args))
    return _send


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig, rng=random.Random(99))
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def make_sio_client(flask_app):
    created = []

    def _make():
        test_client = socketio.test_client(flask_app, namespace='/ws')
        created.append(test_client)
        return test_client

    yield _make
    for test_client in created:
        try:
            test_client.disconnect(namespace='/ws')
        except Exception:
            pass
