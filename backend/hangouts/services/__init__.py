"""Runtime services for one app instance.

``build_services`` wires the in-memory stores, the scheduler and the session
controller together; the app factory keeps the result in
``app.extensions['hangouts']``.
"""

from dataclasses import dataclass

from .broadcast import SocketIOBroadcaster
from .games import build_engines
from .registry import ConnectionRegistry
from .rooms import RoomStore
from .scheduler import Scheduler
from .session import SessionController
from .stats import StatsTracker


@dataclass
class Services:
    store: RoomStore
    registry: ConnectionRegistry
    stats: StatsTracker
    scheduler: Scheduler
    broadcaster: SocketIOBroadcaster
    controller: SessionController


def build_services(flask_app, socketio, rng=None) -> Services:
    config = flask_app.config
    # timers run as background tasks except under TESTING, where tests fire them
    background = not config.get('TESTING') or config.get('ENABLE_SCHEDULER_IN_TESTS', False)
    engines = build_engines(config, rng=rng)
    store = RoomStore(engines)
    registry = ConnectionRegistry()
    stats = StatsTracker()
    scheduler = Scheduler(socketio, logger=flask_app.logger, background=background)
    broadcaster = SocketIOBroadcaster(socketio, namespace=config.get('SOCKETIO_NAMESPACE', '/ws'))
    controller = SessionController(store, registry, stats, broadcaster, scheduler,
                                   settings=config, logger=flask_app.logger)
    return Services(store, registry, stats, scheduler, broadcaster, controller)


__all__ = ['Services', 'build_services']
