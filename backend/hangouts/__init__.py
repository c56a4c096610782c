from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config, rng=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Rooms, connections and timers live in memory, one set per app
    from hangouts.services import build_services
    services = build_services(flask_app, socketio, rng=rng)
    flask_app.extensions['hangouts'] = services

    from hangouts.main import main
    flask_app.register_blueprint(main)

    from hangouts.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api')

    from hangouts.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    @click.command('reap-idle-rooms')
    @click.option('--minutes', type=float, default=None,
                  help='Close rooms idle for longer than this (default: IDLE_ROOM_MINUTES).')
    def reap_idle_rooms_command(minutes):
        """Closes rooms with no activity for a while."""
        if minutes is None:
            minutes = flask_app.config.get('IDLE_ROOM_MINUTES', 60)
        removed = services.controller.reap_idle_rooms(minutes * 60)
        click.echo(f'Closed {len(removed)} idle room(s)' + (f": {', '.join(removed)}" if removed else ''))

    flask_app.cli.add_command(reap_idle_rooms_command)

    flask_app.logger.info(f"[startup] namespace={flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')} "
                          f"scheduler_background={services.scheduler.background}")
    return flask_app
