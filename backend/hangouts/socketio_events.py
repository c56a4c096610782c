from flask import current_app, request
from flask_socketio import emit

from hangouts import socketio
from hangouts.commands import COMMANDS, parse_command
from hangouts.errors import GameError


def _services():
    return current_app.extensions['hangouts']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect(auth=None):
    sid = _get_sid()
    _services().controller.connect(sid)
    current_app.logger.info(f"[connect] sid={sid}")
    emit('connected', {'message': 'Connected to /ws', 'sid': sid})


def handle_disconnect(*args):
    _services().controller.disconnect(_get_sid())


def handle_ping(data=None):
    emit('pong', data or {})


def handle_command(event: str, args) -> None:
    """Parse, dispatch and report failures privately to the sender."""
    sid = _get_sid()
    try:
        command = parse_command(event, args)
        _services().controller.dispatch(sid, command)
    except GameError as exc:
        current_app.logger.info(f"[rejected] event={event} sid={sid} reply={exc.event} message={exc.message}")
        emit(exc.event, exc.to_dict())
    except Exception:
        current_app.logger.exception(f"[handler-error] event={event} sid={sid}")
        emit('error', {'message': 'Something went wrong, please try again'})


def _command_handler(event: str):
    def handler(*args):
        handle_command(event, args)
    handler.__name__ = f"handle_{event.replace('-', '_')}"
    return handler


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register every Socket.IO event handler on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
    for event in COMMANDS:
        socketio.on_event(event, _command_handler(event), namespace=namespace)
