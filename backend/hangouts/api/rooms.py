"""Read-only JSON views of the live rooms.

Everything that changes a room goes over Socket.IO; these routes let a lobby
page list rooms and let operators peek at one without joining it.
"""

from flask import Blueprint, abort, current_app, jsonify

from hangouts.models import GameType
from hangouts.services.games.bingo import BOARD_SIZES
from hangouts.services.games.dots import GRID_SIZES
from hangouts.services.rooms import normalize_room_id

rooms = Blueprint('rooms', __name__)


def _controller():
    return current_app.extensions['hangouts'].controller


@rooms.route('/rooms', methods=['GET'])
def list_rooms():
    return jsonify({'rooms': _controller().list_rooms()})


@rooms.route('/rooms/<string:room_id>', methods=['GET'])
def get_room(room_id):
    payload = _controller().room_snapshot(normalize_room_id(room_id))
    if payload is None:
        abort(404, description=f'Room {normalize_room_id(room_id)} not found')
    return jsonify(payload)


@rooms.route('/rooms/<string:room_id>/messages', methods=['GET'])
def get_room_messages(room_id):
    messages = _controller().chat_history(normalize_room_id(room_id))
    if messages is None:
        abort(404, description=f'Room {normalize_room_id(room_id)} not found')
    return jsonify({'messages': messages})


@rooms.route('/games', methods=['GET'])
def list_games():
    engines = current_app.extensions['hangouts'].store.engines
    sizes = {GameType.BINGO: list(BOARD_SIZES), GameType.DOTS_AND_BOXES: list(GRID_SIZES)}
    return jsonify({'games': [{
        'game_type': game_type.value,
        'max_players': engine.max_players,
        'min_players': engine.min_players,
        'move_event': engine.move_event,
        'default_variant': dict(engine.default_variant),
        'sizes': sizes.get(game_type, []),
    } for game_type, engine in engines.items()]})
