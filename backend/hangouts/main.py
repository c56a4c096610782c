from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    services = current_app.extensions['hangouts']
    return jsonify({
        'status': 'ok',
        'namespace': current_app.config.get('SOCKETIO_NAMESPACE', '/ws'),
        'rooms': len(services.store),
        'connections': len(services.registry),
    })
