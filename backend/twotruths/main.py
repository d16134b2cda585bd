from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'name': 'twotruths', 'websocket': '/ws'})


@main.route('/api/health')
def health():
    coordinator = current_app.extensions['twotruths']
    return jsonify({
        'status': 'ok',
        'sessions': len(coordinator.registry.sessions),
        'apiValidation': bool(current_app.config.get('ENABLE_API_VALIDATION')),
    })
