from flask import Blueprint, current_app, jsonify

from twotruths.errors import SessionNotFound
from twotruths.services.games.broadcast import snapshot

sessions = Blueprint('sessions', __name__)


def _session(code):
    return current_app.extensions['twotruths'].registry.lookup(code)


@sessions.errorhandler(SessionNotFound)
def session_not_found(exc):
    return jsonify(exc.to_dict()), 404


@sessions.route('/<code>/state')
def get_state(code):
    """Spectator view of a session; never reveals an open round's lie."""
    session = _session(code)
    with session.lock:
        return jsonify(snapshot(session))


@sessions.route('/<code>/countdown')
def get_countdown(code):
    session = _session(code)
    with session.lock:
        return jsonify({'sessionId': session.code, 'gamePhase': session.phase.value, **session.countdown.info()})
