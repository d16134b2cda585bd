import json
from typing import Dict

from flask import current_app, request
from flask_socketio import emit

from twotruths import socketio

# Namespace each connection arrived on, so replies reach the right one
_sid_namespace: Dict[str, str] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _coordinator():
    return current_app.extensions['twotruths']


def emit_to(event, payload, to):
    """Send one event to one connection; usable from background tasks."""
    socketio.emit(event, payload, to=to, namespace=_sid_namespace.get(to, '/ws'))


def handle_connect():
    sid = _get_sid()
    _sid_namespace[sid] = request.namespace
    _coordinator().connect(sid)
    emit('connected', {'type': 'connected', 'message': 'Connected to /ws'})


def handle_disconnect(*args):
    sid = _get_sid()
    try:
        _coordinator().disconnect(sid)
    finally:
        _sid_namespace.pop(sid, None)


def handle_message(data):
    # Browsers may send the JSON text rather than an object
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError:
            data = None
    _coordinator().handle(_get_sid(), data)


def handle_ping(data=None):
    emit('pong', {'type': 'pong', **(data if isinstance(data, dict) else {})})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    Handlers look the coordinator up on the current app, so re-registering
    for a fresh app is harmless.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('message', handle_message, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
