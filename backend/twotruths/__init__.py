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


def create_app(config_class=Config, scheduler=None, spawn=None):
    """Build the Flask app and its game coordinator.

    ``scheduler`` and ``spawn`` default to Socket.IO background tasks; tests
    pass manual ones to drive timers and outbound HTTP deterministically.
    """
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from twotruths.coordinator import Coordinator
    from twotruths.services.games.timers import BackgroundScheduler
    from twotruths.services.teamplay import TeamPlayClient
    from twotruths.socketio_events import emit_to

    teamplay = TeamPlayClient(
        flask_app.config['TEAMPLAY_API_URL'],
        flask_app.config.get('TEAMPLAY_API_TOKEN'),
        timeout=flask_app.config.get('API_TIMEOUT_SEC', 5.0),
    )
    coordinator = Coordinator(
        flask_app.config,
        emit_to,
        scheduler or BackgroundScheduler(socketio, flask_app.config.get('TIMER_HEARTBEAT_SEC', 0)),
        spawn=spawn or socketio.start_background_task,
        teamplay=teamplay,
    )
    flask_app.extensions['twotruths'] = coordinator

    # Import and register blueprints here
    from twotruths.main import main
    flask_app.register_blueprint(main)

    from twotruths.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from twotruths.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('check-code')
    @click.argument('api_code')
    def check_code_command(api_code):
        """Validates a TeamPlay API code against the configured server."""
        outcome = teamplay.validate_code(api_code)
        if outcome.valid:
            click.echo(f'{api_code}: valid')
        else:
            click.echo(f'{api_code}: {outcome.value} - {outcome.message}')
            raise SystemExit(1)

    flask_app.cli.add_command(check_code_command)

    return flask_app
