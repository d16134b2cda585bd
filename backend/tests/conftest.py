import os
import random
import sys
import pytest

# Ensure the backend root (containing the `twotruths` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from twotruths import create_app, socketio
from twotruths.coordinator import Coordinator
from twotruths.services.games.timers import TimerHandle


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    ENABLE_API_VALIDATION = False
    ENABLE_TEAMPLAY_LOGGING = False
    TEAMPLAY_API_TOKEN = None


class ManualClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class ManualScheduler:
    """Scheduler whose timers only fire when the test advances the clock."""

    def __init__(self, clock=None):
        self.clock = clock or ManualClock()
        self.pending = []

    def schedule(self, delay, callback):
        handle = TimerHandle()
        self.pending.append((self.clock.now + delay, handle, callback))
        return handle

    @property
    def live(self):
        return [entry for entry in self.pending if not entry[1].cancelled]

    def advance(self, seconds):
        target = self.clock.now + seconds
        while True:
            due = [e for e in self.pending if not e[1].cancelled and e[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: e[0])
            self.pending.remove(entry)
            self.clock.now = max(self.clock.now, entry[0])
            entry[2]()
        self.clock.now = target
        self.pending = [e for e in self.pending if not e[1].cancelled]


class Outbox:
    """Collects everything the coordinator sends, per connection."""

    def __init__(self):
        self.sent = []

    def __call__(self, event, payload, to):
        self.sent.append((to, event, payload))

    def to(self, sid, event=None):
        return [p for s, e, p in self.sent if s == sid and (event is None or e == event)]

    def last(self, sid, event):
        messages = self.to(sid, event)
        return messages[-1] if messages else None

    def clear(self):
        self.sent = []


class Background:
    """Collects spawned work so tests decide when it runs."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args):
        self.tasks.append((fn, args))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for fn, args in tasks:
            fn(*args)


def config_dict(**overrides):
    data = {k: getattr(TestConfig, k) for k in dir(TestConfig) if k.isupper()}
    data.update(overrides)
    return data


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def background():
    return Background()


@pytest.fixture()
def make_coordinator(outbox, scheduler, clock, background):
    def _make(teamplay=None, **overrides):
        return Coordinator(
            config_dict(**overrides),
            outbox,
            scheduler,
            spawn=background,
            teamplay=teamplay,
            clock=clock,
            rng_factory=lambda: random.Random(7),
        )
    return _make


@pytest.fixture()
def coordinator(make_coordinator):
    return make_coordinator()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig, scheduler=ManualScheduler())
    with application.app_context():
        yield application
        application.extensions['twotruths'].registry.clear()


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


ADMIN_SID = 'sid-admin'


def statement_set(tag, round_no=1):
    return {'round': round_no, 'truths': [f'{tag} truth one', f'{tag} truth two'], 'lie': f'{tag} lie'}


class Table:
    """Drives a coordinator the way connected clients would."""

    def __init__(self, coordinator, outbox, code='ROOM'):
        self.coordinator = coordinator
        self.outbox = outbox
        self.code = code
        self.sids = {}

    @property
    def session(self):
        return self.coordinator.registry.get(self.code)

    def send(self, sid, message):
        self.coordinator.handle(sid, message)

    def create(self, sid=ADMIN_SID, **extra):
        self.coordinator.connect(sid)
        self.send(sid, {'type': 'create_session', 'gameCode': self.code, **extra})
        self.sids['admin'] = sid
        return self.session

    def join(self, name, sid=None, player_id=None):
        sid = sid or f'sid-{name.lower()}'
        self.coordinator.connect(sid)
        message = {'type': 'join_session', 'sessionId': self.code, 'name': name}
        if player_id:
            message['playerId'] = player_id
        self.send(sid, message)
        joined = self.outbox.last(sid, 'joined_game')
        if joined is None:
            return None
        self.sids[joined['playerId']] = sid
        return joined['playerId']

    def submit(self, pid, *sets):
        self.send(self.sids[pid], {'type': 'submit_statements', 'statements': list(sets)})

    def start(self, **extra):
        self.send(self.sids['admin'], {'type': 'start_game', **extra})

    def guess(self, pid, correct=True, index=None, target=None):
        rs = self.session.current_round_set
        if index is None:
            index = rs.lie_position if correct else (rs.lie_position + 1) % 3
        self.send(self.sids[pid], {'type': 'submit_guess', 'targetId': target or rs.owner_id, 'index': index})

    def disconnect(self, pid):
        self.coordinator.disconnect(self.sids[pid])

    def errors(self, pid):
        return self.outbox.to(self.sids[pid], 'error')

    def state(self, pid):
        return self.outbox.last(self.sids[pid], 'game_state')


@pytest.fixture()
def table(coordinator, outbox):
    return Table(coordinator, outbox)
