import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Dict, List, Optional

from twotruths.errors import InvalidTransition
from twotruths.services.games.timers import Countdown

ADMIN_ID = 'admin'


class Phase(str, Enum):
    SETUP = 'setup'
    COUNTDOWN = 'countdown'
    GUESSING = 'guessing'
    RESULTS = 'results'


# Forward transitions within one game cycle; reset is handled separately.
ALLOWED_TRANSITIONS = {
    Phase.SETUP: {Phase.COUNTDOWN},
    Phase.COUNTDOWN: {Phase.GUESSING, Phase.RESULTS},
    Phase.GUESSING: {Phase.RESULTS},
    Phase.RESULTS: set(),
}


class TeamMode(str, Enum):
    NONE = 'none'
    RANDOM = 'random'
    ADMIN = 'admin'


class Role(str, Enum):
    ADMIN = 'admin'
    PLAYER = 'player'


class Presence(str, Enum):
    ACTIVE = 'active'
    DISCONNECTED = 'disconnected'
    REMOVED = 'removed'


class Validation(str, Enum):
    NOT_REQUIRED = 'not_required'
    PENDING = 'pending'
    VALID = 'valid'
    INVALID = 'invalid'


def generate_session_code(taken=(), length=4):
    """Generate a unique, short session code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if code not in taken:
            return code


@dataclass
class StatementSet:
    round: int
    truths: List[str]
    lie: str

    def to_dict(self):
        return {'round': self.round, 'truths': list(self.truths), 'lie': self.lie}


@dataclass
class Participant:
    id: str
    name: str
    role: Role = Role.PLAYER
    sid: Optional[str] = None
    presence: Presence = Presence.ACTIVE
    team_id: Optional[int] = None
    ready: bool = False
    # The admin only counts as a player once they submit or guess
    plays: bool = True
    statements: Dict[int, StatementSet] = field(default_factory=dict)
    guesses: Dict[str, int] = field(default_factory=dict)
    disconnected_at: Optional[float] = None

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    @property
    def connected(self):
        return self.presence == Presence.ACTIVE and self.sid is not None

    def has_submitted(self, rounds_count):
        return len(self.statements) >= rounds_count

    def clear_game_data(self):
        self.ready = False
        self.statements = {}
        self.guesses = {}
        if self.is_admin:
            self.plays = False

    def to_dict(self, session):
        team = session.teams.get(self.team_id) if self.team_id else None
        return {
            'id': self.id,
            'name': self.name,
            'role': self.role.value,
            'teamId': self.team_id,
            'teamName': team.name if team else None,
            'ready': self.ready,
            'submittedStatements': self.has_submitted(session.rounds_count),
            'connected': self.connected,
            'hasGuessedCurrent': session.has_guessed_current(self),
        }


@dataclass
class Team:
    id: int
    name: str
    members: List[str] = field(default_factory=list)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'members': list(self.members)}


@dataclass
class RoundSet:
    id: str
    owner_id: str
    round: int
    truths: List[str]
    lie: str
    consumed: bool = False
    resolved: bool = False
    # Indices into ``statements`` in display order, fixed once activated
    order: Optional[List[int]] = None
    lie_position: Optional[int] = None

    @property
    def statements(self):
        return [*self.truths, self.lie]

    @property
    def activated(self):
        return self.lie_position is not None

    def activate(self, rng):
        if self.activated:
            raise RuntimeError(f"round set {self.id} was already shuffled")
        order = list(range(len(self.statements)))
        rng.shuffle(order)
        self.order = order
        self.lie_position = order.index(len(self.truths))
        self.consumed = True

    def displayed(self):
        texts = self.statements
        return [{'index': pos, 'text': texts[i]} for pos, i in enumerate(self.order or [])]

    def to_dict(self, reveal=False):
        data = {
            'id': self.id,
            'ownerId': self.owner_id,
            'round': self.round,
            'statements': self.displayed(),
        }
        if reveal:
            data['liePosition'] = self.lie_position
        return data


@dataclass
class Session:
    code: str
    countdown: Countdown
    rng: random.Random = field(default_factory=random.Random)
    lock: RLock = field(default_factory=RLock, repr=False)
    validation: Validation = Validation.NOT_REQUIRED
    api_code: Optional[str] = None
    phase: Phase = Phase.SETUP
    started: bool = False
    ended: bool = False
    team_mode: TeamMode = TeamMode.NONE
    answer_time: int = 10
    rounds_count: int = 1
    max_teams: int = 4
    round_sets: List[RoundSet] = field(default_factory=list)
    current_index: Optional[int] = None
    teams: Dict[int, Team] = field(default_factory=dict)
    participants: Dict[str, Participant] = field(default_factory=dict)
    events: List[dict] = field(default_factory=list)
    status_message: str = ''
    # Bumped per validation request so late responses are ignored
    validation_ticket: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def admin(self) -> Participant:
        return self.participants[ADMIN_ID]

    @property
    def validated(self):
        return self.validation in (Validation.NOT_REQUIRED, Validation.VALID)

    @property
    def current_round_set(self) -> Optional[RoundSet]:
        if self.current_index is None or not (0 <= self.current_index < len(self.round_sets)):
            return None
        return self.round_sets[self.current_index]

    @property
    def active_round_set(self) -> Optional[RoundSet]:
        """The round set currently open for guesses, if any."""
        rs = self.current_round_set
        if self.phase != Phase.GUESSING or rs is None or rs.resolved:
            return None
        return rs

    def players(self):
        return [p for p in self.participants.values() if not p.is_admin]

    def playing(self):
        """Participants taking part in the game, connected or not."""
        return [p for p in self.participants.values() if p.plays and p.presence != Presence.REMOVED]

    def active_playing(self):
        return [p for p in self.playing() if p.presence == Presence.ACTIVE]

    def connected(self):
        return [p for p in self.participants.values() if p.connected]

    def has_guessed_current(self, participant):
        rs = self.current_round_set
        return bool(rs and rs.id in participant.guesses)

    def transition(self, to: Phase) -> None:
        if to not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransition(f"Cannot move from {self.phase.value} to {to.value}")
        self.phase = to

    def record_event(self, kind, **data):
        self.events.append({'type': kind, 'time': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()), **data})
