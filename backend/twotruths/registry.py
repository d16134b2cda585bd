import logging
import random
import time
import uuid
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from twotruths.errors import AdminAlreadyActive, AlreadyInAnotherSession, SessionNotFound
from twotruths.models import (
    ADMIN_ID,
    Participant,
    Presence,
    Role,
    Session,
    generate_session_code,
)
from twotruths.services.games.timers import Countdown

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live session and the identity-token index.

    Lives for the lifetime of the process; nothing here survives a restart,
    so an unknown code is reported to clients as a server restart.
    """

    def __init__(self, scheduler, defaults: Optional[dict] = None,
                 is_live: Callable[[str], bool] = lambda sid: True,
                 clock: Callable[[], float] = time.time,
                 rng_factory: Callable[[], random.Random] = random.Random):
        self.scheduler = scheduler
        self.defaults = defaults or {}
        self.is_live = is_live
        self.clock = clock
        self.rng_factory = rng_factory
        self.sessions: Dict[str, Session] = {}
        self.tokens: Dict[str, str] = {}
        self._lock = RLock()

    def _new_session(self, code: str) -> Session:
        lock = RLock()
        session = Session(
            code=code,
            countdown=Countdown(self.scheduler, lock, clock=self.clock, label=code),
            rng=self.rng_factory(),
            lock=lock,
            answer_time=self.defaults.get('answer_time', 10),
            rounds_count=self.defaults.get('rounds_count', 1),
            max_teams=self.defaults.get('max_teams', 4),
        )
        session.participants[ADMIN_ID] = Participant(
            id=ADMIN_ID, name='Admin', role=Role.ADMIN, plays=False,
        )
        return session

    def create_or_attach(self, code: Optional[str], admin_sid: str) -> Tuple[Session, bool]:
        """Create the session for ``code`` or hand it to a new admin connection.

        Refuses while another live connection holds the admin slot.
        """
        with self._lock:
            if not code:
                code = generate_session_code(taken=self.sessions)
            session = self.sessions.get(code)
            if session is None:
                session = self._new_session(code)
                self.sessions[code] = session
                logger.info(f"[session-created] session={code}")
                return session, True
            incumbent = session.admin.sid
            if incumbent and incumbent != admin_sid and self.is_live(incumbent):
                raise AdminAlreadyActive()
            logger.info(f"[session-attach] session={code} admin rebound")
            return session, False

    def get(self, code: Optional[str]) -> Optional[Session]:
        if not code:
            return None
        return self.sessions.get(code.upper())

    def lookup(self, code: Optional[str]) -> Session:
        session = self.get(code)
        if session is None:
            raise SessionNotFound()
        return session

    def issue_token(self, code: str) -> str:
        token = str(uuid.uuid4())
        with self._lock:
            self.tokens[token] = code
        return token

    def forget_token(self, token: str) -> None:
        with self._lock:
            self.tokens.pop(token, None)

    def resolve_participant(self, code: str, token: Optional[str]) -> Optional[Participant]:
        """Find the participant a reconnect token belongs to, within ``code`` only."""
        if not token or token == ADMIN_ID:
            return None
        owner = self.tokens.get(token)
        if owner is None:
            return None
        if owner != code:
            raise AlreadyInAnotherSession()
        session = self.sessions.get(code)
        if session is None:
            return None
        participant = session.participants.get(token)
        if participant is None or participant.presence == Presence.REMOVED:
            return None
        return participant

    def teardown(self, code: str) -> Optional[Session]:
        with self._lock:
            session = self.sessions.pop(code, None)
            if session is None:
                return None
            session.countdown.cancel()
            for token in [t for t, c in self.tokens.items() if c == code]:
                del self.tokens[token]
        logger.info(f"[session-teardown] session={code}")
        return session

    def clear(self) -> None:
        for code in list(self.sessions):
            self.teardown(code)
