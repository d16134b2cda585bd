"""Transport connections and what happens when they come and go."""
import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional, Set

from twotruths.errors import IdentityConflict
from twotruths.models import Participant, Presence, Role, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Binding:
    sid: str
    role: Role
    code: str
    participant_id: str


class ConnectionTable:
    """Maps each live transport connection to at most one participant."""

    def __init__(self):
        self._live: Set[str] = set()
        self._bindings: Dict[str, Binding] = {}
        self._lock = RLock()

    def open(self, sid: str) -> None:
        with self._lock:
            self._live.add(sid)

    def is_live(self, sid: Optional[str]) -> bool:
        return sid in self._live

    def binding(self, sid: str) -> Optional[Binding]:
        return self._bindings.get(sid)

    def bind(self, sid: str, role: Role, code: str, participant_id: str) -> Binding:
        with self._lock:
            existing = self._bindings.get(sid)
            if existing is not None and (existing.code, existing.participant_id) != (code, participant_id):
                raise IdentityConflict('This connection already belongs to another participant')
            self._live.add(sid)
            binding = Binding(sid, role, code, participant_id)
            self._bindings[sid] = binding
            return binding

    def unbind(self, sid: Optional[str]) -> Optional[Binding]:
        if not sid:
            return None
        with self._lock:
            return self._bindings.pop(sid, None)

    def close(self, sid: str) -> Optional[Binding]:
        with self._lock:
            self._live.discard(sid)
            return self._bindings.pop(sid, None)

    def bound_to(self, code: str):
        return [b for b in list(self._bindings.values()) if b.code == code]


class ConnectionLifecycle:
    """Binds participants to connections and handles transport drops."""

    def __init__(self, table: ConnectionTable, sessions: Callable[[str], Optional[Session]],
                 flow, broadcaster, clock: Callable[[], float] = time.time):
        self.table = table
        self.sessions = sessions
        self.flow = flow
        self.broadcaster = broadcaster
        self.clock = clock

    def attach(self, sid: str, session: Session, participant: Participant) -> Binding:
        """Point ``participant`` at ``sid``, retiring any connection it had before.

        Caller holds the session lock.
        """
        binding = self.table.bind(sid, participant.role, session.code, participant.id)
        previous = participant.sid
        if previous and previous != sid:
            self.table.unbind(previous)
            logger.info(f"[rebind] session={session.code} participant={participant.id} replaces an older connection")
        participant.sid = sid
        participant.presence = Presence.ACTIVE
        participant.disconnected_at = None
        return binding

    def on_disconnect(self, sid: str) -> None:
        binding = self.table.close(sid)
        if binding is None:
            return
        session = self.sessions(binding.code)
        if session is None:
            return
        with session.lock:
            participant = session.participants.get(binding.participant_id)
            # A newer connection may already have taken over this identity
            if participant is None or participant.sid != sid:
                return
            participant.sid = None
            participant.presence = Presence.DISCONNECTED
            participant.disconnected_at = self.clock()
            logger.info(
                f"[disconnect] session={session.code} participant={participant.id} phase={session.phase.value}"
            )
            self.broadcaster.notify_all(session, {
                'type': 'player_left',
                'playerId': participant.id,
                'name': participant.name,
                'role': participant.role.value,
                'teamId': participant.team_id,
                'removed': False,
            })
            self.flow.participant_gone(session)
            self.broadcaster.broadcast(session)
