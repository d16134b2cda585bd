"""Per-recipient state views and their fan-out."""
import logging
from typing import Callable, Optional

from twotruths.models import Participant, Phase, Presence, Session
from .rounds import round_number
from .scoring import compute_scores, round_summary

logger = logging.getLogger(__name__)


def _roster(session: Session):
    return [p.to_dict(session) for p in session.players() if p.presence != Presence.REMOVED]


def _current_round(session: Session, viewer: Optional[Participant]):
    rs = session.current_round_set
    if session.phase != Phase.GUESSING or rs is None:
        return None
    subject = session.participants.get(rs.owner_id)
    team = session.teams.get(subject.team_id) if subject and subject.team_id else None
    view = {
        'roundSetId': rs.id,
        'roundNumber': round_number(session),
        'subjectId': rs.owner_id,
        'subjectName': subject.name if subject else None,
        'teamId': team.id if team else None,
        'teamName': team.name if team else None,
    }
    if viewer is not None and viewer.id == rs.owner_id:
        view['youAreSubject'] = True
        return view
    view['youAreSubject'] = False
    view['statements'] = rs.displayed()
    if viewer is not None:
        view['myGuess'] = viewer.guesses.get(rs.id)
    return view


def snapshot(session: Session, viewer: Optional[Participant] = None) -> dict:
    """Build the ``game_state`` view for one recipient.

    ``viewer`` of None yields the spectator view served to polling clients.
    Nobody is ever shown the lie position of an open round.
    """
    admin = session.admin
    view = {
        'type': 'game_state',
        'sessionId': session.code,
        'gamePhase': session.phase.value,
        'gameStarted': session.started,
        'gameEnded': session.ended,
        'validated': session.validated,
        'validation': session.validation.value,
        'teamMode': session.team_mode.value,
        'answerTime': session.answer_time,
        'roundsCount': session.rounds_count,
        'currentRound': round_number(session),
        'totalRounds': len(session.round_sets),
        'adminName': admin.name,
        'admin': {
            'teamId': admin.team_id,
            'plays': admin.plays,
            'connected': admin.connected,
            'submittedStatements': admin.has_submitted(session.rounds_count),
        },
        'statusMessage': session.status_message,
        'players': _roster(session),
        'teams': {str(tid): t.to_dict() for tid, t in session.teams.items()},
        'countdown': session.countdown.info(),
        'scores': compute_scores(session),
        'round': _current_round(session, viewer),
    }
    if session.phase == Phase.RESULTS:
        view['rounds'] = [round_summary(session, rs) for rs in session.round_sets if rs.resolved and rs.activated]

    if viewer is None:
        return view

    view['you'] = {'id': viewer.id, 'role': viewer.role.value, 'teamId': viewer.team_id}
    if session.phase in (Phase.SETUP, Phase.COUNTDOWN):
        view['myStatements'] = [viewer.statements[r].to_dict() for r in sorted(viewer.statements)]
    if viewer.is_admin:
        view['roster'] = [
            {
                'id': p.id,
                'name': p.name,
                'role': p.role.value,
                'presence': p.presence.value,
                'teamId': p.team_id,
                'ready': p.ready,
                'plays': p.plays,
                'statementSets': len(p.statements),
                'guesses': len(p.guesses),
                'disconnectedAt': p.disconnected_at,
            }
            for p in session.participants.values()
        ]
        view['readyPlayers'] = [p.id for p in session.participants.values() if p.ready]
    return view


class Broadcaster:
    """Pushes messages to the connections of one session's participants.

    ``emit`` is the transport seam: ``emit(event, payload, to=sid)``.
    """

    def __init__(self, emit: Callable[..., None]):
        self.emit = emit

    def send(self, sid: Optional[str], payload: dict) -> None:
        if not sid:
            return
        try:
            self.emit(payload['type'], payload, to=sid)
        except Exception:
            # A dead socket must not break fan-out to everyone else
            logger.exception(f"[send-failed] sid={sid} type={payload.get('type')}")

    def send_to(self, participant: Participant, payload: dict) -> None:
        if participant.connected:
            self.send(participant.sid, payload)

    def notify_all(self, session: Session, payload: dict, exclude: Optional[str] = None) -> None:
        for p in session.connected():
            if p.id != exclude:
                self.send(p.sid, payload)

    def broadcast(self, session: Session) -> None:
        recipients = session.connected()
        for p in recipients:
            self.send(p.sid, snapshot(session, p))
        logger.debug(f"[broadcast] session={session.code} phase={session.phase.value} recipients={len(recipients)}")
