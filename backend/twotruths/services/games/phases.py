"""Session phase machine: setup -> countdown -> guessing -> results.

Every public method runs under the session lock held by the caller and
leaves the session consistent; the caller broadcasts the resulting state
once. Timer expiries are the exception: they broadcast themselves since no
inbound message is involved.
"""
import logging
from functools import partial
from typing import Callable, List, Optional

from twotruths.errors import ProtocolViolation
from twotruths.models import ADMIN_ID, Participant, Phase, Presence, Session, StatementSet, TeamMode
from . import teams as team_engine
from .rounds import (
    gather_round_sets,
    next_round_set,
    round_complete,
    round_number,
    validate_statement_sets,
)
from .scoring import GuessOutcome, compute_scores, round_summary, submit_guess
from .timers import CountdownContext

logger = logging.getLogger(__name__)


class GameFlow:

    def __init__(self, broadcaster, journal: Optional[Callable[[Session, List[dict]], None]] = None):
        self.broadcaster = broadcaster
        self.journal = journal

    # ---- setup-phase edits ----

    def _require_setup(self, session: Session, message: str) -> None:
        if session.phase != Phase.SETUP:
            raise ProtocolViolation(message)

    def submit_statements(self, session: Session, participant: Participant, sets: List[StatementSet]) -> None:
        if session.phase not in (Phase.SETUP, Phase.COUNTDOWN):
            raise ProtocolViolation('Statements can only be submitted before guessing starts')
        validate_statement_sets(sets, session.rounds_count)
        for s in sets:
            participant.statements[s.round] = s
        if participant.is_admin:
            participant.plays = True
        if participant.has_submitted(session.rounds_count):
            participant.ready = True
        self.broadcaster.notify_all(session, {
            'type': 'statements_submitted',
            'playerId': participant.id,
            'name': participant.name,
            'ready': participant.ready,
        })
        self.check_countdown_complete(session)

    def set_ready(self, session: Session, participant: Participant, ready: bool) -> None:
        participant.ready = bool(ready)
        self.broadcaster.notify_all(session, {
            'type': 'player_ready_status',
            'playerId': participant.id,
            'name': participant.name,
            'ready': participant.ready,
        })

    def update_settings(self, session: Session, answer_time: Optional[int] = None,
                        rounds_count: Optional[int] = None) -> None:
        self._require_setup(session, 'Settings can only be changed before the game starts')
        if answer_time is not None:
            session.answer_time = answer_time
        if rounds_count is not None and rounds_count != session.rounds_count:
            session.rounds_count = rounds_count
            for p in session.participants.values():
                p.statements = {r: s for r, s in p.statements.items() if r <= rounds_count}
                if not p.has_submitted(rounds_count):
                    p.ready = False

    def set_admin_name(self, session: Session, name: str) -> None:
        session.admin.name = name
        self.broadcaster.notify_all(session, {'type': 'admin_info_updated', 'adminName': name})

    def show_message(self, session: Session, message: str, duration: int) -> None:
        session.status_message = message
        self.broadcaster.notify_all(session, {'type': 'show_message', 'message': message, 'duration': duration})

    # ---- teams ----

    def set_team_mode(self, session: Session, mode: TeamMode) -> None:
        self._require_setup(session, 'Teams can only be changed before the game starts')
        session.team_mode = mode
        session.teams = {}
        for p in session.participants.values():
            p.team_id = None
        if mode != TeamMode.NONE:
            self.assign_teams(session)
        self.broadcaster.notify_all(session, {'type': 'team_mode_updated', 'mode': mode.value})

    def assign_teams(self, session: Session) -> None:
        self._require_setup(session, 'Teams can only be changed before the game starts')
        if session.team_mode == TeamMode.NONE:
            raise ProtocolViolation('Team mode is not active')
        roster = [p.id for p in session.participants.values() if p.presence != Presence.REMOVED]
        session.teams = team_engine.assign_teams(roster, session.team_mode, session.max_teams, session.rng)
        for p in session.participants.values():
            p.team_id = None
        for team in session.teams.values():
            for member in team.members:
                session.participants[member].team_id = team.id
        logger.info(f"[teams-assigned] session={session.code} mode={session.team_mode.value} teams={len(session.teams)}")
        self.broadcaster.notify_all(session, {
            'type': 'teams_assigned',
            'teams': [t.to_dict() for t in session.teams.values()],
        })

    def place_joiner(self, session: Session, participant: Participant) -> None:
        """Seat a newcomer on the smallest team when a team mode is active."""
        if session.team_mode == TeamMode.NONE or participant.team_id is not None:
            return
        # Random teams are dealt at game start once a reset has cleared them
        if session.team_mode == TeamMode.RANDOM and not session.teams:
            return
        team_id = team_engine.smallest_team(session.teams) or 1
        team_engine.place(session.teams, participant.id, team_id, session.rng,
                          keep_empty=session.team_mode == TeamMode.ADMIN)
        participant.team_id = team_id

    def assign_player_to_team(self, session: Session, participant_id: str, team_id: Optional[int]) -> None:
        self._require_setup(session, 'Teams can only be changed before the game starts')
        if session.team_mode == TeamMode.NONE:
            raise ProtocolViolation('Team mode is not active')
        participant = session.participants.get(participant_id)
        if participant is None:
            raise ProtocolViolation('Player not found')
        keep_empty = session.team_mode == TeamMode.ADMIN
        if not team_id:
            team_engine.detach(session.teams, participant.id, keep_empty)
            participant.team_id = None
        elif not 1 <= team_id <= session.max_teams:
            raise ProtocolViolation(f"Team must be between 1 and {session.max_teams}")
        else:
            team_engine.place(session.teams, participant.id, team_id, session.rng, keep_empty)
            participant.team_id = team_id
        self.broadcaster.notify_all(session, {
            'type': 'player_team_updated',
            'playerId': participant.id,
            'name': participant.name,
            'teamId': participant.team_id,
        })

    def rename_team(self, session: Session, team_id: int, name: str) -> None:
        team = session.teams.get(team_id)
        if team is None:
            raise ProtocolViolation('Team not found')
        team.name = name

    # ---- roster ----

    def remove_participant(self, session: Session, participant_id: str) -> Participant:
        if participant_id == ADMIN_ID:
            raise ProtocolViolation('The admin cannot be removed')
        participant = session.participants.get(participant_id)
        if participant is None:
            raise ProtocolViolation('Player not found')
        team_engine.detach(session.teams, participant.id, keep_empty=session.team_mode == TeamMode.ADMIN)
        participant.presence = Presence.REMOVED
        del session.participants[participant.id]
        logger.info(f"[player-removed] session={session.code} player={participant.id}")
        self.broadcaster.notify_all(session, {
            'type': 'player_left',
            'playerId': participant.id,
            'name': participant.name,
            'role': participant.role.value,
            'teamId': participant.team_id,
            'removed': True,
        })
        participant.team_id = None
        self.participant_gone(session)
        return participant

    def participant_gone(self, session: Session) -> None:
        """Re-check early exits after someone stops being an active player."""
        if session.phase == Phase.COUNTDOWN:
            self.check_countdown_complete(session)
        elif session.phase == Phase.GUESSING:
            rs = session.active_round_set
            if rs is not None and round_complete(session, rs):
                self.close_round(session)

    # ---- game cycle ----

    def _expire(self, session: Session, handler: Callable[[Session], None]) -> None:
        try:
            handler(session)
        except Exception:
            logger.exception(f"[timer-error] session={session.code} handler={handler.__name__}")
            return
        self.broadcaster.broadcast(session)

    def _teamless(self, session: Session) -> bool:
        if session.team_mode != TeamMode.RANDOM:
            return False
        return any(p.team_id is None for p in session.playing())

    def start_game(self, session: Session, countdown_seconds: int) -> None:
        if session.phase != Phase.SETUP:
            raise ProtocolViolation('Game already started')
        if session.team_mode != TeamMode.NONE and (not session.teams or self._teamless(session)):
            self.assign_teams(session)
        session.transition(Phase.COUNTDOWN)
        session.started = True
        session.ended = False
        session.round_sets = []
        session.current_index = None
        session.record_event('game_started', teamMode=session.team_mode.value,
                             playerCount=len(session.playing()))
        session.countdown.rearm(countdown_seconds, CountdownContext.GAME_START,
                                partial(self._expire, session, self.on_countdown_expired))
        logger.info(f"[phase] session={session.code} setup -> countdown ({countdown_seconds}s)")
        self.broadcaster.notify_all(session, {
            'type': 'countdown_started',
            'gamePhase': session.phase.value,
            'countdown': session.countdown.info(),
        })
        self.check_countdown_complete(session)

    def check_countdown_complete(self, session: Session) -> bool:
        """Skip the rest of the countdown once every active player has submitted."""
        if session.phase != Phase.COUNTDOWN:
            return False
        playing = session.active_playing()
        if not playing or not all(p.has_submitted(session.rounds_count) for p in playing):
            return False
        session.countdown.cancel()
        logger.info(f"[early-exit] session={session.code} all {len(playing)} players submitted")
        self.enter_guessing(session)
        return True

    def on_countdown_expired(self, session: Session) -> None:
        if session.phase != Phase.COUNTDOWN:
            return
        self.enter_guessing(session)

    def enter_guessing(self, session: Session) -> None:
        gather_round_sets(session)
        if not session.round_sets:
            logger.info(f"[phase] session={session.code} countdown -> results (no statements)")
            self._enter_results(session)
            return
        session.transition(Phase.GUESSING)
        logger.info(f"[phase] session={session.code} countdown -> guessing sets={len(session.round_sets)}")
        self._start_next_round(session)

    def _start_next_round(self, session: Session) -> None:
        rs = next_round_set(session)
        if rs is None:
            self._enter_results(session)
            return
        session.countdown.rearm(session.answer_time, CountdownContext.PER_GUESS,
                                partial(self._expire, session, self.on_answer_time_expired))
        subject = session.participants[rs.owner_id]
        session.record_event('round_started', round=round_number(session), roundSetId=rs.id, playerId=subject.id)
        base = {
            'type': 'round_started',
            'round': round_number(session),
            'totalRounds': len(session.round_sets),
            'roundSetId': rs.id,
            'subjectId': subject.id,
            'subjectName': subject.name,
            'answerTime': session.answer_time,
            'countdown': session.countdown.info(),
        }
        for p in session.connected():
            if p.id == subject.id:
                self.broadcaster.send(p.sid, {**base, 'youAreSubject': True})
            else:
                self.broadcaster.send(p.sid, {**base, 'youAreSubject': False, 'statements': rs.displayed()})

    def on_answer_time_expired(self, session: Session) -> None:
        if session.active_round_set is None:
            return
        self.close_round(session)

    def close_round(self, session: Session) -> None:
        """Resolve the active round set, reveal it, and move on."""
        rs = session.active_round_set
        if rs is None:
            return
        session.countdown.cancel()
        rs.resolved = True
        summary = round_summary(session, rs)
        session.record_event('round_resolved', roundSetId=rs.id, playerId=rs.owner_id,
                             liePosition=rs.lie_position,
                             correct=[r['playerId'] for r in summary['results'] if r['correct']])
        self.broadcaster.notify_all(session, {'type': 'round_resolved', **summary})
        self._start_next_round(session)

    def submit_guess(self, session: Session, participant: Participant, target_id: str, index: int) -> GuessOutcome:
        outcome = submit_guess(session, participant, target_id, index)
        self.broadcaster.send_to(participant, {
            'type': 'guess_accepted',
            'roundSetId': outcome.round_set_id,
            'targetId': outcome.target_id,
            'guessIndex': outcome.index,
            'replaced': outcome.replaced,
        })
        rs = session.active_round_set
        if rs is not None and round_complete(session, rs):
            logger.info(f"[early-exit] session={session.code} set={rs.id} every guess is in")
            self.close_round(session)
        return outcome

    def advance_round(self, session: Session) -> None:
        """Close the active round set now and move on to the next subject."""
        if session.phase != Phase.GUESSING or session.active_round_set is None:
            raise ProtocolViolation('No round is in progress')
        logger.info(f"[advance-round] session={session.code} set={session.active_round_set.id}")
        self.close_round(session)

    def finish_early(self, session: Session) -> None:
        """Jump straight to results, keeping guesses already recorded."""
        if session.phase not in (Phase.COUNTDOWN, Phase.GUESSING):
            raise ProtocolViolation('Game is not in progress')
        session.countdown.cancel()
        rs = session.active_round_set
        if rs is not None:
            rs.resolved = True
        logger.info(f"[finish-early] session={session.code} phase={session.phase.value}")
        self._enter_results(session)

    def _enter_results(self, session: Session) -> None:
        session.countdown.cancel()
        session.transition(Phase.RESULTS)
        session.ended = True
        board = compute_scores(session)
        session.record_event('game_finished', scores=[{'id': r['id'], 'score': r['score']} for r in board['players']])
        logger.info(f"[phase] session={session.code} -> results rounds={board['roundsPlayed']}")
        self.broadcaster.notify_all(session, {'type': 'game_finished', 'scores': board})
        events, session.events = session.events, []
        if self.journal is not None:
            self.journal(session, events)

    def reset(self, session: Session, play_again: bool = False) -> None:
        if play_again and session.phase != Phase.RESULTS:
            raise ProtocolViolation('Play again is only available once the game has finished')
        session.countdown.cancel()
        session.phase = Phase.SETUP
        session.started = False
        session.ended = False
        session.round_sets = []
        session.current_index = None
        session.events = []
        session.status_message = ''
        for p in session.participants.values():
            p.clear_game_data()
        if session.team_mode != TeamMode.ADMIN:
            session.teams = {}
            for p in session.participants.values():
                p.team_id = None
        logger.info(f"[reset] session={session.code} play_again={play_again}")
        self.broadcaster.notify_all(session, {'type': 'play_again' if play_again else 'session_reset'})
