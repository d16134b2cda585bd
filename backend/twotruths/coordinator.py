"""Routes inbound client messages to the game services.

The coordinator owns the registry, the connection table and the phase
machine. It knows nothing about Socket.IO: messages come in as dicts via
:meth:`Coordinator.handle` and go out through the ``emit`` callable.
"""
import logging
import random
import time
from typing import Callable, Optional, Tuple

from twotruths.connections import ConnectionLifecycle, ConnectionTable
from twotruths.errors import GameError, IdentityConflict, NotAuthorized, ProtocolViolation, ValidationFailure
from twotruths.models import Participant, Phase, Role, Session, Validation
from twotruths.protocol import ADMIN_ONLY, parse_message
from twotruths.registry import SessionRegistry
from twotruths.services.games.broadcast import Broadcaster
from twotruths.services.games.phases import GameFlow

logger = logging.getLogger(__name__)

PLAYER_VALIDATION_MESSAGE = 'This game session requires API validation. Please contact the game admin.'
MISSING_CODE_MESSAGE = 'API code is required to create or join a game session.'
PENDING_MESSAGE = 'The API code is still being validated. Please wait a moment.'

# Allowed before the session is validated
UNGATED = frozenset({'create_session', 'join_session', 'admin_name_update', 'show_message', 'end_session'})


def _run_inline(fn, *args):
    fn(*args)


class Coordinator:

    def __init__(self, config: dict, emit: Callable[..., None], scheduler, *,
                 spawn: Callable[..., None] = _run_inline, teamplay=None,
                 clock: Callable[[], float] = time.time,
                 rng_factory: Callable[[], random.Random] = random.Random):
        self.config = config
        self.spawn = spawn
        self.teamplay = teamplay
        self.broadcaster = Broadcaster(emit)
        self.connections = ConnectionTable()
        self.registry = SessionRegistry(
            scheduler,
            defaults={
                'answer_time': config.get('DEFAULT_ANSWER_TIME', 10),
                'rounds_count': config.get('DEFAULT_ROUNDS_COUNT', 1),
                'max_teams': config.get('MAX_TEAMS', 4),
            },
            is_live=self.connections.is_live,
            clock=clock,
            rng_factory=rng_factory,
        )
        self.flow = GameFlow(self.broadcaster, journal=self._ship_journal)
        self.lifecycle = ConnectionLifecycle(self.connections, self.registry.get, self.flow,
                                             self.broadcaster, clock=clock)
        self._handlers = {
            'create_session': self.create_session,
            'join_session': self.join_session,
            'submit_statements': self._submit_statements,
            'player_ready': self._player_ready,
            'submit_guess': self._submit_guess,
            'set_team_mode': self._set_team_mode,
            'assign_teams': self._assign_teams,
            'assign_player_to_team': self._assign_player_to_team,
            'update_team_name': self._update_team_name,
            'update_game_settings': self._update_game_settings,
            'start_game': self._start_game,
            'finish_game': self._finish_game,
            'advance_round': self._advance_round,
            'reset_session': self._reset_session,
            'play_again': self._play_again,
            'admin_name_update': self._admin_name_update,
            'show_message': self._show_message,
            'remove_player': self._remove_player,
            'end_session': self.end_session,
        }

    # ---- transport entry points ----

    def connect(self, sid: str) -> None:
        self.connections.open(sid)

    def disconnect(self, sid: str) -> None:
        self.lifecycle.on_disconnect(sid)

    def handle(self, sid: str, data) -> None:
        """Process one inbound message; failures are reported to the sender only."""
        kind = data.get('type') if isinstance(data, dict) else None
        try:
            message = parse_message(data)
            self._handlers[message.type](sid, message)
        except GameError as exc:
            logger.warning(f"[rejected] sid={sid} type={kind} code={exc.code} reason={exc.message}")
            self.broadcaster.send(sid, exc.to_dict())
        except Exception:
            logger.exception(f"[handler-error] sid={sid} type={kind}")
            self.broadcaster.send(sid, {'type': 'error', 'code': 'INTERNAL_ERROR', 'message': 'Internal server error'})

    # ---- helpers ----

    def _bound(self, sid: str, kind: str) -> Tuple[Session, Participant]:
        binding = self.connections.binding(sid)
        if binding is None:
            raise ProtocolViolation('Join or create a session first')
        if kind in ADMIN_ONLY and binding.role != Role.ADMIN:
            raise NotAuthorized()
        session = self.registry.lookup(binding.code)
        participant = session.participants.get(binding.participant_id)
        if participant is None:
            raise ProtocolViolation('You are no longer part of this session')
        return session, participant

    def _require_validated(self, session: Session, participant: Participant) -> None:
        if session.validated:
            return
        if session.validation == Validation.PENDING:
            raise ValidationFailure(PENDING_MESSAGE)
        raise ValidationFailure(MISSING_CODE_MESSAGE if participant.is_admin else PLAYER_VALIDATION_MESSAGE)

    def _mutate(self, sid, message, action) -> None:
        """Run ``action(session, participant)`` under the session lock, then broadcast once."""
        session, participant = self._bound(sid, message.type)
        with session.lock:
            if message.type not in UNGATED:
                self._require_validated(session, participant)
            action(session, participant)
            self.broadcaster.broadcast(session)

    def _check_settings(self, answer_time: Optional[int], rounds_count: Optional[int]) -> None:
        lo, hi = self.config.get('MIN_ANSWER_TIME', 5), self.config.get('MAX_ANSWER_TIME', 60)
        if answer_time is not None and not lo <= answer_time <= hi:
            raise ProtocolViolation(f"Answer time must be between {lo} and {hi} seconds")
        most = self.config.get('MAX_ROUNDS_COUNT', 20)
        if rounds_count is not None and not 1 <= rounds_count <= most:
            raise ProtocolViolation(f"Rounds count must be between 1 and {most}")

    @property
    def examples(self):
        return self.config.get('EXAMPLE_STATEMENTS', [])

    # ---- session entry ----

    def create_session(self, sid: str, message) -> None:
        code = (message.game_code or '').strip().upper() or None
        existing = self.connections.binding(sid)
        if existing is not None:
            if existing.role != Role.ADMIN or (code and code != existing.code):
                raise IdentityConflict('This connection already belongs to another session')
            code = existing.code

        session, created = self.registry.create_or_attach(code, sid)
        with session.lock:
            admin = session.admin
            self.lifecycle.attach(sid, session, admin)
            if message.admin_name:
                admin.name = message.admin_name
            self.broadcaster.send(sid, {
                'type': 'session_created',
                'sessionId': session.code,
                'created': created,
                'gamePhase': session.phase.value,
            })
            self.broadcaster.send(sid, {'type': 'example_statements', 'examples': self.examples})
            if created or message.api_code:
                self._begin_validation(session, message.api_code)
            self.broadcaster.broadcast(session)

    def join_session(self, sid: str, message) -> None:
        session = self.registry.lookup(message.session_id.strip())
        with session.lock:
            if not session.validated:
                raise ValidationFailure(PLAYER_VALIDATION_MESSAGE)
            participant = self.registry.resolve_participant(session.code, message.player_id)
            reconnected = participant is not None
            if reconnected:
                if message.name:
                    participant.name = message.name
            else:
                if not message.name:
                    raise ProtocolViolation('Name is required')
                existing = self.connections.binding(sid)
                if existing is not None:
                    raise IdentityConflict('This connection already belongs to another participant')
                token = self.registry.issue_token(session.code)
                participant = Participant(id=token, name=message.name)
                session.participants[token] = participant
                self.flow.place_joiner(session, participant)
            self.lifecycle.attach(sid, session, participant)
            logger.info(
                f"[join] session={session.code} player={participant.id} reconnected={reconnected} "
                f"phase={session.phase.value}"
            )
            team = session.teams.get(participant.team_id) if participant.team_id else None
            self.broadcaster.send(sid, {
                'type': 'joined_game',
                'sessionId': session.code,
                'playerId': participant.id,
                'name': participant.name,
                'teamId': participant.team_id,
                'teamName': team.name if team else None,
                'reconnected': reconnected,
                'gamePhase': session.phase.value,
                'gameStarted': session.started,
                'teamMode': session.team_mode.value,
                'statements': [participant.statements[r].to_dict() for r in sorted(participant.statements)],
                'exampleStatements': self.examples,
            })
            self.broadcaster.notify_all(session, {
                'type': 'player_joined',
                'playerId': participant.id,
                'name': participant.name,
                'teamId': participant.team_id,
                'reconnected': reconnected,
            }, exclude=participant.id)
            self.broadcaster.broadcast(session)

    def end_session(self, sid: str, message) -> None:
        session, _ = self._bound(sid, message.type)
        with session.lock:
            session.countdown.cancel()
            self.broadcaster.notify_all(session, {'type': 'session_ended', 'sessionId': session.code})
            self.registry.teardown(session.code)
            for binding in self.connections.bound_to(session.code):
                self.connections.unbind(binding.sid)
        logger.info(f"[session-ended] session={session.code}")

    # ---- validation ----

    def _begin_validation(self, session: Session, api_code: Optional[str]) -> None:
        session.validation_ticket += 1
        if not self.config.get('ENABLE_API_VALIDATION'):
            session.validation = Validation.NOT_REQUIRED
            session.api_code = api_code
            return
        if not api_code:
            session.validation = Validation.INVALID
            session.api_code = None
            self.broadcaster.send_to(session.admin, {
                'type': 'error', 'code': ValidationFailure.code, 'message': MISSING_CODE_MESSAGE,
            })
            return
        session.validation = Validation.PENDING
        session.api_code = api_code
        logger.info(f"[validate] session={session.code} pending")
        self.spawn(self._finish_validation, session.code, api_code, session.validation_ticket)

    def _finish_validation(self, code: str, api_code: str, ticket: int) -> None:
        outcome = self.teamplay.validate_code(api_code)
        session = self.registry.get(code)
        if session is None:
            return
        with session.lock:
            if ticket != session.validation_ticket:
                logger.info(f"[validate] session={code} stale result ignored")
                return
            if outcome.valid:
                session.validation = Validation.VALID
                self.broadcaster.notify_all(session, {'type': 'api_validated', 'validated': True})
            else:
                session.validation = Validation.INVALID
                session.api_code = None
                for p in session.connected():
                    self.broadcaster.send(p.sid, {
                        'type': 'error',
                        'code': ValidationFailure.code,
                        'message': outcome.message if p.is_admin else PLAYER_VALIDATION_MESSAGE,
                    })
            logger.info(f"[validate] session={code} outcome={outcome.value}")
            self.broadcaster.broadcast(session)

    def _ship_journal(self, session: Session, events) -> None:
        if not events:
            return
        if not (self.config.get('ENABLE_TEAMPLAY_LOGGING') and self.teamplay and self.teamplay.token):
            logger.info(f"[game-log] session={session.code} logging disabled, {len(events)} events dropped")
            return
        self.spawn(self.teamplay.send_game_log, session.code, session.api_code, events)

    # ---- in-session messages ----

    def _submit_statements(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.submit_statements(s, p, message.to_statement_sets()))

    def _player_ready(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.set_ready(s, p, message.ready))

    def _submit_guess(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.submit_guess(s, p, message.target_id, message.index))

    def _set_team_mode(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.set_team_mode(s, message.mode))

    def _assign_teams(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.assign_teams(s))

    def _assign_player_to_team(self, sid, message):
        self._mutate(sid, message,
                     lambda s, p: self.flow.assign_player_to_team(s, message.player_id, message.team_id))

    def _update_team_name(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.rename_team(s, message.team_id, message.name))

    def _update_game_settings(self, sid, message):
        self._check_settings(message.answer_time, message.rounds_count)
        self._mutate(sid, message,
                     lambda s, p: self.flow.update_settings(s, message.answer_time, message.rounds_count))

    def _start_game(self, sid, message):
        self._check_settings(message.answer_time, message.rounds_count)

        def start(session, admin):
            if session.phase != Phase.SETUP:
                raise ProtocolViolation('Game already started')
            self.flow.update_settings(session, message.answer_time, message.rounds_count)
            if message.admin_statements:
                self.flow.submit_statements(session, admin, message.to_statement_sets())
            seconds = message.countdown_seconds
            if seconds is None:
                seconds = self.config.get('COUNTDOWN_SEC', 5)
            self.flow.start_game(session, seconds)

        self._mutate(sid, message, start)

    def _finish_game(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.finish_early(s))

    def _advance_round(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.advance_round(s))

    def _reset_session(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.reset(s))

    def _play_again(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.reset(s, play_again=True))

    def _admin_name_update(self, sid, message):
        self._mutate(sid, message, lambda s, p: self.flow.set_admin_name(s, message.name))

    def _show_message(self, sid, message):
        duration = message.duration
        if duration is None:
            duration = self.config.get('SHOW_MESSAGE_DURATION_MS', 3000)
        self._mutate(sid, message, lambda s, p: self.flow.show_message(s, message.message, duration))

    def _remove_player(self, sid, message):
        def remove(session, admin):
            removed = self.flow.remove_participant(session, message.player_id)
            self.registry.forget_token(removed.id)
            if removed.sid:
                self.connections.unbind(removed.sid)
                self.broadcaster.send(removed.sid, {'type': 'player_removed', 'playerId': removed.id})
                removed.sid = None

        self._mutate(sid, message, remove)
