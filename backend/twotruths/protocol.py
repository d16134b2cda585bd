"""Inbound websocket messages.

Every client message is a JSON object whose ``type`` picks the model below.
Field names are camelCase on the wire.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from twotruths.errors import ProtocolViolation
from twotruths.models import StatementSet, TeamMode


class Message(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        str_strip_whitespace=True,
    )


class StatementSetIn(Message):
    round: Optional[int] = Field(default=None, ge=1)
    truths: List[str] = Field(min_length=2, max_length=2)
    lie: str


def _as_list(value):
    # Single-round clients send one object instead of a list
    if isinstance(value, dict):
        return [value]
    return value


StatementSets = Annotated[List[StatementSetIn], BeforeValidator(_as_list)]


def _to_sets(items: List[StatementSetIn]) -> List[StatementSet]:
    return [
        StatementSet(round=item.round or position, truths=list(item.truths), lie=item.lie)
        for position, item in enumerate(items, start=1)
    ]


class CreateSession(Message):
    type: Literal['create_session']
    game_code: Optional[str] = Field(default=None, max_length=64,
                                     validation_alias=AliasChoices('gameCode', 'sessionId', 'game_code'))
    api_code: Optional[str] = None
    admin_name: Optional[str] = Field(default=None, max_length=64)


class JoinSession(Message):
    type: Literal['join_session']
    session_id: str = Field(min_length=1, validation_alias=AliasChoices('sessionId', 'gameCode', 'session_id'))
    name: Optional[str] = Field(default=None, max_length=64)
    player_id: Optional[str] = None


class SubmitStatements(Message):
    type: Literal['submit_statements']
    statements: StatementSets = Field(min_length=1)

    def to_statement_sets(self) -> List[StatementSet]:
        return _to_sets(self.statements)


class SubmitGuess(Message):
    type: Literal['submit_guess']
    target_id: str = Field(validation_alias=AliasChoices('targetId', 'targetPlayerId', 'target_id'))
    index: int = Field(validation_alias=AliasChoices('index', 'guessIndex'))


_LEGACY_MODES = {'allVsAll': 'none', 'randomTeams': 'random', 'adminTeams': 'admin'}


class SetTeamMode(Message):
    type: Literal['set_team_mode']
    mode: TeamMode

    @field_validator('mode', mode='before')
    @classmethod
    def _legacy_names(cls, value):
        if isinstance(value, str):
            return _LEGACY_MODES.get(value, value)
        return value


class AssignTeams(Message):
    type: Literal['assign_teams']


class AssignPlayerToTeam(Message):
    type: Literal['assign_player_to_team']
    player_id: str
    team_id: Optional[int] = Field(default=None, ge=0)


class UpdateTeamName(Message):
    type: Literal['update_team_name']
    team_id: int
    name: str = Field(min_length=1, max_length=40)


class UpdateGameSettings(Message):
    type: Literal['update_game_settings']
    answer_time: Optional[int] = None
    rounds_count: Optional[int] = None


class StartGame(Message):
    type: Literal['start_game']
    answer_time: Optional[int] = None
    rounds_count: Optional[int] = None
    countdown_seconds: Optional[int] = Field(default=None, ge=0, le=300)
    admin_statements: Optional[StatementSets] = None

    def to_statement_sets(self) -> List[StatementSet]:
        return _to_sets(self.admin_statements or [])


class FinishGame(Message):
    type: Literal['finish_game']


class AdvanceRound(Message):
    type: Literal['advance_round']


class ResetSession(Message):
    type: Literal['reset_session']


class PlayAgain(Message):
    type: Literal['play_again']


class AdminNameUpdate(Message):
    type: Literal['admin_name_update']
    name: str = Field(min_length=1, max_length=64)


class PlayerReady(Message):
    type: Literal['player_ready']
    ready: bool = True


class RemovePlayer(Message):
    type: Literal['remove_player']
    player_id: str


class ShowMessage(Message):
    type: Literal['show_message']
    message: str = Field(max_length=500)
    duration: Optional[int] = Field(default=None, ge=0)


class EndSession(Message):
    type: Literal['end_session']


InboundMessage = Annotated[
    Union[
        CreateSession, JoinSession, SubmitStatements, SubmitGuess,
        SetTeamMode, AssignTeams, AssignPlayerToTeam, UpdateTeamName,
        UpdateGameSettings, StartGame, FinishGame, AdvanceRound, ResetSession, PlayAgain,
        AdminNameUpdate, PlayerReady, RemovePlayer, ShowMessage, EndSession,
    ],
    Field(discriminator='type'),
]

_inbound = TypeAdapter(InboundMessage)

ADMIN_ONLY = frozenset({
    'set_team_mode', 'assign_teams', 'assign_player_to_team', 'update_team_name',
    'update_game_settings', 'start_game', 'finish_game', 'advance_round', 'reset_session',
    'play_again', 'admin_name_update', 'remove_player', 'show_message', 'end_session',
})


def _describe(exc: ValidationError) -> str:
    error = exc.errors()[0]
    if error['type'] == 'union_tag_invalid':
        return f"Unknown message type: {error.get('input', {}).get('type')!r}"
    where = '.'.join(str(part) for part in error['loc'][1:])
    return f"{where}: {error['msg']}" if where else error['msg']


def parse_message(data) -> Message:
    """Validate a raw client payload, raising ProtocolViolation on any mismatch."""
    if not isinstance(data, dict):
        raise ProtocolViolation('Messages must be JSON objects')
    if not data.get('type'):
        raise ProtocolViolation('Message type is required')
    try:
        return _inbound.validate_python(data)
    except ValidationError as exc:
        raise ProtocolViolation(_describe(exc)) from exc
