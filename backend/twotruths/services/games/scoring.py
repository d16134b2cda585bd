from dataclasses import dataclass
import logging
from typing import Dict

from twotruths.errors import InvalidIndex, NotAcceptingGuesses, ProtocolViolation, WrongTarget
from twotruths.models import Participant, Phase, Presence, Session, TeamMode

logger = logging.getLogger(__name__)

LEADERBOARD_SIZE = 3


@dataclass
class GuessOutcome:
    round_set_id: str
    guesser_id: str
    target_id: str
    index: int
    correct: bool
    replaced: bool


def submit_guess(session: Session, guesser: Participant, target_id: str, index: int) -> GuessOutcome:
    """Validate a guess against the active round and record it.

    Checks run in a fixed order so each failure has one cause: phase, target,
    index. A repeat guess for the same round set overwrites the earlier one.
    """
    if session.phase != Phase.GUESSING:
        raise NotAcceptingGuesses()
    rs = session.active_round_set
    if rs is None:
        raise NotAcceptingGuesses('No round is open for guesses')
    if target_id != rs.owner_id:
        raise WrongTarget()
    if not 0 <= index < len(rs.order):
        raise InvalidIndex(f"Guess index must be between 0 and {len(rs.order) - 1}")
    if guesser.id == rs.owner_id:
        raise ProtocolViolation('You cannot guess on your own statements')

    replaced = rs.id in guesser.guesses
    guesser.guesses[rs.id] = index
    if guesser.is_admin:
        guesser.plays = True
    correct = index == rs.lie_position
    session.record_event(
        'guess_submitted',
        playerId=guesser.id,
        playerName=guesser.name,
        targetPlayerId=target_id,
        roundSetId=rs.id,
        guessIndex=index,
        isCorrect=correct,
    )
    logger.info(
        f"[guess] session={session.code} guesser={guesser.id} set={rs.id} index={index} replaced={replaced}"
    )
    return GuessOutcome(rs.id, guesser.id, target_id, index, correct, replaced)


def _blank_stats():
    return {'correct': 0, 'total': 0, 'received': 0, 'deceptions': 0}


def replay(session: Session) -> Dict[str, dict]:
    """Rebuild per-participant counters from stored guesses and lie positions.

    Only resolved round sets count: an open round's guesses are still
    changeable and its lie position must not leak through the scores.
    """
    stats = {pid: _blank_stats() for pid in session.participants}
    for rs in session.round_sets:
        if not (rs.resolved and rs.activated):
            continue
        for participant in session.participants.values():
            if rs.id not in participant.guesses:
                continue
            guess = participant.guesses[rs.id]
            mine = stats[participant.id]
            mine['total'] += 1
            owner = stats.get(rs.owner_id)
            if owner is not None:
                owner['received'] += 1
            if guess == rs.lie_position:
                mine['correct'] += 1
            elif owner is not None:
                owner['deceptions'] += 1
    return stats


def _ranked(participant: Participant) -> bool:
    if participant.presence == Presence.REMOVED:
        return False
    return not participant.is_admin or participant.plays


def compute_scores(session: Session) -> dict:
    """Return the scoreboard, a pure function of the stored guesses."""
    stats = replay(session)
    players = []
    for p in session.participants.values():
        if not _ranked(p):
            continue
        s = stats[p.id]
        team = session.teams.get(p.team_id) if p.team_id else None
        players.append({
            'id': p.id,
            'name': p.name,
            'type': p.role.value,
            'score': s['correct'],
            'teamId': p.team_id,
            'teamName': team.name if team else None,
            'lieCorrectCount': s['correct'],
            'correctGuesses': s['correct'],
            'totalGuesses': s['total'],
            'guessSuccessRate': s['correct'] / s['total'] if s['total'] else 0.0,
            'guessesReceived': s['received'],
            'successfulDeceptions': s['deceptions'],
            'deceptionRate': s['deceptions'] / s['received'] if s['received'] else 0.0,
        })
    players.sort(key=lambda row: row['score'], reverse=True)

    teams = []
    if session.team_mode != TeamMode.NONE:
        by_id = {row['id']: row for row in players}
        for team in session.teams.values():
            members = [m for m in team.members if m in by_id]
            teams.append({
                'id': team.id,
                'name': team.name,
                'score': sum(by_id[m]['score'] for m in members),
                'players': members,
                'type': 'team',
            })
        teams.sort(key=lambda row: row['score'], reverse=True)

    best_guessers = sorted(
        (row for row in players if row['lieCorrectCount'] > 0),
        key=lambda row: row['lieCorrectCount'],
        reverse=True,
    )[:LEADERBOARD_SIZE]
    best_deceivers = sorted(
        (row for row in players if row['deceptionRate'] > 0),
        key=lambda row: row['deceptionRate'],
        reverse=True,
    )[:LEADERBOARD_SIZE]

    return {
        'players': players,
        'teams': teams,
        'bestGuessers': best_guessers,
        'bestDeceivers': best_deceivers,
        'roundsPlayed': sum(1 for rs in session.round_sets if rs.resolved and rs.activated),
    }


def round_summary(session: Session, round_set) -> dict:
    """Per-guesser correctness for one resolved round set."""
    results = []
    for p in session.participants.values():
        if round_set.id in p.guesses:
            guess = p.guesses[round_set.id]
            results.append({
                'playerId': p.id,
                'name': p.name,
                'guessIndex': guess,
                'correct': guess == round_set.lie_position,
            })
    return {
        'roundSetId': round_set.id,
        'subjectId': round_set.owner_id,
        'liePosition': round_set.lie_position,
        'statements': round_set.displayed(),
        'results': results,
    }
