import random
from threading import RLock

import pytest

from conftest import ManualScheduler
from twotruths.errors import InvalidIndex, NotAcceptingGuesses, ProtocolViolation, WrongTarget
from twotruths.models import ADMIN_ID, Participant, Phase, Role, RoundSet, Session, Team, TeamMode
from twotruths.services.games.scoring import compute_scores, round_summary, submit_guess
from twotruths.services.games.timers import Countdown


def _session():
    lock = RLock()
    session = Session(code='TEST', countdown=Countdown(ManualScheduler(), lock), rng=random.Random(3), lock=lock)
    session.participants[ADMIN_ID] = Participant(id=ADMIN_ID, name='Admin', role=Role.ADMIN, plays=False)
    for pid in ('p1', 'p2', 'p3'):
        session.participants[pid] = Participant(id=pid, name=pid.upper())
    return session


def _round_set(owner, lie_position, resolved=True):
    rs = RoundSet(id=f'TEST:{owner}:1', owner_id=owner, round=1, truths=['a', 'b'], lie='c')
    rs.order = [0, 1, 2]
    rs.order.remove(2)
    rs.order.insert(lie_position, 2)
    rs.lie_position = lie_position
    rs.consumed = True
    rs.resolved = resolved
    return rs


@pytest.fixture()
def session():
    s = _session()
    s.round_sets = [_round_set('p1', 0), _round_set('p2', 2), _round_set('p3', 1)]
    p = s.participants
    # p1 finds every lie, p2 finds none, p3 finds one
    p['p1'].guesses = {'TEST:p2:1': 2, 'TEST:p3:1': 1}
    p['p2'].guesses = {'TEST:p1:1': 1, 'TEST:p3:1': 0}
    p['p3'].guesses = {'TEST:p1:1': 0, 'TEST:p2:1': 0}
    return s


def test_scores_are_a_pure_function_of_stored_guesses(session):
    first = compute_scores(session)
    second = compute_scores(session)
    assert first == second
    # Nothing is cached on the participants themselves
    assert not hasattr(session.participants['p1'], 'score')

    rows = {row['id']: row for row in first['players']}
    assert rows['p1']['score'] == 2
    assert rows['p2']['score'] == 0
    assert rows['p3']['score'] == 1
    assert rows['p1']['successfulDeceptions'] == 1
    assert rows['p2']['successfulDeceptions'] == 1
    assert rows['p3']['successfulDeceptions'] == 1
    assert rows['p1']['guessesReceived'] == 2
    assert rows['p2']['guessSuccessRate'] == 0.0
    assert first['roundsPlayed'] == 3


def test_admin_ranked_only_when_playing(session):
    assert ADMIN_ID not in {row['id'] for row in compute_scores(session)['players']}
    session.admin.plays = True
    assert ADMIN_ID in {row['id'] for row in compute_scores(session)['players']}


def test_unresolved_round_sets_do_not_count(session):
    session.round_sets[2].resolved = False
    rows = {row['id']: row for row in compute_scores(session)['players']}
    # p3's set is still open: p1's correct guess on it is not scored yet
    assert rows['p1']['score'] == 1
    assert compute_scores(session)['roundsPlayed'] == 2


def test_leaderboards(session):
    board = compute_scores(session)
    assert [row['id'] for row in board['bestGuessers']] == ['p1', 'p3']
    assert all(row['deceptionRate'] > 0 for row in board['bestDeceivers'])
    assert len(board['bestDeceivers']) == 3


def test_leaderboards_keep_top_three():
    s = _session()
    for pid in ('p4', 'p5'):
        s.participants[pid] = Participant(id=pid, name=pid.upper())
    lies = {'p1': 0, 'p2': 1, 'p3': 2, 'p4': 0, 'p5': 1}
    s.round_sets = [_round_set(pid, lie) for pid, lie in lies.items()]
    # Targets each guesser gets right; every other guess is wrong
    right = {
        'p1': {'p2', 'p3', 'p4', 'p5'},
        'p2': {'p1', 'p3', 'p4'},
        'p3': {'p1', 'p2'},
        'p4': {'p1'},
        'p5': set(),
    }
    for guesser, targets in right.items():
        s.participants[guesser].guesses = {
            f'TEST:{owner}:1': lie if owner in targets else (lie + 1) % 3
            for owner, lie in lies.items() if owner != guesser
        }

    board = compute_scores(s)
    assert [row['id'] for row in board['bestGuessers']] == ['p1', 'p2', 'p3']
    assert [row['lieCorrectCount'] for row in board['bestGuessers']] == [4, 3, 2]

    deceivers = board['bestDeceivers']
    assert len(deceivers) == 3
    assert deceivers[0]['id'] == 'p5'
    rates = [row['deceptionRate'] for row in deceivers]
    assert rates == sorted(rates, reverse=True)
    assert rates[0] == 0.75


def test_team_scores_sum_members(session):
    session.team_mode = TeamMode.RANDOM
    session.teams = {1: Team(id=1, name='Red', members=['p1', 'p2']), 2: Team(id=2, name='Blue', members=['p3'])}
    session.participants['p1'].team_id = 1
    session.participants['p2'].team_id = 1
    session.participants['p3'].team_id = 2
    teams = {t['name']: t['score'] for t in compute_scores(session)['teams']}
    assert teams == {'Red': 2, 'Blue': 1}


def test_round_summary_reports_each_guess(session):
    summary = round_summary(session, session.round_sets[0])
    assert summary['liePosition'] == 0
    assert {r['playerId']: r['correct'] for r in summary['results']} == {'p2': False, 'p3': True}


@pytest.fixture()
def open_round():
    s = _session()
    s.round_sets = [_round_set('p1', 1, resolved=False)]
    s.current_index = 0
    s.phase = Phase.GUESSING
    return s


def test_guess_checks_run_in_order(open_round):
    guesser = open_round.participants['p2']
    open_round.phase = Phase.COUNTDOWN
    # Wrong phase wins over every other problem
    with pytest.raises(NotAcceptingGuesses):
        submit_guess(open_round, guesser, 'p3', 9)
    open_round.phase = Phase.GUESSING
    with pytest.raises(WrongTarget):
        submit_guess(open_round, guesser, 'p3', 9)
    with pytest.raises(InvalidIndex):
        submit_guess(open_round, guesser, 'p1', 3)
    with pytest.raises(InvalidIndex):
        submit_guess(open_round, guesser, 'p1', -1)
    assert guesser.guesses == {}


def test_subject_cannot_guess_own_set(open_round):
    with pytest.raises(ProtocolViolation):
        submit_guess(open_round, open_round.participants['p1'], 'p1', 0)


def test_later_guess_replaces_earlier(open_round):
    guesser = open_round.participants['p2']
    first = submit_guess(open_round, guesser, 'p1', 0)
    second = submit_guess(open_round, guesser, 'p1', 1)
    assert (first.replaced, first.correct) == (False, False)
    assert (second.replaced, second.correct) == (True, True)
    assert guesser.guesses == {'TEST:p1:1': 1}


def test_admin_guess_makes_admin_a_player(open_round):
    submit_guess(open_round, open_round.admin, 'p1', 1)
    assert open_round.admin.plays
