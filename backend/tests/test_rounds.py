import random
from threading import RLock

import pytest

from conftest import ManualScheduler
from twotruths.errors import ProtocolViolation
from twotruths.models import ADMIN_ID, Participant, Phase, Role, Session, StatementSet
from twotruths.services.games.rounds import (
    eligible_guessers,
    gather_round_sets,
    next_round_set,
    round_complete,
    round_number,
    validate_statement_sets,
)
from twotruths.services.games.timers import Countdown


def _sets(*rounds):
    return [StatementSet(round=r, truths=[f't{r}a', f't{r}b'], lie=f'l{r}') for r in rounds]


@pytest.fixture()
def session():
    lock = RLock()
    s = Session(code='POOL', countdown=Countdown(ManualScheduler(), lock), rng=random.Random(11), lock=lock,
                rounds_count=2)
    s.participants[ADMIN_ID] = Participant(id=ADMIN_ID, name='Admin', role=Role.ADMIN, plays=False)
    for pid in ('p1', 'p2', 'p3'):
        p = Participant(id=pid, name=pid)
        p.statements = {s_.round: s_ for s_ in _sets(1, 2)}
        s.participants[pid] = p
    return s


def test_statement_set_rules():
    validate_statement_sets(_sets(1, 2), rounds_count=2)
    with pytest.raises(ProtocolViolation):
        validate_statement_sets(_sets(1, 2, 3), rounds_count=2)
    with pytest.raises(ProtocolViolation):
        validate_statement_sets(_sets(1, 1), rounds_count=2)
    with pytest.raises(ProtocolViolation):
        validate_statement_sets(_sets(3), rounds_count=2)
    with pytest.raises(ProtocolViolation):
        validate_statement_sets([StatementSet(round=1, truths=['a', '  '], lie='c')], rounds_count=1)
    with pytest.raises(ProtocolViolation):
        validate_statement_sets([StatementSet(round=1, truths=['a', 'b'], lie='')], rounds_count=1)


def test_pool_covers_every_playing_participant(session):
    pool = gather_round_sets(session)
    assert len(pool) == 6
    assert len({rs.id for rs in pool}) == 6
    assert {rs.owner_id for rs in pool} == {'p1', 'p2', 'p3'}
    assert session.current_index is None
    assert not any(rs.activated for rs in pool)


def test_admin_statements_join_the_pool_once_playing(session):
    session.admin.plays = True
    session.admin.statements = {1: _sets(1)[0]}
    assert 'admin' in {rs.owner_id for rs in gather_round_sets(session)}


def test_advance_visits_each_set_once_in_pool_order(session):
    pool = gather_round_sets(session)
    order = list(pool)
    seen = []
    while True:
        rs = next_round_set(session)
        if rs is None:
            break
        seen.append(rs)
        rs.resolved = True
    assert seen == order
    assert session.round_sets == order
    assert all(rs.consumed and rs.activated for rs in order)
    assert next_round_set(session) is None


def test_activation_fixes_the_lie_position(session):
    gather_round_sets(session)
    rs = next_round_set(session)
    texts = [item['text'] for item in rs.displayed()]
    assert texts[rs.lie_position] == rs.lie
    assert sorted(texts) == sorted(rs.statements)
    with pytest.raises(RuntimeError):
        rs.activate(session.rng)


def test_sets_of_removed_owners_are_skipped(session):
    pool = gather_round_sets(session)
    gone = pool[0].owner_id
    del session.participants[gone]
    owners = []
    while True:
        rs = next_round_set(session)
        if rs is None:
            break
        owners.append(rs.owner_id)
    assert gone not in owners
    assert len(owners) == 4
    assert all(rs.consumed for rs in pool)


def test_round_number_and_completion(session):
    session.phase = Phase.GUESSING
    gather_round_sets(session)
    assert round_number(session) == 0
    rs = next_round_set(session)
    assert round_number(session) == 1

    guessers = eligible_guessers(session, rs)
    assert rs.owner_id not in {p.id for p in guessers}
    assert len(guessers) == 2
    assert not round_complete(session, rs)
    for p in guessers:
        p.guesses[rs.id] = 0
    assert round_complete(session, rs)


def test_round_without_guessers_never_completes_early(session):
    gather_round_sets(session)
    rs = next_round_set(session)
    for pid in ('p1', 'p2', 'p3'):
        if pid != rs.owner_id:
            del session.participants[pid]
    assert eligible_guessers(session, rs) == []
    assert not round_complete(session, rs)
