"""Statement pool and round sequencing."""
import logging
from typing import List, Optional

from twotruths.models import Presence, RoundSet, Session, StatementSet
from twotruths.errors import ProtocolViolation


logger = logging.getLogger(__name__)


def validate_statement_sets(sets: List[StatementSet], rounds_count: int) -> None:
    if len(sets) > rounds_count:
        raise ProtocolViolation(f"At most {rounds_count} statement sets may be submitted")
    seen = set()
    for s in sets:
        if len(s.truths) != 2 or not all(t.strip() for t in s.truths):
            raise ProtocolViolation('You must provide exactly 2 true statements')
        if not s.lie or not s.lie.strip():
            raise ProtocolViolation('You must provide 1 false statement')
        if not 1 <= s.round <= rounds_count:
            raise ProtocolViolation(f"Round must be between 1 and {rounds_count}")
        if s.round in seen:
            raise ProtocolViolation(f"Round {s.round} submitted twice")
        seen.add(s.round)


def gather_round_sets(session: Session) -> List[RoundSet]:
    """Flatten every playing participant's statements into the turn order.

    The pool is shuffled exactly once here; advancing only ever scans it.
    """
    pool = []
    for participant in session.playing():
        for round_no in sorted(participant.statements):
            s = participant.statements[round_no]
            pool.append(RoundSet(
                id=f"{session.code}:{participant.id}:{round_no}",
                owner_id=participant.id,
                round=round_no,
                truths=list(s.truths),
                lie=s.lie,
            ))
    session.rng.shuffle(pool)
    session.round_sets = pool
    session.current_index = None
    logger.info(f"[rounds-gathered] session={session.code} sets={len(pool)}")
    return pool


def next_round_set(session: Session) -> Optional[RoundSet]:
    """Activate the next unconsumed round set in pool order.

    Sets whose owner has been removed from the roster are skipped (and
    marked consumed) rather than reordered.
    """
    start = 0 if session.current_index is None else session.current_index + 1
    for idx in range(start, len(session.round_sets)):
        rs = session.round_sets[idx]
        if rs.consumed:
            continue
        owner = session.participants.get(rs.owner_id)
        if owner is None or owner.presence == Presence.REMOVED:
            rs.consumed = True
            rs.resolved = True
            logger.info(f"[round-skip] session={session.code} set={rs.id} owner removed")
            continue
        rs.activate(session.rng)
        session.current_index = idx
        return rs
    session.current_index = len(session.round_sets)
    return None


def round_number(session: Session) -> int:
    """1-based position of the active round among all round sets."""
    if session.current_index is None:
        return 0
    return min(session.current_index + 1, len(session.round_sets))


def eligible_guessers(session: Session, round_set: RoundSet):
    return [p for p in session.active_playing() if p.id != round_set.owner_id]


def round_complete(session: Session, round_set: RoundSet) -> bool:
    guessers = eligible_guessers(session, round_set)
    return bool(guessers) and all(round_set.id in p.guesses for p in guessers)
