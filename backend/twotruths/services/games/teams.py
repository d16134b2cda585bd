"""Team assignment engine.

Pure functions over a ``{team_id: Team}`` mapping. Callers keep each
participant's ``team_id`` in step with the member lists.
"""
from typing import Dict, Iterable, List, Optional

from twotruths.models import Team, TeamMode


TEAM_NAMES = [
    'Truth Seekers', 'Lie Detectors', 'Fact Finders', 'Myth Busters',
    'Reality Checkers', 'Truthsayers', 'Fiction Finders', 'Deception Detectives',
    'Truth Trackers', 'Lie Lords', 'Fact Force', 'Honesty Heroes',
    'Story Sleuths', 'Tall Tale Trackers', 'Bluff Busters', 'Honest Brokers',
]


def pick_team_names(count: int, rng, used: Iterable[str] = ()) -> List[str]:
    used = set(used)
    available = [n for n in TEAM_NAMES if n not in used]
    rng.shuffle(available)
    names = available[:count]
    while len(names) < count:
        names.append(f"Team {len(names) + 1}")
    return names


def team_count_for(mode: TeamMode, participants: int, max_teams: int) -> int:
    if mode == TeamMode.NONE:
        return 0
    if mode == TeamMode.ADMIN:
        return max_teams
    return max(1, min(max_teams, participants))


def assign_teams(participant_ids: List[str], mode: TeamMode, max_teams: int, rng) -> Dict[int, Team]:
    """Build balanced teams: shuffle, then deal round-robin.

    Random mode drops teams that stay empty; admin-assigned mode keeps every
    slot so the admin can drag players into them.
    """
    count = team_count_for(mode, len(participant_ids), max_teams)
    if count == 0:
        return {}
    names = pick_team_names(count, rng)
    teams = {i: Team(id=i, name=names[i - 1]) for i in range(1, count + 1)}
    shuffled = list(participant_ids)
    rng.shuffle(shuffled)
    for idx, pid in enumerate(shuffled):
        teams[(idx % count) + 1].members.append(pid)
    if mode == TeamMode.RANDOM:
        teams = {tid: t for tid, t in teams.items() if t.members}
    return teams


def smallest_team(teams: Dict[int, Team]) -> Optional[int]:
    if not teams:
        return None
    return min(teams.values(), key=lambda t: (len(t.members), t.id)).id


def detach(teams: Dict[int, Team], participant_id: str, keep_empty: bool) -> Optional[int]:
    """Remove a participant from whichever team holds them."""
    for tid, team in list(teams.items()):
        if participant_id in team.members:
            team.members.remove(participant_id)
            if not team.members and not keep_empty:
                del teams[tid]
            return tid
    return None


def place(teams: Dict[int, Team], participant_id: str, team_id: int, rng, keep_empty: bool) -> Team:
    """Move a participant onto ``team_id``, creating the team if needed."""
    detach(teams, participant_id, keep_empty)
    team = teams.get(team_id)
    if team is None:
        name = pick_team_names(1, rng, used=[t.name for t in teams.values()])[0]
        team = Team(id=team_id, name=name)
        teams[team_id] = team
    team.members.append(participant_id)
    return team
