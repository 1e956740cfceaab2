"""
Pairing primitives shared by the bracket generator and the progression engine.

Everything here is deterministic: the same input order always yields the same
pairings.
"""
from typing import FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

Pair = Tuple[str, str]

# Upper bound on backtracking steps before falling back to rematch-tolerant pairing.
SWISS_SEARCH_BUDGET = 20000


def round_count(n: int) -> int:
    """Rounds needed for a knockout of n entrants, ceil(log2 n)."""
    if n < 2:
        return 0
    return (n - 1).bit_length()


def bracket_size(n: int) -> int:
    return 1 << round_count(n)


def seed_order(size: int) -> List[int]:
    """
    Standard bracket order for a power-of-two field.

    For 8: [1, 8, 4, 5, 2, 7, 3, 6], giving 1v8, 4v5, 2v7, 3v6. If every higher
    seed wins, seeds 1 and 2 meet in the final.
    """
    if size < 2:
        return list(range(1, size + 1))
    if size == 2:
        return [1, 2]

    upper_half = seed_order(size // 2)
    result = []
    for seed in upper_half:
        result.extend([seed, size + 1 - seed])
    return result


def circle_rounds(participant_ids: Sequence[str]) -> List[List[Pair]]:
    """
    Round robin schedule using the circle method.

    The first entrant is fixed and the rest rotate. An odd field is padded with
    a sentinel, so each round one entrant sits out.
    """
    ids: List[Optional[str]] = list(participant_ids)
    if len(ids) < 2:
        return []
    if len(ids) % 2 == 1:
        ids.append(None)
    n = len(ids)

    all_rounds = []
    for _ in range(n - 1):
        pairs = []
        for i in range(n // 2):
            first = ids[i]
            second = ids[n - 1 - i]
            if first is not None and second is not None:
                pairs.append((first, second))
        all_rounds.append(pairs)
        ids = [ids[0]] + [ids[-1]] + ids[1:-1]
    return all_rounds


def swiss_first_round(seeds: Sequence[str]) -> Tuple[List[Pair], Optional[str]]:
    """
    Pair seed i with seed i + M/2. An odd field gives the lowest seed the bye.
    """
    ordered = list(seeds)
    bye = None
    if len(ordered) % 2 == 1:
        bye = ordered.pop()
    half = len(ordered) // 2
    return [(ordered[i], ordered[i + half]) for i in range(half)], bye


def pair_key(a: str, b: str) -> FrozenSet[str]:
    return frozenset((a, b))


def choose_bye(ranked: Sequence[str], had_bye: Iterable[str]) -> Optional[str]:
    """Lowest ranked entrant without a previous bye; the lowest overall if all had one."""
    if len(ranked) % 2 == 0:
        return None
    had_bye = set(had_bye)
    for pid in reversed(ranked):
        if pid not in had_bye:
            return pid
    return ranked[-1]


def _backtrack(players: List[str], played: Set[FrozenSet[str]], budget: List[int]) -> Optional[List[str]]:
    if not players:
        return []
    budget[0] -= 1
    if budget[0] < 0:
        return None

    first = players[0]
    rest = players[1:]
    for i, candidate in enumerate(rest):
        if pair_key(first, candidate) in played:
            continue
        sub = _backtrack(rest[:i] + rest[i + 1:], played, budget)
        if sub is not None:
            return [first, candidate] + sub
    return None


def _greedy(players: List[str], played: Set[FrozenSet[str]]) -> List[str]:
    remaining = list(players)
    result = []
    while remaining:
        first = remaining.pop(0)
        idx = 0
        for i, candidate in enumerate(remaining):
            if pair_key(first, candidate) not in played:
                idx = i
                break
        result.extend([first, remaining.pop(idx)])
    return result


def swiss_pairings(ranked: Sequence[str], played_pairs: Iterable[FrozenSet[str]],
                   had_bye: Iterable[str] = ()) -> Tuple[List[Pair], Optional[str]]:
    """
    Pair a Swiss round.

    ``ranked`` is ordered by score then seed, so score groups are contiguous and
    walking top-down pairs within a group before dropping to the next one.
    Rematches are avoided when any rematch-free pairing exists within the
    search budget, otherwise they are allowed.
    """
    players = list(ranked)
    bye = choose_bye(players, had_bye)
    if bye is not None:
        players.remove(bye)

    played = set(played_pairs)
    ordered = _backtrack(players, played, [SWISS_SEARCH_BUDGET])
    if ordered is None:
        ordered = _greedy(players, played)

    return [(ordered[i], ordered[i + 1]) for i in range(0, len(ordered), 2)], bye
