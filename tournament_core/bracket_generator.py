import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from shared.errors import InsufficientParticipantsError, ValidationError
from shared.state_machine import MatchStatus

from .entities import (
    Bracket, BracketSection, Match, Participation, ParticipationStatus, Round,
    Tournament, TournamentFormat, utcnow,
)
from .pairing import (
    bracket_size, circle_rounds, pair_key, round_count, seed_order,
    swiss_first_round, swiss_pairings,
)

logger = logging.getLogger(__name__)

SEED = "seed"
WINNER = "winner"
LOSER = "loser"


def match_id_for(tournament_id: str, round_number: int, position: int) -> str:
    return f"{tournament_id}_r{round_number}_m{position}"


def elimination_label(round_index: int, total_rounds: int) -> str:
    """Name of a knockout round counted back from the final (1-based index)."""
    from_end = total_rounds - round_index
    if from_end == 0:
        return "Finals"
    if from_end == 1:
        return "Semi-Finals"
    if from_end == 2:
        return "Quarter-Finals"
    return f"Round {round_index}"


@dataclass(eq=False)
class _Planned:
    """A match before pruning. Sources are (kind, ref) pairs."""
    sources: List[Tuple[str, object]]
    resolved: List[Optional[Tuple[str, object]]] = field(default_factory=list)
    kept: bool = False
    is_bye: bool = False
    forward: Optional[Tuple[str, object]] = None
    match: Optional[Match] = None


@dataclass
class _PlannedRound:
    section: BracketSection
    matches: List[_Planned]
    label: str = ""
    is_first: bool = False


class BracketGenerator:
    """
    Builds the complete bracket for a tournament from its approved
    participants. Registration order is the seeding.
    """

    def __init__(self, swiss_default_rounds: int = 0):
        self.swiss_default_rounds = swiss_default_rounds

    def generate(self, tournament: Tournament, participations: Sequence[Participation],
                 now: datetime = None) -> Bracket:
        now = now or utcnow()
        approved = [p for p in participations if p.status == ParticipationStatus.APPROVED]
        required = max(tournament.min_participants, 2)
        if len(approved) < required:
            raise InsufficientParticipantsError(required, len(approved))

        seeds = [p.participant_id for p in approved]
        bracket = Bracket(
            bracket_id=f"{tournament.tournament_id}_bracket",
            tournament_id=tournament.tournament_id,
            format=tournament.format,
            generated_at=now,
            seeds=seeds,
        )

        if tournament.format == TournamentFormat.SINGLE_ELIMINATION:
            self._build_elimination(bracket, seeds, double=False, now=now)
        elif tournament.format == TournamentFormat.DOUBLE_ELIMINATION:
            self._build_elimination(bracket, seeds, double=True, now=now)
        elif tournament.format == TournamentFormat.ROUND_ROBIN:
            self._build_round_robin(bracket, seeds)
        elif tournament.format == TournamentFormat.SWISS:
            rounds = (tournament.settings.swiss_rounds
                      or self.swiss_default_rounds
                      or round_count(len(seeds)))
            self._build_swiss(bracket, seeds, rounds, now)
        else:
            raise ValidationError(f"Unsupported format: {tournament.format}")

        bracket.refresh_round_statuses()
        logger.info(
            f"Generated {tournament.format.value} bracket for {tournament.tournament_id}: "
            f"{len(seeds)} participants, {len(bracket.rounds)} rounds"
        )
        return bracket

    def _new_match(self, bracket: Bracket, round_number: int, position: int,
                   section: BracketSection) -> Match:
        return Match(
            match_id=match_id_for(bracket.tournament_id, round_number, position),
            tournament_id=bracket.tournament_id,
            bracket_id=bracket.bracket_id,
            round_number=round_number,
            position=position,
            section=section,
        )

    @staticmethod
    def _complete_bye(match: Match, participant_id: str, now: datetime):
        match.slots = [participant_id, None]
        match.is_bye = True
        match.status = MatchStatus.COMPLETED
        match.winner_id = participant_id
        match.result = {"bye": True}
        match.completed_at = now

    # Elimination

    def _plan_elimination(self, seeds: Sequence[str], double: bool) -> List[_PlannedRound]:
        size = bracket_size(len(seeds))
        total = round_count(len(seeds))
        order = seed_order(size)
        by_seed = {i + 1: pid for i, pid in enumerate(seeds)}
        winners_section = BracketSection.WINNERS if double else BracketSection.MAIN
        prefix = "Winners " if double else ""

        winners = [_PlannedRound(
            section=winners_section,
            matches=[
                _Planned(sources=[(SEED, by_seed.get(order[2 * j])),
                                  (SEED, by_seed.get(order[2 * j + 1]))])
                for j in range(size // 2)
            ],
            is_first=True,
        )]
        for _ in range(1, total):
            prev = winners[-1].matches
            winners.append(_PlannedRound(
                section=winners_section,
                matches=[
                    _Planned(sources=[(WINNER, prev[2 * j]), (WINNER, prev[2 * j + 1])])
                    for j in range(len(prev) // 2)
                ],
            ))
        for i, rnd in enumerate(winners, start=1):
            rnd.label = prefix + elimination_label(i, total)

        if not double:
            return winners

        losers: List[_PlannedRound] = []
        if total >= 2:
            first_losers = winners[0].matches
            losers.append(_PlannedRound(
                section=BracketSection.LOSERS,
                matches=[
                    _Planned(sources=[(LOSER, first_losers[2 * j]), (LOSER, first_losers[2 * j + 1])])
                    for j in range(len(first_losers) // 2)
                ],
            ))
            for k in range(2, total + 1):
                drops = list(winners[k - 1].matches)
                # Alternate drop order to keep early rematches apart
                if k % 2 == 0:
                    drops.reverse()
                prev = losers[-1].matches
                major = [
                    _Planned(sources=[(WINNER, prev[j]), (LOSER, drops[j])])
                    for j in range(len(drops))
                ]
                losers.append(_PlannedRound(section=BracketSection.LOSERS, matches=major))
                if k < total:
                    losers.append(_PlannedRound(
                        section=BracketSection.LOSERS,
                        matches=[
                            _Planned(sources=[(WINNER, major[2 * j]), (WINNER, major[2 * j + 1])])
                            for j in range(len(major) // 2)
                        ],
                    ))

        wb_final = winners[-1].matches[0]
        challenger = (WINNER, losers[-1].matches[0]) if losers else (LOSER, wb_final)
        grand_final = _PlannedRound(
            section=BracketSection.GRAND_FINAL,
            matches=[_Planned(sources=[(WINNER, wb_final), challenger])],
            label="Grand Finals",
        )
        reset = _PlannedRound(
            section=BracketSection.GRAND_FINAL,
            matches=[_Planned(sources=[])],
            label="Grand Finals Reset",
        )
        return winners + losers + [grand_final, reset]

    @staticmethod
    def _output(planned: _Planned, kind: str) -> Optional[Tuple[str, object]]:
        if kind == WINNER:
            if planned.kept:
                return (WINNER, planned)
            return planned.forward
        if planned.kept and not planned.is_bye:
            return (LOSER, planned)
        return None

    def _resolve(self, plan: List[_PlannedRound]):
        """
        Mark which planned matches are real. A match fed by a single live source
        is dropped and that source is wired straight through; first-round
        matches with a single seed become byes.
        """
        for rnd in plan:
            for planned in rnd.matches:
                if not planned.sources:
                    planned.kept = True
                    continue
                resolved = []
                for kind, ref in planned.sources:
                    if kind == SEED:
                        resolved.append((SEED, ref) if ref is not None else None)
                    else:
                        resolved.append(self._output(ref, kind))
                planned.resolved = resolved
                live = [r for r in resolved if r is not None]

                if len(live) == 2:
                    planned.kept = True
                elif len(live) == 1 and rnd.is_first:
                    planned.kept = True
                    planned.is_bye = True
                elif len(live) == 1:
                    planned.forward = live[0]

    def _build_elimination(self, bracket: Bracket, seeds: Sequence[str], double: bool,
                           now: datetime):
        plan = self._plan_elimination(seeds, double)
        self._resolve(plan)

        losers_rounds = [r for r in plan
                         if r.section == BracketSection.LOSERS and any(m.kept for m in r.matches)]
        for k, rnd in enumerate(losers_rounds, start=1):
            rnd.label = "Losers Finals" if k == len(losers_rounds) else f"Losers Round {k}"

        number = 0
        for planned_round in plan:
            kept = [m for m in planned_round.matches if m.kept]
            if not kept:
                continue
            number += 1
            rnd = Round(number=number, label=planned_round.label, section=planned_round.section)
            for position, planned in enumerate(kept, start=1):
                planned.match = self._new_match(bracket, number, position, planned_round.section)
                rnd.matches.append(planned.match)
            bracket.rounds.append(rnd)

        for planned_round in plan:
            for planned in planned_round.matches:
                if not planned.kept:
                    continue
                for slot, source in enumerate(planned.resolved):
                    if source is None:
                        continue
                    kind, ref = source
                    if kind == SEED:
                        planned.match.slots[slot] = ref
                    elif kind == WINNER:
                        ref.match.next_match_id = planned.match.match_id
                        ref.match.next_slot = slot
                    else:
                        ref.match.loser_match_id = planned.match.match_id
                        ref.match.loser_slot = slot

        if double:
            grand_final, reset = plan[-2].matches[0].match, plan[-1].matches[0].match
            bracket.configuration["grand_final_match_id"] = grand_final.match_id
            bracket.configuration["reset_match_id"] = reset.match_id

        for match in bracket.rounds[0].matches:
            if len(match.participant_ids) == 1:
                self._complete_bye(match, match.participant_ids[0], now)
                target = bracket.find_match(match.next_match_id) if match.next_match_id else None
                if target is not None:
                    target.slots[match.next_slot] = match.winner_id

    # Round robin

    def _build_round_robin(self, bracket: Bracket, seeds: Sequence[str]):
        for number, pairs in enumerate(circle_rounds(seeds), start=1):
            rnd = Round(number=number, label=f"Round {number}")
            for position, (first, second) in enumerate(pairs, start=1):
                match = self._new_match(bracket, number, position, BracketSection.MAIN)
                match.slots = [first, second]
                rnd.matches.append(match)
            bracket.rounds.append(rnd)

    # Swiss

    def _build_swiss(self, bracket: Bracket, seeds: Sequence[str], rounds: int, now: datetime):
        bracket.configuration["swiss_rounds"] = rounds
        for number in range(1, rounds + 1):
            bracket.rounds.append(Round(number=number, label=f"Round {number}"))

        pairs, bye = swiss_first_round(seeds)
        self._fill_swiss_round(bracket, bracket.rounds[0], pairs, bye, now)

    def _fill_swiss_round(self, bracket: Bracket, rnd: Round, pairs, bye: Optional[str],
                          now: datetime):
        for position, (first, second) in enumerate(pairs, start=1):
            match = self._new_match(bracket, rnd.number, position, BracketSection.MAIN)
            match.slots = [first, second]
            rnd.matches.append(match)
        if bye is not None:
            match = self._new_match(bracket, rnd.number, len(pairs) + 1, BracketSection.MAIN)
            self._complete_bye(match, bye, now)
            rnd.matches.append(match)

    @staticmethod
    def swiss_scores(bracket: Bracket) -> Dict[str, int]:
        scores = {pid: 0 for pid in bracket.seeds}
        for match in bracket.iter_matches():
            if match.status == MatchStatus.COMPLETED and match.winner_id in scores:
                scores[match.winner_id] += 1
        return scores

    def pair_next_swiss_round(self, bracket: Bracket, now: datetime = None) -> Optional[Round]:
        """
        Pair the first unpaired Swiss round once every earlier round is settled.
        Returns the paired round, or None when nothing could be paired yet.
        """
        if bracket.format != TournamentFormat.SWISS:
            return None

        target = None
        for rnd in bracket.rounds:
            if not rnd.matches:
                target = rnd
                break
            if not rnd.is_settled:
                return None
        if target is None:
            return None

        now = now or utcnow()
        scores = self.swiss_scores(bracket)
        seed_index = {pid: i for i, pid in enumerate(bracket.seeds)}
        ranked = sorted(bracket.seeds, key=lambda pid: (-scores[pid], seed_index[pid]))

        played = set()
        had_bye = set()
        for match in bracket.iter_matches():
            if match.is_bye:
                had_bye.add(match.winner_id)
            elif len(match.participant_ids) == 2:
                played.add(pair_key(*match.participant_ids))

        pairs, bye = swiss_pairings(ranked, played, had_bye)
        self._fill_swiss_round(bracket, target, pairs, bye, now)
        logger.info(f"Paired Swiss round {target.number} for {bracket.tournament_id}: {len(pairs)} matches")
        return target
