from flask_sqlalchemy import SQLAlchemy

from shared.state_machine import MatchStatus, TournamentState

from .entities import (
    Bracket, BracketSection, Match, Participation, ParticipationStatus, Round,
    RoundStatus, Tournament, TournamentFormat, TournamentSettings, utcnow,
)

db = SQLAlchemy()


class TournamentRecord(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    organizer_id = db.Column(db.String(100), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    game_ids = db.Column(db.JSON, nullable=False, default=list)
    format = db.Column(db.String(30), nullable=False, default='single_elimination')
    status = db.Column(db.String(20), nullable=False, default='draft', index=True)
    min_participants = db.Column(db.Integer, default=2)
    max_participants = db.Column(db.Integer, default=16)

    entry_fee = db.Column(db.JSON, nullable=True)
    prize_pool = db.Column(db.JSON, nullable=True)
    is_public = db.Column(db.Boolean, default=True)
    allow_spectators = db.Column(db.Boolean, default=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)

    # Results
    winner_id = db.Column(db.String(100), nullable=True)

    # Timestamps
    registration_deadline = db.Column(db.DateTime, nullable=True)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    paused_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    participations = db.relationship('ParticipationRecord', back_populates='tournament',
                                     cascade='all, delete-orphan')
    bracket = db.relationship('BracketRecord', back_populates='tournament', uselist=False,
                              cascade='all, delete-orphan')

    def update_from(self, tournament: Tournament):
        self.tournament_id = tournament.tournament_id
        self.organizer_id = tournament.organizer_id
        self.name = tournament.name
        self.description = tournament.description
        self.game_ids = list(tournament.game_ids)
        self.format = tournament.format.value
        self.status = tournament.status.value
        self.min_participants = tournament.min_participants
        self.max_participants = tournament.max_participants
        self.entry_fee = tournament.entry_fee
        self.prize_pool = tournament.prize_pool
        self.is_public = tournament.is_public
        self.allow_spectators = tournament.allow_spectators
        self.settings = tournament.settings.to_dict()
        self.winner_id = tournament.winner_id
        self.registration_deadline = tournament.registration_deadline
        self.start_date = tournament.start_date
        self.end_date = tournament.end_date
        self.started_at = tournament.started_at
        self.paused_at = tournament.paused_at
        self.completed_at = tournament.completed_at
        self.created_at = tournament.created_at
        self.updated_at = tournament.updated_at

    def to_entity(self) -> Tournament:
        return Tournament(
            tournament_id=self.tournament_id,
            organizer_id=self.organizer_id,
            name=self.name,
            description=self.description or '',
            game_ids=list(self.game_ids or []),
            format=TournamentFormat(self.format),
            status=TournamentState(self.status),
            min_participants=self.min_participants,
            max_participants=self.max_participants,
            entry_fee=self.entry_fee,
            prize_pool=self.prize_pool,
            is_public=self.is_public,
            allow_spectators=self.allow_spectators,
            settings=TournamentSettings.from_dict(self.settings),
            winner_id=self.winner_id,
            registration_deadline=self.registration_deadline,
            start_date=self.start_date,
            end_date=self.end_date,
            started_at=self.started_at,
            paused_at=self.paused_at,
            completed_at=self.completed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self):
        data = self.to_entity().to_dict()
        data['participant_count'] = len(self.participations)
        return data


class ParticipationRecord(db.Model):
    __tablename__ = 'participations'

    id = db.Column(db.Integer, primary_key=True)
    participation_id = db.Column(db.String(50), unique=True, nullable=False)
    tournament_id = db.Column(db.String(50), db.ForeignKey('tournaments.tournament_id'),
                              nullable=False, index=True)
    participant_id = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='registered')
    team_name = db.Column(db.String(100), nullable=True)
    team_members = db.Column(db.JSON, nullable=False, default=list)
    registered_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('TournamentRecord', back_populates='participations')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'participant_id', name='unique_participant_per_tournament'),
    )

    def update_from(self, participation: Participation):
        self.participation_id = participation.participation_id
        self.tournament_id = participation.tournament_id
        self.participant_id = participation.participant_id
        self.status = participation.status.value
        self.team_name = participation.team_name
        self.team_members = list(participation.team_members)
        self.registered_at = participation.registered_at
        self.approved_at = participation.approved_at

    def to_entity(self) -> Participation:
        return Participation(
            participation_id=self.participation_id,
            tournament_id=self.tournament_id,
            participant_id=self.participant_id,
            status=ParticipationStatus(self.status),
            team_name=self.team_name,
            team_members=list(self.team_members or []),
            registered_at=self.registered_at,
            approved_at=self.approved_at,
        )


class BracketRecord(db.Model):
    __tablename__ = 'brackets'

    id = db.Column(db.Integer, primary_key=True)
    bracket_id = db.Column(db.String(80), unique=True, nullable=False)
    # One bracket per tournament; the constraint backs the conditional insert
    tournament_id = db.Column(db.String(50), db.ForeignKey('tournaments.tournament_id'),
                              unique=True, nullable=False)
    format = db.Column(db.String(30), nullable=False)
    seeds = db.Column(db.JSON, nullable=False, default=list)
    configuration = db.Column(db.JSON, nullable=False, default=dict)
    generated_at = db.Column(db.DateTime, default=utcnow)

    tournament = db.relationship('TournamentRecord', back_populates='bracket')
    rounds = db.relationship('RoundRecord', back_populates='bracket', order_by='RoundRecord.number',
                             cascade='all, delete-orphan')

    @classmethod
    def from_entity(cls, bracket: Bracket) -> 'BracketRecord':
        record = cls(
            bracket_id=bracket.bracket_id,
            tournament_id=bracket.tournament_id,
            format=bracket.format.value,
            generated_at=bracket.generated_at,
        )
        record.update_from(bracket)
        return record

    def update_from(self, bracket: Bracket):
        # JSON columns are reassigned so the change is detected
        self.seeds = list(bracket.seeds)
        self.configuration = dict(bracket.configuration)

        existing = {r.number: r for r in self.rounds}
        for rnd in bracket.rounds:
            round_record = existing.get(rnd.number)
            if round_record is None:
                round_record = RoundRecord(number=rnd.number)
                self.rounds.append(round_record)
            round_record.update_from(rnd)

    def to_entity(self) -> Bracket:
        return Bracket(
            bracket_id=self.bracket_id,
            tournament_id=self.tournament_id,
            format=TournamentFormat(self.format),
            generated_at=self.generated_at,
            seeds=list(self.seeds or []),
            configuration=dict(self.configuration or {}),
            rounds=[r.to_entity() for r in sorted(self.rounds, key=lambda r: r.number)],
        )


class RoundRecord(db.Model):
    __tablename__ = 'rounds'

    id = db.Column(db.Integer, primary_key=True)
    bracket_id = db.Column(db.Integer, db.ForeignKey('brackets.id'), nullable=False)
    number = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(50), nullable=False)
    section = db.Column(db.String(20), nullable=False, default='main')
    status = db.Column(db.String(20), nullable=False, default='pending')

    bracket = db.relationship('BracketRecord', back_populates='rounds')
    matches = db.relationship('MatchRecord', back_populates='round', order_by='MatchRecord.position',
                              cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('bracket_id', 'number', name='unique_round_per_bracket'),
    )

    def update_from(self, rnd: Round):
        self.number = rnd.number
        self.label = rnd.label
        self.section = rnd.section.value
        self.status = rnd.status.value

        existing = {m.match_id: m for m in self.matches}
        for match in rnd.matches:
            match_record = existing.get(match.match_id)
            if match_record is None:
                match_record = MatchRecord(match_id=match.match_id)
                self.matches.append(match_record)
            match_record.update_from(match)

    def to_entity(self) -> Round:
        return Round(
            number=self.number,
            label=self.label,
            section=BracketSection(self.section),
            status=RoundStatus(self.status),
            matches=[m.to_entity() for m in sorted(self.matches, key=lambda m: m.position)],
        )


class MatchRecord(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    round_id = db.Column(db.Integer, db.ForeignKey('rounds.id'), nullable=False)
    tournament_id = db.Column(db.String(50), nullable=False, index=True)
    bracket_id = db.Column(db.String(80), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    position = db.Column(db.Integer, nullable=False)
    section = db.Column(db.String(20), nullable=False, default='main')

    slots = db.Column(db.JSON, nullable=False, default=list)
    winner_id = db.Column(db.String(100), nullable=True)
    result = db.Column(db.JSON, nullable=False, default=dict)
    is_bye = db.Column(db.Boolean, default=False)
    status = db.Column(db.String(20), nullable=False, default='scheduled')

    # Progression wiring
    next_match_id = db.Column(db.String(100), nullable=True)
    next_slot = db.Column(db.Integer, nullable=True)
    loser_match_id = db.Column(db.String(100), nullable=True)
    loser_slot = db.Column(db.Integer, nullable=True)

    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    round = db.relationship('RoundRecord', back_populates='matches')

    def update_from(self, match: Match):
        self.match_id = match.match_id
        self.tournament_id = match.tournament_id
        self.bracket_id = match.bracket_id
        self.round_number = match.round_number
        self.position = match.position
        self.section = match.section.value
        self.slots = list(match.slots)
        self.winner_id = match.winner_id
        self.result = dict(match.result)
        self.is_bye = match.is_bye
        self.status = match.status.value
        self.next_match_id = match.next_match_id
        self.next_slot = match.next_slot
        self.loser_match_id = match.loser_match_id
        self.loser_slot = match.loser_slot
        self.started_at = match.started_at
        self.completed_at = match.completed_at

    def to_entity(self) -> Match:
        return Match(
            match_id=self.match_id,
            tournament_id=self.tournament_id,
            bracket_id=self.bracket_id,
            round_number=self.round_number,
            position=self.position,
            section=BracketSection(self.section),
            slots=list(self.slots or [None, None]),
            status=MatchStatus(self.status),
            winner_id=self.winner_id,
            result=dict(self.result or {}),
            is_bye=bool(self.is_bye),
            next_match_id=self.next_match_id,
            next_slot=self.next_slot,
            loser_match_id=self.loser_match_id,
            loser_slot=self.loser_slot,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def to_dict(self):
        return self.to_entity().to_dict()
