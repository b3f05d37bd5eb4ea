import enum
from .extensions import db
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin

def utc_now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class RoleType(enum.Enum):
    MANAGER = 'MANAGER'
    MENTOR = 'MENTOR'
    CAPTAIN = 'CAPTAIN'
    PLAYER = 'PLAYER'

class MatchOutcome(enum.Enum):
    WIN = 'WIN'
    DRAW = 'DRAW'
    LOSS = 'LOSS'

class RuleConditionType(enum.Enum):
    GOALS_SCORED_THRESHOLD = 'GOALS_SCORED_THRESHOLD'
    GOALS_CONCEDED_THRESHOLD = 'GOALS_CONCEDED_THRESHOLD'
    GOAL_DIFFERENCE_THRESHOLD = 'GOAL_DIFFERENCE_THRESHOLD'
    CLEAN_SHEET = 'CLEAN_SHEET'

class ComparisonOperator(enum.Enum):
    EQUALS = 'EQUALS'
    GREATER_THAN = 'GREATER_THAN'
    LESS_THAN = 'LESS_THAN'
    GREATER_THAN_OR_EQUAL = 'GREATER_THAN_OR_EQUAL'
    LESS_THAN_OR_EQUAL = 'LESS_THAN_OR_EQUAL'

class WalkoverType(enum.Enum):
    NONE = 'NONE'
    SINGLE = 'SINGLE'   # one player won without playing
    DOUBLE = 'DOUBLE'   # both players forfeited


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), index=True, unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    password_hash = db.Column(db.String(256))
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.username}>'


class Club(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    logo = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # deleting a club deletes its members
    players = db.relationship('Player', backref='club', cascade='all, delete', lazy=True,
                              order_by='Player.name')
    tournaments = db.relationship('Tournament', backref='club', lazy=True)

    def members_with_role(self, role):
        return [p for p in self.players if p.has_role(role)]

    def to_dict(self, with_counts=False):
        data = {
            'id': self.id,
            'name': self.name,
            'logo': self.logo,
            'description': self.description,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if with_counts:
            data['playerCount'] = len(self.players)
        return data

    def __repr__(self):
        return f"<Club {self.name}>"


class Player(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id', ondelete='CASCADE'), nullable=True, index=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    place = db.Column(db.String(100), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    photo = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    roles = db.relationship('PlayerRole', backref='player', cascade='all, delete-orphan', lazy=True)
    match_results = db.relationship('MatchResult', backref='player', cascade='all, delete-orphan', lazy=True)
    participations = db.relationship('TournamentParticipant', backref='player', cascade='all, delete-orphan', lazy=True)
    tournament_stats = db.relationship('TournamentPlayerStats', backref='player', cascade='all, delete-orphan', lazy=True)
    transfers = db.relationship('PlayerTransfer', backref='player', cascade='all, delete-orphan', lazy=True,
                                order_by='PlayerTransfer.transfer_date.desc()')
    memberships = db.relationship('ClubMembership', backref='player', cascade='all, delete-orphan', lazy=True,
                                  order_by='ClubMembership.joined_at.desc()')

    @property
    def is_free_agent(self):
        return self.club_id is None

    @property
    def current_membership(self):
        for membership in self.memberships:
            if membership.left_at is None:
                return membership
        return None

    @property
    def role_values(self):
        return sorted(r.role.value for r in self.roles)

    def join_club(self, club, when=None):
        """Move the player to `club` (None releases them), closing the open membership."""
        when = when or utc_now()
        current = self.current_membership
        if current is not None:
            current.left_at = when
        self.club = club
        self.memberships.append(ClubMembership(club=club, joined_at=when))

    def has_role(self, role):
        return any(r.role == role for r in self.roles)

    def set_roles(self, roles):
        """Replace the player's roles, keeping rows for roles that stay."""
        wanted = set(roles)
        for existing in list(self.roles):
            if existing.role not in wanted:
                self.roles.remove(existing)
        current = {r.role for r in self.roles}
        for role in roles:
            if role not in current:
                self.roles.append(PlayerRole(role=role))
                current.add(role)

    def to_dict(self, with_club=False):
        data = {
            'id': self.id,
            'clubId': self.club_id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'place': self.place,
            'dateOfBirth': _iso(self.date_of_birth),
            'photo': self.photo,
            'roles': self.role_values,
            'isFreeAgent': self.is_free_agent,
        }
        if with_club:
            data['club'] = {'id': self.club.id, 'name': self.club.name, 'logo': self.club.logo} if self.club else None
        return data

    def __repr__(self):
        return f"<Player {self.name}>"


class PlayerRole(db.Model):
    __table_args__ = (db.UniqueConstraint('player_id', 'role', name='uq_player_role'),)

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    role = db.Column(db.Enum(RoleType), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)


class ClubMembership(db.Model):
    """A stretch of time a player spent at one club (club NULL = free agency)."""
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False, index=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id', ondelete='SET NULL'), nullable=True)
    joined_at = db.Column(db.DateTime(timezone=True), default=utc_now, nullable=False)
    left_at = db.Column(db.DateTime(timezone=True), nullable=True)

    club = db.relationship('Club', foreign_keys=[club_id])

    def to_dict(self):
        return {
            'id': self.id,
            'clubId': self.club_id,
            'clubName': self.club.name if self.club else None,
            'joinedAt': _iso(self.joined_at),
            'leftAt': _iso(self.left_at),
        }


class PlayerTransfer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    from_club_id = db.Column(db.Integer, db.ForeignKey('club.id', ondelete='SET NULL'), nullable=True)
    to_club_id = db.Column(db.Integer, db.ForeignKey('club.id', ondelete='SET NULL'), nullable=True)
    transfer_date = db.Column(db.DateTime(timezone=True), default=utc_now, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    from_club = db.relationship('Club', foreign_keys=[from_club_id])
    to_club = db.relationship('Club', foreign_keys=[to_club_id])

    def to_dict(self):
        return {
            'id': self.id,
            'playerId': self.player_id,
            'playerName': self.player.name if self.player else None,
            'fromClubId': self.from_club_id,
            'fromClubName': self.from_club.name if self.from_club else None,
            'toClubId': self.to_club_id,
            'toClubName': self.to_club.name if self.to_club else None,
            'transferDate': _iso(self.transfer_date),
            'notes': self.notes,
        }


class PointSystemTemplate(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    points_per_win = db.Column(db.Integer, nullable=False, default=3)
    points_per_draw = db.Column(db.Integer, nullable=False, default=1)
    points_per_loss = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_scored = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_conceded = db.Column(db.Integer, nullable=False, default=0)
    points_for_walkover_win = db.Column(db.Integer, nullable=False, default=3)
    points_for_walkover_loss = db.Column(db.Integer, nullable=False, default=-3)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    conditional_rules = db.relationship('ConditionalRule', backref='template', cascade='all, delete-orphan',
                                        lazy=True, order_by='ConditionalRule.id')
    stage_points = db.relationship('StagePoint', backref='template', cascade='all, delete-orphan',
                                   lazy=True, order_by='StagePoint.stage_order')
    tournaments = db.relationship('Tournament', backref='point_system_template', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'pointsPerWin': self.points_per_win,
            'pointsPerDraw': self.points_per_draw,
            'pointsPerLoss': self.points_per_loss,
            'pointsPerGoalScored': self.points_per_goal_scored,
            'pointsPerGoalConceded': self.points_per_goal_conceded,
            'pointsForWalkoverWin': self.points_for_walkover_win,
            'pointsForWalkoverLoss': self.points_for_walkover_loss,
            'conditionalRules': [r.to_dict() for r in self.conditional_rules],
            'stages': [s.to_dict() for s in self.stage_points],
            'tournamentCount': len(self.tournaments),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<PointSystemTemplate {self.name}>"


class ConditionalRule(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('point_system_template.id', ondelete='CASCADE'), nullable=False)
    condition_type = db.Column(db.Enum(RuleConditionType), nullable=False)
    operator = db.Column(db.Enum(ComparisonOperator), nullable=False)
    threshold = db.Column(db.Integer, nullable=False, default=0)
    point_adjustment = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'conditionType': self.condition_type.value,
            'operator': self.operator.value,
            'threshold': self.threshold,
            'pointAdjustment': self.point_adjustment,
        }


class StagePoint(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('point_system_template.id', ondelete='CASCADE'), nullable=False)
    stage_name = db.Column(db.String(100), nullable=False)
    stage_order = db.Column(db.Integer, nullable=False, default=1)
    points_per_win = db.Column(db.Integer, nullable=False, default=3)
    points_per_draw = db.Column(db.Integer, nullable=False, default=1)
    points_per_loss = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_scored = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_conceded = db.Column(db.Integer, nullable=False, default=0)

    matches = db.relationship('Match', backref='stage', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.stage_name,
            'order': self.stage_order,
            'pointsPerWin': self.points_per_win,
            'pointsPerDraw': self.points_per_draw,
            'pointsPerLoss': self.points_per_loss,
            'pointsPerGoalScored': self.points_per_goal_scored,
            'pointsPerGoalConceded': self.points_per_goal_conceded,
        }


class Tournament(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    point_system_template_id = db.Column(db.Integer, db.ForeignKey('point_system_template.id'), nullable=True)
    points_per_win = db.Column(db.Integer, nullable=False, default=3)
    points_per_draw = db.Column(db.Integer, nullable=False, default=1)
    points_per_loss = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_scored = db.Column(db.Integer, nullable=False, default=0)
    points_per_goal_conceded = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    participants = db.relationship('TournamentParticipant', backref='tournament', cascade='all, delete-orphan', lazy=True)
    matches = db.relationship('Match', backref='tournament', cascade='all, delete-orphan', lazy=True,
                              order_by='Match.match_date.desc()')
    player_stats = db.relationship('TournamentPlayerStats', backref='tournament', cascade='all, delete-orphan', lazy=True)

    def status_on(self, today):
        if self.start_date > today:
            return 'upcoming'
        if self.end_date is None or self.end_date >= today:
            return 'active'
        return 'completed'

    @property
    def participant_players(self):
        return sorted((p.player for p in self.participants), key=lambda p: p.name.lower())

    @property
    def stages(self):
        if self.point_system_template is None:
            return []
        return self.point_system_template.stage_points

    def to_dict(self, today=None):
        data = {
            'id': self.id,
            'clubId': self.club_id,
            'name': self.name,
            'description': self.description,
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
            'pointSystemTemplateId': self.point_system_template_id,
            'pointSystem': {
                'pointsPerWin': self.points_per_win,
                'pointsPerDraw': self.points_per_draw,
                'pointsPerLoss': self.points_per_loss,
                'pointsPerGoalScored': self.points_per_goal_scored,
                'pointsPerGoalConceded': self.points_per_goal_conceded,
            },
            'participantCount': len(self.participants),
            'matchCount': len(self.matches),
        }
        if today is not None:
            data['status'] = self.status_on(today)
        return data

    def __repr__(self):
        return f"<Tournament {self.name}>"


class TournamentParticipant(db.Model):
    __table_args__ = (db.UniqueConstraint('tournament_id', 'player_id', name='uq_tournament_participant'),)

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    joined_at = db.Column(db.DateTime(timezone=True), default=utc_now)


class Match(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id', ondelete='CASCADE'), nullable=False, index=True)
    match_date = db.Column(db.Date, nullable=False)
    stage_id = db.Column(db.Integer, db.ForeignKey('stage_point.id', ondelete='SET NULL'), nullable=True)
    stage_name = db.Column(db.String(100), nullable=True)
    walkover = db.Column(db.Enum(WalkoverType), nullable=False, default=WalkoverType.NONE)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    results = db.relationship('MatchResult', backref='match', cascade='all, delete-orphan', lazy=True,
                              order_by='MatchResult.id')

    @property
    def is_walkover(self):
        return self.walkover is not None and self.walkover != WalkoverType.NONE

    @property
    def title(self):
        return ' vs '.join(r.player.name for r in self.results)

    def to_dict(self):
        return {
            'id': self.id,
            'tournamentId': self.tournament_id,
            'matchDate': _iso(self.match_date),
            'stageId': self.stage_id,
            'stageName': self.stage_name,
            'walkover': self.walkover.value if self.walkover else WalkoverType.NONE.value,
            'results': [r.to_dict() for r in self.results],
        }

    def __repr__(self):
        return f"<Match {self.id} {self.title}>"


class MatchResult(db.Model):
    __table_args__ = (db.UniqueConstraint('match_id', 'player_id', name='uq_match_result_player'),)

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id', ondelete='CASCADE'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False, index=True)
    outcome = db.Column(db.Enum(MatchOutcome), nullable=False)
    goals_scored = db.Column(db.Integer, nullable=False, default=0)
    goals_conceded = db.Column(db.Integer, nullable=False, default=0)
    base_points = db.Column(db.Integer, nullable=False, default=0)
    conditional_points = db.Column(db.Integer, nullable=False, default=0)
    points_earned = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'playerId': self.player_id,
            'playerName': self.player.name if self.player else None,
            'outcome': self.outcome.value,
            'goalsScored': self.goals_scored,
            'goalsConceded': self.goals_conceded,
            'basePoints': self.base_points,
            'conditionalPoints': self.conditional_points,
            'pointsEarned': self.points_earned,
        }


class TournamentPlayerStats(db.Model):
    __table_args__ = (db.UniqueConstraint('tournament_id', 'player_id', name='uq_tournament_player_stats'),)

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    matches_played = db.Column(db.Integer, default=0)
    wins = db.Column(db.Integer, default=0)
    draws = db.Column(db.Integer, default=0)
    losses = db.Column(db.Integer, default=0)
    goals_scored = db.Column(db.Integer, default=0)
    goals_conceded = db.Column(db.Integer, default=0)
    total_points = db.Column(db.Integer, default=0)
    conditional_points = db.Column(db.Integer, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<TournamentPlayerStats t={self.tournament_id} p={self.player_id} pts={self.total_points}>"
