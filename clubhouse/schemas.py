from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import RoleType, MatchOutcome, RuleConditionType, ComparisonOperator, WalkoverType


class Schema(BaseModel):
    # JSON bodies use camelCase, HTML forms post snake_case names
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    def changes(self):
        """Fields the caller actually sent, keyed by attribute name."""
        return self.model_dump(exclude_unset=True)


def form_payload(form, list_fields=(), drop_empty=False):
    """Turn a submitted form into a plain dict pydantic can validate.

    Blank inputs become None, or are left out with `drop_empty` so that
    schema defaults apply.
    """
    data = {}
    for key in form.keys():
        if key in list_fields:
            data[key] = [v for v in form.getlist(key) if v != '']
            continue
        value = form.get(key)
        if isinstance(value, str):
            value = value.strip()
        if value == '':
            if drop_empty:
                continue
            value = None
        data[key] = value
    for key in list_fields:
        data.setdefault(key, [])
    return data


def _check_email(value):
    if value is not None and '@' not in value:
        raise ValueError('Invalid email format')
    return value


# --- clubs ---

class ClubIn(Schema):
    name: str = Field(min_length=1, max_length=100)
    logo: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None


class ClubUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    logo: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None


# --- players ---

class PlayerIn(Schema):
    name: str = Field(min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    place: Optional[str] = Field(default=None, max_length=100)
    date_of_birth: Optional[date] = None
    photo: Optional[str] = Field(default=None, max_length=255)
    roles: List[RoleType] = Field(min_length=1)

    @field_validator('email', mode='before')
    @classmethod
    def blank_email(cls, value):
        return None if value == '' else value

    @field_validator('email')
    @classmethod
    def email_format(cls, value):
        return _check_email(value)


class PlayerUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    place: Optional[str] = Field(default=None, max_length=100)
    date_of_birth: Optional[date] = None
    photo: Optional[str] = Field(default=None, max_length=255)
    roles: Optional[List[RoleType]] = Field(default=None, min_length=1)

    @field_validator('email')
    @classmethod
    def email_format(cls, value):
        return _check_email(value)


class FreeAgentIn(PlayerIn):
    roles: List[RoleType] = Field(default_factory=lambda: [RoleType.PLAYER], min_length=1)


class TransferIn(Schema):
    player_id: int = Field(gt=0)
    to_club_id: Optional[int] = Field(default=None, gt=0)
    transfer_date: Optional[date] = None
    notes: Optional[str] = None


# --- point systems ---

class PointSystemIn(Schema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    points_per_win: int = 3
    points_per_draw: int = 1
    points_per_loss: int = 0
    points_per_goal_scored: int = 0
    points_per_goal_conceded: int = 0
    points_for_walkover_win: int = 3
    points_for_walkover_loss: int = -3
    conditional_rules: List['ConditionalRuleIn'] = Field(default_factory=list)
    stages: List['StageIn'] = Field(default_factory=list)


class PointSystemUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    points_per_win: Optional[int] = None
    points_per_draw: Optional[int] = None
    points_per_loss: Optional[int] = None
    points_per_goal_scored: Optional[int] = None
    points_per_goal_conceded: Optional[int] = None
    points_for_walkover_win: Optional[int] = None
    points_for_walkover_loss: Optional[int] = None


GOAL_BASED_CONDITIONS = (
    RuleConditionType.GOALS_SCORED_THRESHOLD,
    RuleConditionType.GOALS_CONCEDED_THRESHOLD,
    RuleConditionType.GOAL_DIFFERENCE_THRESHOLD,
)


class ConditionalRuleIn(Schema):
    condition_type: RuleConditionType
    operator: ComparisonOperator
    threshold: int
    point_adjustment: int

    @model_validator(mode='after')
    def check_rule(self):
        if self.condition_type in GOAL_BASED_CONDITIONS and self.threshold < 0:
            raise ValueError('Threshold must be non-negative for goal-based conditions')
        if self.condition_type == RuleConditionType.CLEAN_SHEET:
            if self.operator != ComparisonOperator.EQUALS or self.threshold != 0:
                raise ValueError('Clean sheet condition must use EQUALS operator with threshold 0')
        return self


class ConditionalRuleUpdate(Schema):
    condition_type: Optional[RuleConditionType] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[int] = None
    point_adjustment: Optional[int] = None

    def merged_with(self, rule):
        """Validate the rule as it will look once the update is applied."""
        current = {
            'condition_type': rule.condition_type,
            'operator': rule.operator,
            'threshold': rule.threshold,
            'point_adjustment': rule.point_adjustment,
        }
        current.update({k: v for k, v in self.changes().items() if v is not None})
        return ConditionalRuleIn(**current)


class StageIn(Schema):
    stage_name: str = Field(min_length=1, max_length=100)
    stage_order: int = Field(default=1, ge=1)
    points_per_win: int = 3
    points_per_draw: int = 1
    points_per_loss: int = 0
    points_per_goal_scored: int = 0
    points_per_goal_conceded: int = 0


PointSystemIn.model_rebuild()


# --- tournaments ---

class TournamentIn(Schema):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    club_id: Optional[int] = Field(default=None, gt=0)
    point_system_template_id: Optional[int] = Field(default=None, gt=0)
    points_per_win: int = Field(default=3, ge=0)
    points_per_draw: int = Field(default=1, ge=0)
    points_per_loss: int = Field(default=0, ge=0)
    points_per_goal_scored: int = Field(default=0, ge=0)
    points_per_goal_conceded: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError('End date must be on or after start date')
        return self


class TournamentUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    club_id: Optional[int] = Field(default=None, gt=0)
    point_system_template_id: Optional[int] = Field(default=None, gt=0)
    points_per_win: Optional[int] = Field(default=None, ge=0)
    points_per_draw: Optional[int] = Field(default=None, ge=0)
    points_per_loss: Optional[int] = Field(default=None, ge=0)
    points_per_goal_scored: Optional[int] = Field(default=None, ge=0)
    points_per_goal_conceded: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode='after')
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError('End date must be on or after start date')
        return self


class ParticipantsIn(Schema):
    player_ids: List[int] = Field(min_length=1)


# --- matches ---

class MatchResultIn(Schema):
    player_id: int = Field(gt=0)
    outcome: MatchOutcome
    goals_scored: int = Field(default=0, ge=0)
    goals_conceded: int = Field(default=0, ge=0)


def _unique_players(results):
    player_ids = [r.player_id for r in results]
    if len(player_ids) != len(set(player_ids)):
        raise ValueError('Duplicate player IDs are not allowed in match results')


def _check_walkover(walkover, results):
    """Walkover matches are two players, zero goals; a double forfeit is two losses."""
    if walkover is None or walkover == WalkoverType.NONE:
        return
    if len(results) != 2:
        raise ValueError('A walkover needs exactly two players')
    if walkover == WalkoverType.SINGLE:
        if sorted(r.outcome.value for r in results) != ['LOSS', 'WIN']:
            raise ValueError('A walkover needs one winner and one loser')
    else:
        for result in results:
            result.outcome = MatchOutcome.LOSS
    for result in results:
        result.goals_scored = 0
        result.goals_conceded = 0


class MatchIn(Schema):
    match_date: date
    stage_id: Optional[int] = Field(default=None, gt=0)
    stage_name: Optional[str] = Field(default=None, max_length=100)
    walkover: WalkoverType = WalkoverType.NONE
    results: List[MatchResultIn] = Field(min_length=1)

    @model_validator(mode='after')
    def check_results(self):
        _unique_players(self.results)
        _check_walkover(self.walkover, self.results)
        return self


class MatchUpdate(Schema):
    match_date: Optional[date] = None
    stage_id: Optional[int] = Field(default=None, gt=0)
    stage_name: Optional[str] = Field(default=None, max_length=100)
    walkover: Optional[WalkoverType] = None
    results: Optional[List[MatchResultIn]] = Field(default=None, min_length=1)

    @model_validator(mode='after')
    def check_results(self):
        if self.results is not None:
            _unique_players(self.results)
            _check_walkover(self.walkover, self.results)
        elif self.walkover is not None:
            raise ValueError('Send the results along with a walkover change')
        return self


def results_from_form(form):
    """Rebuild per-player result dicts from the match form's parallel lists."""
    player_ids = form.getlist('player_id')
    outcomes = form.getlist('outcome')
    scored = form.getlist('goals_scored')
    conceded = form.getlist('goals_conceded')
    results = []
    for i, player_id in enumerate(player_ids):
        if not player_id:
            continue
        results.append({
            'player_id': player_id,
            'outcome': outcomes[i] if i < len(outcomes) else None,
            'goals_scored': (scored[i] if i < len(scored) else '') or 0,
            'goals_conceded': (conceded[i] if i < len(conceded) else '') or 0,
        })
    return results
