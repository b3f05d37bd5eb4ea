"""
Tournament point calculation.

A result earns base points (outcome points plus per-goal points for goals
scored and conceded) and conditional points (the sum of adjustments of every
conditional rule its numbers satisfy). Walkovers bypass both and earn the
template's walkover points.
"""
from .models import MatchOutcome, RuleConditionType, ComparisonOperator


class PointSystem:
    def __init__(self, points_per_win=3, points_per_draw=1, points_per_loss=0,
                 points_per_goal_scored=0, points_per_goal_conceded=0,
                 points_for_walkover_win=None, points_for_walkover_loss=None,
                 conditional_rules=None, source='inline'):
        self.points_per_win = points_per_win
        self.points_per_draw = points_per_draw
        self.points_per_loss = points_per_loss
        self.points_per_goal_scored = points_per_goal_scored
        self.points_per_goal_conceded = points_per_goal_conceded
        # no dedicated walkover points: walkovers score like a plain win/loss
        self.points_for_walkover_win = points_per_win if points_for_walkover_win is None else points_for_walkover_win
        self.points_for_walkover_loss = points_per_loss if points_for_walkover_loss is None else points_for_walkover_loss
        self.conditional_rules = list(conditional_rules or [])
        self.source = source

    def outcome_points(self, outcome):
        if outcome == MatchOutcome.WIN:
            return self.points_per_win
        if outcome == MatchOutcome.DRAW:
            return self.points_per_draw
        return self.points_per_loss

    @classmethod
    def from_tournament(cls, tournament):
        return cls(
            points_per_win=tournament.points_per_win,
            points_per_draw=tournament.points_per_draw,
            points_per_loss=tournament.points_per_loss,
            points_per_goal_scored=tournament.points_per_goal_scored,
            points_per_goal_conceded=tournament.points_per_goal_conceded,
            source='inline',
        )

    @classmethod
    def from_template(cls, template):
        return cls(
            points_per_win=template.points_per_win,
            points_per_draw=template.points_per_draw,
            points_per_loss=template.points_per_loss,
            points_per_goal_scored=template.points_per_goal_scored,
            points_per_goal_conceded=template.points_per_goal_conceded,
            points_for_walkover_win=template.points_for_walkover_win,
            points_for_walkover_loss=template.points_for_walkover_loss,
            conditional_rules=template.conditional_rules,
            source='template',
        )

    @classmethod
    def from_stage(cls, stage, template):
        # stage points replace the template's points; rules do not apply
        return cls(
            points_per_win=stage.points_per_win,
            points_per_draw=stage.points_per_draw,
            points_per_loss=stage.points_per_loss,
            points_per_goal_scored=stage.points_per_goal_scored,
            points_per_goal_conceded=stage.points_per_goal_conceded,
            points_for_walkover_win=template.points_for_walkover_win,
            points_for_walkover_loss=template.points_for_walkover_loss,
            source='stage',
        )

    def __repr__(self):
        return (f"PointSystem(source={self.source}, win={self.points_per_win}, draw={self.points_per_draw}, "
                f"loss={self.points_per_loss}, scored={self.points_per_goal_scored}, "
                f"conceded={self.points_per_goal_conceded}, rules={len(self.conditional_rules)})")


class PointBreakdown:
    def __init__(self, base_points, conditional_points=0, applied_rules=None):
        self.base_points = base_points
        self.conditional_points = conditional_points
        self.applied_rules = applied_rules or []

    @property
    def total_points(self):
        return self.base_points + self.conditional_points

    def to_dict(self):
        return {
            'basePoints': self.base_points,
            'conditionalPoints': self.conditional_points,
            'totalPoints': self.total_points,
            'appliedRules': self.applied_rules,
        }

    def __repr__(self):
        return f"PointBreakdown(base={self.base_points}, conditional={self.conditional_points})"


def resolve_point_system(tournament, stage=None):
    """Pick the point system a match in `tournament` is scored with.

    A stage only counts when it belongs to the tournament's template.
    """
    template = tournament.point_system_template
    if template is not None:
        if stage is not None and stage.template_id == template.id:
            return PointSystem.from_stage(stage, template)
        return PointSystem.from_template(template)
    return PointSystem.from_tournament(tournament)


def _metric(result, condition_type):
    goals_scored = result['goals_scored']
    goals_conceded = result['goals_conceded']
    if condition_type == RuleConditionType.GOALS_SCORED_THRESHOLD:
        return goals_scored
    if condition_type == RuleConditionType.GOALS_CONCEDED_THRESHOLD:
        return goals_conceded
    if condition_type == RuleConditionType.GOAL_DIFFERENCE_THRESHOLD:
        return goals_scored - goals_conceded
    if condition_type == RuleConditionType.CLEAN_SHEET:
        return goals_conceded
    return None


_COMPARATORS = {
    ComparisonOperator.EQUALS: lambda value, threshold: value == threshold,
    ComparisonOperator.GREATER_THAN: lambda value, threshold: value > threshold,
    ComparisonOperator.LESS_THAN: lambda value, threshold: value < threshold,
    ComparisonOperator.GREATER_THAN_OR_EQUAL: lambda value, threshold: value >= threshold,
    ComparisonOperator.LESS_THAN_OR_EQUAL: lambda value, threshold: value <= threshold,
}


def evaluate_rule(result, rule):
    value = _metric(result, rule.condition_type)
    compare = _COMPARATORS.get(rule.operator)
    if value is None or compare is None:
        return False
    return compare(value, rule.threshold)


def calculate_points(result, system):
    """Score one result dict (outcome, goals_scored, goals_conceded)."""
    base = system.outcome_points(result['outcome'])
    base += result['goals_scored'] * system.points_per_goal_scored
    base += result['goals_conceded'] * system.points_per_goal_conceded

    applied = []
    conditional = 0
    for rule in system.conditional_rules:
        if evaluate_rule(result, rule):
            applied.append({'ruleId': rule.id, 'pointAdjustment': rule.point_adjustment})
            conditional += rule.point_adjustment

    return PointBreakdown(base, conditional, applied)


def walkover_points(outcome, system, forfeited_by_both=False):
    if forfeited_by_both:
        return PointBreakdown(0)
    if outcome == MatchOutcome.WIN:
        return PointBreakdown(system.points_for_walkover_win)
    return PointBreakdown(system.points_for_walkover_loss)


def outcomes_for_score(goals_a, goals_b):
    if goals_a > goals_b:
        return MatchOutcome.WIN, MatchOutcome.LOSS
    if goals_a < goals_b:
        return MatchOutcome.LOSS, MatchOutcome.WIN
    return MatchOutcome.DRAW, MatchOutcome.DRAW


def apply_breakdown(match_result, breakdown):
    match_result.base_points = breakdown.base_points
    match_result.conditional_points = breakdown.conditional_points
    match_result.points_earned = breakdown.total_points
