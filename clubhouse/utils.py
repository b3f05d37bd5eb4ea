from sqlalchemy import case, func
from flask import current_app, request
from .extensions import db
from .models import (Club, Match, MatchResult, MatchOutcome, Player, Tournament,
                     TournamentParticipant, TournamentPlayerStats, WalkoverType)
from .scoring import resolve_point_system, calculate_points, walkover_points, apply_breakdown


def _rate(part, whole, digits=1):
    if not whole:
        return 0
    return round(part / whole * 100, digits)


def _average(total, count):
    if not count:
        return 0
    return round(total / count, 2)


def _club_summary(player):
    if player.club is None:
        return None
    return {'id': player.club.id, 'name': player.club.name, 'logo': player.club.logo}


def score_match(match, system=None):
    """(Re)compute the points of every result of a match."""
    if system is None:
        system = resolve_point_system(match.tournament, match.stage)

    for result in match.results:
        if match.walkover == WalkoverType.DOUBLE:
            breakdown = walkover_points(result.outcome, system, forfeited_by_both=True)
        elif match.walkover == WalkoverType.SINGLE:
            breakdown = walkover_points(result.outcome, system)
        else:
            breakdown = calculate_points({
                'outcome': result.outcome,
                'goals_scored': result.goals_scored,
                'goals_conceded': result.goals_conceded,
            }, system)
        apply_breakdown(result, breakdown)


def update_player_statistics(tournament_id, player_ids):
    """Rebuild the stats rows of the given players in one tournament.

    The caller commits.
    """
    player_ids = set(player_ids)
    if not player_ids:
        return

    results = (
        MatchResult.query
        .join(Match, MatchResult.match_id == Match.id)
        .filter(Match.tournament_id == tournament_id, MatchResult.player_id.in_(player_ids))
        .all()
    )

    totals = {pid: {'matches_played': 0, 'wins': 0, 'draws': 0, 'losses': 0,
                    'goals_scored': 0, 'goals_conceded': 0,
                    'total_points': 0, 'conditional_points': 0}
              for pid in player_ids}
    for result in results:
        row = totals[result.player_id]
        row['matches_played'] += 1
        if result.outcome == MatchOutcome.WIN:
            row['wins'] += 1
        elif result.outcome == MatchOutcome.DRAW:
            row['draws'] += 1
        else:
            row['losses'] += 1
        row['goals_scored'] += result.goals_scored
        row['goals_conceded'] += result.goals_conceded
        row['total_points'] += result.points_earned
        row['conditional_points'] += result.conditional_points

    existing = {
        s.player_id: s for s in TournamentPlayerStats.query.filter(
            TournamentPlayerStats.tournament_id == tournament_id,
            TournamentPlayerStats.player_id.in_(player_ids)
        ).all()
    }
    for player_id, values in totals.items():
        stats = existing.get(player_id)
        if stats is None:
            stats = TournamentPlayerStats(tournament_id=tournament_id, player_id=player_id)
            db.session.add(stats)
        for field, value in values.items():
            setattr(stats, field, value)


def recalculate_tournament_statistics(tournament_id, rescore=False):
    """Rebuild statistics for every participant of a tournament and commit."""
    tournament = db.session.get(Tournament, tournament_id)
    if tournament is None:
        return 0

    if rescore:
        for match in tournament.matches:
            score_match(match)

    player_ids = {p.player_id for p in tournament.participants}
    # players who have results but were never registered still need a row
    player_ids.update(
        pid for (pid,) in db.session.query(MatchResult.player_id)
        .join(Match, MatchResult.match_id == Match.id)
        .filter(Match.tournament_id == tournament_id)
        .distinct()
    )
    update_player_statistics(tournament_id, player_ids)
    db.session.commit()
    current_app.logger.info('recalculated statistics for tournament %s (%d players, rescore=%s)',
                            tournament_id, len(player_ids), rescore)
    return len(player_ids)


def assign_ranks(rows, key):
    """Give each row a 1-based rank; rows with equal keys share a rank.

    Rows must already be sorted best first.
    """
    current_rank = 0
    previous_value = None
    for i, row in enumerate(rows, start=1):
        value = key(row)
        if value != previous_value:
            current_rank = i
            previous_value = value
        row['rank'] = current_rank
    return rows


def tournament_leaderboard(tournament_id):
    stats = (
        TournamentPlayerStats.query
        .join(Player, TournamentPlayerStats.player_id == Player.id)
        .filter(TournamentPlayerStats.tournament_id == tournament_id)
        .order_by(TournamentPlayerStats.total_points.desc(),
                  TournamentPlayerStats.goals_scored.desc(),
                  TournamentPlayerStats.wins.desc(),
                  Player.name.asc())
        .all()
    )
    rows = [{
        'playerId': s.player_id,
        'playerName': s.player.name,
        'photo': s.player.photo,
        'club': _club_summary(s.player),
        'matchesPlayed': s.matches_played,
        'wins': s.wins,
        'draws': s.draws,
        'losses': s.losses,
        'goalsScored': s.goals_scored,
        'goalsConceded': s.goals_conceded,
        'goalDifference': s.goals_scored - s.goals_conceded,
        'conditionalPoints': s.conditional_points,
        'totalPoints': s.total_points,
    } for s in stats]
    return assign_ranks(rows, key=lambda r: (r['totalPoints'], r['goalsScored'], r['wins']))


def tournament_player_stats(tournament_id):
    stats = (
        TournamentPlayerStats.query
        .filter(TournamentPlayerStats.tournament_id == tournament_id,
                TournamentPlayerStats.matches_played > 0)
        .all()
    )
    rows = []
    for s in stats:
        rows.append({
            'id': s.player.id,
            'name': s.player.name,
            'email': s.player.email,
            'photo': s.player.photo,
            'club': _club_summary(s.player),
            'totalPoints': s.total_points,
            'totalMatches': s.matches_played,
            'totalWins': s.wins,
            'totalDraws': s.draws,
            'totalLosses': s.losses,
            'totalGoalsScored': s.goals_scored,
            'totalGoalsConceded': s.goals_conceded,
            'goalDifference': s.goals_scored - s.goals_conceded,
            'winRate': _rate(s.wins, s.matches_played),
            'avgPointsPerMatch': _average(s.total_points, s.matches_played),
            'avgGoalsPerMatch': _average(s.goals_scored, s.matches_played),
        })
    rows.sort(key=lambda r: (r['totalPoints'], r['winRate'], r['goalDifference']), reverse=True)
    return rows


def _result_aggregates():
    return (
        func.count(MatchResult.id).label('matches'),
        func.sum(case((MatchResult.outcome == MatchOutcome.WIN, 1), else_=0)).label('wins'),
        func.sum(case((MatchResult.outcome == MatchOutcome.DRAW, 1), else_=0)).label('draws'),
        func.sum(case((MatchResult.outcome == MatchOutcome.LOSS, 1), else_=0)).label('losses'),
        func.coalesce(func.sum(MatchResult.goals_scored), 0).label('goals_scored'),
        func.coalesce(func.sum(MatchResult.goals_conceded), 0).label('goals_conceded'),
        func.coalesce(func.sum(MatchResult.points_earned), 0).label('points'),
    )


def player_leaderboard(tournament_id=None, limit=None):
    query = (
        db.session.query(MatchResult.player_id, *_result_aggregates())
        .join(Match, MatchResult.match_id == Match.id)
    )
    if tournament_id is not None:
        query = query.filter(Match.tournament_id == tournament_id)
    grouped = query.group_by(MatchResult.player_id).all()

    players = {}
    if grouped:
        players = {p.id: p for p in Player.query.filter(Player.id.in_([g.player_id for g in grouped])).all()}
    rows = []
    for g in grouped:
        player = players.get(g.player_id)
        if player is None:
            continue
        rows.append({
            'player': {'id': player.id, 'name': player.name, 'photo': player.photo,
                       'club': _club_summary(player)},
            'stats': {
                'totalMatches': g.matches,
                'totalWins': int(g.wins or 0),
                'totalDraws': int(g.draws or 0),
                'totalLosses': int(g.losses or 0),
                'totalGoalsScored': int(g.goals_scored),
                'totalGoalsConceded': int(g.goals_conceded),
                'totalPoints': int(g.points),
                'winRate': _rate(int(g.wins or 0), g.matches),
            },
        })
    rows.sort(key=lambda r: (r['stats']['totalPoints'], r['stats']['totalWins']), reverse=True)
    assign_ranks(rows, key=lambda r: r['stats']['totalPoints'])
    return rows[:limit] if limit else rows


def club_leaderboard(tournament_id=None):
    query = (
        db.session.query(Player.club_id, *_result_aggregates())
        .join(MatchResult, MatchResult.player_id == Player.id)
        .join(Match, MatchResult.match_id == Match.id)
        .filter(Player.club_id.isnot(None))
    )
    if tournament_id is not None:
        query = query.filter(Match.tournament_id == tournament_id)
    grouped = {g.club_id: g for g in query.group_by(Player.club_id).all()}

    member_counts = dict(
        db.session.query(Player.club_id, func.count(Player.id))
        .filter(Player.club_id.isnot(None))
        .group_by(Player.club_id)
        .all()
    )

    clubs = Club.query.filter(Club.id.in_(list(grouped))).all() if grouped else []
    rows = []
    for club in clubs:
        g = grouped[club.id]
        if not g.matches:
            continue
        rows.append({
            'club': {'id': club.id, 'name': club.name, 'logo': club.logo},
            'stats': {
                'totalPlayers': member_counts.get(club.id, 0),
                'totalMatches': g.matches,
                'totalWins': int(g.wins or 0),
                'totalDraws': int(g.draws or 0),
                'totalLosses': int(g.losses or 0),
                'totalGoalsScored': int(g.goals_scored),
                'totalGoalsConceded': int(g.goals_conceded),
                'totalPoints': int(g.points),
                'winRate': _rate(int(g.wins or 0), g.matches),
            },
        })
    rows.sort(key=lambda r: r['stats']['totalPoints'], reverse=True)
    assign_ranks(rows, key=lambda r: r['stats']['totalPoints'])
    return rows


def player_career_stats(player_id):
    stats = (
        TournamentPlayerStats.query
        .join(Tournament, TournamentPlayerStats.tournament_id == Tournament.id)
        .filter(TournamentPlayerStats.player_id == player_id)
        .order_by(Tournament.start_date.desc())
        .all()
    )
    tournaments = []
    totals = {'tournaments': 0, 'matchesPlayed': 0, 'wins': 0, 'draws': 0, 'losses': 0,
              'goalsScored': 0, 'goalsConceded': 0, 'totalPoints': 0}
    for s in stats:
        tournaments.append({
            'tournamentId': s.tournament_id,
            'tournamentName': s.tournament.name,
            'matchesPlayed': s.matches_played,
            'wins': s.wins,
            'draws': s.draws,
            'losses': s.losses,
            'goalsScored': s.goals_scored,
            'goalsConceded': s.goals_conceded,
            'totalPoints': s.total_points,
        })
        totals['tournaments'] += 1
        totals['matchesPlayed'] += s.matches_played
        totals['wins'] += s.wins
        totals['draws'] += s.draws
        totals['losses'] += s.losses
        totals['goalsScored'] += s.goals_scored
        totals['goalsConceded'] += s.goals_conceded
        totals['totalPoints'] += s.total_points
    totals['winRate'] = _rate(totals['wins'], totals['matchesPlayed'])
    totals['goalDifference'] = totals['goalsScored'] - totals['goalsConceded']
    return {'tournaments': tournaments, 'totals': totals}


def participant_ids(tournament):
    return {p.player_id for p in tournament.participants}


def is_participant(tournament_id, player_id):
    return db.session.query(TournamentParticipant.id).filter_by(
        tournament_id=tournament_id, player_id=player_id).first() is not None


def page_args(default_size_key='DASHBOARD_PAGE_SIZE'):
    """Read ?page= and ?limit= from the request, clamped to sane bounds."""
    page = request.args.get('page', 1, type=int) or 1
    size = request.args.get('limit', current_app.config[default_size_key], type=int) or current_app.config[default_size_key]
    return max(page, 1), min(max(size, 1), current_app.config['MAX_PAGE_SIZE'])


def pagination_dict(pagination):
    return {
        'page': pagination.page,
        'limit': pagination.per_page,
        'total': pagination.total,
        'totalPages': pagination.pages,
    }
