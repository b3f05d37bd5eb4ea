import click
from datetime import date, timedelta
from flask.cli import with_appcontext
from .extensions import db
from .models import (User, Club, Player, RoleType, PointSystemTemplate, ConditionalRule, StagePoint,
                     Tournament, TournamentParticipant, RuleConditionType, ComparisonOperator)
from .bulk import BulkRow, import_matches
from .utils import recalculate_tournament_statistics

SAMPLE_CLUBS = [
    ('Riverside FC', 'Community club on the east bank', [
        ('Alex Kim', RoleType.MANAGER), ('Jamie Park', RoleType.CAPTAIN),
        ('Sam Lee', RoleType.PLAYER), ('Chris Choi', RoleType.PLAYER),
    ]),
    ('Hilltop United', 'Weekend league regulars', [
        ('Morgan Yoon', RoleType.MENTOR), ('Taylor Jung', RoleType.CAPTAIN),
        ('Jordan Han', RoleType.PLAYER), ('Casey Lim', RoleType.PLAYER),
    ]),
]


def register_commands(app):
    @app.cli.command("create-admin")
    @click.argument("username")
    @click.argument("password")
    @click.option("--email", default=None, help="Contact email for the account.")
    @with_appcontext
    def create_admin(username, password, email):
        """Create a dashboard administrator account."""
        if User.query.filter_by(username=username).first():
            print(f">>> Error: user '{username}' already exists.")
            return

        user = User(username=username, email=email)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        print(f">>> Created admin '{username}'.")

    @app.cli.command("seed")
    @with_appcontext
    def seed():
        """Load sample clubs, players, a point system and a tournament."""
        if Club.query.first() is not None:
            print(">>> Database already has clubs, skipping seed.")
            return

        players = []
        for club_name, description, members in SAMPLE_CLUBS:
            club = Club(name=club_name, description=description)
            db.session.add(club)
            for name, role in members:
                player = Player(name=name,
                                email=f"{name.split()[0].lower()}@{club_name.split()[0].lower()}.example")
                player.join_club(club)
                player.set_roles([role] if role == RoleType.PLAYER else [role, RoleType.PLAYER])
                db.session.add(player)
                players.append(player)

        template = PointSystemTemplate(name='League standard', description='3-1-0 with a clean sheet bonus')
        template.conditional_rules.append(ConditionalRule(
            condition_type=RuleConditionType.CLEAN_SHEET, operator=ComparisonOperator.EQUALS,
            threshold=0, point_adjustment=1))
        template.conditional_rules.append(ConditionalRule(
            condition_type=RuleConditionType.GOALS_SCORED_THRESHOLD,
            operator=ComparisonOperator.GREATER_THAN_OR_EQUAL, threshold=5, point_adjustment=2))
        template.stage_points.append(StagePoint(stage_name='Final', stage_order=1, points_per_win=5,
                                                points_per_draw=2, points_per_loss=1))
        db.session.add(template)

        today = date.today()
        tournament = Tournament(name='Spring Cup', description='Sample round robin',
                                start_date=today - timedelta(days=14), end_date=today + timedelta(days=14),
                                point_system_template=template)
        db.session.add(tournament)
        for player in players:
            tournament.participants.append(TournamentParticipant(player=player))
        db.session.flush()

        rows = []
        for i, (a, b) in enumerate(zip(players[::2], players[1::2]), start=2):
            rows.append(BulkRow(i, a.name, b.name, i % 4, (i + 1) % 3, today - timedelta(days=i)))
        summary = import_matches(tournament, rows)
        db.session.commit()
        print(f">>> Seeded {len(SAMPLE_CLUBS)} clubs, {len(players)} players and {summary['added']} matches.")

    @app.cli.command("recalculate-stats")
    @click.argument("tournament_id", type=int, required=False)
    @click.option("--rescore", is_flag=True, help="Recompute every result's points first.")
    @with_appcontext
    def recalculate_stats(tournament_id, rescore):
        """Rebuild tournament statistics for one or all tournaments."""
        if tournament_id is not None:
            ids = [tournament_id]
        else:
            ids = [t.id for t in Tournament.query.order_by(Tournament.id).all()]

        for tid in ids:
            count = recalculate_tournament_statistics(tid, rescore=rescore)
            if count == 0 and db.session.get(Tournament, tid) is None:
                print(f">>> Error: tournament {tid} not found.")
                continue
            print(f">>> Tournament {tid}: statistics rebuilt for {count} players.")
