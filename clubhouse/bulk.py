"""
CSV import of matches and club members.

Parsing never touches the database; `import_matches` and `import_members`
do, and leave committing to the caller.
"""
import csv
import io
from datetime import date, datetime

from flask import current_app
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy import func

from .errors import BadRequestError, first_error_message
from .extensions import db
from .models import Match, MatchResult, MatchOutcome, Player, RoleType, WalkoverType
from .schemas import PlayerIn
from .scoring import resolve_point_system, outcomes_for_score
from .utils import score_match, update_player_statistics

MATCH_COLUMNS = ['playera', 'playerb', 'playeragoals', 'playerbgoals', 'matchdate']
MATCH_OPTIONAL_COLUMNS = ['walkover']
MEMBER_COLUMNS = ['name']
MEMBER_OPTIONAL_COLUMNS = ['email', 'phone', 'state', 'district', 'dateofbirth', 'role']


class BulkRow:
    """One parsed match row; `line` is the 1-based CSV line it came from."""

    def __init__(self, line, player_a, player_b, goals_a, goals_b, match_date, walkover=''):
        self.line = line
        self.player_a = player_a
        self.player_b = player_b
        self.goals_a = goals_a
        self.goals_b = goals_b
        self.match_date = match_date
        self.walkover = walkover

    def to_dict(self):
        return {
            'row': self.line,
            'playerA': self.player_a,
            'playerB': self.player_b,
            'playerAGoals': self.goals_a,
            'playerBGoals': self.goals_b,
            'matchDate': self.match_date.isoformat(),
            'walkover': self.walkover,
        }

    @classmethod
    def from_dict(cls, data, line=0):
        """Rebuild a row from a preview payload, re-validating every field."""
        row = {
            'playera': data.get('playerA', data.get('playera', '')),
            'playerb': data.get('playerB', data.get('playerb', '')),
            'playeragoals': data.get('playerAGoals', data.get('playeragoals', '')),
            'playerbgoals': data.get('playerBGoals', data.get('playerbgoals', '')),
            'matchdate': data.get('matchDate', data.get('matchdate', '')),
            'walkover': data.get('walkover', ''),
        }
        return _parse_match_row(row, data.get('row', line))

    def __repr__(self):
        return f"<BulkRow {self.line}: {self.player_a} {self.goals_a}-{self.goals_b} {self.player_b}>"


class RowError(ValueError):
    pass


def read_csv_upload(upload):
    try:
        return upload.read().decode('utf-8-sig')
    except UnicodeDecodeError:
        raise BadRequestError(_('CSV file must be UTF-8 encoded'))


def _reader(text):
    if text.startswith('\ufeff'):
        text = text[1:]
    reader = csv.DictReader(io.StringIO(text), skipinitialspace=True)
    if reader.fieldnames is None:
        return None
    reader.fieldnames = [(name or '').strip().lower() for name in reader.fieldnames]
    return reader


def _cell(row, key):
    value = row.get(key)
    if value is None:
        return ''
    return str(value).strip()


def _goals(value, label):
    try:
        goals = int(value)
    except (TypeError, ValueError):
        raise RowError(f'{label} must be a whole number')
    if goals < 0:
        raise RowError(f'{label} must be non-negative')
    return goals


def _date(value, label):
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise RowError(f'{label} must be a date in YYYY-MM-DD format')


def _parse_match_row(row, line):
    player_a = _cell(row, 'playera')
    player_b = _cell(row, 'playerb')
    if not player_a or not player_b:
        raise RowError('Player names are required')
    goals_a = _goals(_cell(row, 'playeragoals'), 'PlayerA goals')
    goals_b = _goals(_cell(row, 'playerbgoals'), 'PlayerB goals')
    match_date = _date(_cell(row, 'matchdate'), 'Match date')
    return BulkRow(line, player_a, player_b, goals_a, goals_b, match_date, _cell(row, 'walkover'))


def parse_match_csv(text):
    """Parse a match CSV into (rows, errors)."""
    reader = _reader(text or '')
    if reader is None:
        return [], ['CSV file is empty']

    missing = [c for c in MATCH_COLUMNS if c not in reader.fieldnames]
    if missing:
        return [], [f"Missing required columns: {', '.join(missing)}"]

    rows, errors = [], []
    for record in reader:
        line = reader.line_num
        if not any(_cell(record, key) for key in reader.fieldnames):
            continue
        try:
            rows.append(_parse_match_row(record, line))
        except RowError as e:
            errors.append(f'Row {line}: {e}')
    if not rows and not errors:
        errors.append('CSV file must contain at least a header row and one data row')
    return rows, errors


def resolve_walkover(value, player_a, player_b):
    """Map a walkover cell to (WalkoverType, winner) where winner is 'a', 'b' or None."""
    value = (value or '').strip().lower()
    if value in ('', 'normal', 'no', 'none'):
        return WalkoverType.NONE, None
    if value == 'both':
        return WalkoverType.DOUBLE, None
    if value == player_a.strip().lower():
        return WalkoverType.SINGLE, 'a'
    if value == player_b.strip().lower():
        return WalkoverType.SINGLE, 'b'
    raise RowError(f"Walkover must be 'normal', 'both' or one of the player names, got '{value}'")


def import_matches(tournament, rows):
    """Create matches for parsed rows; returns {'added', 'skipped', 'errors'}."""
    participants = {}
    for participant in tournament.participants:
        participants.setdefault(participant.player.name.strip().lower(), participant.player)

    system = resolve_point_system(tournament)
    added, skipped, errors = 0, 0, []
    touched = set()

    for row in rows:
        player_a = participants.get(row.player_a.lower())
        player_b = participants.get(row.player_b.lower())
        if player_a is None or player_b is None:
            unknown = [name for name, p in ((row.player_a, player_a), (row.player_b, player_b)) if p is None]
            errors.append(f"Row {row.line}: Players not found in tournament: {', '.join(unknown)}")
            skipped += 1
            continue
        if player_a.id == player_b.id:
            errors.append(f'Row {row.line}: A player cannot play against themselves')
            skipped += 1
            continue
        try:
            walkover, winner = resolve_walkover(row.walkover, player_a.name, player_b.name)
        except RowError as e:
            errors.append(f'Row {row.line}: {e}')
            skipped += 1
            continue

        goals_a, goals_b = row.goals_a, row.goals_b
        if walkover == WalkoverType.NONE:
            outcome_a, outcome_b = outcomes_for_score(goals_a, goals_b)
        elif walkover == WalkoverType.DOUBLE:
            outcome_a = outcome_b = MatchOutcome.LOSS
            goals_a = goals_b = 0
        else:
            outcome_a, outcome_b = (MatchOutcome.WIN, MatchOutcome.LOSS) if winner == 'a' else (MatchOutcome.LOSS, MatchOutcome.WIN)
            goals_a = goals_b = 0

        match = Match(tournament=tournament, match_date=row.match_date, walkover=walkover)
        match.results.append(MatchResult(player=player_a, outcome=outcome_a,
                                         goals_scored=goals_a, goals_conceded=goals_b))
        match.results.append(MatchResult(player=player_b, outcome=outcome_b,
                                         goals_scored=goals_b, goals_conceded=goals_a))
        score_match(match, system)
        db.session.add(match)
        touched.update((player_a.id, player_b.id))
        added += 1

    if touched:
        db.session.flush()
        update_player_statistics(tournament.id, touched)
    current_app.logger.info('bulk import into tournament %s: %d added, %d skipped',
                            tournament.id, added, skipped)
    return {'added': added, 'skipped': skipped, 'errors': errors}


def _parse_member_record(record, line):
    name = _cell(record, 'name')
    if not name:
        raise RowError('Name is required')
    email = _cell(record, 'email') or None
    if email and '@' not in email:
        raise RowError('Invalid email format')
    date_of_birth = _cell(record, 'dateofbirth') or None
    if date_of_birth:
        date_of_birth = _date(date_of_birth, 'Date of birth')
    district, state = _cell(record, 'district'), _cell(record, 'state')
    try:
        player = PlayerIn.model_validate({
            'name': name,
            'email': email,
            'phone': _cell(record, 'phone') or None,
            'place': f'{district}, {state}' if district and state else None,
            'date_of_birth': date_of_birth,
            'roles': [RoleType.PLAYER],
        })
    except ValidationError as e:
        raise RowError(first_error_message(e))
    member = player.model_dump(exclude={'photo', 'roles'})
    member['row'] = line
    member['role'] = _cell(record, 'role').upper() or None
    return member


def parse_member_csv(text):
    """Parse a member CSV into (members, errors); members are plain dicts."""
    reader = _reader(text or '')
    if reader is None:
        return [], ['CSV file is empty']

    missing = [c for c in MEMBER_COLUMNS if c not in reader.fieldnames]
    if missing:
        return [], [f"Missing required columns: {', '.join(missing)}"]

    members, errors = [], []
    for record in reader:
        line = reader.line_num
        if not any(_cell(record, key) for key in reader.fieldnames):
            continue
        try:
            members.append(_parse_member_record(record, line))
        except RowError as e:
            errors.append(f'Row {line}: {e}')
    return members, errors


def parse_member_records(items):
    """Same as parse_member_csv for a JSON list of member objects."""
    if not isinstance(items, list):
        return [], ['Rows must be a list of objects']
    members, errors = [], []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            errors.append(f'Row {i}: Each row must be an object')
            continue
        record = {str(k).lower(): v for k, v in item.items()}
        try:
            members.append(_parse_member_record(record, i))
        except RowError as e:
            errors.append(f'Row {i}: {e}')
    return members, errors


def parse_match_records(items):
    """Same as parse_match_csv for a JSON list of match objects."""
    if not isinstance(items, list):
        return [], ['Rows must be a list of objects']
    rows, errors = [], []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            errors.append(f'Row {i}: Each row must be an object')
            continue
        try:
            rows.append(BulkRow.from_dict(item, line=i))
        except RowError as e:
            errors.append(f'Row {i}: {e}')
    return rows, errors


def _member_role(value):
    try:
        return RoleType(value)
    except ValueError:
        return RoleType.PLAYER


def import_members(club, members):
    """Add parsed members to `club`; returns {'added', 'skipped'}.

    Rows whose email is already taken, in the database or earlier in the
    same upload, are skipped.
    """
    added, skipped = 0, 0
    seen_emails = set()
    for member in members:
        email = member.get('email')
        if email:
            key = email.lower()
            if key in seen_emails or Player.query.filter(func.lower(Player.email) == key).first():
                skipped += 1
                continue
            seen_emails.add(key)

        player = Player(
            name=member['name'],
            email=email,
            phone=member.get('phone'),
            place=member.get('place'),
            date_of_birth=member.get('date_of_birth'),
        )
        player.join_club(club)
        player.set_roles([_member_role(member.get('role') or 'PLAYER')])
        db.session.add(player)
        added += 1

    current_app.logger.info('bulk member import into club %s: %d added, %d skipped', club.id, added, skipped)
    return {'added': added, 'skipped': skipped}


def match_csv_template(participants=()):
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(MATCH_COLUMNS + MATCH_OPTIONAL_COLUMNS)
    names = [p.name for p in participants]
    if len(names) >= 2:
        writer.writerow([names[0], names[1], 2, 1, date.today().isoformat(), 'normal'])
        writer.writerow([names[0], names[1], 0, 0, date.today().isoformat(), names[0]])
    else:
        writer.writerow(['Player One', 'Player Two', 2, 1, date.today().isoformat(), 'normal'])
    return output.getvalue()


def member_csv_template():
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(MEMBER_COLUMNS + MEMBER_OPTIONAL_COLUMNS)
    writer.writerow(['Jane Doe', 'jane@example.com', '0100000000', 'Seoul', 'Mapo', '2000-01-31', 'PLAYER'])
    return output.getvalue()
