from flask import Blueprint, redirect, url_for, abort, request, session, current_app
from functools import wraps
import hmac
import os
import time

from .models import json_number
from .standings import ALL_STAGES, StandingRow, category_leaders, filter_by_name, standings_for, top
from . import datastore as ds
from .datastore import NotFound


bp = Blueprint('main', __name__)

# Simple in-process cache for standings, keyed by view scope
_STANDINGS_CACHE: dict[str, tuple[float, list[StandingRow]]] = {}
_STANDINGS_TTL = int(os.environ.get('CACHE_TTL_STANDINGS', '60'))  # seconds


def _cache_get_standings(scope: str) -> list[StandingRow] | None:
    entry = _STANDINGS_CACHE.get(scope)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        _STANDINGS_CACHE.pop(scope, None)
        return None
    return value


def _cache_set_standings(scope: str, rows: list[StandingRow]) -> None:
    _STANDINGS_CACHE[scope] = (time.time() + _STANDINGS_TTL, rows)


def _cache_clear_all() -> None:
    _STANDINGS_CACHE.clear()


def admin_required(view):
    """Reject write requests that do not carry an admin session."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not session.get('admin'):
            return {'error': 'Authentication required'}, 401
        return view(*args, **kwargs)
    return wrapped


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@bp.errorhandler(NotFound)
def _not_found(exc):
    return {'error': str(exc)}, 404


@bp.errorhandler(ValueError)
def _invalid(exc):
    return {'error': str(exc)}, 400


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {'connected': False, 'status': 'no_database_url'}
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
            return {
                'connected': True,
                'status': 'ok',
                'user': user,
                'database': db,
                'server_version': (ver or '').split('\n')[0],
            }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/')
def index():
    return redirect(url_for('main.standings'))


#<standings>
def _standings_rows(scope: str) -> list[StandingRow]:
    cached = _cache_get_standings(scope)
    if cached is not None:
        return cached
    snapshot = ds.load_snapshot()
    rows = standings_for(snapshot, scope=scope)
    _cache_set_standings(scope, rows)
    return rows


def _resolve_scope() -> tuple[str, list]:
    """Read ``stage`` from the query string; 404 for a stage that does not exist."""
    scope = request.args.get('stage') or ALL_STAGES
    stages = ds.list_stages()
    if scope != ALL_STAGES and scope not in {s.id for s in stages}:
        abort(404)
    return scope, stages


@bp.route('/standings')
def standings():
    """Ranked rows for the aggregate view or a single stage.

    Query args: ``stage`` (``all`` or a stage id), ``q`` (name filter applied
    after ranking), ``top`` (first N rows) and ``leaders`` (category leaders
    only).
    """
    scope, stages = _resolve_scope()
    rows = filter_by_name(_standings_rows(scope), request.args.get('q'))
    if request.args.get('leaders') in ('1', 'true'):
        rows = category_leaders(rows)
    top_n = request.args.get('top')
    if top_n:
        try:
            rows = top(rows, int(top_n))
        except ValueError:
            return {'error': f'Invalid top value: {top_n}'}, 400

    settings = ds.get_settings()
    return {
        'system_name': settings.get('system_name'),
        'scope': scope,
        'stages': [s.to_row() for s in stages],
        'standings': [r.to_dict() for r in rows],
    }


def leaders_summary(scope: str = ALL_STAGES, n: int = 3) -> dict:
    """Podium and category leaders for a scope, as plain dicts."""
    rows = _standings_rows(scope)
    return {
        'podium': [r.to_dict() for r in top(rows, n)],
        'category_leaders': [r.to_dict() for r in category_leaders(rows)],
    }


@bp.route('/standings/highlights')
def standings_highlights():
    scope, _ = _resolve_scope()
    try:
        n = int(request.args.get('top', '3'))
    except ValueError:
        return {'error': 'Invalid top value'}, 400
    return leaders_summary(scope, n)
#</standings>



@bp.route('/login', methods=['POST'])
def login():
    data = _payload() or request.form
    user = str(data.get('username') or '')
    password = str(data.get('password') or '')
    expected_user = current_app.config['ADMIN_USER']
    expected_password = current_app.config['ADMIN_PASSWORD']
    user_ok = hmac.compare_digest(user.encode(), expected_user.encode())
    password_ok = hmac.compare_digest(password.encode(), expected_password.encode())
    if expected_password and user_ok and password_ok:
        session['admin'] = True
        current_app.logger.info('login_ok user=%s', user)
        return {'status': 'ok'}
    current_app.logger.warning('login_failed user=%s', user)
    return {'error': 'Invalid username or password'}, 401


@bp.route('/logout', methods=['POST'])
def logout():
    session.pop('admin', None)
    return {'status': 'ok'}


#<crud>
@bp.route('/api/players', methods=['GET'])
def list_players():
    return {'players': [p.to_row() for p in ds.list_players()]}


@bp.route('/api/players', methods=['POST'])
@admin_required
def create_player():
    player = ds.create_player(_payload())
    current_app.logger.info('player_created id=%s', player.id)
    _cache_clear_all()
    return {'player': player.to_row()}, 201


@bp.route('/api/players/<player_id>', methods=['PUT'])
@admin_required
def update_player(player_id):
    player = ds.update_player(player_id, _payload())
    current_app.logger.info('player_updated id=%s', player_id)
    _cache_clear_all()
    return {'player': player.to_row()}


@bp.route('/api/players/<player_id>', methods=['DELETE'])
@admin_required
def delete_player(player_id):
    removed = ds.delete_player(player_id)
    current_app.logger.info('player_deleted id=%s scores_removed=%d', player_id, removed)
    _cache_clear_all()
    return {'status': 'ok', 'scores_removed': removed}


@bp.route('/api/categories', methods=['GET'])
def list_categories():
    return {'categories': [c.to_row() for c in ds.list_categories()]}


@bp.route('/api/categories', methods=['POST'])
@admin_required
def create_category():
    category = ds.create_category(_payload())
    current_app.logger.info('category_created id=%s', category.id)
    _cache_clear_all()
    return {'category': category.to_row()}, 201


@bp.route('/api/categories/<category_id>', methods=['PUT'])
@admin_required
def update_category(category_id):
    category = ds.update_category(category_id, _payload())
    current_app.logger.info('category_updated id=%s', category_id)
    _cache_clear_all()
    return {'category': category.to_row()}


@bp.route('/api/categories/<category_id>', methods=['DELETE'])
@admin_required
def delete_category(category_id):
    ds.delete_category(category_id)
    current_app.logger.info('category_deleted id=%s', category_id)
    _cache_clear_all()
    return {'status': 'ok'}


@bp.route('/api/titles', methods=['GET'])
def list_titles():
    return {'titles': [t.to_row() for t in ds.list_titles()]}


@bp.route('/api/titles', methods=['POST'])
@admin_required
def create_title():
    title = ds.create_title(_payload())
    current_app.logger.info('title_created id=%s', title.id)
    _cache_clear_all()
    return {'title': title.to_row()}, 201


@bp.route('/api/titles/<title_id>', methods=['PUT'])
@admin_required
def update_title(title_id):
    title = ds.update_title(title_id, _payload())
    current_app.logger.info('title_updated id=%s', title_id)
    _cache_clear_all()
    return {'title': title.to_row()}


@bp.route('/api/titles/<title_id>', methods=['DELETE'])
@admin_required
def delete_title(title_id):
    ds.delete_title(title_id)
    current_app.logger.info('title_deleted id=%s', title_id)
    _cache_clear_all()
    return {'status': 'ok'}


@bp.route('/api/stages', methods=['GET'])
def list_stages():
    return {'stages': [s.to_row() for s in ds.list_stages()]}


@bp.route('/api/stages', methods=['POST'])
@admin_required
def create_stage():
    stage = ds.create_stage(_payload())
    current_app.logger.info('stage_created id=%s', stage.id)
    _cache_clear_all()
    return {'stage': stage.to_row()}, 201


@bp.route('/api/stages/<stage_id>', methods=['PUT'])
@admin_required
def update_stage(stage_id):
    stage = ds.update_stage(stage_id, _payload())
    current_app.logger.info('stage_updated id=%s', stage_id)
    _cache_clear_all()
    return {'stage': stage.to_row()}


@bp.route('/api/stages/<stage_id>', methods=['DELETE'])
@admin_required
def delete_stage(stage_id):
    removed = ds.delete_stage(stage_id)
    current_app.logger.info('stage_deleted id=%s scores_removed=%d', stage_id, removed)
    _cache_clear_all()
    return {'status': 'ok', 'scores_removed': removed}
#</crud>


#<scores>
@bp.route('/api/scores', methods=['GET'])
def list_scores():
    """Score rows, optionally narrowed by ``stage`` and/or ``player`` id."""
    scores = ds.list_scores(
        stage_id=request.args.get('stage') or None,
        player_id=request.args.get('player') or None,
    )
    return {'scores': [s.to_row() for s in scores]}


@bp.route('/api/stages/<stage_id>/scores', methods=['GET'])
def get_stage_scores(stage_id):
    """Points for every player on one stage; ``None`` where nothing is recorded."""
    scores = ds.stage_scores(stage_id)
    points = {}
    for player in ds.list_players():
        score = scores.get(player.id)
        points[player.id] = json_number(score.points) if score else None
    return {'stage_id': stage_id, 'points': points}


@bp.route('/api/stages/<stage_id>/scores', methods=['POST'])
@admin_required
def save_stage_scores(stage_id):
    payload = _payload()
    points = payload.get('points')
    if not isinstance(points, dict):
        return {'error': 'Expected a "points" mapping of player id to points'}, 400
    counts = ds.save_stage_scores(stage_id, points)
    current_app.logger.info(
        'stage_scores_saved stage=%s inserted=%d updated=%d deleted=%d',
        stage_id, counts['inserted'], counts['updated'], counts['deleted'],
    )
    _cache_clear_all()
    return {'status': 'ok', **counts}


@bp.route('/api/stages/<stage_id>/ranking', methods=['POST'])
@admin_required
def save_stage_ranking(stage_id):
    payload = _payload()
    ranking = payload.get('ranking')
    if not isinstance(ranking, list):
        return {'error': 'Expected a "ranking" list'}, 400
    counts = ds.save_stage_ranking(stage_id, ranking)
    current_app.logger.info(
        'stage_ranking_saved stage=%s ranked=%d inserted=%d cleared=%d',
        stage_id, counts['ranked'], counts['inserted'], counts['cleared'],
    )
    _cache_clear_all()
    return {'status': 'ok', **counts}


@bp.route('/api/scores/<score_id>', methods=['DELETE'])
@admin_required
def delete_score(score_id):
    ds.delete_score(score_id)
    current_app.logger.info('score_deleted id=%s', score_id)
    _cache_clear_all()
    return {'status': 'ok'}
#</scores>


@bp.route('/api/settings', methods=['GET'])
def get_settings():
    return ds.get_settings()


@bp.route('/api/settings', methods=['POST'])
@admin_required
def save_settings():
    payload = _payload()
    settings = ds.set_settings(payload)
    current_app.logger.info('settings_saved keys=%s', ','.join(k for k in ds.SETTINGS_KEYS if k in payload))
    _cache_clear_all()
    return {'status': 'ok', **settings}
