"""Tournament collections on top of the generic row store.

Everything here goes through the row-level helpers in ``datastore_pg``
(``list_rows``/``insert_row``/``update_row``/``delete_rows``), so the rules
that the schema itself does not enforce live in one place: deletion cascades,
deletions blocked by references, and one score per (player, stage).
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from . import datastore_pg as _pg
from .models import Category, Player, Score, Snapshot, Stage, Title, to_number


class NotFound(LookupError):
    """Raised when a row id does not exist in its collection."""


def _new_id() -> str:
    return str(uuid.uuid4())


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_name(payload: Dict[str, Any], what: str) -> str:
    name = _clean(payload.get("name"))
    if not name:
        raise ValueError(f"{what} name is required")
    return name


def _find(table: str, row_id: str) -> Dict[str, Any]:
    for row in _pg.list_rows(table):
        if str(row.get("id")) == str(row_id):
            return row
    raise NotFound(f"{table} {row_id} not found")


# Reads

def list_players() -> List[Player]:
    return [Player.from_row(r) for r in _pg.list_rows("players")]


def list_categories() -> List[Category]:
    return [Category.from_row(r) for r in _pg.list_rows("categories")]


def list_titles() -> List[Title]:
    return [Title.from_row(r) for r in _pg.list_rows("titles")]


def list_stages() -> List[Stage]:
    return [Stage.from_row(r) for r in _pg.list_rows("stages")]


def list_scores(stage_id: Optional[str] = None, player_id: Optional[str] = None) -> List[Score]:
    """Return scores, optionally narrowed to one stage and/or one player."""
    scores = [Score.from_row(r) for r in _pg.list_rows("scores")]
    if stage_id:
        scores = [s for s in scores if s.stage_id == str(stage_id)]
    if player_id:
        scores = [s for s in scores if s.player_id == str(player_id)]
    return scores


def load_snapshot() -> Snapshot:
    """Read all five collections for one standings computation."""
    return Snapshot(
        players=list_players(),
        categories=list_categories(),
        titles=list_titles(),
        stages=list_stages(),
        scores=list_scores(),
    )


def get_stage(stage_id: str) -> Stage:
    return Stage.from_row(_find("stages", stage_id))


# Players

def _player_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    rating = _clean(payload.get("rating"))
    if rating is not None:
        try:
            rating = int(rating)
        except ValueError:
            raise ValueError(f"Invalid rating: {rating}") from None
    return {
        "name": _require_name(payload, "Player"),
        "category_id": _clean(payload.get("category_id")),
        "title_id": _clean(payload.get("title_id")),
        "rating": rating,
        "photo_url": _clean(payload.get("photo_url")),
        "birth_date": _clean(payload.get("birth_date")),
        "cbx_id": _clean(payload.get("cbx_id")),
        "fide_id": _clean(payload.get("fide_id")),
        "email": _clean(payload.get("email")),
    }


def create_player(payload: Dict[str, Any]) -> Player:
    row = {"id": _new_id(), **_player_fields(payload)}
    _pg.insert_row("players", row)
    return Player.from_row(row)


def update_player(player_id: str, payload: Dict[str, Any]) -> Player:
    existing = _find("players", player_id)
    fields = _player_fields({**existing, **payload})
    _pg.update_row("players", player_id, fields)
    return Player.from_row({**existing, **fields})


def delete_player(player_id: str) -> int:
    """Delete a player and every score recorded for them.

    Returns the number of scores removed alongside the player.
    """
    _find("players", player_id)
    removed = _pg.delete_rows("scores", "player_id", player_id)
    _pg.delete_rows("players", "id", player_id)
    return removed


# Categories and titles

def create_category(payload: Dict[str, Any]) -> Category:
    row = {"id": _new_id(), "name": _require_name(payload, "Category")}
    _pg.insert_row("categories", row)
    return Category.from_row(row)


def update_category(category_id: str, payload: Dict[str, Any]) -> Category:
    _find("categories", category_id)
    name = _require_name(payload, "Category")
    _pg.update_row("categories", category_id, {"name": name})
    return Category(id=str(category_id), name=name)


def delete_category(category_id: str) -> None:
    _find("categories", category_id)
    if any(p.category_id == str(category_id) for p in list_players()):
        raise ValueError("Cannot delete a category that is assigned to one or more players")
    _pg.delete_rows("categories", "id", category_id)


def create_title(payload: Dict[str, Any]) -> Title:
    row = {"id": _new_id(), "name": _require_name(payload, "Title")}
    _pg.insert_row("titles", row)
    return Title.from_row(row)


def update_title(title_id: str, payload: Dict[str, Any]) -> Title:
    _find("titles", title_id)
    name = _require_name(payload, "Title")
    _pg.update_row("titles", title_id, {"name": name})
    return Title(id=str(title_id), name=name)


def delete_title(title_id: str) -> None:
    _find("titles", title_id)
    if any(p.title_id == str(title_id) for p in list_players()):
        raise ValueError("Cannot delete a title that is assigned to one or more players")
    _pg.delete_rows("titles", "id", title_id)


# Stages

def create_stage(payload: Dict[str, Any]) -> Stage:
    row = {"id": _new_id(), "name": _require_name(payload, "Stage"), "url": _clean(payload.get("url"))}
    _pg.insert_row("stages", row)
    return Stage.from_row(row)


def update_stage(stage_id: str, payload: Dict[str, Any]) -> Stage:
    existing = _find("stages", stage_id)
    fields = {
        "name": _require_name({**existing, **payload}, "Stage"),
        "url": _clean(payload["url"]) if "url" in payload else _clean(existing.get("url")),
    }
    _pg.update_row("stages", stage_id, fields)
    return Stage.from_row({**existing, **fields})


def delete_stage(stage_id: str) -> int:
    """Delete a stage and its scores; returns the number of scores removed."""
    _find("stages", stage_id)
    removed = _pg.delete_rows("scores", "stage_id", stage_id)
    _pg.delete_rows("stages", "id", stage_id)
    return removed


# Scores

def stage_scores(stage_id: str) -> Dict[str, Score]:
    """Return player_id -> score for one stage."""
    get_stage(stage_id)
    return {s.player_id: s for s in list_scores(stage_id=stage_id)}


def _parse_points(raw: Any):
    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None
    try:
        return to_number(raw)
    except (TypeError, ValueError):
        return None


def save_stage_scores(stage_id: str, points_by_player: Dict[str, Any]) -> Dict[str, int]:
    """Upsert one stage's points from a player_id -> points mapping.

    Blank or non-numeric points remove the player's existing score for the
    stage. Numeric points update the existing score when the value changed,
    or insert a new score. Unknown player ids are skipped.

    Returns counts of ``inserted``, ``updated`` and ``deleted`` rows.
    """
    existing = stage_scores(stage_id)
    known_players = {p.id for p in list_players()}
    counts = {"inserted": 0, "updated": 0, "deleted": 0}
    for player_id, raw in (points_by_player or {}).items():
        player_id = str(player_id)
        if player_id not in known_players:
            continue
        points = _parse_points(raw)
        current = existing.get(player_id)
        if current is not None:
            if points is None:
                _pg.delete_rows("scores", "id", current.id)
                counts["deleted"] += 1
            elif current.points != points:
                _pg.update_row("scores", current.id, {"points": points})
                counts["updated"] += 1
        elif points is not None:
            _pg.insert_row(
                "scores",
                {"id": _new_id(), "player_id": player_id, "stage_id": str(stage_id), "points": points, "rank": None},
            )
            counts["inserted"] += 1
    return counts


def save_stage_ranking(stage_id: str, ranking: List[Dict[str, Any]]) -> Dict[str, int]:
    """Store explicit placements for one stage.

    ``ranking`` is a list of ``{"player_id", "position"}``. Players without a
    score for the stage get a zero-point score carrying the rank. Players of
    the stage that are absent from ``ranking`` have their rank cleared.
    """
    existing = stage_scores(stage_id)
    known_players = {p.id for p in list_players()}
    positions: Dict[str, int] = {}
    for item in ranking or []:
        player_id = str(item.get("player_id") or "")
        try:
            position = int(item.get("position"))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid position for player {player_id}") from None
        if position < 1:
            raise ValueError(f"Invalid position for player {player_id}")
        if player_id in known_players:
            positions[player_id] = position

    counts = {"ranked": 0, "inserted": 0, "cleared": 0}
    for player_id, position in positions.items():
        current = existing.get(player_id)
        if current is None:
            _pg.insert_row(
                "scores",
                {"id": _new_id(), "player_id": player_id, "stage_id": str(stage_id), "points": 0, "rank": position},
            )
            counts["inserted"] += 1
        elif current.rank != position:
            _pg.update_row("scores", current.id, {"rank": position})
        counts["ranked"] += 1
    for player_id, current in existing.items():
        if player_id not in positions and current.rank is not None:
            _pg.update_row("scores", current.id, {"rank": None})
            counts["cleared"] += 1
    return counts


def delete_score(score_id: str) -> None:
    _find("scores", score_id)
    _pg.delete_rows("scores", "id", score_id)


# Settings

SETTINGS_KEYS: Tuple[str, ...] = ("system_name", "system_logo")
DEFAULT_SETTINGS: Dict[str, Any] = {"system_name": "Torneio de Xadrez", "system_logo": None}


def get_settings() -> Dict[str, Any]:
    stored = _pg.get_settings() or {}
    return {**DEFAULT_SETTINGS, **{k: v for k, v in stored.items() if k in SETTINGS_KEYS}}


def set_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
    updates = {k: payload[k] for k in SETTINGS_KEYS if k in payload}
    if "system_name" in updates and not _clean(updates["system_name"]):
        raise ValueError("System name is required")
    if updates:
        _pg.set_settings(updates)
    return get_settings()
