"""Standings computation with the drop-worst-stage rule."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Category, Number, Player, Score, Snapshot, Stage, Title, json_number, to_number

ALL_STAGES = "all"

# Label shown for a player whose category cannot be resolved.
NO_CATEGORY_LABEL = "N/A"


@dataclass
class StandingRow:
    player: Player
    position: int
    total: Number
    stage_points: Dict[str, Number] = field(default_factory=dict)
    dropped: Optional[Number] = None
    dropped_stage_id: Optional[str] = None
    is_category_leader: bool = False
    category_name: str = NO_CATEGORY_LABEL
    title_name: str = ""

    @property
    def display_name(self) -> str:
        if self.title_name:
            return f"{self.title_name} {self.player.name}"
        return self.player.name

    def to_dict(self) -> Dict:
        return {
            "position": self.position,
            "player_id": self.player.id,
            "name": self.player.name,
            "display_name": self.display_name,
            "category_id": self.player.category_id,
            "category_name": self.category_name,
            "title_name": self.title_name,
            "rating": self.player.rating,
            "photo_url": self.player.photo_url,
            "total": json_number(self.total),
            "stage_points": {k: json_number(v) for k, v in self.stage_points.items()},
            "dropped": json_number(self.dropped),
            "dropped_stage_id": self.dropped_stage_id,
            "is_category_leader": self.is_category_leader,
        }


def drop_worst_total(points: Sequence[Number]) -> tuple[Number, Optional[Number]]:
    """Return ``(total, dropped)`` for a player's recorded stage points.

    With two or more values exactly one instance of the minimum is removed
    from the sum. With one value or none nothing is dropped.
    """
    total = sum(points)
    if len(points) > 1:
        lowest = min(points)
        return total - lowest, lowest
    return total, None


def _dropped_stage(stage_points: Dict[str, Number], stages: Sequence[Stage], dropped: Number) -> Optional[str]:
    # First matching stage in column order; ties beyond the first stay visible.
    for stage in stages:
        if stage.id in stage_points and stage_points[stage.id] == dropped:
            return stage.id
    return None


def _ranked_stage(stages: Sequence[Stage], scope: str) -> Optional[str]:
    """Return the stage whose explicit ranks drive ordering, if any."""
    if scope != ALL_STAGES:
        return scope
    if len(stages) == 1:
        return stages[0].id
    return None


def compute_standings(
    players: Iterable[Player],
    scores: Iterable[Score],
    stages: Sequence[Stage],
    categories: Iterable[Category] = (),
    titles: Iterable[Title] = (),
    scope: str = ALL_STAGES,
    query: Optional[str] = None,
) -> List[StandingRow]:
    """Rank players for the given view scope.

    Args:
        players: Registered players.
        scores: Recorded scores. Scores pointing at an unknown player or
            stage are ignored.
        stages: Stages in display order.
        categories: Category lookup for display names.
        titles: Title lookup for display names.
        scope: ``"all"`` for the aggregate drop-worst view, or a stage id for
            that stage's raw points.
        query: Optional case-insensitive name filter. Filtering happens after
            positions and category leaders are assigned.

    Returns:
        Rows sorted by position.
    """
    stages = list(stages)
    stage_ids = {s.id for s in stages}
    category_names = {c.id: c.name for c in categories}
    title_names = {t.id: t.name for t in titles}
    player_list = list(players)
    player_ids = {p.id for p in player_list}

    points_by_player: Dict[str, Dict[str, Number]] = {}
    ranks_by_player: Dict[str, Dict[str, Optional[int]]] = {}
    for score in scores:
        if score.player_id not in player_ids or score.stage_id not in stage_ids:
            continue
        points_by_player.setdefault(score.player_id, {})[score.stage_id] = to_number(score.points)
        ranks_by_player.setdefault(score.player_id, {})[score.stage_id] = score.rank

    rows: List[StandingRow] = []
    for player in player_list:
        stage_points = points_by_player.get(player.id, {})
        dropped: Optional[Number] = None
        dropped_stage_id: Optional[str] = None
        if scope == ALL_STAGES:
            total, dropped = drop_worst_total(list(stage_points.values()))
            if dropped is not None:
                dropped_stage_id = _dropped_stage(stage_points, stages, dropped)
        else:
            total = stage_points.get(scope, 0)
        rows.append(
            StandingRow(
                player=player,
                position=0,
                total=total,
                stage_points=dict(stage_points),
                dropped=dropped,
                dropped_stage_id=dropped_stage_id,
                category_name=category_names.get(player.category_id, NO_CATEGORY_LABEL)
                if player.category_id
                else NO_CATEGORY_LABEL,
                title_name=title_names.get(player.title_id, "") if player.title_id else "",
            )
        )

    ranked_stage = _ranked_stage(stages, scope)
    if ranked_stage is not None:
        def _rank_key(row: StandingRow):
            rank = ranks_by_player.get(row.player.id, {}).get(ranked_stage)
            return (rank is None, rank if rank is not None else 0, -row.total)

        rows.sort(key=_rank_key)
    else:
        rows.sort(key=lambda r: -r.total)

    leaders: set[str] = set()
    for position, row in enumerate(rows, start=1):
        row.position = position
        cat_id = row.player.category_id
        if cat_id and cat_id not in leaders:
            leaders.add(cat_id)
            row.is_category_leader = True

    return filter_by_name(rows, query)


def standings_for(snapshot: Snapshot, scope: str = ALL_STAGES, query: Optional[str] = None) -> List[StandingRow]:
    """Run :func:`compute_standings` over a :class:`Snapshot`."""
    return compute_standings(
        snapshot.players,
        snapshot.scores,
        snapshot.stages,
        snapshot.categories,
        snapshot.titles,
        scope=scope,
        query=query,
    )


def filter_by_name(rows: Iterable[StandingRow], query: Optional[str]) -> List[StandingRow]:
    """Keep rows whose player name contains ``query``, ignoring case.

    Positions and leader flags are left as assigned over the full field.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return list(rows)
    return [r for r in rows if needle in r.player.name.lower()]


def top(rows: Sequence[StandingRow], n: int) -> List[StandingRow]:
    """Return the first ``n`` rows."""
    if n <= 0:
        return []
    return list(rows[:n])


def category_leaders(rows: Iterable[StandingRow]) -> List[StandingRow]:
    """Return only the rows flagged as leader of their category."""
    return [r for r in rows if r.is_category_leader]


__all__ = [
    "ALL_STAGES",
    "NO_CATEGORY_LABEL",
    "StandingRow",
    "category_leaders",
    "compute_standings",
    "drop_worst_total",
    "filter_by_name",
    "standings_for",
    "top",
]
