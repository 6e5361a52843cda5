"""Plain records for the tournament collections.

Rows come back from the datastore as dictionaries; ``from_row`` turns them
into these records and ``to_row`` goes the other way. Optional references
(category, title, rank) are ``None`` when absent, never an empty string.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

Number = Union[int, Decimal]


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def to_number(value: Any) -> Number:
    """Return ``value`` as an int when integral, otherwise as a ``Decimal``.

    Accepts ints, floats, ``Decimal`` (NUMERIC columns) and numeric strings.
    Floats go through their shortest repr so 0.1 stays 0.1. Raises
    ``ValueError`` for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid points value: {value!r}")
    raw = value
    if isinstance(value, float):
        value = repr(value)
    elif isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        num = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid points value: {raw!r}") from None
    if not num.is_finite():
        raise ValueError(f"Invalid points value: {raw!r}")
    if num == num.to_integral_value():
        return int(num)
    return num


def json_number(value: Optional[Number]):
    """Plain JSON number for ``value``: ints stay ints, decimals become floats."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


@dataclass(frozen=True)
class Category:
    id: str
    name: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Category":
        return cls(id=str(row["id"]), name=row.get("name") or "")

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Title:
    id: str
    name: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Title":
        return cls(id=str(row["id"]), name=row.get("name") or "")

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Stage:
    id: str
    name: str
    url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Stage":
        return cls(id=str(row["id"]), name=row.get("name") or "", url=_blank_to_none(row.get("url")))

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    category_id: Optional[str] = None
    title_id: Optional[str] = None
    rating: Optional[int] = None
    photo_url: Optional[str] = None
    birth_date: Optional[str] = None
    cbx_id: Optional[str] = None
    fide_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Player":
        birth = row.get("birth_date")
        if birth is not None and hasattr(birth, "isoformat"):
            birth = birth.isoformat()
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            category_id=_blank_to_none(row.get("category_id")),
            title_id=_blank_to_none(row.get("title_id")),
            rating=_opt_int(row.get("rating")),
            photo_url=_blank_to_none(row.get("photo_url")),
            birth_date=_blank_to_none(birth),
            cbx_id=_blank_to_none(row.get("cbx_id")),
            fide_id=_blank_to_none(row.get("fide_id")),
            email=_blank_to_none(row.get("email")),
        )

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Score:
    id: str
    player_id: str
    stage_id: str
    points: Number
    rank: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Score":
        return cls(
            id=str(row["id"]),
            player_id=str(row["player_id"]),
            stage_id=str(row["stage_id"]),
            points=to_number(row.get("points") or 0),
            rank=_opt_int(row.get("rank")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {**asdict(self), "points": json_number(self.points)}


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time copy of every collection the standings need."""

    players: List[Player] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
    titles: List[Title] = field(default_factory=list)
    stages: List[Stage] = field(default_factory=list)
    scores: List[Score] = field(default_factory=list)


__all__ = [
    "Category",
    "Number",
    "Player",
    "Score",
    "Snapshot",
    "Stage",
    "Title",
    "json_number",
    "to_number",
]
