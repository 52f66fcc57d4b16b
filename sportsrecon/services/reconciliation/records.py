"""
Field accessors for raw player and game records.

Scrapers and sources do not agree on key names (``displayName`` vs
``full_name``, ``opponentName`` vs ``opponent``), so every read goes
through these helpers, which try the known aliases in order.
"""
from typing import Any, Dict, List, Optional, Sequence

from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize_date_key, normalize_whitespace,
)

Record = Dict[str, Any]

PLAYER_NAME_KEYS = ("display_name", "displayName", "full_name", "fullName", "name", "player")
PLAYER_ID_KEYS = ("player_id", "playerId", "id")

PLAYER_FIELD_KEYS: Dict[str, Sequence[str]] = {
    "jersey": ("jersey", "jersey_number", "jerseyNumber", "uniform"),
    "position": ("position", "position_abbr", "positionAbbr"),
    "height": ("height", "height_display", "heightDisplay"),
    "weight": ("weight",),
    "year": ("year", "class_year", "classYear", "academic_year"),
    "eligibility": ("eligibility",),
    "hometown": ("hometown", "home_town", "homeTown"),
}

GAME_DATE_KEYS = ("game_date", "gameDate", "date")
OPPONENT_KEYS = ("opponent_name", "opponentName", "opponent")
OPPONENT_NICKNAME_KEYS = ("opponent_nickname", "opponentNickname")
OPPONENT_ID_KEYS = ("opponent_id", "opponentId")
GAME_NUMBER_KEYS = ("game_number", "gameNumber")
LOCATION_KEYS = ("location_indicator", "locationIndicator")
NEUTRAL_HOME_KEYS = ("neutral_hometeam", "neutralHometeam", "is_home", "isHome")
VENUE_KEYS = ("venue",)
TV_LIST_KEYS = ("tv_array", "tvArray")
TV_KEYS = ("tv",)
TIME_KEYS = ("time24", "time_24", "time")


def first_value(record: Record, keys: Sequence[str]) -> Any:
    """First value under any of the keys that is not None or blank."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def text_value(record: Record, keys: Sequence[str]) -> str:
    return normalize_whitespace(first_value(record, keys))


# ─────────────────────────────────────────────────────────────
# Players
# ─────────────────────────────────────────────────────────────

def player_name(record: Record) -> str:
    name = text_value(record, PLAYER_NAME_KEYS)
    if name:
        return name
    return normalize_whitespace(f"{record.get('first_name') or record.get('firstName') or ''} "
                                f"{record.get('last_name') or record.get('lastName') or ''}")


def player_id(record: Record) -> Optional[str]:
    value = first_value(record, PLAYER_ID_KEYS)
    return str(value) if value is not None else None


def player_field(record: Record, field: str) -> Any:
    return first_value(record, PLAYER_FIELD_KEYS[field])


# ─────────────────────────────────────────────────────────────
# Games
# ─────────────────────────────────────────────────────────────

def game_date_key(record: Record) -> str:
    return normalize_date_key(first_value(record, GAME_DATE_KEYS))


def opponent_name(record: Record) -> str:
    return text_value(record, OPPONENT_KEYS)


def opponent_nickname(record: Record) -> str:
    return text_value(record, OPPONENT_NICKNAME_KEYS)


def opponent_id(record: Record) -> Optional[str]:
    value = first_value(record, OPPONENT_ID_KEYS)
    return str(value) if value is not None else None


def game_number(record: Record) -> Optional[str]:
    value = first_value(record, GAME_NUMBER_KEYS)
    return str(value) if value is not None else None


def location_indicator(record: Record) -> str:
    return text_value(record, LOCATION_KEYS).upper()


def neutral_home_away(record: Record) -> str:
    """'H' when the team is the designated home side of a neutral-site game, else 'A'."""
    return "H" if first_value(record, NEUTRAL_HOME_KEYS) else "A"


def venue(record: Record) -> str:
    return text_value(record, VENUE_KEYS)


def broadcasters(record: Record) -> List[str]:
    """TV networks as a list; a comma-separated ``tv`` string is split and sorted."""
    listed = first_value(record, TV_LIST_KEYS)
    if isinstance(listed, (list, tuple)):
        return [normalize_whitespace(b) for b in listed if normalize_whitespace(b)]
    raw = text_value(record, TV_KEYS)
    return sorted(part.strip() for part in raw.split(",") if part.strip())


def game_time(record: Record) -> str:
    return text_value(record, TIME_KEYS)


def game_label(record: Record) -> str:
    opponent = opponent_name(record) or "TBD"
    return f"{game_date_key(record)} vs {opponent}"
