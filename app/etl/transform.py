"""
Pure transform helpers shared by the seeders and the sync jobs.

No DB, no HTTP, no side effects: everything here maps provider DTO values to
what we store, or validates a value and raises ``ValueError`` with a message
that ends up on the seed item.
"""

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from app.etl.base import FixtureData, OddData


# ═══════════════════════════════════════════════════════════════════════════
# FIXTURE STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════


class StateClass(str, Enum):
    NOT_STARTED = "not_started"
    IN_PLAY = "in_play"
    BREAK = "break"
    FINISHED = "finished"
    CANCELLED = "cancelled"


NOT_STARTED_STATES = frozenset({"NS", "TBA", "DELAYED", "PENDING"})
IN_PLAY_STATES = frozenset({"LIVE", "INPLAY_1ST_HALF", "INPLAY_2ND_HALF", "INPLAY_ET", "INPLAY_PENALTIES"})
BREAK_STATES = frozenset({"HT", "BREAK", "EXTRA_TIME_BREAK", "PEN_BREAK"})
FINISHED_STATES = frozenset({"FT", "AET", "FT_PEN", "AWARDED", "WO"})
CANCELLED_STATES = frozenset(
    {"CAN", "CANCELLED", "POSTPONED", "SUSPENDED", "ABANDONED", "INT", "INTERRUPTED", "DELETED"}
)

LIVE_STATES = IN_PLAY_STATES | BREAK_STATES
KNOWN_STATES = NOT_STARTED_STATES | LIVE_STATES | FINISHED_STATES | CANCELLED_STATES

_STATE_CLASS: dict[str, StateClass] = {}
for _states, _cls in (
    (NOT_STARTED_STATES, StateClass.NOT_STARTED),
    (IN_PLAY_STATES, StateClass.IN_PLAY),
    (BREAK_STATES, StateClass.BREAK),
    (FINISHED_STATES, StateClass.FINISHED),
    (CANCELLED_STATES, StateClass.CANCELLED),
):
    for _state in _states:
        _STATE_CLASS[_state] = _cls

_ALLOWED_NEXT: dict[StateClass, frozenset] = {
    StateClass.NOT_STARTED: frozenset({StateClass.IN_PLAY, StateClass.BREAK, StateClass.CANCELLED}),
    StateClass.IN_PLAY: frozenset(
        {StateClass.IN_PLAY, StateClass.BREAK, StateClass.FINISHED, StateClass.CANCELLED}
    ),
    StateClass.BREAK: frozenset(
        {StateClass.IN_PLAY, StateClass.BREAK, StateClass.FINISHED, StateClass.CANCELLED}
    ),
    StateClass.FINISHED: frozenset(),
    StateClass.CANCELLED: frozenset(),
}


def state_class(state: Optional[str]) -> Optional[StateClass]:
    if not state:
        return None
    return _STATE_CLASS.get(state.upper())


def is_valid_transition(current: Optional[str], next_state: Optional[str]) -> bool:
    """
    Whether a fixture may move from ``current`` to ``next_state``.

    Identical states are always valid. Finished and cancelled are terminal.
    Unknown states only accept the identical state.
    """
    if current == next_state:
        return True

    current_cls = state_class(current)
    next_cls = state_class(next_state)
    if current_cls is None or next_cls is None:
        return False
    return next_cls in _ALLOWED_NEXT[current_cls]


def coerce_fixture_state(state: Any, external_id: Any = None) -> str:
    """Upper-case a provider state; unknown or missing states are rejected."""
    s = str(state or "").strip().upper()
    if s not in KNOWN_STATES:
        raise ValueError(f"Unknown fixture state '{state}' (externalId: {external_id})")
    return s


# ═══════════════════════════════════════════════════════════════════════════
# SCALAR NORMALISATION
# ═══════════════════════════════════════════════════════════════════════════

_SCORE_RE = re.compile(r"^(\d+)[-:](\d+)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def normalize_result(result: Optional[str]) -> Optional[str]:
    """'2:1' -> '2-1'; blank -> None."""
    if not result:
        return None
    trimmed = result.strip()
    if not trimmed:
        return None
    return trimmed.replace(":", "-")


def parse_scores(result: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not result:
        return None, None
    match = _SCORE_RE.match(result.strip())
    if not match:
        return None, None
    return int(match.group(1)), int(match.group(2))


def datetime_from_unix(ts: int) -> datetime:
    """Unix seconds -> naive UTC datetime."""
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def iso_from_unix(ts: int) -> str:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_date(value: Any) -> Optional[date]:
    """Accept 'YYYY-MM-DD' (optionally followed by a time) or a date; raise on garbage."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not _DATE_RE.match(text):
        raise ValueError(f"Invalid date '{value}' (expected YYYY-MM-DD)")
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValueError(f"Invalid date '{value}' (expected YYYY-MM-DD)") from e


def norm_iso(value: Optional[str], length: int) -> Optional[str]:
    """Upper-case ISO code, None when blank, ValueError when the length is wrong."""
    if value is None:
        return None
    code = str(value).strip().upper()
    if not code:
        return None
    if len(code) != length:
        raise ValueError(f"Invalid ISO code '{value}' (expected {length} letters)")
    return code


def norm_short_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    code = str(value).strip().upper()
    return code or None


def validate_founded(value: Any, current_year: Optional[int] = None) -> Optional[int]:
    """Founding year within 1800..current year, otherwise None."""
    year = safe_int(value)
    if year is None:
        return None
    current_year = current_year or datetime.now(timezone.utc).year
    if 1800 <= year <= current_year:
        return year
    return None


def safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_field(value: Any, field_name: str, record_key: Any) -> Any:
    """Return ``value`` or raise a descriptive ValueError when it is blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing required field '{field_name}' (externalId: {record_key})")
    return value.strip() if isinstance(value, str) else value


# ═══════════════════════════════════════════════════════════════════════════
# RECORD TRANSFORMS
# ═══════════════════════════════════════════════════════════════════════════


def transform_fixture(dto: FixtureData) -> dict:
    """
    Map a FixtureData into column values (foreign keys still as external ids).

    Raises ValueError when a required field is missing.
    """
    key = dto.external_id
    name = require_field(dto.name, "name", key)
    start_ts = safe_int(dto.start_ts)
    if start_ts is None:
        raise ValueError(f"Missing required field 'startTs' (externalId: {key})")
    if dto.home_team_external_id is None:
        raise ValueError(f"Missing home team (externalId: {key})")
    if dto.away_team_external_id is None:
        raise ValueError(f"Missing away team (externalId: {key})")

    result = normalize_result(dto.result)
    parsed_home, parsed_away = parse_scores(result)
    home_score = dto.home_score if dto.home_score is not None else parsed_home
    away_score = dto.away_score if dto.away_score is not None else parsed_away

    return {
        "name": name,
        "league_external_id": dto.league_external_id,
        "season_external_id": dto.season_external_id,
        "home_team_external_id": dto.home_team_external_id,
        "away_team_external_id": dto.away_team_external_id,
        "starting_at": datetime_from_unix(start_ts),
        "starting_at_ts": start_ts,
        "state": coerce_fixture_state(dto.state, dto.external_id),
        "live_minute": safe_int(dto.live_minute),
        "result": result,
        "home_score": home_score,
        "away_score": away_score,
        "home_score_90": dto.home_score_90,
        "away_score_90": dto.away_score_90,
        "home_score_et": dto.home_score_et,
        "away_score_et": dto.away_score_et,
        "pen_home": dto.pen_home,
        "pen_away": dto.pen_away,
        "stage": clean_str(dto.stage),
        "round": clean_str(dto.round),
        "leg": clean_str(dto.leg),
        "aggregate_id": dto.aggregate_id,
    }


def transform_odd(dto: OddData) -> dict:
    key = dto.external_id
    if dto.fixture_external_id is None:
        raise ValueError(f"Missing fixture (externalId: {key})")
    if dto.market_external_id is None:
        raise ValueError(f"Missing market (externalId: {key})")
    label = clean_str(dto.label) or clean_str(dto.name)
    if label is None:
        raise ValueError(f"Odd must have either name or label (externalId: {key})")
    try:
        value = float(dto.value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid odds value '{dto.value}' (externalId: {key})") from None

    return {
        "fixture_external_id": dto.fixture_external_id,
        "bookmaker_external_id": dto.bookmaker_external_id,
        "market_external_id": dto.market_external_id,
        "market_name": clean_str(dto.market_name),
        "name": clean_str(dto.name),
        "label": label,
        "value": value,
        "probability": clean_str(dto.probability),
        "total": clean_str(dto.total),
        "handicap": clean_str(dto.handicap),
        "winning": dto.winning,
        "sort_order": safe_int(dto.sort_order),
        "starting_at": datetime_from_unix(dto.starting_at_ts) if dto.starting_at_ts else None,
    }
