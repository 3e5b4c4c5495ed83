"""
Normalization layer for the upstream match API.

List and detail endpoints name the same concept differently (`type` vs
`eventType` vs `payload.eventType`, ...). Each logical field is resolved from
an ordered tuple of dotted accessor paths; the first present, non-empty value
wins. Nothing here raises on shape problems: bad records degrade to defaults
or are skipped.
"""
from __future__ import annotations

import math
import re
import unicodedata
from datetime import date as date_cls, datetime, time as time_cls
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from builder.timeline.merge import dedupe
from shared.config import Settings, get_settings
from shared.models.domain import (
    ClockState,
    NormalizedMatch,
    PenaltyRecord,
    TimelineEvent,
    TopScorer,
)
from shared.models.enums import MatchStatus, QueryKind
from shared.utils.logging import get_logger
from verifier.status import normalize_status_value, parse_score, resolve_status

logger = get_logger(__name__)

FieldPaths = tuple[str, ...]

DEFAULT_EVENT_LABEL = "Händelse"
DEFAULT_OPPONENT = "Motståndare"
UNKNOWN_TEAM = "Okänt lag"

# ── Accessor paths ──────────────────────────────────────────────────────

EVENT_PATHS: dict[str, FieldPaths] = {
    "type": ("type", "eventType", "payload.type", "payload.eventType",
             "payload.eventTypeName", "eventTypeName"),
    "description": ("payload.description", "description", "payload.eventText", "eventText"),
    "time": ("time", "payload.time", "matchTime", "payload.matchTime"),
    "team": ("team", "payload.team", "teamName", "payload.teamName"),
    "player": ("player", "payload.player", "playerName", "payload.playerName"),
    "player_number": ("playerNumber", "payload.playerNumber", "shirtNumber", "payload.shirtNumber"),
    "period": ("period", "payload.period", "half", "payload.half"),
    "home_score": ("homeScore", "payload.homeScore"),
    "away_score": ("awayScore", "payload.awayScore"),
    "score": ("score", "payload.score"),
    "event_id": ("eventId", "eventIndex", "payload.eventId", "id"),
}

MATCH_PATHS: dict[str, FieldPaths] = {
    "id": ("id", "matchId", "apiMatchId"),
    "api_match_id": ("apiMatchId", "matchId", "externalId", "id"),
    "team_type": ("teamType", "team"),
    "opponent": ("opponent", "opponentName"),
    "home": ("home", "homeTeam", "homeName"),
    "away": ("away", "awayTeam", "awayName"),
    "is_home": ("isHome",),
    "date": ("date", "kickoff", "startTime"),
    "time": ("time", "kickoffTime"),
    "display_date": ("displayDate",),
    "venue": ("venue", "arena"),
    "series": ("series", "league", "competition"),
    "info_url": ("infoUrl",),
    "play_url": ("playUrl",),
    "result": ("result", "score"),
    "status": ("matchStatus", "status"),
    "feed": ("matchFeed", "events", "timeline"),
}

PENALTY_PATHS: dict[str, FieldPaths] = {
    "team": EVENT_PATHS["team"],
    "player": EVENT_PATHS["player"],
    "player_number": EVENT_PATHS["player_number"],
    "period": EVENT_PATHS["period"],
    "remaining_seconds": ("remainingSeconds", "payload.remainingSeconds"),
    "active": ("active", "payload.active"),
}

TIMELINE_PATHS: FieldPaths = (
    "events", "timeline", "matchFeed",
    "match.events", "match.timeline", "match.matchFeed",
)
TOP_SCORER_PATHS: FieldPaths = ("match.playerStats.topScorers", "playerStats.topScorers")

_ANNOTATION_RE = re.compile(r"\s*\((hemma|borta)\)\s*$", re.IGNORECASE)
_WEEKDAYS_SV = ("mån", "tis", "ons", "tors", "fre", "lör", "sön")
_MONTHS_SV = ("jan", "feb", "mars", "apr", "maj", "juni",
              "juli", "aug", "sep", "okt", "nov", "dec")


# ── Accessors ───────────────────────────────────────────────────────────

def get_path(raw: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None when any hop is missing."""
    current = raw
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def first_value(raw: Any, paths: FieldPaths) -> Any:
    for path in paths:
        value = get_path(raw, path)
        if _is_present(value):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, dict):
        return _as_text(value.get("name"))
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_seconds(value: Any) -> Optional[int]:
    """Like _as_int, but fractional seconds round to the nearest whole second."""
    if isinstance(value, float) and math.isfinite(value):
        return round(value)
    return _as_int(value)


def _text(raw: Any, paths: FieldPaths) -> Optional[str]:
    for path in paths:
        text = _as_text(get_path(raw, path))
        if text is not None:
            return text
    return None


def _int(raw: Any, paths: FieldPaths) -> Optional[int]:
    for path in paths:
        number = _as_int(get_path(raw, path))
        if number is not None:
            return number
    return None


# ── Keys and status ─────────────────────────────────────────────────────

def normalize_team_key(value: Optional[str]) -> str:
    """Lowercase, strip diacritics, keep only [a-z0-9]. Idempotent."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]", "", stripped)


def strip_home_away(value: str) -> str:
    return _ANNOTATION_RE.sub("", value).strip()


# ── Events ──────────────────────────────────────────────────────────────

def normalize_event(raw: Any) -> TimelineEvent:
    """Map one raw event of any known shape to a TimelineEvent."""
    if not isinstance(raw, dict):
        return TimelineEvent()

    event_type = _text(raw, EVENT_PATHS["type"]) or DEFAULT_EVENT_LABEL
    description = _text(raw, EVENT_PATHS["description"]) or event_type

    home_score = _int(raw, EVENT_PATHS["home_score"])
    away_score = _int(raw, EVENT_PATHS["away_score"])
    if home_score is None and away_score is None:
        score = parse_score(_text(raw, EVENT_PATHS["score"]))
        if score is not None:
            home_score, away_score = score

    return TimelineEvent(
        time=_text(raw, EVENT_PATHS["time"]) or "",
        period=_int(raw, EVENT_PATHS["period"]) or 0,
        type=event_type,
        description=description,
        team=_text(raw, EVENT_PATHS["team"]),
        player=_text(raw, EVENT_PATHS["player"]),
        player_number=_text(raw, EVENT_PATHS["player_number"]),
        home_score=home_score,
        away_score=away_score,
        event_id=_text(raw, EVENT_PATHS["event_id"]),
    )


def normalize_events(raw_events: Any) -> list[TimelineEvent]:
    if not isinstance(raw_events, list):
        return []
    return dedupe(normalize_event(item) for item in raw_events if isinstance(item, dict))


# ── Kickoff ─────────────────────────────────────────────────────────────

def _club_tz(settings: Settings) -> ZoneInfo:
    try:
        return ZoneInfo(settings.club_timezone)
    except ZoneInfoNotFoundError:
        logger.warning("unknown_club_timezone", timezone=settings.club_timezone)
        return ZoneInfo("UTC")


def parse_kickoff(
    raw_date: Any,
    raw_time: Any,
    settings: Settings | None = None,
) -> Optional[datetime]:
    """ISO datetime, or a date plus HH:MM (default 00:00) in the club timezone."""
    settings = settings or get_settings()
    if not isinstance(raw_date, str) or not raw_date.strip():
        return None
    tz = _club_tz(settings)
    text = raw_date.strip().replace("Z", "+00:00")

    if "T" in text or " " in text:
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)

    try:
        day = date_cls.fromisoformat(text)
    except ValueError:
        return None
    clock = time_cls(0, 0)
    if isinstance(raw_time, str) and raw_time.strip():
        try:
            clock = time_cls.fromisoformat(raw_time.strip())
        except ValueError:
            return None
    return datetime.combine(day, clock, tzinfo=tz)


def format_display_date(kickoff: datetime, settings: Settings | None = None) -> str:
    """Swedish short form, e.g. "lör 18 okt"."""
    settings = settings or get_settings()
    local = kickoff.astimezone(_club_tz(settings))
    return f"{_WEEKDAYS_SV[local.weekday()]} {local.day} {_MONTHS_SV[local.month - 1]}"


# ── Matches ─────────────────────────────────────────────────────────────

def _resolve_sides(
    raw: dict[str, Any],
    settings: Settings,
) -> tuple[str, bool, str, str]:
    """Return (opponent, is_home, home_team, away_team)."""
    club_key = normalize_team_key(settings.club_name)
    home = _text(raw, MATCH_PATHS["home"])
    away = _text(raw, MATCH_PATHS["away"])
    raw_opponent = _text(raw, MATCH_PATHS["opponent"]) or ""

    explicit = first_value(raw, MATCH_PATHS["is_home"])
    if isinstance(explicit, bool):
        is_home = explicit
    elif _ANNOTATION_RE.search(raw_opponent):
        is_home = "hemma" in raw_opponent.lower()
    elif home:
        is_home = club_key in normalize_team_key(home)
    else:
        is_home = True

    opponent = strip_home_away(raw_opponent)
    if not opponent and home and away:
        opponent = away if is_home else home
    opponent = opponent or DEFAULT_OPPONENT

    home_team = home or (settings.club_name if is_home else opponent)
    away_team = away or (opponent if is_home else settings.club_name)
    return opponent, is_home, home_team, away_team


def normalize_match(
    raw: Any,
    *,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> Optional[NormalizedMatch]:
    """Normalize one raw match record; None when it has no usable kickoff."""
    settings = settings or get_settings()
    if not isinstance(raw, dict):
        return None

    raw_date = first_value(raw, MATCH_PATHS["date"])
    raw_time = _text(raw, MATCH_PATHS["time"])
    kickoff = parse_kickoff(raw_date, raw_time, settings)
    if kickoff is None:
        logger.debug("match_skipped_no_kickoff", raw_date=raw_date)
        return None

    team_type = _text(raw, MATCH_PATHS["team_type"]) or settings.club_name
    normalized_team = normalize_team_key(team_type)
    opponent, is_home, home_team, away_team = _resolve_sides(raw, settings)
    series = _text(raw, MATCH_PATHS["series"])

    match_id = _text(raw, MATCH_PATHS["id"])
    if match_id is None:
        match_id = "|".join(
            (normalized_team, str(raw_date), raw_time or "", opponent, series or "")
        )

    match = NormalizedMatch(
        id=match_id,
        api_match_id=_text(raw, MATCH_PATHS["api_match_id"]),
        team_type=team_type,
        normalized_team=normalized_team,
        opponent=opponent,
        is_home=is_home,
        home_team=home_team,
        away_team=away_team,
        date=kickoff,
        display_date=_text(raw, MATCH_PATHS["display_date"])
        or format_display_date(kickoff, settings),
        time=raw_time,
        venue=_text(raw, MATCH_PATHS["venue"]),
        series=series,
        info_url=_text(raw, MATCH_PATHS["info_url"]),
        play_url=_text(raw, MATCH_PATHS["play_url"]),
        result=_text(raw, MATCH_PATHS["result"]),
        upstream_status=normalize_status_value(first_value(raw, MATCH_PATHS["status"])),
        match_feed=normalize_events(first_value(raw, MATCH_PATHS["feed"])),
    )
    match.match_status = resolve_status(match, now or datetime.now(kickoff.tzinfo), settings)
    return match


def normalize_matches(
    records: Iterable[Any],
    *,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> list[NormalizedMatch]:
    """Normalize a batch, dropping unusable records, sorted by kickoff."""
    matches = [
        match
        for match in (normalize_match(raw, now=now, settings=settings) for raw in records)
        if match is not None
    ]
    return sorted(matches, key=lambda m: m.date)


# ── Payload resolution ──────────────────────────────────────────────────

def _records_with_status(records: list[Any], wanted: set[MatchStatus], negate: bool) -> list[Any]:
    kept = []
    for record in records:
        status = normalize_status_value(first_value(record, MATCH_PATHS["status"]))
        if (status in wanted) != negate:
            kept.append(record)
    return kept


def extract_match_records(payload: Any, data_type: QueryKind | str) -> list[Any]:
    """
    Pick the raw match list for one query out of any known payload shape.

    The live query gets every current record; which of them are live is
    decided after status resolution, since a record without an upstream
    status can still be live by kickoff time.
    """
    kind = QueryKind(data_type)
    finished = {MatchStatus.FINISHED}

    if kind == QueryKind.OLD:
        if isinstance(payload, dict):
            if isinstance(payload.get("old"), list):
                return payload["old"]
            if isinstance(payload.get("matches"), list):
                return _records_with_status(payload["matches"], finished, negate=False)
        if isinstance(payload, list):
            return payload
        return []

    records: list[Any] = []
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        if isinstance(payload.get("current"), list):
            records = payload["current"]
        elif isinstance(payload.get("liveUpcoming"), list):
            records = payload["liveUpcoming"]
        elif isinstance(payload.get("matches"), list):
            records = _records_with_status(payload["matches"], finished, negate=True)
    return records


# ── Detail payloads ─────────────────────────────────────────────────────

def extract_timeline(payload: Any) -> list[TimelineEvent]:
    for path in TIMELINE_PATHS:
        value = get_path(payload, path)
        if isinstance(value, list):
            return normalize_events(value)
    return []


def _round_seconds(raw: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in raw:
        return raw
    seconds = _as_seconds(raw[key])
    return raw if seconds is None else {**raw, key: seconds}


def normalize_clock_state(payload: Any) -> Optional[ClockState]:
    """Clock snapshot with fractional seconds rounded; None when unusable."""
    raw = first_value(payload, ("clockState", "match.clockState"))
    if not isinstance(raw, dict):
        return None
    raw = _round_seconds(raw, "currentSeconds")
    if isinstance(raw.get("timeout"), dict):
        raw = {**raw, "timeout": _round_seconds(raw["timeout"], "timeoutSecondsLeft")}
    try:
        return ClockState.model_validate(raw)
    except ValidationError as exc:
        logger.debug("clock_state_invalid", errors=exc.error_count())
        return None


def normalize_penalty(raw: dict[str, Any]) -> Optional[PenaltyRecord]:
    """One penalty; None without a usable remaining time."""
    remaining: Optional[int] = None
    for path in PENALTY_PATHS["remaining_seconds"]:
        remaining = _as_seconds(get_path(raw, path))
        if remaining is not None:
            break
    if remaining is None:
        return None
    active = first_value(raw, PENALTY_PATHS["active"])
    return PenaltyRecord(
        team=_text(raw, PENALTY_PATHS["team"]),
        player=_text(raw, PENALTY_PATHS["player"]),
        player_number=_text(raw, PENALTY_PATHS["player_number"]),
        period=_int(raw, PENALTY_PATHS["period"]) or 0,
        remaining_seconds=max(0, remaining),
        active=active if isinstance(active, bool) else True,
    )


def normalize_penalties(payload: Any) -> list[PenaltyRecord]:
    raw = first_value(payload, ("penalties", "match.penalties"))
    if not isinstance(raw, list):
        return []
    penalties: list[PenaltyRecord] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        penalty = normalize_penalty(item)
        if penalty is None:
            logger.debug("penalty_record_invalid")
            continue
        penalties.append(penalty)
    return penalties


def extract_top_scorers(payload: Any) -> list[TopScorer]:
    """Scorers from `playerStats.topScorers`; entries need a name and numeric goals."""
    raw = first_value(payload, TOP_SCORER_PATHS)
    if not isinstance(raw, list):
        return []
    scorers: list[TopScorer] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        player = _text(item, ("name", "player", "playerName"))
        goals = _int(item, ("goals",))
        if player is None or goals is None:
            continue
        scorers.append(
            TopScorer(
                team=_text(item, ("teamName", "team")) or UNKNOWN_TEAM,
                player=player,
                player_number=_text(item, ("playerNumber", "number", "shirtNumber")),
                goals=goals,
            )
        )
    return scorers
