"""
Match status resolution.

Status is derived from an ordered rule table: the upstream hint is trusted
first, then time-based heuristics. Data-quality checks (stale 0-0 results,
stalled feeds) sit beside the table and never change a status.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import DataQualityReport, NormalizedMatch, TimelineEvent
from shared.models.enums import MatchStatus

_STATUS_SYNONYMS: dict[str, MatchStatus] = {
    "live": MatchStatus.LIVE,
    "ongoing": MatchStatus.LIVE,
    "in_progress": MatchStatus.LIVE,
    "inprogress": MatchStatus.LIVE,
    "in progress": MatchStatus.LIVE,
    "playing": MatchStatus.LIVE,
    "started": MatchStatus.LIVE,
    "pågår": MatchStatus.LIVE,
    "halftime": MatchStatus.HALFTIME,
    "half_time": MatchStatus.HALFTIME,
    "half-time": MatchStatus.HALFTIME,
    "paused": MatchStatus.HALFTIME,
    "paus": MatchStatus.HALFTIME,
    "halvtid": MatchStatus.HALFTIME,
    "finished": MatchStatus.FINISHED,
    "ended": MatchStatus.FINISHED,
    "final": MatchStatus.FINISHED,
    "full_time": MatchStatus.FINISHED,
    "fulltime": MatchStatus.FINISHED,
    "completed": MatchStatus.FINISHED,
    "avslutad": MatchStatus.FINISHED,
    "slut": MatchStatus.FINISHED,
    "upcoming": MatchStatus.UPCOMING,
    "scheduled": MatchStatus.UPCOMING,
    "not_started": MatchStatus.UPCOMING,
    "notstarted": MatchStatus.UPCOMING,
    "pending": MatchStatus.UPCOMING,
    "kommande": MatchStatus.UPCOMING,
}

_SCORE_RE = re.compile(r"^\s*(\d+)\s*[-–—:]\s*(\d+)")
_PLACEHOLDER_MARKERS = ("inte publicerat", "ej publicerat", "not published", "tbd")


def normalize_status_value(raw: Any) -> Optional[MatchStatus]:
    """Map an upstream status spelling to a canonical status, or None."""
    if isinstance(raw, MatchStatus):
        return raw
    if not isinstance(raw, str):
        return None
    return _STATUS_SYNONYMS.get(raw.strip().lower())


# ── Result parsing ──────────────────────────────────────────────────────

def parse_score(result: Optional[str]) -> Optional[tuple[int, int]]:
    """Parse "24-21" / "24–21" / "24—21" / "24:21" into (home, away)."""
    if not result:
        return None
    match = _SCORE_RE.match(result)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_placeholder_result(result: Optional[str]) -> bool:
    if result is None or not result.strip():
        return True
    lowered = result.strip().lower()
    if any(marker in lowered for marker in _PLACEHOLDER_MARKERS):
        return True
    return parse_score(result) is None


def has_published_result(result: Optional[str]) -> bool:
    """True for a parseable score where at least one side has scored."""
    score = parse_score(result)
    return score is not None and (score[0] > 0 or score[1] > 0)


def is_zero_zero(result: Optional[str]) -> bool:
    return parse_score(result) == (0, 0)


def minutes_since_kickoff(match: NormalizedMatch, now: datetime) -> int:
    return int((now - match.date).total_seconds() // 60)


# ── Rule table ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StatusRule:
    """A named condition; `decide` returns a status or None to fall through."""
    name: str
    decide: Callable[[NormalizedMatch, datetime, Settings], Optional[MatchStatus]]


def _upstream(match: NormalizedMatch, now: datetime, settings: Settings) -> Optional[MatchStatus]:
    return match.upstream_status


def _before_kickoff(match: NormalizedMatch, now: datetime, settings: Settings) -> Optional[MatchStatus]:
    return MatchStatus.UPCOMING if now < match.date else None


def _within_live_window(match: NormalizedMatch, now: datetime, settings: Settings) -> Optional[MatchStatus]:
    live_until = match.date + timedelta(minutes=settings.live_window_minutes)
    return MatchStatus.LIVE if match.date <= now <= live_until else None


def _has_result(match: NormalizedMatch, now: datetime, settings: Settings) -> Optional[MatchStatus]:
    return None if is_placeholder_result(match.result) else MatchStatus.FINISHED


def _fallback(match: NormalizedMatch, now: datetime, settings: Settings) -> Optional[MatchStatus]:
    return MatchStatus.UPCOMING


STATUS_RULES: tuple[StatusRule, ...] = (
    StatusRule("upstream_status", _upstream),
    StatusRule("before_kickoff", _before_kickoff),
    StatusRule("within_live_window", _within_live_window),
    StatusRule("has_result", _has_result),
    StatusRule("fallback", _fallback),
)


def explain_status(
    match: NormalizedMatch,
    now: datetime,
    settings: Settings | None = None,
) -> tuple[MatchStatus, str]:
    """Return the resolved status and the name of the rule that produced it."""
    settings = settings or get_settings()
    for rule in STATUS_RULES:
        status = rule.decide(match, now, settings)
        if status is not None:
            return status, rule.name
    return MatchStatus.UPCOMING, "fallback"


def resolve_status(
    match: NormalizedMatch,
    now: datetime,
    settings: Settings | None = None,
) -> MatchStatus:
    return explain_status(match, now, settings)[0]


def bucket_status(status: MatchStatus) -> MatchStatus:
    """Collapse to three filter buckets: halftime counts as live."""
    return MatchStatus.LIVE if status == MatchStatus.HALFTIME else status


# ── Data-quality checks (advisory) ──────────────────────────────────────

def is_stale_zero_score(
    match: NormalizedMatch,
    now: datetime,
    settings: Settings | None = None,
) -> bool:
    """A 0-0 result long after kickoff on a match that is no longer live."""
    settings = settings or get_settings()
    if not is_zero_zero(match.result):
        return False
    if match.match_status.is_live:
        return False
    return minutes_since_kickoff(match, now) > settings.finished_duration_minutes


def _has_progress(events: Iterable[TimelineEvent]) -> bool:
    return any(
        event.period > 0 or event.home_score is not None or event.away_score is not None
        for event in events
    )


def is_technical_issue(
    match: NormalizedMatch,
    now: datetime,
    timeline: Optional[list[TimelineEvent]] = None,
    settings: Settings | None = None,
) -> bool:
    """The match should be under way but the feed shows no progress at all."""
    settings = settings or get_settings()
    status = match.match_status
    should_be_running = status.is_live or (status == MatchStatus.UPCOMING and now > match.date)
    if not should_be_running:
        return False
    if minutes_since_kickoff(match, now) <= settings.technical_issue_grace_minutes:
        return False
    events = timeline if timeline is not None else match.match_feed
    return not _has_progress(events)


def assess_data_quality(
    match: NormalizedMatch,
    now: datetime,
    timeline: Optional[list[TimelineEvent]] = None,
    settings: Settings | None = None,
) -> DataQualityReport:
    settings = settings or get_settings()
    return DataQualityReport(
        stale_zero_score=is_stale_zero_score(match, now, settings),
        technical_issue=is_technical_issue(match, now, timeline, settings),
        minutes_since_kickoff=minutes_since_kickoff(match, now) if now >= match.date else None,
    )


def is_within_current_window(
    match: NormalizedMatch,
    now: datetime,
    settings: Settings | None = None,
) -> bool:
    """Whether a match still belongs in "current" (live + upcoming) views."""
    settings = settings or get_settings()
    status = match.match_status
    if status == MatchStatus.FINISHED:
        retained_until = match.date + timedelta(
            minutes=settings.match_duration_minutes,
            hours=settings.finished_retention_hours,
        )
        return now <= retained_until
    if status.is_live:
        if match.upstream_status is not None and match.upstream_status.is_live:
            return True
        return now <= match.date + timedelta(minutes=settings.live_window_minutes)
    return True
