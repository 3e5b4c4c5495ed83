"""
Pydantic v2 domain models for the match sync engine.
Attributes are snake_case; JSON output uses camelCase aliases.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.enums import ClockReason, MatchStatus, PreservationReason, QueryKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ── Timeline ────────────────────────────────────────────────────────────
class TimelineEvent(DomainModel):
    """One in-match occurrence. Immutable once normalized."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )

    time: str = ""
    period: int = 0
    type: str = "Händelse"
    description: str = "Händelse"
    team: Optional[str] = None
    player: Optional[str] = None
    player_number: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    event_id: Optional[str] = None


# ── Match ───────────────────────────────────────────────────────────────
class NormalizedMatch(DomainModel):
    """One scheduled or completed fixture."""
    id: str
    api_match_id: Optional[str] = None
    team_type: str
    normalized_team: str
    opponent: str
    is_home: bool = True
    home_team: str = ""
    away_team: str = ""
    date: datetime
    display_date: str = ""
    time: Optional[str] = None
    venue: Optional[str] = None
    series: Optional[str] = None
    info_url: Optional[str] = None
    play_url: Optional[str] = None
    result: Optional[str] = None
    upstream_status: Optional[MatchStatus] = None
    match_status: MatchStatus = MatchStatus.UPCOMING
    match_feed: list[TimelineEvent] = Field(default_factory=list)


# ── Clock ───────────────────────────────────────────────────────────────
class TimeoutState(DomainModel):
    timeout_seconds_left: int = 0


class ClockSource(DomainModel):
    drift_seconds: Optional[float] = None
    used_event_time: bool = False


class ClockState(DomainModel):
    """Authoritative clock snapshot as of the last successful detail fetch."""
    running: bool = False
    reason: ClockReason = ClockReason.NO_EVENTS
    period: int = 0
    current_seconds: int = 0
    timeout: Optional[TimeoutState] = None
    source: Optional[ClockSource] = None


class PenaltyRecord(DomainModel):
    """An active time-based suspension."""
    team: Optional[str] = None
    player: Optional[str] = None
    player_number: Optional[str] = None
    period: int = 0
    remaining_seconds: int = 0
    active: bool = True


class TopScorer(DomainModel):
    team: str = "Okänt lag"
    player: str
    player_number: Optional[str] = None
    goals: int = 0


# ── Hydration cache entry ───────────────────────────────────────────────
class MatchDetail(DomainModel):
    """Per-match detail as of the last successful hydration."""
    events: list[TimelineEvent] = Field(default_factory=list)
    clock_state: Optional[ClockState] = None
    penalties: list[PenaltyRecord] = Field(default_factory=list)
    top_scorers: list[TopScorer] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utcnow)
    version: int = 0


# ── Advisory / diagnostics ──────────────────────────────────────────────
class DataQualityReport(DomainModel):
    """Upstream data-quality flags. Advisory only, never a status change."""
    stale_zero_score: bool = False
    technical_issue: bool = False
    minutes_since_kickoff: Optional[int] = None


class PreservationEvent(DomainModel):
    match_id: str
    reason: PreservationReason
    timestamp: datetime = Field(default_factory=_utcnow)


# ── Consumer-facing views ───────────────────────────────────────────────
class QueryView(DomainModel):
    """What a consumer sees for one polling query."""
    query: QueryKind
    matches: list[NormalizedMatch] = Field(default_factory=list)
    loading: bool = True
    error: Optional[str] = None
    has_payload: bool = False
    is_refreshing: bool = False
    last_success_at: Optional[datetime] = None


class MatchCounts(DomainModel):
    total_matches: int = 0
    live_matches: int = 0
    upcoming_matches: int = 0
    finished_matches: int = 0


class TimelineView(DomainModel):
    """Everything a detail view needs for one match."""
    match: NormalizedMatch
    events: list[TimelineEvent] = Field(default_factory=list)
    clock_display: Optional[str] = None
    timeout_display: Optional[str] = None
    penalties: list[PenaltyRecord] = Field(default_factory=list)
    top_scorers: list[TopScorer] = Field(default_factory=list)
    quality: DataQualityReport = Field(default_factory=DataQualityReport)
