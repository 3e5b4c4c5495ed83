"""Domain enumerations for the match sync engine."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    HALFTIME = "halftime"
    FINISHED = "finished"

    @property
    def is_live(self) -> bool:
        return self in (MatchStatus.LIVE, MatchStatus.HALFTIME)


class QueryKind(str, Enum):
    """Logical list queries understood by the upstream `dataType` parameter."""
    LIVE_UPCOMING = "liveUpcoming"
    LIVE = "live"
    OLD = "old"


class StatusFilter(str, Enum):
    CURRENT = "current"
    LIVE = "live"
    UPCOMING = "upcoming"
    FINISHED = "finished"


class ClockReason(str, Enum):
    RUNNING = "running"
    TIMEOUT = "timeout"
    STOPPED = "stopped"
    NO_EVENTS = "no_events"


class EventKind(str, Enum):
    """Coarse classification used only for display ordering."""
    GOAL = "goal"
    END = "end"
    OTHER = "other"


class PreservationReason(str, Enum):
    RESULT_REGRESSED = "result_regressed"
    FEED_SHRUNK = "feed_shrunk"
    FIELD_DROPPED = "field_dropped"
    MATCH_MISSING = "match_missing"
    TIMELINE_SHRUNK = "timeline_shrunk"
