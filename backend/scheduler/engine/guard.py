"""
Regression guard for polled match lists.

A fresh response must never silently replace richer cached data for the
same match id. Every preserved value is logged and recorded in the
FreshnessMonitor so consumers can show a "data preserved" indicator.
"""
from __future__ import annotations

from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import NormalizedMatch, PreservationEvent
from shared.models.enums import PreservationReason
from shared.utils.logging import get_logger
from shared.utils.metrics import REGRESSION_PRESERVED
from verifier.status import has_published_result, resolve_status

logger = get_logger(__name__)

PASSTHROUGH_FIELDS = ("venue", "series", "info_url", "play_url", "api_match_id")

EligibilityCheck = Callable[[NormalizedMatch, datetime], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FreshnessMonitor:
    """Bounded in-memory log of regression-guard decisions."""

    def __init__(self, max_events: int = 50) -> None:
        self._events: deque[PreservationEvent] = deque(maxlen=max_events)

    def record(
        self,
        match_id: str,
        reason: PreservationReason,
        now: Optional[datetime] = None,
    ) -> PreservationEvent:
        event = PreservationEvent(match_id=match_id, reason=reason, timestamp=now or _utcnow())
        self._events.append(event)
        REGRESSION_PRESERVED.labels(reason=reason.value).inc()
        logger.info("regression_preserved", match_id=match_id, reason=reason.value)
        return event

    def recent(
        self,
        match_id: Optional[str] = None,
        within_s: float = 5.0,
        now: Optional[datetime] = None,
    ) -> list[PreservationEvent]:
        cutoff = (now or _utcnow()) - timedelta(seconds=within_s)
        return [
            e for e in self._events
            if e.timestamp > cutoff and (match_id is None or e.match_id == match_id)
        ]

    def has_recent_preservation(
        self,
        match_id: str,
        within_s: float = 3.0,
        now: Optional[datetime] = None,
    ) -> bool:
        return bool(self.recent(match_id, within_s, now))

    def stats(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or _utcnow()
        last_day = self.recent(within_s=24 * 3600, now=now)
        return {
            "total": len(last_day),
            "by_reason": dict(Counter(e.reason.value for e in last_day)),
            "last_hour": len(self.recent(within_s=3600, now=now)),
        }

    def clear(self) -> None:
        self._events.clear()


class RegressionGuard:
    """Per-source merge of a fresh match list over the cached one, keyed by id."""

    def __init__(
        self,
        monitor: FreshnessMonitor,
        settings: Settings | None = None,
    ) -> None:
        self._monitor = monitor
        self._settings = settings or get_settings()
        self._last_seen: dict[str, datetime] = {}
        self._missing: set[str] = set()

    def observe(self, matches: list[NormalizedMatch], now: datetime) -> None:
        """Mark matches as seen without merging (used for seeded data)."""
        for match in matches:
            self._last_seen[match.id] = now

    def merge_match(
        self,
        cached: NormalizedMatch,
        fresh: NormalizedMatch,
        now: datetime,
    ) -> NormalizedMatch:
        updates: dict[str, object] = {}

        if has_published_result(cached.result) and not has_published_result(fresh.result):
            updates["result"] = cached.result
            self._monitor.record(fresh.id, PreservationReason.RESULT_REGRESSED, now)
            logger.info(
                "result_regression_rejected",
                match_id=fresh.id,
                cached=cached.result,
                fresh=fresh.result,
            )

        if len(fresh.match_feed) < len(cached.match_feed):
            updates["match_feed"] = cached.match_feed
            self._monitor.record(fresh.id, PreservationReason.FEED_SHRUNK, now)

        dropped = [
            name for name in PASSTHROUGH_FIELDS
            if getattr(fresh, name) is None and getattr(cached, name) is not None
        ]
        if dropped:
            updates.update({name: getattr(cached, name) for name in dropped})
            self._monitor.record(fresh.id, PreservationReason.FIELD_DROPPED, now)
            logger.debug("fields_preserved", match_id=fresh.id, fields=dropped)

        if not updates:
            return fresh
        merged = fresh.model_copy(update=updates)
        merged.match_status = resolve_status(merged, now, self._settings)
        return merged

    def merge(
        self,
        cached: list[NormalizedMatch],
        fresh: list[NormalizedMatch],
        now: datetime,
        eligible: EligibilityCheck,
    ) -> list[NormalizedMatch]:
        """
        Merge `fresh` over `cached`. Matches only in `cached` survive for
        `missing_match_grace_s` after they were last seen, while `eligible`.
        """
        cached_by_id = {match.id: match for match in cached}
        fresh_ids: set[str] = set()
        merged: list[NormalizedMatch] = []

        for match in fresh:
            if match.id in fresh_ids:
                continue
            fresh_ids.add(match.id)
            self._last_seen[match.id] = now
            self._missing.discard(match.id)
            previous = cached_by_id.get(match.id)
            merged.append(match if previous is None else self.merge_match(previous, match, now))

        grace = timedelta(seconds=self._settings.missing_match_grace_s)
        for match_id, match in cached_by_id.items():
            if match_id in fresh_ids:
                continue
            last_seen = self._last_seen.setdefault(match_id, now)
            if now - last_seen > grace:
                self._forget(match_id)
                continue
            retained = match.model_copy()
            retained.match_status = resolve_status(retained, now, self._settings)
            if not eligible(retained, now):
                self._forget(match_id)
                continue
            if match_id not in self._missing:
                self._missing.add(match_id)
                self._monitor.record(match_id, PreservationReason.MATCH_MISSING, now)
            merged.append(retained)

        return sorted(merged, key=lambda m: m.date)

    def reset(self) -> None:
        self._last_seen.clear()
        self._missing.clear()

    def _forget(self, match_id: str) -> None:
        self._last_seen.pop(match_id, None)
        self._missing.discard(match_id)
        logger.debug("match_dropped", match_id=match_id)
