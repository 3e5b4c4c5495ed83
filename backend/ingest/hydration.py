"""
Timeline hydration: on-demand per-match detail fetches.

The in-flight map is the only mutual-exclusion device in the engine:
concurrent hydrate calls for the same match share one task, so one
network request is issued. Cache entries are replaced wholesale.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from shared.models.domain import (
    ClockState,
    MatchDetail,
    NormalizedMatch,
    PenaltyRecord,
    TimelineEvent,
    TopScorer,
)
from shared.models.enums import PreservationReason
from shared.utils.http_client import MatchAPIClient, UpstreamError
from shared.utils.logging import get_logger
from shared.utils.metrics import HYDRATION_COALESCED, HYDRATIONS

from builder.timeline.merge import dedupe, merge_timelines, top_scorers_from_events
from ingest.normalization.normalizer import (
    extract_timeline,
    extract_top_scorers,
    normalize_clock_state,
    normalize_penalties,
)
from scheduler.engine.guard import FreshnessMonitor

logger = get_logger(__name__)


class TimelineHydrator:
    """Per-match detail cache keyed by match id, fetched by apiMatchId."""

    def __init__(
        self,
        client: MatchAPIClient,
        monitor: FreshnessMonitor | None = None,
    ) -> None:
        self._client = client
        self._monitor = monitor or FreshnessMonitor()
        self._cache: dict[str, MatchDetail] = {}
        self._inflight: dict[str, asyncio.Task[MatchDetail]] = {}

    def is_hydrating(self, match_id: str) -> bool:
        task = self._inflight.get(match_id)
        return task is not None and not task.done()

    async def hydrate(self, match: NormalizedMatch, force: bool = False) -> Optional[MatchDetail]:
        """
        Fetch and cache detail for `match`.

        No-op without an apiMatchId, or when cached and not forced. Raises
        UpstreamError on transport failure; the cache is left untouched.
        """
        if not match.api_match_id:
            return None
        if not force and match.id in self._cache:
            return self._cache[match.id]

        task = self._inflight.get(match.id)
        if task is not None and not task.done():
            HYDRATION_COALESCED.inc()
            logger.debug("hydrate_coalesced", match_id=match.id)
        else:
            task = asyncio.create_task(self._fetch(match, match.api_match_id), name=f"hydrate-{match.id}")
            self._inflight[match.id] = task
            task.add_done_callback(lambda t, key=match.id: self._on_done(key, t))
        return await asyncio.shield(task)

    def _on_done(self, match_id: str, task: asyncio.Task[MatchDetail]) -> None:
        if self._inflight.get(match_id) is task:
            del self._inflight[match_id]
        if not task.cancelled():
            task.exception()

    async def _fetch(self, match: NormalizedMatch, api_match_id: str) -> MatchDetail:
        try:
            payload = await self._client.fetch_match_detail(api_match_id)
        except UpstreamError as exc:
            HYDRATIONS.labels(status="error").inc()
            logger.warning("timeline_hydrate_failed", match_id=match.id, error=str(exc))
            raise

        events = extract_timeline(payload)
        previous = self._cache.get(match.id)
        if previous is not None and len(events) < len(previous.events):
            self._monitor.record(match.id, PreservationReason.TIMELINE_SHRUNK)
            events = previous.events

        top_scorers = extract_top_scorers(payload) or top_scorers_from_events(events)
        detail = MatchDetail(
            events=events,
            clock_state=normalize_clock_state(payload),
            penalties=normalize_penalties(payload),
            top_scorers=top_scorers,
            fetched_at=datetime.now(timezone.utc),
            version=(previous.version + 1) if previous else 1,
        )
        self._cache[match.id] = detail
        HYDRATIONS.labels(status="success").inc()
        logger.info(
            "timeline_hydrated",
            match_id=match.id,
            events=len(events),
            version=detail.version,
        )
        return detail

    # ── Read surface ────────────────────────────────────────────────────

    def detail_for(self, match_id: str) -> Optional[MatchDetail]:
        return self._cache.get(match_id)

    def get_merged_timeline(self, match: NormalizedMatch) -> list[TimelineEvent]:
        """Hydrated events when present, else the match's own list feed."""
        detail = self._cache.get(match.id)
        if detail is not None and detail.events:
            return list(detail.events)
        return dedupe(match.match_feed)

    def get_combined_timeline(self, match: NormalizedMatch) -> list[TimelineEvent]:
        """Hydrated events merged with the list feed, hydrated first."""
        detail = self._cache.get(match.id)
        hydrated = detail.events if detail is not None else []
        return merge_timelines(hydrated, match.match_feed)

    def clock_state_for(self, match_id: str) -> Optional[ClockState]:
        detail = self._cache.get(match_id)
        return detail.clock_state if detail else None

    def penalties_for(self, match_id: str) -> list[PenaltyRecord]:
        detail = self._cache.get(match_id)
        return list(detail.penalties) if detail else []

    def top_scorers_for(self, match_id: str) -> list[TopScorer]:
        detail = self._cache.get(match_id)
        return list(detail.top_scorers) if detail else []

    def clear(self) -> None:
        """Drop cached detail. In-flight fetches still land in the fresh cache."""
        self._cache.clear()
