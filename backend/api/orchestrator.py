"""
Match data orchestrator.

Composes one PollingDataSource per query, one TimelineHydrator and one
FreshnessMonitor into the flat surface consumed by the API routes (and by
any in-process presentation layer). Owns their lifecycle.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import (
    ClockState,
    MatchCounts,
    MatchDetail,
    NormalizedMatch,
    PenaltyRecord,
    QueryView,
    TimelineEvent,
    TimelineView,
    TopScorer,
)
from shared.models.enums import MatchStatus, QueryKind, StatusFilter
from shared.utils.http_client import MatchAPIClient, UpstreamError
from shared.utils.logging import get_logger

from builder.clock.simulator import ClockSimulator, ClockTicker
from builder.timeline.merge import sort_for_display, top_scorers_from_events
from ingest.hydration import TimelineHydrator
from ingest.normalization.normalizer import normalize_team_key
from scheduler.engine.guard import FreshnessMonitor
from scheduler.engine.polling import PollingDataSource
from verifier.status import (
    assess_data_quality,
    bucket_status,
    has_published_result,
    is_within_current_window,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_by_id(matches: Iterable[NormalizedMatch]) -> list[NormalizedMatch]:
    seen: set[str] = set()
    unique: list[NormalizedMatch] = []
    for match in matches:
        if match.id in seen:
            continue
        seen.add(match.id)
        unique.append(match)
    return unique


def matches_team(match: NormalizedMatch, team: Optional[str]) -> bool:
    """Team filter by normalized key; empty or "all" matches everything."""
    key = normalize_team_key(team)
    if not key or key == "all":
        return True
    return key == match.normalized_team or key in match.normalized_team


def matches_status(match: NormalizedMatch, status_filter: StatusFilter) -> bool:
    bucket = bucket_status(match.match_status)
    if status_filter == StatusFilter.LIVE:
        return bucket == MatchStatus.LIVE
    if status_filter == StatusFilter.UPCOMING:
        return bucket == MatchStatus.UPCOMING
    if status_filter == StatusFilter.FINISHED:
        return bucket == MatchStatus.FINISHED and has_published_result(match.result)
    return bucket in (MatchStatus.LIVE, MatchStatus.UPCOMING)


class MatchDataService:
    """Long-lived engine instance: sources, hydrator and their shared monitor."""

    def __init__(
        self,
        client: MatchAPIClient | None = None,
        settings: Settings | None = None,
        *,
        queries: Iterable[QueryKind] = (QueryKind.LIVE_UPCOMING, QueryKind.LIVE, QueryKind.OLD),
        initial_data: dict[QueryKind, list[NormalizedMatch]] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or MatchAPIClient(self._settings)
        self._clock = clock
        self._monitor = FreshnessMonitor()
        seeds = initial_data or {}
        self._sources: dict[QueryKind, PollingDataSource] = {
            kind: PollingDataSource(
                kind,
                self._client,
                monitor=self._monitor,
                settings=self._settings,
                initial_data=seeds.get(kind),
                clock=clock,
            )
            for kind in queries
        }
        self._hydrator = TimelineHydrator(self._client, self._monitor)
        self._sessions: set[MatchDetailSession] = set()
        self._started = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def monitor(self) -> FreshnessMonitor:
        return self._monitor

    @property
    def hydrator(self) -> TimelineHydrator:
        return self._hydrator

    @property
    def started(self) -> bool:
        return self._started

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        await self._client.start()
        for source in self._sources.values():
            source.start()
        self._started = True
        logger.info("match_service_started", queries=[k.value for k in self._sources])

    async def stop(self) -> None:
        for session in list(self._sessions):
            await session.close()
        for source in self._sources.values():
            await source.stop()
        await self._client.close()
        self._started = False
        logger.info("match_service_stopped")

    # ── Per-query surface ───────────────────────────────────────────────

    def source(self, kind: QueryKind | str) -> PollingDataSource:
        kind = QueryKind(kind)
        if kind not in self._sources:
            raise KeyError(f"Query {kind.value!r} is not configured")
        return self._sources[kind]

    def query(self, kind: QueryKind | str) -> QueryView:
        return self.source(kind).snapshot()

    async def refresh(self, kind: QueryKind | str, force: bool = False) -> list[NormalizedMatch]:
        return await self.source(kind).refresh(force=force)

    def status(self) -> dict[str, Any]:
        sources = {
            kind.value: {
                "loading": source.loading,
                "has_payload": source.has_payload,
                "is_refreshing": source.is_refreshing,
                "error": source.error,
                "matches": len(source.matches),
                "interval_s": source.interval_s,
                "last_success_at": source.last_success_at.isoformat() if source.last_success_at else None,
            }
            for kind, source in self._sources.items()
        }
        return {
            "status": "ok" if all(s.error is None for s in self._sources.values()) else "degraded",
            "sources": sources,
            "preservations": self._monitor.stats(self._clock()),
            "open_sessions": len(self._sessions),
        }

    # ── Hydrator surface ────────────────────────────────────────────────

    async def hydrate(self, match: NormalizedMatch, force: bool = False) -> Optional[MatchDetail]:
        return await self._hydrator.hydrate(match, force=force)

    def get_merged_timeline(self, match: NormalizedMatch) -> list[TimelineEvent]:
        return self._hydrator.get_merged_timeline(match)

    def clock_state_for(self, match_id: str) -> Optional[ClockState]:
        return self._hydrator.clock_state_for(match_id)

    def penalties_for(self, match_id: str) -> list[PenaltyRecord]:
        return self._hydrator.penalties_for(match_id)

    def top_scorers_for(self, match_id: str) -> list[TopScorer]:
        return self._hydrator.top_scorers_for(match_id)

    # ── Cross-source views ──────────────────────────────────────────────

    def all_matches(self) -> list[NormalizedMatch]:
        """Every held match across sources, first occurrence per id wins."""
        ordered = [
            self._sources[kind].matches
            for kind in (QueryKind.LIVE_UPCOMING, QueryKind.LIVE, QueryKind.OLD)
            if kind in self._sources
        ]
        return dedupe_by_id(match for matches in ordered for match in matches)

    def find_match(self, match_id: str) -> Optional[NormalizedMatch]:
        return next((m for m in self.all_matches() if m.id == match_id), None)

    def _current_pool(self) -> list[NormalizedMatch]:
        pools = [
            self._sources[kind].matches
            for kind in (QueryKind.LIVE, QueryKind.LIVE_UPCOMING)
            if kind in self._sources
        ]
        return dedupe_by_id(match for pool in pools for match in pool)

    def current_matches(self, now: Optional[datetime] = None) -> list[NormalizedMatch]:
        """Live matches first, then upcoming, each by kickoff."""
        now = now or self._clock()
        current = [
            m for m in self._current_pool()
            if matches_status(m, StatusFilter.CURRENT) and is_within_current_window(m, now, self._settings)
        ]
        return sorted(current, key=lambda m: (not m.match_status.is_live, m.date))

    def filter_matches(
        self,
        team: Optional[str] = None,
        status_filter: StatusFilter | str = StatusFilter.CURRENT,
    ) -> list[NormalizedMatch]:
        status_filter = StatusFilter(status_filter)
        if status_filter == StatusFilter.FINISHED:
            pool = self._sources[QueryKind.OLD].matches if QueryKind.OLD in self._sources else []
        else:
            pool = self._current_pool()
        selected = [m for m in pool if matches_team(m, team) and matches_status(m, status_filter)]
        if status_filter == StatusFilter.FINISHED:
            return sorted(selected, key=lambda m: m.date, reverse=True)
        return sorted(selected, key=lambda m: m.date)

    def grouped(self, matches: Optional[list[NormalizedMatch]] = None) -> dict[str, dict[str, list[NormalizedMatch]]]:
        matches = self.all_matches() if matches is None else matches
        by_team: dict[str, list[NormalizedMatch]] = {}
        by_series: dict[str, list[NormalizedMatch]] = {}
        by_status: dict[str, list[NormalizedMatch]] = {
            MatchStatus.LIVE.value: [],
            MatchStatus.UPCOMING.value: [],
            MatchStatus.FINISHED.value: [],
        }
        for match in matches:
            by_team.setdefault(match.team_type, []).append(match)
            if match.series:
                by_series.setdefault(match.series, []).append(match)
            by_status[bucket_status(match.match_status).value].append(match)
        return {"by_team": by_team, "by_status": by_status, "by_series": by_series}

    def match_counts(self) -> MatchCounts:
        matches = self.all_matches()
        buckets = [bucket_status(m.match_status) for m in matches]
        return MatchCounts(
            total_matches=len(matches),
            live_matches=buckets.count(MatchStatus.LIVE),
            upcoming_matches=buckets.count(MatchStatus.UPCOMING),
            finished_matches=buckets.count(MatchStatus.FINISHED),
        )

    # ── Detail views ────────────────────────────────────────────────────

    def timeline_view(
        self,
        match: NormalizedMatch,
        now: Optional[datetime] = None,
        simulator: Optional[ClockSimulator] = None,
    ) -> TimelineView:
        now = now or self._clock()
        events = sort_for_display(self._hydrator.get_merged_timeline(match))
        if simulator is None:
            simulator = ClockSimulator(
                self._hydrator.clock_state_for(match.id),
                self._hydrator.penalties_for(match.id),
            )
        return TimelineView(
            match=match,
            events=events,
            clock_display=simulator.display_clock,
            timeout_display=simulator.timeout_display,
            penalties=simulator.active_penalties(),
            top_scorers=self._hydrator.top_scorers_for(match.id) or top_scorers_from_events(events),
            quality=assess_data_quality(match, now, events, self._settings),
        )

    async def open_detail(self, match: NormalizedMatch) -> MatchDetailSession:
        session = MatchDetailSession(self, match)
        self._sessions.add(session)
        await session.open()
        return session

    def _release(self, session: MatchDetailSession) -> None:
        self._sessions.discard(session)


class MatchDetailSession:
    """
    An open detail view: hydrates on open, ticks the clock locally and
    re-hydrates every `detail_refresh_interval_s`. Closing stops both timers
    but leaves an in-flight fetch to complete into the shared cache.
    """

    def __init__(self, service: MatchDataService, match: NormalizedMatch) -> None:
        self._service = service
        self._match = match
        self._simulator = ClockSimulator()
        self._ticker = ClockTicker(self._simulator, service.settings)
        self._refresh_task: Optional[asyncio.Task[None]] = None
        self._applied_version = 0
        self._closed = False

    @property
    def match(self) -> NormalizedMatch:
        return self._service.find_match(self._match.id) or self._match

    @property
    def simulator(self) -> ClockSimulator:
        return self._simulator

    @property
    def ticker(self) -> ClockTicker:
        return self._ticker

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        try:
            await self.sync()
        except UpstreamError as exc:
            logger.warning("detail_open_hydrate_failed", match_id=self._match.id, error=str(exc))
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(), name=f"detail-refresh-{self._match.id}"
        )

    async def sync(self, force: bool = False) -> None:
        """Hydrate and, if the cache entry changed, reset the clock to it."""
        detail = await self._service.hydrate(self.match, force=force)
        if self._closed or detail is None or detail.version == self._applied_version:
            return
        self._applied_version = detail.version
        await self._ticker.reset(detail.clock_state, detail.penalties)

    async def _refresh_loop(self) -> None:
        interval = self._service.settings.detail_refresh_interval_s
        while not self._closed:
            await asyncio.sleep(interval)
            try:
                await self.sync(force=True)
            except UpstreamError as exc:
                logger.debug("detail_refresh_failed", match_id=self._match.id, error=str(exc))

    def view(self, now: Optional[datetime] = None) -> TimelineView:
        return self._service.timeline_view(self.match, now=now, simulator=self._simulator)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._ticker.stop()
        self._service._release(self)
        logger.debug("detail_session_closed", match_id=self._match.id)

    async def __aenter__(self) -> MatchDetailSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
