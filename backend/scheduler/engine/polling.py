"""
Polling data source: one polling cycle against one logical match query.

Each instance owns its cache. At most one list fetch is in flight per source;
concurrent `refresh()` callers and the poll loop share it. Fresh results go
through the RegressionGuard before replacing the cache.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import NormalizedMatch, QueryView
from shared.models.enums import MatchStatus, QueryKind
from shared.utils.http_client import MatchAPIClient, UpstreamError
from shared.utils.logging import get_logger
from shared.utils.metrics import POLL_LATENCY, POLL_REQUESTS, TRACKED_MATCHES, atrack_latency

from ingest.normalization.normalizer import extract_match_records, normalize_matches
from scheduler.engine.guard import FreshnessMonitor, RegressionGuard
from verifier.status import is_within_current_window

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def query_interval(query: QueryKind, settings: Settings) -> float:
    return {
        QueryKind.LIVE_UPCOMING: settings.live_upcoming_poll_interval_s,
        QueryKind.LIVE: settings.live_poll_interval_s,
        QueryKind.OLD: settings.old_poll_interval_s,
    }[query]


def query_limit(query: QueryKind, settings: Settings) -> int:
    return {
        QueryKind.LIVE_UPCOMING: settings.live_upcoming_limit,
        QueryKind.LIVE: settings.live_limit,
        QueryKind.OLD: settings.old_limit,
    }[query]


class PollingDataSource:
    """
    State machine for one query:

        loading=True, has_payload=False  -> nothing received yet
        has_payload=True                 -> at least one response, possibly empty
        is_refreshing=True               -> a fetch is in flight after the first
        error                            -> last transport failure, cleared on success
    """

    def __init__(
        self,
        query: QueryKind,
        client: MatchAPIClient,
        *,
        monitor: FreshnessMonitor | None = None,
        settings: Settings | None = None,
        initial_data: list[NormalizedMatch] | None = None,
        interval_s: float | None = None,
        limit: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._query = QueryKind(query)
        self._client = client
        self._monitor = monitor or FreshnessMonitor()
        self._guard = RegressionGuard(self._monitor, self._settings)
        self._interval = interval_s if interval_s is not None else query_interval(self._query, self._settings)
        self._limit = limit if limit is not None else query_limit(self._query, self._settings)
        self._clock = clock

        self._matches: list[NormalizedMatch] = []
        self._loading = True
        self._has_payload = False
        self._error: Optional[str] = None
        self._is_refreshing = False
        self._last_success_at: Optional[datetime] = None
        self._last_success_mono: Optional[float] = None

        self._inflight: Optional[asyncio.Task[list[NormalizedMatch]]] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._closed = False

        if initial_data is not None:
            self._seed(initial_data)

    # ── State ───────────────────────────────────────────────────────────

    @property
    def query(self) -> QueryKind:
        return self._query

    @property
    def interval_s(self) -> float:
        return self._interval

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def matches(self) -> list[NormalizedMatch]:
        return list(self._matches)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def has_payload(self) -> bool:
        return self._has_payload

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    @property
    def last_success_at(self) -> Optional[datetime]:
        return self._last_success_at

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> QueryView:
        return QueryView(
            query=self._query,
            matches=self.matches,
            loading=self._loading,
            error=self._error,
            has_payload=self._has_payload,
            is_refreshing=self._is_refreshing,
            last_success_at=self._last_success_at,
        )

    # ── Lifecycle ───────────────────────────────────────────────────────

    def start(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._closed = False
        self._poll_task = asyncio.create_task(self._run(), name=f"poll-{self._query.value}")
        logger.info("poll_source_started", query=self._query.value, interval_s=self._interval)

    async def stop(self) -> None:
        """Stop polling; responses still in flight are ignored when they land."""
        self._closed = True
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("poll_source_stopped", query=self._query.value)

    async def _run(self) -> None:
        while not self._closed:
            try:
                await self.refresh(force=True)
            except UpstreamError as exc:
                logger.debug("poll_cycle_failed", query=self._query.value, error=str(exc))
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("poll_loop_error", query=self._query.value, error=str(exc), exc_info=True)
            await asyncio.sleep(self._interval)

    # ── Fetching ────────────────────────────────────────────────────────

    async def refresh(self, force: bool = False) -> list[NormalizedMatch]:
        """
        Fetch now, or join the fetch already in flight.

        A non-forced call returns the cache without a request when the last
        success is younger than `refresh_min_age_s`. Raises UpstreamError on
        transport failure.
        """
        if self._inflight is None or self._inflight.done():
            if not force and self._is_fresh():
                return self.matches
            self._inflight = asyncio.create_task(self._fetch())
            self._inflight.add_done_callback(self._on_fetch_done)
        return await asyncio.shield(self._inflight)

    def _is_fresh(self) -> bool:
        if self._last_success_mono is None:
            return False
        return time.monotonic() - self._last_success_mono < self._settings.refresh_min_age_s

    def _on_fetch_done(self, task: asyncio.Task[list[NormalizedMatch]]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # retrieved here so an abandoned fetch does not warn at shutdown
            task.exception()

    async def _fetch(self) -> list[NormalizedMatch]:
        query = self._query.value
        self._is_refreshing = self._has_payload
        try:
            async with atrack_latency(POLL_LATENCY, query=query):
                payload = await self._client.fetch_matches(query, self._limit)
        except UpstreamError as exc:
            POLL_REQUESTS.labels(query=query, status="error").inc()
            if not self._closed:
                self._error = str(exc)
            logger.warning("poll_failed", query=query, error=str(exc))
            raise
        finally:
            self._is_refreshing = False

        POLL_REQUESTS.labels(query=query, status="success").inc()
        if self._closed:
            logger.debug("poll_result_ignored", query=query)
            return self.matches

        now = self._clock()
        records = extract_match_records(payload, self._query)
        fresh = self._post_filter(normalize_matches(records, now=now, settings=self._settings), now)
        self._matches = self._guard.merge(self._matches, fresh, now, self.is_eligible)

        self._has_payload = True
        self._loading = False
        self._error = None
        self._last_success_at = now
        self._last_success_mono = time.monotonic()
        TRACKED_MATCHES.labels(query=query).set(len(self._matches))
        logger.debug("poll_applied", query=query, received=len(records), held=len(self._matches))
        return self.matches

    # ── Query semantics ─────────────────────────────────────────────────

    def is_eligible(self, match: NormalizedMatch, now: datetime) -> bool:
        """Whether a match belongs in this query's result set at `now`."""
        if self._query == QueryKind.LIVE:
            return match.match_status.is_live
        if self._query == QueryKind.OLD:
            return match.match_status == MatchStatus.FINISHED
        return is_within_current_window(match, now, self._settings)

    def _post_filter(self, matches: list[NormalizedMatch], now: datetime) -> list[NormalizedMatch]:
        return [match for match in matches if self.is_eligible(match, now)]

    def _seed(self, matches: list[NormalizedMatch]) -> None:
        now = self._clock()
        self._matches = sorted(matches, key=lambda m: m.date)
        self._guard.observe(self._matches, now)
        self._has_payload = True
        self._loading = False
