"""Shared fixtures: deterministic settings, match builders and a mocked upstream."""
from __future__ import annotations

import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

import httpx
import pytest

from shared.config import Settings
from shared.models.domain import NormalizedMatch, TimelineEvent
from shared.models.enums import MatchStatus
from shared.utils.http_client import MatchAPIClient

KICKOFF = datetime(2025, 10, 18, 16, 0, tzinfo=timezone.utc)

HandlerResult = Union[httpx.Response, Any]
Handler = Callable[[httpx.Request], Union[HandlerResult, Awaitable[HandlerResult]]]


class UpstreamStub:
    """Records requests and answers them from a handler, via httpx.MockTransport."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    def client(self, settings: Settings) -> MatchAPIClient:
        return MatchAPIClient(settings, transport=httpx.MockTransport(self))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_base_url="https://upstream.test",
        refresh_min_age_s=60.0,
        missing_match_grace_s=60.0,
        clock_tick_interval_s=0.01,
        detail_refresh_interval_s=60.0,
        metrics_enabled=False,
    )


@pytest.fixture
def kickoff() -> datetime:
    return KICKOFF


@pytest.fixture
def make_match() -> Callable[..., NormalizedMatch]:
    """Build a normalized match kicking off at KICKOFF; override any field."""

    def _make(**overrides: Any) -> NormalizedMatch:
        fields: dict[str, Any] = {
            "id": "m1",
            "api_match_id": "9001",
            "team_type": "A-lag Herrar",
            "normalized_team": "alagherrar",
            "opponent": "IFK Tumba",
            "home_team": "Härnösands HF",
            "away_team": "IFK Tumba",
            "date": KICKOFF,
            "match_status": MatchStatus.UPCOMING,
        }
        fields.update(overrides)
        return NormalizedMatch(**fields)

    return _make


@pytest.fixture
def make_event() -> Callable[..., TimelineEvent]:
    def _make(**overrides: Any) -> TimelineEvent:
        fields: dict[str, Any] = {
            "time": "10:00",
            "period": 1,
            "type": "Händelse",
            "description": "Händelse",
        }
        fields.update(overrides)
        return TimelineEvent(**fields)

    return _make


@pytest.fixture
def raw_match() -> Callable[..., dict[str, Any]]:
    """A raw list-endpoint record as the upstream sends it (18:00 Stockholm = KICKOFF)."""

    def _make(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": "m1",
            "apiMatchId": "9001",
            "teamType": "A-lag Herrar",
            "opponent": "IFK Tumba (hemma)",
            "date": "2025-10-18",
            "time": "18:00",
            "venue": "Öbackahallen",
            "series": "Division 1",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def upstream() -> Callable[[Handler], UpstreamStub]:
    return UpstreamStub
