"""API route tests. The lifespan is disabled and a seeded MatchDataService is injected."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import get_match_service
from api.orchestrator import MatchDataService
from shared.models.enums import MatchStatus, QueryKind
from shared.utils.metrics import start_metrics_server


@pytest.fixture
def make_client(upstream, make_match, make_event, settings, kickoff):
    """Build a TestClient over a service seeded with one live and one finished match."""

    def _build(handler=None, queries=(QueryKind.LIVE_UPCOMING, QueryKind.LIVE, QueryKind.OLD)):
        stub = upstream(handler or (lambda request: []))
        live = make_match(
            id="live-1",
            match_status=MatchStatus.LIVE,
            result="5-4",
            match_feed=[make_event(event_id="e1", time="04:00"), make_event(event_id="e2", time="09:30")],
        )
        finished = make_match(
            id="old-1",
            api_match_id="8000",
            date=kickoff - timedelta(days=3),
            result="28-26",
            match_status=MatchStatus.FINISHED,
        )
        seeds = {QueryKind.LIVE_UPCOMING: [live], QueryKind.LIVE: [live], QueryKind.OLD: [finished]}
        now = kickoff + timedelta(minutes=20)
        service = MatchDataService(
            stub.client(settings),
            settings,
            queries=queries,
            initial_data={kind: seeds[kind] for kind in queries},
            clock=lambda: now,
        )
        app = create_app(use_lifespan=False)
        app.dependency_overrides[get_match_service] = lambda: service
        return TestClient(app), stub

    return _build


@pytest.fixture
def client(make_client):
    test_client, _ = make_client()
    with test_client as c:
        yield c


# ── System ──────────────────────────────────────────────────────────────

def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "api"}
    assert r.headers.get("content-type", "").startswith("application/json")


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers.get("X-Request-ID")


def test_status_endpoint(client: TestClient) -> None:
    data = client.get("/v1/status").json()
    assert data["status"] == "ok"
    assert set(data["sources"]) == {"liveUpcoming", "live", "old"}
    assert data["preservations"]["total"] == 0


@pytest.mark.parametrize("enabled", [False, True])
def test_metrics_server_follows_setting(settings, enabled: bool) -> None:
    configured = settings.model_copy(update={"metrics_enabled": enabled})
    with patch("shared.utils.metrics.get_settings", return_value=configured), \
            patch("shared.utils.metrics.start_http_server") as server:
        start_metrics_server()
    if enabled:
        server.assert_called_once_with(configured.metrics_port)
    else:
        server.assert_not_called()


# ── /v1/matches ─────────────────────────────────────────────────────────

class TestListMatches:

    def test_default_query(self, client: TestClient) -> None:
        r = client.get("/v1/matches")
        assert r.status_code == 200
        data = r.json()
        assert data["query"] == "liveUpcoming"
        assert data["hasPayload"] is True
        assert data["loading"] is False
        assert data["matches"][0]["id"] == "live-1"
        assert data["matches"][0]["matchStatus"] == "live"
        assert data["matches"][0]["apiMatchId"] == "9001"

    def test_old_query(self, client: TestClient) -> None:
        data = client.get("/v1/matches", params={"query": "old"}).json()
        assert [m["id"] for m in data["matches"]] == ["old-1"]

    def test_invalid_query_value(self, client: TestClient) -> None:
        assert client.get("/v1/matches", params={"query": "bogus"}).status_code == 422

    def test_unconfigured_query(self, make_client) -> None:
        test_client, _ = make_client(queries=(QueryKind.LIVE_UPCOMING,))
        with test_client as c:
            assert c.get("/v1/matches", params={"query": "live"}).status_code == 422


class TestRefresh:

    def test_upstream_failure_is_502(self, make_client) -> None:
        test_client, stub = make_client(lambda request: httpx.Response(500))
        with test_client as c:
            r = c.post("/v1/matches/refresh", params={"query": "old", "force": "true"})
        assert r.status_code == 502
        body = r.json()
        assert body["error"] == "upstream_unavailable"
        assert body["message"] == "HTTP 500"
        assert len(stub.requests) == 1

    def test_refresh_returns_query_view(self, make_client) -> None:
        test_client, stub = make_client(lambda request: [])
        with test_client as c:
            r = c.post("/v1/matches/refresh", params={"query": "old"})
        assert r.status_code == 200
        assert r.json()["query"] == "old"
        assert stub.requests[0].url.params["dataType"] == "old"


class TestFilter:

    def test_finished(self, client: TestClient) -> None:
        data = client.get("/v1/matches/filter", params={"status": "finished"}).json()
        assert data["status"] == "finished"
        assert [m["id"] for m in data["matches"]] == ["old-1"]
        assert data["counts"]["totalMatches"] == 2
        assert data["counts"]["liveMatches"] == 1

    def test_team_without_matches(self, client: TestClient) -> None:
        data = client.get("/v1/matches/filter", params={"status": "live", "team": "F16"}).json()
        assert data["team"] == "F16"
        assert data["matches"] == []

    def test_invalid_status(self, client: TestClient) -> None:
        assert client.get("/v1/matches/filter", params={"status": "halftime"}).status_code == 422


# ── /v1/matches/{id}/timeline ───────────────────────────────────────────

class TestTimeline:

    def test_unknown_match_is_404(self, client: TestClient) -> None:
        assert client.get("/v1/matches/nope/timeline").status_code == 404

    def test_feed_fallback_without_hydration(self, client: TestClient) -> None:
        data = client.get("/v1/matches/live-1/timeline", params={"hydrate": "false"}).json()
        assert [e["eventId"] for e in data["events"]] == ["e2", "e1"]
        assert data["clockDisplay"] is None
        assert data["hydrationError"] is None
        assert data["match"]["id"] == "live-1"

    def test_hydration_error_still_returns_view(self, make_client) -> None:
        test_client, _ = make_client(lambda request: httpx.Response(503))
        with test_client as c:
            r = c.get("/v1/matches/live-1/timeline")
        assert r.status_code == 200
        data = r.json()
        assert data["hydrationError"] == "HTTP 503"
        assert [e["eventId"] for e in data["events"]] == ["e2", "e1"]

    def test_hydrated_timeline(self, make_client) -> None:
        detail = {
            "events": [
                {"eventId": "h1", "type": "Mål", "time": "01:00", "period": 1, "player": "Erik", "team": "HHF"},
                {"eventId": "h2", "type": "Mål", "time": "11:00", "period": 1, "player": "Erik", "team": "HHF"},
            ],
            "clockState": {"running": False, "reason": "stopped", "period": 1, "currentSeconds": 754},
        }
        test_client, stub = make_client(lambda request: detail)
        with test_client as c:
            data = c.get("/v1/matches/live-1/timeline").json()
        assert stub.requests[0].url.path == "/matcher/match/9001"
        assert [e["eventId"] for e in data["events"]] == ["h2", "h1"]
        assert data["clockDisplay"] == "12:34"
        assert data["topScorers"] == [{"team": "HHF", "player": "Erik", "playerNumber": None, "goals": 2}]
