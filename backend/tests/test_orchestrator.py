"""
Tests for MatchDataService: cross-source views, filters, counts, detail
sessions and lifecycle. View tests seed the sources so no polling runs.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from api.orchestrator import MatchDataService, dedupe_by_id, matches_status, matches_team
from shared.models.enums import MatchStatus, QueryKind, StatusFilter


@pytest.fixture
def seeded(upstream, make_match, settings, kickoff):
    """Build a service over seeded sources; the upstream answers detail requests."""

    def _build(handler=None, **seeds):
        stub = upstream(handler or (lambda request: {"events": []}))
        now = kickoff + timedelta(minutes=30)
        initial = {
            QueryKind.LIVE_UPCOMING: seeds.get("live_upcoming", []),
            QueryKind.LIVE: seeds.get("live", []),
            QueryKind.OLD: seeds.get("old", []),
        }
        service = MatchDataService(stub.client(settings), settings, initial_data=initial, clock=lambda: now)
        return service, stub

    return _build


# ── Module helpers ──────────────────────────────────────────────────────

def test_dedupe_by_id_keeps_first(make_match) -> None:
    first = make_match(id="a", venue="first")
    assert dedupe_by_id([first, make_match(id="b"), make_match(id="a", venue="second")])[0] is first


@pytest.mark.parametrize(
    "team, expected",
    [(None, True), ("", True), ("all", True), ("A-lag Herrar", True), ("a-lag", True), ("F16", False)],
)
def test_matches_team(make_match, team, expected: bool) -> None:
    assert matches_team(make_match(), team) is expected


def test_matches_status_buckets(make_match) -> None:
    halftime = make_match(match_status=MatchStatus.HALFTIME)
    assert matches_status(halftime, StatusFilter.LIVE)
    assert matches_status(halftime, StatusFilter.CURRENT)
    unpublished = make_match(match_status=MatchStatus.FINISHED, result="0-0")
    assert not matches_status(unpublished, StatusFilter.FINISHED)
    assert not matches_status(unpublished, StatusFilter.CURRENT)
    assert matches_status(make_match(match_status=MatchStatus.FINISHED, result="2-1"), StatusFilter.FINISHED)


# ── Cross-source views ──────────────────────────────────────────────────

class TestViews:

    def test_all_matches_first_occurrence_wins(self, seeded, make_match, kickoff) -> None:
        upcoming = make_match(id="a", venue="from-current")
        service, _ = seeded(
            live_upcoming=[upcoming, make_match(id="b", date=kickoff + timedelta(days=1))],
            live=[make_match(id="a", venue="from-live", match_status=MatchStatus.LIVE)],
            old=[make_match(id="c", result="20-19", match_status=MatchStatus.FINISHED)],
        )
        all_matches = service.all_matches()
        assert [m.id for m in all_matches] == ["a", "b", "c"]
        assert all_matches[0].venue == "from-current"
        assert service.find_match("c") is not None
        assert service.find_match("zzz") is None

    def test_current_matches_live_first(self, seeded, make_match, kickoff) -> None:
        service, _ = seeded(
            live_upcoming=[
                make_match(id="soon", date=kickoff + timedelta(hours=2)),
                make_match(id="later", date=kickoff + timedelta(days=2)),
            ],
            live=[make_match(id="now", match_status=MatchStatus.LIVE)],
        )
        current = service.current_matches(kickoff + timedelta(minutes=30))
        assert [m.id for m in current] == ["now", "soon", "later"]

    def test_filter_finished_uses_old_source(self, seeded, make_match, kickoff) -> None:
        service, _ = seeded(
            live_upcoming=[make_match(id="up")],
            old=[
                make_match(id="older", date=kickoff - timedelta(days=7), result="30-25",
                           match_status=MatchStatus.FINISHED),
                make_match(id="newer", date=kickoff - timedelta(days=1), result="22-22",
                           match_status=MatchStatus.FINISHED),
                make_match(id="no-result", date=kickoff - timedelta(days=2), result="Inte publicerat",
                           match_status=MatchStatus.FINISHED),
            ],
        )
        finished = service.filter_matches(status_filter=StatusFilter.FINISHED)
        assert [m.id for m in finished] == ["newer", "older"]

    def test_filter_by_team(self, seeded, make_match, kickoff) -> None:
        service, _ = seeded(live_upcoming=[
            make_match(id="herr"),
            make_match(id="dam", team_type="Dam/utv", normalized_team="damutv",
                       date=kickoff + timedelta(hours=1)),
        ])
        assert [m.id for m in service.filter_matches("Dam/utv", "upcoming")] == ["dam"]
        assert [m.id for m in service.filter_matches("all")] == ["herr", "dam"]
        assert service.filter_matches("Dam/utv", StatusFilter.LIVE) == []

    def test_counts_and_grouping(self, seeded, make_match, kickoff) -> None:
        service, _ = seeded(
            live_upcoming=[make_match(id="u", series="Division 1")],
            live=[make_match(id="h", match_status=MatchStatus.HALFTIME)],
            old=[make_match(id="f", result="1-0", match_status=MatchStatus.FINISHED)],
        )
        counts = service.match_counts()
        assert (counts.total_matches, counts.live_matches, counts.upcoming_matches, counts.finished_matches) == (
            3, 1, 1, 1,
        )
        grouped = service.grouped()
        assert [m.id for m in grouped["by_status"]["live"]] == ["h"]
        assert list(grouped["by_series"]) == ["Division 1"]
        assert [m.id for m in grouped["by_team"]["A-lag Herrar"]] == ["u", "h", "f"]

    def test_unknown_query_raises(self, upstream, settings) -> None:
        service = MatchDataService(upstream(lambda r: []).client(settings), settings, queries=[QueryKind.LIVE])
        with pytest.raises(KeyError):
            service.query(QueryKind.OLD)
        assert service.filter_matches(status_filter="finished") == []

    def test_status_report(self, seeded, make_match) -> None:
        service, _ = seeded(live_upcoming=[make_match()])
        status = service.status()
        assert status["status"] == "ok"
        assert status["sources"]["liveUpcoming"]["matches"] == 1
        assert status["sources"]["old"]["has_payload"] is True
        assert status["open_sessions"] == 0


# ── Timeline and detail sessions ────────────────────────────────────────

def _live_detail(request):
    return {
        "events": [
            {"eventId": 1, "type": "Mål", "time": "03:10", "period": 1, "player": "Erik", "team": "HHF"},
            {"eventId": 2, "type": "Utvisning", "time": "12:00", "period": 1},
        ],
        "clockState": {"running": True, "reason": "running", "period": 1, "currentSeconds": 900},
        "penalties": [{"player": "Nils", "period": 1, "remainingSeconds": 100}],
    }


class TestDetail:

    def test_timeline_view_without_hydration(self, seeded, make_match, make_event, kickoff) -> None:
        match = make_match(match_status=MatchStatus.LIVE, match_feed=[
            make_event(event_id="1", time="02:00"),
            make_event(event_id="2", time="08:00"),
        ])
        service, _ = seeded(live=[match])
        view = service.timeline_view(match, now=kickoff + timedelta(minutes=10))
        assert [e.event_id for e in view.events] == ["2", "1"]
        assert view.clock_display is None
        assert view.quality.technical_issue is False

    @pytest.mark.asyncio
    async def test_timeline_view_after_hydration(self, seeded, make_match, kickoff) -> None:
        match = make_match(match_status=MatchStatus.LIVE)
        service, stub = seeded(_live_detail, live=[match])
        await service.hydrate(match)
        view = service.timeline_view(match)
        assert [e.event_id for e in view.events] == ["2", "1"]
        assert view.clock_display == "15:00"
        assert [p.player for p in view.penalties] == ["Nils"]
        assert [(s.player, s.goals) for s in view.top_scorers] == [("Erik", 1)]
        assert len(stub.requests) == 1

    @pytest.mark.asyncio
    async def test_detail_session_ticks_and_closes(self, seeded, make_match) -> None:
        match = make_match(match_status=MatchStatus.LIVE)
        service, _ = seeded(_live_detail, live=[match])
        session = await service.open_detail(match)
        assert session.ticker.is_running
        assert service.status()["open_sessions"] == 1
        await asyncio.sleep(0.05)
        assert session.simulator.ticks > 0
        assert session.view().clock_display != "15:00"

        await session.close()
        assert session.closed
        assert not session.ticker.is_running
        assert service.status()["open_sessions"] == 0

    @pytest.mark.asyncio
    async def test_detail_session_survives_upstream_error(self, seeded, make_match) -> None:
        match = make_match(match_status=MatchStatus.LIVE)
        service, _ = seeded(lambda request: httpx.Response(503), live=[match])
        async with await service.open_detail(match) as session:
            assert not session.ticker.is_running
            assert session.view().clock_display is None
        assert session.closed

    @pytest.mark.asyncio
    async def test_stop_closes_sessions(self, seeded, make_match) -> None:
        match = make_match(match_status=MatchStatus.LIVE)
        service, _ = seeded(_live_detail, live=[match])
        session = await service.open_detail(match)
        await service.stop()
        assert session.closed
        assert service.started is False


# ── Lifecycle ───────────────────────────────────────────────────────────

@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    client.start = AsyncMock()
    client.close = AsyncMock()
    client.fetch_matches = AsyncMock(return_value=[])
    client.fetch_match_detail = AsyncMock(return_value={"events": []})
    return client


@pytest.mark.asyncio
async def test_start_and_stop_drive_every_source(mock_client: MagicMock, settings, kickoff) -> None:
    service = MatchDataService(mock_client, settings, clock=lambda: kickoff)
    await service.start()
    await service.start()
    assert service.started
    await asyncio.sleep(0.02)
    await service.stop()

    mock_client.start.assert_awaited_once()
    mock_client.close.assert_awaited_once()
    queried = {call.args[0] for call in mock_client.fetch_matches.await_args_list}
    assert queried == {"liveUpcoming", "live", "old"}
    assert all(service.source(kind).closed for kind in QueryKind)
    assert service.query("old").has_payload is True
