"""Unit tests for timeline dedup, merge, clock parsing and display ordering."""
from __future__ import annotations

import pytest

from builder.timeline.merge import (
    classify_event,
    dedupe,
    event_key,
    group_by_period,
    merge_timelines,
    parse_clock_seconds,
    sort_for_display,
    top_scorers_from_events,
)
from shared.models.enums import EventKind


# ── Identity and dedup ──────────────────────────────────────────────────

def test_event_key_prefers_event_id(make_event) -> None:
    assert event_key(make_event(event_id="42")) == "id:42"


def test_event_key_composite(make_event) -> None:
    event = make_event(time="12:00", type="Mål", description="Mål", home_score=3, away_score=2)
    assert event_key(event) == "12:00|Mål|Mål|3|2"


def test_dedupe_first_occurrence_wins(make_event) -> None:
    first = make_event(event_id="1", description="first")
    second = make_event(event_id="1", description="second")
    other = make_event(event_id="2")
    assert dedupe([first, other, second]) == [first, other]


def test_dedupe_composite_key(make_event) -> None:
    a = make_event(time="01:00", type="Mål", home_score=1, away_score=0)
    b = make_event(time="01:00", type="Mål", home_score=1, away_score=0, player="Someone")
    c = make_event(time="01:00", type="Mål", home_score=2, away_score=0)
    assert dedupe([a, b, c]) == [a, c]


def test_dedupe_is_idempotent_and_never_grows(make_event) -> None:
    events = [
        make_event(event_id="1"),
        make_event(time="02:00"),
        make_event(event_id="1"),
        make_event(time="02:00"),
        make_event(time="03:00"),
    ]
    once = dedupe(events)
    assert dedupe(once) == once
    assert len(once) <= len(events)
    assert dedupe([]) == []


def test_merge_primary_wins_ties(make_event) -> None:
    detailed = make_event(event_id="7", description="Mål av Erik Ek", player="Erik Ek")
    summary = make_event(event_id="7", description="Mål")
    extra = make_event(event_id="8")
    assert merge_timelines([detailed], [summary, extra]) == [detailed, extra]


# ── Clock parsing ───────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "value, expected",
    [
        ("25:07", 1507),
        ("0:05", 5),
        ("60:00", 3600),
        ("30:00+2", 1920),
        ("30:00+1:30", 1890),
        (" 12:30 ", 750),
        ("", -1),
        (None, -1),
        ("abc", -1),
        ("12", -1),
    ],
)
def test_parse_clock_seconds(value, expected: int) -> None:
    assert parse_clock_seconds(value) == expected


# ── Classification and ordering ─────────────────────────────────────────

@pytest.mark.parametrize(
    "label, kind",
    [
        ("Mål", EventKind.GOAL),
        ("Straffmål", EventKind.GOAL),
        ("Goal", EventKind.GOAL),
        ("Målvaktsbyte", EventKind.OTHER),
        ("Räddning", EventKind.OTHER),
        ("Matchslut", EventKind.END),
        ("Halvtid", EventKind.END),
        ("Period end", EventKind.END),
        ("Utvisning", EventKind.OTHER),
        ("Timeout", EventKind.OTHER),
    ],
)
def test_classify_event(make_event, label: str, kind: EventKind) -> None:
    assert classify_event(make_event(type=label)) == kind


def test_sort_for_display_period_then_time_desc(make_event) -> None:
    p1_early = make_event(period=1, time="05:00", event_id="a")
    p1_late = make_event(period=1, time="25:00", event_id="b")
    p2_early = make_event(period=2, time="31:00", event_id="c")
    p2_stoppage = make_event(period=2, time="60:00+1", event_id="d")
    ordered = sort_for_display([p1_early, p2_early, p1_late, p2_stoppage])
    assert [e.event_id for e in ordered] == ["d", "c", "b", "a"]


def test_sort_for_display_tie_breaks(make_event) -> None:
    note = make_event(period=2, time="60:00", type="Händelse", event_id="note")
    end = make_event(period=2, time="60:00", type="Matchslut", event_id="end")
    goal = make_event(period=2, time="60:00", type="Mål", event_id="goal")
    other = make_event(period=2, time="60:00", type="Timeout", event_id="other")
    ordered = sort_for_display([end, note, goal, other])
    assert [e.event_id for e in ordered] == ["goal", "note", "other", "end"]


def test_sort_for_display_does_not_mutate_input(make_event) -> None:
    events = [make_event(time="01:00", event_id="1"), make_event(time="02:00", event_id="2")]
    sort_for_display(events)
    assert [e.event_id for e in events] == ["1", "2"]


def test_group_by_period_puts_untied_notes_last(make_event) -> None:
    events = [
        make_event(period=0, time="", event_id="kickoff"),
        make_event(period=1, time="10:00", event_id="p1"),
        make_event(period=2, time="40:00", event_id="p2"),
    ]
    groups = group_by_period(events)
    assert [period for period, _ in groups] == [2, 1, 0]
    assert groups[2][1][0].event_id == "kickoff"


# ── Top scorers ─────────────────────────────────────────────────────────

def test_top_scorers_from_events(make_event) -> None:
    events = [
        make_event(type="Mål", player="Erik", team="HHF", event_id="1"),
        make_event(type="Mål", player="Erik", team="HHF", event_id="2"),
        make_event(type="Mål", player="Nils", team="HHF", event_id="3"),
        make_event(type="Mål", player="Olle", team="HHF", event_id="4"),
        make_event(type="Mål", player="Pelle", team="HHF", event_id="5"),
        make_event(type="Mål", player="Anna", team="IFK", event_id="6"),
        make_event(type="Mål", event_id="7"),
        make_event(type="Utvisning", player="Erik", team="HHF", event_id="8"),
    ]
    scorers = top_scorers_from_events(events, limit=3)
    hhf = [s for s in scorers if s.team == "HHF"]
    assert len(hhf) == 3
    assert (hhf[0].player, hhf[0].goals) == ("Erik", 2)
    assert [(s.player, s.goals) for s in scorers if s.team == "IFK"] == [("Anna", 1)]
