"""
Timeline dedup, merge and display ordering.

Storage order is source order; `sort_for_display` produces the
newest-first view without touching the stored collection.
"""
from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import Iterable, Optional

from shared.models.domain import TimelineEvent, TopScorer
from shared.models.enums import EventKind

_CLOCK_RE = re.compile(r"^\s*(\d+):(\d{1,2})\s*(?:\+\s*(\d+(?::\d{1,2})?))?\s*$")

_GOAL_WORDS = ("mål", "goal")
_NOT_GOAL_WORDS = ("miss", "räddning", "räddad", "saved", "målvakt", "goalkeeper")
_END_RE = re.compile(r"slut|\bend\b|full ?time|halvtid")


def event_key(event: TimelineEvent) -> str:
    """Identity key: upstream event id when present, else the content tuple."""
    if event.event_id:
        return f"id:{event.event_id}"
    return "|".join(
        (
            event.time,
            event.type,
            event.description,
            "" if event.home_score is None else str(event.home_score),
            "" if event.away_score is None else str(event.away_score),
        )
    )


def dedupe(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    """Drop repeats, first occurrence wins, source order kept."""
    seen: set[str] = set()
    unique: list[TimelineEvent] = []
    for event in events:
        key = event_key(event)
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def merge_timelines(
    primary: Iterable[TimelineEvent],
    secondary: Iterable[TimelineEvent],
) -> list[TimelineEvent]:
    """Concatenate then dedupe; `primary` wins ties."""
    return dedupe([*primary, *secondary])


def parse_clock_seconds(value: Optional[str]) -> int:
    """
    "25:07" -> 1507, "30:00+2" -> 1920, "30:00+1:30" -> 1890.
    Returns -1 when the value cannot be parsed.
    """
    if not value:
        return -1
    match = _CLOCK_RE.match(value)
    if not match:
        return -1
    minutes, seconds, extra = match.groups()
    total = int(minutes) * 60 + int(seconds)
    if extra:
        if ":" in extra:
            extra_min, extra_sec = extra.split(":", 1)
            total += int(extra_min) * 60 + int(extra_sec)
        else:
            total += int(extra) * 60
    return total


def classify_event(event: TimelineEvent) -> EventKind:
    label = event.type.strip().lower()
    if any(w in label for w in _GOAL_WORDS) and not any(w in label for w in _NOT_GOAL_WORDS):
        return EventKind.GOAL
    if _END_RE.search(label):
        return EventKind.END
    return EventKind.OTHER


_KIND_RANK = {EventKind.GOAL: 0, EventKind.OTHER: 1, EventKind.END: 2}


def sort_for_display(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    """Period desc, time desc; on ties goals first and end markers last."""
    indexed = list(enumerate(events))
    indexed.sort(
        key=lambda item: (
            -item[1].period,
            -parse_clock_seconds(item[1].time),
            _KIND_RANK[classify_event(item[1])],
            item[0],
        )
    )
    return [event for _, event in indexed]


def group_by_period(events: Iterable[TimelineEvent]) -> list[tuple[int, list[TimelineEvent]]]:
    """Display groups: newest period first, period 0 (untied notes) last."""
    groups: dict[int, list[TimelineEvent]] = defaultdict(list)
    for event in sort_for_display(events):
        groups[event.period].append(event)
    order = sorted((p for p in groups if p > 0), reverse=True)
    if 0 in groups:
        order.append(0)
    return [(period, groups[period]) for period in order]


def top_scorers_from_events(
    events: Iterable[TimelineEvent],
    limit: int = 3,
) -> list[TopScorer]:
    """Count goal events per player, top `limit` per team."""
    goals: Counter[tuple[str, str, Optional[str]]] = Counter()
    for event in events:
        if not event.player or classify_event(event) != EventKind.GOAL:
            continue
        goals[(event.team or "Okänt lag", event.player, event.player_number)] += 1

    per_team: dict[str, list[TopScorer]] = defaultdict(list)
    for (team, player, number), count in goals.most_common():
        if len(per_team[team]) < limit:
            per_team[team].append(
                TopScorer(team=team, player=player, player_number=number, goals=count)
            )
    return [scorer for scorers in per_team.values() for scorer in scorers]
