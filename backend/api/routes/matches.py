"""
Match REST endpoints.

GET  /v1/matches                      QueryView for one polling query.
POST /v1/matches/refresh              Out-of-cycle refresh of one query.
GET  /v1/matches/filter               Team/status filtered list with counts.
GET  /v1/matches/{id}/timeline        Display-ordered timeline, clock and penalties.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.enums import QueryKind, StatusFilter
from shared.utils.http_client import UpstreamError
from shared.utils.logging import get_logger

from api.dependencies import get_match_service
from api.orchestrator import MatchDataService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/matches", tags=["matches"])


def _dump(model: Any) -> Any:
    return model.model_dump(by_alias=True, mode="json")


@router.get("")
async def list_matches(
    query: QueryKind = Query(QueryKind.LIVE_UPCOMING),
    service: MatchDataService = Depends(get_match_service),
) -> dict[str, Any]:
    """Current state of one polling query (matches, loading, error, hasPayload)."""
    try:
        view = service.query(query)
    except KeyError as exc:
        raise HTTPException(status_code=422, detail=str(exc.args[0])) from exc
    return _dump(view)


@router.post("/refresh")
async def refresh_matches(
    query: QueryKind = Query(QueryKind.LIVE_UPCOMING),
    force: bool = Query(False),
    service: MatchDataService = Depends(get_match_service),
) -> dict[str, Any]:
    """Refresh one query now. Upstream failures surface as 502 via the exception handlers."""
    try:
        await service.refresh(query, force=force)
    except KeyError as exc:
        raise HTTPException(status_code=422, detail=str(exc.args[0])) from exc
    return _dump(service.query(query))


@router.get("/filter")
async def filter_matches(
    status: StatusFilter = Query(StatusFilter.CURRENT),
    team: Optional[str] = Query(None),
    service: MatchDataService = Depends(get_match_service),
) -> dict[str, Any]:
    matches = service.filter_matches(team=team, status_filter=status)
    return {
        "status": status.value,
        "team": team,
        "matches": [_dump(m) for m in matches],
        "counts": _dump(service.match_counts()),
    }


@router.get("/{match_id}/timeline")
async def get_match_timeline(
    match_id: str,
    hydrate: bool = Query(True),
    service: MatchDataService = Depends(get_match_service),
) -> dict[str, Any]:
    """
    Timeline view for one match. Hydrates first unless `hydrate=false`;
    a failed hydration still returns the list-feed fallback.
    """
    match = service.find_match(match_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")

    hydration_error: Optional[str] = None
    if hydrate:
        try:
            await service.hydrate(match)
        except UpstreamError as exc:
            hydration_error = str(exc)
            logger.info("timeline_served_from_cache", match_id=match_id, error=hydration_error)

    body = _dump(service.timeline_view(match))
    body["hydrationError"] = hydration_error
    return body
