"""
Dependency injection for the API service.
Provides the shared MatchDataService to route handlers.
"""
from __future__ import annotations

from api.orchestrator import MatchDataService

# Module-level singleton, initialized at startup
_service: MatchDataService | None = None


def init_dependencies(service: MatchDataService) -> None:
    """Initialize the module-level singleton. Called once at startup."""
    global _service
    _service = service


def get_match_service() -> MatchDataService:
    """FastAPI dependency: returns the shared MatchDataService."""
    if _service is None:
        raise RuntimeError("MatchDataService not initialized, call init_dependencies first")
    return _service
