"""
Route Dependencies
==================

FastAPI dependencies resolving the engine components wired onto
`app.state` by the application lifespan.

Version: 0.1.0
"""

from fastapi import HTTPException, Request, status

from services.applicability.services.locations import LocationAggregator
from services.applicability.services.matcher import ApplicabilityMatcher
from services.applicability.services.streamer import ResultStreamer


def _component(request: Request, name: str) -> object:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Screening engine not initialised: {name}",
        )
    return component


def get_matcher(request: Request) -> ApplicabilityMatcher:
    return _component(request, "matcher")  # type: ignore[return-value]


def get_streamer(request: Request) -> ResultStreamer:
    return _component(request, "streamer")  # type: ignore[return-value]


def get_aggregator(request: Request) -> LocationAggregator:
    return _component(request, "aggregator")  # type: ignore[return-value]
