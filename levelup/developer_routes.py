"""Developer utilities for performance tracking and profile inspection.

Only mounted outside production when ``LEVELUP_DEBUG_ENDPOINTS`` is set.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from .errors import StorageFailure
from .learning_profile import normalize_user_id
from .performance_tracker import PerformanceReport, PerformanceTracker
from .profile_routes import get_profile_service
from .profile_service import LearningProfileService, ProfileInspection
from .telemetry import EventBus


router = APIRouter(prefix="/api/developer", tags=["developer"])


class TrackerStatus(BaseModel):
    enabled: bool
    changed: bool
    sample_count: int
    capacity: int


def get_tracker(request: Request) -> PerformanceTracker:
    return request.app.state.performance_tracker


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def _status(tracker: PerformanceTracker, changed: bool) -> TrackerStatus:
    return TrackerStatus(
        enabled=tracker.enabled,
        changed=changed,
        sample_count=len(tracker.snapshot()),
        capacity=tracker.capacity,
    )


@router.post("/performance/enable", response_model=TrackerStatus, status_code=status.HTTP_200_OK)
def enable_performance_tracking(
    tracker: PerformanceTracker = Depends(get_tracker),
    bus: EventBus = Depends(get_event_bus),
) -> TrackerStatus:
    changed = tracker.enable()
    if changed:
        bus.emit("performance_tracking_toggled", enabled=True)
    return _status(tracker, changed)


@router.post("/performance/disable", response_model=TrackerStatus, status_code=status.HTTP_200_OK)
def disable_performance_tracking(
    tracker: PerformanceTracker = Depends(get_tracker),
    bus: EventBus = Depends(get_event_bus),
) -> TrackerStatus:
    changed = tracker.disable()
    if changed:
        bus.emit("performance_tracking_toggled", enabled=False)
    return _status(tracker, changed)


@router.get("/performance/report", response_model=PerformanceReport, status_code=status.HTTP_200_OK)
def performance_report(tracker: PerformanceTracker = Depends(get_tracker)) -> PerformanceReport:
    return tracker.analyze()


@router.post("/performance/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_performance_samples(tracker: PerformanceTracker = Depends(get_tracker)) -> Response:
    tracker.reset()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/profiles/{user_id}/inspect",
    response_model=ProfileInspection,
    status_code=status.HTTP_200_OK,
)
async def inspect_learning_profile(
    user_id: str,
    service: LearningProfileService = Depends(get_profile_service),
) -> ProfileInspection:
    try:
        normalized = normalize_user_id(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    try:
        return await service.inspect(normalized)
    except StorageFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


__all__ = ["router"]
