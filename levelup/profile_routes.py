"""Learning profile REST endpoints consumed by the dashboard."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from .errors import InvalidEventError, StorageFailure
from .learning_profile import LearningProfile, normalize_user_id
from .profile_service import LearningProfileService


router = APIRouter(prefix="/api/learning-profile", tags=["learning-profile"])
logger = logging.getLogger(__name__)

STORAGE_UNAVAILABLE = "Learning profile storage is unavailable; nothing was changed."


class LearningProfileResponse(BaseModel):
    profile: LearningProfile
    fallback: bool = False


def get_profile_service(request: Request) -> LearningProfileService:
    return request.app.state.profile_service


def _normalized(user_id: str) -> str:
    try:
        return normalize_user_id(user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


def _storage_unavailable(exc: StorageFailure) -> HTTPException:
    logger.warning("Profile request failed: %s", exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=STORAGE_UNAVAILABLE)


@router.get("/{user_id}", response_model=LearningProfileResponse, status_code=status.HTTP_200_OK)
async def read_learning_profile(
    user_id: str,
    service: LearningProfileService = Depends(get_profile_service),
) -> LearningProfileResponse:
    normalized = _normalized(user_id)
    profile = await service.get_or_create(normalized)
    return LearningProfileResponse(profile=profile, fallback=service.is_fallback(normalized))


@router.post("/{user_id}/events", response_model=LearningProfileResponse, status_code=status.HTTP_200_OK)
async def record_learning_event(
    user_id: str,
    payload: Dict[str, Any] = Body(...),
    service: LearningProfileService = Depends(get_profile_service),
) -> LearningProfileResponse:
    normalized = _normalized(user_id)
    try:
        profile = await service.record_event(normalized, payload)
    except InvalidEventError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except StorageFailure as exc:
        raise _storage_unavailable(exc) from exc
    return LearningProfileResponse(profile=profile)


@router.post("/{user_id}/reset", response_model=LearningProfileResponse, status_code=status.HTTP_200_OK)
async def clear_and_recreate_profile(
    user_id: str,
    service: LearningProfileService = Depends(get_profile_service),
) -> LearningProfileResponse:
    normalized = _normalized(user_id)
    try:
        profile = await service.clear_and_recreate(normalized)
    except StorageFailure as exc:
        raise _storage_unavailable(exc) from exc
    return LearningProfileResponse(profile=profile, fallback=service.is_fallback(normalized))


@router.post("/{user_id}/refresh", response_model=LearningProfileResponse, status_code=status.HTTP_200_OK)
async def refresh_learning_profile(
    user_id: str,
    service: LearningProfileService = Depends(get_profile_service),
) -> LearningProfileResponse:
    normalized = _normalized(user_id)
    try:
        profile = await service.refresh(normalized)
    except StorageFailure as exc:
        raise _storage_unavailable(exc) from exc
    return LearningProfileResponse(profile=profile)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_learning_profile(
    user_id: str,
    service: LearningProfileService = Depends(get_profile_service),
) -> Response:
    normalized = _normalized(user_id)
    try:
        await service.delete(normalized)
    except StorageFailure as exc:
        raise _storage_unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["LearningProfileResponse", "get_profile_service", "router"]
