"""HTTP routes for per-user notification preferences."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import Principal
from ..dependencies import get_current_principal, get_repository
from ..repository import NotificationRepository
from ..schemas import PreferenceResponse, PreferenceUpdate

router = APIRouter(prefix="/notifications/preferences", tags=["preferences"])


@router.get("", response_model=PreferenceResponse)
async def get_preferences(
    principal: Principal = Depends(get_current_principal),
    repository: NotificationRepository = Depends(get_repository),
) -> PreferenceResponse:
    preference = await repository.get_preference(principal.user_id)
    if preference is None:
        return PreferenceResponse()
    return PreferenceResponse.model_validate(preference)


@router.put("", response_model=PreferenceResponse)
async def update_preferences(
    payload: PreferenceUpdate,
    principal: Principal = Depends(get_current_principal),
    repository: NotificationRepository = Depends(get_repository),
) -> PreferenceResponse:
    updates = payload.model_dump(exclude_none=True)
    preference = await repository.upsert_preference(principal.user_id, updates)
    return PreferenceResponse.model_validate(preference)
