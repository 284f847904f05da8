import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError

from authgate.auth import SessionManager, SessionUser
from authgate.avatar import AvatarTracker
from authgate.dependencies import (
    get_avatar_tracker,
    get_current_user,
    get_profile_store,
    get_session_manager,
    get_session_token,
)
from authgate.profile_gate import next_path_for
from authgate.profiles import ProfileStore
from authgate.schemas import ProfileRequest, ProfileResponse, ProfileSaveResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])

HANDLE_TAKEN_MESSAGE = "That handle is taken."


@router.post("", response_model=ProfileSaveResponse)
async def save_profile(
    body: ProfileRequest,
    user: SessionUser = Depends(get_current_user),
    token: str = Depends(get_session_token),
    profiles: ProfileStore = Depends(get_profile_store),
    avatars: AvatarTracker = Depends(get_avatar_tracker),
    sessions: SessionManager = Depends(get_session_manager)
):
    """
    Create or update the signed-in user's profile, then kick off the
    avatar sample. A failed sample is reported, not raised.
    """
    if profiles.is_handle_taken(body.handle, exclude_user_id=user.user_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=HANDLE_TAKEN_MESSAGE)

    try:
        profiles.upsert_profile(user.user_id, body.handle, body.display_name, body.bio)
    except IntegrityError:
        # Someone claimed the handle between the check and the write
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=HANDLE_TAKEN_MESSAGE)

    avatar_status = await avatars.run(user.user_id)

    return ProfileSaveResponse(
        next_path=next_path_for(sessions.authenticate(token)),
        avatar_status=avatar_status
    )


@router.get("", response_model=ProfileResponse)
async def get_profile(
    user: SessionUser = Depends(get_current_user),
    profiles: ProfileStore = Depends(get_profile_store),
    avatars: AvatarTracker = Depends(get_avatar_tracker)
):
    profile = profiles.get_profile(user.user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

    avatar = avatars.get_status(user.user_id)
    return ProfileResponse(
        handle=profile["handle"],
        display_name=profile["display_name"],
        bio=profile["bio"],
        avatar_status=avatar["status"] if avatar else None
    )
