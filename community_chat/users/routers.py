import logging
import uuid
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from community_chat.channels.schemas import UserChannelsResponseModel
from community_chat.channels.service import ChannelService
from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess, Order, eq
from community_chat.core.dependencies import (
    get_channel_service,
    get_current_user_id,
    get_data_access,
    get_settings,
)
from community_chat.core.exceptions import BackendError

from .schemas import AvatarResponseModel, GetUsersResponseModel, ProfileModel


logger = logging.getLogger(__name__)
router = APIRouter()

PROFILE_COLUMNS = "id, username, prefecture, age_group, occupation, avatar_url, created_at"
AVATAR_MAX_BYTES = 5 * 1024 * 1024


def blob_path_from_url(url: str | None, bucket: str) -> str | None:
    """Path inside `bucket` of a public storage URL, if it points there."""
    if not url:
        return None
    marker = f"/{bucket}/"
    if marker not in url:
        return None
    return url.rsplit(marker, 1)[1].split("?", 1)[0] or None


@router.get("", response_model=GetUsersResponseModel, status_code=200)
async def list_users(
    user_id: str = Depends(get_current_user_id),
    data: DataAccess = Depends(get_data_access),
):
    """Member directory, ordered by username."""
    rows = await data.query(
        "profiles", columns=PROFILE_COLUMNS, order=[Order("username")]
    )
    return {"users": rows}


@router.put("/me/avatar", response_model=AvatarResponseModel, status_code=200)
async def upload_avatar(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    data: DataAccess = Depends(get_data_access),
    settings: Settings = Depends(get_settings),
):
    """
    Replace the authenticated user's avatar.

    The image is stored in the avatars bucket, its public URL is saved on the
    profile, and the previous image is removed.

    **Errors**
    - 400: Not an image, or empty
    - 413: Larger than 5 MB
    - 500: Storage or database error
    """
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Avatar must be an image.")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Avatar file is empty.")
    if len(content) > AVATAR_MAX_BYTES:
        raise HTTPException(status_code=413, detail="Avatar must be 5 MB or smaller.")

    bucket = settings.avatar_bucket
    rows = await data.query(
        "profiles", [eq("id", user_id)], columns="avatar_url", limit=1
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Profile not found.")
    previous_path = blob_path_from_url(rows[0].get("avatar_url"), bucket)

    suffix = PurePosixPath(file.filename or "").suffix.lower()
    path = f"{user_id}/{uuid.uuid4().hex}{suffix}"
    avatar_url = await data.upload_blob(bucket, path, content, content_type)

    try:
        await data.update("profiles", {"avatar_url": avatar_url}, [eq("id", user_id)])
    except BackendError:
        await data.delete_blob(bucket, path)
        raise

    if previous_path and previous_path != path:
        try:
            await data.delete_blob(bucket, previous_path)
        except BackendError as e:
            logger.warning(f"old_avatar_not_removed user={user_id} path={previous_path} error={e}")

    logger.info(f"avatar_updated user={user_id} path={path}")
    return {"avatar_url": avatar_url}


@router.get("/{profile_id}", response_model=ProfileModel, status_code=200)
async def get_user(
    profile_id: str,
    user_id: str = Depends(get_current_user_id),
    data: DataAccess = Depends(get_data_access),
):
    """
    A single member profile.

    **Errors**
    - 404: No such user
    """
    rows = await data.query(
        "profiles", [eq("id", profile_id)], columns=PROFILE_COLUMNS, limit=1
    )
    if not rows:
        raise HTTPException(status_code=404, detail="User not found.")
    return rows[0]


@router.get(
    "/{profile_id}/channels", response_model=UserChannelsResponseModel, status_code=200
)
async def get_user_channels(
    profile_id: str,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Channels a member owns, and the other channels they joined.
    """
    owned, joined = await channels.user_channels(profile_id)
    return {"owned": owned, "joined": joined}
