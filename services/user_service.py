import logging
from typing import Optional

from fastapi import HTTPException, UploadFile
from pymongo.errors import PyMongoError

from core.errors import AuthError, ERROR_RESPONSES
from core.security import PasswordVerifier
from db.user_store import UserStore
from schemas.user_schema import UserCreate, UserPublic
from services.media_service import MediaUploader, MediaUploadError
from utils.timing import timeit

logger = logging.getLogger(__name__)


async def _upload(uploader: MediaUploader, file: Optional[UploadFile]) -> Optional[str]:
    if file is None:
        return None
    content = await file.read()
    if not content:
        return None
    return await uploader.upload(file.filename, content, file.content_type)


@timeit("register_user")
async def register_user(
    user: UserCreate,
    avatar: Optional[UploadFile],
    cover_image: Optional[UploadFile],
    store: UserStore,
    passwords: PasswordVerifier,
    uploader: MediaUploader,
) -> UserPublic:
    """Create a user account with its avatar (required) and cover image (optional).

    Blank fields are rejected by the route before the form becomes a UserCreate.
    """
    try:
        if await store.find_by_identity(user.username) or await store.find_by_identity(user.email):
            status_code, message = ERROR_RESPONSES[AuthError.CONFLICT]
            raise HTTPException(status_code=status_code, detail=message)

        if avatar is None:
            raise HTTPException(status_code=400, detail="Avatar file is required")

        try:
            avatar_url = await _upload(uploader, avatar)
        except MediaUploadError as e:
            logger.error(f"Avatar upload failed: {e}")
            avatar_url = None
        if not avatar_url:
            raise HTTPException(status_code=400, detail="Avatar file upload failed")

        try:
            cover_image_url = await _upload(uploader, cover_image)
        except MediaUploadError as e:
            # cover image is optional; register without it
            logger.warning(f"Cover image upload failed: {e}")
            cover_image_url = None

        created = await store.create({
            "username": user.username,
            "email": str(user.email),
            "full_name": user.full_name.strip(),
            "hashed_password": passwords.hash(user.password),
            "avatar_url": avatar_url,
            "cover_image_url": cover_image_url or "",
        })
    except PyMongoError as e:
        logger.error(f"Error creating user: {e}")
        raise HTTPException(status_code=500, detail="Error registering the user")

    if not created.ok:
        status_code, message = ERROR_RESPONSES[created.error]
        raise HTTPException(status_code=status_code, detail=message)

    logger.info(f"Registered user {created.value.id}")
    return created.value.public()
