from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from api.dependencies import get_current_user, get_user_store
from core.security import PasswordVerifier, get_password_verifier
from db.user_store import UserStore
from schemas.user_schema import UserCreate, UserPublic
from services.media_service import MediaUploader, get_media_uploader
from services.user_service import register_user
from utils.responses import no_store_json
from utils.timing import timeit

router = APIRouter()


@router.post("/register", status_code=201)
@timeit("register")
async def register(
    fullName: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
    store: UserStore = Depends(get_user_store),
    passwords: PasswordVerifier = Depends(get_password_verifier),
    uploader: MediaUploader = Depends(get_media_uploader),
):
    if any(not field.strip() for field in (fullName, email, username, password)):
        raise HTTPException(status_code=400, detail="All fields are required")
    try:
        user = UserCreate(full_name=fullName, email=email.strip(), username=username.strip(), password=password)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid email address")

    created = await register_user(user, avatar, coverImage, store, passwords, uploader)
    return no_store_json(created.model_dump(), message="User registered successfully", status_code=201)


@router.get("/me")
@timeit("me")
async def read_users_me(current_user: UserPublic = Depends(get_current_user)):
    return no_store_json(current_user.model_dump(), message="Current user fetched successfully")
