from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.dependencies import get_current_user, get_session_manager, raise_for
from core.errors import AuthError
from schemas.user_schema import RefreshRequest, UserLogin, UserPublic
from services.auth_service import SessionManager
from utils.responses import REFRESH_COOKIE, clear_auth_cookies, no_store_json, set_auth_cookies
from utils.timing import timeit

router = APIRouter()


@router.post("/login")
@timeit("login")
async def login(payload: UserLogin, sessions: SessionManager = Depends(get_session_manager)):
    if not payload.identities:
        raise HTTPException(status_code=400, detail="Username or email is required")
    result = await sessions.login(payload.identities, payload.password)
    if not result.ok:
        # unknown identity and wrong password answer the same way
        if result.error in (AuthError.NOT_FOUND, AuthError.INVALID_CREDENTIALS):
            raise_for(AuthError.INVALID_CREDENTIALS)
        raise_for(result.error)
    login_result = result.value
    response = no_store_json(login_result.model_dump(), message="User logged in successfully")
    return set_auth_cookies(response, login_result.access_token, login_result.refresh_token)


@router.post("/refresh-token")
@timeit("refresh_token")
async def refresh_token(
    request: Request,
    payload: Optional[RefreshRequest] = None,
    sessions: SessionManager = Depends(get_session_manager),
):
    presented = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
    result = await sessions.refresh(presented)
    if not result.ok:
        if result.error is AuthError.INVALID_TOKEN:
            raise_for(result.error, "Invalid refresh token")
        raise_for(result.error)
    tokens = result.value
    response = no_store_json(tokens.model_dump(), message="Access token refreshed")
    return set_auth_cookies(response, tokens.access_token, tokens.refresh_token)


@router.post("/logout")
@timeit("logout")
async def logout(
    current_user: UserPublic = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    result = await sessions.logout(current_user.id)
    if not result.ok:
        raise_for(result.error)
    return clear_auth_cookies(no_store_json({}, message="User logged out successfully"))
