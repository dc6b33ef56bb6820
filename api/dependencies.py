from typing import NoReturn, Optional
import logging

from fastapi import Depends, HTTPException, Request

from core.errors import AuthError, ERROR_RESPONSES
from core.security import (
    PasswordVerifier,
    TokenCodec,
    get_password_verifier,
    get_token_codec,
    oauth2_scheme,
)
from db.mongodb import get_mongo_db
from db.user_store import MongoUserStore, UserStore
from schemas.user_schema import UserPublic
from services.auth_service import AuthGate, SessionManager
from utils.logging_config import user_id_var
from utils.responses import ACCESS_COOKIE

logger = logging.getLogger(__name__)


def raise_for(error: AuthError, message: Optional[str] = None) -> NoReturn:
    status_code, default_message = ERROR_RESPONSES[error]
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    raise HTTPException(status_code=status_code, detail=message or default_message, headers=headers)


def get_user_store() -> UserStore:
    mdb = get_mongo_db()
    if mdb is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return MongoUserStore(mdb.users)


def get_session_manager(
    store: UserStore = Depends(get_user_store),
    codec: TokenCodec = Depends(get_token_codec),
    passwords: PasswordVerifier = Depends(get_password_verifier),
) -> SessionManager:
    return SessionManager(store, codec, passwords)


def get_auth_gate(
    store: UserStore = Depends(get_user_store),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthGate:
    return AuthGate(store, codec)


async def get_current_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    gate: AuthGate = Depends(get_auth_gate),
) -> UserPublic:
    token = request.cookies.get(ACCESS_COOKIE) or bearer
    result = await gate.authenticate(token)
    if not result.ok:
        if result.error is AuthError.NOT_FOUND:
            raise_for(AuthError.INVALID_TOKEN, "Invalid access token")
        raise_for(result.error)
    user = result.value
    request.state.user = user
    user_id_var.set(user.id)
    return user
