import logging
from typing import Optional, Sequence, Union

from pymongo.errors import PyMongoError

from core.errors import AuthError, Outcome
from core.security import ACCESS, REFRESH, PasswordVerifier, TokenCodec
from db.user_store import UserStore
from schemas.user_schema import LoginResult, TokenPair, UserInDB, UserPublic

logger = logging.getLogger(__name__)

# Codec failures that mean "this is not a token we issued"
_BAD_TOKEN = (AuthError.INVALID_SIGNATURE, AuthError.MALFORMED)


class SessionManager:
    """Login, refresh-token rotation and logout.

    Each user holds at most one live refresh token, stored on the user
    record. Login overwrites it, refresh swaps it for a new one and logout
    clears it, so any other token presented for refresh is rejected.
    """

    def __init__(self, store: UserStore, codec: TokenCodec, passwords: PasswordVerifier):
        self.store = store
        self.codec = codec
        self.passwords = passwords

    def _issue_pair(self, user: UserInDB) -> TokenPair:
        return TokenPair(
            access_token=self.codec.issue_access(
                user.id, username=user.username, email=user.email, full_name=user.full_name
            ),
            refresh_token=self.codec.issue_refresh(user.id),
        )

    async def login(self, identity: Union[str, Sequence[str]], password: str) -> Outcome[LoginResult]:
        """Check the password of the first account matching one of the identities.

        A username is tried before an email when both are given.
        """
        candidates = [identity] if isinstance(identity, str) else list(identity)
        try:
            user = None
            for candidate in candidates:
                user = await self.store.find_by_identity(candidate)
                if user is not None:
                    break
            if user is None:
                self.passwords.dummy_verify()
                return Outcome.failure(AuthError.NOT_FOUND)
            if not self.passwords.verify(password, user.hashed_password):
                logger.info(f"Login rejected for user {user.id}: wrong password")
                return Outcome.failure(AuthError.INVALID_CREDENTIALS)

            tokens = self._issue_pair(user)
            if not await self.store.set_refresh_token(user.id, tokens.refresh_token):
                return Outcome.failure(AuthError.NOT_FOUND)
        except PyMongoError as e:
            logger.error(f"Error logging in user: {e}")
            return Outcome.failure(AuthError.INTERNAL_FAILURE)

        logger.info(f"User {user.id} logged in")
        return Outcome.success(LoginResult(user=user.public(), **tokens.model_dump()))

    async def refresh(self, presented: Optional[str]) -> Outcome[TokenPair]:
        if not presented:
            return Outcome.failure(AuthError.UNAUTHORIZED)

        checked = self.codec.verify(presented, REFRESH)
        if not checked.ok:
            if checked.error in _BAD_TOKEN:
                return Outcome.failure(AuthError.INVALID_TOKEN)
            return Outcome.failure(checked.error)

        try:
            user = await self.store.find_by_id(checked.value)
            if user is None:
                return Outcome.failure(AuthError.INVALID_TOKEN)
            if user.refresh_token != presented:
                logger.warning(f"Stale refresh token presented for user {user.id}")
                return Outcome.failure(AuthError.TOKEN_REUSED)

            tokens = self._issue_pair(user)
            # Conditional write: a concurrent refresh with the same token loses here.
            if not await self.store.swap_refresh_token(user.id, presented, tokens.refresh_token):
                logger.warning(f"Concurrent refresh lost the rotation race for user {user.id}")
                return Outcome.failure(AuthError.TOKEN_REUSED)
        except PyMongoError as e:
            logger.error(f"Error refreshing tokens: {e}")
            return Outcome.failure(AuthError.INTERNAL_FAILURE)

        logger.info(f"Rotated refresh token for user {user.id}")
        return Outcome.success(tokens)

    async def logout(self, user_id: str) -> Outcome[None]:
        try:
            if not await self.store.set_refresh_token(user_id, None):
                return Outcome.failure(AuthError.NOT_FOUND)
        except PyMongoError as e:
            logger.error(f"Error logging out user {user_id}: {e}")
            return Outcome.failure(AuthError.INTERNAL_FAILURE)
        logger.info(f"User {user_id} logged out")
        return Outcome.success()


class AuthGate:
    """Resolves an access token to the user it was issued for. Read-only."""

    def __init__(self, store: UserStore, codec: TokenCodec):
        self.store = store
        self.codec = codec

    async def authenticate(self, token: Optional[str]) -> Outcome[UserPublic]:
        if not token:
            return Outcome.failure(AuthError.UNAUTHORIZED)
        checked = self.codec.verify(token, ACCESS)
        if not checked.ok:
            if checked.error in _BAD_TOKEN:
                return Outcome.failure(AuthError.INVALID_TOKEN)
            return Outcome.failure(checked.error)
        try:
            user = await self.store.find_by_id(checked.value)
        except PyMongoError as e:
            logger.error(f"Error resolving access token subject: {e}")
            return Outcome.failure(AuthError.INTERNAL_FAILURE)
        if user is None:
            return Outcome.failure(AuthError.NOT_FOUND)
        return Outcome.success(user.public())
