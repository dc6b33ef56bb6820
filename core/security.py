from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional
import logging
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import OAuth2PasswordBearer

from core.config import settings
from core.errors import AuthError, Outcome

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bearer header is optional; the auth gate falls back to the accessToken cookie.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordVerifier:
    """One-way password hashing backed by bcrypt."""

    def __init__(self, context: CryptContext = pwd_context):
        self._context = context

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, stored_hash: Optional[str]) -> bool:
        """Return True when plaintext matches stored_hash.

        A mismatch, or a hash passlib cannot identify, is a normal False
        result rather than an error.
        """
        if not plaintext or not stored_hash:
            return False
        try:
            return self._context.verify(plaintext, stored_hash)
        except (ValueError, TypeError) as e:
            logger.warning(f"Password hash could not be verified: {e}")
            return False

    def dummy_verify(self) -> None:
        """Spend the same time as a real verify when there is no user to check."""
        self._context.dummy_verify()


class TokenCodec:
    """Issues and verifies signed, expiring JWTs.

    Access and refresh tokens are signed with separate keys, so a leaked
    access key never validates a refresh token and vice versa.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh signing keys are required")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh signing keys must differ")
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("Token lifetimes must be positive")
        self._keys = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self._algorithm = algorithm
        self._clock = clock

    def _issue(self, kind: str, subject_id: str, extra: dict) -> str:
        now = self._clock()
        to_encode = dict(extra)
        to_encode.update({
            "sub": str(subject_id),
            "type": kind,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttls[kind]).timestamp()),
            # nonce keeps two tokens minted within the same second distinct
            "jti": uuid.uuid4().hex,
        })
        return jwt.encode(to_encode, self._keys[kind], algorithm=self._algorithm)

    def issue_access(self, subject_id: str, **claims) -> str:
        return self._issue(ACCESS, subject_id, claims)

    def issue_refresh(self, subject_id: str) -> str:
        return self._issue(REFRESH, subject_id, {})

    def decode(self, token: str, kind: str) -> Outcome[dict]:
        """Verify token as the given kind and return its claims."""
        if not token or kind not in self._keys:
            return Outcome.failure(AuthError.MALFORMED)
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return Outcome.failure(AuthError.MALFORMED)
        try:
            payload = jwt.decode(
                token,
                self._keys[kind],
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return Outcome.failure(AuthError.INVALID_SIGNATURE)

        if payload.get("type") != kind or not payload.get("sub"):
            return Outcome.failure(AuthError.MALFORMED)
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            return Outcome.failure(AuthError.MALFORMED)
        if self._clock().timestamp() >= exp:
            return Outcome.failure(AuthError.EXPIRED)
        return Outcome.success(payload)

    def verify(self, token: str, kind: str) -> Outcome[str]:
        """Return the subject id of a valid token of the given kind."""
        result = self.decode(token, kind)
        if not result.ok:
            return Outcome.failure(result.error)
        return Outcome.success(result.value["sub"])


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(
        access_secret=settings.ACCESS_TOKEN_SECRET,
        refresh_secret=settings.REFRESH_TOKEN_SECRET,
        access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        algorithm=settings.ALGORITHM,
    )


@lru_cache
def get_password_verifier() -> PasswordVerifier:
    return PasswordVerifier()
