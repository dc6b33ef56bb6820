"""
Unit tests for the session lifecycle: login, refresh rotation, logout and the auth gate.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from core.errors import AuthError
from core.security import ACCESS, REFRESH
from services.auth_service import SessionManager

TEST_PASSWORD = "correct-pw"


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_issues_tokens_for_user(self, sessions, codec, alice):
        result = await sessions.login("alice", TEST_PASSWORD)
        assert result.ok
        assert codec.verify(result.value.access_token, ACCESS).value == alice.id
        assert codec.verify(result.value.refresh_token, REFRESH).value == alice.id

    @pytest.mark.asyncio
    async def test_login_persists_refresh_token_exactly(self, sessions, store, alice):
        result = await sessions.login("alice", TEST_PASSWORD)
        assert store.stored_token(alice.id) == result.value.refresh_token

    @pytest.mark.asyncio
    async def test_login_by_email_any_case(self, sessions, alice):
        result = await sessions.login("ALICE@example.com", TEST_PASSWORD)
        assert result.ok
        assert result.value.user.id == alice.id

    @pytest.mark.asyncio
    async def test_login_falls_back_to_email(self, sessions, alice):
        result = await sessions.login(["mallory", "alice@example.com"], TEST_PASSWORD)
        assert result.ok
        assert result.value.user.id == alice.id

    @pytest.mark.asyncio
    async def test_login_no_candidate_matches(self, sessions, alice):
        result = await sessions.login(["mallory", "mallory@example.com"], TEST_PASSWORD)
        assert result.error is AuthError.NOT_FOUND

    @pytest.mark.asyncio
    async def test_access_token_carries_profile_claims(self, sessions, codec, alice):
        result = await sessions.login("alice", TEST_PASSWORD)
        claims = codec.decode(result.value.access_token, ACCESS).value
        assert claims["username"] == alice.username
        assert claims["email"] == alice.email
        assert claims["full_name"] == alice.full_name
        assert "email" not in codec.decode(result.value.refresh_token, REFRESH).value

    @pytest.mark.asyncio
    async def test_login_returns_sanitized_user(self, sessions, alice):
        result = await sessions.login("alice", TEST_PASSWORD)
        user = result.value.user.model_dump()
        assert "hashed_password" not in user
        assert "refresh_token" not in user
        assert user["username"] == "alice"

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, sessions, store, alice):
        result = await sessions.login("alice", "wrong-pw")
        assert result.error is AuthError.INVALID_CREDENTIALS
        assert store.stored_token(alice.id) is None

    @pytest.mark.asyncio
    async def test_login_unknown_identity(self, sessions):
        result = await sessions.login("nobody", TEST_PASSWORD)
        assert result.error is AuthError.NOT_FOUND

    @pytest.mark.asyncio
    async def test_second_login_invalidates_first_refresh_token(self, sessions, alice):
        first = await sessions.login("alice", TEST_PASSWORD)
        await sessions.login("alice", TEST_PASSWORD)
        result = await sessions.refresh(first.value.refresh_token)
        assert result.error is AuthError.TOKEN_REUSED

    @pytest.mark.asyncio
    async def test_store_failure_is_internal(self, codec, passwords):
        store = AsyncMock()
        store.find_by_identity.side_effect = ServerSelectionTimeoutError("no primary")
        result = await SessionManager(store, codec, passwords).login("alice", TEST_PASSWORD)
        assert result.error is AuthError.INTERNAL_FAILURE


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_rotates_stored_token(self, sessions, store, codec, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        result = await sessions.refresh(login.value.refresh_token)
        assert result.ok
        assert result.value.refresh_token != login.value.refresh_token
        assert store.stored_token(alice.id) == result.value.refresh_token
        assert codec.verify(result.value.access_token, ACCESS).value == alice.id

    @pytest.mark.asyncio
    async def test_refresh_token_is_single_use(self, sessions, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        assert (await sessions.refresh(login.value.refresh_token)).ok
        replay = await sessions.refresh(login.value.refresh_token)
        assert replay.error is AuthError.TOKEN_REUSED

    @pytest.mark.asyncio
    async def test_refresh_chain(self, sessions, store, alice):
        token = (await sessions.login("alice", TEST_PASSWORD)).value.refresh_token
        for _ in range(3):
            result = await sessions.refresh(token)
            assert result.ok
            token = result.value.refresh_token
        assert store.stored_token(alice.id) == token

    @pytest.mark.asyncio
    @pytest.mark.parametrize("presented", [None, ""])
    async def test_refresh_without_token(self, sessions, presented):
        assert (await sessions.refresh(presented)).error is AuthError.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_refresh_with_garbage(self, sessions):
        assert (await sessions.refresh("garbage")).error is AuthError.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_with_access_token(self, sessions, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        result = await sessions.refresh(login.value.access_token)
        assert result.error is AuthError.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_expired(self, sessions, clock, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        clock.advance(days=10, seconds=1)
        assert (await sessions.refresh(login.value.refresh_token)).error is AuthError.EXPIRED

    @pytest.mark.asyncio
    async def test_refresh_for_deleted_user(self, sessions, store, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        del store.docs[alice.id]
        assert (await sessions.refresh(login.value.refresh_token)).error is AuthError.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_validly_signed_but_unstored_token_rejected(self, sessions, codec, alice):
        await sessions.login("alice", TEST_PASSWORD)
        stray = codec.issue_refresh(alice.id)
        assert (await sessions.refresh(stray)).error is AuthError.TOKEN_REUSED

    @pytest.mark.asyncio
    async def test_concurrent_refresh_has_single_winner(self, sessions, store, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        token = login.value.refresh_token
        results = await asyncio.gather(sessions.refresh(token), sessions.refresh(token))
        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1
        assert losers[0].error is AuthError.TOKEN_REUSED
        assert store.stored_token(alice.id) == winners[0].value.refresh_token


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_clears_token(self, sessions, store, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        assert (await sessions.logout(alice.id)).ok
        assert store.stored_token(alice.id) is None
        assert (await sessions.refresh(login.value.refresh_token)).error is AuthError.TOKEN_REUSED

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, sessions, alice):
        assert (await sessions.logout(alice.id)).ok
        assert (await sessions.logout(alice.id)).ok

    @pytest.mark.asyncio
    async def test_logout_unknown_user(self, sessions):
        assert (await sessions.logout("5f0000000000000000000000")).error is AuthError.NOT_FOUND


class TestAuthGate:

    @pytest.mark.asyncio
    async def test_valid_access_token(self, sessions, gate, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        result = await gate.authenticate(login.value.access_token)
        assert result.ok
        assert result.value.id == alice.id
        assert not hasattr(result.value, "hashed_password")

    @pytest.mark.asyncio
    async def test_missing_token(self, gate):
        assert (await gate.authenticate(None)).error is AuthError.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, sessions, gate, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        assert (await gate.authenticate(login.value.refresh_token)).error is AuthError.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_expired_access_token(self, sessions, gate, clock, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        clock.advance(minutes=16)
        assert (await gate.authenticate(login.value.access_token)).error is AuthError.EXPIRED

    @pytest.mark.asyncio
    async def test_deleted_user(self, sessions, gate, store, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        del store.docs[alice.id]
        assert (await gate.authenticate(login.value.access_token)).error is AuthError.NOT_FOUND

    @pytest.mark.asyncio
    async def test_gate_does_not_touch_refresh_token(self, sessions, gate, store, alice):
        login = await sessions.login("alice", TEST_PASSWORD)
        await gate.authenticate(login.value.access_token)
        assert store.stored_token(alice.id) == login.value.refresh_token
