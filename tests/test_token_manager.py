"""Tests for TokenManager state handling and the refresh exchange."""

import asyncio
import json

import pytest
from conftest import connect_error, json_reply

from edu_client.errors import NetworkError, NoRefreshToken, RefreshFailed
from edu_client.services.token_manager import TokenManager
from edu_client.services.token_store import TokenStore


class TestTokenState:
    def test_initialize_without_tokens(self, tokens):
        assert tokens.initialize() is False
        assert tokens.get_access_token() is None
        assert tokens.get_refresh_token() is None
        assert tokens.credentials.is_empty

    def test_tokens_survive_a_new_manager(self, store, http, logger):
        TokenManager(store=store, http=http, logger=logger).set_tokens(
            access_token="a", refresh_token="b",
        )

        fresh = TokenManager(store=store, http=http, logger=logger)
        assert fresh.initialize() is True
        assert fresh.get_access_token() == "a"
        assert fresh.get_refresh_token() == "b"

    def test_refresh_token_falls_back_to_store(self, tokens, store):
        store.set("teacher_refresh_token", "r-stored")

        assert tokens.get_access_token() is None
        assert tokens.get_refresh_token() == "r-stored"

    def test_partial_update_keeps_other_token(self, tokens, backend):
        tokens.set_tokens(access_token="t1", refresh_token="r1")
        tokens.set_tokens(access_token="t2")

        assert tokens.get_access_token() == "t2"
        assert tokens.get_refresh_token() == "r1"
        assert backend.data == {"teacher_auth_token": "t2", "teacher_refresh_token": "r1"}

    def test_clear_is_total_and_idempotent(self, tokens, backend):
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        tokens.clear_tokens()
        tokens.clear_tokens()

        assert tokens.get_access_token() is None
        assert tokens.get_refresh_token() is None
        assert not tokens.is_authenticated
        assert backend.data == {}

    def test_custom_store_keys(self, store, http, logger, backend):
        manager = TokenManager(
            store=store, http=http, logger=logger,
            access_key="access", refresh_key="refresh",
        )
        manager.set_tokens(access_token="a", refresh_token="b")

        assert backend.data == {"access": "a", "refresh": "b"}


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_without_rotation_keeps_refresh_token(self, tokens, fake):
        fake.add("POST", "/auth/refresh", json_reply(200, {"token": "t2"}))
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        payload = await tokens.refresh_access_token()

        assert payload == {"token": "t2"}
        assert tokens.get_access_token() == "t2"
        assert tokens.get_refresh_token() == "r1"
        sent = fake.calls("POST", "/auth/refresh")[0]
        assert json.loads(sent.content) == {"refreshToken": "r1"}
        assert "authorization" not in sent.headers

    @pytest.mark.asyncio
    async def test_refresh_unwraps_envelope_and_rotates(self, tokens, fake):
        fake.add("POST", "/auth/refresh", json_reply(200, {
            "success": True,
            "data": {"token": "t2", "refreshToken": "r2"},
        }))
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        payload = await tokens.refresh_access_token()

        assert payload == {"token": "t2", "refreshToken": "r2"}
        assert tokens.credentials.access_token == "t2"
        assert tokens.credentials.refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_tokens(self, tokens, fake, backend):
        fake.add("POST", "/auth/refresh", json_reply(401, {"error": "Invalid refresh token"}))
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        with pytest.raises(RefreshFailed) as exc_info:
            await tokens.refresh_access_token()

        assert exc_info.value.status == 401
        assert tokens.get_access_token() is None
        assert tokens.get_refresh_token() is None
        assert backend.data == {}

    @pytest.mark.asyncio
    async def test_unreadable_refresh_body_clears_tokens(self, tokens, fake):
        fake.add("POST", "/auth/refresh", json_reply(200, ["not", "an", "object"]))
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        with pytest.raises(RefreshFailed):
            await tokens.refresh_access_token()
        assert tokens.credentials.is_empty

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, tokens, fake):
        with pytest.raises(NoRefreshToken):
            await tokens.refresh_access_token()
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_network_failure_keeps_tokens(self, tokens, fake):
        fake.add("POST", "/auth/refresh", connect_error)
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        with pytest.raises(NetworkError):
            await tokens.refresh_access_token()
        assert tokens.get_refresh_token() == "r1"


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_request(self, http, fake, logger):
        fake.add("POST", "/auth/refresh", json_reply(200, {"token": "t2"}))
        manager = TokenManager(
            store=TokenStore(backend=None, logger=logger),
            http=http,
            logger=logger,
            single_flight=True,
        )
        manager.set_tokens(access_token="t1", refresh_token="r1")

        results = await asyncio.gather(
            manager.refresh_access_token(),
            manager.refresh_access_token(),
        )

        assert results == [{"token": "t2"}, {"token": "t2"}]
        assert len(fake.calls("POST", "/auth/refresh")) == 1

    @pytest.mark.asyncio
    async def test_uncoordinated_by_default(self, tokens, fake):
        fake.add("POST", "/auth/refresh", json_reply(200, {"token": "t2"}))
        tokens.set_tokens(access_token="t1", refresh_token="r1")

        await asyncio.gather(
            tokens.refresh_access_token(),
            tokens.refresh_access_token(),
        )

        assert len(fake.calls("POST", "/auth/refresh")) == 2
