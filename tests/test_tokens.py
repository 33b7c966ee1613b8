"""Tests for the upstream credential lifecycle."""
import threading
from unittest.mock import Mock, patch

import pytest
import redis
import requests

from trae_proxy.exceptions import CredentialExpiredError, TokenExchangeError
from trae_proxy.identity.tokens import (
    REFRESH_MARGIN_MS,
    CredentialManager,
    Credentials,
    RedisTokenStore,
    TokenExchanger,
    TokenGrant,
    TokenRefresher,
)

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class FakeExchanger:
    """Hands out grants with rotated refresh tokens r1, r2, ..."""

    def __init__(self, clock, token_ttl_ms=HOUR_MS, refresh_ttl_ms=24 * HOUR_MS):
        self.clock = clock
        self.token_ttl_ms = token_ttl_ms
        self.refresh_ttl_ms = refresh_ttl_ms
        self.calls = []

    def exchange(self, refresh_token):
        self.calls.append(refresh_token)
        n = len(self.calls)
        now_ms = int(self.clock() * 1000)
        return TokenGrant(
            token=f"t{n}",
            token_expire_at=now_ms + self.token_ttl_ms,
            refresh_token=f"r{n}",
            refresh_expire_at=now_ms + self.refresh_ttl_ms,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def exchanger(clock):
    return FakeExchanger(clock)


def test_exchange_runs_two_steps_and_keeps_first_refresh_token(clock, exchanger):
    manager = CredentialManager(exchanger, "r0", clock=clock)

    assert manager.ensure_fresh() == "t2"
    assert exchanger.calls == ["r0", "r1"]
    state = manager.credentials
    assert state.refresh_token == "r1"
    assert state.access_expires_at == NOW_MS + HOUR_MS
    assert state.refresh_expires_at == NOW_MS + 24 * HOUR_MS


def test_token_reused_until_safety_margin(clock, exchanger):
    manager = CredentialManager(exchanger, "r0", clock=clock)
    manager.ensure_fresh()

    clock.now += (HOUR_MS - REFRESH_MARGIN_MS - 1000) / 1000
    assert manager.ensure_fresh() == "t2"
    assert len(exchanger.calls) == 2

    clock.now += 2
    assert manager.ensure_fresh() == "t4"
    assert exchanger.calls[2:] == ["r1", "r3"]


def test_expired_refresh_token_is_terminal(clock, exchanger):
    manager = CredentialManager(exchanger, "r0", clock=clock)
    manager.ensure_fresh()

    clock.now += 25 * 60 * 60
    assert manager.is_expired()
    with pytest.raises(CredentialExpiredError) as excinfo:
        manager.ensure_fresh()
    assert excinfo.value.status_code == 401

    # A clock going backwards does not bring the credentials back.
    clock.now = NOW
    assert manager.is_expired()
    with pytest.raises(CredentialExpiredError):
        manager.ensure_fresh()
    assert len(exchanger.calls) == 2


def test_failed_exchange_keeps_state(clock):
    exchanger = Mock()
    exchanger.exchange.side_effect = TokenExchangeError("boom")
    manager = CredentialManager(exchanger, "r0", clock=clock)

    with pytest.raises(TokenExchangeError) as excinfo:
        manager.ensure_fresh()
    assert excinfo.value.status_code == 503
    assert manager.credentials == Credentials(refresh_token="r0")
    assert not manager.is_expired()


def test_failed_second_step_keeps_state(clock, exchanger):
    manager = CredentialManager(exchanger, "r0", clock=clock)
    grant = exchanger.exchange("r0")
    exchanger.calls.clear()

    flaky = Mock()
    flaky.exchange.side_effect = [grant, TokenExchangeError("second step failed")]
    manager.exchanger = flaky

    with pytest.raises(TokenExchangeError):
        manager.ensure_fresh()
    assert manager.credentials == Credentials(refresh_token="r0")


def test_missing_refresh_token(clock, exchanger):
    manager = CredentialManager(exchanger, "", clock=clock)
    with pytest.raises(TokenExchangeError):
        manager.ensure_fresh()
    assert exchanger.calls == []


def test_refresh_reports_failure_without_raising(clock):
    exchanger = Mock()
    exchanger.exchange.side_effect = TokenExchangeError("boom")
    manager = CredentialManager(exchanger, "r0", clock=clock)

    assert manager.refresh() is False


def test_static_token_is_never_refreshed(clock, exchanger):
    manager = CredentialManager(exchanger, "r0", static_token="fixed", clock=clock)

    assert manager.ensure_fresh() == "fixed"
    assert manager.current_token() == "fixed"
    assert not manager.is_expired()
    assert exchanger.calls == []


def test_stored_refresh_token_takes_precedence(clock, exchanger):
    client = Mock()
    client.get.return_value = "stored"
    store = RedisTokenStore(client, "app")

    manager = CredentialManager(exchanger, "r0", store=store, clock=clock)
    manager.ensure_fresh()

    client.get.assert_called_once_with("REFRESH_TOKEN:app")
    assert exchanger.calls[0] == "stored"


def test_store_saves_rotated_tokens_with_ttl(clock, exchanger):
    client = Mock()
    client.get.return_value = None
    store = RedisTokenStore(client, "app")

    manager = CredentialManager(exchanger, "r0", store=store, clock=clock)
    manager.ensure_fresh()

    client.set.assert_any_call("TOKEN:app", "t2", px=HOUR_MS)
    client.set.assert_any_call("REFRESH_TOKEN:app", "r1", px=24 * HOUR_MS)


def test_store_errors_are_not_fatal(clock, exchanger):
    client = Mock()
    client.get.side_effect = redis.ConnectionError("down")
    client.set.side_effect = redis.ConnectionError("down")
    store = RedisTokenStore(client, "app")

    manager = CredentialManager(exchanger, "r0", store=store, clock=clock)
    assert manager.ensure_fresh() == "t2"


def test_exchanger_posts_exchange_body():
    response = Mock(status_code=200)
    response.json.return_value = {
        "Result": {
            "Token": "tok",
            "TokenExpireAt": 10,
            "RefreshToken": "ref",
            "RefreshExpireAt": 20,
        }
    }
    with patch("trae_proxy.identity.tokens.requests.post", return_value=response) as post:
        grant = TokenExchanger("https://token.test/", "cid", "uid").exchange("r0")

    assert grant == TokenGrant("tok", 10, "ref", 20)
    url = post.call_args[0][0]
    assert url == "https://token.test/cloudide/api/v3/trae/oauth/ExchangeToken"
    assert post.call_args[1]["json"] == {
        "ClientID": "cid",
        "RefreshToken": "r0",
        "ClientSecret": "-",
        "UserID": "uid",
    }


@pytest.mark.parametrize(
    "response",
    [
        Mock(status_code=500, text="oops"),
        Mock(status_code=200, json=Mock(return_value={"Error": "x"})),
        Mock(status_code=200, json=Mock(return_value={"Result": {}})),
        Mock(
            status_code=200,
            json=Mock(
                return_value={
                    "Result": {
                        "Token": "tok",
                        "TokenExpireAt": 10,
                        "RefreshToken": "",
                        "RefreshExpireAt": 20,
                    }
                }
            ),
        ),
        Mock(
            status_code=200,
            json=Mock(
                return_value={
                    "Result": {
                        "Token": "tok",
                        "TokenExpireAt": 0,
                        "RefreshToken": "ref",
                        "RefreshExpireAt": 20,
                    }
                }
            ),
        ),
        Mock(status_code=200, json=Mock(side_effect=ValueError("not json"))),
    ],
)
def test_exchanger_failures(response):
    with patch("trae_proxy.identity.tokens.requests.post", return_value=response):
        with pytest.raises(TokenExchangeError):
            TokenExchanger("https://token.test", "cid", "uid").exchange("r0")


def test_exchanger_transport_failure():
    with patch(
        "trae_proxy.identity.tokens.requests.post",
        side_effect=requests.ConnectionError("refused"),
    ):
        with pytest.raises(TokenExchangeError):
            TokenExchanger("https://token.test", "cid", "uid").exchange("r0")


def test_empty_grant_keeps_refresh_token(clock):
    response = Mock(status_code=200)
    response.json.return_value = {"Result": {}}
    manager = CredentialManager(
        TokenExchanger("https://token.test", "cid", "uid"), "r0", clock=clock
    )

    with patch("trae_proxy.identity.tokens.requests.post", return_value=response):
        with pytest.raises(TokenExchangeError):
            manager.ensure_fresh()

    assert manager.credentials == Credentials(refresh_token="r0")


def test_refresher_ticks_until_shutdown():
    manager = Mock()
    ticked = threading.Event()

    def refresh():
        if manager.refresh.call_count >= 3:
            ticked.set()
        return True

    manager.refresh.side_effect = refresh
    refresher = TokenRefresher(manager, interval_seconds=0.01)
    refresher.start()
    assert ticked.wait(2)

    refresher.shutdown()
    assert not refresher._thread.is_alive()
    calls = manager.refresh.call_count
    ticked.wait(0.05)
    assert manager.refresh.call_count == calls


def test_refresher_refreshes_on_start():
    manager = Mock()
    started = threading.Event()
    manager.refresh.side_effect = lambda: started.set()

    refresher = TokenRefresher(manager, interval_seconds=60)
    refresher.start()
    try:
        assert started.wait(2)
        assert manager.refresh.call_count == 1
    finally:
        refresher.shutdown()
    assert not refresher._thread.is_alive()
