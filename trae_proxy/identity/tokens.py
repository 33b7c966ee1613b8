"""Upstream access-token lifecycle.

The upstream hands out short-lived access tokens in exchange for a refresh
token that itself rotates on every exchange. CredentialManager keeps the
current pair, refreshes it shortly before the access token runs out and
refuses to go on once the refresh token itself has expired. TokenRefresher
drives the refresh from a background thread so that idle periods do not
cause a refresh burst when traffic resumes.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import redis
import requests

from ..common.locks import ReadWriteLock
from ..exceptions import CredentialExpiredError, TokenExchangeError

logger = logging.getLogger(__name__)

# Refresh this long before the access token expires.
REFRESH_MARGIN_MS = 5 * 60 * 1000

EXCHANGE_PATH = "/cloudide/api/v3/trae/oauth/ExchangeToken"


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class TokenGrant:
    """The ``Result`` object of a token exchange response."""

    token: str
    token_expire_at: int
    refresh_token: str
    refresh_expire_at: int

    @classmethod
    def from_response(cls, payload) -> "TokenGrant":
        result = payload.get("Result") if isinstance(payload, dict) else None
        if not isinstance(result, dict):
            raise TokenExchangeError("Token exchange response has no 'Result' object")
        try:
            grant = cls(
                token=result.get("Token") or "",
                token_expire_at=int(result.get("TokenExpireAt") or 0),
                refresh_token=result.get("RefreshToken") or "",
                refresh_expire_at=int(result.get("RefreshExpireAt") or 0),
            )
        except (TypeError, ValueError) as e:
            raise TokenExchangeError(f"Token exchange response is malformed: {e}") from e

        # An incomplete grant must never replace the held refresh token.
        missing = [
            name
            for name, value in (
                ("Token", grant.token),
                ("TokenExpireAt", grant.token_expire_at),
                ("RefreshToken", grant.refresh_token),
                ("RefreshExpireAt", grant.refresh_expire_at),
            )
            if not value
        ]
        if missing:
            raise TokenExchangeError(
                f"Token exchange response is missing {', '.join(missing)}"
            )
        return grant


@dataclass(frozen=True)
class Credentials:
    access_token: str = ""
    access_expires_at: int = 0
    refresh_token: str = ""
    refresh_expires_at: int = 0


class TokenExchanger:
    """Calls the upstream token exchange endpoint."""

    def __init__(self, base_url: str, client_id: str, user_id: str, timeout: float = 30):
        self.url = base_url.rstrip("/") + EXCHANGE_PATH
        self.client_id = client_id
        self.user_id = user_id
        self.timeout = timeout

    def exchange(self, refresh_token: str) -> TokenGrant:
        """Trade ``refresh_token`` for a new grant.

        Raises:
            TokenExchangeError: on transport failure, non-200 status or an
                undecodable or incomplete body.
        """
        body = {
            "ClientID": self.client_id,
            "RefreshToken": refresh_token,
            "ClientSecret": "-",
            "UserID": self.user_id,
        }
        try:
            resp = requests.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TokenExchangeError(f"Token exchange request failed: {e}") from e

        if resp.status_code != 200:
            raise TokenExchangeError(
                f"Token exchange failed with status {resp.status_code}: {resp.text}"
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise TokenExchangeError(f"Token exchange returned invalid JSON: {e}") from e
        return TokenGrant.from_response(payload)


class RedisTokenStore:
    """Persist the rotating refresh token so a restart can pick it up again."""

    TOKEN_KEY = "TOKEN:{app_id}"
    REFRESH_TOKEN_KEY = "REFRESH_TOKEN:{app_id}"

    def __init__(self, client: "redis.Redis", app_id: str):
        self.client = client
        self.token_key = self.TOKEN_KEY.format(app_id=app_id)
        self.refresh_token_key = self.REFRESH_TOKEN_KEY.format(app_id=app_id)

    @classmethod
    def from_url(cls, url: str, app_id: str) -> "RedisTokenStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), app_id)

    def load_refresh_token(self) -> Optional[str]:
        try:
            value = self.client.get(self.refresh_token_key)
        except redis.RedisError as e:
            logger.error("Could not read refresh token from Redis: %s", e)
            return None
        return value or None

    def save(self, credentials: Credentials, now_ms: int) -> None:
        try:
            self.client.set(
                self.token_key,
                credentials.access_token,
                px=max(credentials.access_expires_at - now_ms, 1),
            )
            self.client.set(
                self.refresh_token_key,
                credentials.refresh_token,
                px=max(credentials.refresh_expires_at - now_ms, 1),
            )
        except redis.RedisError as e:
            logger.error("Could not persist tokens to Redis: %s", e)
            return
        logger.info("Token and refresh token saved to Redis")


class CredentialManager:
    """Owns the upstream token pair and keeps it fresh.

    Args:
        exchanger: performs the token exchange round-trips.
        refresh_token: the operator supplied refresh token.
        static_token: when set, used as-is and never refreshed.
        store: optional persistence for the rotated refresh token; a stored
            value takes precedence over ``refresh_token``.
        clock: returns the current time in epoch seconds.
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        refresh_token: str = "",
        *,
        static_token: Optional[str] = None,
        store: Optional[RedisTokenStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.exchanger = exchanger
        self.static_token = static_token or None
        self.store = store
        self._clock = clock
        self._lock = ReadWriteLock()
        self._revoked = False

        if store is not None and not self.static_token:
            refresh_token = store.load_refresh_token() or refresh_token
        self._state = Credentials(refresh_token=refresh_token)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expired_locked(self, now_ms: int) -> bool:
        expires_at = self._state.refresh_expires_at
        return self._revoked or (expires_at > 0 and now_ms >= expires_at)

    def _usable_locked(self, now_ms: int) -> bool:
        return bool(self._state.access_token) and (
            now_ms < self._state.access_expires_at - REFRESH_MARGIN_MS
        )

    @property
    def credentials(self) -> Credentials:
        with self._lock.read():
            return self._state

    def is_expired(self) -> bool:
        """True once the refresh token has run out; never becomes False again."""
        if self.static_token:
            return False
        with self._lock.read():
            return self._expired_locked(self._now_ms())

    def current_token(self) -> str:
        if self.static_token:
            return self.static_token
        with self._lock.read():
            return self._state.access_token

    def ensure_fresh(self) -> str:
        """Return an access token that is valid for at least the safety margin.

        Raises:
            CredentialExpiredError: the refresh token has expired.
            TokenExchangeError: a needed exchange failed; state is unchanged.
        """
        if self.static_token:
            return self.static_token

        with self._lock.read():
            now_ms = self._now_ms()
            if not self._expired_locked(now_ms) and self._usable_locked(now_ms):
                return self._state.access_token

        with self._lock.write():
            now_ms = self._now_ms()
            if self._expired_locked(now_ms):
                if not self._revoked:
                    self._revoked = True
                    logger.error(
                        "Refresh token expired at %s, update REFRESH_TOKEN",
                        _format_ms(self._state.refresh_expires_at),
                    )
                raise CredentialExpiredError()
            # Another thread may have refreshed while we waited for the lock.
            if self._usable_locked(now_ms):
                return self._state.access_token
            self._exchange_locked(now_ms)
            return self._state.access_token

    def _exchange_locked(self, now_ms: int) -> None:
        if not self._state.refresh_token:
            raise TokenExchangeError("No refresh token configured, set REFRESH_TOKEN")

        logger.info("Exchanging refresh token")
        rotated = self.exchanger.exchange(self._state.refresh_token)
        grant = self.exchanger.exchange(rotated.refresh_token)

        self._state = Credentials(
            access_token=grant.token,
            access_expires_at=grant.token_expire_at,
            refresh_token=rotated.refresh_token,
            refresh_expires_at=grant.refresh_expire_at,
        )
        logger.info(
            "Upstream token refreshed, valid until %s, refresh token valid until %s",
            _format_ms(grant.token_expire_at),
            _format_ms(grant.refresh_expire_at),
        )
        if self.store is not None:
            self.store.save(self._state, now_ms)

    def refresh(self) -> bool:
        """Refresh if due, logging instead of raising. Returns True on success."""
        try:
            self.ensure_fresh()
        except CredentialExpiredError:
            return False
        except TokenExchangeError as e:
            logger.warning("Automatic token refresh failed: %s", e)
            return False
        return True


class TokenRefresher:
    """Background thread calling CredentialManager.refresh on a fixed interval."""

    def __init__(self, manager: CredentialManager, interval_seconds: float = 300.0):
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="token-refresher", daemon=True
        )
        self._thread.start()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)

    def _run(self) -> None:
        self.manager.refresh()
        while not self._stop_event.wait(self.interval_seconds):
            self.manager.refresh()
