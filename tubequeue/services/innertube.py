"""Authenticated client for the YouTube InnerTube API."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

import httpx

from ..config import Settings
from ..errors import (
    AUTH_EXPIRED_MESSAGE,
    AUTH_REQUIRED_MESSAGE,
    AmbiguousConflict,
    ClientError,
    PlatformError,
    RateLimited,
    ServerError,
    Unauthenticated,
)
from .storage import RuntimeOptions

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})
MUTATION_ENDPOINTS: frozenset[str] = frozenset(
    {
        "browse/edit_playlist",
        "playlist/create",
        "playlist/delete",
        "subscription/subscribe",
        "subscription/unsubscribe",
    }
)
SESSION_COOKIE_NAMES = ("SAPISID", "__Secure-3PAPISID")
WEB_CLIENT_ID = "1"


def parse_cookie_header(header: str) -> dict[str, str]:
    """Parse a ``name=value; name2=value2`` cookie header."""

    cookies: dict[str, str] = {}
    for chunk in header.split(";"):
        name, sep, value = chunk.strip().partition("=")
        if sep and name:
            cookies[name.strip()] = value.strip()
    return cookies


def load_cookie_file(path: Path) -> dict[str, str]:
    """Read youtube.com cookies from a Netscape ``cookies.txt`` export."""

    cookies: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("#HttpOnly_"):
            line = line[len("#HttpOnly_") :]
        elif not line or line.startswith("#"):
            continue
        parts = line.split("\t")
        if len(parts) < 7:
            continue
        domain, name, value = parts[0], parts[5], parts[6]
        if "youtube.com" not in domain:
            continue
        cookies[name] = value
    return cookies


@dataclass(slots=True)
class SessionCookies:
    """Cookies of the signed-in browser session."""

    values: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCookies":
        values: dict[str, str] = {}
        if settings.cookie_file is not None:
            try:
                values.update(load_cookie_file(settings.cookie_file))
            except OSError as exc:
                logger.warning("Could not read cookie file %s: %s", settings.cookie_file, exc)
        if settings.cookie_header:
            values.update(parse_cookie_header(settings.cookie_header))
        return cls(values)

    def session_secret(self) -> str | None:
        for name in SESSION_COOKIE_NAMES:
            value = self.values.get(name)
            if value:
                return value
        return None

    def header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.values.items())


def sapisid_hash(secret: str, origin: str, timestamp: int) -> str:
    """Build the ``SAPISIDHASH`` authorization value for ``origin``."""

    digest = hashlib.sha1(f"{timestamp} {secret} {origin}".encode("utf-8")).hexdigest()
    return f"SAPISIDHASH {timestamp}_{digest}"


class AuthenticatedRequestClient:
    """Issue signed InnerTube calls with retry, backoff and error mapping."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        cookies: SessionCookies | None = None,
        options: RuntimeOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        self._settings = settings
        self._client = http_client
        self._cookies = cookies if cookies is not None else SessionCookies.from_settings(settings)
        self._options = options
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter

    @property
    def cookies(self) -> SessionCookies:
        return self._cookies

    def _context(self) -> dict[str, Any]:
        hl, gl = self._settings.locale_parts
        return {
            "client": {
                "clientName": self._settings.innertube_client_name,
                "clientVersion": self._settings.innertube_client_version,
                "hl": hl,
                "gl": gl,
            }
        }

    def _headers(self, secret: str) -> dict[str, str]:
        origin = self._settings.origin
        headers = {
            "Authorization": sapisid_hash(secret, origin, int(self._clock())),
            "X-Origin": origin,
            "X-Youtube-Client-Name": WEB_CLIENT_ID,
            "X-Youtube-Client-Version": self._settings.innertube_client_version,
        }
        cookie_header = self._cookies.header()
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    async def _max_retries(self) -> int:
        if self._options is None:
            return self._settings.operation_retries
        return await self._options.retries()

    def backoff_delay(self, attempt: int) -> float:
        base = self._settings.backoff_base_seconds * (2**attempt)
        return base + self._jitter(0.0, self._settings.backoff_jitter_seconds)

    async def call(self, endpoint: str, body: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """POST ``body`` to ``endpoint`` and return the decoded JSON object."""

        secret = self._cookies.session_secret()
        if not secret:
            raise Unauthenticated(AUTH_REQUIRED_MESSAGE, endpoint=endpoint)

        url = f"{self._settings.origin}/youtubei/v1/{endpoint}"
        payload = {"context": self._context(), **(body or {})}
        max_retries = await self._max_retries()

        attempt = 0
        while True:
            try:
                response = await self._client.post(
                    url,
                    params={"prettyPrint": "false"},
                    json=payload,
                    headers=self._headers(secret),
                )
            except httpx.HTTPError as exc:
                if attempt < max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.info(
                        "Transient error calling %s (%s). Retrying in %.2fs",
                        endpoint,
                        exc.__class__.__name__,
                        delay,
                    )
                    await self._sleep(delay)
                    attempt += 1
                    continue
                raise ServerError(
                    f"InnerTube request to {endpoint} failed: {exc.__class__.__name__}",
                    endpoint=endpoint,
                ) from exc

            status = response.status_code
            if status in RETRYABLE_STATUSES and attempt < max_retries:
                delay = self.backoff_delay(attempt)
                logger.info(
                    "InnerTube %s returned %s (%s/%s). Retrying in %.2fs",
                    endpoint,
                    status,
                    attempt,
                    max_retries,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if status >= 400:
                raise self._classify(status, endpoint)

            try:
                data = response.json()
            except ValueError as exc:
                raise ServerError(
                    f"InnerTube {endpoint} returned a non-JSON body",
                    status=status,
                    endpoint=endpoint,
                ) from exc
            if not isinstance(data, dict):
                raise ServerError(
                    f"Unexpected InnerTube response structure for {endpoint}",
                    status=status,
                    endpoint=endpoint,
                )
            return data

    @staticmethod
    def _classify(status: int, endpoint: str) -> PlatformError:
        if status in (401, 403):
            return Unauthenticated(AUTH_EXPIRED_MESSAGE, status=status, endpoint=endpoint)
        if status == 429:
            return RateLimited(f"InnerTube API error: {status}", status=status, endpoint=endpoint)
        if status >= 500:
            return ServerError(f"InnerTube API error: {status}", status=status, endpoint=endpoint)
        if status == 409 and endpoint in MUTATION_ENDPOINTS:
            return AmbiguousConflict(
                f"InnerTube API error: {status}", status=status, endpoint=endpoint
            )
        return ClientError(f"InnerTube API error: {status}", status=status, endpoint=endpoint)
