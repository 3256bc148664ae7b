from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
import structlog

from cryptobot.errors import CryptoBotError
from cryptobot.utils.backoff import Backoff
from cryptobot.utils.types import Reply

log = structlog.get_logger("slack_web")

SLACK_API = "https://slack.com/api"


class SlackAPIError(CryptoBotError):
    def __init__(self, method: str, error: str):
        super().__init__(f"slack {method} failed: {error}")
        self.method = method
        self.error = error

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            if self.updated is not None:
                self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            if self.tokens < 1.0:
                await asyncio.sleep((1.0 - self.tokens) / self.rate)
                self.updated = loop.time()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class SlackConfig:
    bot_token: str
    app_token: Optional[str] = None     # xapp-..., socket mode only
    base_url: str = SLACK_API
    timeout_s: float = 10.0
    rate_per_sec: float = 1.0           # chat.postMessage is ~1/s per channel
    burst: int = 3
    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0


def to_attachment(reply: Reply) -> dict[str, Any]:
    att: dict[str, Any] = {
        "text": reply.text,
        "pretext": reply.pretext,
        "color": reply.color,
        "fields": list(reply.fields),
    }
    if reply.image_url:
        att["image_url"] = reply.image_url
    return att


class SlackWebClient:
    """
    Thin Slack Web API client over aiohttp: chat.postMessage with rate
    limiting and retry/backoff, users.info, apps.connections.open.
    """
    def __init__(self, cfg: SlackConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._rl = RateLimiter(rate_per_sec=cfg.rate_per_sec, burst=cfg.burst)
        self._user_names: dict[str, str] = {}

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    # ---------------------------- API calls ----------------------------- #

    async def post_message(self, channel: str, reply: Reply) -> None:
        payload = {
            "channel": channel,
            "text": reply.pretext or reply.text,   # notification fallback
            "attachments": [to_attachment(reply)],
        }
        await self._rl.acquire()
        await self._call("chat.postMessage", payload)

    async def user_name(self, user_id: str) -> str:
        """Display name for a user id; falls back to the id on any error."""
        cached = self._user_names.get(user_id)
        if cached:
            return cached
        try:
            data = await self._call("users.info", {"user": user_id}, form=True)
        except (SlackAPIError, aiohttp.ClientError, TimeoutError) as e:
            log.warning("user_lookup_failed", user=user_id, err=str(e))
            return user_id
        user = data.get("user") or {}
        name = user.get("name") or user_id
        self._user_names[user_id] = name
        return name

    async def open_socket_url(self) -> str:
        if not self.cfg.app_token:
            raise SlackAPIError("apps.connections.open", "missing app token")
        data = await self._call("apps.connections.open", {}, token=self.cfg.app_token, retry=False)
        url = data.get("url")
        if not url:
            raise SlackAPIError("apps.connections.open", "no url in response")
        return url

    # --------------------------- internals ------------------------------ #

    async def _call(
        self,
        method: str,
        payload: dict[str, Any],
        *,
        token: Optional[str] = None,
        form: bool = False,
        retry: bool = True,
    ) -> dict[str, Any]:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.base_url.rstrip('/')}/{method}"
        headers = {"Authorization": f"Bearer {token or self.cfg.bot_token}"}
        kwargs: dict[str, Any] = {"data": payload} if form else {"json": payload}

        backoff = Backoff(initial=self.cfg.initial_backoff_s, cap=self.cfg.max_backoff_s)
        attempts = self.cfg.max_retries if retry else 1
        last_err = "no attempt made"
        for attempt in range(1, attempts + 1):
            try:
                async with self._session.post(url, headers=headers, **kwargs) as resp:
                    if resp.status == 429:
                        ra = float(resp.headers.get("Retry-After", "1"))
                        log.warning("slack_rate_limited", method=method, retry_after=ra, attempt=attempt)
                        last_err = "ratelimited"
                        if attempt < attempts:
                            await asyncio.sleep(ra)
                        continue
                    if 500 <= resp.status < 600:
                        last_err = f"http {resp.status}"
                        log.warning("slack_server_error", method=method, status=resp.status, attempt=attempt)
                        if attempt < attempts:
                            await asyncio.sleep(backoff.next_jittered())
                        continue
                    data = await resp.json(content_type=None)
            except (aiohttp.ClientError, TimeoutError) as e:
                last_err = str(e) or type(e).__name__
                log.warning("slack_network_error", method=method, err=last_err, attempt=attempt)
                if attempt < attempts:
                    await asyncio.sleep(backoff.next_jittered())
                continue

            if not isinstance(data, dict) or not data.get("ok"):
                err = data.get("error", "unknown_error") if isinstance(data, dict) else "bad_response"
                raise SlackAPIError(method, err)
            return data

        log.error("slack_give_up_after_retries", method=method, err=last_err)
        raise SlackAPIError(method, last_err)
