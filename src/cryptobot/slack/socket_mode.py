from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from cryptobot.utils.backoff import Backoff
from cryptobot.utils.dedup import TTLDeduper
from cryptobot.utils.types import MentionEvent


@dataclass(slots=True)
class SocketModeConfig:
    # reconnect behavior
    max_backoff_s: float = 30.0
    initial_backoff_s: float = 0.25
    # timeouts
    open_timeout_s: float = 5.0
    ping_interval_s: float = 20.0
    recv_timeout_s: float = 5.0
    # redelivered envelopes within this window are dropped
    dedupe_ttl_s: float = 300.0


class SocketModeClient:
    """
    Slack Socket Mode reader.

    Lifecycle:
      - apps.connections.open -> wss url (via `url_opener`)
      - Connect -> wait for envelopes -> ack each one -> enqueue app mentions
      - A `disconnect` envelope (Slack rotates sockets) reconnects at once;
        any error reconnects with jittered backoff (cap)

    Only `events_api` envelopes carrying an `app_mention` event become
    MentionEvent items on `events_queue`; everything else is acked and
    ignored.

    Usage:
        client = SocketModeClient(web.open_socket_url, q_events)
        await client.start()   # runs until cancelled/stop() called
    """

    def __init__(
        self,
        url_opener: Callable[[], Awaitable[str]],
        events_queue: asyncio.Queue,
        cfg: Optional[SocketModeConfig] = None,
    ):
        self.cfg = cfg or SocketModeConfig()
        self._open_url = url_opener
        self.q_events = events_queue

        self._log = structlog.get_logger("socket_mode")
        self._stop = asyncio.Event()
        self._ws = None
        self._dedupe = TTLDeduper(ttl_s=self.cfg.dedupe_ttl_s)
        self.connects = 0

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        backoff = Backoff(initial=self.cfg.initial_backoff_s, cap=self.cfg.max_backoff_s)
        while not self._stop.is_set():
            try:
                await self._connect_and_stream()
                backoff.reset()
            except asyncio.CancelledError:
                break
            except Exception as e:
                if self._stop.is_set():
                    break
                delay = backoff.next_jittered()
                self._log.warning("ws_error_reconnect", err=str(e), backoff_s=round(delay, 3))
                await asyncio.sleep(delay)
        self._log.info("ws_loop_exit")

    async def stop(self) -> None:
        self._stop.set()
        if self._ws and hasattr(self._ws, "close"):
            try:
                await self._ws.close()
            except Exception as e:
                self._log.debug("ws_close_error", err=str(e))

    # --------------------------- core internals ------------------------- #

    async def _connect_and_stream(self) -> None:
        """Returns on stop(), on a `disconnect` envelope, or raises on error."""
        url = await self._open_url()
        self._log.info("ws_connecting")
        async with ws_connect(
            url,
            open_timeout=self.cfg.open_timeout_s,
            ping_interval=self.cfg.ping_interval_s,
            ping_timeout=None,
            max_queue=None,
        ) as ws:
            self._ws = ws
            self.connects += 1
            self._log.info("ws_connected", connects=self.connects)
            try:
                await self._stream_loop(ws)
            finally:
                self._ws = None

    async def _stream_loop(self, ws) -> None:
        while not self._stop.is_set():
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self.cfg.recv_timeout_s)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as e:
                self._log.warning("ws_closed", code=getattr(e, "code", None), reason=str(e))
                raise
            except asyncio.CancelledError:
                # socket closed underneath us during stop()
                if self._stop.is_set():
                    self._log.info("ws_recv_cancelled")
                    return
                raise

            try:
                msg = json.loads(raw)
            except ValueError as e:
                self._log.warning("ws_json_error", err=str(e))
                continue
            if not isinstance(msg, dict):
                continue

            if await self._handle_envelope(ws, msg) == "reconnect":
                return

        self._log.info("ws_stream_loop_exit")

    async def _handle_envelope(self, ws, msg: dict) -> Optional[str]:
        kind = msg.get("type")
        env_id = msg.get("envelope_id")
        if env_id:
            # ack first: Slack redelivers anything not acked within 3s
            await ws.send(json.dumps({"envelope_id": env_id}))

        if kind == "hello":
            self._log.info("ws_hello", connections=msg.get("num_connections"))
            return None
        if kind == "disconnect":
            self._log.info("ws_disconnect_requested", reason=msg.get("reason"))
            return "reconnect"
        if kind != "events_api":
            return None

        payload = msg.get("payload") or {}
        event_id = payload.get("event_id") or env_id
        if event_id and self._dedupe.check_and_mark(str(event_id)):
            self._log.info("duplicate_event_dropped", event_id=event_id)
            return None

        evt = parse_mention(payload.get("event") or {})
        if evt is not None:
            self._enqueue(evt)
        return None

    def _enqueue(self, evt: MentionEvent) -> None:
        try:
            self.q_events.put_nowait(evt)
        except asyncio.QueueFull:
            self._log.warning("events_queue_full_drop", user=evt.user, channel=evt.channel)


def parse_mention(event: dict) -> Optional[MentionEvent]:
    """app_mention event payload -> MentionEvent; None for anything else."""
    if event.get("type") != "app_mention":
        return None
    user = event.get("user")
    channel = event.get("channel")
    if not user or not channel:
        return None
    return MentionEvent(user=str(user), text=str(event.get("text") or ""),
                        channel=str(channel), ts=event.get("ts"))
