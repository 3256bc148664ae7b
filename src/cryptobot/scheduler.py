from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from cryptobot.errors import CryptoBotError

log = structlog.get_logger("scheduler")


@dataclass(slots=True)
class SchedulerConfig:
    interval_s: float = 10.0
    run_immediately: bool = False   # first pass at t=0 instead of t=interval


class PassScheduler:
    """
    Fires `run_pass` every `interval_s` on a fixed grid.

    - Passes never overlap: a tick that lands while the previous pass is
      still running is dropped, not queued.
    - A failing pass is logged; the next tick runs normally.
    - stop() waits for the in-flight pass (its rewrite must not be cut
      short) before returning.
    """
    def __init__(self, run_pass: Callable[[], Awaitable[object]], cfg: Optional[SchedulerConfig] = None):
        self.run_pass = run_pass
        self.cfg = cfg or SchedulerConfig()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

        self.ticks = 0
        self.dropped = 0
        self.failed = 0

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="alert-scheduler")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.busy:
            assert self._current is not None
            log.info("waiting_for_inflight_pass")
            # shielded: a second cancel must not interrupt a rewrite
            await asyncio.shield(self._current)

    async def wait_idle(self) -> None:
        if self._current is not None:
            await asyncio.shield(self._current)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + (0.0 if self.cfg.run_immediately else self.cfg.interval_s)
        while not self._stop.is_set():
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            next_at += self.cfg.interval_s
            self.tick()

    def tick(self) -> bool:
        """Start a pass unless one is running. Returns True if started."""
        self.ticks += 1
        if self.busy:
            self.dropped += 1
            log.warning("tick_dropped", reason="pass_in_flight", dropped=self.dropped)
            return False
        self._current = asyncio.create_task(self._guarded_pass(), name="alert-pass")
        return True

    async def _guarded_pass(self) -> None:
        try:
            report = await self.run_pass()
        except CryptoBotError as e:
            self.failed += 1
            log.error("pass_failed", err=str(e), kind=type(e).__name__)
        except Exception:
            self.failed += 1
            log.exception("pass_crashed")
        else:
            log.debug("pass_done", report=report)
