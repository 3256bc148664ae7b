import asyncio

import pytest

from cryptobot.errors import RuleParseError
from cryptobot.scheduler import PassScheduler, SchedulerConfig


class _SlowPass:
    def __init__(self, duration=0.0, fail_first=False):
        self.duration = duration
        self.fail_first = fail_first
        self.started = 0
        self.finished = 0
        self.running = 0
        self.max_running = 0

    async def __call__(self):
        self.started += 1
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.fail_first and self.started == 1:
                raise RuleParseError("bad line")
            await asyncio.sleep(self.duration)
            self.finished += 1
        finally:
            self.running -= 1


@pytest.mark.asyncio
async def test_tick_is_dropped_while_pass_in_flight():
    run = _SlowPass(duration=0.2)
    sched = PassScheduler(run)

    assert sched.tick() is True
    await asyncio.sleep(0)
    assert sched.tick() is False
    assert sched.tick() is False
    await sched.wait_idle()

    assert run.started == 1
    assert sched.dropped == 2
    assert sched.tick() is True
    await sched.wait_idle()
    assert run.finished == 2


@pytest.mark.asyncio
async def test_interval_loop_never_overlaps_passes():
    run = _SlowPass(duration=0.12)
    sched = PassScheduler(run, SchedulerConfig(interval_s=0.05, run_immediately=True))

    await sched.start()
    await asyncio.sleep(0.5)
    await sched.stop()

    assert run.max_running == 1
    assert run.started >= 2
    assert sched.dropped >= 1


@pytest.mark.asyncio
async def test_failed_pass_does_not_stop_scheduler():
    run = _SlowPass(fail_first=True)
    sched = PassScheduler(run, SchedulerConfig(interval_s=0.03, run_immediately=True))

    await sched.start()
    await asyncio.sleep(0.2)
    await sched.stop()

    assert sched.failed == 1
    assert run.finished >= 1


@pytest.mark.asyncio
async def test_stop_waits_for_inflight_pass():
    run = _SlowPass(duration=0.2)
    sched = PassScheduler(run, SchedulerConfig(interval_s=10.0, run_immediately=True))

    await sched.start()
    await asyncio.sleep(0.05)
    assert sched.busy

    await sched.stop()
    assert run.finished == 1
    assert not sched.busy
