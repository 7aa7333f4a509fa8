from __future__ import annotations

import asyncio

import pytest

from api.triggers.polling import TriggerPollScheduler


class CountingSweep:
    def __init__(self, fail_first=False):
        self.request_ids = []
        self.fail_first = fail_first

    async def __call__(self, *, request_id):
        self.request_ids.append(request_id)
        if self.fail_first and len(self.request_ids) == 1:
            raise RuntimeError("redis unavailable")
        return {"status": "completed", "requestId": request_id, "total": 0}


@pytest.mark.asyncio
async def test_tick_runs_sweep_with_fresh_request_id():
    sweep = CountingSweep()
    scheduler = TriggerPollScheduler(interval_seconds=60, sweep=sweep)

    first = await scheduler.tick()
    await scheduler.tick()

    assert first["status"] == "completed"
    assert len(set(sweep.request_ids)) == 2


@pytest.mark.asyncio
async def test_loop_survives_failed_sweep_and_stops_promptly():
    sweep = CountingSweep(fail_first=True)
    scheduler = TriggerPollScheduler(interval_seconds=0, sweep=sweep)

    await scheduler.start()
    assert scheduler.running
    for _ in range(50):
        if len(sweep.request_ids) >= 2:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert not scheduler.running
    assert len(sweep.request_ids) >= 2
