"""Tests for the polling worker."""

import json
from datetime import timedelta

import pytest

from workqueue.jobs import worker as worker_module
from workqueue.jobs.models import Job
from workqueue.jobs.reservation import reserve
from workqueue.jobs.worker import JobWorker

from sample_payloads import (
    BrokenCleanupJob,
    BrokenNameJob,
    ErrorJob,
    HookedJob,
    SimpleJob,
)


@pytest.mark.asyncio
class TestRun:
    async def test_successful_job_is_deleted(self, service, store, worker, tally):
        queued = await service.enqueue(SimpleJob(tally))

        job = await reserve(store, worker)
        assert await worker.run(job) is True

        assert tally.count("perform") == 1
        assert await store.get(queued.id) is None
        assert await reserve(store, worker) is None

    async def test_failed_job_is_rescheduled(self, service, store, worker, clock, tally):
        queued = await service.enqueue(ErrorJob(tally))

        assert await worker.run(await reserve(store, worker)) is False

        stored = await store.get(queued.id)
        assert stored.attempts == 1
        assert stored.locked_by is None
        assert stored.failed_at is None
        assert stored.run_at > clock.now

    async def test_undecodable_job_fails_permanently(self, store, worker, clock):
        handler = json.dumps({"type": "old:Job", "module": "old_module_gone", "fields": {}})
        queued = await store.insert(Job(handler=handler, run_at=clock.now))

        assert await worker.run(await reserve(store, worker)) is False

        stored = await store.get(queued.id)
        assert stored.failed_at == clock.now
        assert stored.locked_by is None
        assert "Job failed to load" in stored.last_error

    async def test_failing_after_hook_still_reaches_retry_policy(
        self, service, store, worker, clock, tally
    ):
        queued = await service.enqueue(BrokenCleanupJob(tally))

        assert await worker.reserve_and_run_one_job() is False

        stored = await store.get(queued.id)
        assert stored.attempts == 1
        assert stored.failed_at == clock.now
        assert stored.locked_by is None
        assert "after hook broke" in stored.last_error

        # max_attempts reached: the job is never run again
        clock.advance(3600)
        assert await worker.reserve_and_run_one_job() is None
        assert tally.count("perform") == 1

    async def test_failing_display_name_fails_the_job(
        self, service, store, worker, clock, tally
    ):
        queued = await service.enqueue(BrokenNameJob(tally))

        assert await worker.reserve_and_run_one_job() is False

        stored = await store.get(queued.id)
        assert stored.attempts == 1
        assert stored.locked_by is None
        assert stored.run_at == clock.now + timedelta(seconds=5)
        assert "no name today" in stored.last_error

    async def test_hooks_run_around_worker_invocation(self, service, store, worker, tally):
        queued = await service.enqueue(HookedJob(tally))

        await worker.reserve_and_run_one_job()

        assert tally.events() == [
            "enqueue",
            "before",
            "perform",
            "success",
            f"after:{queued.id}",
        ]


@pytest.mark.asyncio
class TestWorkOff:
    async def test_counts_successes_and_failures(self, service, worker, tally):
        await service.enqueue(SimpleJob(tally))
        await service.enqueue(SimpleJob(tally))
        await service.enqueue(ErrorJob(tally))

        assert await worker.work_off() == (2, 1)

    async def test_stops_after_num_jobs(self, service, store, worker, tally):
        for _ in range(3):
            await service.enqueue(SimpleJob(tally))

        assert await worker.work_off(num=2) == (2, 0)
        assert (await store.stats())["total"] == 1

    async def test_empty_queue(self, worker):
        assert await worker.work_off() == (0, 0)

    async def test_stop_request_ends_the_batch(self, service, worker, tally):
        await service.enqueue(SimpleJob(tally))
        worker.stop()

        assert await worker.work_off() == (0, 0)


@pytest.mark.asyncio
class TestStart:
    async def test_exit_when_empty(self, service, store, worker, tally):
        await service.enqueue(SimpleJob(tally))
        await service.enqueue(SimpleJob(tally))

        await worker.start(exit_when_empty=True)

        assert tally.count("perform") == 2
        assert (await store.stats())["total"] == 0
        assert worker.running is False

    async def test_recovers_from_store_errors(self, service, worker, tally, monkeypatch):
        await service.enqueue(SimpleJob(tally))
        real_work_off = worker.work_off
        calls = []

        async def flaky_work_off(num=100):
            calls.append(num)
            if len(calls) == 1:
                raise ConnectionError("database went away")
            return await real_work_off(num)

        monkeypatch.setattr(worker, "work_off", flaky_work_off)

        await worker.start(exit_when_empty=True)

        assert len(calls) == 3
        assert tally.count("perform") == 1

    async def test_refuses_to_start_twice(self, worker):
        worker.running = True

        with pytest.raises(RuntimeError):
            await worker.start()


@pytest.mark.asyncio
async def test_crashed_worker_job_is_picked_up_after_max_run_time(
    service, store, crash_pair, clock, tally
):
    crashed, survivor = crash_pair
    queued = await service.enqueue(SimpleJob(tally))

    # crashed reserves the job and never reports back
    assert (await reserve(store, crashed, crashed.max_run_time)).id == queued.id
    assert await survivor.reserve_and_run_one_job() is None

    clock.advance(crashed.max_run_time + 1)

    assert await survivor.reserve_and_run_one_job() is True
    assert tally.count("perform") == 1


@pytest.fixture
def crash_pair(store, test_settings):
    return (
        JobWorker(store, test_settings, name="crashed", max_run_time=60),
        JobWorker(store, test_settings, name="survivor", max_run_time=60),
    )


@pytest.mark.asyncio
async def test_default_worker_name_identifies_host_and_process(store, test_settings):
    worker = JobWorker(store, test_settings)

    assert worker.name.startswith("host:")
    assert " pid:" in worker.name
    assert worker.host == "test-host"


def test_module_level_work_off_is_deprecated(monkeypatch, test_settings):
    async def fake_work_off(num, settings):
        return num, 0

    monkeypatch.setattr(worker_module, "_work_off", fake_work_off)

    with pytest.warns(DeprecationWarning):
        assert worker_module.work_off(3, test_settings) == (3, 0)


@pytest.mark.asyncio
async def test_explicit_max_run_time_is_kept(store, test_settings):
    assert JobWorker(store, test_settings, max_run_time=0).max_run_time == 0
    assert JobWorker(store, test_settings).max_run_time == test_settings.job_max_run_time_s
