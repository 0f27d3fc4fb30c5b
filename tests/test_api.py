"""Tests for the inspection API."""

from uuid import uuid4

import pytest

from sample_payloads import SimpleJob


@pytest.mark.asyncio
async def test_healthz(async_client, service, tally):
    await service.enqueue(SimpleJob(tally))

    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
    body = response.json()
    assert body["ok"] is True
    assert body["data"]["ok"] is True
    assert body["data"]["database"]["connected"] is True
    assert body["data"]["queue"]["queue_depth"] == 1
    assert body["data"]["queue"]["active_workers"] == 0


@pytest.mark.asyncio
class TestJobEndpoints:
    async def test_stats(self, async_client, service, store, clock, tally):
        await service.enqueue(SimpleJob(tally))
        failed = await service.enqueue(SimpleJob(tally))
        await store.update_fields(failed.id, failed_at=clock.now)

        response = await async_client.get("/v1/jobs/stats")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "total": 2,
            "pending": 1,
            "locked": 0,
            "failed": 1,
        }

    async def test_get_job(self, async_client, service, tally):
        job = await service.enqueue(SimpleJob(tally), priority=4, server="db-1")

        response = await async_client.get(f"/v1/jobs/{job.id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == str(job.id)
        assert data["name"] == "sample_payloads:SimpleJob"
        assert data["priority"] == 4
        assert data["server"] == "db-1"
        assert data["attempts"] == 0
        assert "handler" not in data

    async def test_get_unknown_job(self, async_client):
        job_id = uuid4()

        response = await async_client.get(f"/v1/jobs/{job_id}")

        assert response.status_code == 404
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["code"] == 404
        assert body["error"]["details"] == {"job_id": str(job_id)}

    async def test_invalid_job_id(self, async_client):
        response = await async_client.get("/v1/jobs/not-a-uuid")

        assert response.status_code == 422

    async def test_list_failed(self, async_client, service, store, clock, tally):
        await service.enqueue(SimpleJob(tally))
        failed = await service.enqueue(SimpleJob(tally))
        await store.update_fields(failed.id, failed_at=clock.now, last_error="boom")

        response = await async_client.get("/v1/jobs/failed", params={"limit": 10})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["limit"] == 10
        assert data["jobs"][0]["id"] == str(failed.id)
        assert data["jobs"][0]["last_error"] == "boom"

    async def test_retry_failed_job(self, async_client, service, store, clock, tally):
        job = await service.enqueue(SimpleJob(tally))
        await store.update_fields(job.id, failed_at=clock.now, attempts=3)

        response = await async_client.post(f"/v1/jobs/{job.id}/retry")

        assert response.status_code == 200
        assert response.json()["message"] == "Job requeued"
        stored = await store.get(job.id)
        assert stored.failed_at is None
        assert stored.attempts == 0

    async def test_retry_job_that_has_not_failed(self, async_client, service, tally):
        job = await service.enqueue(SimpleJob(tally))

        response = await async_client.post(f"/v1/jobs/{job.id}/retry")

        assert response.status_code == 404


@pytest.mark.asyncio
async def test_caller_request_id_is_echoed(async_client):
    response = await async_client.get(
        f"/v1/jobs/{uuid4()}", headers={"X-Request-ID": "trace-123"}
    )

    assert response.headers["X-Request-ID"] == "trace-123"
    assert response.json()["request_id"] == "trace-123"
