import asyncio
import time
from contextlib import asynccontextmanager

import pytest

from mcscan import async_scanner
from mcscan.exceptions import StoreError, ValidationError
from mcscan.jobs import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
    ScanJobManager,
)
from mcscan.prober import ProbeResult
from mcscan.store import memory_store_factory


@pytest.fixture
def manager(config, store, progress):
    jobs = ScanJobManager(config, memory_store_factory(store), progress_logger=progress)
    yield jobs
    jobs.shutdown()


def _wait_for_status(job, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    while job.status != status and time.monotonic() < deadline:
        time.sleep(0.01)
    return job.status == status


def test_private_range_completes_without_probing(manager, monkeypatch):
    probed = []

    async def probe(ip, port, timeout):
        probed.append(ip)
        return ProbeResult.CLOSED_OR_TIMEOUT

    monkeypatch.setattr(async_scanner, "probe", probe)
    job = manager.submit("10.0.0.1", "10.0.0.50", 10)
    assert manager.wait(job.id, timeout=5.0)
    assert job.status == STATUS_COMPLETED
    assert job.stats.filtered == 50 and job.stats.batches == 5
    assert probed == []
    assert job.to_dict()["stats"]["total"] == 50
    assert job.finished_at >= job.started_at


def test_validation_happens_before_submit(manager):
    with pytest.raises(ValidationError):
        manager.submit("5.9.0.9", "5.9.0.1")
    with pytest.raises(ValidationError):
        manager.submit("5.9.0.1", "5.9.0.9", 0)
    assert manager.list_jobs() == []


def test_default_batch_size_applied(manager, monkeypatch):
    monkeypatch.setattr(async_scanner, "probe", _closed)
    job = manager.submit("5.9.0.1", "5.9.0.2")
    assert job.batch_size == 25
    assert manager.wait(job.id, timeout=5.0)


async def _closed(ip, port, timeout):
    return ProbeResult.CLOSED_OR_TIMEOUT


def test_cancel_running_scan(manager, monkeypatch):
    async def slow_probe(ip, port, timeout):
        await asyncio.sleep(30)
        return ProbeResult.CLOSED_OR_TIMEOUT

    monkeypatch.setattr(async_scanner, "probe", slow_probe)
    job = manager.submit("5.9.0.1", "5.9.0.100", 10)
    assert _wait_for_status(job, STATUS_RUNNING)
    assert manager.cancel(job.id) is True
    assert manager.wait(job.id, timeout=5.0)
    assert job.status == STATUS_CANCELLED
    assert manager.cancel(job.id) is False


def test_store_failure_is_captured(config, progress):
    @asynccontextmanager
    async def unavailable(config):
        raise StoreError("Elasticsearch is not reachable")
        yield

    jobs = ScanJobManager(config, unavailable, progress_logger=progress)
    try:
        job = jobs.submit("5.9.0.1", "5.9.0.2")
        assert jobs.wait(job.id, timeout=5.0)
        assert job.status == STATUS_FAILED
        assert "not reachable" in job.error
    finally:
        jobs.shutdown()


def test_jobs_listed_newest_first(manager, monkeypatch):
    monkeypatch.setattr(async_scanner, "probe", _closed)
    first = manager.submit("10.0.0.1", "10.0.0.2")
    time.sleep(0.01)
    second = manager.submit("10.0.0.3", "10.0.0.4")
    assert [j.id for j in manager.list_jobs()] == [second.id, first.id]
    assert manager.get("missing") is None


def test_cancel_before_scan_starts(manager, monkeypatch):
    async def slow_probe(ip, port, timeout):
        await asyncio.sleep(30)
        return ProbeResult.CLOSED_OR_TIMEOUT

    monkeypatch.setattr(async_scanner, "probe", slow_probe)
    for _ in range(20):
        job = manager.submit("5.9.0.1", "5.9.0.3", 3)
        assert job.cancel() is True
        assert manager.wait(job.id)
        time.sleep(0.01)
        assert job.status == STATUS_CANCELLED


def test_wait_unknown_job(manager):
    assert manager.wait("missing") is False


def test_finished_jobs_are_pruned(config, store, progress):
    jobs = ScanJobManager(config, memory_store_factory(store), progress_logger=progress, max_finished_jobs=2)
    try:
        submitted = []
        for n in range(4):
            job = jobs.submit(f"10.0.0.{n + 1}", f"10.0.0.{n + 1}")
            assert jobs.wait(job.id, timeout=5.0)
            submitted.append(job)
        last = jobs.submit("10.0.0.9", "10.0.0.9")
        assert [j.id for j in jobs.list_jobs()][-2:] == [submitted[3].id, submitted[2].id]
        assert jobs.get(submitted[0].id) is None and jobs.get(submitted[1].id) is None
        assert jobs.get(last.id) is last
    finally:
        jobs.shutdown()
