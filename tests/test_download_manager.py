"""Tests for the download engine."""

import asyncio
import hashlib
import os
import time

import pytest

from craftlaunch.errors import LockTimeoutError, NotFoundError, StorageError, VerificationError
from craftlaunch.utils.filelock import ExclusiveCreateLock
from craftlaunch.versions.download_manager import DownloadJob, DownloadManager, FetchResult, verify_file

PAYLOAD = b"library bytes " * 512
PAYLOAD_SHA1 = hashlib.sha1(PAYLOAD).hexdigest()


def leftovers(directory):
    return sorted(p.name for p in directory.iterdir() if p.name.endswith((".part", ".lock")))


def test_verify_file(tmp_path):
    path = tmp_path / "file.bin"
    assert verify_file(path) is False

    path.write_bytes(PAYLOAD)
    assert verify_file(path) is True
    assert verify_file(path, size=len(PAYLOAD), sha1=PAYLOAD_SHA1) is True
    assert verify_file(path, size=len(PAYLOAD) + 1, sha1=PAYLOAD_SHA1) is False
    assert verify_file(path, sha1="0" * 40) is False

    directory = tmp_path / "dir.bin"
    directory.mkdir()
    with pytest.raises(StorageError):
        verify_file(directory)


@pytest.mark.asyncio
async def test_fetch_is_idempotent(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    job = DownloadJob(url, tmp_path / "libs" / "lib.jar", len(PAYLOAD), PAYLOAD_SHA1)

    async with DownloadManager() as downloader:
        assert await downloader.fetch(job) == FetchResult.FETCHED
        assert await downloader.fetch(job) == FetchResult.ALREADY_SATISFIED

    assert file_server.hits["/lib.jar"] == 1
    assert job.destination.read_bytes() == PAYLOAD
    assert leftovers(job.destination.parent) == []


@pytest.mark.asyncio
async def test_verification_failure_leaves_no_file(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    job = DownloadJob(url, tmp_path / "lib.jar", sha1="0" * 40)

    async with DownloadManager() as downloader:
        with pytest.raises(VerificationError):
            await downloader.fetch(job)

    assert not job.destination.exists()
    assert leftovers(tmp_path) == []


@pytest.mark.asyncio
async def test_concurrent_fetches_transfer_once(file_server, tmp_path):
    file_server.delay = 0.2
    url = file_server.add("/asset", PAYLOAD)
    job = DownloadJob(url, tmp_path / "asset", len(PAYLOAD), PAYLOAD_SHA1)

    async with DownloadManager() as first, DownloadManager() as second:
        results = await asyncio.gather(first.fetch(job), second.fetch(job))

    assert sorted(r.value for r in results) == ["already_satisfied", "fetched"]
    assert file_server.hits["/asset"] == 1
    assert job.destination.read_bytes() == PAYLOAD


@pytest.mark.asyncio
async def test_readers_never_see_a_partial_destination(file_server, tmp_path):
    file_server.chunk_delay = 0.01
    url = file_server.add("/slow.jar", PAYLOAD)
    job = DownloadJob(url, tmp_path / "slow.jar", len(PAYLOAD), PAYLOAD_SHA1)
    observed = []
    saw_transfer = False

    async with DownloadManager() as first, DownloadManager() as second:
        writers = asyncio.ensure_future(asyncio.gather(first.fetch(job), second.fetch(job)))
        while not writers.done():
            if any(tmp_path.glob("slow.jar.*.part")):
                saw_transfer = True
            if job.destination.exists():
                observed.append(job.destination.read_bytes())
            await asyncio.sleep(0.001)
        await writers

    assert saw_transfer
    assert all(data == PAYLOAD for data in observed)
    assert job.destination.read_bytes() == PAYLOAD
    assert file_server.hits["/slow.jar"] == 1


@pytest.mark.asyncio
async def test_stale_lock_is_reclaimed(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    destination = tmp_path / "lib.jar"
    marker = ExclusiveCreateLock.marker_for(destination)
    marker.write_text("12345")
    old = time.time() - 3600
    os.utime(marker, (old, old))

    async with DownloadManager(lock=ExclusiveCreateLock(timeout=2)) as downloader:
        result = await downloader.fetch(DownloadJob(url, destination, sha1=PAYLOAD_SHA1))

    assert result == FetchResult.FETCHED
    assert not marker.exists()


@pytest.mark.asyncio
async def test_release_keeps_a_marker_taken_over_by_another_holder(tmp_path):
    destination = tmp_path / "lib.jar"
    marker = ExclusiveCreateLock.marker_for(destination)

    async with ExclusiveCreateLock().hold(destination):
        assert marker.exists()
        marker.write_text("999:someone-else")

    assert marker.read_text() == "999:someone-else"


@pytest.mark.asyncio
async def test_holder_keeps_its_marker_fresh(tmp_path):
    destination = tmp_path / "lib.jar"
    marker = ExclusiveCreateLock.marker_for(destination)

    async with ExclusiveCreateLock(stale_after=0.3).hold(destination):
        old = time.time() - 3600
        os.utime(marker, (old, old))
        await asyncio.sleep(0.25)
        assert time.time() - marker.stat().st_mtime < 60

    assert not marker.exists()


@pytest.mark.asyncio
async def test_held_lock_times_out(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    destination = tmp_path / "lib.jar"
    ExclusiveCreateLock.marker_for(destination).write_text("12345")

    async with DownloadManager(lock=ExclusiveCreateLock(timeout=0.2)) as downloader:
        with pytest.raises(LockTimeoutError):
            await downloader.fetch(DownloadJob(url, destination))

    assert file_server.total_hits == 0
    assert not destination.exists()


@pytest.mark.asyncio
async def test_directory_at_destination_is_replaced(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    destination = tmp_path / "lib.jar"
    (destination / "junk").mkdir(parents=True)

    async with DownloadManager() as downloader:
        assert await downloader.fetch(DownloadJob(url, destination, sha1=PAYLOAD_SHA1)) == FetchResult.FETCHED

    assert destination.is_file()


@pytest.mark.asyncio
async def test_corrupt_file_and_stale_parts_are_replaced(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    destination = tmp_path / "lib.jar"
    destination.write_bytes(b"truncated")
    (tmp_path / "lib.jar.deadbeef.part").write_bytes(b"")

    async with DownloadManager() as downloader:
        assert await downloader.fetch(DownloadJob(url, destination, sha1=PAYLOAD_SHA1)) == FetchResult.FETCHED

    assert destination.read_bytes() == PAYLOAD
    assert leftovers(tmp_path) == []


@pytest.mark.asyncio
async def test_redirects_are_followed(file_server, tmp_path):
    file_server.add("/real/lib.jar", PAYLOAD)
    url = file_server.redirect("/moved/lib.jar", "/real/lib.jar")

    async with DownloadManager() as downloader:
        await downloader.fetch(DownloadJob(url, tmp_path / "lib.jar", sha1=PAYLOAD_SHA1))

    assert (tmp_path / "lib.jar").read_bytes() == PAYLOAD


@pytest.mark.asyncio
async def test_missing_upstream_file(file_server, tmp_path):
    async with DownloadManager() as downloader:
        with pytest.raises(NotFoundError):
            await downloader.fetch(DownloadJob(file_server.url("/missing.jar"), tmp_path / "missing.jar"))

    assert not (tmp_path / "missing.jar").exists()
    assert leftovers(tmp_path) == []


@pytest.mark.asyncio
async def test_progress_reports_final_size(file_server, tmp_path):
    url = file_server.add("/lib.jar", PAYLOAD)
    reports = []

    async def sink(progress):
        reports.append(progress)

    async with DownloadManager() as downloader:
        await downloader.fetch(DownloadJob(url, tmp_path / "lib.jar", name="lib"), sink)

    assert reports
    assert reports[-1].name == "lib"
    assert reports[-1].downloaded == len(PAYLOAD)
    assert reports[-1].total == len(PAYLOAD)
