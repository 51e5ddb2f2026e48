"""Shared fakes for the logfeed tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from logfeed.models.events import FileMeta
from logfeed.sources.errors import RemoteSourceError
from logfeed.utils.notification_router import DispatchError

START = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeSource:
    """In-memory file source with switchable failures."""

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.mtimes = {}
        self.list_calls = 0
        self.download_calls = 0
        self.fail_list = None
        self.fail_downloads = {}
        self.list_gate = None
        self.accessible = True
        self.closed = False

    def write(self, path: str, data: bytes, modified: datetime = START):
        self.files[path] = data
        self.mtimes[path] = modified

    def append(self, path: str, data: bytes):
        self.files[path] = self.files.get(path, b"") + data

    def meta(self, path: str) -> FileMeta:
        return FileMeta(
            name=path.rsplit("/", 1)[-1],
            path=path,
            size=len(self.files[path]),
            modified_at=self.mtimes.get(path, START),
        )

    async def list_files(self, service_id, path):
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list is not None:
            raise self.fail_list
        return [self.meta(p) for p in self.files]

    async def download_file(self, service_id, path):
        self.download_calls += 1
        if path in self.fail_downloads:
            raise self.fail_downloads[path]
        return self.files[path]

    async def test_access(self, service_id, path):
        return self.accessible

    async def close(self):
        self.closed = True


class RecordingSink:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, destination, event, template):
        if destination in self.fail_for:
            raise DispatchError(f"channel {destination} unreachable")
        self.sent.append((destination, event, template))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def sink():
    return RecordingSink()


def unavailable(status: int = 503) -> RemoteSourceError:
    return RemoteSourceError("service unavailable", status=status, endpoint="/list")


async def no_sleep(_delay):
    await asyncio.sleep(0)
