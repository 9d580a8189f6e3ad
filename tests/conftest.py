"""Shared test fixtures."""
import asyncio
import signal
from pathlib import Path

import pytest

from restreamer.config import MediaConfig, RestreamerConfig, StreamConfig
from restreamer.media import MediaLibrary
from restreamer.registry import SessionRegistry
from restreamer.stream_manager import StreamingManager


class FakeProcess:
    """Stand-in for an asyncio subprocess whose output and exit are driven by the test."""

    def __init__(self, pid=4242):
        self.pid = pid
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.signals = []
        self._exited = asyncio.Event()

    def emit(self, data, stream="stderr"):
        getattr(self, stream).feed_data(data.encode() if isinstance(data, str) else data)

    def exit(self, code):
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def terminate(self):
        self.signals.append(signal.SIGTERM)
        self.exit(-signal.SIGTERM)

    def kill(self):
        self.signals.append(signal.SIGKILL)
        self.exit(-signal.SIGKILL)

    async def wait(self):
        await self._exited.wait()
        return self.returncode


class FakeStreamingManager(StreamingManager):
    """Manager that hands out FakeProcess objects instead of running ffmpeg."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.spawned = []
        self.spawn_error = None

    async def _spawn(self, args):
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess(pid=4242 + len(self.spawned))
        self.spawned.append((args, process))
        return process


@pytest.fixture
def media_root(tmp_path) -> Path:
    root = tmp_path / "public"
    root.mkdir()
    (root / "demo.mp4").write_bytes(b"\x00" * 128)
    (root / "other.mp4").write_bytes(b"\x00" * 64)
    (root / "empty.mp4").write_bytes(b"")
    return root


@pytest.fixture
def config(media_root, tmp_path) -> RestreamerConfig:
    return RestreamerConfig(
        stream=StreamConfig(ffmpeg_binary="ffmpeg", log_capacity=50, stop_timeout=0.5),
        media=MediaConfig(root=media_root),
        platforms_file=tmp_path / "platforms.json",
    )


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def manager(config, registry) -> FakeStreamingManager:
    return FakeStreamingManager(config.stream, registry, MediaLibrary(config.media))
