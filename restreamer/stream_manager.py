"""Manage restreaming sessions backed by ffmpeg processes."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import re
import subprocess
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit, urlunsplit

from .config import StreamConfig
from .errors import InvalidDestinationError, NotFoundError, SpawnError, ValidationError
from .media import MediaLibrary
from .models import LogBuffer, StreamLabels, StreamSession
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

TERMINATION_MARKER = "[restreamer] stream process terminated"
REDACTED = "****"
ENDED_LOG_RETENTION = 32

_READ_CHUNK = 4096
_EXIT_POLL_INTERVAL = 0.25
_DRAIN_TIMEOUT = 0.5
_MAX_PENDING = 64 * 1024
_BITRATE = re.compile(r"^(\d+)([kKmM]?)$")


class StreamingManager:
    """Spawns one ffmpeg process per destination and reaps it when it exits.

    Every live session sits in the registry. A watcher task per session pumps
    the process output into the session's log buffer and, once the process is
    gone, writes the termination lines and removes the session. Stopping only
    signals the process; the watcher does the removal.
    """

    def __init__(self, config: StreamConfig, registry: SessionRegistry, media: MediaLibrary):
        self.config = config
        self.registry = registry
        self.media = media
        self._tasks: Set[asyncio.Task] = set()
        # Final output of recently ended sessions, dropped when the key streams again
        self._ended_logs: OrderedDict[str, List[str]] = OrderedDict()

    async def start_session(
        self,
        key: str,
        source_file: str,
        destination_url: Optional[str] = None,
        loop: bool = False,
        labels: Optional[StreamLabels] = None,
    ) -> StreamSession:
        if not key or not source_file:
            raise ValidationError("fileName and streamKey are required")
        base_url = (destination_url or self.config.default_ingest_url or "").strip()
        if not base_url:
            raise InvalidDestinationError("Destination URL is required")

        self.registry.reserve(key, source_file)
        try:
            return await self._launch(key, source_file, base_url, loop, labels or StreamLabels())
        except BaseException:
            self.registry.release(key)
            raise

    async def _launch(
        self, key: str, source_file: str, base_url: str, loop: bool, labels: StreamLabels
    ) -> StreamSession:
        source = self.media.require_streamable(source_file)
        base = base_url.rstrip("/")
        destination = f"{base}/{key}"
        redactions = _redactions(base, key)
        args = self._build_ffmpeg_command(source, destination, loop)
        logger.info(
            "Launching ffmpeg for %s: %s", labels.channel or source_file, _redact(" ".join(args), redactions)
        )
        try:
            process = await self._spawn(args)
        except OSError as exc:
            message = _redact(str(exc), redactions)
            logger.error("Failed to launch ffmpeg for %s: %s", labels.channel or source_file, message)
            raise SpawnError(f"Failed to start stream: {message}") from exc

        session = StreamSession(
            key=key,
            source_file=source_file,
            loop=loop,
            labels=labels,
            process=process,
            logs=LogBuffer(self.config.log_capacity),
            redactions=redactions,
        )
        session.logs.append(f"[restreamer] streaming {source_file} (pid {session.pid}, loop={loop})")
        self.registry.insert(key, session)
        self._ended_logs.pop(key, None)
        self._track(asyncio.create_task(self._watch(session)))
        return session

    async def _spawn(self, args: List[str]) -> Any:
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

    def _build_ffmpeg_command(self, source: Path, destination: str, loop: bool) -> List[str]:
        input_args: List[str] = []
        if loop:
            input_args.extend(["-stream_loop", "-1"])
        input_args.extend(["-re", "-i", str(source)])

        video_bitrate = self.config.default_bitrate
        return [
            self.config.ffmpeg_binary,
            "-hide_banner",
            *input_args,
            "-c:v",
            "libx264",
            "-preset",
            "veryfast",
            "-b:v",
            video_bitrate,
            "-maxrate",
            video_bitrate,
            "-bufsize",
            _double_bitrate(video_bitrate),
            "-pix_fmt",
            "yuv420p",
            "-g",
            "60",
            "-c:a",
            "aac",
            "-ar",
            "44100",
            "-b:a",
            self.config.audio_bitrate,
            "-f",
            "flv",
            destination,
        ]

    async def _watch(self, session: StreamSession) -> None:
        process = session.process
        pumps = [
            asyncio.create_task(self._pump(process.stdout, session)),
            asyncio.create_task(self._pump(process.stderr, session)),
        ]
        code: Optional[int] = None
        try:
            code = await self._wait_exit(process)
            # Children of the transcoder can keep the pipes open after it exits
            _, lingering = await asyncio.wait(pumps, timeout=_DRAIN_TIMEOUT)
            if lingering:
                logger.debug("Output of pid %s still open after exit, closing readers", session.pid)
        finally:
            for pump in pumps:
                pump.cancel()
            for result in await asyncio.gather(*pumps, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.error("Reading output of pid %s failed: %s", session.pid, result)
            if code is None:
                code = process.returncode
            self._finish(session, code)

    async def _wait_exit(self, process: Any, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process itself to exit, whether or not its pipes are closed.

        ``process.wait()`` may only resolve once every pipe is closed, so the
        return code is polled as well. Raises :class:`asyncio.TimeoutError`
        when ``timeout`` elapses first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        waiter = asyncio.ensure_future(process.wait())
        try:
            while True:
                interval = _EXIT_POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    interval = min(interval, remaining)
                done, _ = await asyncio.wait({waiter}, timeout=interval)
                if done:
                    return waiter.result()
                if process.returncode is not None:
                    return process.returncode
        finally:
            waiter.cancel()

    async def _pump(self, stream: Optional[asyncio.StreamReader], session: StreamSession) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            text = pending + decoder.decode(chunk)
            cut = max(text.rfind("\n"), text.rfind("\r"))
            if cut >= 0:
                session.logs.append(_redact(text[:cut], session.redactions))
                pending = text[cut + 1 :]
            else:
                pending = text
            if len(pending) > _MAX_PENDING:
                session.logs.append(_redact(pending, session.redactions))
                pending = ""
        pending += decoder.decode(b"", final=True)
        if pending:
            session.logs.append(_redact(pending, session.redactions))

    def _finish(self, session: StreamSession, code: Optional[int]) -> None:
        session.logs.append(TERMINATION_MARKER)
        session.logs.append(f"exit code {code}")
        if self.registry.remove(session.key, session) is not None:
            self._ended_logs[session.key] = session.logs.snapshot()
            self._ended_logs.move_to_end(session.key)
            while len(self._ended_logs) > ENDED_LOG_RETENTION:
                self._ended_logs.popitem(last=False)
        name = session.labels.channel or session.source_file
        if code == 0 or session.stop_requested:
            logger.info("Stream %s ended with exit code %s", name, code)
        else:
            logger.warning("Stream %s crashed with exit code %s", name, code)

    async def stop_session(self, key: str) -> StreamSession:
        session = self.registry.get(key)
        if session is None or session.stop_requested:
            raise NotFoundError("Stream not found")
        self._signal(session)
        return session

    async def stop_all(self) -> int:
        count = 0
        for session in self.registry.list():
            if session.stop_requested:
                continue
            self._signal(session)
            count += 1
        logger.info("Signalled %d stream(s) to stop", count)
        return count

    def _signal(self, session: StreamSession) -> None:
        session.stop_requested = True
        session.logs.append("[restreamer] stop requested")
        logger.info("Stopping stream %s (pid %s)", session.labels.channel or session.source_file, session.pid)
        try:
            session.process.terminate()
        except ProcessLookupError:
            return
        self._track(asyncio.create_task(self._escalate(session)))

    async def _escalate(self, session: StreamSession) -> None:
        try:
            await self._wait_exit(session.process, timeout=self.config.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("ffmpeg pid %s ignored SIGTERM, killing", session.pid)
            with contextlib.suppress(ProcessLookupError):
                session.process.kill()

    def get_logs(self, key: str) -> List[str]:
        session = self.registry.get(key)
        if session is None:
            return list(self._ended_logs.get(key, []))
        return session.logs.snapshot()

    def list_status(self) -> List[Dict[str, Any]]:
        return [session.status() for session in self.registry.list()]

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding watchers; returns False if some are still running."""
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        return not still_running

    async def shutdown(self) -> None:
        await self.stop_all()
        if not await self.wait_idle(timeout=self.config.stop_timeout + 2):
            logger.warning("Some streams did not exit before shutdown")

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Stream supervisor task failed: %s", task.exception())


def _redactions(base_url: str, key: str) -> List[Tuple[str, str]]:
    """Secrets of a destination URL with their masked form, longest first.

    Only the full destination URL and any credentials embedded in its
    authority are masked, so short keys do not blank unrelated output.
    """
    parts = urlsplit(base_url)
    userinfo, at, host = parts.netloc.rpartition("@")
    if not at:
        return [(f"{base_url}/{key}", f"{base_url}/{REDACTED}")]
    bare = urlunsplit(parts._replace(netloc=host))
    masked = urlunsplit(parts._replace(netloc=f"{REDACTED}@{host}"))
    return [
        (f"{base_url}/{key}", f"{masked}/{REDACTED}"),
        (f"{bare}/{key}", f"{bare}/{REDACTED}"),
        (f"{userinfo}@", f"{REDACTED}@"),
    ]


def _redact(text: str, redactions: List[Tuple[str, str]]) -> str:
    for secret, replacement in redactions:
        text = text.replace(secret, replacement)
    return text


def _double_bitrate(bitrate: str) -> str:
    match = _BITRATE.match(bitrate.strip())
    if not match:
        return bitrate
    value, unit = match.groups()
    return f"{int(value) * 2}{unit}"
