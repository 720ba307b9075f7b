"""
Log Streamer - Progressive console streaming and completion detection.

Each tick fetches the console bytes beyond the cursor, emits them as one
LogChunk, then checks the build status. When the build stops, the rest of
the log is drained before the record is built, so BuildCompleted always
follows the last LogChunk of that build.
"""

from __future__ import annotations

import asyncio
import codecs
import dataclasses
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from buildwatch.ci.analysis.error_classifier import (
    FailureCategory,
    classify,
    error_context,
    summarize,
)
from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import BuildHandle, BuildRecord, LogCursor
from buildwatch.core.exceptions import StreamAlreadyActive, TransientFetchError
from buildwatch.core.polling import RetryPolicy, poll_until
from buildwatch.events.bus import EventBus
from buildwatch.events.models import BuildCompleted, BuildTimedOut, LogChunk
from buildwatch.utils.logger import get_build_logger

# Upper bound on fetches made while draining a finished build's log
MAX_DRAIN_FETCHES = 100


@dataclass
class StreamSession:
    """Mutable state of one streaming session."""

    cursor: LogCursor
    tail_chars: int
    tail: str = ""
    chunks: int = 0
    fetch_errors: int = 0
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )

    @property
    def pending_bytes(self) -> int:
        """Bytes of an incomplete UTF-8 sequence held back from the last chunk."""
        return len(self.decoder.getstate()[0])

    def remember(self, text: str) -> None:
        self.tail = (self.tail + text)[-self.tail_chars:]
        self.chunks += 1


class LogStreamer:
    """Streams console output for resolved builds, one session per handle."""

    def __init__(
        self,
        client: JenkinsClient,
        bus: EventBus,
        policy: RetryPolicy,
        *,
        tail_chars: int = 65536,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.bus = bus
        self.policy = policy
        self.tail_chars = tail_chars
        self._sleep = sleep
        self._active: set[BuildHandle] = set()

    def is_streaming(self, handle: BuildHandle) -> bool:
        return handle in self._active

    async def stream(self, handle: BuildHandle) -> BuildRecord | None:
        """
        Stream a build until it finishes or the budget runs out.

        Returns:
            The emitted (and persisted) BuildRecord, or None on timeout

        Raises:
            StreamAlreadyActive: If this handle is already being streamed
            PersistenceError: If the final record could not be stored
        """
        if handle in self._active:
            raise StreamAlreadyActive(handle.job_name, handle.build_number)

        self._active.add(handle)
        try:
            return await self._run(handle)
        finally:
            self._active.discard(handle)

    async def _run(self, handle: BuildHandle) -> BuildRecord | None:
        log = get_build_logger(handle.job_name, handle.build_number)
        session = StreamSession(cursor=LogCursor(handle), tail_chars=self.tail_chars)

        async def probe() -> dict[str, Any] | None:
            await self._pull(session)
            status = await asyncio.to_thread(
                self.client.get_build, handle.job_name, handle.build_number
            )
            if status.get("building", True):
                return None
            return status

        log.info(f"📜 Streaming console output of {handle}")
        result = await poll_until(probe, self.policy, name=f"stream {handle}", sleep=self._sleep)

        if not result.satisfied:
            log.warning(
                f"⏱️ {handle} still building after {result.attempts} polls; "
                f"streamed {session.cursor.byte_offset} bytes, no final record"
            )
            await self.bus.emit(
                BuildTimedOut(stage="stream", attempts=result.attempts, handle=handle)
            )
            return None

        await self._drain(session)
        record = self._build_record(handle, result.value, session)
        log.info(
            f"✅ {handle} finished: {record.status.value} "
            f"({session.chunks} chunks, {session.cursor.byte_offset} bytes)"
        )
        await self.bus.emit(BuildCompleted(record=record))
        return record

    async def _pull(self, session: StreamSession) -> bool:
        """
        Fetch and emit new console text. Failures are logged, not raised.

        Returns:
            True if new console bytes were consumed
        """
        handle = session.cursor.handle
        offset = session.cursor.byte_offset
        try:
            chunk = await asyncio.to_thread(
                self.client.fetch_log_chunk, handle.job_name, handle.build_number, offset
            )
        except TransientFetchError as e:
            session.fetch_errors += 1
            get_build_logger(handle.job_name, handle.build_number).warning(
                f"⚠️ Log fetch at offset {offset} failed: {e}"
            )
            return False

        if not chunk.data:
            return False

        # A chunk may end inside a multibyte character; the decoder holds those
        # bytes until the next chunk completes them.
        start = offset - session.pending_bytes
        text = session.decoder.decode(chunk.data)
        if text:
            await self._emit(session, text, start)
        session.cursor.advance(chunk.byte_length)
        return True

    async def _emit(self, session: StreamSession, text: str, offset: int) -> None:
        await self.bus.emit(LogChunk(handle=session.cursor.handle, text=text, offset=offset))
        session.remember(text)

    async def _drain(self, session: StreamSession) -> None:
        """Fetch whatever the server wrote after the last tick."""
        for _ in range(MAX_DRAIN_FETCHES):
            if not await self._pull(session):
                break

        pending = session.pending_bytes
        text = session.decoder.decode(b"", final=True)
        if text:
            await self._emit(session, text, session.cursor.byte_offset - pending)

    def _build_record(
        self,
        handle: BuildHandle,
        status: dict[str, Any],
        session: StreamSession,
    ) -> BuildRecord:
        record = BuildRecord.from_status(
            handle, status, self.client.console_url(handle.job_name, handle.build_number)
        )
        if not record.status.is_failure:
            return record

        classification = classify(error_context(session.tail))
        if classification.category == FailureCategory.UNKNOWN:
            classification = classify(session.tail)
        return dataclasses.replace(
            record,
            error_summary=summarize(session.tail),
            failure_category=classification.category.value,
        )
