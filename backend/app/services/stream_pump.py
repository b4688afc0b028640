"""Chunked stream copy with stall detection.

A StreamPump moves bytes from a source to a sink one chunk at a time:

    READING -> (empty read) -> DONE
            -> (read too slow / over limit / error) -> ABORTED
            -> WRITING -> READING ...

Memory use is bounded by one chunk. After every chunk the pump yields to
the event loop, so hundreds of transfers interleave on one loop and blocking
file reads (aiofiles) only hold a worker thread for one chunk at a time.

Stall detection looks at a single chunk: if reading it took longer than a
full chunk should take at the throughput floor, the transfer is aborted.
With a 512 KiB chunk and a 32 KiB/s floor that is 16 seconds. Slow-but-steady
clients above the floor are never cut off, however long the transfer runs.

The outcome is reported through a TransferOutcome, which resolves exactly
once. Aborts close both ends; cleaning up a partially written destination
is the job of whoever owns the sink (see LocalFileStorage.store).
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol

from app.services.errors import PayloadTooLargeError, TransferInterruptedError

logger = logging.getLogger(__name__)


class ByteSource(Protocol):
    async def read(self, size: int = -1) -> bytes: ...

    async def close(self) -> None: ...


class ByteSink(Protocol):
    async def write(self, data: bytes) -> int | None: ...

    async def close(self) -> None: ...


class AsyncIteratorSource:
    """Adapts an async iterator of byte pieces (e.g. Request.stream()) to read(size).

    Holds at most one chunk plus one incoming piece in memory.
    """

    def __init__(self, pieces: AsyncIterator[bytes]):
        self._pieces = pieces.__aiter__()
        self._buffer = bytearray()
        self._exhausted = False

    async def read(self, size: int = -1) -> bytes:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            try:
                piece = await self._pieces.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                break
            self._buffer.extend(piece)
        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data

    async def close(self) -> None:
        self._exhausted = True
        self._buffer.clear()
        aclose = getattr(self._pieces, "aclose", None)
        if aclose is not None:
            await aclose()


class PumpState(str, enum.Enum):
    READING = "reading"
    WRITING = "writing"
    DONE = "done"
    ABORTED = "aborted"


class TransferOutcome:
    """Single-resolution result handle: either a byte count or an error."""

    def __init__(self):
        self._settled = asyncio.Event()
        self.bytes_copied: Optional[int] = None
        self.error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self._settled.is_set()

    def resolve(self, bytes_copied: int) -> bool:
        if self.done:
            return False
        self.bytes_copied = bytes_copied
        self._settled.set()
        return True

    def fail(self, error: BaseException) -> bool:
        if self.done:
            return False
        self.error = error
        self._settled.set()
        return True

    async def wait(self) -> int:
        await self._settled.wait()
        if self.error is not None:
            raise self.error
        return self.bytes_copied


@dataclass(frozen=True)
class TransferLimits:
    """Chunk size and throughput floor for one direction of transfer."""
    chunk_size: int
    min_throughput: int
    max_bytes: Optional[int] = None

    def pump(self, source: "ByteSource", sink: Optional["ByteSink"] = None, *, size_hint: Optional[int] = None,
             label: str = "transfer") -> "StreamPump":
        return StreamPump(
            source,
            sink,
            chunk_size=self.chunk_size,
            min_throughput=self.min_throughput,
            size_hint=size_hint,
            max_bytes=self.max_bytes,
            label=label,
        )


UPLOAD_LIMITS = TransferLimits(chunk_size=512 * 1024, min_throughput=32 * 1024)
DOWNLOAD_LIMITS = TransferLimits(chunk_size=2 * 1024 * 1024, min_throughput=32 * 1024)


class StreamPump:
    def __init__(
        self,
        source: ByteSource,
        sink: Optional[ByteSink] = None,
        *,
        chunk_size: int,
        min_throughput: int,
        size_hint: Optional[int] = None,
        max_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        label: str = "transfer",
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.source = source
        self.sink = sink
        self.chunk_size = chunk_size
        self.min_throughput = min_throughput
        self.size_hint = size_hint
        self.max_bytes = max_bytes
        self.label = label
        self._clock = clock
        self.state = PumpState.READING
        self.bytes_copied = 0
        self.outcome = TransferOutcome()

    @property
    def stall_seconds(self) -> float:
        """Longest a single chunk read may take before the transfer counts as stalled."""
        if self.min_throughput <= 0:
            return float("inf")
        return self.chunk_size / self.min_throughput

    async def run(self) -> int:
        """Copy source to sink until EOF. Returns the byte count.

        Raises TransferInterruptedError on a stall, PayloadTooLargeError when
        max_bytes is exceeded, or whatever the source/sink raised.
        """
        if self.sink is None:
            raise RuntimeError("run() needs a sink; use chunks() to stream to a consumer")
        try:
            while await self.step():
                # Give other transfers a turn before the next chunk
                await asyncio.sleep(0)
        except BaseException as e:
            await self._abort(e)
            raise
        return await self.outcome.wait()

    async def step(self) -> bool:
        """Run one read/check/write step. Returns False once finished."""
        chunk = await self._read_chunk()
        if not chunk:
            await self._finish()
            return False
        self.state = PumpState.WRITING
        await self.sink.write(chunk)
        self.bytes_copied += len(chunk)
        self.state = PumpState.READING
        return True

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield stall-checked chunks to a consumer that acts as the sink.

        Used for downloads, where the HTTP response pulls the chunks. Closing
        the iterator early (client went away) aborts the pump and closes the
        source.
        """
        try:
            while True:
                chunk = await self._read_chunk()
                if not chunk:
                    await self._finish()
                    return
                self.bytes_copied += len(chunk)
                yield chunk
        except BaseException as e:
            await self._abort(e)
            raise

    async def _read_chunk(self) -> bytes:
        self.state = PumpState.READING
        started = self._clock()
        timeout = self.stall_seconds if self.min_throughput > 0 else None
        try:
            chunk = await asyncio.wait_for(self.source.read(self.chunk_size), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransferInterruptedError(
                f"{self.label}: no chunk within {self.stall_seconds:.1f}s after {self.bytes_copied} bytes"
            ) from None
        elapsed = self._clock() - started
        if chunk and elapsed > self.stall_seconds:
            raise TransferInterruptedError(
                f"{self.label}: chunk of {len(chunk)} bytes took {elapsed:.1f}s "
                f"(below {self.min_throughput} B/s)"
            )
        if self.max_bytes is not None and self.bytes_copied + len(chunk) > self.max_bytes:
            raise PayloadTooLargeError(f"{self.label}: more than {self.max_bytes} bytes")
        return chunk

    async def _finish(self) -> None:
        await self._close_quietly(self.source)
        if self.sink is not None:
            # A failed final flush must fail the transfer
            await self.sink.close()
        self.state = PumpState.DONE
        self.outcome.resolve(self.bytes_copied)
        if self.size_hint is not None and self.size_hint != self.bytes_copied:
            logger.warning(
                f"{self.label}: copied {self.bytes_copied} bytes but size hint was {self.size_hint}"
            )

    async def _abort(self, error: BaseException) -> None:
        if self.outcome.done:
            return
        self.state = PumpState.ABORTED
        await self._close_quietly(self.source)
        await self._close_quietly(self.sink)
        self.outcome.fail(error)
        if isinstance(error, TransferInterruptedError):
            logger.warning(f"Interrupted {error}")
        elif isinstance(error, Exception):
            logger.info(f"{self.label} aborted after {self.bytes_copied} bytes: {error}")

    async def _close_quietly(self, end) -> None:
        """Close one end; a failure here is logged since the outcome is already decided."""
        if end is None:
            return
        try:
            await end.close()
        except Exception as e:
            logger.warning(f"{self.label}: error closing {type(end).__name__}: {e}")
