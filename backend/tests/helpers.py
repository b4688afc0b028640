"""Test doubles for byte sources, sinks and time."""
import asyncio
import io


class BytesSource:
    """In-memory byte source with the read/close interface the pump expects."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)
        self.closed = False
        self.read_sizes: list[int] = []

    async def read(self, size: int = -1) -> bytes:
        self.read_sizes.append(size)
        return self._buffer.read(size)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TimedSource:
    """Hands out pre-cut chunks; each read advances a fake clock by a given delay."""

    def __init__(self, chunks: list[bytes], delays: list[float], clock: FakeClock):
        self._chunks = list(chunks)
        self._delays = list(delays)
        self._clock = clock
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if self._delays:
            self._clock.now += self._delays.pop(0)
        return self._chunks.pop(0) if self._chunks else b""

    async def close(self) -> None:
        self.closed = True


class HangingSource:
    """Delivers its first chunk, then never answers again."""

    def __init__(self, first: bytes):
        self._first = first
        self.closed = False

    async def read(self, size: int = -1) -> bytes:
        if self._first:
            data, self._first = self._first, b""
            return data
        await asyncio.sleep(3600)
        return b""

    async def close(self) -> None:
        self.closed = True


class MemorySink:
    def __init__(self, log: list | None = None, name: str = "sink"):
        self.data = bytearray()
        self.closed = False
        self._log = log
        self._name = name

    async def write(self, data: bytes) -> int:
        self.data.extend(data)
        if self._log is not None:
            self._log.append(self._name)
        return len(data)

    async def close(self) -> None:
        self.closed = True


def blob_files(path) -> list[str]:
    """Every file in the upload directory, including hidden partial blobs."""
    return sorted(p.name for p in path.iterdir())
