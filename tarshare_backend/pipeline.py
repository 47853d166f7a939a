from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Sequence

from .bridge import ByteBridge
from .config import BRIDGE_CAPACITY, GENERIC_ARCHIVE_NAME, READ_CHUNK_BYTES
from .errors import ConsumerGone
from .security import SelectedEntry, select_entries
from .tar_stream import TarStreamWriter
from .walker import walk_entry


logger = logging.getLogger(__name__)


def archive_name_for(root: Path, directory: Path, selection: Sequence[str]) -> str:
    """Download name for an archive of ``selection`` taken from ``directory``.

    One entry gives ``<leaf>.tar``, several give a generic name, and an empty
    selection is named after the listing directory itself.
    """
    if len(selection) == 1:
        leaf = PurePosixPath(selection[0].strip().strip("/")).name
        return f"{leaf}.tar" if leaf else GENERIC_ARCHIVE_NAME
    if selection:
        return GENERIC_ARCHIVE_NAME
    name = directory.name if directory != root else root.name
    return f"{name}.tar" if name else GENERIC_ARCHIVE_NAME


class ArchiveStream:
    """Async iterator over an archive's bytes that owns its bridge.

    The bridge is closed when iteration ends, fails or is cancelled, on
    ``aclose()``, and when the stream is dropped without ever being started,
    so a waiting worker is always released.
    """

    def __init__(self, bridge: ByteBridge) -> None:
        self._bridge = bridge
        self._loop = bridge.loop

    def __aiter__(self) -> "ArchiveStream":
        return self

    async def __anext__(self) -> bytes:
        try:
            chunk = await self._bridge.receive()
        except BaseException:
            self._bridge.close()
            raise
        if chunk is None:
            self._bridge.close()
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        self._bridge.close()

    def __del__(self) -> None:
        if self._bridge.closed or self._loop.is_closed():
            return
        # Finalizers may run on any thread; close() belongs to the loop.
        self._loop.call_soon_threadsafe(self._bridge.close)


@dataclass
class ArchiveExport:
    """A running archive build: its download name and live byte stream."""

    file_name: str
    bridge: ByteBridge = field(repr=False)
    worker: "asyncio.Future[None]" = field(repr=False)
    stream: ArchiveStream = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.stream = ArchiveStream(self.bridge)

    async def aclose(self) -> None:
        """Abandon the archive, e.g. when the stream is never consumed."""
        await self.stream.aclose()


class ArchiveExportPipeline:
    """Turns a selection into a streamed tar archive, one worker per request."""

    def __init__(
        self,
        root: Path,
        executor: Executor,
        *,
        capacity: int = BRIDGE_CAPACITY,
        read_chunk_bytes: int = READ_CHUNK_BYTES,
    ) -> None:
        self.root = Path(root).resolve()
        self._executor = executor
        self.capacity = capacity
        self.read_chunk_bytes = read_chunk_bytes

    async def build(self, directory: Path, selection: Sequence[str]) -> ArchiveExport:
        """Validate ``selection`` and start streaming its archive.

        Raises ``SelectionError`` before any work starts if the selection
        escapes the root. Returns as soon as the worker is scheduled.
        """
        loop = asyncio.get_running_loop()
        # Resolving selections stats every path component; keep it off the loop
        # and off the archive workers.
        targets = await loop.run_in_executor(None, select_entries, self.root, directory, selection)
        file_name = archive_name_for(self.root, directory, selection)

        bridge = ByteBridge(loop, self.capacity)
        worker = loop.run_in_executor(self._executor, self._produce, bridge, targets, file_name)
        logger.debug(
            "Started %s: %d target(s), buffer of %d chunk(s)",
            file_name,
            len(targets),
            bridge.capacity,
        )
        return ArchiveExport(file_name=file_name, bridge=bridge, worker=worker)

    def _produce(self, bridge: ByteBridge, targets: list[SelectedEntry], file_name: str) -> None:
        started = time.monotonic()
        writer = TarStreamWriter(bridge.send, self.read_chunk_bytes)
        try:
            for target in targets:
                writer.add_all(
                    walk_entry(
                        target.base,
                        target.path,
                        root=self.root,
                        include_self=target.include_self,
                    )
                )
            writer.close()
            bridge.finish()
        except ConsumerGone:
            logger.debug(
                "Client left %s after %d bytes; stopping", file_name, writer.bytes_written
            )
            return
        except Exception as exc:
            logger.exception("Archive %s failed", file_name)
            try:
                bridge.fail(exc)
            except ConsumerGone:
                pass
            return

        logger.info(
            "Sent %s: %d entries (%d skipped), %d bytes in %.2fs",
            file_name,
            writer.entries_written,
            writer.entries_skipped,
            writer.bytes_written,
            time.monotonic() - started,
        )
