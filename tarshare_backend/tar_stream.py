from __future__ import annotations

import logging
import tarfile
from typing import Callable, Iterable

from .config import READ_CHUNK_BYTES
from .walker import FileSystemEntry


logger = logging.getLogger(__name__)

BLOCK_SIZE = tarfile.BLOCKSIZE  # 512
RECORD_SIZE = tarfile.RECORDSIZE  # 20 blocks, what GNU tar pads to

Sink = Callable[[bytes], None]


def _padding(length: int, unit: int) -> int:
    return (unit - length % unit) % unit


class TarStreamWriter:
    """Serialize filesystem entries as a tar stream into a blocking sink.

    ``sink`` receives each chunk in order and may block to apply
    backpressure. Anything it raises (in particular ``ConsumerGone``) stops
    the writer immediately; only ``OSError`` from the filesystem side is
    absorbed per entry.

    Headers use the PAX format so long and non-ASCII names survive. Each
    regular file is copied in ``read_chunk_size`` reads and never held in
    memory whole.
    """

    def __init__(self, sink: Sink, read_chunk_size: int = READ_CHUNK_BYTES) -> None:
        self._sink = sink
        self._read_chunk_size = read_chunk_size
        self._offset = 0
        self._closed = False
        self.entries_written = 0
        self.entries_skipped = 0

    @property
    def bytes_written(self) -> int:
        return self._offset

    def __enter__(self) -> "TarStreamWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()

    def _write(self, data: bytes) -> None:
        if not data:
            return
        self._sink(data)
        self._offset += len(data)

    @staticmethod
    def _tarinfo(entry: FileSystemEntry) -> tarfile.TarInfo:
        info = tarfile.TarInfo(entry.arcname)
        info.type = tarfile.DIRTYPE if entry.is_dir else tarfile.REGTYPE
        info.size = entry.size
        info.mode = entry.mode
        info.mtime = int(entry.mtime)
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        return info

    def _header(self, entry: FileSystemEntry) -> bytes:
        return self._tarinfo(entry).tobuf(
            format=tarfile.PAX_FORMAT, encoding="utf-8", errors="surrogateescape"
        )

    def add(self, entry: FileSystemEntry) -> bool:
        """Write one entry. Returns False if it was skipped."""
        if self._closed:
            raise RuntimeError("TarStreamWriter is closed")

        if entry.is_dir:
            self._write(self._header(entry))
            self.entries_written += 1
            return True

        try:
            fobj = open(entry.path, "rb")
        except OSError as e:
            logger.warning("Skipping %s: %s", entry.arcname, e)
            self.entries_skipped += 1
            return False

        with fobj:
            self._write(self._header(entry))
            remaining = entry.size
            while remaining:
                try:
                    data = fobj.read(min(self._read_chunk_size, remaining))
                except OSError as e:
                    logger.warning("Read failed for %s: %s", entry.arcname, e)
                    break
                if not data:
                    logger.warning("%s shrank while archiving", entry.arcname)
                    break
                self._write(data)
                remaining -= len(data)

            # Keep the declared size so later headers stay aligned.
            while remaining:
                fill = min(self._read_chunk_size, remaining)
                self._write(bytes(fill))
                remaining -= fill

        self._write(bytes(_padding(entry.size, BLOCK_SIZE)))
        self.entries_written += 1
        return True

    def add_all(self, entries: Iterable[FileSystemEntry]) -> int:
        added = 0
        for entry in entries:
            if self.add(entry):
                added += 1
        return added

    def close(self) -> None:
        """Write the end-of-archive marker and pad to a full record."""
        if self._closed:
            return
        trailer = 2 * BLOCK_SIZE
        trailer += _padding(self._offset + trailer, RECORD_SIZE)
        self._write(bytes(trailer))
        self._closed = True
