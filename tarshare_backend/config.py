from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path


# Directory shared by the server.
# Default: the current working directory, like running a quick file server.
# Override with env var TARSHARE_ROOT or the --root flag.
SHARE_ROOT = Path(os.environ.get("TARSHARE_ROOT") or ".")

HOST = os.environ.get("TARSHARE_HOST", "127.0.0.1")
PORT = int(os.environ.get("TARSHARE_PORT") or os.environ.get("PORT") or "3010")

# Threads that walk and serialize archives; each archive download holds one.
ARCHIVE_WORKERS = int(os.environ.get("TARSHARE_WORKERS") or str(os.cpu_count() or 4))

# Chunks buffered between an archive worker and its HTTP response.
BRIDGE_CAPACITY = int(os.environ.get("TARSHARE_BRIDGE_CAPACITY", "10"))

# Read buffer used when copying file contents into an archive.
READ_CHUNK_BYTES = int(os.environ.get("TARSHARE_READ_CHUNK_BYTES", str(64 * 1024)))  # 64KB

LOG_LEVEL = os.environ.get("TARSHARE_LOG_LEVEL", "INFO").upper()

# Entries whose name starts with this marker are never listed or archived.
HIDDEN_PREFIX = "."

# Name used when several entries are selected at once.
GENERIC_ARCHIVE_NAME = "archive.tar"


@dataclass(frozen=True)
class ShareSettings:
    root: Path
    host: str = HOST
    port: int = PORT
    archive_workers: int = ARCHIVE_WORKERS
    bridge_capacity: int = BRIDGE_CAPACITY
    read_chunk_bytes: int = READ_CHUNK_BYTES
    log_level: str = LOG_LEVEL

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).resolve())
        if self.archive_workers < 1:
            raise ValueError("archive_workers must be at least 1")
        if self.bridge_capacity < 1:
            raise ValueError("bridge_capacity must be at least 1")
        if self.read_chunk_bytes < 1:
            raise ValueError("read_chunk_bytes must be at least 1")

    @classmethod
    def from_env(cls) -> "ShareSettings":
        return cls(root=SHARE_ROOT)

    def with_overrides(self, **changes) -> "ShareSettings":
        """Return a copy with the non-None values in ``changes`` applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)
