from __future__ import annotations

import enum
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .security import is_hidden_name


logger = logging.getLogger(__name__)


class EntryKind(str, enum.Enum):
    DIRECTORY = "directory"
    FILE = "file"


@dataclass(frozen=True)
class FileSystemEntry:
    path: Path
    arcname: str  # POSIX path relative to the walk base
    kind: EntryKind
    size: int  # 0 for directories
    mtime: float
    mode: int  # permission bits only

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


def _within(root: Path, resolved: Path) -> bool:
    return resolved == root or root in resolved.parents


def snapshot_entry(path: Path, base: Path, root: Optional[Path] = None) -> Optional[FileSystemEntry]:
    """Stat one path and describe it, or return None if it must be skipped.

    Symlinks are archived only when they point at a regular file inside
    ``root``; directories behind links are never followed.
    """
    try:
        st = os.lstat(path)
    except OSError as e:
        logger.warning("Skipping %s: %s", path, e)
        return None

    if stat.S_ISLNK(st.st_mode):
        root = (root or base).resolve()
        try:
            target = path.resolve(strict=True)
            st = os.stat(path)
        except (OSError, RuntimeError) as e:
            logger.warning("Skipping broken link %s: %s", path, e)
            return None
        if not _within(root, target):
            logger.warning("Skipping link leaving the share: %s", path)
            return None
        if not stat.S_ISREG(st.st_mode):
            logger.info("Not following link %s", path)
            return None

    if stat.S_ISDIR(st.st_mode):
        kind, size = EntryKind.DIRECTORY, 0
    elif stat.S_ISREG(st.st_mode):
        kind, size = EntryKind.FILE, st.st_size
    else:
        logger.info("Skipping special file %s", path)
        return None

    return FileSystemEntry(
        path=path,
        arcname=path.relative_to(base).as_posix(),
        kind=kind,
        size=size,
        mtime=st.st_mtime,
        mode=stat.S_IMODE(st.st_mode),
    )


def visible_children(directory: Path) -> list[Path]:
    """Non-hidden children of a directory, sorted by name."""
    with os.scandir(directory) as it:
        names = sorted(e.name for e in it if not is_hidden_name(e.name))
    return [directory / name for name in names]


def walk_entry(
    base: Path,
    path: Path,
    *,
    root: Optional[Path] = None,
    include_self: bool = True,
) -> Iterator[FileSystemEntry]:
    """Lazily walk ``path`` depth-first, directories before their contents.

    Hidden entries prune their whole subtree. A directory is listed only
    after it has been yielded, so nothing under it is read if the caller
    stops early. Unreadable entries are logged and skipped.
    """
    if include_self:
        if is_hidden_name(path.name):
            logger.debug("Skipping hidden entry %s", path)
            return
        stack = [path]
    else:
        try:
            stack = list(reversed(visible_children(path)))
        except OSError as e:
            logger.warning("Cannot list %s: %s", path, e)
            return

    while stack:
        current = stack.pop()
        entry = snapshot_entry(current, base, root)
        if entry is None:
            continue
        yield entry
        if not entry.is_dir:
            continue
        try:
            children = visible_children(current)
        except OSError as e:
            logger.warning("Cannot list %s: %s", current, e)
            continue
        stack.extend(reversed(children))
