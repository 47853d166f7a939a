from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable
from urllib.parse import parse_qsl, unquote_to_bytes

from .config import HIDDEN_PREFIX
from .errors import SelectionError


logger = logging.getLogger(__name__)

# Only this form field may appear in an archive request.
SELECTION_FIELD = "s"


@dataclass(frozen=True)
class SelectedEntry:
    """A filesystem entry chosen for an archive.

    ``path`` is the unresolved path under the listing directory ``base``;
    archive member names are computed relative to ``base``. When
    ``include_self`` is false only the children of ``path`` are archived.
    """

    path: Path
    base: Path
    include_self: bool = True


def is_hidden_name(name: str) -> bool:
    return name.startswith(HIDDEN_PREFIX)


def ensure_within(base_dir: Path, candidate: Path) -> Path:
    """Resolve candidate and ensure it stays within base_dir.

    Symlinks are resolved before the check, so a link pointing out of the
    share is refused just like a literal ``..``.
    """
    base_dir = base_dir.resolve()
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise SelectionError("Path traversal attempt")
    return resolved


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    return ensure_within(base_dir, candidate)


def _relative_parts(raw: str) -> tuple[str, ...]:
    if "\x00" in raw:
        raise SelectionError("NUL byte in path")
    pure = PurePosixPath(raw)
    if pure.is_absolute():
        raise SelectionError("Absolute path not allowed")
    # PurePosixPath already drops "." and empty segments.
    parts = pure.parts
    if ".." in parts:
        raise SelectionError("Path traversal attempt")
    return parts


def resolve_share_path(root: Path, url_path: str) -> Path:
    """Map a decoded request path onto the shared root.

    Returns the unresolved joined path so that names seen by the client stay
    intact; containment is still checked on the resolved path. Hidden
    components are refused the same way as an escape.
    """
    parts = _relative_parts(url_path.lstrip("/"))
    if any(is_hidden_name(p) for p in parts):
        raise SelectionError("Hidden path")
    safe_join(root, *parts)
    return root.joinpath(*parts)


def normalize_selection(value: str) -> str:
    """Validate one selection string and return its canonical relative form."""
    parts = _relative_parts(value.strip())
    if not parts:
        raise SelectionError("Empty selection")
    return PurePosixPath(*parts).as_posix()


def parse_selection_form(body: bytes) -> list[str]:
    """Decode an ``application/x-www-form-urlencoded`` archive request.

    Values are percent-decoded once more because the listing page submits
    the already-encoded link of each entry. That inner layer holds raw
    filename bytes, decoded like ``os.scandir`` names so undecodable
    filenames round-trip. Unknown field names raise ``ValueError``.
    """
    text = body.decode("utf-8")
    selection: list[str] = []
    for name, value in parse_qsl(text, keep_blank_values=True, errors="strict"):
        if name != SELECTION_FIELD:
            raise ValueError(f"Unexpected form field: {name!r}")
        selection.append(os.fsdecode(unquote_to_bytes(value)))
    return selection


def _dedupe(normalized: Iterable[str]) -> list[str]:
    # Drop repeats and entries already covered by a selected ancestor.
    unique = list(dict.fromkeys(normalized))
    kept: list[str] = []
    for candidate in unique:
        cpath = PurePosixPath(candidate)
        covered = any(
            other != candidate and PurePosixPath(other) in cpath.parents
            for other in unique
        )
        if not covered:
            kept.append(candidate)
    return kept


def select_entries(root: Path, directory: Path, selection: Iterable[str]) -> list[SelectedEntry]:
    """Resolve a client selection into the entries to archive.

    ``directory`` is the listing the selection was made from; an empty
    selection stands for that whole directory. Raises ``SelectionError`` when
    any selection escapes ``root``. Hidden selections are skipped.
    """
    ensure_within(root, directory)
    normalized = [normalize_selection(value) for value in selection]

    if not normalized:
        return [SelectedEntry(path=directory, base=directory, include_self=False)]

    entries: list[SelectedEntry] = []
    for rel in _dedupe(normalized):
        parts = PurePosixPath(rel).parts
        path = directory.joinpath(*parts)
        # Containment first: a hidden name never excuses an escape.
        ensure_within(root, path)
        if any(is_hidden_name(p) for p in parts):
            logger.warning("Skipping hidden selection %r", rel)
            continue
        entries.append(SelectedEntry(path=path, base=directory))
    return entries
