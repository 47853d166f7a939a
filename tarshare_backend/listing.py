from __future__ import annotations

import html
import logging
import os
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .security import SELECTION_FIELD, is_hidden_name


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareEntry:
    name: str
    is_dir: bool
    size: int
    modified: float


def get_dir_index(path: Path) -> list[ShareEntry]:
    """Visible entries of one directory: directories first, then oldest first."""
    entries: list[ShareEntry] = []
    with os.scandir(path) as it:
        for item in it:
            if is_hidden_name(item.name):
                continue
            try:
                st = item.stat()
            except OSError as e:
                logger.warning("Cannot stat %s: %s", item.path, e)
                continue
            is_dir = stat.S_ISDIR(st.st_mode)
            entries.append(
                ShareEntry(
                    name=item.name,
                    is_dir=is_dir,
                    size=0 if is_dir else st.st_size,
                    modified=st.st_mtime,
                )
            )
    entries.sort(key=lambda e: (not e.is_dir, e.modified))
    return entries


_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_size(size: int) -> str:
    value = float(size)
    for unit in _SIZE_UNITS:
        if value < 1000 or unit == _SIZE_UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1000
    return f"{size} B"


_AGE_STEPS = (
    (60, "second"),
    (60, "minute"),
    (24, "hour"),
    (30, "day"),
    (12, "month"),
)


def format_age(modified: float, now: Optional[float] = None) -> str:
    """Human relative time, e.g. ``3 hours ago`` or ``in 2 days``."""
    now = time.time() if now is None else now
    delta = now - modified
    future = delta < 0
    amount = abs(delta)
    if amount < 1:
        return "now"
    unit = "year"
    for step, name in _AGE_STEPS:
        if amount < step:
            unit = name
            break
        amount /= step
    count = int(amount)
    label = f"{count} {unit}{'' if count == 1 else 's'}"
    return f"in {label}" if future else f"{label} ago"


_STYLE = """
body { font-family: system-ui, sans-serif; margin: 2em; }
table.view { border-collapse: collapse; width: 100%; }
table.view th, table.view td { padding: 0.25em 0.75em; text-align: left; }
table.view tr:nth-child(even) { background: #f4f4f4; }
col.selected { width: 2em; }
col.size, col.date { width: 10em; }
"""


def render_index(entries: list[ShareEntry], title: str = "/", now: Optional[float] = None) -> str:
    """HTML listing with a checkbox per entry, posted back as repeated ``s``."""
    rows = []
    for entry in entries:
        display_name = entry.name + ("/" if entry.is_dir else "")
        # Links carry the raw filename bytes; undecodable ones display as U+FFFD.
        raw_name = os.fsencode(display_name)
        link = html.escape(quote(raw_name), quote=True)
        shown = raw_name.decode("utf-8", "replace")
        size = "" if entry.is_dir else format_size(entry.size)
        rows.append(
            "<tr>"
            f'<td><input name="{SELECTION_FIELD}" value="{link}" type="checkbox"></td>'
            f'<td><a href="{link}">{html.escape(shown)}</a></td>'
            f"<td>{size}</td>"
            f"<td>{html.escape(format_age(entry.modified, now))}</td>"
            "</tr>"
        )

    return (
        "<!DOCTYPE html>\n"
        "<html><head>"
        '<meta charset="utf-8">'
        f"<title>{html.escape(title)}</title>"
        f"<style>{_STYLE}</style>"
        "</head><body>"
        '<form method="POST">'
        '<table class="view">'
        '<colgroup><col class="selected"><col class="name"><col class="size"><col class="date"></colgroup>'
        '<tr class="header"><th></th><th>Name</th><th>Size</th><th>Last modified</th></tr>'
        '<tr><td></td><td><a href="..">..</a></td><td></td><td></td></tr>'
        + "".join(rows)
        + "</table>"
        '<input type="submit" value="Download">'
        "</form>"
        "</body></html>"
    )
