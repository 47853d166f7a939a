"""Tests for the directory listing page."""

import os

import pytest

from tarshare_backend.listing import ShareEntry, format_age, format_size, get_dir_index, render_index


def test_index_hides_dotfiles_and_puts_directories_first(share):
    os.utime(share / "b.txt", (1_000, 1_000))
    os.utime(share / "a.txt", (2_000, 2_000))
    entries = get_dir_index(share)
    names = [e.name for e in entries]
    assert set(names[:2]) == {"docs", "projects"}
    assert names[2:] == ["b.txt", "a.txt"]
    assert ".env" not in names


def test_index_reports_sizes_for_files_only(share):
    by_name = {e.name: e for e in get_dir_index(share)}
    assert by_name["a.txt"].size == 700
    assert not by_name["a.txt"].is_dir
    assert by_name["docs"].is_dir
    assert by_name["docs"].size == 0


def test_broken_link_is_left_out(share):
    (share / "dangling").symlink_to(share / "missing")
    assert "dangling" not in [e.name for e in get_dir_index(share)]


def test_render_has_selection_form():
    page = render_index(
        [
            ShareEntry(name="my docs", is_dir=True, size=0, modified=0),
            ShareEntry(name="<b>.txt", is_dir=False, size=2048, modified=0),
        ],
        title="/share/",
        now=3600,
    )
    assert '<form method="POST">' in page
    assert 'name="s" value="my%20docs/"' in page
    assert 'href="my%20docs/"' in page
    assert "&lt;b&gt;.txt" in page
    assert "<b>.txt" not in page
    assert "2.0 KB" in page
    assert "1 hour ago" in page
    assert 'value="Download"' in page


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 B"), (999, "999 B"), (1000, "1.0 KB"), (1_500_000, "1.5 MB"), (3 * 10**12, "3.0 TB")],
)
def test_format_size(size, expected):
    assert format_size(size) == expected


@pytest.mark.parametrize(
    "delta, expected",
    [
        (0, "now"),
        (30, "30 seconds ago"),
        (60, "1 minute ago"),
        (2 * 3600, "2 hours ago"),
        (3 * 86400, "3 days ago"),
        (400 * 86400, "1 year ago"),
        (-120, "in 2 minutes"),
    ],
)
def test_format_age(delta, expected):
    assert format_age(1_000_000_000 - delta, now=1_000_000_000) == expected


def test_undecodable_name_is_linked_by_its_bytes(share):
    with open(os.path.join(os.fsencode(share / "docs"), b"caf\xe9.txt"), "wb") as fh:
        fh.write(b"latte")
    page = render_index(get_dir_index(share / "docs"))
    assert 'value="caf%E9.txt"' in page
    assert 'href="caf%E9.txt"' in page
    assert "caf\ufffd.txt" in page
