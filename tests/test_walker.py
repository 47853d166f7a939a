"""Tests for the lazy directory walker."""

import os

import pytest

from tarshare_backend import walker
from tarshare_backend.walker import EntryKind, snapshot_entry, walk_entry


def _names(entries):
    return [e.arcname for e in entries]


class TestWalkEntry:
    def test_directories_precede_children_in_name_order(self, share):
        entries = list(walk_entry(share, share / "docs"))
        assert _names(entries) == ["docs", "docs/a.txt", "docs/sub", "docs/sub/c.bin"]
        assert entries[0].kind is EntryKind.DIRECTORY
        assert entries[1].kind is EntryKind.FILE
        assert entries[1].size == 5

    def test_hidden_entries_never_yielded(self, share):
        names = _names(walk_entry(share, share / "projects"))
        assert names == [
            "projects",
            "projects/README",
            "projects/alpha",
            "projects/alpha/main.py",
        ]
        assert not any(".git" in n or ".secret" in n for n in names)

    def test_hidden_directory_is_pruned_not_scanned(self, share, monkeypatch):
        scanned = []
        real_scandir = os.scandir

        def recording_scandir(path):
            scanned.append(os.fspath(path))
            return real_scandir(path)

        monkeypatch.setattr(walker.os, "scandir", recording_scandir)
        list(walk_entry(share, share / "projects"))
        assert os.fspath(share / "projects" / ".git") not in scanned
        assert os.fspath(share / "projects" / "alpha") in scanned

    def test_hidden_selection_yields_nothing(self, share):
        assert list(walk_entry(share, share / ".env")) == []

    def test_children_only(self, share):
        names = _names(walk_entry(share / "docs", share / "docs", include_self=False))
        assert names == ["a.txt", "sub", "sub/c.bin"]

    def test_directory_is_listed_only_after_it_was_yielded(self, share, monkeypatch):
        scanned = []
        real_scandir = os.scandir

        def recording_scandir(path):
            scanned.append(os.fspath(path))
            return real_scandir(path)

        monkeypatch.setattr(walker.os, "scandir", recording_scandir)
        gen = walk_entry(share, share / "docs")
        first = next(gen)
        assert first.arcname == "docs"
        assert scanned == []
        gen.close()

    def test_fresh_sequence_per_call(self, share):
        first = _names(walk_entry(share, share / "docs"))
        second = _names(walk_entry(share, share / "docs"))
        assert first == second

    def test_missing_entry_is_skipped(self, share):
        assert list(walk_entry(share, share / "nope")) == []

    def test_unlistable_directory_is_skipped_and_walk_continues(self, share, monkeypatch):
        real = walker.visible_children

        def failing(directory):
            if directory.name == "sub":
                raise PermissionError(13, "Permission denied", str(directory))
            return real(directory)

        monkeypatch.setattr(walker, "visible_children", failing)
        names = _names(walk_entry(share, share / "docs"))
        assert names == ["docs", "docs/a.txt", "docs/sub"]


class TestSymlinks:
    def test_link_to_file_inside_root_is_a_regular_file(self, share):
        link = share / "docs" / "link.txt"
        link.symlink_to(share / "b.txt")
        entry = snapshot_entry(link, share, share)
        assert entry is not None
        assert entry.kind is EntryKind.FILE
        assert entry.size == 3
        assert entry.arcname == "docs/link.txt"

    def test_link_leaving_root_is_skipped(self, share, tmp_path):
        outside = tmp_path / "outside.txt"
        outside.write_text("private")
        link = share / "docs" / "escape.txt"
        link.symlink_to(outside)
        assert snapshot_entry(link, share, share) is None
        assert "docs/escape.txt" not in _names(walk_entry(share, share / "docs", root=share))

    def test_link_to_directory_is_not_followed(self, share):
        link = share / "docs" / "loop"
        link.symlink_to(share / "docs", target_is_directory=True)
        names = _names(walk_entry(share, share / "docs", root=share))
        assert "docs/loop" not in names
        assert names.count("docs/a.txt") == 1

    def test_dangling_link_is_skipped(self, share):
        link = share / "docs" / "dangling"
        link.symlink_to(share / "missing")
        assert snapshot_entry(link, share, share) is None


def test_entry_mode_is_permission_bits_only(share):
    target = share / "b.txt"
    target.chmod(0o640)
    entry = snapshot_entry(target, share)
    assert entry.mode == 0o640


@pytest.mark.parametrize("name", [".env", ".git"])
def test_is_hidden_marker(name):
    from tarshare_backend.security import is_hidden_name

    assert is_hidden_name(name)
    assert not is_hidden_name(name.lstrip("."))
