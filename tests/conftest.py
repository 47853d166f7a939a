from pathlib import Path

import pytest


@pytest.fixture
def share(tmp_path: Path) -> Path:
    """A small shared tree with hidden entries at several depths.

    share/
      a.txt            700 bytes
      b.txt            3 bytes
      .env             hidden
      docs/
        a.txt          "hello"
        .secret        hidden, 10 bytes
        sub/c.bin      10240 bytes
      projects/
        README
        alpha/main.py
        .git/HEAD      hidden subtree
    """
    root = tmp_path / "share"
    (root / "docs" / "sub").mkdir(parents=True)
    (root / "docs" / "a.txt").write_bytes(b"hello")
    (root / "docs" / ".secret").write_bytes(b"0123456789")
    (root / "docs" / "sub" / "c.bin").write_bytes(bytes(range(256)) * 40)
    (root / "projects" / "alpha").mkdir(parents=True)
    (root / "projects" / "alpha" / "main.py").write_text("print('hi')\n")
    (root / "projects" / "README").write_text("readme\n")
    (root / "projects" / ".git").mkdir()
    (root / "projects" / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "a.txt").write_bytes(b"A" * 700)
    (root / "b.txt").write_bytes(b"BBB")
    (root / ".env").write_text("SECRET=1\n")
    return root.resolve()
