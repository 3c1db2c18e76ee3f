"""Digest helpers for build-ids, source-ids and content addressing.

All identities are SHA-256 hex digests.  Text fields are fed as UTF-8 with
an explicit line terminator so that ``"a" + "b"`` and ``"ab"`` never hash
alike.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from pathlib import Path

DIGEST_NAME = "sha256"
_CHUNK_SIZE = 1024 * 1024


class ContentHasher:
    """Incremental digest accumulator.

    Examples
    --------
    >>> hc = ContentHasher()
    >>> hc.append_line("zlib").append_line("files")
    ContentHasher(finished=False)
    >>> len(hc.finish())
    64
    """

    def __init__(self) -> None:
        self._hash = hashlib.new(DIGEST_NAME)
        self._digest: str | None = None

    def append(self, data: str | bytes) -> ContentHasher:
        """Feed raw data without a terminator."""
        if self._digest is not None:
            raise RuntimeError("ContentHasher.append() after finish()")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._hash.update(data)
        return self

    def append_line(self, text: str) -> ContentHasher:
        """Feed one field followed by ``\\n``."""
        return self.append(text + "\n")

    def finish(self) -> str:
        """Return the hex digest.  Further appends are rejected."""
        if self._digest is None:
            self._digest = self._hash.hexdigest()
        return self._digest

    def __repr__(self) -> str:
        return f"ContentHasher(finished={self._digest is not None})"


def sha1_hex_file(path: Path) -> str:
    """SHA-1 of a file, only for verifying legacy ``sha1`` checksums."""
    h = hashlib.sha1()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def hash_file(path: Path) -> str:
    """Stream a file through SHA-256 and return the hex digest."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def environment_id(env: Mapping[str, str]) -> str:
    """Digest of an environment as sorted ``key=value`` lines."""
    hc = ContentHasher()
    for key in sorted(env):
        hc.append_line(f"{key}={env[key]}")
    return hc.finish()


def checksum_line(digest: str, filename: str) -> str:
    """One line in ``sha256sum`` output format."""
    return f"{digest}  {filename}\n"


def parse_checksum_file(text: str) -> list[tuple[str, str]]:
    """Parse ``sha256sum`` output into ``(digest, filename)`` pairs.

    Blank lines are ignored; a ``*`` binary-mode marker before the file
    name is dropped.

    Raises
    ------
    ValueError
        If a line is not ``<64 hex digits>  <name>``.
    """
    entries: list[tuple[str, str]] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        digest, sep, name = line.partition(" ")
        name = name.lstrip(" ").removeprefix("*")
        if not sep or len(digest) != 64 or not name or any(c not in "0123456789abcdef" for c in digest.lower()):
            raise ValueError(f"line {lineno}: not a sha256 checksum line: {line!r}")
        entries.append((digest.lower(), name))
    return entries
