from __future__ import annotations

import os
import re
from collections.abc import Iterable
from email.utils import parseaddr
from pathlib import Path

from ..errors import FileAccessError

try:  # POSIX only; Windows reports sharing violations from open() itself
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

"""Validation helpers: source-file access, output lock check, address lists."""

__all__ = [
    "check_source_file",
    "is_file_locked",
    "is_valid_email",
    "invalid_addresses",
    "validate_email_list",
]

_LOCAL_RE = re.compile(r"^[A-Za-z0-9!#$%&'*+/=?^_`{|}~.-]+$")
_DOMAIN_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


def check_source_file(path: Path | str, *, open_file: bool = True) -> FileAccessError | None:
    """Return a FileAccessError describing why ``path`` cannot be read, or None.

    With ``open_file=False`` only metadata is consulted (stat and access bits);
    the one-byte read that catches locked files is skipped.

    Never raises: the caller decides whether to abort.
    """
    p = Path(path)
    if not p.exists():
        return FileAccessError(f"source file not found: {p}")
    if not p.is_file():
        return FileAccessError(f"source path is not a file: {p}")
    if not os.access(p, os.R_OK):
        return FileAccessError(f"source file is not readable: {p}")
    if not open_file:
        return None
    try:
        with p.open("rb") as fh:
            fh.read(1)
    except OSError as e:
        return FileAccessError(f"source file is locked or unreadable: {p} ({e})")
    return None


def is_file_locked(path: Path | str) -> bool:
    """True when an existing file cannot be opened for writing or is locked elsewhere."""
    p = Path(path)
    if not p.exists():
        return False
    try:
        with p.open("ab") as fh:
            if fcntl is not None:
                try:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except OSError:
                    return True
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    except OSError:
        return True
    return False


def is_valid_email(address: str) -> bool:
    addr = address.strip()
    if not addr or addr.count("@") != 1 or ".." in addr:
        return False
    _, parsed = parseaddr(addr)
    if parsed != addr:
        return False
    local, domain = addr.split("@")
    if not local or local.startswith(".") or local.endswith("."):
        return False
    if not _LOCAL_RE.match(local):
        return False
    labels = domain.split(".")
    if len(labels) < 2:
        return False
    return all(_DOMAIN_LABEL_RE.match(label) for label in labels)


def invalid_addresses(addresses: Iterable[str]) -> list[str]:
    return [a for a in addresses if not is_valid_email(a)]


def validate_email_list(addresses: Iterable[str]) -> bool:
    """True when every address is valid. An empty list is valid."""
    return not invalid_addresses(addresses)
