"""Parsing of /proc/<pid>/mountinfo and detection of corrupted mounts."""

from __future__ import annotations

import errno
import re
from dataclasses import dataclass, field
from typing import Optional

# Minimum number of fields per line in /proc/<pid>/mountinfo.
EXPECTED_AT_LEAST_NUM_FIELDS_PER_MOUNT_INFO = 10
# How many times to retry for a consistent read of a mount table.
MAX_LIST_TRIES = 3

_INT_RE = re.compile(r"[+-]?[0-9]+")

_CORRUPTED_ERRNOS = frozenset({errno.ENOTCONN, errno.ESTALE, errno.EIO, errno.EACCES})


@dataclass
class MountInfo:
    """A single line of /proc/<pid>/mountinfo."""

    id: int = 0
    parent_id: int = 0
    major: int = 0
    minor: int = 0
    root: str = ""
    source: str = ""
    mount_point: str = ""
    optional_fields: list[str] = field(default_factory=list)
    fs_type: str = ""
    mount_options: list[str] = field(default_factory=list)
    super_options: list[str] = field(default_factory=list)


def consistent_read(filename: str, attempts: int) -> bytes:
    """Read ``filename`` until two successive reads return the same content.

    Raises ``OSError`` when no two reads agree within ``attempts`` retries.
    """
    with open(filename, "rb") as handle:
        old = handle.read()
    for _ in range(attempts):
        with open(filename, "rb") as handle:
            new = handle.read()
        if new == old:
            return new
        old = new
    raise OSError(
        f"could not get consistent content of {filename} after {attempts} attempts"
    )


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    return int(text)


def _parse_line(line: str) -> MountInfo:
    fields = line.split()
    if len(fields) < EXPECTED_AT_LEAST_NUM_FIELDS_PER_MOUNT_INFO:
        raise ValueError(
            "wrong number of fields in (expected at least "
            f"{EXPECTED_AT_LEAST_NUM_FIELDS_PER_MOUNT_INFO}, got {len(fields)}): {line}"
        )
    mount_id = _atoi(fields[0])
    parent_id = _atoi(fields[1])

    pair = fields[2].split(":")
    if len(pair) != 2:
        raise ValueError(
            f"parsing '{line}' failed: unexpected minor:major pair [{' '.join(pair)}]"
        )
    try:
        major = _atoi(pair[0])
    except ValueError as exc:
        raise ValueError(
            f"parsing '{pair[0]}' failed: unable to parse major device id, err:{exc}"
        ) from exc
    try:
        minor = _atoi(pair[1])
    except ValueError as exc:
        raise ValueError(
            f"parsing '{pair[1]}' failed: unable to parse minor device id, err:{exc}"
        ) from exc

    # Everything up to "-" is an optional field.
    index = 6
    while index < len(fields) and fields[index] != "-":
        index += 1
    optional_fields = fields[6:index]
    index += 1
    remaining = len(fields) - index
    if remaining < 3:
        raise ValueError(f"expect 3 fields in {line}, got {remaining}")

    return MountInfo(
        id=mount_id,
        parent_id=parent_id,
        major=major,
        minor=minor,
        root=fields[3],
        source=fields[index + 1],
        mount_point=fields[4],
        optional_fields=optional_fields,
        fs_type=fields[index],
        mount_options=fields[5].split(","),
        super_options=fields[index + 2].split(","),
    )


def parse_mount_info(filename: str) -> list[MountInfo]:
    """Parse a mountinfo file; raises ``ValueError`` on a malformed line."""
    content = consistent_read(filename, MAX_LIST_TRIES).decode()
    return [_parse_line(line) for line in content.split("\n") if line != ""]


def is_corrupted_mnt(err: Optional[BaseException]) -> bool:
    """Tell whether ``err`` reports a corrupted (stale, disconnected) mount."""
    if not isinstance(err, OSError):
        return False
    return err.errno in _CORRUPTED_ERRNOS