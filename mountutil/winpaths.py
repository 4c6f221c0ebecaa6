"""Path and error helpers for Windows mounts."""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# Windows system error codes that indicate a broken network mount:
# BAD_NETPATH, NETWORK_BUSY, UNEXP_NET_ERR, NETNAME_DELETED,
# NETWORK_ACCESS_DENIED, BAD_DEV_TYPE, BAD_NET_NAME,
# SESSION_CREDENTIAL_CONFLICT, LOGON_FAILURE.
CORRUPTED_MOUNT_ERROR_CODES = (53, 54, 59, 64, 65, 66, 67, 1219, 1326)

_INT_RE = re.compile(r"[+-]?[0-9]+")


def is_corrupted_mnt(err: Optional[BaseException]) -> bool:
    """Tell whether ``err`` carries a Windows error code of a broken mount."""
    if not isinstance(err, OSError):
        return False
    code = getattr(err, "winerror", None)
    if code in CORRUPTED_MOUNT_ERROR_CODES:
        logger.warning("IsCorruptedMnt failed with error: %s, error code: %s", err, code)
        return True
    return False


def normalize_windows_path(path: str) -> str:
    """Use backslashes throughout and prefix rooted paths with ``c:``."""
    normalized = path.replace("/", "\\")
    if normalized.startswith("\\"):
        normalized = "c:" + normalized
    return normalized


def validate_disk_number(disk: str) -> int:
    """Return the disk number, which must be an integer in [0, 99]."""
    if not _INT_RE.fullmatch(disk):
        raise ValueError(f'wrong disk number format: "{disk}", err:invalid syntax')
    number = int(disk)
    if number < 0 or number > 99:
        raise ValueError(f'disk number out of range: "{disk}"')
    return number