"""Unmounting a path and removing the directory left behind."""

from __future__ import annotations

import logging
import os

from . import mountinfo, winpaths
from .core import Interface, is_not_mount_point

logger = logging.getLogger(__name__)


def _is_corrupted_mnt(err: BaseException) -> bool:
    if os.name == "nt":
        return winpaths.is_corrupted_mnt(err)
    return mountinfo.is_corrupted_mnt(err)


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        os.rmdir(path)
    else:
        os.remove(path)


def path_exists(path: str) -> bool:
    """Tell whether ``path`` exists.

    Returns ``False`` only when the path is missing. Any other failure of
    ``os.stat`` is raised; a corrupted mount raises an ``OSError`` that
    the platform's ``is_corrupted_mnt`` recognises.
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def _check_mount_point(mounter: Interface, mount_path: str, extensive: bool) -> bool:
    if extensive:
        return is_not_mount_point(mounter, mount_path)
    return mounter.is_likely_not_mount_point(mount_path)


def do_cleanup_mount_point(
    mount_path: str,
    mounter: Interface,
    extensive_mount_point_check: bool,
    corrupted_mnt: bool,
) -> None:
    """Unmount ``mount_path`` and delete the remaining directory.

    With ``extensive_mount_point_check`` the slower ``is_not_mount_point``
    is used, which detects bind mounts. With ``corrupted_mnt`` the first
    mount point check is skipped.
    """
    if not corrupted_mnt:
        if _check_mount_point(mounter, mount_path, extensive_mount_point_check):
            logger.warning("Warning: %r is not a mountpoint, deleting", mount_path)
            _remove(mount_path)
            return

    logger.debug("%r is a mountpoint, unmounting", mount_path)
    mounter.unmount(mount_path)

    if _check_mount_point(mounter, mount_path, extensive_mount_point_check):
        logger.debug("%r is unmounted, deleting the directory", mount_path)
        _remove(mount_path)
        return
    raise OSError(f"Failed to unmount path {mount_path}")


def cleanup_mount_point(
    mount_path: str,
    mounter: Interface,
    extensive_mount_point_check: bool = False,
) -> None:
    """Unmount ``mount_path`` and delete the directory if that succeeds.

    Nothing is done when the path cannot be found or checked, unless the
    check failed because the mount is corrupted.
    """
    corrupted = False
    try:
        exists = path_exists(mount_path)
    except OSError as exc:
        corrupted = _is_corrupted_mnt(exc)
        exists = corrupted
    if not exists:
        logger.warning(
            "Warning: Unmount skipped because path does not exist: %s", mount_path
        )
        return
    do_cleanup_mount_point(mount_path, mounter, extensive_mount_point_check, corrupted)