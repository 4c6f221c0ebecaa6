"""Mount abstractions shared by every mounter, plus option and path helpers."""

from __future__ import annotations

import abc
import enum
import os
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

DEFAULT_MOUNT_COMMAND = "mount"
SENSITIVE_OPTIONS_REMOVED = "<masked>"


@dataclass
class MountPoint:
    """A single line of /proc/mounts or /etc/fstab.

    ``opts`` may hold sensitive options and must never be logged.
    """

    device: str = ""
    path: str = ""
    type: str = ""
    opts: list[str] = field(default_factory=list)
    freq: int = 0
    passno: int = 0


class MountErrorType(str, enum.Enum):
    """Categories of failures raised as :class:`MountError`."""

    FILESYSTEM_MISMATCH = "FilesystemMismatch"
    HAS_FILESYSTEM_ERRORS = "HasFilesystemErrors"
    UNFORMATTED_READ_ONLY = "UnformattedReadOnly"
    FORMAT_FAILED = "FormatFailed"
    GET_DISK_FORMAT_FAILED = "GetDiskFormatFailed"
    UNKNOWN_MOUNT_ERROR = "UnknownMountError"


class MountError(Exception):
    """A mount failure tagged with a :class:`MountErrorType`."""

    def __init__(self, error_type: MountErrorType, message: str) -> None:
        super().__init__(message)
        self.type = error_type
        self.message = message

    def __str__(self) -> str:
        return self.message


class Interface(abc.ABC):
    """Operations for mounting and inspecting filesystems.

    Failures are raised as exceptions. ``is_likely_not_mount_point`` raises
    ``FileNotFoundError`` when the path does not exist.
    """

    def mount(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount ``source`` on ``target``; options must not be sensitive."""
        self.mount_sensitive(source, target, fstype, options, None)

    @abc.abstractmethod
    def mount_sensitive(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
        sensitive_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount with extra options that are never logged."""

    @abc.abstractmethod
    def unmount(self, target: str) -> None:
        """Unmount ``target``."""

    @abc.abstractmethod
    def list(self) -> list[MountPoint]:
        """Return a consistent list of all mounted filesystems."""

    @abc.abstractmethod
    def is_likely_not_mount_point(self, file: str) -> bool:
        """Heuristically decide whether ``file`` is not a mount point."""

    @abc.abstractmethod
    def get_mount_refs(self, pathname: str) -> list[str]:
        """Return other mount paths referring to the same device as ``pathname``."""


def _resolve_or_self(path: str) -> str:
    try:
        return os.path.realpath(path, strict=True)
    except (OSError, ValueError):
        return path


def get_mount_refs_by_dev(mounter: Interface, mount_path: str) -> list[str]:
    """Return all mount paths sharing the device mounted at ``mount_path``.

    ``mount_path`` should already have its symbolic links resolved.
    """
    mount_points = mounter.list()
    disk_dev = next(
        (mp.device for mp in mount_points if mp.path == mount_path), ""
    )
    return [
        mp.path
        for mp in mount_points
        if (mp.device == disk_dev or mp.device == mount_path)
        and mp.path != mount_path
    ]


def get_device_name_from_mount(mounter: Interface, mount_path: str) -> tuple[str, int]:
    """Return the device mounted at ``mount_path`` and its reference count.

    When several devices are mounted on the same path, the first one wins.
    """
    mount_points = mounter.list()
    target = _resolve_or_self(mount_path)
    device = next((mp.device for mp in mount_points if mp.path == target), "")
    ref_count = sum(1 for mp in mount_points if mp.device == device)
    return device, ref_count


def is_mount_point_match(mp: MountPoint, dir: str) -> bool:
    """Tell whether ``mp`` is mounted at ``dir``.

    Outside Windows a mount point renamed by a stale NFS mount
    (``<dir>\\040(deleted)``) also matches.
    """
    if os.name == "nt":
        return mp.path == dir
    return mp.path == dir or mp.path == f"{dir}\\040(deleted)"


def is_not_mount_point(mounter: Interface, file: str) -> bool:
    """Decide whether ``file`` is not a mount point, detecting bind mounts.

    More expensive than ``is_likely_not_mount_point``: it falls back to
    scanning the full mount list.
    """
    try:
        not_mnt = mounter.is_likely_not_mount_point(file)
    except PermissionError:
        # The quick stat() check was refused (e.g. NFS root_squash);
        # fall back to the mount table.
        not_mnt = True
    if not not_mnt:
        return False

    resolved = os.path.realpath(file, strict=True)
    if any(is_mount_point_match(mp, resolved) for mp in mounter.list()):
        return False
    return True


def _check_for_net_dev(
    options: Iterable[str], sensitive_options: Iterable[str]
) -> bool:
    return "_netdev" in options or "_netdev" in sensitive_options


def make_bind_opts_sensitive(
    options: Optional[Sequence[str]],
    sensitive_options: Optional[Sequence[str]],
) -> tuple[bool, list[str], list[str], list[str]]:
    """Split options for a bind mount.

    Returns ``(bind, bind_opts, bind_remount_opts,
    bind_remount_sensitive_opts)``; the remount lists are the inputs without
    ``bind`` and ``remount``, the plain one prefixed with ``bind,remount``.
    """
    options = list(options or [])
    sensitive_options = list(sensitive_options or [])

    bind_opts = ["bind"]
    # _netdev is a userspace option that a bind mount does not inherit.
    if _check_for_net_dev(options, sensitive_options):
        bind_opts.append("_netdev")

    bind = "bind" in options or "bind" in sensitive_options
    skipped = {"bind", "remount"}
    bind_remount_opts = ["bind", "remount"] + [o for o in options if o not in skipped]
    bind_remount_sensitive_opts = [o for o in sensitive_options if o not in skipped]
    return bind, bind_opts, bind_remount_opts, bind_remount_sensitive_opts


def make_bind_opts(
    options: Optional[Sequence[str]],
) -> tuple[bool, list[str], list[str]]:
    """Return ``(bind, bind_opts, bind_remount_opts)`` for ``options``."""
    bind, bind_opts, bind_remount_opts, _ = make_bind_opts_sensitive(options, None)
    return bind, bind_opts, bind_remount_opts


def starts_with_backstep(rel: str) -> bool:
    """Tell whether a relative path begins with a ``..`` segment."""
    return rel == ".." or rel.replace(os.sep, "/").startswith("../")


def path_within_base(full_path: str, base_path: str) -> bool:
    """Tell whether ``full_path`` lies within ``base_path``."""
    if os.path.isabs(full_path) != os.path.isabs(base_path):
        return False
    try:
        rel = os.path.relpath(full_path, base_path)
    except ValueError:
        return False
    return not starts_with_backstep(rel)


def sanitized_options_for_logging(
    options: Optional[Sequence[str]],
    sensitive_options: Optional[Sequence[str]],
) -> str:
    """Join options with commas, masking every sensitive one."""
    masked = [SENSITIVE_OPTIONS_REMOVED] * len(sensitive_options or [])
    return ",".join([*(options or []), *masked])