"""An in-memory mounter for tests."""

from __future__ import annotations

import enum
import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from .core import Interface, MountPoint, get_mount_refs_by_dev

logger = logging.getLogger(__name__)

UnmountFunc = Callable[[str], None]


class FakeActionType(str, enum.Enum):
    """Kinds of actions recorded by :class:`FakeMounter`."""

    MOUNT = "mount"
    UNMOUNT = "unmount"


@dataclass(frozen=True)
class FakeAction:
    """One recorded mount or unmount; source and fstype apply to mounts only."""

    action: FakeActionType
    target: str
    source: str = ""
    fstype: str = ""


def _resolve_or_self(path: str) -> str:
    try:
        return os.path.realpath(path, strict=True)
    except (OSError, ValueError):
        return path


class FakeMounter(Interface):
    """Keeps mount points in memory and logs every mount and unmount.

    ``mount_check_errors`` maps a path to an exception that
    ``is_likely_not_mount_point`` raises for it. ``unmount_func``, if set,
    is called with the resolved target of each matching unmount and may raise.
    """

    def __init__(
        self,
        mount_points: Optional[Iterable[MountPoint]] = None,
        unmount_func: Optional[UnmountFunc] = None,
    ) -> None:
        self.mount_points: list[MountPoint] = list(mount_points or [])
        self.mount_check_errors: dict[str, BaseException] = {}
        self.unmount_func = unmount_func
        self._log: list[FakeAction] = []
        self._lock = threading.Lock()

    def reset_log(self) -> None:
        """Forget every recorded action."""
        with self._lock:
            self._log = []

    def actions(self) -> list[FakeAction]:
        """Return the recorded actions, oldest first."""
        with self._lock:
            return list(self._log)

    def mount(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
    ) -> None:
        """Record a mount of ``source`` on ``target``."""
        self.mount_sensitive(source, target, fstype, options, None)

    def mount_sensitive(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
        sensitive_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Record a mount; sensitive options are stored but never logged."""
        with self._lock:
            opts = list(options or [])
            for option in opts:
                if option == "bind":
                    # Like Linux, a bind mount shows the original device
                    # rather than the bound directory as its source.
                    for mp in self.mount_points:
                        if mp.path == source:
                            source = mp.device
                            break

            abs_target = _resolve_or_self(target)
            self.mount_points.append(
                MountPoint(
                    device=source,
                    path=abs_target,
                    type=fstype,
                    opts=opts + list(sensitive_options or []),
                )
            )
            logger.debug("Fake mounter: mounted %s to %s", source, abs_target)
            self._log.append(
                FakeAction(FakeActionType.MOUNT, abs_target, source, fstype)
            )

    def unmount(self, target: str) -> None:
        """Drop every mount point at ``target`` and record the unmount."""
        with self._lock:
            abs_target = _resolve_or_self(target)
            remaining = []
            for mp in self.mount_points:
                if mp.path == abs_target:
                    if self.unmount_func is not None:
                        self.unmount_func(abs_target)
                    logger.debug(
                        "Fake mounter: unmounted %s from %s", mp.device, abs_target
                    )
                    continue
                remaining.append(MountPoint(device=mp.device, path=mp.path, type=mp.type))
            self.mount_points = remaining
            self._log.append(FakeAction(FakeActionType.UNMOUNT, abs_target))
            self.mount_check_errors.pop(target, None)

    def list(self) -> list[MountPoint]:
        """Return the in-memory mount points."""
        with self._lock:
            return list(self.mount_points)

    def is_likely_not_mount_point(self, file: str) -> bool:
        """Tell whether ``file`` is absent from the in-memory mount points.

        Raises the configured check error for ``file``, or the error of
        ``os.stat`` when the path does not exist.
        """
        with self._lock:
            err = self.mount_check_errors.get(file)
            if err is not None:
                raise err
            os.stat(file)
            abs_file = _resolve_or_self(file)
            for mp in self.mount_points:
                if mp.path == abs_file:
                    logger.debug(
                        "isLikelyNotMountPoint for %s: mounted %s, false", file, mp.path
                    )
                    return False
            logger.debug("isLikelyNotMountPoint for %s: true", file)
            return True

    def get_mount_refs(self, pathname: str) -> list[str]:
        """Return the other mount paths of the device mounted at ``pathname``."""
        # The paths are usually not real files, so unresolvable ones are kept.
        return get_mount_refs_by_dev(self, _resolve_or_self(pathname))