"""A mounter for platforms where mounting is not supported."""

from __future__ import annotations

from typing import Optional, Sequence

from .core import Interface, MountPoint


class UnsupportedPlatformError(OSError):
    """Raised by every operation of :class:`UnsupportedMounter`."""

    def __init__(self) -> None:
        super().__init__("util/mount on this platform is not supported")


class UnsupportedMounter(Interface):
    """Fails every operation with :class:`UnsupportedPlatformError`."""

    def __init__(self, mounter_path: str = "") -> None:
        self.mounter_path = mounter_path

    def mount(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
    ) -> None:
        """Always raise."""
        raise UnsupportedPlatformError()

    def mount_sensitive(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
        sensitive_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Always raise."""
        raise UnsupportedPlatformError()

    def unmount(self, target: str) -> None:
        """Always raise."""
        raise UnsupportedPlatformError()

    def list(self) -> list[MountPoint]:
        """Always raise."""
        raise UnsupportedPlatformError()

    def is_likely_not_mount_point(self, file: str) -> bool:
        """Always raise."""
        raise UnsupportedPlatformError()

    def get_mount_refs(self, pathname: str) -> list[str]:
        """Always raise."""
        raise UnsupportedPlatformError()