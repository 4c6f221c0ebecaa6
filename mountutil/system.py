"""Choosing the mounter for the running platform."""

from __future__ import annotations

import sys

from .core import Interface
from .linux import Mounter
from .unsupported import UnsupportedMounter
from .windows import WindowsMounter


def new_mounter(mounter_path: str = "") -> Interface:
    """Return the mounter for this platform.

    ``mounter_path`` names an alternative to the default mount binary.
    """
    if sys.platform.startswith("linux"):
        return Mounter(mounter_path)
    if sys.platform == "win32":
        return WindowsMounter(mounter_path)
    return UnsupportedMounter(mounter_path)