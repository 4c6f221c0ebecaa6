"""Mount, unmount and inspect filesystems on Linux and Windows, with an in-memory mounter for tests."""

__version__ = "0.1.0"