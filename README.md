# mountutil

Tools for mounting filesystems and finding out what is mounted where.

## What is in it

- `mountutil.system.new_mounter(mounter_path="")` returns the mounter for
  the running platform:
  - `mountutil.linux.Mounter` on Linux. It runs `mount(8)` and `umount(8)`.
    When systemd is present, it runs them through `systemd-run --scope`.
    You can also force this on or off with `Mounter(with_systemd=...)`.
    For `nfs`, `glusterfs`, `ceph` and `cifs`, a non-empty `mounter_path`
    is used as the mount binary.
  - `mountutil.windows.WindowsMounter` on Windows. It creates SMB global
    mappings through PowerShell and links mounts into place with
    `mklink /D`.
  - `mountutil.unsupported.UnsupportedMounter` on any other platform. Every
    call raises `UnsupportedPlatformError`.
- `mountutil.core.Interface` sets out the methods that every mounter
  provides: `mount`, `mount_sensitive`, `unmount`, `list`,
  `is_likely_not_mount_point` and `get_mount_refs`. Failures are raised as
  exceptions.
- `mountutil.core` also provides:
  - `MountPoint`, `MountError` and `MountErrorType`.
  - `get_mount_refs_by_dev`, `get_device_name_from_mount` and
    `is_not_mount_point`.
  - `make_bind_opts`, `make_bind_opts_sensitive`, `path_within_base` and
    `sanitized_options_for_logging`.
- `mountutil.fake.FakeMounter` keeps its mount points in memory. It records
  every mount and unmount as a `FakeAction`, which you read with
  `actions()` and clear with `reset_log()`. `mount_check_errors` lets a
  test make `is_likely_not_mount_point` raise for a given path.
- `mountutil.mountinfo.parse_mount_info` parses `/proc/<pid>/mountinfo`
  into `MountInfo` records.
- `mountutil.linux` parses `/proc/mounts` with `list_proc_mounts` and
  `parse_proc_mounts`. It finds the other mounts of a source with
  `search_mount_points`. It builds `mount(8)` arguments with
  `make_mount_args` and `make_mount_args_sensitive`.
- `mountutil.cleanup.cleanup_mount_point(path, mounter, extensive=False)`
  unmounts a path and then removes the directory that is left. It does this
  even when the mount is corrupted, for example a stale NFS handle.
- `mountutil.winpaths` provides `normalize_windows_path` and
  `validate_disk_number`.
- `mountutil.windows.format_and_mount_windows(runner, disk, target, fstype)`
  initialises and formats a raw Windows disk (NTFS unless you give another
  type) and links its first volume at `target`.

## Install

```
pip install .
```

## Examples

The in-memory mounter:

```python
from mountutil.fake import FakeMounter
from mountutil.core import MountPoint, get_device_name_from_mount

fake = FakeMounter([MountPoint(device="/dev/sdb", path="/mnt/a")])
fake.mount("/mnt/a", "/mnt/b", "ext4", ["bind"])
print(get_device_name_from_mount(fake, "/mnt/b"))   # ('/dev/sdb', 2)
print(fake.get_mount_refs("/mnt/a"))                # ['/mnt/b']
```

Reading the kernel's mount tables:

```python
from mountutil.linux import list_proc_mounts, search_mount_points
from mountutil.mountinfo import parse_mount_info

mounts = list_proc_mounts("/proc/mounts")
infos = parse_mount_info("/proc/self/mountinfo")
refs = search_mount_points("/mnt/disks/vol1", "/proc/self/mountinfo")
```

Mount options:

```python
from mountutil.core import make_bind_opts, sanitized_options_for_logging

print(make_bind_opts(["bind", "ro", "_netdev"]))
# (True, ['bind', '_netdev'], ['bind', 'remount', 'ro', '_netdev'])
print(sanitized_options_for_logging(["ro"], ["user=x", "pass=y"]))
# ro,<masked>,<masked>
```

## Sensitive options

The `*_sensitive` variants take a separate list of sensitive options. These
options are passed to the mount command. They are never written to logs or
to error messages; `<masked>` appears there in place of each one.

## What it does not do

On Linux there is no safe format-and-mount step. The package does not probe
a block device with `blkid`, create a filesystem on it with `mkfs`, or check
it with `fsck` before mounting. `Mounter.mount` mounts whatever it is given.
Nothing in the package raises `MountError` and `MountErrorType` at present;
they are provided only for callers to use.

The package has no command-line program. It is a library.

## Tests

```
pip install .[test]
pytest
```