import os

import pytest

from mountutil.core import MountPoint
from mountutil.linux import (
    Mounter,
    add_systemd_scope,
    add_systemd_scope_sensitive,
    list_proc_mounts,
    make_mount_args,
    make_mount_args_sensitive,
    parse_proc_mounts,
    search_mount_points,
)


def test_parse_proc_mounts_success():
    content = (
        "/dev/0 /path/to/0 type0 flags 0 0\n"
        "/dev/1    /path/to/1   type1\tflags 1 1\n"
        "/dev/2 /path/to/2 type2 flags,1,2=3 2 2\n"
    )
    mounts = parse_proc_mounts(content.encode())
    assert mounts == [
        MountPoint("/dev/0", "/path/to/0", "type0", ["flags"], 0, 0),
        MountPoint("/dev/1", "/path/to/1", "type1", ["flags"], 1, 1),
        MountPoint("/dev/2", "/path/to/2", "type2", ["flags", "1", "2=3"], 2, 2),
    ]


@pytest.mark.parametrize(
    "content",
    [
        "/dev/0 /path/to/mount\n",
        "/dev/1 /path/to/mount type flags a 0\n",
        "/dev/2 /path/to/mount type flags 0 b\n",
    ],
)
def test_parse_proc_mounts_errors(content):
    with pytest.raises(ValueError):
        parse_proc_mounts(content.encode())


def test_list_proc_mounts_reads_file(tmp_path):
    path = tmp_path / "mounts"
    path.write_text("/dev/sda1 / ext4 rw,relatime 0 1\n")
    assert list_proc_mounts(str(path)) == [
        MountPoint("/dev/sda1", "/", "ext4", ["rw", "relatime"], 0, 1)
    ]


def _mi(mount_id, parent, devno, root, point, fstype="ext4", source="/dev/sda1"):
    """One mountinfo line with fixed mount and superblock options."""
    return (
        f"{mount_id} {parent} {devno} {root} {point} rw,relatime shared:1"
        f" - {fstype} {source} rw\n"
    )


def _pod(uid, name):
    return f"/var/lib/kubelet/pods/{uid}/volumes/kubernetes.io~local-volume/{name}"


BASE = "\n" + "".join(
    [
        _mi(19, 25, "0:18", "/", "/sys", "sysfs", "sysfs"),
        _mi(20, 25, "0:4", "/", "/proc", "proc", "proc"),
        _mi(21, 25, "0:6", "/", "/dev", "devtmpfs", "udev"),
        _mi(23, 25, "0:19", "/", "/run", "tmpfs", "tmpfs"),
        _mi(25, 0, "252:0", "/", "/", "ext4", "/dev/mapper/root"),
        _mi(29, 19, "0:23", "/", "/sys/fs/cgroup", "tmpfs", "tmpfs"),
        _mi(30, 29, "0:24", "/", "/sys/fs/cgroup/systemd", "cgroup", "cgroup"),
        _mi(58, 25, "7:1", "/", "/mnt/disks/blkvol1", "ext4", "/dev/loop1"),
    ]
)

POD_A = _pod("pod-a", "local-pv-test")
POD_B = _pod("pod-b", "local-pv-one")
POD_C = _pod("pod-c", "local-pv-one")
POD_D = _pod("pod-d", "local-pv-test")
POD_E = _pod("pod-e", "local-pv-two")
POD_F = _pod("pod-f", "local-pv-test")
POD_G = _pod("pod-g", "local-pv-test")

BLK = _mi(58, 25, "7:1", "/", "/mnt/disks/blkvol1", "ext4", "/dev/loop1")
TMPFS_VOL1 = _mi(120, 25, "0:76", "/", "/mnt/disks/vol1", "tmpfs", "vol1")
BIND_VOL2 = _mi(342, 25, "252:0", "/mnt/disks/vol2", "/mnt/disks/vol2")

SEARCH_CASES = [
    ("dir", "/mnt/disks/vol1", BASE, []),
    (
        "dir-used",
        "/mnt/disks/vol1",
        BASE
        + _mi(56, 25, "252:0", "/mnt/disks/vol1", POD_A)
        + _mi(57, 25, "0:45", "/", "/mnt/disks/vol", "tmpfs", "tmpfs"),
        [POD_A],
    ),
    ("tmpfs-vol", "/mnt/disks/vol1", BASE + TMPFS_VOL1, []),
    (
        "tmpfs-vol-used-by-two-pods",
        "/mnt/disks/vol1",
        BASE
        + TMPFS_VOL1
        + _mi(196, 25, "0:76", "/", POD_B, "tmpfs", "vol1")
        + _mi(228, 25, "0:76", "/", POD_C, "tmpfs", "vol1"),
        [POD_B, POD_C],
    ),
    (
        "tmpfs-subdir-used-indirectly-via-bindmount-dir-by-one-pod",
        "/mnt/vol1/foo",
        BASE
        + _mi(177, 25, "0:46", "/", "/mnt/data", "tmpfs", "data")
        + _mi(190, 25, "0:46", "/vol1", "/mnt/vol1", "tmpfs", "data")
        + _mi(191, 25, "0:46", "/vol2", "/mnt/vol2", "tmpfs", "data")
        + _mi(62, 25, "0:46", "/vol1/foo", POD_D, "tmpfs", "data"),
        [POD_D],
    ),
    ("dir-bindmounted", "/mnt/disks/vol2", BASE + BIND_VOL2, []),
    (
        "dir-bindmounted-used-by-one-pod",
        "/mnt/disks/vol2",
        BASE + BIND_VOL2 + _mi(77, 25, "252:0", "/mnt/disks/vol2", POD_E),
        [POD_E],
    ),
    ("blockfs", "/mnt/disks/blkvol1", BASE + BLK, []),
    (
        "blockfs-used-by-one-pod",
        "/mnt/disks/blkvol1",
        BASE + BLK + _mi(62, 25, "7:1", "/", POD_F, "ext4", "/dev/loop1"),
        [POD_F],
    ),
    (
        "blockfs-used-by-two-pods",
        "/mnt/disks/blkvol1",
        BASE
        + BLK
        + _mi(62, 25, "7:1", "/", POD_F, "ext4", "/dev/loop1")
        + _mi(95, 25, "7:1", "/", POD_G, "ext4", "/dev/loop1"),
        [POD_F, POD_G],
    ),
]


@pytest.mark.parametrize(
    "source,mount_infos,expected", [c[1:] for c in SEARCH_CASES], ids=[c[0] for c in SEARCH_CASES]
)
def test_search_mount_points(tmp_path, source, mount_infos, expected):
    path = tmp_path / "mountinfo"
    path.write_text(mount_infos)
    assert search_mount_points(source, str(path)) == expected


def test_search_mount_points_without_matching_mount(tmp_path):
    path = tmp_path / "mountinfo"
    path.write_text(BLK)
    with pytest.raises(ValueError, match="failed to get root path"):
        search_mount_points("/srv/data", str(path))


def _options_arg(args):
    return args[args.index("-o") + 1]


@pytest.mark.parametrize(
    "options,sensitive",
    [(["o1", "o2"], ["s1", "s2"]), ([], ["s1", "s2"]), (["o1", "o2"], [])],
)
def test_sensitive_mount_options(options, sensitive):
    args, log_str = make_mount_args_sensitive("mySrc", "myTarget", "myFS", options, sensitive)
    for option in options:
        assert option in _options_arg(args)
        assert option in log_str
    for option in sensitive:
        assert option in _options_arg(args)
        assert option not in log_str


def test_make_mount_args_sensitive_exact_values():
    args, log_str = make_mount_args_sensitive("src", "dst", "ext4", ["ro"], ["s1"])
    assert args == ["-t", "ext4", "-o", "ro,s1", "src", "dst"]
    assert log_str == "-t ext4 -o ro,<masked> src dst"


def test_make_mount_args_minimal():
    assert make_mount_args("", "/mnt", "", None) == ["/mnt"]
    assert make_mount_args("/dev/sda", "/mnt", "xfs", ["rw"]) == [
        "-t", "xfs", "-o", "rw", "/dev/sda", "/mnt",
    ]


def test_add_systemd_scope():
    command, args = add_systemd_scope("systemd-run", "/mnt/x", "mount", ["-t", "nfs", "a", "b"])
    assert command == "systemd-run"
    assert args == [
        "--description=Kubernetes transient mount for /mnt/x",
        "--scope", "--", "mount", "-t", "nfs", "a", "b",
    ]


def test_add_systemd_scope_sensitive():
    command, args, log_str = add_systemd_scope_sensitive(
        "systemd-run", "/mnt/x", "mount", ["-o", "s1", "/mnt/x"], "-o <masked> /mnt/x"
    )
    assert command == "systemd-run"
    assert args[-3:] == ["-o", "s1", "/mnt/x"]
    assert log_str == (
        "--description=Kubernetes transient mount for /mnt/x --scope -- mount -o <masked> /mnt/x"
    )


def test_mounter_is_likely_not_mount_point_for_plain_dir(tmp_path):
    sub = tmp_path / "sub"
    sub.mkdir()
    assert Mounter(with_systemd=False).is_likely_not_mount_point(str(sub)) is True


def test_mounter_is_likely_not_mount_point_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        Mounter(with_systemd=False).is_likely_not_mount_point(str(tmp_path / "gone"))


def test_mounter_get_mount_refs_missing_path(tmp_path):
    assert Mounter(with_systemd=False).get_mount_refs(str(tmp_path / "gone")) == []


def test_mounter_keeps_configuration():
    mounter = Mounter("/opt/mounter", with_systemd=False)
    assert (mounter.mounter_path, mounter.with_systemd) == ("/opt/mounter", False)


def test_mounter_unmount_failure_raises(tmp_path):
    target = str(tmp_path / "not-mounted-anywhere")
    with pytest.raises(OSError, match="unmount failed"):
        Mounter(with_systemd=False).unmount(target)


def test_mounter_mount_failure_masks_sensitive_options(tmp_path):
    target = os.path.join(str(tmp_path), "missing", "target")
    with pytest.raises(OSError) as info:
        Mounter(with_systemd=False).mount_sensitive(
            "/nonexistent/device", target, "ext4", ["ro"], ["placeholder"]
        )
    message = str(info.value)
    assert message.startswith("mount failed")
    assert "-o ro,<masked>" in message