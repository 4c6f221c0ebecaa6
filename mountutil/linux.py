"""The Linux mounter, driving mount(8) and reading the kernel's mount tables."""

from __future__ import annotations

import logging
import os
import posixpath
import re
import shutil
import subprocess
from typing import Optional, Sequence, Union

from .cleanup import path_exists
from .core import (
    DEFAULT_MOUNT_COMMAND,
    Interface,
    MountPoint,
    make_bind_opts_sensitive,
    path_within_base,
    sanitized_options_for_logging,
)
from .mountinfo import MAX_LIST_TRIES, consistent_read, is_corrupted_mnt, parse_mount_info

logger = logging.getLogger(__name__)

# Number of fields per line in /proc/mounts, as per fstab(5).
EXPECTED_NUM_FIELDS_PER_LINE = 6
PROC_MOUNTS_PATH = "/proc/mounts"
PROC_MOUNT_INFO_PATH = "/proc/self/mountinfo"

# Filesystems that need the containerized mounter when one is configured.
FS_TYPES_NEED_MOUNTER = frozenset({"nfs", "glusterfs", "ceph", "cifs"})

_INT_RE = re.compile(r"[+-]?[0-9]+")


def _combined_output(command: str, args: Sequence[str]) -> tuple[Optional[str], str]:
    """Run a command; return (error description or None, combined output)."""
    try:
        proc = subprocess.run(
            [command, *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        return str(exc), ""
    output = proc.stdout.decode(errors="replace")
    if proc.returncode != 0:
        return f"exit status {proc.returncode}", output
    return None, output


def detect_systemd() -> bool:
    """Tell whether systemd-run works here; ``False`` when unsure."""
    if shutil.which("systemd-run") is None:
        logger.info("Detected OS without systemd")
        return False
    # Running a scope proves systemd is actually pid 1, not merely installed.
    err, output = _combined_output(
        "systemd-run", ["--description=Kubernetes systemd probe", "--scope", "true"]
    )
    if err is not None:
        logger.info("Cannot run systemd-run, assuming non-systemd OS")
        logger.debug("systemd-run failed with: %s", err)
        logger.debug("systemd-run output: %s", output)
        return False
    logger.info("Detected OS with systemd")
    return True


def make_mount_args_sensitive(
    source: str,
    target: str,
    fstype: str,
    options: Optional[Sequence[str]],
    sensitive_options: Optional[Sequence[str]],
) -> tuple[list[str], str]:
    """Build ``mount [-t fstype] [-o options] [source] target`` arguments.

    Returns the arguments and a log string in which sensitive options are
    masked.
    """
    options = list(options or [])
    sensitive_options = list(sensitive_options or [])
    args: list[str] = []
    log_str = ""
    if fstype:
        args += ["-t", fstype]
        log_str += " ".join(args)
    if options or sensitive_options:
        args += ["-o", ",".join(options + sensitive_options)]
        log_str += " -o " + sanitized_options_for_logging(options, sensitive_options)
    if source:
        args.append(source)
        log_str += " " + source
    args.append(target)
    log_str += " " + target
    return args, log_str


def make_mount_args(
    source: str, target: str, fstype: str, options: Optional[Sequence[str]]
) -> list[str]:
    """Build mount(8) arguments; options must not be sensitive."""
    args, _ = make_mount_args_sensitive(source, target, fstype, options, None)
    return args


def add_systemd_scope(
    systemd_run_path: str, mount_name: str, command: str, args: Sequence[str]
) -> tuple[str, list[str]]:
    """Wrap a command line in ``systemd-run --scope``."""
    description = f"--description=Kubernetes transient mount for {mount_name}"
    return systemd_run_path, [description, "--scope", "--", command, *args]


def add_systemd_scope_sensitive(
    systemd_run_path: str,
    mount_name: str,
    command: str,
    args: Sequence[str],
    mount_args_log_str: str,
) -> tuple[str, list[str], str]:
    """Wrap a command line in ``systemd-run --scope`` and extend its log string."""
    description = f"--description=Kubernetes transient mount for {mount_name}"
    prefix = [description, "--scope", "--", command]
    return systemd_run_path, [*prefix, *args], " ".join(prefix) + " " + mount_args_log_str


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    return int(text)


def parse_proc_mounts(content: Union[bytes, str]) -> list[MountPoint]:
    """Parse the content of /proc/mounts; raises ``ValueError`` if malformed."""
    if isinstance(content, bytes):
        content = content.decode()
    mounts = []
    for line in content.split("\n"):
        if line == "":
            continue
        fields = line.split()
        if len(fields) != EXPECTED_NUM_FIELDS_PER_LINE:
            # The line is not shown: it may hold sensitive options.
            raise ValueError(
                f"wrong number of fields (expected {EXPECTED_NUM_FIELDS_PER_LINE}, "
                f"got {len(fields)})"
            )
        mounts.append(
            MountPoint(
                device=fields[0],
                path=fields[1],
                type=fields[2],
                opts=fields[3].split(","),
                freq=_atoi(fields[4]),
                passno=_atoi(fields[5]),
            )
        )
    return mounts


def list_proc_mounts(mount_file_path: str) -> list[MountPoint]:
    """Read and parse a mounts file such as /proc/mounts."""
    return parse_proc_mounts(consistent_read(mount_file_path, MAX_LIST_TRIES))


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def search_mount_points(host_source: str, mount_info_path: str) -> list[str]:
    """Return every mount point referring to the same source as ``host_source``.

    The source is identified by its root path and major:minor device, since
    filesystems such as tmpfs may share a source name.
    """
    infos = parse_mount_info(mount_info_path)

    mount_id = 0
    root_path = ""
    major = minor = -1
    # Later mounts may hide earlier ones, so search from the end.
    for info in reversed(infos):
        if host_source == info.mount_point or path_within_base(
            host_source, info.mount_point
        ):
            mount_id = info.id
            root_path = _join(info.root, host_source.removeprefix(info.mount_point))
            major, minor = info.major, info.minor
            break

    if root_path == "" or major == -1 or minor == -1:
        raise ValueError(f"failed to get root path and major:minor for {host_source}")

    return [
        info.mount_point
        for info in infos
        if info.id != mount_id
        and info.root == root_path
        and info.major == major
        and info.minor == minor
    ]


class Mounter(Interface):
    """Mounts through mount(8), optionally inside a transient systemd scope.

    ``mounter_path`` names an alternative mount binary used for network
    filesystems. When ``with_systemd`` is ``None`` it is detected.
    """

    def __init__(self, mounter_path: str = "", with_systemd: Optional[bool] = None) -> None:
        self.mounter_path = mounter_path
        self.with_systemd = detect_systemd() if with_systemd is None else with_systemd

    def mount(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount ``source`` on ``target``; empty source or fstype are omitted."""
        self.mount_sensitive(source, target, fstype, options, None)

    def mount_sensitive(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
        sensitive_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount with extra options that are never logged."""
        mounter_path = ""
        bind, bind_opts, remount_opts, remount_sensitive = make_bind_opts_sensitive(
            options, sensitive_options
        )
        if bind:
            self._do_mount(
                mounter_path, DEFAULT_MOUNT_COMMAND, source, target, fstype,
                bind_opts, remount_sensitive,
            )
            self._do_mount(
                mounter_path, DEFAULT_MOUNT_COMMAND, source, target, fstype,
                remount_opts, remount_sensitive,
            )
            return
        if fstype in FS_TYPES_NEED_MOUNTER:
            mounter_path = self.mounter_path
        self._do_mount(
            mounter_path, DEFAULT_MOUNT_COMMAND, source, target, fstype,
            options, sensitive_options,
        )

    def _do_mount(
        self,
        mounter_path: str,
        mount_cmd: str,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]],
        sensitive_options: Optional[Sequence[str]],
    ) -> None:
        args, log_str = make_mount_args_sensitive(
            source, target, fstype, options, sensitive_options
        )
        if mounter_path:
            args = [mount_cmd, *args]
            log_str = mount_cmd + " " + log_str
            mount_cmd = mounter_path

        if self.with_systemd:
            # Fuse daemons started by mount then live in their own scope and
            # survive a restart of the calling service.
            mount_cmd, args, log_str = add_systemd_scope_sensitive(
                "systemd-run", target, mount_cmd, args, log_str
            )

        logger.debug("Mounting cmd (%s) with arguments (%s)", mount_cmd, log_str)
        err, output = _combined_output(mount_cmd, args)
        if err is not None:
            message = (
                f"mount failed: {err}\nMounting command: {mount_cmd}\n"
                f"Mounting arguments: {log_str}\nOutput: {output}"
            )
            logger.error("%s", message)
            raise OSError(message)

    def unmount(self, target: str) -> None:
        """Unmount ``target`` with umount(8)."""
        logger.debug("Unmounting %s", target)
        err, output = _combined_output("umount", [target])
        if err is not None:
            raise OSError(
                f"unmount failed: {err}\nUnmounting arguments: {target}\nOutput: {output}"
            )

    def list(self) -> list[MountPoint]:
        """Return the entries of /proc/mounts."""
        return list_proc_mounts(PROC_MOUNTS_PATH)

    def is_likely_not_mount_point(self, file: str) -> bool:
        """Tell whether ``file`` lies on the same device as its parent.

        Fast but blind to bind mounts within one filesystem and to symbolic
        links. Raises the ``os.stat`` error when ``file`` cannot be read.
        """
        stat = os.stat(file)
        trimmed = file[:-1] if file.endswith("/") else file
        parent = os.path.dirname(trimmed) or "."
        root_stat = os.stat(parent)
        return stat.st_dev == root_stat.st_dev

    def get_mount_refs(self, pathname: str) -> list[str]:
        """Return the other mount points of the source of ``pathname``."""
        try:
            exists = path_exists(pathname)
        except OSError as exc:
            if is_corrupted_mnt(exc):
                logger.warning(
                    "GetMountRefs found corrupted mount at %s, treating as unmounted path",
                    pathname,
                )
            return []
        if not exists:
            return []
        realpath = os.path.realpath(pathname, strict=True)
        return search_mount_points(realpath, PROC_MOUNT_INFO_PATH)