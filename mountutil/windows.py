"""The Windows mounter: SMB global mappings and directory links."""

from __future__ import annotations

import logging
import ntpath
import os
import stat
import subprocess
import threading
from typing import Callable, Mapping, Optional, Sequence, Union

from .cleanup import path_exists
from .core import (
    SENSITIVE_OPTIONS_REMOVED,
    Interface,
    MountPoint,
    make_bind_opts_sensitive,
    sanitized_options_for_logging,
)
from .winpaths import is_corrupted_mnt, normalize_windows_path, validate_disk_number

logger = logging.getLogger(__name__)

ACCESS_DENIED = "access is denied"
MAX_PARENT_LINKS = 255

Runner = Callable[[str, Sequence[str]], Union[str, bytes]]

_smb_locks: dict[str, threading.Lock] = {}
_smb_locks_guard = threading.Lock()


class _CommandError(OSError):
    """A command that could not start or exited with a non-zero status."""

    def __init__(self, message: str, output: str) -> None:
        super().__init__(message)
        self.output = output


def _run(
    command: str, args: Sequence[str], env_extra: Optional[Mapping[str, str]] = None
) -> str:
    env = {**os.environ, **env_extra} if env_extra else None
    try:
        proc = subprocess.run(
            [command, *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=env,
            check=False,
        )
    except OSError as exc:
        raise _CommandError(str(exc), "") from exc
    output = (proc.stdout or b"").decode(errors="replace")
    if proc.returncode != 0:
        raise _CommandError(f"exit status {proc.returncode}", output)
    return output


def _as_text(output: Union[str, bytes, None]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output


def _smb_lock(source: str) -> threading.Lock:
    with _smb_locks_guard:
        return _smb_locks.setdefault(source, threading.Lock())


def new_smb_mapping(username: str, password: str, remotepath: str) -> str:
    """Create an SMB global mapping and return the command's output.

    Credentials travel through environment variables, never the command line.
    """
    if not username or not password or not remotepath:
        raise ValueError(
            f"invalid parameter(username: {username}, password: "
            f"{SENSITIVE_OPTIONS_REMOVED}, remoteapth: {remotepath})"
        )
    cmd_line = (
        "$PWord = ConvertTo-SecureString -String $Env:smbpassword -AsPlainText -Force"
        ";$Credential = New-Object -TypeName System.Management.Automation.PSCredential "
        "-ArgumentList $Env:smbuser, $PWord"
        ";New-SmbGlobalMapping -RemotePath $Env:smbremotepath -Credential $Credential"
    )
    return _run(
        "powershell",
        ["/c", cmd_line],
        {"smbuser": username, "smbpassword": password, "smbremotepath": remotepath},
    )


def is_smb_mapping_exist(remotepath: str) -> bool:
    """Tell whether an SMB global mapping exists for ``remotepath``."""
    try:
        _run(
            "powershell",
            ["/c", "Get-SmbGlobalMapping -RemotePath $Env:smbremotepath"],
            {"smbremotepath": remotepath},
        )
    except OSError:
        return False
    return True


def is_valid_path(remotepath: str) -> bool:
    """Tell whether ``remotepath`` is reachable; raises if the check fails."""
    try:
        output = _run(
            "powershell", ["/c", "Test-Path $Env:remoteapth"], {"remoteapth": remotepath}
        )
    except _CommandError as exc:
        raise OSError(f"returned output: {exc.output}, error: {exc}") from exc
    return output.lower().startswith("true")


def is_access_denied_error(err: Optional[BaseException]) -> bool:
    """Tell whether ``err`` reports that access was denied."""
    return err is not None and ACCESS_DENIED in str(err).lower()


def remove_smb_mapping(remotepath: str) -> str:
    """Remove the SMB global mapping of ``remotepath``; return the output."""
    return _run(
        "powershell",
        ["/c", "Remove-SmbGlobalMapping -RemotePath $Env:smbremotepath -Force"],
        {"smbremotepath": remotepath},
    )


def _list_volumes(runner: Runner, disk_id: str) -> list[str]:
    cmd = f"(Get-Disk -DeviceId {disk_id} | Get-Partition | Get-Volume).UniqueId"
    try:
        output = _as_text(runner("powershell", ["/c", cmd]))
    except Exception as exc:
        output = _as_text(getattr(exc, "output", ""))
        raise OSError(
            f"error list volumes on disk. cmd: {cmd}, output: {output}, error: {exc}"
        ) from exc
    logger.debug("listVolumesOnDisk id from %s: %s", disk_id, output)
    return output.strip().split("\r\n")


def list_volumes_on_disk(disk_id: str) -> list[str]:
    """Return the unique ids of the volumes on disk ``disk_id``."""
    return _list_volumes(_run, disk_id)


def get_all_parent_links(path: str) -> list[str]:
    """Follow symbolic links from ``path``; return every path visited."""
    links: list[str] = []
    while True:
        links.append(path)
        if len(links) > MAX_PARENT_LINKS:
            raise OSError(f"unexpected length of parent links: {links}")
        try:
            info = os.lstat(path)
        except OSError as exc:
            raise OSError(f"Lstat: {exc}") from exc
        if not stat.S_ISLNK(info.st_mode):
            return links
        try:
            path = os.readlink(path)
        except OSError as exc:
            raise OSError(f"Readlink error: {exc}") from exc


def format_and_mount_windows(
    runner: Runner, source: str, target: str, fstype: str
) -> None:
    """Format disk number ``source`` if it is raw and link it at ``target``.

    ``runner(command, args)`` runs a command, returns its combined output and
    raises on failure. ``fstype`` defaults to NTFS.
    """
    logger.debug("Attempting to formatAndMount disk: %s %s %s", fstype, source, target)
    validate_disk_number(source)
    if not fstype:
        fstype = "NTFS"

    cmd = (
        f"Get-Disk -Number {source} | Where partitionstyle -eq 'raw' | "
        "Initialize-Disk -PartitionStyle MBR -PassThru"
        f" | New-Partition -UseMaximumSize | Format-Volume -FileSystem {fstype} "
        "-Confirm:$false"
    )
    try:
        runner("powershell", ["/c", cmd])
    except Exception as exc:
        output = _as_text(getattr(exc, "output", ""))
        raise OSError(
            f"diskMount: format disk failed, error: {exc}, output: {output!r}"
        ) from exc
    logger.debug("diskMount: Disk successfully formatted, disk: %r, fstype: %r", source, fstype)

    driver_path = _list_volumes(runner, source)[0]
    target = normalize_windows_path(target)
    output = _as_text(runner("cmd", ["/c", "mklink", "/D", target, driver_path]))
    logger.info(
        "formatAndMount disk(%s) fstype(%s) on(%s) with output(%s) successfully",
        driver_path, fstype, target, output,
    )


class WindowsMounter(Interface):
    """Mounts SMB shares and disks by linking them into place with mklink."""

    def __init__(self, mounter_path: str = "") -> None:
        self.mounter_path = mounter_path

    def mount(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount ``source`` on ``target``; only cifs and bind are supported."""
        self.mount_sensitive(source, target, fstype, options, None)

    def mount_sensitive(
        self,
        source: str,
        target: str,
        fstype: str,
        options: Optional[Sequence[str]] = None,
        sensitive_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Mount with extra options that are never logged.

        For cifs the first two options are the user name and password.
        """
        target = normalize_windows_path(target)
        sanitized = sanitized_options_for_logging(options, sensitive_options)

        if source == "tmpfs":
            logger.debug(
                "mounting source (%r), target (%r), with options (%r)", source, target, sanitized
            )
            os.makedirs(target, 0o755, exist_ok=True)
            return

        os.makedirs(ntpath.dirname(target) or ".", 0o755, exist_ok=True)
        logger.debug(
            "mount options(%r) source:%r, target:%r, fstype:%r, begin to mount",
            sanitized, source, target, fstype,
        )

        bind, _, _, _ = make_bind_opts_sensitive(options, sensitive_options)
        if bind:
            bind_source = normalize_windows_path(source)
        else:
            bind_source = source
            all_options = [*(options or []), *(sensitive_options or [])]
            if len(all_options) < 2:
                raise ValueError(
                    f"mount options({sanitized!r}) should have at least 2 options, "
                    f"current number:{len(all_options)}, source:{source!r}, target:{target!r}"
                )
            if fstype.lower() != "cifs":
                raise ValueError(
                    f"only cifs mount is supported now, fstype: {fstype!r}, mounting "
                    f"source ({source!r}), target ({target!r}), with options ({sanitized!r})"
                )
            with _smb_lock(source):
                self._map_smb(all_options[0], all_options[1], source)

        try:
            output = _run("cmd", ["/c", "mklink", "/D", target, bind_source])
        except _CommandError as exc:
            logger.error(
                "mklink failed: %s, source(%r) target(%r) output: %r",
                exc, bind_source, target, exc.output,
            )
            raise
        logger.info(
            "mklink source(%r) on target(%r) successfully, output: %r",
            bind_source, target, output,
        )

    @staticmethod
    def _map_smb(username: str, password: str, source: str) -> None:
        try:
            new_smb_mapping(username, password, source)
            return
        except (OSError, ValueError) as exc:
            first_error = exc
        output = getattr(first_error, "output", "")
        logger.warning(
            "SMB Mapping(%s) returned with error(%s), output(%s)", source, first_error, output
        )
        if not is_smb_mapping_exist(source):
            raise OSError(
                f"New-SmbGlobalMapping({source}) failed: {first_error}, output: {output!r}"
            ) from first_error

        check_error: Optional[OSError] = None
        try:
            valid = is_valid_path(source)
        except OSError as exc:
            valid = False
            check_error = exc
        if valid:
            logger.info(
                "SMB Mapping(%s) already exists and is still valid, skip error(%s)",
                source, check_error,
            )
            return
        if check_error is None or is_access_denied_error(check_error):
            logger.info(
                "SMB Mapping(%s) already exists while it's not valid, return error: %s, "
                "now begin to remove and remount", source, check_error,
            )
            try:
                remove_smb_mapping(source)
            except _CommandError as exc:
                raise OSError(
                    f"Remove-SmbGlobalMapping failed: {exc}, output: {exc.output!r}"
                ) from exc
            try:
                new_smb_mapping(username, password, source)
            except (OSError, ValueError) as exc:
                raise OSError(
                    f"New-SmbGlobalMapping({source}) failed: {exc}, "
                    f"output: {getattr(exc, 'output', '')!r}"
                ) from exc

    def unmount(self, target: str) -> None:
        """Remove the link at ``target``."""
        logger.debug("azureMount: Unmount target (%r)", target)
        target = normalize_windows_path(target)
        try:
            _run("cmd", ["/c", "rmdir", target])
        except _CommandError as exc:
            logger.error("rmdir failed: %s, output: %r", exc, exc.output)
            raise

    def list(self) -> list[MountPoint]:
        """Return an empty list: Windows offers no table of mounts."""
        return []

    def is_likely_not_mount_point(self, file: str) -> bool:
        """Tell whether ``file`` is not a symbolic link; raises if it is missing."""
        info = os.lstat(file)
        return not stat.S_ISLNK(info.st_mode)

    def get_mount_refs(self, pathname: str) -> list[str]:
        """Return ``[pathname]`` if it exists, else an empty list."""
        windows_path = normalize_windows_path(pathname)
        try:
            exists = path_exists(windows_path)
        except OSError as exc:
            if is_corrupted_mnt(exc):
                logger.warning(
                    "GetMountRefs found corrupted mount at %s, treating as unmounted path",
                    windows_path,
                )
            return []
        if not exists:
            return []
        return [pathname]