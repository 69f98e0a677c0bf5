"""Format, mount and swap helpers plus best-effort teardown."""
from __future__ import annotations

from subprocess import CalledProcessError

from .devices import realpath, same_device
from .errors import FormatError, MountError
from .executil import failure_message, run, trace, udev_settle
from .model import Mounts

ROOT_FS_TYPES = ("ext4", "btrfs", "xfs")


def mkfs_command(dev: str, fstype: str, label: str) -> list[str]:
    if fstype == "vfat":
        return ["mkfs.vfat", "-F", "32", "-n", label, dev]
    if fstype == "ext4":
        return ["mkfs.ext4", "-F", "-L", label, dev]
    if fstype in ("btrfs", "xfs"):
        return [f"mkfs.{fstype}", "-f", "-L", label, dev]
    if fstype == "swap":
        return ["mkswap", "-f", "-L", label, dev]
    raise ValueError(f"unsupported filesystem type: {fstype}")


def mkfs(dev: str, fstype: str, label: str):
    cmd = mkfs_command(dev, fstype, label)
    try:
        run(cmd, check=True, timeout=360.0)
    except CalledProcessError as exc:
        raise FormatError(
            f"{cmd[0]} failed on {dev}: {failure_message(exc)}",
            device=dev,
            fstype=fstype,
            rc=exc.returncode,
        ) from exc
    trace("mounts.mkfs_success", device=dev, fstype=fstype, label=label)


def is_mountpoint(path: str) -> bool:
    return run(["mountpoint", "-q", path], check=False).rc == 0


def mount_source(path: str) -> str:
    r = run(["findmnt", "-no", "SOURCE", path], check=False)
    if r.rc != 0:
        return ""
    # btrfs subvolume sources look like ``/dev/sda2[/@]``
    return (r.out or "").strip().split("[", 1)[0]


def verify_mount(path: str, expected: str):
    """Raise ``MountError`` unless ``path`` is a mount point backed by ``expected``."""

    if not is_mountpoint(path):
        raise MountError(f"{path} is not a mount point after mounting {expected}", path=path, expected=expected)
    src = mount_source(path)
    if not same_device(src, expected):
        raise MountError(
            f"{path} is backed by {src or 'nothing'}, expected {expected}",
            path=path,
            expected=expected,
            actual=src,
            actual_realpath=realpath(src) if src else None,
        )
    trace("mounts.verified", path=path, source=src)


def mount(dev: str, target: str, fstype: str | None = None, opts: list[str] | None = None):
    cmd = ["mount"]
    if fstype:
        cmd += ["-t", fstype]
    if opts:
        cmd += ["-o", ",".join(opts)]
    cmd += [dev, target]
    try:
        run(cmd, check=True)
    except CalledProcessError as exc:
        raise MountError(f"mount {dev} on {target} failed: {failure_message(exc)}", device=dev, path=target) from exc
    verify_mount(target, dev)


def mkdir(path: str):
    try:
        run(["mkdir", "-p", path], check=True)
    except CalledProcessError as exc:
        raise MountError(f"cannot create {path}: {failure_message(exc)}", path=path) from exc


def swap_active(dev: str) -> bool:
    r = run(["swapon", "--show=NAME", "--noheadings", "--raw"], check=False)
    active = [line.strip() for line in (r.out or "").splitlines() if line.strip()]
    return any(same_device(name, dev) for name in active)


def swapon(dev: str):
    try:
        run(["swapon", dev], check=True)
    except CalledProcessError as exc:
        raise MountError(f"swapon {dev} failed: {failure_message(exc)}", device=dev) from exc
    if not swap_active(dev):
        raise MountError(f"swap on {dev} is not active after swapon", device=dev)


def umount(path: str) -> bool:
    if not is_mountpoint(path):
        return True
    if run(["umount", path], check=False).rc == 0:
        return True
    trace("mounts.umount_lazy", path=path)
    return run(["umount", "-l", path], check=False).rc == 0


def swapoff(dev: str):
    run(["swapoff", dev], check=False)


def swapoff_label(label: str):
    run(["swapoff", "-L", label], check=False)


def swapoff_all():
    run(["swapoff", "-a"], check=False)


def teardown(mounts: Mounts, swap_dev: str | None = None) -> dict:
    """Unmount boot then root and disable swap; never raises.

    Returns a summary of what was left behind so callers can report it.
    """

    left: dict = {"mounted": [], "errors": []}
    for path in (mounts.boot, mounts.mnt):
        try:
            if not umount(path):
                left["mounted"].append(path)
        except Exception as exc:  # noqa: BLE001 - teardown must not raise
            left["errors"].append(f"umount {path}: {exc}")
    if swap_dev:
        try:
            swapoff(swap_dev)
        except Exception as exc:  # noqa: BLE001
            left["errors"].append(f"swapoff {swap_dev}: {exc}")
    try:
        swapoff_all()
    except Exception as exc:  # noqa: BLE001
        left["errors"].append(f"swapoff -a: {exc}")
    try:
        udev_settle()
    except Exception as exc:  # noqa: BLE001
        left["errors"].append(f"udev_settle: {exc}")
    trace("mounts.teardown", mnt=mounts.mnt, boot=mounts.boot, swap=swap_dev, **left)
    return left
