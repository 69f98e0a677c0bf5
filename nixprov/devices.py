"""Partition node naming and block-device probing."""
from __future__ import annotations

import os
import re
import stat

from .errors import InvalidInput
from .executil import run, trace
from .model import DeviceNodeSet


def partition_separator(disk: str) -> str:
    # Devices such as NVMe, loop and MMC require a ``p`` separator before the
    # partition index (``nvme0n1p1``, ``loop0p1``), while ``sda`` does not.
    base = disk.rstrip("/") or disk
    return "p" if base[-1:].isdigit() else ""


def partition_node(disk: str, index: int) -> str:
    base = disk.rstrip("/") or disk
    return f"{base}{partition_separator(base)}{index}"


def partition_nodes(disk: str) -> DeviceNodeSet:
    """Return the EFI/root/swap nodes for partitions 1, 2 and 3 of ``disk``."""

    return DeviceNodeSet(
        efi=partition_node(disk, 1),
        root=partition_node(disk, 2),
        swap=partition_node(disk, 3),
    )


def base_disk(dev: str) -> str:
    """Strip a trailing partition number (``/dev/nvme0n1p3`` -> ``/dev/nvme0n1``)."""

    m = re.match(r"^(.*\d)p\d+$", dev)
    if m:
        return m.group(1)
    m = re.match(r"^(.*[a-z])\d+$", dev)
    # whole disks such as loop0, nvme0n1 or mmcblk0 keep their number
    if m and not re.search(r"(loop|nbd|md|mmcblk|nvme\d+n)$", m.group(1)):
        return m.group(1)
    return dev


def is_block_device(path: str) -> bool:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        trace("devices.stat_error", path=path, error=str(exc))
        return False
    return stat.S_ISBLK(st.st_mode)


def node_state(path: str) -> str:
    if is_block_device(path):
        return "block"
    if os.path.exists(path):
        return "not-block"
    return "missing"


def disk_size_bytes(disk: str) -> int:
    r = run(["blockdev", "--getsize64", disk], check=False)
    if r.rc != 0:
        raise InvalidInput(
            f"cannot read size of {disk}: {(r.err or '').strip() or f'exit status {r.rc}'}",
            device=disk,
        )
    text = (r.out or "").strip()
    try:
        size = int(text)
    except ValueError:
        raise InvalidInput(f"unexpected blockdev output for {disk}: {text!r}", device=disk) from None
    trace("devices.size", device=disk, total_bytes=size)
    return size


def realpath(dev: str) -> str:
    try:
        return os.path.realpath(dev)
    except OSError:
        return dev


def same_device(a: str, b: str) -> bool:
    return bool(a and b) and realpath(a) == realpath(b)



def devices_share_disk(a: str, b: str) -> bool:
    return bool(a and b) and base_disk(realpath(a)) == base_disk(realpath(b))
