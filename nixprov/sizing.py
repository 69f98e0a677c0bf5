"""Partition size arithmetic (EFI / root / swap at the tail).

All values are MiB. The first MiB is left free for alignment, EFI follows,
root takes everything up to the swap region which ends at the last MiB of the
disk. The function is pure; callers pass the disk size read from the device.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import DiskTooSmall, InvalidDiskSize, InvalidPolicy, RootTooSmall, SizingError
from .model import SizingPolicy

MIB = 1024 * 1024


@dataclass(frozen=True)
class Region:
    start: int
    size: int

    @property
    def end(self) -> int:
        return self.start + self.size


@dataclass(frozen=True)
class Layout:
    disk_mib: int
    efi: Region
    root: Region
    swap: Region
    efi_fallback: bool = False


def bytes_to_mib(total_bytes) -> int:
    if isinstance(total_bytes, bool) or not isinstance(total_bytes, int):
        raise InvalidDiskSize(
            f"disk size must be an integer number of bytes, got {total_bytes!r}",
            total_bytes=total_bytes,
        )
    if total_bytes <= 0:
        raise InvalidDiskSize(
            f"disk size must be positive, got {total_bytes}",
            total_bytes=total_bytes,
        )
    return total_bytes // MIB


def check_policy(policy: SizingPolicy):
    """Reject sizes that cannot produce three non-empty partitions."""

    positive = ("align_mib", "efi_mib", "efi_fallback_mib", "swap_mib")
    non_negative = ("min_root_mib", "swap_floor_mib")
    for name in positive + non_negative:
        value = getattr(policy, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidPolicy(f"{name} must be an integer number of MiB, got {value!r}", field=name, value=value)
        if value < (1 if name in positive else 0):
            raise InvalidPolicy(
                f"{name} must be {'positive' if name in positive else 'zero or more'}, got {value}",
                field=name,
                value=value,
            )


def _required(policy: SizingPolicy, efi_mib: int) -> int:
    return policy.align_mib + efi_mib + policy.swap_mib + policy.min_root_mib


def calculate(total_bytes: int, policy: SizingPolicy | None = None) -> Layout:
    policy = policy or SizingPolicy()
    check_policy(policy)
    disk_mib = bytes_to_mib(total_bytes)

    efi_mib = policy.efi_mib
    fallback = False
    # the fallback only ever shrinks EFI
    if _required(policy, efi_mib) > disk_mib and policy.efi_fallback_mib < efi_mib:
        efi_mib = policy.efi_fallback_mib
        fallback = True
    required = _required(policy, efi_mib)
    if required > disk_mib:
        raise DiskTooSmall(
            f"disk has {disk_mib} MiB but at least {required} MiB are needed "
            f"(efi={efi_mib} swap={policy.swap_mib} min_root={policy.min_root_mib})",
            disk_mib=disk_mib,
            required_mib=required,
        )

    root_start = policy.align_mib + efi_mib

    swap_mib = policy.swap_mib
    available = disk_mib - root_start
    if available < swap_mib:
        swap_mib = available - 1
        if swap_mib < policy.swap_floor_mib:
            raise DiskTooSmall(
                f"only {available} MiB left after EFI; swap would shrink to "
                f"{swap_mib} MiB (floor {policy.swap_floor_mib} MiB)",
                disk_mib=disk_mib,
                available_mib=available,
                swap_mib=swap_mib,
            )

    swap_start = disk_mib - swap_mib
    if swap_start <= root_start:
        raise DiskTooSmall(
            f"no space for root: swap starts at {swap_start} MiB, root at {root_start} MiB",
            disk_mib=disk_mib,
            root_start_mib=root_start,
            swap_start_mib=swap_start,
        )

    root_size = swap_start - root_start
    if root_size < policy.min_root_mib:
        raise RootTooSmall(
            f"root would be {root_size} MiB, minimum is {policy.min_root_mib} MiB",
            disk_mib=disk_mib,
            root_mib=root_size,
            min_root_mib=policy.min_root_mib,
        )

    layout = Layout(
        disk_mib=disk_mib,
        efi=Region(policy.align_mib, efi_mib),
        root=Region(root_start, root_size),
        swap=Region(swap_start, swap_mib),
        efi_fallback=fallback,
    )
    for name, region in (("efi", layout.efi), ("root", layout.root), ("swap", layout.swap)):
        if region.size <= 0 or region.end > disk_mib:
            raise SizingError(
                f"{name} region {region.start}+{region.size} MiB does not fit a {disk_mib} MiB disk",
                disk_mib=disk_mib,
                region=name,
            )
    return layout
