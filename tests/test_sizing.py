import pytest

from nixprov import sizing
from nixprov.errors import DiskTooSmall, InvalidDiskSize, InvalidPolicy, SizingError
from nixprov.model import SizingPolicy

MIB = sizing.MIB
GIB = 1024 * MIB
POLICY = SizingPolicy()
# smallest disks that fit with the 512 MiB and the 256 MiB EFI partition
FULL_MIN = POLICY.align_mib + POLICY.efi_mib + POLICY.swap_mib + POLICY.min_root_mib
FALLBACK_MIN = POLICY.align_mib + POLICY.efi_fallback_mib + POLICY.swap_mib + POLICY.min_root_mib


def _assert_contiguous(layout):
    assert layout.efi.start == POLICY.align_mib
    assert layout.root.start == layout.efi.end
    assert layout.swap.start == layout.root.end
    assert layout.swap.end == layout.disk_mib
    assert min(layout.efi.size, layout.root.size, layout.swap.size) > 0
    assert layout.efi.size + layout.root.size + layout.swap.size <= layout.disk_mib


def test_hundred_gib_disk_layout():
    layout = sizing.calculate(100 * GIB)

    assert layout.disk_mib == 102400
    assert (layout.efi.start, layout.efi.size) == (1, 512)
    assert layout.root.start == 513
    assert layout.root.end == 100 * 1024 - 16384
    assert (layout.swap.start, layout.swap.size) == (86016, 16384)
    assert not layout.efi_fallback


@pytest.mark.parametrize(
    "disk_mib",
    [FULL_MIN, FULL_MIN + 1, 40 * 1024, 64 * 1024 + 7, 256 * 1024, 2 * 1024 * 1024, 16 * 1024 * 1024],
)
def test_large_enough_disks_are_contiguous(disk_mib):
    layout = sizing.calculate(disk_mib * MIB + 12345)
    _assert_contiguous(layout)
    assert layout.efi.size == POLICY.efi_mib
    assert layout.root.size >= POLICY.min_root_mib
    assert layout.swap.size == POLICY.swap_mib


@pytest.mark.parametrize("disk_mib", [FALLBACK_MIN, FALLBACK_MIN + 100, FULL_MIN - 1])
def test_efi_fallback_range(disk_mib):
    layout = sizing.calculate(disk_mib * MIB)
    _assert_contiguous(layout)
    assert layout.efi_fallback
    assert layout.efi.size == POLICY.efi_fallback_mib
    assert layout.root.size >= POLICY.min_root_mib


@pytest.mark.parametrize("disk_mib", [1, 512, 10 * 1024, FALLBACK_MIN - 1])
def test_below_fallback_is_disk_too_small(disk_mib):
    with pytest.raises(DiskTooSmall) as exc:
        sizing.calculate(disk_mib * MIB)
    assert exc.value.details["disk_mib"] == disk_mib
    assert exc.value.details["required_mib"] == FALLBACK_MIN


def test_ten_gib_disk_reports_numbers():
    with pytest.raises(DiskTooSmall) as exc:
        sizing.calculate(10 * GIB)
    assert "10240 MiB" in str(exc.value)
    assert isinstance(exc.value, SizingError)


@pytest.mark.parametrize("value", [0, -1, -(10 * GIB), "100", 1.5, None, True])
def test_invalid_disk_sizes(value):
    with pytest.raises(InvalidDiskSize):
        sizing.calculate(value)


def test_sub_mib_disk_is_too_small_not_invalid():
    with pytest.raises(DiskTooSmall):
        sizing.calculate(MIB - 1)


def test_custom_policy_is_respected():
    policy = SizingPolicy(efi_mib=1024, swap_mib=4096, min_root_mib=8192)
    layout = sizing.calculate(32 * GIB, policy)
    assert layout.efi.size == 1024
    assert layout.root.start == 1025
    assert layout.swap.size == 4096
    assert layout.swap.start == 32 * 1024 - 4096


def test_zero_minimum_root_still_yields_contiguous_layout():
    policy = SizingPolicy(efi_mib=512, efi_fallback_mib=256, swap_mib=1024, min_root_mib=0)
    layout = sizing.calculate(2 * GIB, policy)
    assert layout.root.size == 2048 - 1024 - 513
    assert layout.swap.end == 2048


@pytest.mark.parametrize(
    "overrides",
    [
        {"swap_mib": -100},
        {"swap_mib": 0},
        {"efi_mib": 0},
        {"efi_mib": -512},
        {"efi_fallback_mib": 0},
        {"min_root_mib": -1},
        {"align_mib": 0},
        {"swap_mib": 1.5},
    ],
)
def test_non_positive_policy_sizes_are_rejected(overrides):
    with pytest.raises(InvalidPolicy) as exc:
        sizing.calculate(100 * GIB, SizingPolicy(**overrides))
    assert isinstance(exc.value, SizingError)
    assert exc.value.details["field"] == next(iter(overrides))


@pytest.mark.parametrize("swap_mib", [1, 512, 16384, 60000])
def test_every_region_is_positive_and_on_disk(swap_mib):
    layout = sizing.calculate(100 * GIB, SizingPolicy(swap_mib=swap_mib))
    for region in (layout.efi, layout.root, layout.swap):
        assert region.size > 0
        assert region.end <= layout.disk_mib
    _assert_contiguous(layout)


def test_fallback_never_grows_a_small_efi():
    policy = SizingPolicy(efi_mib=128)
    needed = policy.align_mib + 128 + policy.swap_mib + policy.min_root_mib

    layout = sizing.calculate(needed * MIB, policy)
    assert layout.efi.size == 128
    assert not layout.efi_fallback

    with pytest.raises(DiskTooSmall) as exc:
        sizing.calculate((needed - 1) * MIB, policy)
    assert exc.value.details["required_mib"] == needed
