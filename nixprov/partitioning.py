"""GPT layout planning and application via sfdisk."""
from __future__ import annotations

from subprocess import CalledProcessError

from .errors import PartitionWriteError
from .executil import failure_message, run, trace, udev_settle
from .model import DiskSpec, PartitionPlan, PartitionSpec, Role, SizingPolicy
from .sizing import calculate

GUID_EFI = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
GUID_LINUX_FS = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
GUID_LINUX_SWAP = "0657FD6D-A4AB-43C4-84E5-0933C84B4F4F"

LABEL_EFI = "EFI"
LABEL_ROOT = "ROOT_NIXOS"
LABEL_SWAP = "SWAP"


def plan(disk: DiskSpec, policy: SizingPolicy | None = None, root_fs: str = "ext4") -> PartitionPlan:
    layout = calculate(disk.total_bytes, policy)
    entries = (
        PartitionSpec(Role.EFI, layout.efi.start, layout.efi.size, GUID_EFI, LABEL_EFI),
        PartitionSpec(Role.ROOT, layout.root.start, layout.root.size, GUID_LINUX_FS, LABEL_ROOT),
        PartitionSpec(Role.SWAP, layout.swap.start, layout.swap.size, GUID_LINUX_SWAP, LABEL_SWAP),
    )
    result = PartitionPlan(disk=disk, entries=entries, root_fs=root_fs)
    trace("partitioning.plan", efi_fallback=layout.efi_fallback, **result.as_dict())
    return result


def sfdisk_script(p: PartitionPlan) -> str:
    lines = ["label: gpt"]
    last = len(p.entries) - 1
    for idx, e in enumerate(p.entries):
        fields = [f"start={e.start_mib}MiB"]
        # the tail entry takes the rest so the backup GPT header still fits
        if idx != last:
            fields.append(f"size={e.size_mib}MiB")
        fields.append(f"type={e.type_guid}")
        fields.append(f'name="{e.label}"')
        lines.append(", ".join(fields))
    return "\n".join(lines) + "\n"


def write_table(p: PartitionPlan):
    script = sfdisk_script(p)
    cmd = ["sfdisk", "--wipe", "always", "--wipe-partitions", "always", p.disk.path]
    try:
        run(cmd, check=True, input=script, timeout=120.0)
    except CalledProcessError as exc:
        raise PartitionWriteError(
            f"sfdisk failed on {p.disk.path}: {failure_message(exc)}",
            device=p.disk.path,
            script=script,
            rc=exc.returncode,
        ) from exc


def reread(device: str):
    # Multiple methods to convince the kernel to reread the partition table
    run(["sync"], check=False)
    r = run(["partprobe", device], check=False)
    if r.rc != 0:
        trace("partitioning.reread.partprobe_failed", device=device, rc=r.rc, err=(r.err or "").strip())
        r = run(["blockdev", "--rereadpt", device], check=False)
    if r.rc != 0:
        trace("partitioning.reread.blockdev_failed", device=device, rc=r.rc, err=(r.err or "").strip())
        run(["partx", "-u", device], check=False)
    udev_settle()


def verify_layout(device: str) -> str:
    return run(["sfdisk", "--dump", device], check=False).out

