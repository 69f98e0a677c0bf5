"""Partition, settle, format and mount a planned disk.

``ProvisioningExecutor`` walks PRECHECK -> WRITE -> SETTLE -> FORMAT -> MOUNT.
Any exception raised in a state, including ``KeyboardInterrupt`` and the
signal-driven ``Interrupted``, runs the rollback (unmount boot then root,
swap off) before the original exception propagates to the caller.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional

from . import mounts as mnt_ops
from . import partitioning
from .devices import devices_share_disk, node_state, partition_nodes
from .errors import OperatorAbort, SettleTimeoutError
from .executil import info, trace, udev_settle, udev_trigger, warn
from .model import DeviceNodeSet, Mounts, PartitionPlan


class State(Enum):
    PRECHECK = "PRECHECK"
    WRITE = "WRITE"
    SETTLE = "SETTLE"
    FORMAT = "FORMAT"
    MOUNT = "MOUNT"
    DONE = "DONE"
    ROLLBACK = "ROLLBACK"
    FAILED = "FAILED"


class ProvisioningExecutor:
    def __init__(
        self,
        plan: PartitionPlan,
        mounts: Mounts,
        nodes: Optional[DeviceNodeSet] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        settle_attempts: int = 20,
        settle_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.plan = plan
        self.mounts = mounts
        self.nodes = nodes or partition_nodes(plan.disk.path)
        self.confirm = confirm
        self.settle_attempts = max(1, settle_attempts)
        self.settle_interval = settle_interval
        self.sleep = sleep
        self.state = State.PRECHECK
        self.history: list[State] = []
        self.rollback_report: Optional[dict] = None

    @property
    def disk(self) -> str:
        return self.plan.disk.path

    def _enter(self, state: State):
        self.state = state
        self.history.append(state)
        trace("provision.state", state=state.value, device=self.disk)

    def run(self) -> DeviceNodeSet:
        steps = (
            (State.PRECHECK, self.precheck),
            (State.WRITE, self.write),
            (State.SETTLE, self.settle),
            (State.FORMAT, self.format),
            (State.MOUNT, self.mount),
        )
        try:
            for state, step in steps:
                self._enter(state)
                step()
        except BaseException as exc:
            failed_in = self.state
            trace("provision.failed", state=failed_in.value, error=str(exc), kind=type(exc).__name__)
            # a refused unmount leaves the operator's mounts alone
            if not isinstance(exc, OperatorAbort):
                self._enter(State.ROLLBACK)
                self.rollback()
            self._enter(State.FAILED)
            if hasattr(exc, "details"):
                exc.details.setdefault("state", failed_in.value)
                exc.details.setdefault("rollback", self.rollback_report)
            raise
        self._enter(State.DONE)
        return self.nodes

    def precheck(self):
        # boot first: it is nested under the root mount point
        for path in (self.mounts.boot, self.mounts.mnt):
            if not mnt_ops.is_mountpoint(path):
                continue
            src = mnt_ops.mount_source(path)
            if not devices_share_disk(src, self.disk):
                question = f"{path} is mounted from {src or 'an unknown device'}, not {self.disk}. Unmount it?"
                if not (self.confirm and self.confirm(question)):
                    raise OperatorAbort(
                        f"refusing to unmount {path} (backed by {src}) without confirmation",
                        path=path,
                        source=src,
                    )
            info("provision.precheck.umount", f"Unmounting {path} ({src}) left over from a previous run", path=path)
            if not mnt_ops.umount(path):
                warn("provision.precheck.busy", f"Failed to unmount {path}; it might be busy.", path=path)
        mnt_ops.swapoff_label(self.plan.swap.label)
        mnt_ops.swapoff_all()

    def write(self):
        info("provision.write", f"Writing GPT partition table to {self.disk}")
        partitioning.write_table(self.plan)

    def settle(self):
        partitioning.reread(self.disk)
        last: dict[str, str] = {}
        for attempt in range(1, self.settle_attempts + 1):
            udev_trigger()
            udev_settle()
            last = {node: node_state(node) for node in self.nodes.as_tuple()}
            if all(s == "block" for s in last.values()):
                trace("provision.settle.ready", attempt=attempt, nodes=last)
                return
            trace("provision.settle.retry", attempt=attempt, nodes=last)
            if attempt < self.settle_attempts:
                self.sleep(self.settle_interval)
        raise SettleTimeoutError(
            f"partition nodes did not appear after {self.settle_attempts} attempts: "
            + ", ".join(f"{k}={v}" for k, v in last.items()),
            nodes=last,
            table=partitioning.verify_layout(self.disk),
        )

    def format(self):
        p = self.plan
        info("provision.format", f"Formatting {self.nodes.efi}, {self.nodes.root}, {self.nodes.swap}")
        mnt_ops.mkfs(self.nodes.efi, "vfat", p.efi.label)
        mnt_ops.mkfs(self.nodes.root, p.root_fs, p.root.label)
        mnt_ops.mkfs(self.nodes.swap, "swap", p.swap.label)

    def mount(self):
        mnt_ops.mkdir(self.mounts.mnt)
        mnt_ops.mount(self.nodes.root, self.mounts.mnt, fstype=self.plan.root_fs)
        mnt_ops.mkdir(self.mounts.boot)
        mnt_ops.mount(self.nodes.efi, self.mounts.boot, fstype="vfat", opts=["umask=0077"])
        mnt_ops.swapon(self.nodes.swap)
        info("provision.mounted", f"Mounted {self.mounts.mnt} and {self.mounts.boot}, swap on {self.nodes.swap}")

    def rollback(self) -> dict:
        report = mnt_ops.teardown(self.mounts, self.nodes.swap)
        self.rollback_report = report
        if report.get("mounted"):
            warn(
                "provision.rollback.incomplete",
                "Still mounted after rollback: " + ", ".join(report["mounted"]),
            )
        return report
