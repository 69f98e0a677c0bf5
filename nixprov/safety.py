"""Guards and destructive-op refusals."""

from __future__ import annotations

from .devices import devices_share_disk
from .executil import trace
from .mounts import mount_source

LIVE_MOUNTPOINTS = ("/", "/boot", "/nix/store")


def guard_not_live_disk(device: str) -> tuple[bool, str]:
    """
    Refuse when the target device carries a filesystem of the running system.
    Returns (ok, reason).
    """
    for mp in LIVE_MOUNTPOINTS:
        src = mount_source(mp)
        if not src.startswith("/dev/"):
            continue
        if devices_share_disk(src, device):
            trace("safety.live_disk", device=device, mountpoint=mp, source=src)
            return False, f"Target {device} looks like live disk ({src} mounted at {mp})."
    return True, ""
