"""Generate hardware-configuration.nix for the mounted target."""
from __future__ import annotations

import os
from subprocess import CalledProcessError

from .errors import HardwareConfigError
from .executil import failure_message, info, run, trace
from .modules import HARDWARE_MODULE


def generate(mnt: str, config_root: str) -> str:
    try:
        run(["nixos-generate-config", "--root", mnt], check=True, timeout=300.0)
    except CalledProcessError as exc:
        raise HardwareConfigError(
            f"nixos-generate-config --root {mnt} failed: {failure_message(exc)}",
            mnt=mnt,
            rc=exc.returncode,
        ) from exc
    hw = os.path.join(config_root, HARDWARE_MODULE)
    if not os.path.isfile(hw):
        raise HardwareConfigError(f"{hw} was not generated", path=hw)
    # the flake does not import the generated base configuration
    base = os.path.join(config_root, "configuration.nix")
    if os.path.exists(base):
        try:
            os.remove(base)
        except OSError as exc:
            raise HardwareConfigError(f"cannot remove {base}: {exc}", path=base) from exc
        trace("hardware.removed_base_config", path=base)
    info("hardware.generated", f"Generated {hw}", path=hw)
    return hw
