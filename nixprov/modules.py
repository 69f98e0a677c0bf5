"""Discover module templates and build the flake import block."""
from __future__ import annotations

import os

from .executil import trace, warn
from .model import ModuleList

MODULE_SUFFIX = ".nix"
BASE_TEMPLATE = "flake.nix"
HARDWARE_MODULE = "hardware-configuration.nix"
# imported through home-manager in the flake template, not as a system module
USER_SESSION_MODULE = "home-manager-user.nix"
EXCLUDED = frozenset({BASE_TEMPLATE, HARDWARE_MODULE, USER_SESSION_MODULE})


def _import_path(name: str) -> str:
    return f"./{name}"


def module_files(template_dir: str) -> list[str]:
    """Return module template names in ``template_dir`` (sorted, non-recursive).

    Raises ``OSError`` when the directory cannot be listed.
    """

    names = []
    with os.scandir(template_dir) as it:
        for entry in it:
            if not entry.name.endswith(MODULE_SUFFIX) or entry.name in EXCLUDED:
                continue
            if entry.is_file():
                names.append(entry.name)
    return sorted(names)


def discover(template_dir: str) -> ModuleList:
    try:
        names = module_files(template_dir)
    except OSError as exc:
        warn(
            "modules.unreadable",
            f"Cannot read template directory {template_dir} ({exc}); importing only {HARDWARE_MODULE}.",
            template_dir=template_dir,
        )
        names = []
    entries = tuple(_import_path(n) for n in names) + (_import_path(HARDWARE_MODULE),)
    trace("modules.discovered", template_dir=template_dir, modules=list(entries))
    return ModuleList(entries=entries)
