from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_BASE = "~/.local/state/nixprov"
_DEFAULT_MNT = "/mnt"
_PACKAGE_TEMPLATES = Path(__file__).absolute().parent / "templates"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except (FileNotFoundError, RuntimeError):
        return str(candidate)


def base_path() -> str:
    """Return the base directory for provisioning artifacts.

    Overridden with ``NIXPROV_BASE_PATH``; otherwise a per-user state
    directory is used so log files survive a failed run.
    """

    override = os.environ.get("NIXPROV_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def logs_dir() -> str:
    return str(Path(base_path()) / "logs")


def artifacts_dir() -> str:
    return str(Path(base_path()) / "artifacts")


def mount_root() -> str:
    return os.environ.get("NIXPROV_MNT") or _DEFAULT_MNT


def boot_mount(mnt: str) -> str:
    return str(Path(mnt) / "boot")


def config_root(mnt: str) -> str:
    return str(Path(mnt) / "etc" / "nixos")


def template_dir() -> str:
    override = os.environ.get("NIXPROV_TEMPLATE_DIR")
    if override:
        return _expand(override)
    return str(_PACKAGE_TEMPLATES)
