from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


@dataclass
class Flags:
    plan: bool = False
    assume_yes: bool = False
    skip_install: bool = False
    json: bool = True


@dataclass(frozen=True)
class SizingPolicy:
    efi_mib: int = 512
    efi_fallback_mib: int = 256
    swap_mib: int = 16 * 1024
    min_root_mib: int = 20 * 1024
    swap_floor_mib: int = 512
    align_mib: int = 1


@dataclass(frozen=True)
class DiskSpec:
    path: str
    total_bytes: int


class Role(Enum):
    EFI = "efi"
    ROOT = "root"
    SWAP = "swap"


@dataclass(frozen=True)
class PartitionSpec:
    role: Role
    start_mib: int
    size_mib: int
    type_guid: str
    label: str

    @property
    def end_mib(self) -> int:
        return self.start_mib + self.size_mib


@dataclass(frozen=True)
class PartitionPlan:
    disk: DiskSpec
    entries: tuple[PartitionSpec, ...]
    root_fs: str = "ext4"

    def _by_role(self, role: Role) -> PartitionSpec:
        for entry in self.entries:
            if entry.role is role:
                return entry
        raise KeyError(role)

    @property
    def efi(self) -> PartitionSpec:
        return self._by_role(Role.EFI)

    @property
    def root(self) -> PartitionSpec:
        return self._by_role(Role.ROOT)

    @property
    def swap(self) -> PartitionSpec:
        return self._by_role(Role.SWAP)

    def as_dict(self) -> dict:
        return {
            "disk": self.disk.path,
            "total_bytes": self.disk.total_bytes,
            "root_fs": self.root_fs,
            "partitions": [
                {
                    "role": e.role.value,
                    "start_mib": e.start_mib,
                    "size_mib": e.size_mib,
                    "type": e.type_guid,
                    "label": e.label,
                }
                for e in self.entries
            ],
        }


@dataclass(frozen=True)
class DeviceNodeSet:
    efi: str
    root: str
    swap: str

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.efi, self.root, self.swap)


@dataclass(frozen=True)
class Mounts:
    mnt: str
    boot: str


@dataclass(frozen=True)
class TemplateContext:
    username: str
    password_hash: str
    git_username: str
    git_email: str
    hostname: str
    target_disk: str

    def placeholders(self) -> dict[str, str]:
        return {
            "__NIXOS_USERNAME__": self.username,
            "__PASSWORD_HASH__": self.password_hash,
            "__GIT_USERNAME__": self.git_username,
            "__GIT_USEREMAIL__": self.git_email,
            "__HOSTNAME__": self.hostname,
            "__TARGET_DISK_FOR_GRUB__": self.target_disk,
        }

    def redacted(self) -> dict[str, str]:
        masked = replace(self, password_hash="<redacted>")
        return {
            "username": masked.username,
            "password_hash": masked.password_hash,
            "git_username": masked.git_username,
            "git_email": masked.git_email,
            "hostname": masked.hostname,
            "target_disk": masked.target_disk,
        }


@dataclass(frozen=True)
class ModuleList:
    entries: tuple[str, ...] = field(default_factory=tuple)
    indent: str = " " * 10

    def render(self) -> str:
        return "\n".join(f"{self.indent}{entry}" for entry in self.entries)


@dataclass
class InstallOutcome:
    rc: int
    command: list[str]
    duration: float
    log_path: Optional[str] = None
