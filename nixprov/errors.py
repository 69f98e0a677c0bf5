"""Error taxonomy for the provisioning pipeline."""

from __future__ import annotations

from typing import Any


class ProvisionError(RuntimeError):
    """Base class; ``result`` is the kind reported by the CLI."""

    result = "FAIL_GENERIC"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details


class InvalidInput(ProvisionError):
    result = "FAIL_INVALID_INPUT"


# sizing: raised before anything destructive happens
class SizingError(ProvisionError):
    result = "FAIL_SIZING"


class InvalidDiskSize(SizingError):
    pass


class DiskTooSmall(SizingError):
    pass


class RootTooSmall(SizingError):
    pass


class InvalidPolicy(SizingError):
    pass


class RefuseSafeError(ProvisionError):
    result = "FAIL_LIVE_DISK_GUARD"


# provisioning executor
class ExecutorError(ProvisionError):
    result = "FAIL_PROVISION"
    state = "UNKNOWN"


class OperatorAbort(ExecutorError):
    state = "PRECHECK"


class PartitionWriteError(ExecutorError):
    state = "WRITE"


class SettleTimeoutError(ExecutorError):
    state = "SETTLE"


class FormatError(ExecutorError):
    state = "FORMAT"


class MountError(ExecutorError):
    state = "MOUNT"


class HardwareConfigError(ProvisionError):
    result = "FAIL_HARDWARE_CONFIG"


class TemplateError(ProvisionError):
    result = "FAIL_TEMPLATING"


class InstallFailed(ProvisionError):
    result = "FAIL_INSTALL"


class Interrupted(ProvisionError):
    result = "FAIL_INTERRUPTED"
