"""CLI entrypoint: partition, format, mount, generate the flake and install NixOS."""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import time
from typing import Any, Dict, Optional

from . import hardware, installer, modules, partitioning, safety, templating
from .devices import disk_size_bytes, is_block_device, partition_nodes
from .errors import InvalidInput, Interrupted, ProvisionError, RefuseSafeError
from .executil import append_jsonl, resolve_log_path, trace
from .model import DiskSpec, Flags, Mounts, SizingPolicy, TemplateContext
from .mounts import ROOT_FS_TYPES, teardown
from .paths import artifacts_dir, boot_mount, config_root, mount_root, template_dir
from .provisioner import ProvisioningExecutor, State

RESULT_CODES: Dict[str, int] = {
    "PLAN_OK": 0,
    "ABORTED_BY_OPERATOR": 0,
    "INSTALL_SKIPPED": 0,
    "DONE_OK": 0,
    "FAIL_INVALID_DEVICE": 1,
    "FAIL_INVALID_INPUT": 1,
    "FAIL_SIZING": 1,
    "FAIL_LIVE_DISK_GUARD": 1,
    "FAIL_PROVISION": 1,
    "FAIL_HARDWARE_CONFIG": 1,
    "FAIL_TEMPLATING": 1,
    "FAIL_INSTALL": 1,
    "FAIL_INTERRUPTED": 1,
    "FAIL_UNHANDLED": 1,
}

CLI_START_MONO = time.perf_counter()
_CURRENT_DEVICE: Optional[str] = None
JSON_OUTPUT_ENABLED = True


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    log_path = resolve_log_path()
    if log_path:
        payload.setdefault("log_path", log_path)
        append_jsonl(log_path, payload)
    payload.setdefault("device", _CURRENT_DEVICE)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    if JSON_OUTPUT_ENABLED:
        print(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))
    else:
        why_text = str(payload.get("why") or "")
        print(
            f"result={kind} why={why_text} device={payload.get('device') or ''} "
            f"timing_total_ms={payload['timing_total_ms']} log_path={payload.get('log_path') or ''}"
        )
    raise SystemExit(RESULT_CODES.get(kind, 1))


def _fail(exc: ProvisionError, extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"why": str(exc), "error": type(exc).__name__}
    if exc.details:
        payload["details"] = exc.details
    if extra:
        payload.update(extra)
    _emit_result(exc.result, payload)


def _write_json_artifact(name: str, data: Dict[str, Any]) -> Optional[str]:
    base = artifacts_dir()
    ts = time.strftime("%Y%m%d_%H%M%S")
    path = os.path.join(base, f"{name}_{ts}.json")
    try:
        os.makedirs(base, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
    except OSError:
        return None
    return path


def confirm(question: str, default: bool = False) -> bool:
    hint = "[Y/n]" if default else "[y/N]"
    while True:
        try:
            answer = input(f"{question} {hint}: ").strip().lower()
        except EOFError:
            return False
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False
        if answer == "":
            return default
        print("Please type 'y' or 'n', or press Enter for the default.")


def build_parser() -> argparse.ArgumentParser:
    policy = SizingPolicy()
    parser = argparse.ArgumentParser(prog="nixos-provision", add_help=True)
    parser.add_argument("device")
    parser.add_argument("--username")
    parser.add_argument("--password-hash", default=None)
    parser.add_argument("--password-hash-file", default=None)
    parser.add_argument("--git-username")
    parser.add_argument("--git-email")
    parser.add_argument("--hostname", default="nixos")
    parser.add_argument("--root-fs", choices=ROOT_FS_TYPES, default="ext4")
    parser.add_argument("--efi-mib", type=int, default=policy.efi_mib)
    parser.add_argument("--swap-mib", type=int, default=policy.swap_mib)
    parser.add_argument("--min-root-mib", type=int, default=policy.min_root_mib)
    parser.add_argument("--template-dir", default=None)
    parser.add_argument("--mnt", default=None)
    parser.add_argument("--config-root", default=None)
    parser.add_argument("--settle-attempts", type=int, default=20)
    parser.add_argument("--settle-interval", type=float, default=1.0)
    parser.add_argument("--plan", action="store_true")
    parser.add_argument("--yes", dest="assume_yes", action="store_true")
    parser.add_argument("--skip-install", action="store_true")
    parser.add_argument("--json", dest="json", action="store_true", default=True)
    parser.add_argument("--no-json", dest="json", action="store_false")
    return parser


def _read_password_hash(args: argparse.Namespace) -> str:
    value = args.password_hash
    if args.password_hash_file:
        try:
            with open(args.password_hash_file, "r", encoding="utf-8") as f:
                value = f.read().strip()
        except OSError as exc:
            raise InvalidInput(f"cannot read password hash file: {exc}") from exc
    if not value:
        raise InvalidInput("a pre-hashed password is required (--password-hash or --password-hash-file)")
    if not value.startswith("$"):
        raise InvalidInput("password hash must be in crypt(3) format, e.g. the output of mkpasswd -m sha-512")
    return value


def _build_context(args: argparse.Namespace) -> TemplateContext:
    missing = [
        flag for flag, value in (
            ("--username", args.username),
            ("--git-username", args.git_username),
            ("--git-email", args.git_email),
            ("--hostname", args.hostname),
        ) if not value
    ]
    if missing:
        raise InvalidInput("missing required options: " + ", ".join(missing), missing=missing)
    return TemplateContext(
        username=args.username,
        password_hash=_read_password_hash(args),
        git_username=args.git_username,
        git_email=args.git_email,
        hostname=args.hostname,
        target_disk=args.device,
    )


def _raise_interrupted(signum, _frame):
    raise Interrupted(f"interrupted by signal {signal.Signals(signum).name}", signal=signum)


def _install_signal_handlers() -> dict:
    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _raise_interrupted)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def _plan_payload(plan, nodes) -> Dict[str, Any]:
    payload = plan.as_dict()
    payload["nodes"] = {"efi": nodes.efi, "root": nodes.root, "swap": nodes.swap}
    payload["sfdisk_script"] = partitioning.sfdisk_script(plan)
    return payload


def _main_impl(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    global JSON_OUTPUT_ENABLED, _CURRENT_DEVICE
    JSON_OUTPUT_ENABLED = bool(args.json)
    _CURRENT_DEVICE = args.device

    flags = Flags(plan=args.plan, assume_yes=args.assume_yes, skip_install=args.skip_install, json=args.json)
    policy = SizingPolicy(efi_mib=args.efi_mib, swap_mib=args.swap_mib, min_root_mib=args.min_root_mib)
    mnt = args.mnt or mount_root()
    mounts = Mounts(mnt=mnt, boot=boot_mount(mnt))
    cfg_root = args.config_root or config_root(mnt)
    tpl_dir = args.template_dir or template_dir()

    trace(
        "cli.args",
        device=args.device,
        plan=flags.plan,
        assume_yes=flags.assume_yes,
        skip_install=flags.skip_install,
        root_fs=args.root_fs,
        mnt=mnt,
        config_root=cfg_root,
        template_dir=tpl_dir,
    )

    if not is_block_device(args.device):
        _emit_result("FAIL_INVALID_DEVICE", {"why": f"{args.device} is not a block device"})

    try:
        disk = DiskSpec(path=args.device, total_bytes=disk_size_bytes(args.device))
        plan = partitioning.plan(disk, policy, root_fs=args.root_fs)
        nodes = partition_nodes(disk.path)

        if flags.plan:
            payload = _plan_payload(plan, nodes)
            payload["artifact"] = _write_json_artifact("plan", payload)
            _emit_result("PLAN_OK", payload)

        context = _build_context(args)
        trace("cli.context", **context.redacted())
    except ProvisionError as exc:
        _fail(exc)

    ok, reason = safety.guard_not_live_disk(disk.path)
    if not ok:
        _fail(RefuseSafeError(reason, device=disk.path))

    print(f"Target {disk.path}: EFI {plan.efi.size_mib} MiB, root {plan.root.size_mib} MiB ({plan.root_fs}), "
          f"swap {plan.swap.size_mib} MiB at the end of the disk.")
    if not flags.assume_yes and not confirm(f"FINAL WARNING: erase ALL data on {disk.path}?", default=False):
        _emit_result("ABORTED_BY_OPERATOR", {"why": "operator declined partitioning"})

    def _confirm_unmount(question: str) -> bool:
        return flags.assume_yes or confirm(question, default=False)

    executor: Optional[ProvisioningExecutor] = None
    previous = _install_signal_handlers()
    try:
        executor = ProvisioningExecutor(
            plan,
            mounts,
            nodes=nodes,
            confirm=_confirm_unmount,
            settle_attempts=args.settle_attempts,
            settle_interval=args.settle_interval,
        )
        try:
            executor.run()
        except ProvisionError as exc:
            _fail(exc, {"state": exc.details.get("state"), "rollback": executor.rollback_report})

        try:
            hardware.generate(mounts.mnt, cfg_root)
            module_list = modules.discover(tpl_dir)
            written = templating.render_all(tpl_dir, cfg_root, context, module_list)
            templating.copy_user_config(tpl_dir, cfg_root)
        except Interrupted:
            raise
        except ProvisionError as exc:
            _fail(exc, {"mnt": mounts.mnt, "config_root": cfg_root})

        summary = {
            "plan": plan.as_dict(),
            "modules": list(module_list.entries),
            "files": written,
            "config_root": cfg_root,
        }
        if flags.skip_install:
            _emit_result("INSTALL_SKIPPED", summary)

        try:
            outcome = installer.install(cfg_root, context.hostname, mnt=mounts.mnt)
        except Interrupted:
            raise
        except ProvisionError as exc:
            _fail(exc)
        summary["install"] = {"rc": outcome.rc, "duration_sec": round(outcome.duration, 1)}
        summary["next"] = "reboot"
        _emit_result("DONE_OK", summary)
    except Interrupted as exc:
        # failures after mounting keep the target for inspection; a signal does not
        report = None
        if executor is not None and executor.state is State.DONE:
            report = teardown(mounts, nodes.swap)
        _fail(exc, {"rollback": report})
    finally:
        _restore_signal_handlers(previous)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", {"why": str(exc), "error": type(exc).__name__})
    return 0


if __name__ == "__main__":
    sys.exit(main())
