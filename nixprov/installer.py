"""Run nixos-install against the generated flake."""
from __future__ import annotations

import itertools
import subprocess
import sys
import time
from typing import Callable, Optional, TextIO

from .errors import InstallFailed
from .executil import describe, info, resolve_log_path, trace
from .model import InstallOutcome

SPINNER_FRAMES = "|/-\\"
POLL_INTERVAL = 0.25


def install_command(config_root: str, hostname: str) -> list[str]:
    return ["nixos-install", "--no-root-passwd", "--flake", f"{config_root}#{hostname}"]


def _spin(proc, stream: Optional[TextIO], interval: float, sleep: Callable[[float], None]):
    frames = itertools.cycle(SPINNER_FRAMES)
    while proc.poll() is None:
        if stream is not None:
            stream.write(f"\r{next(frames)} installing...")
            stream.flush()
        sleep(interval)
    if stream is not None:
        stream.write("\r" + " " * 16 + "\r")
        stream.flush()


def install(
    config_root: str,
    hostname: str,
    mnt: str = "/mnt",
    popen=subprocess.Popen,
    stream: Optional[TextIO] = None,
    interval: float = POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> InstallOutcome:
    cmd = install_command(config_root, hostname)
    if stream is None and sys.stderr.isatty():
        stream = sys.stderr
    info("install.start", f"Running {describe(cmd)}; this takes a while.")
    started = time.monotonic()
    try:
        proc = popen(cmd)
    except OSError as exc:
        raise InstallFailed(f"cannot start nixos-install: {exc}", command=cmd) from exc
    try:
        _spin(proc, stream, interval, sleep)
    except BaseException:
        trace("install.interrupted", pid=getattr(proc, "pid", None))
        proc.terminate()
        raise
    finally:
        # the spinner is cosmetic; the status always comes from wait()
        rc = proc.wait()
    outcome = InstallOutcome(rc=rc, command=cmd, duration=time.monotonic() - started, log_path=resolve_log_path())
    trace("install.done", rc=rc, dur=round(outcome.duration, 3), cmd=cmd)
    if rc != 0:
        raise InstallFailed(
            f"nixos-install exited with status {rc}. Filesystems are still mounted at {mnt}; "
            f"inspect {config_root} and the log at {outcome.log_path or 'n/a'}, then rerun nixos-install.",
            rc=rc,
            command=cmd,
            config_root=config_root,
            mnt=mnt,
            log_path=outcome.log_path,
        )
    return outcome
