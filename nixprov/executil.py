from __future__ import annotations

"""Subprocess wrapper and JSONL trace logging."""

import datetime as _dt
import json
import os
import shlex
import subprocess
import sys
import time
from typing import Sequence

from .paths import logs_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "nixprov.jsonl"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        logs_dir(),
        "/var/log/nixprov",
        "/tmp/nixprov-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, LOG_NAME)
            return LOG_PATH
        except OSError:
            continue
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("NIXPROV_LOG_LEVEL", "TRACE").upper()


def _write_jsonl(obj: dict):
    path = _ensure_logger()
    if not path:
        return
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, default=str) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    _write_jsonl(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def info(event: str, message: str, **fields):
    log("INFO", event, message=message, **fields)
    print(message, flush=True)


def warn(event: str, message: str, **fields):
    log("WARN", event, message=message, **fields)
    print(f"[WARN] {message}", file=sys.stderr, flush=True)


def run(
    cmd: Sequence[str],
    check: bool = True,
    timeout: float = 60.0,
    input: str | None = None,
    env: dict | None = None,
) -> Result:
    trace("exec.start", cmd=list(cmd), stdin=bool(input))
    started = time.monotonic()
    try:
        proc = subprocess.run(
            list(cmd),
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        # a missing binary behaves like a failed command for callers
        dur = time.monotonic() - started
        trace("exec.missing", cmd=list(cmd), error=str(exc))
        if check:
            raise subprocess.CalledProcessError(127, list(cmd), "", str(exc)) from exc
        return Result(127, "", str(exc), dur)
    dur = time.monotonic() - started
    trace(
        "exec.done",
        cmd=list(cmd),
        rc=proc.returncode,
        dur=round(dur, 3),
        out=(proc.stdout or "")[-2000:],
        err=(proc.stderr or "")[-2000:],
    )
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, list(cmd), proc.stdout, proc.stderr)
    return Result(proc.returncode, proc.stdout, proc.stderr, dur)


def describe(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(c) for c in cmd)


def failure_message(exc: subprocess.CalledProcessError) -> str:
    msg = (exc.stderr or exc.stdout or "").strip()
    return msg or f"exit status {exc.returncode}"


def udev_settle():
    run(["udevadm", "settle"], check=False)


def udev_trigger():
    run(["udevadm", "trigger", "--subsystem-match=block", "--action=change"], check=False)


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
    except OSError:
        pass
