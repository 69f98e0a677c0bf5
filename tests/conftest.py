import ast
import sys
import threading
from collections import defaultdict
from pathlib import Path

import pytest
from subprocess import CalledProcessError

from nixprov import cli, devices, executil, hardware, mounts, partitioning
from nixprov.executil import Result

# --- line coverage summary for the nixprov package ---------------------------

_ROOT_DIR = Path(__file__).absolute().parent.parent
_PACKAGE_DIR = _ROOT_DIR / "nixprov"
_HIT: dict[Path, set[int]] = defaultdict(set)
_STATEMENTS: dict[Path, set[int]] = {}
_SAVED_TRACE = None


def _statement_lines(path: Path) -> set[int]:
    source = path.read_text(encoding="utf-8")
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError:
        return set()
    # only function bodies: the package is imported before tracing starts
    lines = set()
    for func in ast.walk(tree):
        if not isinstance(func, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        for stmt in func.body:
            lines.update(
                node.lineno for node in ast.walk(stmt)
                if isinstance(node, ast.stmt)
                and not isinstance(node, (ast.FunctionDef, ast.ClassDef))
                and not (isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant))
            )
    return lines


for _path in sorted(_PACKAGE_DIR.rglob("*.py")):
    _STATEMENTS[_path.absolute()] = _statement_lines(_path)


def _tracer(frame, event, arg):
    if event == "line":
        path = Path(frame.f_code.co_filename)
        if path in _STATEMENTS:
            _HIT[path].add(frame.f_lineno)
    return _tracer


def pytest_sessionstart(session):
    global _SAVED_TRACE
    _SAVED_TRACE = sys.gettrace()
    sys.settrace(_tracer)
    threading.settrace(_tracer)


def pytest_sessionfinish(session, exitstatus):
    sys.settrace(_SAVED_TRACE)
    threading.settrace(None)
    terminal = session.config.pluginmanager.get_plugin("terminalreporter")
    write = terminal.write_line if terminal else print
    write("")
    write(f"{'nixprov module':<40} {'Stmts':>6} {'Miss':>6} {'Cover':>7}")
    total = hit = 0
    for path, lines in sorted(_STATEMENTS.items()):
        if not lines:
            continue
        covered = len(_HIT.get(path, set()) & lines)
        total += len(lines)
        hit += covered
        name = str(path.relative_to(_ROOT_DIR))
        write(f"{name:<40} {len(lines):>6} {len(lines) - covered:>6} {covered / len(lines):>7.1%}")
    if total:
        write(f"{'TOTAL':<40} {total:>6} {total - hit:>6} {hit / total:>7.1%}")


# --- simulated host for executor / CLI tests ---------------------------------

GIB = 1024 ** 3


class FakeSystem:
    """Records commands and keeps just enough mount/swap/device state."""

    def __init__(self):
        self.commands: list[list[str]] = []
        self.inputs: dict[str, str] = {}
        self.mounts: dict[str, str] = {}
        self.swaps: set[str] = set()
        self.swap_labels: dict[str, str] = {}
        self.block_devices: set[str] = {"/dev/sda", "/dev/nvme0n1"}
        self.disk_bytes = 100 * GIB
        self.failures: list[tuple[str, ...]] = []
        self.nodes_appear = True
        self.silent_mounts: set[str] = set()
        self.live_root = "/dev/sdz2"

    def fail_on(self, *prefix: str):
        self.failures.append(tuple(prefix))

    def run(self, cmd, check=True, timeout=60.0, input=None, env=None):  # noqa: ARG002
        cmd = list(cmd)
        self.commands.append(cmd)
        if any(tuple(cmd[: len(p)]) == p for p in self.failures):
            if check:
                raise CalledProcessError(1, cmd, "", "injected failure")
            return Result(1, "", "injected failure", 0.0)
        if input is not None:
            self.inputs[cmd[0]] = input
        rc, out = self._apply(cmd)
        if check and rc != 0:
            raise CalledProcessError(rc, cmd, out, "")
        return Result(rc, out, "", 0.0)

    def _apply(self, cmd):
        name = cmd[0]
        if name == "sfdisk" and "--wipe" in cmd:
            if self.nodes_appear:
                self.block_devices.update(devices.partition_nodes(cmd[-1]).as_tuple())
            return 0, ""
        if name == "blockdev" and cmd[1] == "--getsize64":
            return 0, f"{self.disk_bytes}\n"
        if name == "mount":
            dev, target = cmd[-2], cmd[-1]
            if target not in self.silent_mounts:
                self.mounts[target] = dev
            return 0, ""
        if name == "umount":
            self.mounts.pop(cmd[-1], None)
            return 0, ""
        if name == "mountpoint":
            return (0 if cmd[-1] in self.mounts else 1), ""
        if name == "findmnt":
            target = cmd[-1]
            if target == "/":
                return 0, f"{self.live_root}\n"
            if target in self.mounts:
                return 0, f"{self.mounts[target]}\n"
            return 1, ""
        if name == "mkswap":
            self.swap_labels[cmd[cmd.index("-L") + 1]] = cmd[-1]
            return 0, ""
        if name == "swapon":
            if len(cmd) == 2:
                self.swaps.add(cmd[1])
                return 0, ""
            return 0, "\n".join(sorted(self.swaps))
        if name == "swapoff":
            if cmd[1] == "-a":
                self.swaps.clear()
            elif cmd[1] == "-L":
                self.swaps.discard(self.swap_labels.get(cmd[2], ""))
            else:
                self.swaps.discard(cmd[1])
            return 0, ""
        return 0, ""

    def names(self) -> list[str]:
        return [c[0] for c in self.commands]

    def destructive(self) -> list[list[str]]:
        prefixes = ("sfdisk", "mkfs.vfat", "mkfs.ext4", "mkfs.btrfs", "mkfs.xfs", "mkswap", "mount", "swapon")
        return [c for c in self.commands if c[0] in prefixes and "--dump" not in c]


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path_factory, monkeypatch):
    state = tmp_path_factory.mktemp("nixprov-state")
    monkeypatch.setattr(executil, "LOG_DIRS", [str(state / "logs")])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setenv("NIXPROV_BASE_PATH", str(state))
    return state


@pytest.fixture
def fake_system(monkeypatch):
    fake = FakeSystem()
    for module in (executil, devices, partitioning, mounts, hardware):
        monkeypatch.setattr(module, "run", fake.run)
    is_block = lambda path: path in fake.block_devices  # noqa: E731
    monkeypatch.setattr(devices, "is_block_device", is_block)
    monkeypatch.setattr(cli, "is_block_device", is_block)
    return fake
