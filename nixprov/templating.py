"""Render configuration templates into the target configuration root.

Pass 1 replaces the scalar ``__NAME__`` placeholders in a single regex scan.
The replacement is a function, so values are inserted verbatim: backslashes,
``&``, ``|``, ``/``, ``$`` and group references such as ``\\1`` have no
meaning, and text inserted by one placeholder is never scanned again.

Pass 2 swaps the one ``__NIXOS_MODULE_IMPORTS__`` token for the discovered
module block. Templates without the token are left as pass 1 produced them.
"""
from __future__ import annotations

import os
import re
import shutil
import tempfile
from typing import Mapping

from .errors import TemplateError
from .executil import info, trace, warn
from .model import ModuleList, TemplateContext
from .modules import MODULE_SUFFIX

MODULE_BLOCK_TOKEN = "__NIXOS_MODULE_IMPORTS__"
USER_CONFIG_DIR = "user_config"
_RESIDUAL = re.compile(r"__[A-Z][A-Z0-9_]*__")


def substitute(text: str, values: Mapping[str, str]) -> str:
    if not values:
        return text
    pattern = re.compile("|".join(re.escape(k) for k in sorted(values, key=len, reverse=True)))
    return pattern.sub(lambda m: values[m.group(0)], text)


def inject_block(text: str, block: str, token: str = MODULE_BLOCK_TOKEN) -> str:
    count = text.count(token)
    if count == 0:
        return text
    if count > 1:
        raise TemplateError(f"{token} appears {count} times; expected exactly once", token=token, count=count)
    head, tail = text.split(token, 1)
    return head + block + tail


def compose(text: str, context: TemplateContext, modules: ModuleList | None = None) -> str:
    out = substitute(text, context.placeholders())
    if modules is not None:
        out = inject_block(out, modules.render())
    leftover = sorted(set(_RESIDUAL.findall(out)) - {MODULE_BLOCK_TOKEN})
    if leftover:
        warn(
            "templating.residual_placeholders",
            "Unreplaced placeholders left in template: " + ", ".join(leftover),
            placeholders=leftover,
        )
    return out


def write_atomic(path: str, text: str, mode: int = 0o644):
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(prefix=".nixprov-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def render_file(src: str, dest: str, context: TemplateContext, modules: ModuleList | None = None):
    try:
        with open(src, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as exc:
        raise TemplateError(f"cannot read template {src}: {exc}", template=src) from exc
    out = compose(text, context, modules)
    try:
        write_atomic(dest, out)
    except OSError as exc:
        raise TemplateError(f"cannot write {dest}: {exc}", template=src, dest=dest) from exc
    trace("templating.rendered", template=src, dest=dest, context=context.redacted())


def template_names(template_dir: str) -> list[str]:
    try:
        names = [
            e.name for e in os.scandir(template_dir)
            if e.name.endswith(MODULE_SUFFIX) and e.is_file()
        ]
    except OSError as exc:
        raise TemplateError(f"cannot list templates in {template_dir}: {exc}", template_dir=template_dir) from exc
    return sorted(names)


def render_all(template_dir: str, config_root: str, context: TemplateContext, modules: ModuleList) -> list[str]:
    """Render every ``*.nix`` template into ``config_root``; returns written paths."""

    try:
        os.makedirs(config_root, exist_ok=True)
    except OSError as exc:
        raise TemplateError(f"cannot create {config_root}: {exc}", config_root=config_root) from exc
    written = []
    for name in template_names(template_dir):
        dest = os.path.join(config_root, name)
        render_file(os.path.join(template_dir, name), dest, context, modules)
        written.append(dest)
    if not written:
        raise TemplateError(f"no templates found in {template_dir}", template_dir=template_dir)
    info("templating.done", f"Generated {len(written)} configuration files in {config_root}", files=written)
    return written


def copy_user_config(template_dir: str, config_root: str) -> list[str]:
    """Copy optional user dotfiles next to the generated configuration.

    Missing sources only produce warnings.
    """
    src_dir = os.path.join(template_dir, USER_CONFIG_DIR)
    if not os.path.isdir(src_dir):
        warn("templating.user_config_missing", f"No {USER_CONFIG_DIR}/ in {template_dir}; skipping user files.")
        return []
    dest_dir = os.path.join(config_root, USER_CONFIG_DIR)
    copied = []
    try:
        os.makedirs(dest_dir, exist_ok=True)
    except OSError as exc:
        warn("templating.user_config_copy_failed", f"Cannot create {dest_dir}: {exc}", dest=dest_dir)
        return []
    for name in sorted(os.listdir(src_dir)):
        src = os.path.join(src_dir, name)
        if not os.path.isfile(src):
            continue
        try:
            shutil.copy2(src, os.path.join(dest_dir, name))
        except OSError as exc:
            warn("templating.user_config_copy_failed", f"Failed to copy {src}: {exc}", src=src)
            continue
        copied.append(os.path.join(dest_dir, name))
    trace("templating.user_config", copied=copied)
    return copied
