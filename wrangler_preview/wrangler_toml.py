"""
wrangler.toml patching.

The file is edited as text, line by line, so comments, ordering and formatting of
everything except the one ``name = "..."`` binding survive untouched. Two entry
points exist:

- ``update_worker_name()`` (strict): the ``[env.<environment>]`` section must
  already exist. A ``<path>.bak`` copy is written first and copied back if the
  patch fails. The backup stays on disk after success; ``remove_backup()`` drops it.
- ``ensure_worker_name()`` (auto-create): appends the section at end of file when
  it is missing.

Both are idempotent: patching twice with the same arguments gives the same file as
patching once.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .errors import SectionNotFound, WranglerFileNotFound

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

NAME_BINDING = re.compile(r"^name\s*=")


def _section_header(environment: str) -> str:
    return f"[env.{environment}]"


def _binding(worker_name: str) -> str:
    return f'name = "{worker_name}"'


def _toml_string(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value, ensure_ascii=False)


def _line_end(line: str) -> str:
    return "\r" if line.endswith("\r") else ""


def _require_file(path: Path) -> None:
    if not path.is_file():
        raise WranglerFileNotFound(f"wrangler.toml not found at {path}")


def patch_worker_name(
    content: str,
    environment: str,
    worker_name: str,
    *,
    create_section: bool = False,
) -> str:
    """
    Return ``content`` with the worker name of ``[env.<environment>]`` set.

    The section runs from its header line up to the next line starting with
    ``[``. An existing ``name = ...`` line inside it is replaced in place,
    otherwise the binding is inserted right after the header.

    Raises:
        SectionNotFound: if the section is missing and ``create_section`` is False.
    """
    header = _section_header(environment)
    binding = _binding(worker_name)
    lines = content.split("\n")

    env_index = next((i for i, line in enumerate(lines) if line.strip() == header), None)

    if env_index is None:
        if not create_section:
            raise SectionNotFound(
                f"{header} section not found in wrangler.toml. "
                "Please add it to your wrangler.toml file."
            )
        newline = "\r\n" if "\r\n" in content else "\n"
        text = content
        if text and not text.endswith("\n"):
            text += newline
        if text:
            text += newline
        return f"{text}{header}{newline}{binding}{newline}"

    next_section = len(lines)
    for i in range(env_index + 1, len(lines)):
        if lines[i].strip().startswith("["):
            next_section = i
            break

    for i in range(env_index + 1, next_section):
        if NAME_BINDING.match(lines[i].strip()):
            # keep the line's own CRLF ending
            lines[i] = binding + _line_end(lines[i])
            logger.debug("replaced name binding in %s (line %d)", header, i + 1)
            break
    else:
        lines.insert(env_index + 1, binding + _line_end(lines[env_index]))
        logger.debug("inserted name binding after %s", header)

    return "\n".join(lines)


def _atomic_write(path: Path, content: str) -> None:
    """
    Write ``content`` to ``path`` through a temp file in the same directory,
    keeping the original file mode.
    """
    st = path.stat()
    with tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        dir=str(path.parent),
        encoding="utf-8",
        newline="",
    ) as tf:
        tf.write(content)
        tmp_name = tf.name

    os.chmod(tmp_name, st.st_mode)
    os.replace(tmp_name, path)


def _read(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as fh:
        return fh.read()


def update_worker_name(path: PathLike, environment: str, worker_name: str) -> Path:
    """
    Strict patch with backup and restore.

    Copies the file to ``<path>.bak``, patches it, and copies the backup back over
    the file if anything fails before the write completes.

    Returns:
        The backup path, left on disk for the caller.

    Raises:
        WranglerFileNotFound: if ``path`` does not exist.
        SectionNotFound: if ``[env.<environment>]`` is missing.
    """
    toml_path = Path(path)
    _require_file(toml_path)

    backup_path = toml_path.with_name(toml_path.name + ".bak")
    shutil.copy2(toml_path, backup_path)
    logger.info("Created backup: %s", backup_path)

    try:
        original = _read(toml_path)
        patched = patch_worker_name(original, environment, worker_name)
        _atomic_write(toml_path, patched)
    except Exception:
        shutil.copy2(backup_path, toml_path)
        logger.error("Failed to update %s, restored from backup", toml_path)
        raise

    logger.info("Set worker name %r for [env.%s] in %s", worker_name, environment, toml_path)
    logger.debug("Updated %s:\n%s", toml_path, patched)
    return backup_path


def ensure_worker_name(path: PathLike, environment: str, worker_name: str) -> None:
    """Auto-create patch: like ``update_worker_name`` but appends a missing section."""
    toml_path = Path(path)
    _require_file(toml_path)

    original = _read(toml_path)
    patched = patch_worker_name(original, environment, worker_name, create_section=True)
    if patched != original:
        _atomic_write(toml_path, patched)
        logger.info("Set worker name %r for [env.%s] in %s", worker_name, environment, toml_path)
    else:
        logger.info("Worker name for [env.%s] already up to date", environment)


def remove_backup(backup_path: PathLike) -> None:
    p = Path(backup_path)
    if p.exists():
        p.unlink()
        logger.debug("Removed backup %s", p)


def create_backup(path: PathLike) -> Path:
    """Copy ``path`` to ``<path>.backup.<epoch-ms>`` and return the copy."""
    toml_path = Path(path)
    _require_file(toml_path)

    backup_path = toml_path.with_name(f"{toml_path.name}.backup.{int(time.time() * 1000)}")
    shutil.copy2(toml_path, backup_path)
    logger.info("Created backup: %s", backup_path)
    return backup_path


@dataclass(frozen=True)
class BackupInfo:
    original_path: Path
    backup_path: Path
    was_modified: bool


def backup_and_patch(path: PathLike, environment: str, worker_name: str) -> BackupInfo:
    """
    Back up to ``<path>.bak-<epoch-ms>`` and apply the auto-create patch.

    The deploy flow restores the original with ``restore_backup()`` once
    ``wrangler`` has finished, whatever the outcome.
    """
    original_path = Path(path).resolve()
    _require_file(original_path)
    backup_path = original_path.with_name(f"{original_path.name}.bak-{int(time.time() * 1000)}")

    logger.info("Backing up %s to %s", original_path, backup_path)
    shutil.copy2(original_path, backup_path)

    try:
        ensure_worker_name(original_path, environment, worker_name)
    except Exception:
        shutil.copy2(backup_path, original_path)
        backup_path.unlink()
        raise

    return BackupInfo(original_path=original_path, backup_path=backup_path, was_modified=True)


def restore_backup(info: BackupInfo) -> None:
    """Copy the backup over the original and delete it. Failures are only logged."""
    if not info.was_modified:
        return
    try:
        logger.info("Restoring %s from backup", info.original_path)
        shutil.copy2(info.backup_path, info.original_path)
        info.backup_path.unlink()
    except OSError as e:
        logger.warning("Failed to restore %s: %s", info.original_path, e)
        return
    logger.info("Restored %s", info.original_path)


def update_env_vars(path: PathLike, environment: str, variables: Dict[str, str]) -> None:
    """Append a ``[env.<environment>.vars]`` table with ``variables``."""
    toml_path = Path(path)
    _require_file(toml_path)

    body = "\n".join(f"{key} = {_toml_string(value)}" for key, value in variables.items())
    content = _read(toml_path) + f"\n[env.{environment}.vars]\n{body}\n"
    _atomic_write(toml_path, content)
    logger.info("Added %d vars to [env.%s.vars]", len(variables), environment)


def update_routes(path: PathLike, environment: str, routes: Sequence[str]) -> None:
    """Append one ``[[env.<environment>.routes]]`` entry per route pattern."""
    toml_path = Path(path)
    _require_file(toml_path)

    content = _read(toml_path)
    for route in routes:
        content += f"\n[[env.{environment}.routes]]\npattern = {_toml_string(route)}\n"
    _atomic_write(toml_path, content)
    logger.info("Added %d routes to [env.%s]", len(routes), environment)


@dataclass(frozen=True)
class SetupOptions:
    wrangler_toml_path: Path
    environment_name: str
    worker_name: str
    create_backup: bool = True
    update_vars: Dict[str, str] = field(default_factory=dict)
    update_routes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SetupResult:
    updated: bool
    backup_path: Optional[Path] = None


def setup_preview_environment(options: SetupOptions) -> SetupResult:
    backup_path = create_backup(options.wrangler_toml_path) if options.create_backup else None

    ensure_worker_name(options.wrangler_toml_path, options.environment_name, options.worker_name)

    if options.update_vars:
        update_env_vars(options.wrangler_toml_path, options.environment_name, options.update_vars)
    if options.update_routes:
        update_routes(options.wrangler_toml_path, options.environment_name, options.update_routes)

    return SetupResult(updated=True, backup_path=backup_path)
