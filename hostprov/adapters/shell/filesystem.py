"""
Filesystem adapter — write files, edit them in place, fix ownership.

Provides a receipt-returning interface for the file operations a
provisioning run needs, so they can be logged and dry-run like any
other action.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)

_VALID_OPS = {"write", "replace", "mkdir", "chown", "chmod"}


def _parse_mode(mode: str | int | None) -> int | None:
    if mode is None:
        return None
    if isinstance(mode, int):
        return mode
    return int(str(mode), 8)


def _chown(path: Path, owner: str, recursive: bool = False) -> None:
    user, _, group = owner.partition(":")
    targets = [path]
    if recursive and path.is_dir():
        targets.extend(path.rglob("*"))
    for target in targets:
        shutil.chown(target, user=user or None, group=group or None)


def _chmod(path: Path, mode: int, recursive: bool = False) -> None:
    targets = [path]
    if recursive and path.is_dir():
        targets.extend(path.rglob("*"))
    for target in targets:
        if not target.is_symlink():
            target.chmod(mode)


def _atomic_write(path: Path, content: str, mode: int | None) -> None:
    """Write via temp file + rename so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


class FilesystemAdapter(Adapter):
    """File and directory operations with receipts.

    Action params:
        operation (str): One of 'write', 'replace', 'mkdir', 'chown', 'chmod'.
        path (str): Target path (absolute, or relative to cwd).
        content (str): Content for 'write'.
        pattern / replacement (str): Regex edit for 'replace'.
        mode (str): Octal mode, e.g. "0600".
        owner (str): "user" or "user:group".
        recursive (bool): Apply chown/chmod to the whole tree.
    """

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.params
        operation = params.get("operation", "write")
        if operation not in _VALID_OPS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_VALID_OPS))}"
        if not params.get("path"):
            return False, "Missing required param: 'path'"
        if operation == "write" and "content" not in params:
            return False, "Missing required param: 'content' for write operation"
        if operation == "replace" and "pattern" not in params:
            return False, "Missing required param: 'pattern' for replace operation"
        if operation == "chown" and not params.get("owner"):
            return False, "Missing required param: 'owner' for chown operation"
        if operation == "chmod" and not params.get("mode"):
            return False, "Missing required param: 'mode' for chmod operation"
        try:
            _parse_mode(params.get("mode"))
        except ValueError:
            return False, f"Invalid octal mode: {params.get('mode')}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        operation = params.get("operation", "write")
        target = Path(params["path"])
        mode = _parse_mode(params.get("mode"))
        owner = params.get("owner")
        recursive = bool(params.get("recursive", False))

        try:
            if operation == "write":
                _atomic_write(target, str(params["content"]), mode)
                output = f"Wrote {target}"
            elif operation == "replace":
                if not target.is_file():
                    return Receipt.failure(self.name, context.step_id, error=f"File not found: {target}")
                original = target.read_text(encoding="utf-8")
                updated, count = re.subn(
                    params["pattern"], str(params.get("replacement", "")), original, flags=re.MULTILINE
                )
                if count:
                    _atomic_write(target, updated, mode if mode is not None else target.stat().st_mode & 0o7777)
                output = f"Replaced {count} occurrence(s) in {target}"
            elif operation == "mkdir":
                target.mkdir(parents=True, exist_ok=True)
                if mode is not None:
                    target.chmod(mode)
                output = f"Created {target}"
            elif operation == "chmod":
                assert mode is not None
                _chmod(target, mode, recursive)
                output = f"Mode {oct(mode)} on {target}"
            else:
                output = ""

            if owner:
                _chown(target, owner, recursive)
                output += f" (owner {owner})"
        except (OSError, LookupError, re.error) as e:
            return Receipt.failure(self.name, context.step_id, error=f"{operation} {target}: {e}")

        logger.debug("file %s: %s", operation, target)
        return Receipt.success(self.name, context.step_id, output=output)
