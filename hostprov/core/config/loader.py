"""
Playbook loader — reads provision.yml into a validated Playbook.

Reads YAML, validates against the Pydantic models, and returns a typed
Playbook. Python-callable actions and probes are referenced from YAML
as ``func: "package.module:function"`` and imported here.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from hostprov.core.errors import ConfigError
from hostprov.core.models.playbook import Playbook

logger = logging.getLogger(__name__)

PLAYBOOK_FILE = "provision.yml"


def find_playbook(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from the given directory, walking up.

    Returns:
        Path to provision.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PLAYBOOK_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def resolve_callable(ref: str) -> Any:
    """Import ``"package.module:attr"``."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Invalid callable reference '{ref}' (expected 'module:function')")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import '{module_name}' for '{ref}': {e}") from e
    target = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ConfigError(f"'{ref}' not found")
    if not callable(target):
        raise ConfigError(f"'{ref}' is not callable")
    return target


def _resolve_funcs(node: Any) -> Any:
    """Replace every ``func: "mod:attr"`` string with the imported object."""
    if isinstance(node, dict):
        out = {k: _resolve_funcs(v) for k, v in node.items()}
        if isinstance(out.get("func"), str):
            out["func"] = resolve_callable(out["func"])
        return out
    if isinstance(node, list):
        return [_resolve_funcs(item) for item in node]
    return node


def parse_playbook(data: Any, source: str = "<playbook>") -> Playbook:
    """Validate already-parsed playbook data."""
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # The YAML may wrap everything under a "playbook" key or be flat
    body = data.get("playbook", data)
    if not isinstance(body, dict):
        raise ConfigError(f"'playbook' in {source} must be a mapping")
    body = _resolve_funcs(body)

    try:
        return Playbook.model_validate(body)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid playbook {source}: {e}") from e


def load_playbook(path: Path | None = None) -> Playbook:
    """Load and validate a playbook.

    Args:
        path: Explicit path. If None, searches upward for provision.yml.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_playbook()

    if path is None:
        raise ConfigError(f"No {PLAYBOOK_FILE} found. Pass a playbook path explicitly.")

    if not path.is_file():
        raise ConfigError(f"Playbook not found: {path}")

    logger.debug("Loading playbook from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    playbook = parse_playbook(data, str(path))
    logger.info("Loaded playbook '%s' with %d steps", playbook.name, len(playbook.steps))
    return playbook
