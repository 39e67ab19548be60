"""
Preflight — checks that must pass before anything touches the host.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from hostprov.core.errors import ConfigError, PrivilegeError
from hostprov.core.models.playbook import Playbook
from hostprov.core.persistence.run_log import RUNS_DIR

logger = logging.getLogger(__name__)


def is_root() -> bool:
    return os.geteuid() == 0


def check_privilege(playbook: Playbook, dry_run: bool = False) -> None:
    """Refuse to start a run that needs root without it.

    Dry runs only warn: they change nothing.

    Raises:
        PrivilegeError: The playbook needs root and we are not root.
    """
    if not playbook.needs_privilege or is_root():
        return
    if dry_run:
        logger.warning("Not running as root; a real run of '%s' would refuse to start", playbook.name)
        return
    raise PrivilegeError(
        f"Playbook '{playbook.name}' must run as root (try: sudo hostprov run ...)"
    )


def check_state_dir(state_dir: Path) -> Path:
    """Make sure run logs can be written under ``state_dir``.

    Creates ``<state_dir>/runs`` when missing and returns it.

    Raises:
        ConfigError: The directory cannot be created or written.
    """
    runs_dir = state_dir / RUNS_DIR
    try:
        runs_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"State directory {state_dir} is not usable: {e.strerror or e}") from e
    if not os.access(runs_dir, os.W_OK | os.X_OK):
        raise ConfigError(f"State directory {runs_dir} is not writable")
    return runs_dir
