"""
State file persistence — atomic read/write for ProvisionState.

State is stored as JSON in ``<state_dir>/current.json``. Writes are
atomic (write to temp file, then rename) so a crash mid-write never
leaves a half file behind.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from hostprov.core.models.state import ProvisionState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def default_state_path(state_dir: Path) -> Path:
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> ProvisionState:
    """Load provisioning state. A missing or corrupt file yields a fresh state."""
    if not path.is_file():
        logger.info("No state file at %s, starting fresh", path)
        return ProvisionState()

    try:
        state = ProvisionState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        logger.warning("Cannot load state from %s: %s, starting fresh", path, e)
        return ProvisionState()

    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_state(state: ProvisionState, path: Path) -> None:
    """Save provisioning state (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)
