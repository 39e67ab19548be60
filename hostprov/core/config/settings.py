"""
Run configuration — the options one invocation runs with.

Built by the CLI from flags and ``HOSTPROV_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from hostprov.adapters.base import DEFAULT_MAX_OUTPUT_BYTES
from hostprov.core.persistence.state_file import DEFAULT_STATE_DIR

AbortScope = Literal["run", "dependents"]


class RunConfig(BaseModel):
    """Options for one provisioning run.

    ``abort_scope`` controls what an aborting step takes down with it:
    ``run`` skips every remaining step, ``dependents`` only the steps
    that (transitively) depend on it.
    """

    site_name: str | None = None
    skip_backup_confirmation: bool = False
    non_interactive: bool = False
    dry_run: bool = False

    state_dir: Path = Path(DEFAULT_STATE_DIR)
    abort_scope: AbortScope = "run"
    max_output_bytes: int = Field(default=DEFAULT_MAX_OUTPUT_BYTES, gt=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    vars: dict[str, str] = Field(default_factory=dict)

    @field_validator("site_name")
    @classmethod
    def _strip_site(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def preset_values(self) -> dict[str, str]:
        """Values supplied by configuration instead of a prompt."""
        values = {}
        if self.site_name:
            values["site_name"] = self.site_name
        return values
