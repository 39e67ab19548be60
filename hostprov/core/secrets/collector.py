"""
Secret collector — gathers every value the playbook needs, once, up front.

Interactive runs prompt on the terminal (masked input for masked
specs). Non-interactive runs read ``HOSTPROV_SECRET_<NAME>`` from the
environment or a value supplied by the run configuration. Either way
every value passes its SecretSpec's validation before the run starts, and
nothing is ever written to disk or to a logger.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Callable, Mapping

import click
from pydantic import SecretStr

from hostprov.core.errors import ConfirmationDeclined, ValidationError
from hostprov.core.models.secret import SecretSpec, SecretStore, SecretValue, secret_env_name

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3


def check_value(spec: SecretSpec, value: str) -> str | None:
    """Return an error message when ``value`` is unacceptable, else None."""
    if len(value) < spec.min_length:
        if spec.min_length <= 1:
            return "a value is required"
        return f"must be at least {spec.min_length} characters"
    if spec.pattern and re.fullmatch(spec.pattern, value) is None:
        return f"must match {spec.pattern}"
    if spec.validator is not None:
        return spec.validator(value)
    return None


class SecretCollector:
    """Collects SecretValues for a list of SecretSpecs.

    Args:
        interactive: Prompt on the terminal. When False, values come
            from ``preset`` or the environment only.
        env: Environment mapping (defaults to ``os.environ``).
        preset: Values supplied by configuration (``--site-name``).
        attempts: Interactive prompts per spec before giving up.
        prompt: Injected for tests; defaults to ``click.prompt``.
    """

    def __init__(
        self,
        interactive: bool = True,
        env: Mapping[str, str] | None = None,
        preset: Mapping[str, str] | None = None,
        attempts: int = DEFAULT_ATTEMPTS,
        prompt: Callable[..., str] = click.prompt,
    ):
        self._interactive = interactive
        self._env = os.environ if env is None else env
        self._preset = dict(preset or {})
        self._attempts = max(attempts, 1)
        self._prompt = prompt

    def collect(self, spec: SecretSpec) -> SecretValue:
        """Obtain and validate one value.

        Raises:
            ValidationError: The value is missing or fails validation.
        """
        supplied = self._supplied(spec)
        if supplied is not None or not self._interactive:
            if supplied is None:
                if spec.default is None:
                    raise ValidationError(
                        spec.name,
                        f"no value supplied (set {secret_env_name(spec.name)})",
                    )
                supplied = spec.default
            error = check_value(spec, supplied)
            if error:
                raise ValidationError(spec.name, error)
            return self._value(spec, supplied)

        for attempt in range(1, self._attempts + 1):
            raw = self._prompt(
                spec.label,
                hide_input=spec.masked,
                default=spec.default,
                show_default=not spec.masked,
            )
            error = check_value(spec, raw)
            if error is None:
                return self._value(spec, raw)
            if attempt < self._attempts:
                click.secho(f"   ✗ {spec.label}: {error}", fg="red", err=True)
        raise ValidationError(spec.name, f"{error} (after {self._attempts} attempts)")

    def collect_all(self, specs: list[SecretSpec]) -> SecretStore:
        """Collect every spec, in declaration order."""
        store = SecretStore()
        for spec in specs:
            store.add(self.collect(spec))
        logger.info("Collected %d value(s): %s", len(store), ", ".join(store.names()))
        return store

    def _supplied(self, spec: SecretSpec) -> str | None:
        if spec.name in self._preset:
            return self._preset[spec.name]
        return self._env.get(secret_env_name(spec.name))

    @staticmethod
    def _value(spec: SecretSpec, raw: str) -> SecretValue:
        return SecretValue(name=spec.name, sensitive=spec.is_sensitive, value=SecretStr(raw))


def confirm_backup(
    message: str,
    *,
    skip: bool = False,
    interactive: bool = True,
    confirm: Callable[..., bool] = click.confirm,
) -> None:
    """Ask the operator to confirm before anything else happens.

    Raises:
        ConfirmationDeclined: The operator said no.
        ValidationError: Confirmation is required but nobody can answer.
    """
    if not message or skip:
        return
    if not interactive:
        raise ValidationError(
            "confirmation",
            "non-interactive runs need --skip-backup-confirmation",
        )
    if not confirm(message, default=False):
        raise ConfirmationDeclined("Confirmation declined; nothing was changed")
