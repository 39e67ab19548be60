"""
Database admin adapter — run an administrative SQL statement.

The statement goes through stdin and the password through the
``MYSQL_PWD`` environment variable, so neither ever appears in the
process table.
"""

from __future__ import annotations

import logging
import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.command import receipt_from_result
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)


class DatabaseAdapter(Adapter):
    """Execute admin statements with the MySQL/MariaDB client.

    Action params:
        statement (str): SQL to execute.
        user (str): Admin user (default 'root').
        password (str): Usually a ``{secret}`` placeholder.
        host (str): Server host (default: local socket).
        client (str): Client binary (default 'mysql').
    """

    @property
    def name(self) -> str:
        return "database"

    def is_available(self) -> bool:
        return shutil.which("mysql") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("statement"):
            return False, "Missing required param: 'statement'"
        client = context.params.get("client", "mysql")
        if shutil.which(client) is None:
            return False, f"Database client not found: {client}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        argv = [params.get("client", "mysql"), "--batch", "-u", str(params.get("user", "root"))]
        if params.get("host"):
            argv += ["-h", str(params["host"])]

        env = dict(context.env)
        if params.get("password"):
            env["MYSQL_PWD"] = str(params["password"])

        logger.debug("Executing admin statement for step %s", context.step_id)
        result = run_command(
            argv,
            env_overrides=env,
            stdin_data=str(params["statement"]),
            timeout=context.timeout,
            max_output_bytes=context.max_output_bytes,
            redact=context.redact,
        )
        return receipt_from_result(self.name, context.step_id, result, client=argv[0])
