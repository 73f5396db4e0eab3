"""
Execution contexts and context guards.

A *client* context acts on behalf of one end user with public credentials
(anon key, web API key + user ID token). A *server* context runs in a
trusted process with privileged credentials (service account,
service-role key).
"""
from __future__ import annotations

from enum import Enum

from app.exceptions import ContextViolationError


class ExecutionContext(str, Enum):
    """Side of the trust boundary an adapter was built for."""
    CLIENT = "client"
    SERVER = "server"


def require_context(
    actual: ExecutionContext,
    required: ExecutionContext,
    operation: str,
) -> None:
    """
    Fail fast when ``operation`` is invoked from the wrong side.

    Raises:
        ContextViolationError: If ``actual`` differs from ``required``
    """
    if actual is not required:
        hint = (
            "use the server adapter (get_server_auth / get_server_db)"
            if required is ExecutionContext.SERVER
            else "use the client adapter (get_auth / get_db)"
        )
        raise ContextViolationError(operation, actual.value, hint)
