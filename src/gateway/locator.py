"""Find an already-running gateway process in the sandbox."""

import asyncio

from ..log_config import get_logger
from .config import GatewayConfig
from .types import ProcessStatus, Sandbox, SandboxProcess

log = get_logger("locator")


def is_gateway_command(command: str, config: GatewayConfig) -> bool:
    """Check whether a command line launches the gateway itself (not a CLI one-off)."""
    return any(signature in command for signature in config.process_signatures)


def is_live(process: SandboxProcess) -> bool:
    try:
        return ProcessStatus(process.status).is_live
    except ValueError:
        return False


async def find_existing_gateway_process(
    sandbox: Sandbox, config: GatewayConfig
) -> SandboxProcess | None:
    """
    Return the first live gateway process, or None.

    Processes that completed or failed are ignored even if their command
    matches. If the process list cannot be read, None is returned so the
    caller can start a fresh gateway instead of blocking.
    """
    try:
        processes = await asyncio.wait_for(sandbox.list_processes(), timeout=config.list_timeout)
    except Exception as e:
        log.warn("locator.list_error", exc=e)
        return None

    for process in processes:
        if is_gateway_command(process.command, config) and is_live(process):
            log.debug(
                "locator.found",
                process_id=process.id,
                command=process.command,
                status=process.status,
            )
            return process

    return None
