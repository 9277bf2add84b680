#!/usr/bin/env python3
"""
Gateway supervisor - keeps exactly one gateway process alive in the sandbox.

``ensure()`` is idempotent:
1. Reuse a live gateway if the locator finds one (no restore, no spawn)
2. Otherwise restore durable state if a backup exists (best-effort)
3. Spawn the gateway with its startup command
4. Wait for the service port to accept connections
"""

import asyncio
import os
import time

from ..log_config import configure_logging, get_logger
from .config import GatewayConfig
from .errors import GatewayStartupError
from .local_sandbox import LocalSandbox
from .locator import find_existing_gateway_process
from .store import VolumeObjectStore
from .sync import SyncEngine
from .types import ObjectStore, Sandbox, SandboxProcess, SyncResult

LOG_TAIL_LINES = 50


class GatewaySupervisor:
    """
    Supervisor for the gateway process and its durable state.

    Manages:
    - Discovery of an already-running gateway
    - Restore-before-start from the durable store
    - Spawn and port readiness
    - Backup and restore on demand

    Concurrent ``ensure()`` calls on one supervisor are serialized. Callers
    sharing a sandbox across supervisors must hold their own lock.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        store: ObjectStore | None,
        config: GatewayConfig | None = None,
        sandbox_id: str = "unknown",
    ):
        self.sandbox = sandbox
        self.store = store
        self.config = config or GatewayConfig()
        self.sync = SyncEngine(sandbox, store, self.config)
        self.log = get_logger("supervisor", service="gateway", sandbox_id=sandbox_id)
        self._ensure_lock = asyncio.Lock()

    async def find_existing(self) -> SandboxProcess | None:
        return await find_existing_gateway_process(self.sandbox, self.config)

    async def ensure(self) -> SandboxProcess:
        """
        Return a live gateway process, starting one if needed.

        Raises:
            GatewayStartupError: If the gateway cannot be spawned or its port
                never becomes ready
        """
        async with self._ensure_lock:
            return await self._ensure()

    async def _ensure(self) -> SandboxProcess:
        start_time = time.time()

        existing = await self.find_existing()
        if existing is not None:
            self.log.info(
                "gateway.reuse",
                process_id=existing.id,
                status=existing.status,
            )
            return existing

        restored = await self._restore_before_start()

        self.log.info("gateway.spawn", command=self.config.start_command)
        try:
            process = await self.sandbox.start_process(self.config.start_command)
        except Exception as e:
            self.log.error("gateway.spawn_error", exc=e)
            raise GatewayStartupError(f"Failed to start gateway: {e}") from e

        await self._wait_for_ready(process)

        self.log.info(
            "gateway.startup",
            process_id=process.id,
            restored=restored,
            duration_ms=int((time.time() - start_time) * 1000),
            outcome="success",
        )
        return process

    async def _restore_before_start(self) -> bool | None:
        """Restore from the store if a backup exists. Never raises.

        Returns:
            None if restore was skipped, otherwise whether it succeeded
        """
        last_sync = await self.sync.get_last_sync()
        if not last_sync:
            self.log.info("gateway.restore_skip", reason="no_backup")
            return None

        self.log.info("gateway.restore_start", last_sync=last_sync)
        try:
            result = await self.sync.restore()
        except Exception as e:
            self.log.warn("gateway.restore_error", exc=e)
            return False

        if not result.success:
            self.log.warn(
                "gateway.restore_failed",
                error=result.error,
                details=result.details,
            )
            return False

        self.log.info("gateway.restore_complete", files_restored=result.files_transferred)
        return True

    async def _wait_for_ready(self, process: SandboxProcess) -> None:
        try:
            await process.wait_for_port(self.config.service_port, self.config.startup_timeout)
        except Exception as e:
            logs = await self._collect_logs(process)
            self.log.error(
                "gateway.ready_timeout",
                process_id=process.id,
                port=self.config.service_port,
                timeout_s=self.config.startup_timeout,
                output_tail=logs,
                exc=e,
            )
            raise GatewayStartupError(
                f"Gateway did not become ready on port {self.config.service_port}: {e}",
                logs=logs,
            ) from e

    async def _collect_logs(self, process: SandboxProcess) -> str:
        try:
            logs = await process.get_logs()
        except Exception as e:
            self.log.debug("gateway.logs_error", exc=e)
            return ""
        combined = "\n".join(part for part in (logs.stdout, logs.stderr) if part)
        return "\n".join(combined.splitlines()[-LOG_TAIL_LINES:])

    async def backup(self) -> SyncResult:
        return await self.sync.backup()

    async def restore(self) -> SyncResult:
        return await self.sync.restore()


async def main():
    """Entry point: ensure the gateway runs on this host, then stay attached to it."""
    configure_logging()
    config = GatewayConfig.from_env()

    volume_name = os.environ.get("GATEWAY_VOLUME")
    store = VolumeObjectStore.from_name(volume_name) if volume_name else None

    supervisor = GatewaySupervisor(
        LocalSandbox(service_signatures=config.process_signatures),
        store,
        config,
        sandbox_id=os.environ.get("SANDBOX_ID", "unknown"),
    )
    process = await supervisor.ensure()
    exit_code = await process.wait()
    supervisor.log.info("gateway.exit", process_id=process.id, exit_code=exit_code)


if __name__ == "__main__":
    asyncio.run(main())
