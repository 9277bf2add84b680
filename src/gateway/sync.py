"""
Sync engine - mirrors sandbox directories to the durable object store.

Files are moved through the sandbox's process API (``find``, ``base64``,
``test``), so the engine only needs ``start_process`` and process logs from
the sandbox, and ``get``/``put``/``list`` from the store.

Key mapping is a fixed prefix substitution per backup root:

    /data/config/x.json  <->  config/x.json
"""

import asyncio
import base64
import binascii
import posixpath
import shlex
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from functools import partial

from ..log_config import get_logger
from .config import GatewayConfig
from .errors import SanityCheckError, StoreNotConfiguredError
from .retry import run_with_retry
from .types import (
    BackupRoot,
    ObjectStore,
    ProcessLogs,
    ProcessStatus,
    Sandbox,
    SandboxProcess,
    SyncOutcome,
    SyncResult,
)

FILE_NOT_FOUND = "FILE_NOT_FOUND"
MAX_DETAIL_ERRORS = 3
# Raw bytes per write command. Base64 of one chunk must stay well under the
# kernel limit on a single argument (MAX_ARG_STRLEN, 128 KiB).
WRITE_CHUNK_BYTES = 48 * 1024


async def wait_for_process(
    process: SandboxProcess, timeout: float, poll_interval: float = 0.2
) -> None:
    """Poll until a short-lived process leaves starting/running.

    Raises:
        TimeoutError: If the process is still live after ``timeout`` seconds
    """
    deadline = time.monotonic() + timeout
    while process.status in (ProcessStatus.STARTING, ProcessStatus.RUNNING):
        if time.monotonic() >= deadline:
            raise TimeoutError(f"Process {process.id} did not finish within {timeout}s")
        await asyncio.sleep(poll_interval)


async def get_last_sync(store: ObjectStore | None, marker_key: str) -> str | None:
    """Read the freshness marker. Missing store, missing key and read errors all mean None."""
    if store is None:
        return None

    try:
        obj = await store.get(marker_key)
        if obj is None:
            return None
        return (await obj.text()).strip() or None
    except Exception as e:
        get_logger("sync").warn("sync.marker_read_error", marker_key=marker_key, exc=e)
        return None


@dataclass(frozen=True)
class TransferTally:
    """Accumulated per-item outcomes of one backup or restore."""

    succeeded: int = 0
    failed: int = 0
    errors: tuple[str, ...] = ()

    def ok(self) -> "TransferTally":
        return replace(self, succeeded=self.succeeded + 1)

    def fail(self, error: str) -> "TransferTally":
        return replace(self, failed=self.failed + 1, errors=(*self.errors, error))

    def note(self, error: str) -> "TransferTally":
        """Record an error that is not tied to a single item (e.g. a failed listing)."""
        return replace(self, errors=(*self.errors, error))

    @property
    def outcome(self) -> SyncOutcome:
        if self.succeeded and self.errors:
            return SyncOutcome.PARTIAL
        if self.errors:
            return SyncOutcome.FAILURE
        return SyncOutcome.SUCCESS

    @property
    def details(self) -> str | None:
        if not self.errors:
            return None
        shown = "; ".join(self.errors[:MAX_DETAIL_ERRORS])
        return f"{len(self.errors)} errors: {shown}"


class SyncEngine:
    """
    Backup and restore of the configured roots against the durable store.

    Every public call returns a ``SyncResult``; only programming errors
    escape. Calls on one engine are serialized by an instance lock.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        store: ObjectStore | None,
        config: GatewayConfig | None = None,
    ):
        self.sandbox = sandbox
        self.store = store
        self.config = config or GatewayConfig()
        self.log = get_logger("sync", service="gateway")
        self._lock = asyncio.Lock()

    # Key mapping

    def is_excluded(self, path_or_key: str) -> bool:
        return any(path_or_key.endswith(suffix) for suffix in self.config.exclude_suffixes)

    def key_for_path(self, file_path: str) -> str | None:
        """Map a sandbox file path to its object key, or None if no root owns it."""
        for root in self.config.backup_roots:
            if root.owns_path(file_path):
                return root.to_key(file_path)
        return None

    def path_for_key(self, key: str) -> str | None:
        """Map an object key back to its sandbox path, or None for unknown prefixes."""
        if key == self.config.marker_key:
            return None
        for root in self.config.backup_roots:
            if root.owns_key(key):
                return root.to_path(key)
        return None

    async def get_last_sync(self) -> str | None:
        return await get_last_sync(self.store, self.config.marker_key)

    # Sandbox I/O

    async def _retry(self, operation):
        return await run_with_retry(
            operation,
            attempts=self.config.retry_attempts,
            delay=self.config.retry_delay,
        )

    async def _run(self, command: str, timeout: float) -> tuple[SandboxProcess, ProcessLogs]:
        process = await self.sandbox.start_process(command)
        try:
            await wait_for_process(process, timeout)
        except TimeoutError:
            self.log.warn("sync.command_timeout", process_id=process.id, timeout_s=timeout)
            await process.kill()
            raise
        return process, await process.get_logs()

    async def _list_files(self, root: BackupRoot) -> list[str]:
        _process, logs = await self._run(
            f"find {shlex.quote(root.path)} -type f 2>/dev/null | sort",
            self.config.listing_timeout,
        )
        return [line for line in (logs.stdout or "").strip().splitlines() if line]

    async def _read_file(self, file_path: str) -> bytes:
        quoted = shlex.quote(file_path)
        _process, logs = await self._run(
            f"if [ -f {quoted} ]; then base64 {quoted}; else echo {FILE_NOT_FOUND}; fi",
            self.config.read_timeout,
        )
        output = (logs.stdout or "").strip()
        if output == FILE_NOT_FOUND:
            raise FileNotFoundError("File not found")
        try:
            return base64.b64decode(output)
        except binascii.Error as e:
            raise OSError(f"Corrupt read: {e}") from e

    async def _write_file(self, file_path: str, data: bytes) -> None:
        parent = posixpath.dirname(file_path)
        await self._run(f"mkdir -p {shlex.quote(parent)}", self.config.read_timeout)

        # First chunk truncates, the rest append. An empty file is one empty chunk.
        destination = shlex.quote(file_path)
        for offset in range(0, max(len(data), 1), WRITE_CHUNK_BYTES):
            chunk = data[offset : offset + WRITE_CHUNK_BYTES]
            encoded = base64.b64encode(chunk).decode("ascii")
            redirect = ">" if offset == 0 else ">>"
            process, logs = await self._run(
                f"printf '%s' {shlex.quote(encoded)} | base64 -d {redirect} {destination}",
                self.config.read_timeout,
            )
            if process.status == ProcessStatus.FAILED:
                stderr = (logs.stderr or "").strip() or "unknown error"
                raise OSError(f"Write failed: {stderr}")

    async def _check_critical_file(self) -> None:
        quoted = shlex.quote(self.config.critical_file)
        _process, logs = await self._retry(
            partial(self._run, f'test -f {quoted} && echo "ok"', self.config.check_timeout)
        )
        if "ok" not in (logs.stdout or ""):
            name = posixpath.basename(self.config.critical_file)
            raise SanityCheckError(f"source missing {name}")

    # Backup

    async def backup(self) -> SyncResult:
        """Copy every non-excluded file under the backup roots into the store."""
        async with self._lock:
            return await self._backup()

    async def _backup(self) -> SyncResult:
        start_time = time.time()

        if self.store is None:
            error = str(StoreNotConfiguredError())
            self.log.warn("sync.backup_skip", reason="store_not_configured")
            return SyncResult(outcome=SyncOutcome.FAILURE, error=error)

        # First-ever backup has nothing to protect, so the check only runs
        # once a marker exists.
        existing = await self.get_last_sync()
        if existing:
            try:
                await self._check_critical_file()
            except SanityCheckError as e:
                self.log.error("sync.backup_aborted", reason="sanity_check", detail=str(e))
                return SyncResult(
                    outcome=SyncOutcome.FAILURE,
                    error=f"Sync aborted: {e}",
                    details="The local config directory is missing critical files.",
                )
            except Exception as e:
                self.log.warn("sync.sanity_check_error", exc=e)

        tally = TransferTally()
        for root in self.config.backup_roots:
            try:
                files = await self._retry(partial(self._list_files, root))
            except Exception as e:
                self.log.warn("sync.list_error", root=root.path, exc=e)
                tally = tally.note(f"{root.path}: listing failed - {e}")
                continue

            for file_path in files:
                key = self.key_for_path(file_path)
                if key is None or self.is_excluded(file_path):
                    continue

                try:
                    data = await self._retry(partial(self._read_file, file_path))
                except Exception as e:
                    tally = tally.fail(f"{file_path}: {e}")
                    continue

                try:
                    await self.store.put(key, data)
                    tally = tally.ok()
                except Exception as e:
                    tally = tally.fail(f"{file_path}: Upload failed - {e}")

        outcome = tally.outcome
        timestamp = None
        if outcome != SyncOutcome.FAILURE:
            timestamp = datetime.now(UTC).isoformat()
            try:
                await self.store.put(self.config.marker_key, timestamp)
            except Exception as e:
                self.log.warn("sync.marker_write_error", exc=e)

        self.log.info(
            "sync.backup",
            outcome=outcome.value,
            files_transferred=tally.succeeded,
            files_failed=tally.failed,
            error_count=len(tally.errors),
            duration_ms=int((time.time() - start_time) * 1000),
        )

        return SyncResult(
            outcome=outcome,
            last_sync=timestamp,
            error="Sync failed" if outcome == SyncOutcome.FAILURE else None,
            details=tally.details,
            files_transferred=tally.succeeded,
            files_failed=tally.failed,
        )

    # Restore

    async def restore(self) -> SyncResult:
        """Write every mapped object in the store back to its sandbox path."""
        async with self._lock:
            return await self._restore()

    async def _restore(self) -> SyncResult:
        start_time = time.time()

        if self.store is None:
            self.log.warn("sync.restore_skip", reason="store_not_configured")
            return SyncResult(outcome=SyncOutcome.FAILURE, error=str(StoreNotConfiguredError()))

        try:
            listing = await self.store.list()
        except Exception as e:
            self.log.error("sync.restore_list_error", exc=e)
            return SyncResult(outcome=SyncOutcome.FAILURE, error="Restore failed", details=str(e))

        tally = TransferTally()
        skipped = 0
        for info in listing:
            destination = self.path_for_key(info.key)
            if destination is None or self.is_excluded(info.key):
                if info.key != self.config.marker_key:
                    skipped += 1
                continue

            try:
                obj = await self.store.get(info.key)
                if obj is None:
                    tally = tally.fail(f"{info.key}: object disappeared")
                    continue
                data = await obj.read()
                await self._retry(partial(self._write_file, destination, data))
                tally = tally.ok()
            except Exception as e:
                tally = tally.fail(f"{info.key}: {e}")

        outcome = tally.outcome if tally.succeeded else SyncOutcome.FAILURE
        error = None
        if outcome == SyncOutcome.FAILURE:
            error = "Restore failed" if tally.errors else "No objects restored"

        self.log.info(
            "sync.restore",
            outcome=outcome.value,
            files_transferred=tally.succeeded,
            files_failed=tally.failed,
            skipped=skipped,
            duration_ms=int((time.time() - start_time) * 1000),
        )

        return SyncResult(
            outcome=outcome,
            last_sync=await self.get_last_sync(),
            error=error,
            details=tally.details,
            files_transferred=tally.succeeded,
            files_failed=tally.failed,
        )
