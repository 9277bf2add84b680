"""
Sandbox adapter that runs commands on the local host.

Used when the supervisor itself runs inside the sandbox container: every
command is a shell string started with ``asyncio`` subprocesses, and port
readiness is polled over HTTP.

Finished processes are dropped from the process table. Long-running service
processes keep only the tail of their output; one-off commands keep all of
it, since the sync engine parses their stdout.
"""

import asyncio
import itertools
import time
from collections import deque
from collections.abc import Iterable, MutableSequence

import httpx

from ..log_config import get_logger
from .types import ProcessLogs, ProcessStatus

_ids = itertools.count(1)

DEFAULT_SERVICE_LOG_LINES = 500


class LocalProcess:
    """A shell command running on the local host."""

    PORT_POLL_INTERVAL = 0.5

    def __init__(
        self,
        command: str,
        process: asyncio.subprocess.Process,
        max_log_lines: int | None = None,
    ):
        self.id = f"proc-{next(_ids)}"
        self.command = command
        self.start_time = time.time()
        self.end_time: float | None = None
        self._process = process
        self._stdout: MutableSequence[str] = deque(maxlen=max_log_lines)
        self._stderr: MutableSequence[str] = deque(maxlen=max_log_lines)
        self._readers = [
            asyncio.create_task(self._drain(process.stdout, self._stdout)),
            asyncio.create_task(self._drain(process.stderr, self._stderr)),
        ]

    @property
    def status(self) -> str:
        returncode = self._process.returncode
        if returncode is None:
            return ProcessStatus.RUNNING.value
        if self.end_time is None:
            self.end_time = time.time()
        if returncode == 0:
            return ProcessStatus.COMPLETED.value
        return ProcessStatus.FAILED.value

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    @property
    def finished(self) -> bool:
        return self._process.returncode is not None

    async def _drain(
        self, stream: asyncio.StreamReader | None, sink: MutableSequence[str]
    ) -> None:
        if stream is None:
            return
        async for line in stream:
            sink.append(line.decode(errors="replace"))

    async def get_logs(self) -> ProcessLogs:
        if self._process.returncode is not None:
            await asyncio.gather(*self._readers, return_exceptions=True)
        return ProcessLogs(stdout="".join(self._stdout), stderr="".join(self._stderr))

    async def wait(self) -> int:
        return await self._process.wait()

    async def wait_for_port(self, port: int, timeout: float) -> None:
        """Poll ``http://localhost:<port>/`` until any HTTP response arrives.

        Raises:
            RuntimeError: If the process exits before the port is ready
            TimeoutError: If the port is not ready within ``timeout`` seconds
        """
        url = f"http://localhost:{port}/"
        start_time = time.time()

        async with httpx.AsyncClient() as client:
            while time.time() - start_time < timeout:
                if self._process.returncode is not None:
                    raise RuntimeError(
                        f"Process exited with code {self._process.returncode} "
                        f"before port {port} was ready"
                    )

                try:
                    await client.get(url, timeout=2.0)
                    return
                except httpx.TransportError:
                    pass

                await asyncio.sleep(self.PORT_POLL_INTERVAL)

        raise TimeoutError(f"Port {port} not ready after {timeout}s")

    async def kill(self) -> None:
        if self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except TimeoutError:
                self._process.kill()


class LocalSandbox:
    """
    Process control over the local host.

    Commands containing one of ``service_signatures`` are treated as
    long-running services and keep at most ``service_log_lines`` lines per
    stream.
    """

    def __init__(
        self,
        service_signatures: Iterable[str] = (),
        service_log_lines: int = DEFAULT_SERVICE_LOG_LINES,
    ):
        self.service_signatures = tuple(service_signatures)
        self.service_log_lines = service_log_lines
        self.processes: list[LocalProcess] = []
        self.log = get_logger("local_sandbox")

    def _is_service(self, command: str) -> bool:
        return any(signature in command for signature in self.service_signatures)

    def _prune(self) -> None:
        self.processes = [p for p in self.processes if not p.finished]

    async def start_process(self, command: str) -> LocalProcess:
        self._prune()
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        max_log_lines = self.service_log_lines if self._is_service(command) else None
        local = LocalProcess(command, process, max_log_lines=max_log_lines)
        self.processes.append(local)
        self.log.debug("process.start", process_id=local.id, command=command)
        return local

    async def list_processes(self) -> list[LocalProcess]:
        self._prune()
        return list(self.processes)
