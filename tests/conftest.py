"""Shared fakes for gateway tests."""

import base64
import itertools
import shlex
from unittest.mock import AsyncMock

import pytest

from src.gateway.config import GatewayConfig
from src.gateway.store import MemoryObjectStore
from src.gateway.types import ProcessLogs


class FakeProcess:
    """Process handle with settable status and logs."""

    _ids = itertools.count(1)

    def __init__(
        self,
        command: str = "/usr/local/bin/start-gateway.sh",
        status: str = "running",
        id: str | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.id = id or f"proc-{next(self._ids)}"
        self.command = command
        self.status = status
        self.stdout = stdout
        self.stderr = stderr
        self.wait_for_port = AsyncMock(return_value=None)
        self.kill = AsyncMock(return_value=None)

    async def get_logs(self) -> ProcessLogs:
        return ProcessLogs(stdout=self.stdout, stderr=self.stderr)


class FakeSandbox:
    """
    Sandbox with an in-memory filesystem.

    Understands the commands the sync engine issues (find, base64 read,
    test -f, mkdir -p, printf | base64 -d with > or >>). Anything else is
    treated as a long-running service and left in "running" state.
    """

    def __init__(self, files: dict[str, bytes] | None = None):
        self.files: dict[str, bytes] = dict(files or {})
        self.dirs: set[str] = set()
        self.processes: list[FakeProcess] = []
        self.commands: list[str] = []
        # substring -> exceptions raised (in order) by start_process
        self.start_failures: dict[str, list[Exception]] = {}
        # substring -> status given to matching one-off commands
        self.forced_status: dict[str, str] = {}
        self.list_error: Exception | None = None

    def fail_on(self, substring: str, *errors: Exception) -> None:
        self.start_failures.setdefault(substring, []).extend(errors)

    async def list_processes(self) -> list[FakeProcess]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.processes)

    async def start_process(self, command: str) -> FakeProcess:
        self.commands.append(command)
        for substring, errors in self.start_failures.items():
            if substring in command and errors:
                raise errors.pop(0)

        process = self._execute(command)
        for substring, status in self.forced_status.items():
            if substring in command:
                process.status = status
        self.processes.append(process)
        return process

    def _execute(self, command: str) -> FakeProcess:
        tokens = shlex.split(command)
        head = tokens[0]

        if head == "find":
            root = tokens[1]
            listed = sorted(path for path in self.files if path.startswith(root))
            return FakeProcess(command, "completed", stdout="\n".join(listed) + "\n")

        if head == "if":
            path = tokens[3]
            if path in self.files:
                encoded = base64.b64encode(self.files[path]).decode()
                return FakeProcess(command, "completed", stdout=encoded + "\n")
            return FakeProcess(command, "completed", stdout="FILE_NOT_FOUND\n")

        if head == "test":
            path = tokens[2]
            stdout = "ok\n" if path in self.files else ""
            return FakeProcess(command, "completed" if stdout else "failed", stdout=stdout)

        if head == "mkdir":
            self.dirs.add(tokens[2])
            return FakeProcess(command, "completed")

        if head == "printf":
            encoded, redirect, destination = tokens[2], tokens[-2], tokens[-1]
            data = base64.b64decode(encoded)
            if redirect == ">>":
                data = self.files.get(destination, b"") + data
            self.files[destination] = data
            return FakeProcess(command, "completed")

        return FakeProcess(command, "running")


@pytest.fixture
def config() -> GatewayConfig:
    """Default layout with retries that never sleep."""
    return GatewayConfig(retry_delay=0.0)


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()
