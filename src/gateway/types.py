"""Type definitions for the gateway supervisor and sync engine."""

from enum import Enum
from typing import NamedTuple, Protocol

from pydantic import BaseModel, ConfigDict, field_validator


class ProcessStatus(str, Enum):
    """Lifecycle status of a process inside the sandbox."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_live(self) -> bool:
        return self in (ProcessStatus.STARTING, ProcessStatus.RUNNING)


class ProcessLogs(NamedTuple):
    """Captured output of a sandbox process."""

    stdout: str
    stderr: str


class SandboxProcess(Protocol):
    """A process handle returned by the sandbox."""

    id: str
    command: str
    status: str

    async def get_logs(self) -> ProcessLogs: ...

    async def wait_for_port(self, port: int, timeout: float) -> None: ...

    async def kill(self) -> None: ...


class Sandbox(Protocol):
    """Process control surface of the compute sandbox."""

    async def start_process(self, command: str) -> SandboxProcess: ...

    async def list_processes(self) -> list[SandboxProcess]: ...


class StoredObject(Protocol):
    """A single object fetched from the durable store."""

    key: str

    async def read(self) -> bytes: ...

    async def text(self) -> str: ...


class ObjectInfo(BaseModel):
    """Listing entry for one object in the durable store."""

    model_config = ConfigDict(frozen=True)

    key: str
    size: int | None = None


class ObjectStore(Protocol):
    """Key-addressed blob storage that outlives the sandbox."""

    async def put(self, key: str, data: bytes | str) -> None: ...

    async def get(self, key: str) -> StoredObject | None: ...

    async def list(self) -> list[ObjectInfo]: ...


class SyncOutcome(str, Enum):
    """Three-way result of a backup or restore."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class SyncResult(BaseModel):
    """Result of one backup or restore call. Never persisted."""

    model_config = ConfigDict(frozen=True)

    outcome: SyncOutcome
    last_sync: str | None = None
    error: str | None = None
    details: str | None = None
    files_transferred: int = 0
    files_failed: int = 0

    @property
    def success(self) -> bool:
        return self.outcome != SyncOutcome.FAILURE


class BackupRoot(BaseModel):
    """A sandbox directory mirrored into the store under a fixed key prefix.

    Both ``path`` and ``prefix`` are normalized to end with ``/`` so that
    ``/data/config/x.json`` maps to ``config/x.json`` and back.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    prefix: str

    @field_validator("path")
    @classmethod
    def normalize_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"Backup root must be an absolute path: {value}")
        return value if value.endswith("/") else f"{value}/"

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, value: str) -> str:
        value = value.lstrip("/")
        if not value:
            raise ValueError("Backup root prefix must not be empty")
        return value if value.endswith("/") else f"{value}/"

    def owns_path(self, file_path: str) -> bool:
        return file_path.startswith(self.path) and len(file_path) > len(self.path)

    def owns_key(self, key: str) -> bool:
        return key.startswith(self.prefix) and len(key) > len(self.prefix)

    def to_key(self, file_path: str) -> str:
        return self.prefix + file_path[len(self.path) :]

    def to_path(self, key: str) -> str:
        return self.path + key[len(self.prefix) :]
