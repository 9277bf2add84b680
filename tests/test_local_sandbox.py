"""Tests for the local-host sandbox adapter."""

import os
import socket

import pytest

from src.gateway.config import GatewayConfig
from src.gateway.local_sandbox import LocalSandbox
from src.gateway.store import MemoryObjectStore
from src.gateway.sync import SyncEngine, wait_for_process
from src.gateway.types import BackupRoot, SyncOutcome


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestLocalSandbox:
    @pytest.mark.asyncio
    async def test_runs_command_and_captures_output(self):
        sandbox = LocalSandbox()

        process = await sandbox.start_process("echo hello && echo oops >&2")
        await wait_for_process(process, timeout=10.0)
        logs = await process.get_logs()

        assert process.status == "completed"
        assert logs.stdout == "hello\n"
        assert logs.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failed(self):
        process = await LocalSandbox().start_process("exit 3")
        await wait_for_process(process, timeout=10.0)

        assert process.status == "failed"
        assert process.exit_code == 3

    @pytest.mark.asyncio
    async def test_wait_for_port_times_out(self):
        process = await LocalSandbox().start_process("sleep 5")
        try:
            with pytest.raises(TimeoutError):
                await process.wait_for_port(free_port(), timeout=0.3)
        finally:
            await process.kill()

    @pytest.mark.asyncio
    async def test_wait_for_port_fails_when_process_exits(self):
        process = await LocalSandbox().start_process("exit 1")
        await wait_for_process(process, timeout=10.0)

        with pytest.raises(RuntimeError, match="exited"):
            await process.wait_for_port(free_port(), timeout=5.0)


class TestProcessTable:
    @pytest.mark.asyncio
    async def test_finished_processes_are_dropped(self):
        sandbox = LocalSandbox()
        done = await sandbox.start_process("true")
        live = await sandbox.start_process("sleep 5")
        try:
            await wait_for_process(done, timeout=10.0)

            assert await sandbox.list_processes() == [live]
        finally:
            await live.kill()

        assert await sandbox.list_processes() == []

    @pytest.mark.asyncio
    async def test_many_short_commands_do_not_accumulate(self):
        sandbox = LocalSandbox()
        for _ in range(20):
            process = await sandbox.start_process("true")
            await wait_for_process(process, timeout=10.0)

        assert len(sandbox.processes) <= 1
        assert await sandbox.list_processes() == []

    @pytest.mark.asyncio
    async def test_service_output_keeps_only_the_tail(self):
        sandbox = LocalSandbox(service_signatures=("gateway-server serve",), service_log_lines=10)

        process = await sandbox.start_process("seq 1 100; : gateway-server serve")
        await wait_for_process(process, timeout=10.0)
        logs = await process.get_logs()

        assert logs.stdout.splitlines() == [str(n) for n in range(91, 101)]

    @pytest.mark.asyncio
    async def test_one_off_output_is_complete(self):
        sandbox = LocalSandbox(service_signatures=("gateway-server serve",), service_log_lines=10)

        process = await sandbox.start_process("seq 1 100")
        await wait_for_process(process, timeout=10.0)
        logs = await process.get_logs()

        assert len(logs.stdout.splitlines()) == 100


class TestSyncOnLocalHost:
    @pytest.mark.asyncio
    async def test_large_file_round_trip(self, tmp_path):
        source_dir = tmp_path / "src"
        (source_dir / "nested").mkdir(parents=True)
        large = os.urandom(200_000)
        (source_dir / "nested" / "large.bin").write_bytes(large)
        (source_dir / "small.json").write_bytes(b'{"a": 1}')
        (source_dir / "empty.txt").write_bytes(b"")

        def layout(path) -> GatewayConfig:
            return GatewayConfig(
                backup_roots=(BackupRoot(path=str(path), prefix="c/"),),
                critical_file=str(path / "small.json"),
                retry_delay=0.0,
            )

        store = MemoryObjectStore()
        backup = await SyncEngine(LocalSandbox(), store, layout(source_dir)).backup()
        assert backup.outcome == SyncOutcome.SUCCESS
        assert backup.files_transferred == 3

        destination_dir = tmp_path / "dst"
        restore = await SyncEngine(LocalSandbox(), store, layout(destination_dir)).restore()

        assert restore.outcome == SyncOutcome.SUCCESS
        assert (destination_dir / "nested" / "large.bin").read_bytes() == large
        assert (destination_dir / "small.json").read_bytes() == b'{"a": 1}'
        assert (destination_dir / "empty.txt").read_bytes() == b""
