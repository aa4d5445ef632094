"""Unit tests for shipwright.client.process."""

import asyncio
import signal
from unittest.mock import AsyncMock, patch

import pytest

from shipwright.client.process import probe_version, run_cmd, stop_instances, terminate


class TestRunCmd:
    """Tests for run_cmd()."""

    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        assert await run_cmd("echo", "hello") == "hello\n"

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        assert await run_cmd("false") is None

    @pytest.mark.asyncio
    async def test_missing_executable_returns_none(self):
        assert await run_cmd("definitely-not-a-real-tool-xyz") is None

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        assert await run_cmd("sleep", "5", timeout=0.2) is None

    @pytest.mark.asyncio
    async def test_cwd(self, tmp_path):
        assert (await run_cmd("pwd", cwd=tmp_path)).strip() == str(tmp_path.resolve())


class TestProbeVersion:
    """Tests for probe_version()."""

    @pytest.mark.asyncio
    async def test_plain_version(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "1.2.0")
        assert await probe_version(binary) == "1.2.0"

    @pytest.mark.asyncio
    async def test_full_version_reduced_to_semver(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "1.2.0-abc1234-2026-10-16")
        assert await probe_version(binary) == "1.2.0"

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        assert await probe_version(tmp_path / "fleet-agent") is None

    @pytest.mark.asyncio
    async def test_crashing_binary(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "1.2.0", exit_code=3)
        assert await probe_version(binary) is None

    @pytest.mark.asyncio
    async def test_unparseable_output(self, tmp_path, fake_binary):
        binary = fake_binary(tmp_path / "fleet-agent", "dev-build")
        assert await probe_version(binary) is None


class TestTerminate:
    """Tests for terminate() / stop_instances()."""

    @pytest.mark.asyncio
    async def test_sigterm_stops_process(self):
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        await terminate([proc.pid], grace=0.5)
        returncode = await asyncio.wait_for(proc.wait(), timeout=5)
        assert returncode in (-signal.SIGTERM, -signal.SIGKILL)

    @pytest.mark.asyncio
    async def test_empty_list_is_noop(self):
        await terminate([], grace=0)

    @pytest.mark.asyncio
    async def test_vanished_pid_ignored(self):
        proc = await asyncio.create_subprocess_exec("true")
        await proc.wait()
        await terminate([proc.pid], grace=0)

    @pytest.mark.asyncio
    async def test_stop_instances_uses_found_pids(self, tmp_path):
        with (
            patch(
                "shipwright.client.process.find_running",
                new_callable=AsyncMock,
                return_value=[101, 102],
            ),
            patch("shipwright.client.process.terminate", new_callable=AsyncMock) as mock_term,
        ):
            pids = await stop_instances(tmp_path / "fleet-agent", grace=1.0)

        assert pids == [101, 102]
        mock_term.assert_awaited_once_with([101, 102], 1.0)
