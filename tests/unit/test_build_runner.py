"""Build runner tests using the real shell."""

import sys
from pathlib import Path

import pytest
from gitsync.core.exceptions import BuildError
from gitsync.services.build_runner import MAX_OUTPUT_CHARS, ShellCommandRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")


class TestShellCommandRunner:
    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, tmp_path: Path) -> None:
        outcome = await ShellCommandRunner().run("pwd && echo built > out.txt", tmp_path)

        assert outcome.exit_code == 0
        assert Path(outcome.stdout.strip()).resolve() == tmp_path.resolve()
        assert (tmp_path / "out.txt").read_text(encoding="utf-8") == "built\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_command(self, tmp_path: Path) -> None:
        command = "echo compiling; echo 'missing module' >&2; exit 3"

        with pytest.raises(BuildError, match="exited with 3: missing module") as exc_info:
            await ShellCommandRunner().run(command, tmp_path)

        assert exc_info.value.command == command
        assert exc_info.value.exit_code == 3

    @pytest.mark.asyncio
    async def test_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError, match="does not exist"):
            await ShellCommandRunner().run("true", tmp_path / "nope")

    @pytest.mark.asyncio
    async def test_timeout_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError, match="timed out"):
            await ShellCommandRunner(timeout_seconds=1).run("sleep 5", tmp_path)

    @pytest.mark.asyncio
    async def test_output_is_truncated(self, tmp_path: Path) -> None:
        outcome = await ShellCommandRunner().run(
            f"head -c {MAX_OUTPUT_CHARS * 2} /dev/zero | tr '\\0' 'x'", tmp_path
        )
        assert len(outcome.stdout) == MAX_OUTPUT_CHARS
