"""Unit tests for subprocess orchestration."""

import os
import sys

import pytest

from scmbridge.exceptions import OperationCancelled
from scmbridge.process import BufferedHandle, CancelToken, ProcessRunner
from scmbridge.process.runner import STREAM_LIMIT


def script_args(source: str):
    """Arguments running ``source`` with the current interpreter."""
    return ["-c", source]


@pytest.fixture
def runner():
    """Create a ProcessRunner with a generous timeout."""
    return ProcessRunner(timeout=30)


@pytest.mark.asyncio
async def test_buffered_output(runner, tmp_path):
    """Test reading a whole stream and the exit code."""
    proc = await runner.spawn(
        sys.executable, script_args("print('hello'); print('world')"), str(tmp_path)
    )
    try:
        output = await proc.output("stdout")
        assert output.splitlines() == ["hello", "world"]
        assert await proc.returncode() == 0
        # cached after the first read
        assert await proc.output("stdout") == output
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_runs_in_working_directory(runner, tmp_path):
    """Test that the process starts in the requested directory."""
    proc = await runner.spawn(
        sys.executable, script_args("import os; print(os.getcwd())"), str(tmp_path)
    )
    try:
        output = await proc.output("stdout")
        assert os.path.samefile(output.strip(), tmp_path)
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_line_sequence_is_indexed_and_forward_only(runner, tmp_path):
    """Test lazy line consumption."""
    proc = await runner.spawn(
        sys.executable, script_args("for i in range(5): print(f'line {i}')"), str(tmp_path)
    )
    try:
        lines = proc.lines("stdout")
        assert lines.index == 0

        collected = [item async for item in lines]

        assert collected == [(i + 1, f"line {i}") for i in range(5)]
        assert lines.index == 5
        # cannot be restarted
        assert [item async for item in proc.lines("stdout")] == []
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_overlong_line_ends_sequence(runner, tmp_path):
    """Test that a line past the stream limit ends iteration without raising."""
    source = f"print('a'); print('x' * {STREAM_LIMIT + 10}); print('b')"
    proc = await runner.spawn(sys.executable, script_args(source), str(tmp_path))
    try:
        lines = proc.lines("stdout")

        collected = [item async for item in lines]

        assert collected == [(1, "a")]
        assert [item async for item in lines] == []
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_nonzero_exit_prefers_stderr(runner, tmp_path):
    """Test error message selection on failure."""
    source = "import sys; print('out'); print('bad things', file=sys.stderr); sys.exit(3)"
    proc = await runner.spawn(sys.executable, script_args(source), str(tmp_path))
    try:
        message = await proc.error_message()
        assert await proc.returncode() == 3
        assert message.strip() == "bad things"
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_error_message_falls_back_to_stdout(runner, tmp_path):
    """Test that stdout is used when stderr is empty."""
    proc = await runner.spawn(
        sys.executable, script_args("import sys; print('only out'); sys.exit(1)"), str(tmp_path)
    )
    try:
        assert (await proc.error_message()).strip() == "only out"
        assert await proc.returncode() == 1
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_stderr_lines(runner, tmp_path):
    """Test line consumption of stderr."""
    source = "import sys; sys.stderr.write('a\\nb\\n')"
    proc = await runner.spawn(sys.executable, script_args(source), str(tmp_path))
    try:
        assert [line async for _, line in proc.lines("stderr")] == ["a", "b"]
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_unknown_stream_rejected(runner, tmp_path):
    """Test that only stdout and stderr exist."""
    proc = await runner.spawn(sys.executable, script_args("pass"), str(tmp_path))
    try:
        with pytest.raises(ValueError, match="Unknown stream"):
            await proc.output("stdin")
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_timeout_kills_process(tmp_path):
    """Test that a hung tool is killed and reported."""
    runner = ProcessRunner(timeout=0.5)
    proc = await runner.spawn(
        sys.executable, script_args("import time; time.sleep(60)"), str(tmp_path)
    )
    try:
        output = await proc.output("stdout")
        code = await proc.returncode()
        assert output == ""
        assert code != 0
        assert proc.timed_out is True
        assert "timed out after 0.5s" in await proc.error_message()
    finally:
        await proc.close()


@pytest.mark.asyncio
async def test_close_kills_running_process(runner, tmp_path):
    """Test that closing an unfinished handle terminates the process."""
    proc = await runner.spawn(
        sys.executable, script_args("import time; time.sleep(60)"), str(tmp_path)
    )

    await proc.close()

    assert await proc.returncode() != 0


@pytest.mark.asyncio
async def test_spawn_failure_returns_failed_handle(runner, tmp_path):
    """Test that a missing executable yields exit code 127."""
    proc = await runner.spawn(
        str(tmp_path / "no-such-tool"), ["status"], str(tmp_path)
    )

    assert isinstance(proc, BufferedHandle)
    assert await proc.returncode() == 127
    assert await proc.error_message() != ""


@pytest.mark.asyncio
async def test_checkpoint_observes_cancellation(runner, tmp_path):
    """Test that a cancelled token stops a consumption loop."""
    token = CancelToken()
    proc = await runner.spawn(
        sys.executable,
        script_args("for i in range(1000): print(i)"),
        str(tmp_path),
        token=token,
    )
    consumed = 0
    try:
        with pytest.raises(OperationCancelled):
            async for idx, _ in proc.lines("stdout"):
                consumed = idx
                if idx == 10:
                    token.cancel()
                await proc.checkpoint()
    finally:
        await proc.close()

    assert consumed == 10


@pytest.mark.asyncio
async def test_spawn_with_cancelled_token_raises(runner, tmp_path):
    """Test that an already cancelled query never starts a process."""
    token = CancelToken()
    token.cancel()

    with pytest.raises(OperationCancelled):
        await runner.spawn(sys.executable, script_args("pass"), str(tmp_path), token=token)


@pytest.mark.asyncio
async def test_buffered_handle():
    """Test the in-memory handle."""
    proc = BufferedHandle(["git", "status"], returncode=0, stdout="a\nb\n")

    assert await proc.returncode() == 0
    assert await proc.output() == "a\nb\n"
    assert [item async for item in proc.lines()] == [(1, "a"), (2, "b")]
    assert await proc.error_message() == "a\nb\n"
    await proc.close()


def test_cancel_token():
    """Test the cancel token state."""
    token = CancelToken()
    assert token.cancelled is False
    token.raise_if_cancelled()

    token.cancel()

    assert token.cancelled is True
    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()
