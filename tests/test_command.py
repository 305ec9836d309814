"""Tests for command library."""

import pytest

from customer_commit.command import Command, run
from customer_commit.exceptions import CommandException, EngineError


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test passing input to a command."""
    result = await run(Command(["cat"]), stdin=b"from stdin")
    assert result == "from stdin"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_exception_type() -> None:
    """Test a failing command raises the configured exception with diagnostics."""
    with pytest.raises(EngineError, match="No such container: example"):
        await run(
            Command(
                ["sh", "-c", "echo 'No such container: example' >&2; exit 1"],
                exc=EngineError,
            )
        )


async def test_allowed_return_code() -> None:
    """Test a non-zero return code that is allowed to indicate success."""
    result = await run(Command(["sh", "-c", "echo ok; exit 3"], retcodes=[3]))
    assert result == "ok\n"


async def test_command_timeout() -> None:
    """Test a command that does not finish in time."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))


async def test_env_not_rendered() -> None:
    """Test environment values are passed to the command but not rendered."""
    cmd = Command(["sh", "-c", 'echo "$SECRET_VALUE"'], env={"SECRET_VALUE": "hunter2"})
    assert "hunter2" not in str(cmd)
    assert await run(cmd) == "hunter2\n"


async def test_merge_stderr() -> None:
    """Test stderr interleaved with stdout."""
    result = await run(Command(["sh", "-c", "echo out; echo err >&2"], merge_stderr=True))
    assert result == "out\nerr\n"
