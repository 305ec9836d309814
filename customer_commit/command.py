"""Library for issuing commands using asyncio and returning the result.

Every external tool (the container engine, the TLS toolkit) is invoked through
a `Command`. Secret values are handed to a command through `env` rather than
its arguments so that the rendered command line is always safe to log.
"""

import asyncio
import logging
import shlex
import subprocess
from dataclasses import dataclass
import os

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


# No public API
__all__: list[str] = []


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    retcodes: list[int] | None = None
    """Non-zero error codes that are allowed to indicate success."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess, not included in logs."""

    timeout: float | None = DEFAULT_TIMEOUT
    """Seconds to wait for the command to finish, or None to wait forever."""

    merge_stderr: bool = False
    """Return stderr interleaved with stdout."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        return self.string

    def _failure(self, returncode: int, out: bytes, err: bytes) -> CommandException:
        errors = [f"Command '{self}' failed with return code {returncode}"]
        for stream in (out, err):
            if stream:
                errors.append(stream.decode("utf-8", errors="replace"))
        _LOGGER.debug("\n".join(errors))
        return self.exc("\n".join(errors))

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command, returning stdout."""
        _LOGGER.debug("Running command: %s", self)
        proc = await asyncio.create_subprocess_shell(
            self.string,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if self.merge_stderr else subprocess.PIPE,
            env={**os.environ, **(self.env or {})},
        )
        try:
            out, err = await asyncio.wait_for(proc.communicate(stdin), self.timeout)
        except asyncio.TimeoutError as error:
            proc.kill()
            await proc.wait()
            raise self.exc(f"Command '{self}' timed out") from error
        if proc.returncode and proc.returncode not in (self.retcodes or []):
            raise self._failure(proc.returncode, out, err)
        return out


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout."""
    out = await cmd.run(stdin)
    return out.decode("utf-8") if out else ""
