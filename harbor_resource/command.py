"""Library for issuing commands using asyncio and returning the result.

Commands are awaited one at a time; the pipeline never has two
subprocesses in flight.
"""

import asyncio
import logging
import shlex
import subprocess
from dataclasses import dataclass

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_TIMEOUT = 300.0


# No public API
__all__: list[str] = []


def _decode(data: bytes | None) -> str:
    # gpg writes user ids in the locale charset
    return data.decode("utf-8", errors="replace") if data else ""


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished subprocess."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def stderr_lines(self) -> list[str]:
        """Diagnostic output split into lines."""
        return self.stderr.splitlines()


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    timeout: float = _TIMEOUT
    """Seconds to wait for the command before giving up."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        return self.string

    async def execute(self, stdin: bytes | None = None) -> CommandResult:
        """Run the command to completion without checking the return code."""
        _LOGGER.debug("Running command: %s", self)
        proc = await asyncio.create_subprocess_shell(
            self.string,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        try:
            out, err = await asyncio.wait_for(proc.communicate(stdin), self.timeout)
        except asyncio.TimeoutError as err:
            proc.kill()
            await proc.wait()
            raise self.exc(f"Command '{self}' timed out") from err
        return CommandResult(
            returncode=proc.returncode or 0,
            stdout=_decode(out),
            stderr=_decode(err),
        )

    def check(self, result: CommandResult) -> CommandResult:
        """Raise the configured exception when the command failed."""
        if not result.returncode:
            return result
        errors = [f"Command '{self}' failed with return code {result.returncode}"]
        if result.stdout:
            errors.append(result.stdout)
        if result.stderr:
            errors.append(result.stderr)
        _LOGGER.debug("\n".join(errors))
        raise self.exc("\n".join(errors), result.returncode)


async def run_result(cmd: Command, stdin: bytes | None = None) -> CommandResult:
    """Run the specified command and return its unchecked result."""
    return await cmd.execute(stdin)


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout."""
    return cmd.check(await run_result(cmd, stdin)).stdout
