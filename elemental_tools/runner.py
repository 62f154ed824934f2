"""Running external commands."""

from __future__ import annotations

import shutil
import subprocess
from typing import Protocol, runtime_checkable

from elemental_tools.logger import Logger


class CommandError(Exception):
    """A command could not be started or exited unsuccessfully."""

    def __init__(self, message: str, output: bytes = b"", returncode: int | None = None) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


@runtime_checkable
class Runner(Protocol):
    """Runs commands and returns their combined output."""

    logger: Logger | None

    def init_cmd(self, command: str, *args: str) -> list[str]: ...

    def run(self, command: str, *args: str) -> bytes: ...

    def run_cmd(self, cmd: list[str]) -> bytes: ...

    def command_exists(self, command: str) -> bool: ...


class RealRunner:
    """Runs commands on the host."""

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger

    def command_exists(self, command: str) -> bool:
        return shutil.which(command) is not None

    def init_cmd(self, command: str, *args: str) -> list[str]:
        return [command, *args]

    def run_cmd(self, cmd: list[str]) -> bytes:
        """Run ``cmd`` and return stdout and stderr combined."""
        try:
            completed = subprocess.run(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
            )
        except FileNotFoundError:
            raise CommandError(
                f'exec: "{cmd[0]}": executable file not found in $PATH'
            ) from None
        except PermissionError as exc:
            raise CommandError(f'exec: "{cmd[0]}": {exc.strerror}') from exc
        code = completed.returncode
        if code < 0:
            raise CommandError(f"signal: {-code}", completed.stdout, code)
        if code != 0:
            raise CommandError(f"exit status {code}", completed.stdout, code)
        return completed.stdout

    def run(self, command: str, *args: str) -> bytes:
        self._debug(f"Running cmd: '{command} {' '.join(args)}'")
        try:
            return self.run_cmd(self.init_cmd(command, *args))
        except CommandError as exc:
            self._error(f"Error running command: {exc}")
            raise

    def _debug(self, message: str) -> None:
        if self.logger is not None:
            self.logger.debug(message)

    def _error(self, message: str) -> None:
        if self.logger is not None:
            self.logger.error(message)