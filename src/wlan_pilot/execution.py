"""Safe invocation of external programs used to drive the network stack."""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Sequence

from .errors import CommandSpawnError, CommandTimeoutError, NetworkError


logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT = 65536
_READ_CHUNK = 8192

# argv entries following these flags are secrets and must not reach the log.
_SECRET_FLAGS = frozenset({"password", "wifi-sec.psk", "802-11-wireless-security.psk"})


@dataclass(slots=True)
class CommandResult:
    """Exit status and bounded text output of a finished command."""

    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def redact_argv(argv: Sequence[str]) -> list[str]:
    """Return a copy of ``argv`` with credential values masked."""

    redacted: list[str] = []
    hide_next = False
    for arg in argv:
        if hide_next:
            redacted.append("******")
            hide_next = False
            continue
        redacted.append(arg)
        if arg in _SECRET_FLAGS:
            hide_next = True
    return redacted


class _BoundedReader(threading.Thread):
    """Drain a pipe to EOF while keeping at most ``limit`` bytes of it."""

    def __init__(self, stream: IO[bytes] | None, limit: int) -> None:
        super().__init__(name="command-output-reader", daemon=True)
        self._stream = stream
        self._limit = limit
        self.data = bytearray()

    def run(self) -> None:
        if self._stream is None:
            return
        with self._stream:
            while True:
                chunk = self._stream.read(_READ_CHUNK)
                if not chunk:
                    break
                room = self._limit - len(self.data)
                if room > 0:
                    self.data.extend(chunk[:room])


class CommandRunner:
    """Run programs with a discrete argument vector, never through a shell."""

    def __init__(
        self,
        *,
        timeout: float | None = 30.0,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ) -> None:
        if output_limit <= 0:
            raise ValueError("output_limit must be positive")
        self._timeout = timeout
        self._output_limit = output_limit

    # ------------------------------ operations -----------------------------
    def execute(self, program: str, argv: Sequence[str] = ()) -> CommandResult:
        """Run ``program`` with ``argv`` and capture its exit status and output.

        Output is stdout followed by stderr. Each pipe is drained to EOF but
        only ``output_limit`` bytes are kept in memory, and stderr keeps
        its place in the limit ahead of stdout so diagnostics survive a
        noisy listing. A program that cannot be started raises
        :class:`CommandSpawnError`; a non-zero exit is reported through
        :attr:`CommandResult.returncode`, not an exception.
        """

        args = [program, *argv]
        logger.debug("Running %s", " ".join(redact_argv(args)))
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise CommandSpawnError(f"{program} command unavailable") from exc
        except PermissionError as exc:
            raise CommandSpawnError(f"{program} command is not executable") from exc

        stdout = _BoundedReader(process.stdout, self._output_limit)
        stderr = _BoundedReader(process.stderr, self._output_limit)
        stdout.start()
        stderr.start()
        try:
            returncode = process.wait(timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            process.kill()
            process.wait()
            raise CommandTimeoutError(f"{program} command timed out") from exc
        finally:
            stdout.join()
            stderr.join()

        errors = bytes(stderr.data)
        kept = bytes(stdout.data[: max(0, self._output_limit - len(errors))])
        output = (kept + errors).decode("utf-8", errors="replace")
        return CommandResult(returncode=returncode, output=output)

    def run(self, program: str, argv: Sequence[str] = ()) -> str:
        """Run a command that is expected to succeed and return its output.

        Non-zero exit raises :class:`NetworkError` with the classified
        failure kind and the command's own diagnostic text attached.
        """

        result = self.execute(program, argv)
        if not result.ok:
            message = result.output.strip() or f"{program} exited with status {result.returncode}"
            raise NetworkError(message)
        return result.output

    @staticmethod
    def exists(program: str) -> bool:
        """Return ``True`` when ``program`` can be found on ``PATH``."""

        return shutil.which(program) is not None


__all__ = ["CommandResult", "CommandRunner", "DEFAULT_OUTPUT_LIMIT", "redact_argv"]
