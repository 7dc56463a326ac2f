import io
import subprocess
import sys

import pytest

import wlan_pilot.execution as execution
from wlan_pilot.errors import (
    CommandSpawnError,
    CommandTimeoutError,
    ErrorKind,
    NetworkError,
)
from wlan_pilot.execution import CommandRunner, redact_argv


class FakeProcess:
    def __init__(self, args, returncode: int, stdout, stderr, hang: bool) -> None:
        self.args = args
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.killed = False

    def wait(self, timeout=None) -> int:
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def kill(self) -> None:
        self.killed = True


class FloodStream(io.RawIOBase):
    """Endless-looking pipe that yields ``total`` bytes in small reads."""

    def __init__(self, total: int) -> None:
        self.remaining = total
        self.consumed = 0

    def read(self, size: int = -1) -> bytes:
        count = self.remaining if size < 0 else min(size, self.remaining)
        self.remaining -= count
        self.consumed += count
        return b"x" * count


def _install(
    monkeypatch: pytest.MonkeyPatch,
    returncode: int = 0,
    stdout=b"",
    stderr=b"",
    *,
    hang: bool = False,
) -> dict[str, object]:
    captured: dict[str, object] = {}

    def fake_popen(args, **kwargs):
        captured["args"] = args
        captured["kwargs"] = kwargs
        out = io.BytesIO(stdout) if isinstance(stdout, bytes) else stdout
        err = io.BytesIO(stderr) if isinstance(stderr, bytes) else stderr
        process = FakeProcess(args, returncode, out, err, hang)
        captured["process"] = process
        return process

    monkeypatch.setattr(execution.subprocess, "Popen", fake_popen)
    return captured


def test_execute_passes_argv_list_without_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _install(monkeypatch, stdout=b"yes:Cafe\n")
    result = CommandRunner(timeout=5.0).execute("nmcli", ["device", "wifi", "connect", "Cafe; reboot"])

    assert result.ok
    assert result.output == "yes:Cafe\n"
    assert captured["args"] == ["nmcli", "device", "wifi", "connect", "Cafe; reboot"]
    assert "shell" not in captured["kwargs"]


def test_output_is_stdout_then_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, 1, stdout=b"abc", stderr=b"def")
    result = CommandRunner(output_limit=10).execute("iw", ["dev"])
    assert result.returncode == 1
    assert result.output == "abcdef"


def test_stderr_keeps_its_place_when_truncating(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, 1, stdout=b"abcdefgh", stderr=b"ERR")
    assert CommandRunner(output_limit=5).execute("iw", ["dev"]).output == "abERR"


def test_output_is_bounded_while_pipes_are_drained(monkeypatch: pytest.MonkeyPatch) -> None:
    flood = FloodStream(5_000_000)
    _install(monkeypatch, stdout=flood)

    result = CommandRunner(output_limit=256).execute("nmcli", ["device", "wifi", "list"])

    assert result.output == "x" * 256
    assert flood.consumed == 5_000_000


def test_invalid_utf8_is_replaced(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, stdout=b"caf\xe9")
    assert CommandRunner().execute("nmcli").output == "caf\ufffd"


def test_missing_program_raises_spawn_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_popen(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(execution.subprocess, "Popen", fake_popen)
    with pytest.raises(CommandSpawnError):
        CommandRunner().execute("nmcli", ["general"])


def test_timeout_kills_the_process(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _install(monkeypatch, hang=True)
    with pytest.raises(CommandTimeoutError):
        CommandRunner(timeout=0.1).execute("nmcli", ["device", "wifi", "rescan"])
    assert captured["process"].killed


def test_run_raises_classified_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        4,
        stderr=b"Error: Connection activation failed: Secrets were required, but not provided.\n",
    )
    with pytest.raises(NetworkError) as excinfo:
        CommandRunner().run("nmcli", ["connection", "up", "Home"])
    assert excinfo.value.kind is ErrorKind.AUTH_FAILED
    assert "Secrets were required" in excinfo.value.detail


def test_noisy_stdout_does_not_hide_the_stderr_diagnostic() -> None:
    script = (
        "import sys; sys.stdout.write('x' * 70000); "
        "sys.stderr.write('Error: Secrets were required, but not provided.\\n'); sys.exit(4)"
    )
    with pytest.raises(NetworkError) as excinfo:
        CommandRunner(timeout=10.0, output_limit=256).run(sys.executable, ["-c", script])
    assert excinfo.value.kind is ErrorKind.AUTH_FAILED


def test_run_reports_exit_status_without_output(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, 2)
    with pytest.raises(NetworkError, match="exited with status 2"):
        CommandRunner().run("iptables", ["-C", "FORWARD"])


def test_redact_argv_masks_credentials() -> None:
    argv = ["nmcli", "device", "wifi", "connect", "Home", "password", "hunter22", "wifi-sec.psk", "x"]
    assert redact_argv(argv) == [
        "nmcli", "device", "wifi", "connect", "Home", "password", "******", "wifi-sec.psk", "******",
    ]


def test_credentials_never_reach_debug_log(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    _install(monkeypatch)
    with caplog.at_level("DEBUG", logger="wlan_pilot.execution"):
        CommandRunner().execute("nmcli", ["connection", "add", "wifi-sec.psk", "hunter22"])
    assert "hunter22" not in caplog.text
    assert "******" in caplog.text


def test_rejects_non_positive_output_limit() -> None:
    with pytest.raises(ValueError):
        CommandRunner(output_limit=0)
