# Tests for the command-line entry point and listener setup.
# Created: 2026-10-17

import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import uvicorn

from treeserve.__main__ import build_parser, main
from treeserve.config import ServerConfig
from treeserve.errors import ConfigError
from treeserve.server import bind_socket, run_server

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


@pytest.fixture(autouse=True)
def _quiet_logging():
    with patch("treeserve.__main__.setup_logging"):
        yield


class TestParser:
    def test_help_exits_zero(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--help"])
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "--root" in out
        assert "--port" in out

    def test_defaults_defer_to_config(self):
        args = build_parser().parse_args([])
        assert args.root is None
        assert args.port is None
        assert args.check_storage is None

    def test_flags(self):
        args = build_parser().parse_args(
            ["--root", "/srv", "--port", "9000", "--check-storage", "--log-level", "debug"]
        )
        assert args.root == "/srv"
        assert args.port == 9000
        assert args.check_storage is True
        assert args.log_level == "DEBUG"

    def test_bad_port_type(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--port", "abc"])
        assert exc_info.value.code == 2


class TestMain:
    """Tests for main() exit codes."""

    def test_starts_server(self, tmp_path):
        with patch("treeserve.server.run_server") as mock_run:
            code = main(["--root", str(tmp_path), "--port", "9123"])
        assert code == 0
        config = mock_run.call_args.args[0]
        assert config.root_directory == tmp_path.resolve()
        assert config.port == 9123

    def test_missing_root_exits_nonzero(self, tmp_path):
        with patch("treeserve.server.run_server") as mock_run:
            code = main(["--root", str(tmp_path / "missing")])
        assert code == 1
        mock_run.assert_not_called()

    def test_bind_failure_exits_nonzero(self, tmp_path):
        with patch("treeserve.server.run_server", side_effect=ConfigError("in use")):
            assert main(["--root", str(tmp_path)]) == 1

    def test_keyboard_interrupt_exits_zero(self, tmp_path):
        with patch("treeserve.server.run_server", side_effect=KeyboardInterrupt):
            assert main(["--root", str(tmp_path)]) == 0

    def test_unusable_audit_log_exits_nonzero(self, tmp_path):
        (tmp_path / "blocker").write_text("x")
        with patch("treeserve.server.run_server") as mock_run:
            code = main(
                ["--root", str(tmp_path), "--audit-log", str(tmp_path / "blocker" / "audit.jsonl")]
            )
        assert code == 1
        mock_run.assert_not_called()


class TestBindSocket:
    def test_binds_free_port(self):
        sock = bind_socket("127.0.0.1", 0)
        try:
            assert sock.getsockname()[0] == "127.0.0.1"
        finally:
            sock.close()

    def test_port_in_use(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        try:
            with pytest.raises(ConfigError, match="Cannot listen"):
                bind_socket("127.0.0.1", port)
        finally:
            holder.close()


class TestRunServer:
    """Tests for run_server() startup ordering and signal handling."""

    @pytest.fixture
    def config(self, tmp_path):
        return ServerConfig.load(root_directory=str(tmp_path), host="127.0.0.1", port=9123)

    def test_app_failure_does_not_bind(self, config):
        with patch("treeserve.server.create_app", side_effect=RuntimeError("boom")), patch(
            "treeserve.server.bind_socket"
        ) as mock_bind:
            with pytest.raises(RuntimeError):
                run_server(config)
        mock_bind.assert_not_called()

    def test_socket_closed_when_server_fails(self, config):
        sock = MagicMock()
        with patch("treeserve.server.bind_socket", return_value=sock), patch.object(
            uvicorn.Server, "run", side_effect=RuntimeError("boom")
        ):
            with pytest.raises(RuntimeError):
                run_server(config)
        sock.close.assert_called_once()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    @pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM])
    def test_repeated_signal_returns_normally(self, config, signum):
        sock = MagicMock()
        seen = {}

        def fake_run(server, sockets=None):
            # uvicorn re-raises the signal it handled once it has drained
            signal.raise_signal(signum)
            seen["should_exit"] = server.should_exit

        before = signal.getsignal(signum)
        with patch("treeserve.server.bind_socket", return_value=sock), patch.object(
            uvicorn.Server, "run", autospec=True, side_effect=fake_run
        ):
            run_server(config)

        assert seen["should_exit"] is True
        assert signal.getsignal(signum) is before
        sock.close.assert_called_once()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _wait_for_listener(port: int, proc: subprocess.Popen, timeout: float = 15.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            pytest.fail(f"server exited early with {proc.returncode}")
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.5):
                return
        except OSError:
            time.sleep(0.1)
    pytest.fail("server did not start listening")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
class TestShutdownSignals:
    """Run the real entry point and stop it the way a supervisor would."""

    @pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM])
    def test_signal_drains_and_exits_zero(self, tmp_path, signum):
        (tmp_path / "hello.txt").write_text("hello")
        port = _free_port()
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            filter(None, [str(SRC_DIR), env.get("PYTHONPATH")])
        )
        proc = subprocess.Popen(
            [
                sys.executable,
                "-m",
                "treeserve",
                "--root",
                str(tmp_path),
                "--host",
                "127.0.0.1",
                "--port",
                str(port),
                "--shutdown-grace",
                "5",
            ],
            env=env,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        try:
            _wait_for_listener(port, proc)
            proc.send_signal(signum)
            _, stderr = proc.communicate(timeout=30)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        assert proc.returncode == 0, stderr.decode(errors="replace")
