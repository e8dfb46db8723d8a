"""
Model Server Deployment
=======================
Starts and stops the model server as a child process.

The server's pid is written to a pid file so a later pipeline process can
stop a server it did not start itself.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional, Union

import requests

from ..errors import ModelUnavailableError

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ModelServerProcess:
    """
    Manages the model server process.

    Args:
        models_dir: Directory the server loads artifacts from
        host: Bind host
        port: Bind port
        pid_file: Where the running server's pid is recorded
        log_file: Server stdout/stderr (discarded when None)
        startup_timeout: Seconds to wait for ``/health`` after start
    """

    def __init__(
        self,
        models_dir: Union[str, Path],
        host: str = "127.0.0.1",
        port: int = 3001,
        pid_file: Optional[Union[str, Path]] = None,
        log_file: Optional[Union[str, Path]] = None,
        startup_timeout: float = 30.0,
        python_executable: str = sys.executable,
        session: Optional[requests.Session] = None,
    ):
        self.models_dir = Path(models_dir)
        self.host = host
        self.port = port
        self.pid_file = Path(pid_file) if pid_file else self.models_dir / "model-server.pid"
        self.log_file = Path(log_file) if log_file else None
        self.startup_timeout = startup_timeout
        self.python_executable = python_executable
        self.session = session or requests.Session()
        self._process: Optional[subprocess.Popen] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def command(self) -> List[str]:
        return [
            self.python_executable, "-m", "tire_ml.fastapi_app.main",
            "--host", self.host,
            "--port", str(self.port),
            "--models-dir", str(self.models_dir),
        ]

    def _read_pid(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def running_pid(self) -> Optional[int]:
        if self._process is not None and self._process.poll() is None:
            return self._process.pid
        pid = self._read_pid()
        if pid is not None and _pid_alive(pid):
            return pid
        return None

    def is_healthy(self, timeout: float = 2.0) -> bool:
        try:
            return self.session.get(f"{self.url}/health", timeout=timeout).status_code == 200
        except requests.RequestException:
            return False

    def stop(self, timeout: float = 10.0) -> bool:
        """
        Stop the running server, if any.

        Returns:
            True if a process was stopped, False if none was running
        """
        pid = self.running_pid()
        if pid is None:
            logger.info("No model server running")
            self._cleanup_pid_file()
            return False

        logger.info(f"Stopping model server (pid {pid})")
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._cleanup_pid_file()
            return False

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self._process is not None and self._process.pid == pid:
                if self._process.poll() is not None:
                    break
            elif not _pid_alive(pid):
                break
            time.sleep(0.1)
        else:
            logger.warning(f"Model server (pid {pid}) did not exit, killing it")
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass

        if self._process is not None and self._process.pid == pid:
            self._process.wait(timeout=timeout)
            self._process = None
        self._cleanup_pid_file()
        return True

    def start(self):
        """Start the server and wait until ``/health`` answers."""
        existing = self.running_pid()
        if existing is not None:
            raise ModelUnavailableError(
                f"Model server already running (pid {existing})",
                hint="Stop it first or use restart().",
            )

        output = open(self.log_file, "ab") if self.log_file else subprocess.DEVNULL
        try:
            self._process = subprocess.Popen(
                self.command(),
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        finally:
            if self.log_file:
                output.close()

        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(self._process.pid))
        logger.info(f"Model server starting (pid {self._process.pid}) on {self.url}")

        deadline = time.time() + self.startup_timeout
        while time.time() < deadline:
            if self._process.poll() is not None:
                code = self._process.returncode
                self._process = None
                self._cleanup_pid_file()
                raise ModelUnavailableError(f"Model server exited during start-up with code {code}")
            if self.is_healthy():
                logger.info(f"Model server ready at {self.url}")
                return
            time.sleep(0.5)

        self.stop()
        raise ModelUnavailableError(f"Model server did not become healthy within {self.startup_timeout}s")

    def restart(self):
        self.stop()
        self.start()

    def _cleanup_pid_file(self):
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass
