"""Supervised external processes.

One wrapper for every ffmpeg/ffprobe invocation: spawn, enforce a wall-clock
timeout, wait, and capture stdout/stderr. Output is drained on background
threads so a chatty encoder can never block on a full pipe while the caller
is waiting on a sibling.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# Keep the tail of stderr; ffmpeg can emit megabytes over a long encode
MAX_CAPTURE_BYTES = 64 * 1024


@dataclass
class ProcessOutcome:
    """Result of a supervised process once it has terminated."""
    args: list[str]
    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    start_error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def started(self) -> bool:
        return self.start_error is None

    @property
    def succeeded(self) -> bool:
        return self.started and not self.timed_out and self.exit_code == 0


class _StreamCollector(threading.Thread):
    """Reads a pipe to EOF, keeping at most ``limit`` trailing bytes."""

    def __init__(self, stream, limit: int = MAX_CAPTURE_BYTES):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self._buffer = bytearray()

    def run(self) -> None:
        for chunk in iter(lambda: self.stream.read(8192), b""):
            self._buffer.extend(chunk)
            if len(self._buffer) > self.limit:
                del self._buffer[: len(self._buffer) - self.limit]
        self.stream.close()

    @property
    def text(self) -> str:
        return self._buffer.decode("utf-8", errors="replace")


class SupervisedProcess:
    """A single external command with timeout and output capture.

    ``start()`` returns immediately; ``wait()`` blocks until the process exits
    or the timeout elapses, in which case the process is killed and the
    outcome is flagged ``timed_out``.
    """

    def __init__(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
    ):
        self.args = [str(a) for a in args]
        self.timeout = timeout
        self.cwd = cwd
        self._proc: Optional[subprocess.Popen] = None
        self._stdout: Optional[_StreamCollector] = None
        self._stderr: Optional[_StreamCollector] = None
        self._started_at: Optional[float] = None
        self._outcome: Optional[ProcessOutcome] = None
        self._lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    def start(self) -> "SupervisedProcess":
        """Spawn the process. A missing binary is recorded, not raised."""
        self._started_at = time.monotonic()
        try:
            self._proc = subprocess.Popen(
                self.args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.args[0]}: {e}")
            self._outcome = ProcessOutcome(
                args=self.args,
                exit_code=None,
                stdout="",
                stderr="",
                start_error=str(e),
            )
            return self

        self._stdout = _StreamCollector(self._proc.stdout)
        self._stderr = _StreamCollector(self._proc.stderr)
        self._stdout.start()
        self._stderr.start()
        return self

    def poll(self) -> Optional[int]:
        """Return the exit code if finished, else None."""
        if self._outcome is not None:
            return self._outcome.exit_code
        if self._proc is None:
            return None
        return self._proc.poll()

    def is_running(self) -> bool:
        return self._proc is not None and self._outcome is None and self._proc.poll() is None

    def terminate(self) -> None:
        """Kill the process if it is still running."""
        if self._proc is not None and self._proc.poll() is None:
            self._proc.kill()

    def wait(self) -> ProcessOutcome:
        """Block until the process terminates and return its outcome."""
        with self._lock:
            if self._outcome is not None:
                return self._outcome
            if self._proc is None:
                raise RuntimeError("Process was never started")

            timed_out = False
            remaining = None
            if self.timeout is not None:
                remaining = max(0.0, self.timeout - (time.monotonic() - self._started_at))
            try:
                self._proc.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.warning(f"{self.args[0]} exceeded {self.timeout}s, killing pid {self._proc.pid}")
                self._proc.kill()
                self._proc.wait()

            self._stdout.join()
            self._stderr.join()

            self._outcome = ProcessOutcome(
                args=self.args,
                exit_code=self._proc.returncode,
                stdout=self._stdout.text,
                stderr=self._stderr.text,
                timed_out=timed_out,
                elapsed=time.monotonic() - self._started_at,
            )
            return self._outcome

    def run(self) -> ProcessOutcome:
        """Start and wait in one call."""
        return self.start().wait()


def run_process(args: Sequence[str], timeout: Optional[float] = None) -> ProcessOutcome:
    """Run a command to completion under supervision."""
    return SupervisedProcess(args, timeout=timeout).run()
