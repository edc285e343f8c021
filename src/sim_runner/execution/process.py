"""Child-process lifecycle: spawn, drain output, enforce a timeout.

A run has exactly one terminal status. The timeout timer and the exit path
race to settle a `Settlement`; the first one wins and the other is a no-op,
so a process that exits right after its timeout fired is still reported as
timed out.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Generic, Mapping, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProcessStatus(str, Enum):
    """Terminal state of one child process.

    Example:
        ```python
        status = ProcessStatus.TIMED_OUT
        ```
    """

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


class Settlement(Generic[T]):
    """A value that can be set exactly once by any of several threads.

    Example:
        ```python
        settled = Settlement[str]()
        assert settled.settle("first") is True
        assert settled.settle("second") is False
        ```
    """

    def __init__(self) -> None:
        """Create an unsettled instance.

        Example:
            ```python
            settled = Settlement[int]()
            ```
        """
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value: T | None = None

    def settle(self, value: T) -> bool:
        """Store `value` if nothing was stored yet; return whether this call won.

        Example:
            ```python
            won = settled.settle(ProcessStatus.COMPLETED)
            ```
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._value = value
            self._event.set()
            return True

    @property
    def settled(self) -> bool:
        """Whether a value has been stored.

        Example:
            ```python
            done = settled.settled
            ```
        """
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> T:
        """Block until settled and return the stored value.

        Example:
            ```python
            value = settled.wait(timeout=1.0)
            ```
        """
        if not self._event.wait(timeout):
            raise TimeoutError("Settlement was not settled in time")
        return self._value  # type: ignore[return-value]


@dataclass(slots=True)
class ProcessOutcome:
    """Captured result of one child process.

    Example:
        ```python
        out = ProcessOutcome(ProcessStatus.COMPLETED, 0, "done\\n", "", pid=1234, duration_seconds=0.4)
        ```
    """

    status: ProcessStatus
    returncode: int | None
    stdout: str
    stderr: str
    pid: int | None = None
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def timed_out(self) -> bool:
        """Whether the timeout settled this run.

        Example:
            ```python
            if outcome.timed_out: ...
            ```
        """
        return self.status is ProcessStatus.TIMED_OUT


class _StreamCollector:
    """Drain one pipe on a background thread, keeping at most `limit` characters.

    Example:
        ```python
        collector = _StreamCollector(proc.stdout, "python stdout", 131072)
        ```
    """

    def __init__(self, stream: IO[str], label: str, limit: int) -> None:
        """Prepare the collector; call `start` to begin draining.

        Example:
            ```python
            collector = _StreamCollector(proc.stderr, "blender stderr", 4096)
            ```
        """
        self._stream = stream
        self._label = label
        self._limit = limit
        self._chunks: list[str] = []
        self._size = 0
        self._truncated = False
        self._thread = threading.Thread(target=self._drain, name=f"drain-{label}", daemon=True)

    def start(self) -> "_StreamCollector":
        """Start the drain thread.

        Example:
            ```python
            collector.start()
            ```
        """
        self._thread.start()
        return self

    def join(self, timeout: float | None = None) -> None:
        """Wait for the pipe to reach EOF.

        Example:
            ```python
            collector.join(timeout=5)
            ```
        """
        self._thread.join(timeout)

    @property
    def text(self) -> str:
        """Collected text, with a marker when output was cut.

        Example:
            ```python
            out = collector.text
            ```
        """
        joined = "".join(self._chunks)
        if self._truncated:
            return joined + "\n...[output truncated]"
        return joined

    def _drain(self) -> None:
        """Read lines until EOF, logging each one at DEBUG.

        Example:
            ```python
            collector._drain()
            ```
        """
        try:
            for line in iter(self._stream.readline, ""):
                logger.debug("[%s] %s", self._label, line.rstrip())
                if self._size >= self._limit:
                    self._truncated = True
                    continue
                room = self._limit - self._size
                if len(line) > room:
                    line = line[:room]
                    self._truncated = True
                self._chunks.append(line)
                self._size += len(line)
        except (OSError, ValueError) as exc:
            logger.debug("[%s] stream closed: %s", self._label, exc)
        finally:
            self._stream.close()


def _group_alive(proc: subprocess.Popen[str]) -> bool:
    """Whether any process is left in the child's process group.

    The group outlives its leader while grandchildren keep running.

    Example:
        ```python
        if _group_alive(proc):
            _signal_group(proc, signal.SIGKILL)
        ```
    """
    if not hasattr(os, "killpg"):
        return proc.returncode is None
    try:
        os.killpg(proc.pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _signal_group(proc: subprocess.Popen[str], sig: int) -> None:
    """Send a signal to the child's process group, or the child alone.

    Example:
        ```python
        _signal_group(proc, signal.SIGTERM)
        ```
    """
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        elif proc.returncode is not None:
            return
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except ProcessLookupError:
        pass


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout_seconds: float,
    kill_grace_seconds: float = 5.0,
    max_output_chars: int = 128 * 1024,
    label: str = "process",
) -> ProcessOutcome:
    """Spawn `argv`, wait for exit or timeout, and capture its output.

    On timeout the process group gets SIGTERM, then SIGKILL once
    `kill_grace_seconds` pass. Exit codes are reported, never interpreted.

    Example:
        ```python
        outcome = run_process(["python", "-c", "print(1)"], cwd=Path("/tmp"), env=os.environ, timeout_seconds=5)
        ```
    """
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        logger.error("Failed to start %s: %s", label, exc)
        return ProcessOutcome(
            status=ProcessStatus.SPAWN_FAILED,
            returncode=None,
            stdout="",
            stderr="",
            duration_seconds=time.monotonic() - started,
            error=f"Failed to start {argv[0]}: {exc}",
        )

    logger.info("Started %s (pid %s): %s", label, proc.pid, " ".join(argv))
    if proc.stdout is None or proc.stderr is None:
        raise RuntimeError(f"{label} was started without output pipes")
    readers = [
        _StreamCollector(proc.stdout, f"{label} stdout", max_output_chars).start(),
        _StreamCollector(proc.stderr, f"{label} stderr", max_output_chars).start(),
    ]
    settlement: Settlement[ProcessStatus] = Settlement()

    def _force_kill() -> None:
        """Escalate to SIGKILL if the child ignored SIGTERM.

        Example:
            ```python
            _force_kill()
            ```
        """
        if _group_alive(proc):
            logger.warning("%s ignored SIGTERM; sending SIGKILL", label)
            _signal_group(proc, signal.SIGKILL)

    def _on_timeout() -> None:
        """Settle as timed out and start terminate-then-kill.

        Example:
            ```python
            _on_timeout()
            ```
        """
        if not settlement.settle(ProcessStatus.TIMED_OUT):
            return
        logger.warning("%s exceeded %.1fs; terminating", label, timeout_seconds)
        _signal_group(proc, signal.SIGTERM)
        grace = threading.Timer(kill_grace_seconds, _force_kill)
        grace.daemon = True
        grace.start()

    timer = threading.Timer(timeout_seconds, _on_timeout)
    timer.daemon = True
    timer.start()
    try:
        returncode = proc.wait()
    finally:
        timer.cancel()
    # After a timeout the grace timer stays armed: grandchildren in the group
    # may still be running after the leader exits.
    settlement.settle(ProcessStatus.COMPLETED)
    for reader in readers:
        reader.join(timeout=kill_grace_seconds + 1.0)

    status = settlement.wait()
    duration = time.monotonic() - started
    logger.info("%s finished with status %s (exit code %s) in %.2fs", label, status.value, returncode, duration)
    return ProcessOutcome(
        status=status,
        returncode=returncode,
        stdout=readers[0].text,
        stderr=readers[1].text,
        pid=proc.pid,
        duration_seconds=duration,
    )
