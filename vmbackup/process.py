"""External process execution with output draining and cooperative cancellation."""

from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Dict, IO, List, Optional, Sequence, Union

from vmbackup.cancellation import CancellationToken
from vmbackup.constants import PROCESS_POLL_INTERVAL
from vmbackup.exceptions import ManagerError, ProcessCancelled
from vmbackup.models import ProcessResult
from vmbackup.utils import log


class ProcessRunner:
    """Run a program to completion while both output pipes are drained concurrently.

    Two reader threads consume stdout and stderr so a chatty child can never block
    on a full pipe buffer. A watcher thread polls the cancellation token and sends
    SIGTERM to the child when it is flagged. Every helper thread is joined before
    ``run`` returns, so no output is lost and no process handle outlives the call.
    """

    def __init__(self, poll_interval: float = PROCESS_POLL_INTERVAL) -> None:
        self.poll_interval = poll_interval

    def run(
        self,
        executable: Union[str, Path],
        args: Sequence[str],
        cancellation_token: Optional[CancellationToken] = None,
        cwd: Optional[Path] = None,
    ) -> ProcessResult:
        if cancellation_token is not None and cancellation_token.is_cancelled():
            raise ProcessCancelled()

        cmd: List[str] = [str(executable), *[str(arg) for arg in args]]
        log("DEBUG", f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                # Keep the child out of the terminal process group; only the watcher stops it.
                start_new_session=True,
            )
        except OSError as exc:
            raise ManagerError(f"Cannot launch {executable}: {exc}") from exc

        captured: Dict[str, bytes] = {"stdout": b"", "stderr": b""}
        readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, captured, "stdout"), daemon=True),
            threading.Thread(target=self._drain, args=(proc.stderr, captured, "stderr"), daemon=True),
        ]
        finished = threading.Event()
        cancelled = threading.Event()
        watcher = threading.Thread(
            target=self._watch,
            args=(proc, cancellation_token, finished, cancelled),
            daemon=True,
        )
        for thread in readers:
            thread.start()
        watcher.start()

        try:
            code = proc.wait()
        finally:
            if proc.poll() is None:
                proc.terminate()
                proc.wait()
            finished.set()
            watcher.join()
            for thread in readers:
                thread.join()

        token_cancelled = cancellation_token is not None and cancellation_token.is_cancelled()
        if cancelled.is_set() or (token_cancelled and code != 0):
            log("DEBUG", f"Terminated {cmd[0]} after cancellation (code {code})")
            raise ProcessCancelled()

        return ProcessResult(
            code=code,
            stdout=captured["stdout"].decode("utf-8", errors="replace"),
            stderr=captured["stderr"].decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _drain(stream: Optional[IO[bytes]], captured: Dict[str, bytes], key: str) -> None:
        if stream is None:
            return
        chunks: List[bytes] = []
        try:
            while True:
                chunk = stream.read(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        except (OSError, ValueError) as exc:
            # Partial output is still returned.
            log("DEBUG", f"Stopped reading {key}: {exc}")
        finally:
            stream.close()
        captured[key] = b"".join(chunks)

    def _watch(
        self,
        proc: subprocess.Popen,
        token: Optional[CancellationToken],
        finished: threading.Event,
        cancelled: threading.Event,
    ) -> None:
        if token is None:
            return
        while not finished.is_set():
            if token.is_cancelled():
                if proc.poll() is None:
                    proc.terminate()
                    cancelled.set()
                return
            finished.wait(self.poll_interval)
