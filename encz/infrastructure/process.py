import logging
import queue
import subprocess
import threading
import time
from collections import deque
from typing import Callable, Deque, Iterable, List, Optional, Sequence
from encz.domain.errors import EncodeCancelled, EncodeFailed, EncodeStartError
from encz.domain.models import EncodeProgress
from encz.infrastructure.line_reader import LineReader

ProgressCallback = Callable[[EncodeProgress], None]
ProgressParser = Callable[[LineReader], Iterable[EncodeProgress]]

_STREAM_DONE = object()


class ProcessRunner:
    """Runs one encoder process and relays the progress parsed from its stdout.

    stdout is parsed on a daemon reader thread which hands snapshots over a
    queue; the calling thread delivers them to the callback in order while
    watching the cancel event and the process. stderr is drained on its own
    thread into a short tail that is attached to failures.
    """

    def __init__(
        self,
        tool: str,
        terminate_timeout: float = 3.0,
        poll_interval: float = 0.1,
        join_timeout: float = 1.0,
        stderr_tail_lines: int = 20,
    ):
        self.tool = tool
        self.terminate_timeout = terminate_timeout
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout
        self.stderr_tail_lines = stderr_tail_lines
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        cmd: Sequence[str],
        parse: ProgressParser,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Starts `cmd` and blocks until it exits.

        Raises EncodeStartError if the process cannot be started,
        EncodeCancelled if cancel_event is set before it exits (the process is
        terminated) and EncodeFailed on a non-zero exit status.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise EncodeCancelled(self.tool)

        start_time = time.monotonic()
        try:
            process = subprocess.Popen(
                list(cmd),
                # Nobody reads stdout without a callback, so don't let it fill a pipe
                stdout=subprocess.PIPE if on_progress is not None else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            raise EncodeStartError(f"failed to start {self.tool}: {exc}") from exc

        self.logger.debug(f"ENCODE_PID: {self.tool} pid={process.pid}")

        snapshots: "queue.Queue[object]" = queue.Queue()
        stderr_tail: Deque[str] = deque(maxlen=self.stderr_tail_lines)
        threads: List[threading.Thread] = [
            self._start_thread(self._drain_stderr, process, stderr_tail),
        ]
        if on_progress is not None:
            threads.append(self._start_thread(self._read_progress, process, parse, snapshots))

        try:
            try:
                finished = self._relay(process, snapshots, on_progress, cancel_event)
            except BaseException as exc:
                # Callback errors and KeyboardInterrupt must not leave the encoder running
                self.logger.info(f"ENCODE_INTERRUPTED: {self.tool} ({type(exc).__name__})")
                if process.poll() is None:
                    self._terminate(process)
                self._join(threads)
                raise

            if not finished:
                self.logger.info(f"ENCODE_INTERRUPTED: {self.tool} (cancelled)")
                self._terminate(process)
                self._join(threads)
                raise EncodeCancelled(self.tool)

            self._join(threads)
            if on_progress is not None:
                self._deliver_remaining(snapshots, on_progress)
            process.wait()
        finally:
            self._close_pipes(process, threads)

        elapsed = time.monotonic() - start_time
        if process.returncode != 0:
            self.logger.info(f"ENCODE_END: {self.tool} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise EncodeFailed(self.tool, process.returncode, list(stderr_tail))
        self.logger.info(f"ENCODE_END: {self.tool} status=completed elapsed={elapsed:.2f}s")

    def _relay(self, process, snapshots: "queue.Queue[object]", on_progress: Optional[ProgressCallback],
               cancel_event: Optional[threading.Event]) -> bool:
        """Delivers snapshots until the process exits. Returns False when cancelled."""
        stream_done = on_progress is None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False

            if stream_done:
                if process.poll() is not None:
                    return True
                if cancel_event is not None:
                    cancel_event.wait(self.poll_interval)
                else:
                    time.sleep(self.poll_interval)
                continue

            try:
                item = snapshots.get(timeout=self.poll_interval)
            except queue.Empty:
                if process.poll() is not None:
                    return True
                continue

            if item is _STREAM_DONE:
                stream_done = True
                continue
            on_progress(item)

    def _deliver_remaining(self, snapshots: "queue.Queue[object]", on_progress: ProgressCallback):
        # Snapshots the reader managed to queue after the process exited
        while True:
            try:
                item = snapshots.get_nowait()
            except queue.Empty:
                return
            if item is _STREAM_DONE:
                return
            on_progress(item)

    def _read_progress(self, process, parse: ProgressParser, snapshots: "queue.Queue[object]"):
        try:
            for snapshot in parse(LineReader(process.stdout)):
                snapshots.put(snapshot)
        except (OSError, ValueError) as exc:
            self.logger.debug(f"ENCODE_READER: {self.tool} stdout closed ({exc})")
        finally:
            snapshots.put(_STREAM_DONE)

    def _drain_stderr(self, process, tail: Deque[str]):
        if process.stderr is None:
            return
        try:
            for line in LineReader(process.stderr):
                tail.append(line)
                self.logger.debug(f"{self.tool}: {line}")
        except (OSError, ValueError) as exc:
            self.logger.debug(f"ENCODE_READER: {self.tool} stderr closed ({exc})")

    def _terminate(self, process):
        process.terminate()
        try:
            process.wait(timeout=self.terminate_timeout)
        except subprocess.TimeoutExpired:
            self.logger.info(f"ENCODE_KILL: {self.tool} did not exit after {self.terminate_timeout}s")
            process.kill()
            process.wait()

    def _join(self, threads: List[threading.Thread]):
        for thread in threads:
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                self.logger.debug(f"ENCODE_READER: {self.tool} {thread.name} still running, abandoning")

    def _close_pipes(self, process, threads: List[threading.Thread]):
        if any(thread.is_alive() for thread in threads):
            # A reader still blocked in read() would hang close(); leave the pipes to it
            self.logger.debug(f"ENCODE_READER: {self.tool} reader still running, pipes left open")
            return
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

    @staticmethod
    def _start_thread(target, *args) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=target.__name__.lstrip("_"), daemon=True)
        thread.start()
        return thread
