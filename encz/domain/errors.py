"""Error taxonomy for encoder invocations.

Parse problems inside a progress stream never raise; they default the field
to zero. Everything here is fatal to a single encode.
"""

from typing import List, Optional


class EncodeError(RuntimeError):
    """Base class for encoder failures."""

    pass


class EncodeStartError(EncodeError):
    """The pipe or the process could not be set up; no progress was reported."""

    pass


class EncodeFailed(EncodeError):
    """The encoder ran and exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int, stderr_tail: Optional[List[str]] = None):
        self.tool = tool
        self.returncode = returncode
        self.stderr_tail = list(stderr_tail or [])
        message = f"{tool} exited with code {returncode}"
        if self.stderr_tail:
            message = f"{message}: {self.stderr_tail[-1]}"
        super().__init__(message)


class EncodeCancelled(EncodeError):
    """The encode was cancelled (Ctrl+C, SIGTERM or an explicit cancel event)."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} cancelled by user")


class ProbeError(RuntimeError):
    """ffprobe failed or returned output without a usable video stream."""

    pass
