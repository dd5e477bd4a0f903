import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, Iterator, List, Optional
from encz.config.models import FFmpegConfig
from encz.domain.models import EncodeParams, EncodeProgress, ProbeResult
from encz.infrastructure.ffprobe import FFprobeAdapter
from encz.infrastructure.process import ProcessRunner, ProgressCallback
from encz.utils.numbers import round_to, truncate_seconds


@dataclass
class FFmpegProgressState:
    """Fields carried across the key=value lines of `-progress` output."""

    speed: float = 0.0
    current_size: int = 0
    started_at: Optional[float] = None  # clock() at the first progress=continue

    def feed(self, line: str, total_duration: timedelta, now: float) -> Optional[EncodeProgress]:
        """Applies one line; returns a snapshot when the line carries the output time."""
        line = line.strip()

        if line.startswith("progress=continue"):
            if self.started_at is None:
                self.started_at = now
        elif line.startswith("fps="):
            try:
                self.speed = float(line[len("fps="):])
            except ValueError:
                pass
        elif line.startswith("total_size="):
            try:
                self.current_size = int(line[len("total_size="):])
            except ValueError:
                pass
        elif line.startswith("out_time_ms="):
            # out_time_ms is in microseconds despite its name
            try:
                out_time_us = int(line[len("out_time_ms="):])
            except ValueError:
                return None
            if total_duration <= timedelta(0):
                return None
            return self._snapshot(timedelta(microseconds=out_time_us), total_duration, now)
        return None

    def _snapshot(self, out_time: timedelta, total_duration: timedelta, now: float) -> EncodeProgress:
        ratio = out_time / total_duration * 100
        percent = round_to(min(100.0, max(0.0, ratio)), 2)

        eta = timedelta(0)
        if self.started_at is not None and 0 < percent < 100:
            elapsed = now - self.started_at
            estimated = elapsed * 100 / percent
            eta = truncate_seconds(timedelta(seconds=estimated - elapsed))

        return EncodeProgress(
            percent=percent,
            speed=self.speed,
            eta=eta,
            current_size=self.current_size,
        )


def iter_progress(lines: Iterable[str], total_duration: timedelta,
                  clock: Callable[[], float] = time.monotonic) -> Iterator[EncodeProgress]:
    """Yields one snapshot per out_time_ms line of ffmpeg `-progress` output.

    Nothing is yielded while total_duration is unknown (zero).
    """
    state = FFmpegProgressState()
    for line in lines:
        progress = state.feed(line, total_duration, clock())
        if progress is not None:
            yield progress


class FFmpegAdapter:
    """Wrapper around ffmpeg for video encoding."""

    tool = "ffmpeg"

    def __init__(self, config: Optional[FFmpegConfig] = None, ffprobe: Optional[FFprobeAdapter] = None,
                 terminate_timeout: float = 3.0):
        self.config = config or FFmpegConfig()
        self.ffprobe = ffprobe or FFprobeAdapter()
        self.terminate_timeout = terminate_timeout
        self.logger = logging.getLogger(__name__)

    def _build_command(self, params: EncodeParams) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cfg = self.config
        cmd = [
            cfg.binary,
            "-y",  # Overwrite output files
            "-progress", "pipe:1",
            "-stats_period", f"{cfg.stats_period:g}",
        ]

        # Input seeking: -ss/-t must come before -i
        if params.from_time > timedelta(0):
            cmd.extend(["-ss", str(int(params.from_time.total_seconds()))])
        if params.duration > timedelta(0):
            cmd.extend(["-t", str(int(params.duration.total_seconds()))])

        cmd.extend([
            "-i", str(params.input_path),
            "-c:v", cfg.video_codec,
            "-q:v", f"{params.quality:.0f}",
            "-profile:v", cfg.profile_10bit if params.ten_bit else cfg.profile_8bit,
            "-map_metadata", "0",
            "-metadata", f"title={params.input_path.stem}",
        ])

        scale = self._scale_filter(params.width, params.height)
        if scale:
            cmd.extend(["-vf", scale])

        cmd.append(str(params.output_path))
        cmd.extend(params.extra_args)
        return cmd

    @staticmethod
    def _scale_filter(width: int, height: int) -> Optional[str]:
        if width > 0 and height > 0:
            # Fit within the box, keeping the aspect ratio
            return f"scale={width}:{height}:force_original_aspect_ratio=decrease"
        if width > 0:
            return f"scale={width}:-2"
        if height > 0:
            return f"scale=-2:{height}"
        return None

    def _total_duration(self, params: EncodeParams, probe: Optional[ProbeResult]) -> timedelta:
        """Duration ffmpeg will actually encode, used as the 100% mark."""
        if params.duration > timedelta(0):
            return params.duration
        if probe is None:
            probe = self.ffprobe.probe(params.input_path)
        return max(timedelta(0), probe.duration - params.from_time)

    def encode(self, params: EncodeParams, on_progress: Optional[ProgressCallback] = None,
               cancel_event: Optional[threading.Event] = None, probe: Optional[ProbeResult] = None):
        """Runs ffmpeg and blocks until it exits.

        Raises ProbeError when the input has to be probed and ffprobe fails,
        then EncodeStartError, EncodeCancelled or EncodeFailed. Without a known
        total duration the encode runs but reports no progress.
        """
        cmd = self._build_command(params)
        total_duration = self._total_duration(params, probe)

        self.logger.info(f"ENCODE_START: {params.input_path.name} (encoder={self.tool}, quality={params.quality:.0f})")
        self.logger.debug(f"ENCODE_CMD: {' '.join(cmd)} (total_duration={total_duration.total_seconds():.1f}s)")

        runner = ProcessRunner(self.tool, terminate_timeout=self.terminate_timeout)
        runner.run(
            cmd,
            lambda lines: iter_progress(lines, total_duration),
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
