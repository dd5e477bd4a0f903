import logging
import os
import re
import threading
from datetime import timedelta
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple
from encz.config.models import HandBrakeConfig
from encz.domain.models import EncodeParams, EncodeProgress
from encz.infrastructure.process import ProcessRunner, ProgressCallback
from encz.utils.numbers import parse_compact_duration, round_to

# Encoding: task 1 of 1, 42.50 % (7.30 fps, avg 6.90 fps, ETA 00h01m30s)
PROGRESS_RE = re.compile(
    r"Encoding: task \d+ of \d+, ([\d.]+) %"
    r"(?:\s*\([^,]+,\s*avg\s+([\d.]+)\s*fps,\s*ETA\s+([^)]+)\))?"
)


def _output_size(output_path: Path) -> int:
    try:
        return os.stat(output_path).st_size
    except OSError:
        # HandBrake may not have created the file yet
        return 0


def parse_progress(line: str, output_path: Path) -> Tuple[EncodeProgress, bool]:
    """Extracts progress from one HandBrakeCLI output line.

    Percent is always present on a matching line; average fps and ETA only
    appear once HandBrake has enough samples and default to zero otherwise.
    HandBrake does not report the output size, so the output file is stat'ed.
    """
    match = PROGRESS_RE.search(line)
    if not match:
        return EncodeProgress(), False

    try:
        percent = float(match.group(1))
    except ValueError:
        percent = 0.0

    speed = 0.0
    eta = timedelta(0)
    if match.group(2):
        try:
            speed = float(match.group(2))
        except ValueError:
            speed = 0.0
        eta = parse_compact_duration(match.group(3)) or timedelta(0)

    return EncodeProgress(
        percent=round_to(percent, 1),
        speed=speed,
        eta=eta,
        current_size=_output_size(output_path),
    ), True


def iter_progress(lines: Iterable[str], output_path: Path) -> Iterator[EncodeProgress]:
    """Yields a snapshot for every progress line, skipping everything else."""
    for line in lines:
        progress, matched = parse_progress(line, output_path)
        if matched:
            yield progress


class HandBrakeAdapter:
    """Wrapper around HandBrakeCLI for video encoding."""

    tool = "handbrake"

    def __init__(self, config: Optional[HandBrakeConfig] = None, terminate_timeout: float = 3.0):
        self.config = config or HandBrakeConfig()
        self.terminate_timeout = terminate_timeout
        self.logger = logging.getLogger(__name__)

    def _build_command(self, params: EncodeParams) -> List[str]:
        """Constructs the HandBrakeCLI command line arguments."""
        cfg = self.config
        encoder = cfg.encoder_10bit if params.ten_bit else cfg.encoder_8bit

        cmd = [
            cfg.binary,
            "--format", cfg.format,
            "--input", str(params.input_path),
            "--output", str(params.output_path),
            "--optimize",
            "--encoder", encoder,
            "--quality", f"{params.quality:.0f}",
            "--vfr",
            "--aencoder", cfg.audio_encoder,
            "--ab", str(cfg.audio_bitrate),
            "--non-anamorphic",
            "--verbose", str(cfg.verbosity),
        ]

        if params.from_time > timedelta(0):
            cmd.extend(["--start-at", f"duration:{params.from_time.total_seconds():.1f}"])
        if params.duration > timedelta(0):
            cmd.extend(["--stop-at", f"duration:{params.duration.total_seconds():.1f}"])

        if params.denoise:
            cmd.extend(["--hqdn3d", cfg.denoise_strength])

        # HandBrake keeps the aspect ratio itself when only one side is given
        if params.width > 0:
            cmd.extend(["--width", str(params.width)])
        if params.height > 0:
            cmd.extend(["--height", str(params.height)])

        cmd.extend(params.extra_args)
        return cmd

    def encode(self, params: EncodeParams, on_progress: Optional[ProgressCallback] = None,
               cancel_event: Optional[threading.Event] = None):
        """Runs HandBrakeCLI and blocks until it exits.

        Raises EncodeStartError, EncodeCancelled or EncodeFailed.
        """
        cmd = self._build_command(params)
        self.logger.info(f"ENCODE_START: {params.input_path.name} (encoder={self.tool}, quality={params.quality:.0f})")
        self.logger.debug(f"ENCODE_CMD: {' '.join(cmd)}")

        runner = ProcessRunner(self.tool, terminate_timeout=self.terminate_timeout)
        runner.run(
            cmd,
            lambda lines: iter_progress(lines, params.output_path),
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
