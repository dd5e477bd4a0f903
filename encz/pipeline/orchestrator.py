"""Pipeline orchestrator for a single encode job.

Resolves the input, probes it, picks the output path, builds EncodeParams and
hands them to the selected backend. Progress and the job outcome are published
on the EventBus so the terminal view stays decoupled from the pipeline.
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Tuple
from encz.domain.errors import EncodeCancelled, EncodeError, ProbeError
from encz.domain.events import JobCancelled, JobCompleted, JobFailed, JobProgressUpdated, JobStarted
from encz.domain.models import Backend, EncodeOptions, EncodeParams, EncodeProgress, ProbeResult
from encz.infrastructure.event_bus import EventBus
from encz.infrastructure.ffmpeg import FFmpegAdapter
from encz.infrastructure.ffprobe import FFprobeAdapter
from encz.infrastructure.handbrake import HandBrakeAdapter
from encz.pipeline.naming import resolve_output_path


class Orchestrator:
    """Runs one encode: input → probe → output path → backend.

    Args:
        event_bus: EventBus for publishing job lifecycle events.
        ffprobe_adapter: FFprobeAdapter for duration and dimensions.
        handbrake_adapter: HandBrakeAdapter used for Backend.HANDBRAKE.
        ffmpeg_adapter: FFmpegAdapter used for Backend.FFMPEG.
    """

    def __init__(
        self,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        handbrake_adapter: HandBrakeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
    ):
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.handbrake_adapter = handbrake_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.logger = logging.getLogger(__name__)

    def _on_progress(self, progress: EncodeProgress):
        self.event_bus.publish(JobProgressUpdated(progress=progress))

    def prepare(self, input_path: Path, options: EncodeOptions) -> Tuple[EncodeParams, ProbeResult]:
        """Resolves paths and probes the input; creates the output directory."""
        input_path = Path(input_path).expanduser().resolve()
        self.logger.debug(f"Resolved input path: {input_path}")
        if not input_path.exists():
            raise FileNotFoundError(f"no such file: {input_path}")

        probe = self.ffprobe_adapter.probe(input_path)
        self.logger.info(
            f"PROBE: {input_path.name} codec={probe.codec} {probe.width}x{probe.height} "
            f"fps={probe.fps:.2f} duration={probe.duration.total_seconds():.1f}s"
        )

        output_dir = Path(options.output_dir).expanduser().resolve() if options.output_dir else input_path.parent
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = resolve_output_path(
            input_path, output_dir, probe.width, probe.height, options.width, options.height
        )
        self.logger.debug(f"Final output path determined: {output_path}")

        if options.to_time:
            self.logger.debug(f"Calculated duration from to-from: {options.effective_duration.total_seconds():.1f}s")

        params = EncodeParams(
            input_path=input_path,
            output_path=output_path,
            quality=options.quality,
            ten_bit=options.ten_bit,
            from_time=options.from_time,
            duration=options.effective_duration,
            denoise=options.denoise,
            width=options.width,
            height=options.height,
            extra_args=options.extra_args,
        )
        return params, probe

    def run(self, input_path: Path, options: EncodeOptions,
            cancel_event: Optional[threading.Event] = None) -> Path:
        """Encodes input_path and returns the output path.

        Errors are published as JobFailed/JobCancelled and then re-raised.
        """
        try:
            params, probe = self.prepare(input_path, options)
        except (OSError, ProbeError) as exc:
            self.event_bus.publish(JobFailed(error_message=str(exc)))
            raise

        if options.denoise and options.backend != Backend.HANDBRAKE:
            self.logger.warning("Denoise is only supported by the handbrake encoder; ignoring it")

        self.event_bus.publish(JobStarted(backend=options.backend, params=params))
        try:
            if options.backend == Backend.FFMPEG:
                self.ffmpeg_adapter.encode(params, self._on_progress, cancel_event, probe=probe)
            else:
                self.handbrake_adapter.encode(params, self._on_progress, cancel_event)
        except EncodeCancelled:
            self.event_bus.publish(JobCancelled())
            raise
        except (EncodeError, ProbeError) as exc:
            self.event_bus.publish(JobFailed(error_message=str(exc)))
            raise

        try:
            output_size = params.output_path.stat().st_size
        except OSError:
            output_size = None
        self.event_bus.publish(JobCompleted(output_path=params.output_path, output_size_bytes=output_size))
        return params.output_path
