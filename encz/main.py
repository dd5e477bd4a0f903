import logging
import signal
import threading
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional

import typer
import yaml
from pydantic import ValidationError

from encz.config.loader import DEFAULT_CONFIG_PATH, load_config
from encz.config.models import AppConfig
from encz.domain.errors import EncodeCancelled, EncodeError, ProbeError
from encz.domain.models import Backend, EncodeOptions
from encz.infrastructure.event_bus import EventBus
from encz.infrastructure.ffmpeg import FFmpegAdapter
from encz.infrastructure.ffprobe import FFprobeAdapter
from encz.infrastructure.handbrake import HandBrakeAdapter
from encz.infrastructure.logging import setup_logging
from encz.pipeline.orchestrator import Orchestrator
from encz.ui.progress import ProgressView
from encz.utils.numbers import parse_compact_duration
from encz.version import __version__

app = typer.Typer(help="encz - x265 encoding front end for HandBrakeCLI and ffmpeg")


def _fail(message: str):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _parse_duration(flag: str, value: Optional[str]) -> timedelta:
    """Parses --from/--to/--duration values such as 5m30s, 1h30m, 300s or 1500ms."""
    if value is None or value.strip() == "0":
        return timedelta(0)
    parsed = parse_compact_duration(value)
    if parsed is None:
        _fail(f"invalid duration for {flag}: {value!r} (expected e.g. 5m30s, 1h30m, 300s, 1500ms)")
    return parsed


def _load_app_config(config_path: Optional[Path]) -> AppConfig:
    if config_path is not None:
        return load_config(config_path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return AppConfig()


@contextmanager
def cancel_on_signals(cancel_event: threading.Event) -> Iterator[threading.Event]:
    """Sets cancel_event on SIGINT/SIGTERM while the block runs."""
    def _handler(signum, _frame):
        cancel_event.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # Not the main thread; rely on KeyboardInterrupt instead
            continue
    try:
        yield cancel_event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@app.command(context_settings={"ignore_unknown_options": True})
def encode(
    video_path: Optional[Path] = typer.Argument(None, help="Video file to encode"),
    extra_args: Optional[List[str]] = typer.Argument(
        None,
        help="Extra arguments passed verbatim to the encoder (use -- before options)"
    ),
    version: bool = typer.Option(False, "--version", help="Show version information and exit"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH} if present)"),
    encoder: Optional[Backend] = typer.Option(None, "--encoder", "-e", case_sensitive=False, help="Encoder engine (handbrake or ffmpeg)"),
    quality: Optional[float] = typer.Option(None, "--quality", "-q", help="x265 quality factor"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory to save encoded files (default: next to the input)"),
    denoise: Optional[bool] = typer.Option(None, "--denoise/--no-denoise", help="Enable denoise filter (HandBrake only)"),
    ten_bit: Optional[bool] = typer.Option(None, "--10bit/--8bit", help="Encode using the 10-bit or 8-bit profile"),
    from_time: Optional[str] = typer.Option(None, "--from", help="Start encoding from this time (e.g. 5m30s, 1h30m, 300s, 1500ms)"),
    to_time: Optional[str] = typer.Option(None, "--to", help="End encoding at this time (e.g. 10m, 1h30m, 420s)"),
    duration: Optional[str] = typer.Option(None, "--duration", help="Encoding duration (e.g. 10m, 1h30m, 420s)"),
    width: int = typer.Option(0, "--width", min=0, help="Output video width"),
    height: int = typer.Option(0, "--height", min=0, help="Output video height"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Also write logs to this file"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Encode one video to x265 with HandBrakeCLI or ffmpeg, showing live progress."""
    if version:
        typer.echo(__version__)
        raise typer.Exit()

    if video_path is None:
        _fail("video path is required")

    try:
        config = _load_app_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        _fail(str(exc))

    # Apply CLI overrides
    if encoder is not None: config.general.encoder = encoder
    if quality is not None: config.general.quality = quality
    if output_dir is not None: config.general.output_dir = str(output_dir)
    if denoise is not None: config.general.denoise = denoise
    if ten_bit is not None: config.general.ten_bit = ten_bit
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    try:
        options = EncodeOptions(
            backend=config.general.encoder,
            quality=config.general.quality,
            output_dir=Path(config.general.output_dir) if config.general.output_dir else None,
            denoise=config.general.denoise,
            ten_bit=config.general.ten_bit,
            from_time=_parse_duration("--from", from_time),
            to_time=_parse_duration("--to", to_time),
            duration=_parse_duration("--duration", duration),
            width=width,
            height=height,
            extra_args=list(extra_args or []),
        )
    except ValidationError as exc:
        _fail("; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors()))

    logger = setup_logging(
        debug=config.general.debug,
        log_path=Path(config.general.log_path) if config.general.log_path else None,
    )
    logger.debug(f"Starting encoding: {video_path} options={options.model_dump()}")

    bus = EventBus()
    ffprobe = FFprobeAdapter(binary=config.ffprobe.binary)
    orchestrator = Orchestrator(
        event_bus=bus,
        ffprobe_adapter=ffprobe,
        handbrake_adapter=HandBrakeAdapter(config.handbrake, terminate_timeout=config.general.terminate_timeout_s),
        ffmpeg_adapter=FFmpegAdapter(config.ffmpeg, ffprobe=ffprobe, terminate_timeout=config.general.terminate_timeout_s),
    )

    try:
        with ProgressView(bus), cancel_on_signals(threading.Event()) as cancel_event:
            orchestrator.run(video_path, options, cancel_event)

    except (EncodeCancelled, KeyboardInterrupt):
        logger.info("Encoding cancelled by user")
        typer.secho("\n✓ Encoding cancelled by user", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except (EncodeError, ProbeError, OSError) as exc:
        # Already reported by the progress view through JobFailed
        logger.debug(f"Encoding failed: {exc}")
        raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        logging.getLogger(__name__).exception("Unexpected error")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
