import subprocess
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict
from encz.domain.errors import ProbeError
from encz.domain.models import ProbeResult

class FFprobeAdapter:
    """Wrapper around ffprobe to extract video metadata."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _to_int(value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        if ":" in text:
            parts = text.split(":")
            if len(parts) in (2, 3):
                try:
                    parts_f = [float(p) for p in parts]
                except ValueError:
                    return 0.0
                if len(parts_f) == 2:
                    minutes, seconds = parts_f
                    return minutes * 60 + seconds
                hours, minutes, seconds = parts_f
                return hours * 3600 + minutes * 60 + seconds
        return 0.0

    @classmethod
    def _parse_time_base_duration(cls, duration_ts: Any, time_base: Any) -> float:
        if duration_ts is None or time_base is None:
            return 0.0
        time_base_text = str(time_base)
        if "/" not in time_base_text:
            return 0.0
        num_text, den_text = time_base_text.split("/", 1)
        num = cls._to_float(num_text)
        den = cls._to_float(den_text)
        if den == 0:
            return 0.0
        ticks = cls._to_float(duration_ts)
        if ticks <= 0:
            return 0.0
        return ticks * num / den

    @classmethod
    def _parse_ratio(cls, text: Any, separator: str, default: float) -> float:
        """Parses 'num<sep>den' strings such as '30000/1001' or '4:3'."""
        if not text or separator not in str(text):
            return default
        num_text, den_text = str(text).split(separator, 1)
        try:
            num = float(num_text)
            den = float(den_text)
        except ValueError:
            return default
        if den == 0:
            return default
        return num / den

    @classmethod
    def _resolve_duration(cls, fmt: Dict[str, Any], video_stream: Dict[str, Any]) -> float:
        # Fallback order: format.duration, format tags, stream.duration, stream tags, duration_ts/time_base
        duration = cls._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = cls._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = cls._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags", {}) or {}
            duration = cls._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = cls._parse_time_base_duration(video_stream.get("duration_ts"), video_stream.get("time_base"))
        return duration

    def probe(self, file_path: Path) -> ProbeResult:
        """Executes ffprobe and parses its JSON output into a ProbeResult."""
        cmd = [
            self.binary,
            "-v", "error",
            "-show_streams",
            "-show_format",
            "-print_format", "json",
            str(file_path)
        ]
        self.logger.debug(f"PROBE: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise ProbeError(f"failed to run {self.binary}: {exc}") from exc
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ProbeError(f"failed to parse ffprobe output for {file_path}: {exc}") from exc

        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeError(f"No video stream found in {file_path}")

        fmt = data.get("format", {}) or {}
        duration = self._resolve_duration(fmt, video_stream)
        if duration <= 0:
            # HandBrake does not need it; ffmpeg then reports no percentages
            self.logger.warning(f"PROBE: no duration found for {file_path}, progress will not be reported")
            duration = 0.0

        width = self._to_int(video_stream.get("width"))
        height = self._to_int(video_stream.get("height"))

        bitrate = self._to_int(video_stream.get("bit_rate"))
        if bitrate == 0:
            bitrate = self._to_int(fmt.get("bit_rate"))

        return ProbeResult(
            duration=timedelta(seconds=duration),
            codec=video_stream.get("codec_name", "unknown"),
            fps=self._parse_ratio(video_stream.get("r_frame_rate"), "/", 0.0),
            size_bytes=self._to_int(fmt.get("size")),
            width=width,
            height=height,
            bitrate=bitrate,
            container=Path(file_path).suffix.lstrip(".").lower(),
            aspect_ratio=width / height if height else 0.0,
            sample_aspect_ratio=self._parse_ratio(video_stream.get("sample_aspect_ratio"), ":", 1.0),
        )
