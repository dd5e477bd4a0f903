from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from encz.utils.numbers import bytes_to_mb, format_compact_duration, round_to


class Backend(str, Enum):
    HANDBRAKE = "handbrake"
    FFMPEG = "ffmpeg"


class EncodeProgress(BaseModel):
    """One progress snapshot reported by an encoder backend."""

    model_config = ConfigDict(frozen=True)

    percent: float = 0.0
    speed: float = 0.0  # average fps
    eta: timedelta = timedelta(0)
    current_size: int = 0  # bytes

    @property
    def encoded_mb(self) -> float:
        return bytes_to_mb(self.current_size)

    @property
    def estimated_mb(self) -> float:
        """Projected final size in MB, 0 until some progress is known."""
        if self.percent == 0:
            return 0.0
        return round_to(self.encoded_mb / (self.percent / 100), 1)

    def __str__(self) -> str:
        return (
            f"{self.speed:3.1f}fps, {self.encoded_mb:3.1f}MB/{self.estimated_mb:3.1f}MB "
            f"({self.percent:.1f}%) ETA: {format_compact_duration(self.eta)}"
        )


class EncodeParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_path: Path
    output_path: Path
    quality: float
    ten_bit: bool = True
    from_time: timedelta = timedelta(0)
    duration: timedelta = timedelta(0)
    denoise: bool = False  # HandBrake only
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    extra_args: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_offsets(self):
        if self.from_time < timedelta(0) or self.duration < timedelta(0):
            raise ValueError("from_time and duration must not be negative")
        return self


class ProbeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: timedelta
    codec: str
    fps: float = 0.0
    size_bytes: int = 0
    width: int = 0
    height: int = 0
    bitrate: int = 0
    container: str = ""
    aspect_ratio: float = 0.0
    sample_aspect_ratio: float = 1.0

    @property
    def is_vertical(self) -> bool:
        return self.width < self.height


class EncodeOptions(BaseModel):
    """Encode request as given on the command line, before probing."""

    backend: Backend = Backend.HANDBRAKE
    quality: float = Field(default=35, ge=0, le=100)
    output_dir: Optional[Path] = None
    denoise: bool = False
    ten_bit: bool = True
    from_time: timedelta = timedelta(0)
    to_time: timedelta = timedelta(0)
    duration: timedelta = timedelta(0)
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    extra_args: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_time_range(self):
        if self.duration > timedelta(0) and self.to_time > timedelta(0):
            raise ValueError("cannot specify both --duration and --to")
        if self.to_time > timedelta(0) and self.to_time <= self.from_time:
            raise ValueError("--to time must be after --from time")
        return self

    @property
    def effective_duration(self) -> timedelta:
        if self.to_time > timedelta(0):
            return self.to_time - self.from_time
        return self.duration
