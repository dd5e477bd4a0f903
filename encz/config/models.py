from typing import Optional
from pydantic import BaseModel, Field, field_validator
from encz.domain.models import Backend

class GeneralConfig(BaseModel):
    encoder: Backend = Backend.HANDBRAKE
    quality: float = Field(default=35, ge=0, le=100)
    ten_bit: bool = True
    denoise: bool = False  # HandBrake only
    output_dir: Optional[str] = None
    log_path: Optional[str] = None
    terminate_timeout_s: float = Field(default=3.0, gt=0)  # SIGTERM -> SIGKILL grace period
    debug: bool = False

class HandBrakeConfig(BaseModel):
    """HandBrakeCLI invocation settings."""
    binary: str = "HandBrakeCLI"
    format: str = "av_mp4"
    encoder_8bit: str = "vt_h265"
    encoder_10bit: str = "vt_h265_10bit"
    audio_encoder: str = "ac3"
    audio_bitrate: int = Field(default=160, gt=0)  # kbps
    denoise_strength: str = "light"
    verbosity: int = Field(default=1, ge=0)

    @field_validator("denoise_strength")
    @classmethod
    def validate_denoise_strength(cls, v: str) -> str:
        allowed = {"ultralight", "light", "medium", "strong"}
        if v not in allowed:
            raise ValueError(f"Unsupported denoise strength: {v}. Use one of {sorted(allowed)}")
        return v

class FFmpegConfig(BaseModel):
    """ffmpeg invocation settings."""
    binary: str = "ffmpeg"
    video_codec: str = "hevc_videotoolbox"
    profile_8bit: str = "main"
    profile_10bit: str = "main10"
    stats_period: float = Field(default=3.0, gt=0)  # seconds between progress blocks

class FFprobeConfig(BaseModel):
    binary: str = "ffprobe"

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    handbrake: HandBrakeConfig = Field(default_factory=HandBrakeConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    ffprobe: FFprobeConfig = Field(default_factory=FFprobeConfig)
