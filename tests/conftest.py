import io
import pytest
import yaml
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock
from encz.config.models import AppConfig
from encz.domain.models import EncodeParams, ProbeResult
from encz.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "encoder": "handbrake",
            "quality": 35,
            "ten_bit": True,
            "denoise": False,
            "terminate_timeout_s": 1.0,
            "debug": False,
        },
        handbrake={"binary": "HandBrakeCLI"},
        ffmpeg={"binary": "ffmpeg", "stats_period": 3},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "encz.yaml"

    content = {
        'general': {
            'encoder': 'ffmpeg',
            'quality': 28,
            'ten_bit': False,
            'denoise': False,
            'debug': False,
        },
        'handbrake': {
            'encoder_10bit': 'x265_10bit',
            'encoder_8bit': 'x265',
        },
        'ffmpeg': {
            'video_codec': 'libx265',
            'stats_period': 1,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Encode Fixtures
# ============================================================================

@pytest.fixture
def encode_params(tmp_path):
    """EncodeParams for a dummy input inside tmp_path."""
    input_file = tmp_path / "movie.mkv"
    input_file.write_bytes(b"dummy video content")
    return EncodeParams(
        input_path=input_file,
        output_path=tmp_path / "movie [x265].mkv",
        quality=35,
    )

@pytest.fixture
def probe_result():
    return ProbeResult(
        duration=timedelta(seconds=100),
        codec="h264",
        fps=29.97,
        size_bytes=50_000_000,
        width=1920,
        height=1080,
        bitrate=4_000_000,
        container="mkv",
        aspect_ratio=1920 / 1080,
        sample_aspect_ratio=1.0,
    )

@pytest.fixture
def fake_process():
    """Factory for a Popen stand-in whose stdout/stderr are byte streams."""
    def _make(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
        process = MagicMock()
        process.pid = 4242
        process.stdout = io.BytesIO(stdout)
        process.stderr = io.BytesIO(stderr)
        process.poll.return_value = returncode
        process.wait.return_value = returncode
        process.returncode = returncode
        return process
    return _make

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that start real subprocesses"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
