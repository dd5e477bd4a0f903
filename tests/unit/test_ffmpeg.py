import threading
import pytest
from datetime import timedelta
from unittest.mock import patch, MagicMock
from encz.config.models import FFmpegConfig
from encz.domain.errors import EncodeCancelled, EncodeFailed
from encz.domain.models import EncodeParams
from encz.infrastructure.ffmpeg import FFmpegAdapter, FFmpegProgressState, iter_progress


def fake_clock(times):
    values = iter(times)
    return lambda: next(values)


def test_out_time_ms_is_microseconds():
    state = FFmpegProgressState()
    progress = state.feed("out_time_ms=50000000", timedelta(seconds=100), now=0.0)

    assert progress is not None
    assert progress.percent == 50.0


def test_percent_rounded_to_two_decimals():
    state = FFmpegProgressState()
    progress = state.feed("out_time_ms=1234567", timedelta(seconds=7), now=0.0)
    assert progress.percent == 17.64


def test_percent_clamped_to_range():
    state = FFmpegProgressState()
    assert state.feed("out_time_ms=250000000", timedelta(seconds=100), now=0.0).percent == 100.0
    assert state.feed("out_time_ms=-5000", timedelta(seconds=100), now=0.0).percent == 0.0


def test_no_snapshot_without_total_duration():
    state = FFmpegProgressState()
    assert state.feed("out_time_ms=1000000", timedelta(0), now=0.0) is None


@pytest.mark.parametrize("line", [
    "frame=120",
    "bitrate=1200.5kbits/s",
    "out_time=00:00:04.000000",
    "out_time_ms=N/A",
    "speed=1.2x",
    "progress=end",
    "",
])
def test_lines_without_output_time_yield_nothing(line):
    state = FFmpegProgressState()
    assert state.feed(line, timedelta(seconds=100), now=0.0) is None


def test_fields_carry_over_between_snapshots():
    state = FFmpegProgressState()
    state.feed("fps=29.97", timedelta(seconds=10), now=0.0)
    state.feed("total_size=4096", timedelta(seconds=10), now=0.0)

    first = state.feed("out_time_ms=1000000", timedelta(seconds=10), now=0.0)
    state.feed("fps=garbage", timedelta(seconds=10), now=0.0)
    second = state.feed("out_time_ms=2000000", timedelta(seconds=10), now=0.0)

    assert first.speed == 29.97 and first.current_size == 4096
    assert second.speed == 29.97 and second.current_size == 4096
    assert second.percent == 20.0


def test_eta_zero_until_first_progress_block():
    state = FFmpegProgressState()
    progress = state.feed("out_time_ms=25000000", timedelta(seconds=100), now=5.0)
    assert progress.eta == timedelta(0)


def test_eta_from_wall_clock():
    lines = [
        "fps=30.0", "total_size=1048576", "out_time_ms=25000000", "progress=continue",
        "fps=31.5", "total_size=2097152", "out_time_ms=50000000", "progress=continue",
    ]
    clock = fake_clock([0, 0, 0, 10, 12, 12, 20.5, 20.5])
    snapshots = list(iter_progress(lines, timedelta(seconds=100), clock=clock))

    assert len(snapshots) == 2
    assert snapshots[0].percent == 25.0
    assert snapshots[0].eta == timedelta(0)
    assert snapshots[1].percent == 50.0
    assert snapshots[1].speed == 31.5
    assert snapshots[1].current_size == 2097152
    # 10.5s elapsed at 50% leaves 10.5s, truncated to whole seconds
    assert snapshots[1].eta == timedelta(seconds=10)


def test_eta_zero_at_completion():
    state = FFmpegProgressState(started_at=0.0)
    progress = state.feed("out_time_ms=100000000", timedelta(seconds=100), now=60.0)
    assert progress.percent == 100.0
    assert progress.eta == timedelta(0)


def test_build_command_seek_before_input(tmp_path):
    params = EncodeParams(
        input_path=tmp_path / "Holiday.mkv",
        output_path=tmp_path / "Holiday [x265].mkv",
        quality=35,
        from_time=timedelta(minutes=5, seconds=30),
        duration=timedelta(minutes=10),
    )
    cmd = FFmpegAdapter()._build_command(params)

    assert cmd[:6] == ["ffmpeg", "-y", "-progress", "pipe:1", "-stats_period", "3"]
    input_index = cmd.index("-i")
    assert cmd.index("-ss") < input_index
    assert cmd.index("-t") < input_index
    assert cmd[cmd.index("-ss") + 1] == "330"
    assert cmd[cmd.index("-t") + 1] == "600"
    assert cmd[input_index + 1] == str(params.input_path)
    assert cmd[cmd.index("-c:v") + 1] == "hevc_videotoolbox"
    assert cmd[cmd.index("-q:v") + 1] == "35"
    assert cmd[cmd.index("-profile:v") + 1] == "main10"
    assert cmd[cmd.index("-map_metadata") + 1] == "0"
    assert "title=Holiday" in cmd
    assert "-vf" not in cmd
    assert cmd[-1] == str(params.output_path)


def test_build_command_without_seek(encode_params):
    cmd = FFmpegAdapter()._build_command(encode_params)
    assert "-ss" not in cmd
    assert "-t" not in cmd


def test_build_command_8bit_and_extra_args(tmp_path):
    params = EncodeParams(
        input_path=tmp_path / "in.mp4",
        output_path=tmp_path / "out.mp4",
        quality=50,
        ten_bit=False,
        extra_args=["-c:a", "copy"],
    )
    cmd = FFmpegAdapter(FFmpegConfig(video_codec="libx265", stats_period=0.5))._build_command(params)

    assert cmd[cmd.index("-stats_period") + 1] == "0.5"
    assert cmd[cmd.index("-c:v") + 1] == "libx265"
    assert cmd[cmd.index("-profile:v") + 1] == "main"
    assert cmd[-3:] == [str(params.output_path), "-c:a", "copy"]


@pytest.mark.parametrize("width,height,expected", [
    (1920, 1080, "scale=1920:1080:force_original_aspect_ratio=decrease"),
    (1280, 0, "scale=1280:-2"),
    (0, 720, "scale=-2:720"),
    (0, 0, None),
])
def test_scale_filter(width, height, expected):
    assert FFmpegAdapter._scale_filter(width, height) == expected


def test_build_command_with_scale(tmp_path):
    params = EncodeParams(
        input_path=tmp_path / "in.mp4",
        output_path=tmp_path / "out.mp4",
        quality=35,
        height=720,
    )
    cmd = FFmpegAdapter()._build_command(params)
    assert cmd[cmd.index("-vf") + 1] == "scale=-2:720"
    assert cmd.index("-vf") < cmd.index(str(params.output_path))


def test_total_duration_prefers_requested_duration(encode_params, probe_result):
    ffprobe = MagicMock()
    params = encode_params.model_copy(update={"duration": timedelta(seconds=42)})

    adapter = FFmpegAdapter(ffprobe=ffprobe)
    assert adapter._total_duration(params, probe_result) == timedelta(seconds=42)
    ffprobe.probe.assert_not_called()


def test_total_duration_subtracts_start_offset(encode_params, probe_result):
    params = encode_params.model_copy(update={"from_time": timedelta(seconds=30)})
    assert FFmpegAdapter()._total_duration(params, probe_result) == timedelta(seconds=70)


def test_total_duration_never_negative(encode_params, probe_result):
    params = encode_params.model_copy(update={"from_time": timedelta(seconds=500)})
    assert FFmpegAdapter()._total_duration(params, probe_result) == timedelta(0)


def test_total_duration_probes_when_needed(encode_params, probe_result):
    ffprobe = MagicMock()
    ffprobe.probe.return_value = probe_result

    adapter = FFmpegAdapter(ffprobe=ffprobe)
    assert adapter._total_duration(encode_params, None) == timedelta(seconds=100)
    ffprobe.probe.assert_called_once_with(encode_params.input_path)


def test_encode_delivers_progress(encode_params, probe_result, fake_process):
    stdout = (
        b"frame=10\nfps=24.0\ntotal_size=1048576\nout_time_ms=10000000\nprogress=continue\n"
        b"frame=20\nfps=25.0\ntotal_size=2097152\nout_time_ms=100000000\nprogress=end\n"
    )
    process = fake_process(stdout=stdout)
    received = []

    with patch("subprocess.Popen", return_value=process) as mock_popen:
        FFmpegAdapter().encode(encode_params, on_progress=received.append, probe=probe_result)

    cmd = mock_popen.call_args[0][0]
    assert cmd[0] == "ffmpeg"
    assert [p.percent for p in received] == [10.0, 100.0]
    assert received[-1].current_size == 2097152
    assert received[-1].eta == timedelta(0)


def test_encode_failure_carries_stderr_tail(encode_params, probe_result, fake_process):
    stdout = b"fps=24.0\nout_time_ms=10000000\nprogress=continue\n"
    stderr = b"Input #0, matroska\nConversion failed!\n"
    process = fake_process(stdout=stdout, stderr=stderr, returncode=1)
    received = []

    with patch("subprocess.Popen", return_value=process):
        with pytest.raises(EncodeFailed) as exc_info:
            FFmpegAdapter().encode(encode_params, on_progress=received.append, probe=probe_result)

    assert received and received[0].percent == 10.0
    assert exc_info.value.stderr_tail[-1] == "Conversion failed!"
    assert str(exc_info.value) == "ffmpeg exited with code 1: Conversion failed!"


def test_encode_cancelled_before_start(encode_params, probe_result):
    cancel_event = threading.Event()
    cancel_event.set()

    with patch("subprocess.Popen") as mock_popen:
        with pytest.raises(EncodeCancelled):
            FFmpegAdapter().encode(encode_params, cancel_event=cancel_event, probe=probe_result)

    mock_popen.assert_not_called()


def test_encode_with_unknown_duration_reports_nothing(encode_params, probe_result, fake_process):
    stdout = b"fps=24.0\nout_time_ms=10000000\nprogress=continue\nout_time_ms=20000000\nprogress=end\n"
    unknown = probe_result.model_copy(update={"duration": timedelta(0)})
    received = []

    with patch("subprocess.Popen", return_value=fake_process(stdout=stdout)) as mock_popen:
        FFmpegAdapter().encode(encode_params, on_progress=received.append, probe=unknown)

    mock_popen.assert_called_once()
    assert received == []
