import io
import os
import sys

import pytest

from mediaconv.config import Config
from mediaconv.image import ConversionError
from mediaconv.logger import Logger
from mediaconv.session import Session
from mediaconv.video import (
    VideoProgress,
    calculate_s3_cost,
    convert_video,
    monitor_video_progress,
    run_video_conversion_with_progress,
    show_video_progress,
    video_codec_for,
)


def make_session(tmp_path, **overrides):
    stream = io.StringIO()
    settings = dict(dest_dir=str(tmp_path / "dest"), organize_by_date=False)
    settings.update(overrides)
    config = Config(**settings)
    return Session(config=config, logger=Logger(stream=stream, color=False)), stream


@pytest.mark.parametrize(
    "codec, encoder",
    [("h265", "libx265"), ("av1", "libaom-av1"), ("h264", "libx264"), ("vp9", "libx264")],
)
def test_video_codec_for(codec, encoder):
    assert video_codec_for(codec) == encoder


def test_s3_cost_zero_size_is_empty():
    assert calculate_s3_cost(0, 50) == ""


def test_s3_cost_labels_by_progress():
    partial = calculate_s3_cost(1024, 50)
    done = calculate_s3_cost(1024, 100)
    assert partial.startswith(" | Est. S3 cost: $")
    assert done.startswith(" | S3 cost: $")
    assert partial.endswith("/year") and done.endswith("/year")
    assert partial.split("$")[1] == done.split("$")[1]


def test_s3_cost_value_for_one_gigabyte():
    assert calculate_s3_cost(1024, 100) == " | S3 cost: $0.2760/year"


def test_monitor_parses_duration_time_and_speed(tmp_path):
    session, stream = make_session(tmp_path)
    lines = [
        "  Duration: 00:01:40.00, start: 0.000000",
        "frame=10 time=00:00:50.00 speed=2.0x",
        "progress=end",
        "trailing line",
    ]
    progress = monitor_video_progress(session, lines, str(tmp_path / "none.mov"), "clip.mov")
    assert progress.total_duration == 100
    assert progress.current_time == 50
    assert progress.speed == 2.0
    assert progress.output == lines[:3]
    assert progress.captured_text == "".join(line + "\n" for line in lines[:3])
    text = stream.getvalue()
    assert "📹 clip.mov (0.0 MB) - converting..." in text
    assert "50.0%" in text
    assert "clip.mov completed in" in text


def test_monitor_truncates_fractional_seconds(tmp_path):
    session, _ = make_session(tmp_path)
    progress = monitor_video_progress(
        session, ["Duration: 00:00:10.75", "time=00:00:03.99"], "missing.mov", "a.mov"
    )
    assert progress.total_duration == 10
    assert progress.current_time == 3


def test_monitor_keeps_first_duration(tmp_path):
    session, _ = make_session(tmp_path)
    progress = monitor_video_progress(
        session, ["Duration: 00:00:20.00", "Duration: 00:00:40.00"], "missing.mov", "a.mov"
    )
    assert progress.total_duration == 20


def test_show_progress_without_duration_logs_nothing(tmp_path):
    session, stream = make_session(tmp_path)
    show_video_progress(session, VideoProgress(filename="a.mov", current_time=5))
    assert stream.getvalue() == ""


def test_show_progress_caps_at_full(tmp_path):
    session, stream = make_session(tmp_path)
    progress = VideoProgress(filename="dir/a.mov", total_duration=10, current_time=30)
    show_video_progress(session, progress)
    show_video_progress(session, progress)
    text = stream.getvalue()
    assert "[" + "█" * 30 + "] 100.0%" in text
    assert text.count("converting...") == 1
    assert progress.progress_shown is True


def test_run_reports_ffmpeg_error(tmp_path):
    session, _ = make_session(tmp_path)
    command = [sys.executable, "-c", "import sys; sys.stderr.write('bad input\\n'); sys.exit(3)"]
    with pytest.raises(ConversionError) as info:
        run_video_conversion_with_progress(session, command, "missing.mov", "a.mov")
    assert "FFmpeg Error: bad input" in str(info.value)


def test_run_succeeds_and_reports_completion(tmp_path):
    session, stream = make_session(tmp_path)
    script = (
        "import sys\n"
        "sys.stderr.write('Duration: 00:00:10.00\\n')\n"
        "sys.stderr.write('time=00:00:10.00 speed=1.0x\\n')\n"
        "sys.stderr.write('progress=end\\n')\n"
    )
    run_video_conversion_with_progress(session, [sys.executable, "-c", script], "x.mov", "x.mov")
    assert "x.mov completed in" in stream.getvalue()


def test_run_missing_program(tmp_path):
    session, _ = make_session(tmp_path)
    with pytest.raises(ConversionError, match="failed to start ffmpeg"):
        run_video_conversion_with_progress(
            session, [str(tmp_path / "no-such-program")], "x.mov", "x.mov"
        )


def test_run_times_out(tmp_path):
    session, _ = make_session(tmp_path, conversion_timeout_video=0.5)
    command = [sys.executable, "-c", "import time; time.sleep(10)"]
    with pytest.raises(ConversionError, match="timed out"):
        run_video_conversion_with_progress(session, command, "x.mov", "x.mov")


def test_convert_video_dry_run_plans_without_writing(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    clip = source / "my clip.mov"
    clip.write_bytes(b"not really a video")
    session, stream = make_session(tmp_path, dry_run=True)

    output = convert_video(session, str(clip))

    assert os.path.dirname(output) == os.path.join(str(tmp_path / "dest"), "videos")
    assert output.endswith("_my_clip_001.mp4")
    assert not os.path.exists(output)
    assert "[DRY-RUN] Would convert: my clip.mov" in stream.getvalue()
    assert clip.exists()


def test_convert_video_missing_input_raises(tmp_path):
    session, stream = make_session(tmp_path)
    with pytest.raises(ConversionError, match="unable to determine file date"):
        convert_video(session, str(tmp_path / "absent.mov"))
    assert "Could not extract date from absent.mov" in stream.getvalue()