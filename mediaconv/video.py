"""Conversion of a single video to MP4 with ffmpeg, with progress reporting."""

from __future__ import annotations

import dataclasses
import os
import re
import subprocess
import threading
import time
from typing import Iterable

from mediaconv.image import ConversionError
from mediaconv.security import SecurityError
from mediaconv.session import Session, format_duration
from mediaconv.utils import (
    clean_filename,
    create_destination_path,
    ensure_dir,
    file_extension,
    get_file_date,
)

_MB = 1024 * 1024
_BAR_WIDTH = 30
_UPDATE_INTERVAL = 30.0

_TIME_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2}\.\d{2})")
_SPEED_RE = re.compile(r"speed=\s*([0-9.]+)x")
_DURATION_RE = re.compile(r"Duration: (\d{2}):(\d{2}):(\d{2}\.\d{2})")

_CODECS = {"h265": "libx265", "av1": "libaom-av1"}


@dataclasses.dataclass
class VideoProgress:
    """Progress of one ffmpeg run as read from its stderr.

    Durations are whole seconds; ``start_time`` and ``last_update`` are
    ``time.monotonic()`` readings.
    """

    filename: str
    file_size_mb: float = 0.0
    total_duration: float = 0.0
    current_time: float = 0.0
    speed: float = 0.0
    start_time: float = dataclasses.field(default_factory=time.monotonic)
    last_update: float = dataclasses.field(default_factory=time.monotonic)
    progress_shown: bool = False
    output: list = dataclasses.field(default_factory=list)

    @property
    def captured_text(self) -> str:
        """The stderr lines seen so far, each ending with a newline."""
        return "".join(line + "\n" for line in self.output)


def video_codec_for(codec: str) -> str:
    """Map a codec setting to the ffmpeg encoder name; unknown values use libx264."""
    return _CODECS.get(codec, "libx264")


def _whole_seconds(match: re.Match) -> float:
    hours, minutes, seconds = int(match.group(1)), int(match.group(2)), float(match.group(3))
    return float(int(hours * 3600 + minutes * 60 + seconds))


def _parse_speed(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _reduction_percent(original: int, new: int) -> int:
    if original <= 0:
        return 0
    diff = (original - new) * 100
    quotient = abs(diff) // original
    return quotient if diff >= 0 else -quotient


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def show_video_progress(session: Session, progress: VideoProgress) -> None:
    """Log a progress bar for a video whose total duration is known."""
    if progress.total_duration == 0:
        return

    percent = min(progress.current_time / progress.total_duration * 100, 100.0)
    filled = int(percent / 100 * _BAR_WIDTH)
    bar = "█" * filled + "░" * (_BAR_WIDTH - filled)

    eta = "--:--"
    if progress.speed > 0 and percent > 5:
        elapsed = time.monotonic() - progress.start_time
        remaining = elapsed / (percent / 100) - elapsed
        if remaining > 0:
            eta = format_duration(remaining)

    name = os.path.basename(progress.filename)
    if not progress.progress_shown:
        session.logger.info(f"📹 {name} ({progress.file_size_mb:.1f} MB) - converting...")
        progress.progress_shown = True

    session.logger.info(
        f"   {name}: [{bar}] {percent:.1f}% ({progress.speed:.1f}x, ETA: {eta})"
    )


def _show_video_completion(session: Session, progress: VideoProgress) -> None:
    elapsed = time.monotonic() - progress.start_time
    session.logger.success(
        f"✅ {os.path.basename(progress.filename)} completed in {format_duration(elapsed)}"
    )


def monitor_video_progress(session: Session, lines: Iterable[str], input_path: str,
                           filename: str) -> VideoProgress:
    """Read ffmpeg stderr lines, report progress, and stop at ``progress=end``.

    Returns the progress state, whose ``output`` holds every line read.
    """
    try:
        size_mb = os.stat(input_path).st_size / _MB
    except OSError:
        size_mb = 0.0

    progress = VideoProgress(filename=filename, file_size_mb=size_mb)

    for line in lines:
        progress.output.append(line)

        if progress.total_duration == 0:
            match = _DURATION_RE.search(line)
            if match:
                progress.total_duration = _whole_seconds(match)

        match = _TIME_RE.search(line)
        if match:
            progress.current_time = _whole_seconds(match)

        match = _SPEED_RE.search(line)
        if match:
            progress.speed = _parse_speed(match.group(1))

        if time.monotonic() - progress.last_update > _UPDATE_INTERVAL:
            show_video_progress(session, progress)
            progress.last_update = time.monotonic()

        if "progress=end" in line:
            show_video_progress(session, progress)
            _show_video_completion(session, progress)
            break

    return progress


def _stderr_lines(stream) -> Iterable[str]:
    for line in stream:
        line = line[:-1] if line.endswith("\n") else line
        yield line[:-1] if line.endswith("\r") else line


def run_video_conversion_with_progress(session: Session, command, input_path: str,
                                       filename: str) -> None:
    """Run an ffmpeg command, monitoring its stderr; raise ConversionError on failure."""
    timeout = session.config.conversion_timeout_video
    try:
        process = subprocess.Popen(
            list(command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as err:
        raise ConversionError(f"failed to start ffmpeg: {err}") from err

    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        process.kill()

    timer = threading.Timer(timeout, _kill)
    timer.daemon = True
    timer.start()
    try:
        with process.stderr:
            progress = monitor_video_progress(
                session, _stderr_lines(process.stderr), input_path, filename
            )
            for _ in process.stderr:
                pass
        returncode = process.wait()
    finally:
        timer.cancel()

    if returncode == 0 and not timed_out.is_set():
        return

    if timed_out.is_set():
        message = f"timed out after {timeout:g}s"
    else:
        message = f"exit status {returncode}"
    stderr_text = progress.captured_text.strip()
    if stderr_text:
        message += f" - FFmpeg Error: {stderr_text}"
    raise ConversionError(message)


def convert_video(session: Session, input_path: str) -> str:
    """Convert one video to MP4 in the destination tree and return the output path.

    An existing valid output is kept and counted as skipped; in dry-run mode
    the planned path is returned without converting.
    """
    config, logger, security, stats = session.config, session.logger, session.security, session.stats
    filename = os.path.basename(input_path)
    ext = file_extension(filename)
    name = filename[: len(filename) - len(ext)] if ext else filename

    try:
        file_date = get_file_date(input_path)
    except (OSError, ValueError) as err:
        logger.warn(f"Could not extract date from {filename}: {err} - skipping file")
        raise ConversionError(f"unable to determine file date: {err}") from err

    dest_path = create_destination_path(config.dest_dir, file_date, "video", config.organize_by_date)
    try:
        ensure_dir(dest_path)
    except OSError as err:
        raise ConversionError(f"failed to create destination directory: {err}") from err

    clean_name = clean_filename(name, "mp4", file_date, 1)
    output_path = os.path.join(dest_path, clean_name)

    if os.path.exists(output_path):
        if not security.is_file_corrupted(output_path, "video"):
            logger.info(f"📹 {filename} -> {clean_name} (already exists and valid, skipping)")
            stats.increment("skipped_files")
            return output_path
        logger.warn(f"📹 {filename} -> {clean_name} (corrupted file detected, re-converting)")
        _remove_quietly(output_path)
        stats.increment("recovered_files")

    temp_path = output_path + ".tmp"

    if config.dry_run:
        logger.info(f"[DRY-RUN] Would convert: {filename} → {clean_name}")
        return output_path

    try:
        security.create_processing_marker(output_path)
    except (OSError, SecurityError) as err:
        logger.warn(f"Failed to create processing marker: {err}")

    command = [
        "ffmpeg", "-i", input_path,
        "-c:v", video_codec_for(config.video_codec),
        "-crf", str(config.video_crf),
        "-preset", "medium",
        "-c:a", "aac", "-b:a", "128k",
        "-movflags", "+faststart",
        "-map_metadata", "0",
        "-f", "mp4",
        "-progress", "pipe:2",
        "-y", temp_path,
    ]

    try:
        try:
            run_video_conversion_with_progress(session, command, input_path, filename)
        except ConversionError as err:
            raise ConversionError(f"conversion failed: {err}") from err

        try:
            security.verify_output_file(input_path, temp_path, "video", "mp4")
        except SecurityError as err:
            raise ConversionError(f"output verification failed: {err}") from err

        try:
            os.replace(temp_path, output_path)
        except OSError as err:
            raise ConversionError(f"failed to finalize conversion: {err}") from err
    finally:
        try:
            security.remove_processing_marker(output_path)
        except SecurityError:
            pass
        if os.path.exists(temp_path):
            _remove_quietly(temp_path)

    original_size = os.stat(input_path).st_size
    new_size = os.stat(output_path).st_size
    reduction = _reduction_percent(original_size, new_size)
    original_mb = original_size / _MB
    new_mb = new_size / _MB

    logger.success(
        f"✅ {filename} → {clean_name} | -{reduction}% ({original_mb:.1f}->{new_mb:.1f} MB)"
    )
    stats.add_sizes(original_mb, new_mb)

    if not config.keep_originals:
        try:
            security.safe_delete(input_path, output_path)
        except SecurityError as err:
            logger.warn(f"Deletion cancelled for safety: {filename} ({err})")
        else:
            logger.security(f"Safe deletion: {filename}")

    return output_path


def calculate_s3_cost(file_size_mb: float, progress_percent: float) -> str:
    """Estimate a year of S3 Standard storage plus one upload and 100 downloads."""
    if file_size_mb == 0:
        return ""
    storage_cost = file_size_mb / 1024 * 12 * 0.023
    put_cost = 0.0005 / 1000
    get_cost = (100 * 0.0004) / 1000
    total = storage_cost + put_cost + get_cost
    if progress_percent < 100:
        return f" | Est. S3 cost: ${total:.4f}/year"
    return f" | S3 cost: ${total:.4f}/year"