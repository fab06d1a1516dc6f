"""Conversion of a single photo to AVIF or WebP with ImageMagick."""

from __future__ import annotations

import os
import subprocess
import time

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


class ConversionError(RuntimeError):
    """Raised when a file cannot be converted."""


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


def _run_magick(session: Session, input_path: str, temp_path: str) -> None:
    config = session.config
    quality = config.photo_quality_webp if config.photo_format == "webp" else config.photo_quality_avif
    args = [
        "magick", input_path,
        "-auto-orient",
        "-quality", str(quality),
        "-define", "heic:preserve-orientation=true",
        "-define", "avif:preserve-exif=true",
        "-define", "webp:preserve-exif=true",
        f"{config.photo_format}:{temp_path}",
    ]
    try:
        result = subprocess.run(
            args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            timeout=config.conversion_timeout_photo,
        )
    except subprocess.TimeoutExpired as err:
        raise ConversionError(
            f"conversion failed: timed out after {config.conversion_timeout_photo:g}s"
        ) from err
    except OSError as err:
        raise ConversionError(f"conversion failed: {err}") from err

    if result.returncode != 0:
        message = f"conversion failed: exit status {result.returncode}"
        stderr = (result.stderr or "").strip()
        if stderr:
            message += f" - ImageMagick Error: {stderr}"
        raise ConversionError(message)


def convert_image(session: Session, input_path: str) -> str:
    """Convert one photo into the destination tree and return the output path.

    An existing valid output is kept and counted as skipped; in dry-run mode
    the planned path is returned without converting.
    """
    config, logger, security, stats = session.config, session.logger, session.security, session.stats
    filename = os.path.basename(input_path)
    ext = file_extension(filename)
    name = filename[: len(filename) - len(ext)] if ext else filename

    # The date must come from the original, before a new file gets a new timestamp.
    try:
        file_date = get_file_date(input_path)
    except (OSError, ValueError) as err:
        logger.warn(f"Could not extract date from {filename}: {err} - skipping file")
        raise ConversionError(f"unable to determine file date: {err}") from err

    dest_path = create_destination_path(config.dest_dir, file_date, "image", config.organize_by_date)
    try:
        ensure_dir(dest_path)
    except OSError as err:
        raise ConversionError(f"failed to create destination directory: {err}") from err

    clean_name = clean_filename(name, config.photo_format, file_date, 1)
    output_path = os.path.join(dest_path, clean_name)

    if os.path.exists(output_path):
        if not security.is_file_corrupted(output_path, "photo"):
            logger.info(f"📷 {filename} -> {clean_name} (already exists and valid, skipping)")
            stats.increment("skipped_files")
            return output_path
        logger.warn(f"📷 {filename} -> {clean_name} (corrupted file detected, re-converting)")
        _remove_quietly(output_path)
        stats.increment("recovered_files")

    temp_path = output_path + ".tmp"

    if config.dry_run:
        logger.info(f"[DRY-RUN] Would convert: {filename} → {clean_name}")
        return output_path

    try:
        original_size = os.stat(input_path).st_size
    except OSError as err:
        raise ConversionError(f"failed to stat input file: {err}") from err
    size_mb = original_size / _MB

    logger.info(f"📷 {filename} ({size_mb:.1f} MB) -> {config.photo_format}")

    try:
        security.create_processing_marker(output_path)
    except (OSError, SecurityError) as err:
        logger.warn(f"Failed to create processing marker: {err}")

    try:
        started = time.monotonic()
        _run_magick(session, input_path, temp_path)
        elapsed = time.monotonic() - started

        try:
            security.verify_output_file(input_path, temp_path, "photo", config.photo_format)
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
    new_size_mb = new_size / _MB

    logger.success(
        f"✅ {filename} -> {clean_name} | -{reduction}% "
        f"({size_mb:.1f}->{new_size_mb:.1f} MB) | {format_duration(elapsed)}"
    )
    stats.add_sizes(size_mb, new_size_mb)

    if not config.keep_originals:
        try:
            security.safe_delete(input_path, output_path)
        except SecurityError as err:
            logger.warn(f"Deletion cancelled for safety: {filename} ({err})")
        else:
            logger.security(f"Safe deletion: {filename}")

    return output_path


def calculate_image_s3_cost(file_size_mb: float) -> str:
    """Estimate a year of S3 Standard storage plus one upload and 50 downloads."""
    if file_size_mb == 0:
        return ""
    storage_cost = file_size_mb / 1024 * 12 * 0.023
    put_cost = 0.0005 / 1000
    get_cost = (50 * 0.0004) / 1000
    return f" | S3: ${storage_cost + put_cost + get_cost:.4f}/year"