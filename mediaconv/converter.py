"""Orchestration of a conversion run over a whole source tree."""

from __future__ import annotations

import os
import shutil
import stat
import sys
import time
from concurrent.futures import ThreadPoolExecutor

from mediaconv.config import Config
from mediaconv.image import ConversionError, convert_image
from mediaconv.logger import Logger
from mediaconv.security import SecurityChecker, SecurityError
from mediaconv.session import ConversionStats, Session, format_duration
from mediaconv.utils import has_extension
from mediaconv.video import convert_video

_MB = 1024 * 1024
_BAR_WIDTH = 25
_S3_PRICE_PER_GB_MONTH = 0.023
_SAFETY_DIR = ".safety_test"
_RULE = "═" * 62
_PREFERRED_TEST_EXTENSIONS = ("jpg", "jpeg")


def _walk_files(root: str):
    """Yield (path, lstat) for every non-directory under ``root``, in lexical order."""
    info = os.lstat(root)
    if not stat.S_ISDIR(info.st_mode):
        yield root, info
        return
    for name in sorted(os.listdir(root)):
        yield from _walk_files(os.path.join(root, name))


def _find_safety_test_file(root: str, photo_formats) -> str | None:
    """Pick a photo for the safety test, preferring a JPEG.

    Finding a JPEG stops the scan of the directory it sits in; later
    directories are still scanned, so the last such JPEG wins.
    """
    first = None
    preferred = None

    def scan(path: str) -> bool:
        nonlocal first, preferred
        info = os.lstat(path)
        if stat.S_ISDIR(info.st_mode):
            for name in sorted(os.listdir(path)):
                if scan(os.path.join(path, name)):
                    break
            return False
        if has_extension(path, photo_formats):
            if has_extension(path, _PREFERRED_TEST_EXTENSIONS):
                preferred = path
                return True
            if first is None:
                first = path
        return False

    scan(root)
    return preferred or first


def _rounded_duration(seconds: float) -> str:
    """Format whole seconds as e.g. "0s", "1m5s" or "1h0m3s"."""
    total = int(seconds + 0.5) if seconds >= 0 else -int(-seconds + 0.5)
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


class Converter:
    """Runs recovery, safety checks and parallel conversion over a source tree."""

    def __init__(self, config: Config, logger: Logger, security: SecurityChecker | None = None,
                 stream=None):
        self.session = Session(config=config, logger=logger, security=security)
        self._out = stream if stream is not None else sys.stdout

    @property
    def config(self) -> Config:
        return self.session.config

    @property
    def logger(self) -> Logger:
        return self.session.logger

    @property
    def security(self) -> SecurityChecker:
        return self.session.security

    @property
    def stats(self) -> ConversionStats:
        return self.session.stats

    def _print(self, text: str = "") -> None:
        print(text, file=self._out, flush=True)

    def convert(self) -> None:
        """Run a full conversion; raise ConversionError if a pre-flight check fails."""
        config, logger = self.config, self.logger
        logger.log("Starting secure media conversion")
        logger.info(f"Source: {config.source_dir}")
        logger.info(f"Destination: {config.dest_dir}")
        if config.dry_run:
            logger.info("DRY RUN MODE - No files will be converted")
        logger.info(f"Keep originals: {str(config.keep_originals).lower()}")
        self._print()

        try:
            self.perform_recovery()
        except (ConversionError, OSError) as err:
            logger.warn(f"Recovery issues detected: {err}")

        try:
            self.security.check_disk_space(config.source_dir, config.dest_dir)
        except SecurityError as err:
            raise ConversionError(f"disk space check failed: {err}") from err
        logger.success("Disk space check passed")

        if not config.dry_run:
            try:
                self.run_safety_test()
            except (ConversionError, OSError) as err:
                raise ConversionError(f"safety test failed: {err}") from err

        try:
            photo_files, video_files = self.find_files()
        except OSError as err:
            raise ConversionError(f"failed to find files: {err}") from err

        total = self.stats.increment("total_files", len(photo_files) + len(video_files))
        logger.info(f"📸 Photos found: {len(photo_files)}")
        logger.info(f"🎬 Videos found: {len(video_files)}")
        logger.info(f"📁 Total files: {total}")
        self._print()

        self.calculate_total_size(photo_files + video_files)

        if photo_files:
            logger.log("Converting photos...")
            self.convert_files(photo_files, "photo")

        if video_files:
            self._print()
            logger.log("Converting videos...")
            self.convert_files(video_files, "video")

        self.show_final_report()

    def convert_file(self, input_path: str, file_type: str) -> str:
        """Convert one file of type "photo" or "video"; return the output path."""
        if file_type == "photo":
            return convert_image(self.session, input_path)
        if file_type == "video":
            return convert_video(self.session, input_path)
        raise ConversionError(f"unknown file type: {file_type}")

    def find_files(self) -> tuple[list[str], list[str]]:
        """Return the photo files and the video files under the source directory."""
        photos: list[str] = []
        videos: list[str] = []
        for path, _ in _walk_files(self.config.source_dir):
            if has_extension(path, self.config.photo_formats):
                photos.append(path)
            elif has_extension(path, self.config.video_formats):
                videos.append(path)
        return photos, videos

    def convert_files(self, files, file_type: str) -> None:
        """Convert files in parallel, at most ``max_jobs`` at a time, counting outcomes."""

        def work(path: str) -> None:
            try:
                self.convert_file(path, file_type)
            except Exception as err:  # a failed file must never stop the others
                self.logger.error(f"Failed to convert {os.path.basename(path)}: {err}")
                self.stats.increment("failed_files")
            else:
                if self.stats.increment("processed_files") % 10 == 0:
                    self.show_overall_progress()

        with ThreadPoolExecutor(max_workers=max(1, self.config.max_jobs)) as pool:
            list(pool.map(work, files))

    def run_safety_test(self) -> None:
        """Convert a copy of one photo in a scratch directory before touching anything else."""
        config, logger = self.config, self.logger
        logger.info("Running safety test...")

        test_file = _find_safety_test_file(config.source_dir, config.photo_formats)
        if test_file is None:
            logger.warn("No test file found, skipping safety test")
            return

        test_dir = os.path.join(config.dest_dir, _SAFETY_DIR)
        os.makedirs(test_dir, mode=0o755, exist_ok=True)
        try:
            test_copy = os.path.join(test_dir, os.path.basename(test_file))
            shutil.copyfile(test_file, test_copy)
            logger.info(f"Testing conversion on: {os.path.basename(test_file)}")

            saved = (config.keep_originals, config.organize_by_date, config.dest_dir)
            config.keep_originals = True
            config.organize_by_date = False
            config.dest_dir = test_dir
            try:
                self.convert_file(test_copy, "photo")
            except (ConversionError, OSError) as err:
                raise ConversionError(f"safety test failed: {err}") from err
            finally:
                config.keep_originals, config.organize_by_date, config.dest_dir = saved
        finally:
            shutil.rmtree(test_dir, ignore_errors=True)

        logger.success("Safety test passed ✅")

    def calculate_total_size(self, files) -> None:
        """Add the size of every readable file to the total size statistic."""
        total = 0.0
        for path in files:
            try:
                total += os.stat(path).st_size / _MB
            except OSError:
                continue
        self.stats.increment("total_size_mb", total)

    def show_overall_progress(self) -> None:
        """Log a progress bar over all files with an estimated time remaining."""
        snap = self.stats.snapshot()
        total, processed = snap["total_files"], snap["processed_files"]
        if total == 0:
            return

        percent = processed / total * 100
        filled = max(0, min(_BAR_WIDTH, int(percent / 100 * _BAR_WIDTH)))
        bar = "█" * filled + "░" * (_BAR_WIDTH - filled)

        if processed > 0:
            elapsed = time.monotonic() - snap["start_time"]
            remaining = (total - processed) * (elapsed / processed)
            eta = f"ETA: {format_duration(remaining)}"
        else:
            eta = "ETA: --:--"

        self.logger.info(f"📈 Progress: [{bar}] {processed}/{total} ({percent:.1f}%) | {eta}")

    def show_final_report(self) -> None:
        """Print the summary of the run: counts, timings, sizes and storage estimates."""
        snap = self.stats.snapshot()
        logger = self.logger
        duration = time.monotonic() - snap["start_time"]

        self._print()
        self._print(f"╔{_RULE}╗")
        self._print("║                 Conversion Complete                          ║")
        self._print(f"╚{_RULE}╝")
        self._print()

        logger.success(f"✅ Files processed: {snap['processed_files']}/{snap['total_files']}")
        if snap["skipped_files"] > 0:
            logger.info(f"⏭️  Files skipped (already exist): {snap['skipped_files']}")
        if snap["recovered_files"] > 0:
            logger.info(f"🔄 Files recovered from corruption: {snap['recovered_files']}")
        if snap["cleaned_files"] > 0:
            logger.info(f"🧹 Abandoned files cleaned: {snap['cleaned_files']}")
        if snap["verified_files"] > 0:
            logger.info(f"🔍 Files verified for integrity: {snap['verified_files']}")
        if snap["failed_files"] > 0:
            logger.warn(f"⚠️  Failed conversions: {snap['failed_files']}")

        logger.info(f"⏱️  Total time: {_rounded_duration(duration)}")

        processed_mb = snap["processed_size_mb"]
        if processed_mb > 0:
            saved_mb = snap["saved_size_mb"]
            output_mb = snap["output_size_mb"]
            reduction = saved_mb / processed_mb * 100
            logger.info(f"📊 Original size: {processed_mb:.1f} MB")
            logger.info(f"📦 Compressed size: {output_mb:.1f} MB")
            logger.success(f"💾 Space saved: {saved_mb:.1f} MB ({reduction:.1f}% reduction)")

            if saved_mb > 0:
                monthly = saved_mb / 1024 * _S3_PRICE_PER_GB_MONTH
                logger.success(
                    f"💰 Estimated S3 savings: ${monthly:.2f}/month (${monthly * 12:.2f}/year)"
                )
                storage_monthly = output_mb / 1024 * _S3_PRICE_PER_GB_MONTH
                logger.info(
                    f"☁️  Total S3 storage cost: ${storage_monthly:.2f}/month "
                    f"(${storage_monthly * 12:.2f}/year)"
                )

        self._print()
        logger.info(f"📁 Converted files in: {self.config.dest_dir}")
        logger.info(f"📄 Detailed logs: {self.config.dest_dir}/conversion.log")
        if self.config.keep_originals:
            logger.success("🔒 Original files have been preserved")

    def perform_recovery(self) -> None:
        """Clean up leftovers of interrupted runs and drop corrupted outputs."""
        logger, security, dest = self.logger, self.security, self.config.dest_dir
        logger.info("🔍 Performing recovery check...")

        try:
            security.cleanup_abandoned_files(dest)
        except (SecurityError, OSError) as err:
            raise ConversionError(f"cleanup failed: {err}") from err

        try:
            markers = security.find_abandoned_markers(dest)
        except OSError as err:
            raise ConversionError(f"failed to find abandoned markers: {err}") from err

        if markers:
            logger.info(f"🔄 Found {len(markers)} abandoned conversion markers")
            for marker in markers:
                try:
                    os.remove(marker)
                except OSError as err:
                    logger.warn(f"Failed to remove marker {marker}: {err}")
                else:
                    self.stats.increment("cleaned_files")

        try:
            self.verify_existing_files()
        except OSError as err:
            raise ConversionError(f"verification failed: {err}") from err

        logger.success("✅ Recovery check completed")

    def _check_existing(self, path: str, file_type: str, label: str) -> None:
        if self.security.is_file_corrupted(path, file_type):
            self.logger.warn(
                f"🔍 Corrupted {label} detected: {os.path.basename(path)} (will be re-converted)"
            )
            _remove_quietly(path)
            self.stats.increment("recovered_files")
        else:
            self.stats.increment("verified_files")

    def verify_existing_files(self) -> None:
        """Check converted files in the destination and remove corrupted ones."""
        for path, _ in _walk_files(self.config.dest_dir):
            lower = path.lower()
            if lower.endswith((".avif", ".webp")):
                self._check_existing(path, "photo", "image")
            # Converted videos carry a date prefix joined with an underscore.
            if lower.endswith(".mp4") and "_" in lower:
                self._check_existing(path, "video", "video")