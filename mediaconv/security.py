"""Safety checks around conversion: disk space, output verification, markers and cleanup."""

from __future__ import annotations

import os
import re
import shutil
import stat
import subprocess
import sys
from datetime import datetime
from typing import Iterator

MARKER_SUFFIX = ".processing"
TEMP_SUFFIX = ".tmp"
MIN_DELETE_OUTPUT_SIZE = 1000

_PID_RE = re.compile(r"[+-]?\d+\Z")


class SecurityError(RuntimeError):
    """Raised when a safety check fails."""


def _walk(root: str) -> Iterator[tuple[str, os.stat_result]]:
    """Yield (path, lstat) for every non-directory under ``root``, in lexical order."""
    info = os.lstat(root)
    if not stat.S_ISDIR(info.st_mode):
        yield root, info
        return
    for name in sorted(os.listdir(root)):
        yield from _walk(os.path.join(root, name))


def get_available_space(path: str) -> int:
    """Return the bytes available to this user on the filesystem holding ``path``."""
    return shutil.disk_usage(path).free


def get_dir_size(path: str) -> int:
    """Return the total size in bytes of all files under ``path``."""
    return sum(info.st_size for _, info in _walk(path))


def format_bytes(num_bytes: int) -> str:
    """Format a byte count with binary units, e.g. "1.5 MB"."""
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    div, exp = unit, 0
    n = num_bytes // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{num_bytes / div:.1f} {'KMGTPE'[exp]}B"


def _tool_succeeds(args: list[str]) -> bool:
    try:
        result = subprocess.run(
            args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False
        )
    except OSError:
        return False
    return result.returncode == 0


def _process_alive(pid: int) -> bool:
    if pid <= 0 or sys.platform == "win32":
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _rfc3339_now() -> str:
    text = datetime.now().astimezone().isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


class SecurityChecker:
    """Verifies converted output and guards against data loss."""

    def __init__(self, min_output_size_ratio: float, min_output_size_ratio_avif: float,
                 min_output_size_ratio_webp: float):
        self.min_output_size_ratio = min_output_size_ratio
        self.min_output_size_ratio_avif = min_output_size_ratio_avif
        self.min_output_size_ratio_webp = min_output_size_ratio_webp

    def check_disk_space(self, source_dir: str, dest_dir: str) -> None:
        """Raise SecurityError unless the destination has room for half the source size."""
        try:
            source_size = get_dir_size(source_dir)
        except OSError as err:
            raise SecurityError(f"failed to get source directory size: {err}") from err
        try:
            available = get_available_space(dest_dir)
        except OSError as err:
            raise SecurityError(f"failed to get available space: {err}") from err

        needed = source_size // 2
        if available < needed:
            raise SecurityError(
                f"insufficient disk space! Available: {format_bytes(available)}, "
                f"Estimated needed: {format_bytes(needed)}"
            )

    def _ratio_for(self, file_type: str, output_format: str) -> float:
        if file_type == "photo":
            fmt = output_format.lower()
            if fmt == "avif":
                return self.min_output_size_ratio_avif
            if fmt == "webp":
                return self.min_output_size_ratio_webp
        return self.min_output_size_ratio

    def verify_output_file(self, input_path: str, output_path: str, file_type: str,
                           output_format: str) -> None:
        """Check a converted file for existence, size and decodability; remove it if bad."""
        if not os.path.exists(output_path):
            raise SecurityError(f"output file does not exist: {output_path}")
        try:
            output_size = os.stat(output_path).st_size
        except OSError as err:
            raise SecurityError(f"failed to stat output file: {err}") from err

        if output_size == 0:
            self._discard(output_path)
            raise SecurityError(f"output file is empty: {output_path}")

        try:
            input_size = os.stat(input_path).st_size
        except OSError as err:
            raise SecurityError(f"failed to stat input file: {err}") from err

        ratio = self._ratio_for(file_type, output_format)
        min_size = int(input_size * ratio)
        if output_size < min_size:
            self._discard(output_path)
            raise SecurityError(
                f"output file too small ({output_size} < {min_size} bytes, "
                f"ratio {ratio:.3f} for {output_format}): {output_path}"
            )

        self._verify_by_type(output_path, file_type)

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except OSError:
            pass

    def _verify_by_type(self, path: str, file_type: str) -> None:
        if file_type == "photo":
            self._verify_image_integrity(path)
        elif file_type == "video":
            self._verify_video_integrity(path)
        else:
            raise SecurityError(f"unknown file type: {file_type}")

    def _verify_image_integrity(self, image_path: str) -> None:
        if not _tool_succeeds(["magick", "identify", image_path]):
            self._discard(image_path)
            raise SecurityError(f"image is corrupted: {image_path}")

    def _verify_video_integrity(self, video_path: str) -> None:
        if not _tool_succeeds(["ffprobe", video_path]):
            self._discard(video_path)
            raise SecurityError(f"video is corrupted: {video_path}")

    def safe_delete(self, file_path: str, output_path: str) -> None:
        """Delete the original only if its converted output exists and is large enough."""
        try:
            output_size = os.stat(output_path).st_size
        except OSError as err:
            raise SecurityError(f"cannot verify output file before deletion: {err}") from err
        if output_size < MIN_DELETE_OUTPUT_SIZE:
            raise SecurityError("deletion cancelled for safety: output file too small")
        try:
            os.remove(file_path)
        except OSError as err:
            raise SecurityError(f"failed to delete original file: {err}") from err

    def is_file_corrupted(self, file_path: str, file_type: str) -> bool:
        """Tell whether an existing file is missing, empty, undecodable or of unknown type."""
        try:
            size = os.stat(file_path).st_size
        except OSError:
            return True
        if size == 0:
            return True
        if file_type not in ("photo", "video"):
            return True
        try:
            self._verify_by_type(file_path, file_type)
        except SecurityError:
            return True
        return False

    def create_processing_marker(self, file_path: str) -> None:
        """Write a marker next to ``file_path`` recording this process and the start time."""
        content = f"PID:{os.getpid()}\nStarted:{_rfc3339_now()}\nFile:{file_path}\n"
        with open(file_path + MARKER_SUFFIX, "w", encoding="utf-8") as handle:
            handle.write(content)

    def remove_processing_marker(self, file_path: str) -> None:
        """Remove the marker for ``file_path``; a missing marker is not an error."""
        try:
            os.remove(file_path + MARKER_SUFFIX)
        except FileNotFoundError:
            pass
        except OSError as err:
            raise SecurityError(f"failed to remove processing marker: {err}") from err

    def find_abandoned_markers(self, directory: str) -> list[str]:
        """Return markers under ``directory`` whose owning process is gone."""
        return [
            path for path, _ in _walk(directory)
            if path.endswith(MARKER_SUFFIX) and self._is_marker_abandoned(path)
        ]

    @staticmethod
    def _is_marker_abandoned(marker_path: str) -> bool:
        try:
            with open(marker_path, encoding="utf-8", errors="replace") as handle:
                content = handle.read()
        except OSError:
            return True
        for line in content.split("\n"):
            if line.startswith("PID:"):
                pid_text = line[len("PID:"):]
                if not _PID_RE.match(pid_text):
                    return True
                return not _process_alive(int(pid_text))
        return True

    def cleanup_abandoned_files(self, directory: str) -> None:
        """Remove temporary files and abandoned markers under ``directory``."""
        errors = []
        for path, _ in _walk(directory):
            remove = path.endswith(TEMP_SUFFIX) or (
                path.endswith(MARKER_SUFFIX) and self._is_marker_abandoned(path)
            )
            if remove:
                try:
                    os.remove(path)
                except OSError as err:
                    errors.append(f"failed to remove {path}: {err}")
        if errors:
            raise SecurityError(f"cleanup errors: {'; '.join(errors)}")

    def verify_file_integrity(self, file_path: str, file_type: str) -> None:
        """Check that a file exists, is non-empty, readable and decodable."""
        try:
            size = os.stat(file_path).st_size
        except OSError as err:
            raise SecurityError(f"file doesn't exist: {err}") from err
        if size == 0:
            raise SecurityError("file is empty")
        try:
            handle = open(file_path, "rb")
        except OSError as err:
            raise SecurityError(f"cannot open file: {err}") from err
        with handle:
            try:
                handle.read(1024)
            except OSError as err:
                raise SecurityError(f"cannot read file: {err}") from err
        self._verify_by_type(file_path, file_type)