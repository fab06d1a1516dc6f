"""File dating, naming and path helpers for media conversion."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
from datetime import datetime, timedelta, timezone

PHOTO_EXTENSIONS = (
    "jpg", "jpeg", "heic", "heif", "cr2", "arw", "nef", "dng",
    "tiff", "tif", "png", "raw", "bmp", "gif", "webp",
)
VIDEO_EXTENSIONS = (
    "mov", "mp4", "avi", "mkv", "m4v", "mts", "m2ts", "mpg",
    "mpeg", "wmv", "flv", "3gp", "3gpp",
)
REQUIRED_TOOLS = ("ffmpeg", "magick")

_EXIF_FIELDS = (
    "%[EXIF:DateTimeOriginal]",
    "%[EXIF:DateTime]",
    "%[date:create]",
    "%[date:modify]",
)

_MIN_DATE = datetime(1990, 1, 1, tzinfo=timezone.utc)

_EXIF_RE = re.compile(r"(\d{4}):(\d{2}):(\d{2}) (\d{2}):(\d{2}):(\d{2})\Z")
_PLAIN_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})\Z")
_RFC3339_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})\Z"
)
_MDLS_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})(?: ([+-])(\d{2})(\d{2}))?\Z"
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")

_MONTH_NAMES = {
    "fr": ("Janvier", "Fevrier", "Mars", "Avril", "Mai", "Juin",
           "Juillet", "Aout", "Septembre", "Octobre", "Novembre", "Decembre"),
    "en": ("January", "February", "March", "April", "May", "June",
           "July", "August", "September", "October", "November", "December"),
    "es": ("Enero", "Febrero", "Marzo", "Abril", "Mayo", "Junio",
           "Julio", "Agosto", "Septiembre", "Octubre", "Noviembre", "Diciembre"),
    "de": ("Januar", "Februar", "Maerz", "April", "Mai", "Juni",
           "Juli", "August", "September", "Oktober", "November", "Dezember"),
}


class DependencyError(RuntimeError):
    """Raised when a required external tool is not installed."""


def file_extension(path: str) -> str:
    """Return the extension of the last path element, including the dot."""
    base = os.path.basename(path)
    idx = base.rfind(".")
    return base[idx:] if idx >= 0 else ""


def has_extension(filename: str, extensions) -> bool:
    """Tell whether the file's extension is one of ``extensions`` (case-insensitive)."""
    ext = file_extension(filename).lstrip(".").lower() if file_extension(filename) else ""
    if file_extension(filename).startswith("."):
        ext = file_extension(filename)[1:].lower()
    return any(ext == valid.lower() for valid in extensions)


def _run_output(args) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout


def _build(groups, tz) -> datetime:
    year, month, day, hour, minute, second = (int(g) for g in groups)
    return datetime(year, month, day, hour, minute, second, tzinfo=tz)


def _parse_mdls_date(date_str: str) -> datetime | None:
    match = _MDLS_RE.match(date_str)
    if not match:
        return None
    sign, hh, mm = match.group(7), match.group(8), match.group(9)
    tz = timezone.utc
    if sign:
        offset = timedelta(hours=int(hh), minutes=int(mm))
        tz = timezone(-offset if sign == "-" else offset)
    try:
        return _build(match.groups()[:6], tz)
    except ValueError:
        return None


def _macos_metadata_date(file_path: str) -> datetime | None:
    if sys.platform != "darwin":
        return None
    output = _run_output(["mdls", "-name", "kMDItemContentCreationDate", "-raw", file_path])
    if output is None:
        return None
    date_str = output.strip()
    if not date_str or date_str == "(null)":
        return None
    return _parse_mdls_date(date_str)


def _image_metadata_date(file_path: str) -> datetime | None:
    if not has_extension(file_path, PHOTO_EXTENSIONS):
        return None
    for field in _EXIF_FIELDS:
        output = _run_output(["magick", "identify", "-format", field, file_path])
        if output is None:
            continue
        date_str = output.strip()
        if not date_str or date_str == "(null)":
            continue
        try:
            return parse_datetime(date_str)
        except ValueError:
            continue
    return None


def _video_metadata_date(file_path: str) -> datetime | None:
    if not has_extension(file_path, VIDEO_EXTENSIONS):
        return None
    output = _run_output([
        "ffprobe", "-v", "quiet", "-show_entries", "format_tags=creation_time",
        "-of", "csv=p=0", file_path,
    ])
    if output is None:
        return None
    date_str = output.strip()
    if not date_str:
        return None
    try:
        return parse_datetime(date_str)
    except ValueError:
        return None


def get_file_date(file_path: str) -> datetime:
    """Find the capture date of a media file.

    Metadata is tried first; the modification time is the fallback.
    Raises ValueError when no plausible date exists.
    """
    for probe in (_macos_metadata_date, _image_metadata_date, _video_metadata_date):
        date = probe(file_path)
        if date is not None and is_valid_date(date):
            return date

    mtime = os.stat(file_path).st_mtime
    mod_time = datetime.fromtimestamp(mtime, tz=timezone.utc).astimezone()
    if is_valid_date(mod_time):
        return mod_time

    raise ValueError(f"no valid date found for file: {os.path.basename(file_path)}")


def parse_datetime(date_str: str) -> datetime:
    """Parse a metadata date string (EXIF, ISO 8601 or plain) into an aware datetime."""
    for pattern in (_EXIF_RE, _PLAIN_RE):
        match = pattern.match(date_str)
        if match:
            try:
                return _build(match.groups(), timezone.utc)
            except ValueError:
                pass

    match = _RFC3339_RE.match(date_str)
    if match:
        zone = match.group(8)
        if zone == "Z":
            tz = timezone.utc
        else:
            offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
            tz = timezone(-offset if zone[0] == "-" else offset)
        try:
            date = _build(match.groups()[:6], tz)
        except ValueError:
            pass
        else:
            fraction = match.group(7)
            if fraction:
                date = date.replace(microsecond=int(fraction[:6].ljust(6, "0")))
            return date

    raise ValueError(f"unable to parse date: {date_str}")


def is_valid_date(date: datetime) -> bool:
    """Tell whether a date is plausible for a media file: not future, not before 1990."""
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    if date > datetime.now(timezone.utc):
        return False
    return date >= _MIN_DATE


def clean_filename(filename: str, extension: str, date: datetime, counter: int) -> str:
    """Build a safe, date-prefixed output filename."""
    clean = _UNSAFE_CHARS.sub("_", filename)
    clean = _REPEATED_UNDERSCORES.sub("_", clean)
    clean = clean.strip("_")
    return f"{date.strftime('%Y-%m-%d')}_{clean}_{counter:03d}.{extension}"


def get_month_name(month: int, language: str) -> str:
    """Return "MM-Name" for a month in the given language, English by default."""
    names = _MONTH_NAMES.get(language, _MONTH_NAMES["en"])
    if not 1 <= month <= 12:
        return "Unknown"
    return f"{month:02d}-{names[month - 1]}"


def create_destination_path(base_dir: str, file_date: datetime, media_type: str,
                            organize_by_date: bool) -> str:
    """Return the directory a converted file belongs in."""
    if not organize_by_date:
        return os.path.join(base_dir, media_type + "s")
    return os.path.join(
        base_dir,
        str(file_date.year),
        get_month_name(file_date.month, "en"),
        file_date.strftime("%Y-%m-%d"),
        media_type + "s",
    )


def ensure_dir(dir_path: str) -> None:
    """Create a directory and its parents if missing."""
    os.makedirs(dir_path, mode=0o755, exist_ok=True)


def get_unique_filename(base_path: str, filename: str, extension: str) -> str:
    """Return a path in ``base_path`` that does not exist yet, adding counters as needed."""
    counter = 1
    while True:
        full_path = os.path.join(base_path, filename)
        if not os.path.exists(full_path):
            return full_path
        ext = file_extension(filename)
        stem = filename[: len(filename) - len(ext)] if ext else filename
        filename = f"{stem}_{counter:03d}{ext}"
        counter += 1
        if counter > 9999:
            raise FileExistsError("unable to create unique filename after 9999 attempts")


def check_dependencies() -> None:
    """Raise DependencyError if ffmpeg or ImageMagick is not on PATH."""
    missing = [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]
    if missing:
        raise DependencyError(f"missing dependencies: {', '.join(missing)}")