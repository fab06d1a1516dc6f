"""Run configuration: defaults, config files and the resolved settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

import yaml

from mediaconv.utils import PHOTO_EXTENSIONS, VIDEO_EXTENSIONS

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _cpu_count() -> int:
    return os.cpu_count() or 1


def default_settings() -> dict:
    """Return the default value of every setting, keyed by setting name."""
    return {
        "max_jobs": _cpu_count() - 2,
        "dry_run": False,
        "photo_format": "avif",
        "photo_quality_avif": 80,
        "photo_quality_webp": 85,
        "video_codec": "h265",
        "video_crf": 28,
        "organize_by_date": True,
        "keep_originals": True,
        "timeout_photo": 300,
        "timeout_video": 1800,
        "min_output_size_ratio": 0.005,
        "min_output_size_ratio_avif": 0.001,
        "min_output_size_ratio_webp": 0.003,
    }


def read_config_file(path: str) -> dict:
    """Read a YAML config file into a settings dict with lower-case keys."""
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config file must hold a mapping: {path}")
    return {str(key).lower(): value for key, value in data.items()}


def _to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def _to_int(value) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


@dataclass
class Config:
    """Resolved settings for one conversion run."""

    source_dir: str = ""
    dest_dir: str = ""
    max_jobs: int = 1
    dry_run: bool = False
    photo_format: str = "avif"
    photo_quality_avif: int = 80
    photo_quality_webp: int = 85
    video_codec: str = "h265"
    video_crf: int = 28
    organize_by_date: bool = True
    keep_originals: bool = True
    conversion_timeout_photo: float = 300.0
    conversion_timeout_video: float = 1800.0
    min_output_size_ratio: float = 0.005
    min_output_size_ratio_avif: float = 0.001
    min_output_size_ratio_webp: float = 0.003
    photo_formats: list = field(default_factory=lambda: list(PHOTO_EXTENSIONS))
    video_formats: list = field(default_factory=lambda: list(VIDEO_EXTENSIONS))

    @classmethod
    def from_settings(cls, settings=None) -> "Config":
        """Build a Config from settings layered over the defaults; max_jobs is clamped to 1..CPUs."""
        merged = default_settings()
        if settings:
            merged.update({key.lower(): value for key, value in settings.items()})

        max_jobs = _to_int(merged["max_jobs"])
        max_jobs = min(max(max_jobs, 1), _cpu_count())

        return cls(
            source_dir=str(merged.get("source_dir", "")),
            dest_dir=str(merged.get("dest_dir", "")),
            max_jobs=max_jobs,
            dry_run=_to_bool(merged["dry_run"]),
            photo_format=str(merged["photo_format"]),
            photo_quality_avif=_to_int(merged["photo_quality_avif"]),
            photo_quality_webp=_to_int(merged["photo_quality_webp"]),
            video_codec=str(merged["video_codec"]),
            video_crf=_to_int(merged["video_crf"]),
            organize_by_date=_to_bool(merged["organize_by_date"]),
            keep_originals=_to_bool(merged["keep_originals"]),
            conversion_timeout_photo=float(_to_int(merged["timeout_photo"])),
            conversion_timeout_video=float(_to_int(merged["timeout_video"])),
            min_output_size_ratio=float(merged["min_output_size_ratio"]),
            min_output_size_ratio_avif=float(merged["min_output_size_ratio_avif"]),
            min_output_size_ratio_webp=float(merged["min_output_size_ratio_webp"]),
        )