"""Shared state of a conversion run: settings, logging, safety checks and statistics."""

from __future__ import annotations

import dataclasses
import threading
import time

from mediaconv.config import Config
from mediaconv.logger import Logger
from mediaconv.security import SecurityChecker

_COUNTER_FIELDS = (
    "total_files",
    "processed_files",
    "failed_files",
    "skipped_files",
    "recovered_files",
    "cleaned_files",
    "verified_files",
    "total_size_mb",
    "processed_size_mb",
    "output_size_mb",
    "total_s3_cost",
    "saved_size_mb",
)


def format_duration(seconds: float) -> str:
    """Format a duration compactly: "45s", "2m5s" or "1h2m"; negative gives "--:--"."""
    if seconds < 0:
        return "--:--"
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m{secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes}m"


@dataclasses.dataclass
class ConversionStats:
    """Thread-safe counters and size totals for a run.

    ``start_time`` is a ``time.monotonic()`` reading taken when the stats were created.
    """

    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    recovered_files: int = 0
    cleaned_files: int = 0
    verified_files: int = 0
    total_size_mb: float = 0.0
    processed_size_mb: float = 0.0
    output_size_mb: float = 0.0
    total_s3_cost: float = 0.0
    saved_size_mb: float = 0.0
    start_time: float = dataclasses.field(default_factory=time.monotonic)
    _lock: threading.Lock = dataclasses.field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def increment(self, field: str, amount=1):
        """Add ``amount`` to a counter and return its new value."""
        if field not in _COUNTER_FIELDS:
            raise ValueError(f"unknown statistic: {field}")
        with self._lock:
            value = getattr(self, field) + amount
            setattr(self, field, value)
            return value

    def add_sizes(self, input_size_mb: float, output_size_mb: float) -> None:
        """Record the sizes of one converted file and the space it saved."""
        with self._lock:
            self.processed_size_mb += input_size_mb
            self.output_size_mb += output_size_mb
            self.saved_size_mb += input_size_mb - output_size_mb

    def snapshot(self) -> dict:
        """Return a consistent copy of every statistic, keyed by name."""
        with self._lock:
            values = {name: getattr(self, name) for name in _COUNTER_FIELDS}
            values["start_time"] = self.start_time
            return values


@dataclasses.dataclass
class Session:
    """Everything a single file conversion needs: settings, logger, checker and stats."""

    config: Config
    logger: Logger
    security: SecurityChecker | None = None
    stats: ConversionStats = dataclasses.field(default_factory=ConversionStats)

    def __post_init__(self) -> None:
        if self.security is None:
            self.security = SecurityChecker(
                self.config.min_output_size_ratio,
                self.config.min_output_size_ratio_avif,
                self.config.min_output_size_ratio_webp,
            )