"""Coloured console logging mirrored to a plain-text log file."""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime

_RED = "31"
_GREEN = "32"
_YELLOW = "33"
_BLUE = "34"
_PURPLE = "35"
_CYAN = "36"
_BOLD = "1"

_CLEAR_SCREEN = "\033[H\033[2J"
_RULE = "═" * 62


def _supports_color(stream) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class Logger:
    """Writes styled messages to the console and plain lines to an optional log file."""

    def __init__(self, log_path=None, stream=None, color=None):
        self._stream = stream if stream is not None else sys.stdout
        self._color = _supports_color(self._stream) if color is None else color
        self._lock = threading.Lock()
        self._file = open(log_path, "a", encoding="utf-8") if log_path else None

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the log file, if one is open."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def _paint(self, text: str, *codes: str) -> str:
        if not self._color:
            return text
        return f"\033[{';'.join(codes)}m{text}\033[0m"

    def _emit(self, console_line: str, file_line: str | None) -> None:
        with self._lock:
            print(console_line, file=self._stream, flush=True)
            if self._file is not None and file_line is not None:
                self._file.write(file_line + "\n")
                self._file.flush()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%H:%M:%S")

    def log(self, message: str) -> None:
        stamp = self._timestamp()
        self._emit(f"[{self._paint(stamp, _BLUE)}] {message}", f"[{stamp}] {message}")

    def error(self, message: str) -> None:
        stamp = self._timestamp()
        self._emit(f"[ERROR {self._paint(stamp, _RED)}] {message}", f"[ERROR {stamp}] {message}")

    def success(self, message: str) -> None:
        self._emit(f"[{self._paint('✓', _GREEN)}] {message}", f"[SUCCESS] {message}")

    def warn(self, message: str) -> None:
        self._emit(f"[{self._paint('⚠', _YELLOW)}] {message}", f"[WARN] {message}")

    def info(self, message: str) -> None:
        self._emit(f"[{self._paint('i', _CYAN)}] {message}", f"[INFO] {message}")

    def security(self, message: str) -> None:
        label = self._paint("🔒 SECURITY", _RED, _BOLD)
        self._emit(f"[{label}] {message}", f"[SECURITY] {message}")

    def show_header(self, keep_originals: bool) -> None:
        """Clear the screen and print the banner and the deletion-mode notice."""
        title = self._paint("Media Converter SECURE v1.0", _BOLD)
        header = (
            f"\n╔{_RULE}╗\n"
            f"║        {title}               ║\n"
            f"╚{_RULE}╝\n"
        )
        lines = [self._paint(header, _PURPLE), ""]
        if not keep_originals:
            lines += [
                self._paint("⚠️  WARNING: Deletion mode activated!", _RED, _BOLD),
                self._paint("Original files will be deleted after conversion", _RED),
                self._paint("To keep originals: --keep-originals", _YELLOW),
                "",
            ]
        else:
            lines += [self._paint("🔒 Secure mode: Originals will be preserved", _GREEN), ""]
        with self._lock:
            self._stream.write(_CLEAR_SCREEN + "\n".join(lines) + "\n")
            self._stream.flush()