import io
import re

import pytest

from mediaconv.logger import Logger


@pytest.fixture
def console():
    return io.StringIO()


def _file_lines(path):
    return path.read_text(encoding="utf-8").splitlines()


def _mask_times(lines):
    return [re.sub(r"\d{2}:\d{2}:\d{2}", "HH:MM:SS", line) for line in lines]


def test_plain_console_output(console):
    logger = Logger(stream=console, color=False)
    logger.info("hello")
    logger.success("done")
    logger.warn("careful")
    assert console.getvalue().splitlines() == ["[i] hello", "[✓] done", "[⚠] careful"]


def test_file_receives_tagged_lines(tmp_path, console):
    path = tmp_path / "conversion.log"
    with Logger(str(path), stream=console, color=False) as logger:
        logger.info("a")
        logger.success("b")
        logger.warn("c")
        logger.security("d")
    assert _file_lines(path) == ["[INFO] a", "[SUCCESS] b", "[WARN] c", "[SECURITY] d"]


def test_timestamped_messages(tmp_path, console):
    path = tmp_path / "conversion.log"
    with Logger(str(path), stream=console, color=False) as logger:
        logger.log("starting")
        logger.error("broken")
    assert _mask_times(_file_lines(path)) == [
        "[HH:MM:SS] starting",
        "[ERROR HH:MM:SS] broken",
    ]
    assert _mask_times(console.getvalue().splitlines()) == [
        "[HH:MM:SS] starting",
        "[ERROR HH:MM:SS] broken",
    ]


def test_log_file_is_appended(tmp_path, console):
    path = tmp_path / "conversion.log"
    with Logger(str(path), stream=console, color=False) as first:
        first.info("one")
    with Logger(str(path), stream=console, color=False) as second:
        second.info("two")
    assert _file_lines(path) == ["[INFO] one", "[INFO] two"]


def test_close_is_idempotent_and_stops_file_output(tmp_path, console):
    path = tmp_path / "conversion.log"
    logger = Logger(str(path), stream=console, color=False)
    logger.info("kept")
    logger.close()
    logger.close()
    logger.info("console only")
    assert _file_lines(path) == ["[INFO] kept"]
    assert console.getvalue().splitlines()[-1] == "[i] console only"


def test_colour_codes_only_on_console(tmp_path, console):
    path = tmp_path / "conversion.log"
    with Logger(str(path), stream=console, color=True) as logger:
        logger.success("x")
    assert "\x1b[32m" in console.getvalue()
    assert "\x1b" not in path.read_text(encoding="utf-8")


def test_non_tty_stream_disables_colour(console):
    Logger(stream=console).info("plain")
    assert "\x1b[" not in console.getvalue()


def test_header_secure_mode(console):
    Logger(stream=console, color=False).show_header(True)
    out = console.getvalue()
    assert out.startswith("\033[H\033[2J")
    assert "Media Converter SECURE v1.0" in out
    assert "Secure mode: Originals will be preserved" in out
    assert "Deletion mode" not in out


def test_header_deletion_mode(console):
    Logger(stream=console, color=False).show_header(False)
    out = console.getvalue()
    assert "WARNING: Deletion mode activated!" in out
    assert "Original files will be deleted after conversion" in out
    assert "To keep originals: --keep-originals" in out


def test_missing_log_directory_raises(tmp_path, console):
    with pytest.raises(FileNotFoundError):
        Logger(str(tmp_path / "missing" / "conversion.log"), stream=console)