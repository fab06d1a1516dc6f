import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

from mediaconv import utils
from mediaconv.utils import (
    DependencyError,
    check_dependencies,
    clean_filename,
    create_destination_path,
    ensure_dir,
    get_file_date,
    get_month_name,
    get_unique_filename,
    has_extension,
    is_valid_date,
    parse_datetime,
)


def test_parse_exif_format():
    assert parse_datetime("2024:01:15 10:30:45") == datetime(
        2024, 1, 15, 10, 30, 45, tzinfo=timezone.utc
    )


def test_parse_plain_format():
    assert parse_datetime("2021-06-07 08:09:10") == datetime(
        2021, 6, 7, 8, 9, 10, tzinfo=timezone.utc
    )


def test_parse_iso_with_fraction_and_zone():
    parsed = parse_datetime("2020-05-06T07:08:09.123456Z")
    assert parsed == datetime(2020, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc)
    offset = parse_datetime("2020-05-06T07:08:09-05:00")
    assert offset.utcoffset() == timedelta(hours=-5)
    assert offset.astimezone(timezone.utc).hour == 12


def test_parse_round_trip():
    original = datetime(2019, 12, 31, 23, 59, 58, tzinfo=timezone.utc)
    assert parse_datetime(original.strftime("%Y:%m:%d %H:%M:%S")) == original
    assert parse_datetime(original.isoformat()) == original


@pytest.mark.parametrize("text", ["", "yesterday", "2024/01/15 10:30:45", "2024:13:40 10:30:45"])
def test_parse_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_datetime(text)


def test_is_valid_date_bounds():
    assert is_valid_date(datetime(2020, 1, 1, tzinfo=timezone.utc)) is True
    assert is_valid_date(datetime(1989, 12, 31, tzinfo=timezone.utc)) is False
    assert is_valid_date(datetime.now(timezone.utc) + timedelta(days=1)) is False
    assert is_valid_date(datetime(2010, 5, 5)) is True


def test_clean_filename():
    date = datetime(2024, 1, 15)
    assert clean_filename("My Photo!!", "avif", date, 1) == "2024-01-15_My_Photo_001.avif"


def test_clean_filename_only_safe_characters():
    name = clean_filename("__weird é name#$%__", "mp4", datetime(2022, 2, 2), 7)
    assert name.startswith("2022-02-02_")
    assert name.endswith(".mp4")
    assert "__" not in name
    assert all(ch.isascii() and (ch.isalnum() or ch in "._-") for ch in name)


def test_month_names():
    assert get_month_name(3, "fr") == "03-Mars"
    assert get_month_name(3, "xx") == get_month_name(3, "en")
    assert get_month_name(0, "en") == "Unknown"
    assert get_month_name(13, "de") == "Unknown"


def test_destination_path_by_date(tmp_path):
    base = str(tmp_path)
    path = create_destination_path(base, datetime(2024, 3, 5), "image", True)
    assert path == os.path.join(base, "2024", get_month_name(3, "en"), "2024-03-05", "images")


def test_destination_path_flat(tmp_path):
    base = str(tmp_path)
    assert create_destination_path(base, datetime(2024, 3, 5), "video", False) == os.path.join(
        base, "videos"
    )


def test_ensure_dir_creates_and_is_idempotent(tmp_path):
    target = tmp_path / "a" / "b" / "c"
    ensure_dir(str(target))
    ensure_dir(str(target))
    assert target.is_dir()


def test_unique_filename_free(tmp_path):
    assert get_unique_filename(str(tmp_path), "a.jpg", ".jpg") == os.path.join(str(tmp_path), "a.jpg")


def test_unique_filename_taken(tmp_path):
    (tmp_path / "a.jpg").write_bytes(b"x")
    result = get_unique_filename(str(tmp_path), "a.jpg", ".jpg")
    assert result == os.path.join(str(tmp_path), "a_001.jpg")
    assert not os.path.exists(result)


def test_unique_filename_never_existing(tmp_path):
    for name in ("b.png", "b_001.png"):
        (tmp_path / name).write_bytes(b"x")
    result = get_unique_filename(str(tmp_path), "b.png", ".png")
    assert not os.path.exists(result)
    assert result.endswith(".png")
    assert os.path.dirname(result) == str(tmp_path)


@pytest.mark.parametrize(
    "name,exts,expected",
    [
        ("photo.JPG", ["jpg"], True),
        ("clip.mov", ["MOV"], True),
        ("archive.tar.gz", ["tar"], False),
        ("noext", ["jpg"], False),
        ("dir.jpg/file", ["jpg"], False),
    ],
)
def test_has_extension(name, exts, expected):
    assert has_extension(name, exts) is expected


def test_check_dependencies_missing(monkeypatch):
    monkeypatch.setattr(utils.shutil, "which", lambda tool: None)
    with pytest.raises(DependencyError, match="ffmpeg, magick"):
        check_dependencies()


def test_check_dependencies_present(monkeypatch):
    monkeypatch.setattr(utils.shutil, "which", lambda tool: "/usr/bin/" + tool)
    assert check_dependencies() is None


def test_get_file_date_falls_back_to_mtime(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    target = tmp_path / "notes.txt"
    target.write_text("data")
    stamp = datetime(2020, 6, 1, 12, 0, tzinfo=timezone.utc).timestamp()
    os.utime(target, (stamp, stamp))
    assert get_file_date(str(target)).timestamp() == stamp


def test_get_file_date_rejects_old_mtime(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    target = tmp_path / "old.txt"
    target.write_text("data")
    stamp = datetime(1985, 1, 1, tzinfo=timezone.utc).timestamp()
    os.utime(target, (stamp, stamp))
    with pytest.raises(ValueError, match="old.txt"):
        get_file_date(str(target))


def test_get_file_date_missing_file(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    with pytest.raises(FileNotFoundError):
        get_file_date(str(tmp_path / "absent.txt"))