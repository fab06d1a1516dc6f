"""Command line entry point: media-converter SOURCE DESTINATION."""

from __future__ import annotations

import argparse
import os
import sys

import yaml

from mediaconv.config import Config, default_settings, read_config_file
from mediaconv.converter import Converter
from mediaconv.image import ConversionError
from mediaconv.logger import Logger
from mediaconv.security import SecurityError
from mediaconv.utils import DependencyError, check_dependencies

_CONFIG_NAMES = (".media-converter.yaml", ".media-converter.yml")
_BOOL_FLAGS = ("--dry-run", "--keep-originals", "--organize-by-date")
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

# argparse destination -> setting name
_FLAG_SETTINGS = {
    "dry_run": "dry_run",
    "keep_originals": "keep_originals",
    "jobs": "max_jobs",
    "photo_format": "photo_format",
    "photo_quality_avif": "photo_quality_avif",
    "photo_quality_webp": "photo_quality_webp",
    "video_codec": "video_codec",
    "video_crf": "video_crf",
    "organize_by_date": "organize_by_date",
    "language": "language",
    "timeout_photo": "timeout_photo",
    "timeout_video": "timeout_video",
    "min_output_ratio": "min_output_size_ratio",
}


class _CommandError(Exception):
    """A failure that ends the command with an error message."""


def _normalize_bool_flags(args):
    """Rewrite ``--flag=true|false`` for boolean flags into ``--flag`` / ``--no-flag``."""
    result = []
    passthrough = False
    for arg in args:
        if passthrough or arg == "--":
            passthrough = True
            result.append(arg)
            continue
        name, sep, value = arg.partition("=")
        if sep and name in _BOOL_FLAGS:
            if value in _TRUE:
                result.append(name)
                continue
            if value in _FALSE:
                result.append("--no-" + name[2:])
                continue
        result.append(arg)
    return result


class _Parser(argparse.ArgumentParser):
    def parse_known_args(self, args=None, namespace=None):
        if args is None:
            args = sys.argv[1:]
        return super().parse_known_args(_normalize_bool_flags(list(args)), namespace)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; unset options stay None so lower layers apply."""
    parser = _Parser(
        prog="media-converter",
        description=(
            "Secure parallel media converter: images to AVIF or WebP, videos to "
            "H.265, H.264 or AV1, with safety checks and date-based organisation."
        ),
    )
    parser.add_argument("paths", nargs="*", metavar="PATH", help="source and destination directories")
    parser.add_argument("--config", default=None,
                        help="config file (default is $HOME/.media-converter.yaml)")
    boolean = argparse.BooleanOptionalAction
    parser.add_argument("-n", "--dry-run", action=boolean, default=None,
                        help="show what would be converted without converting")
    parser.add_argument("-k", "--keep-originals", action=boolean, default=None,
                        help="keep original files after conversion (on unless disabled)")
    parser.add_argument("-j", "--jobs", type=int, default=None,
                        help="number of parallel jobs")
    parser.add_argument("--photo-format", default=None, help="output format for photos (avif, webp)")
    parser.add_argument("--photo-quality-avif", type=int, default=None, help="AVIF quality (1-100)")
    parser.add_argument("--photo-quality-webp", type=int, default=None, help="WebP quality (1-100)")
    parser.add_argument("--video-codec", default=None, help="video codec (h265, h264, av1)")
    parser.add_argument("--video-crf", type=int, default=None, help="video CRF (lower = better)")
    parser.add_argument("-o", "--organize-by-date", action=boolean, default=None,
                        help="organise files by date (on unless disabled)")
    parser.add_argument("--language", default=None, help="language for month names (en, fr, es, de)")
    parser.add_argument("--timeout-photo", type=int, default=None,
                        help="timeout for photo conversion in seconds")
    parser.add_argument("--timeout-video", type=int, default=None,
                        help="timeout for video conversion in seconds")
    parser.add_argument("--min-output-ratio", type=float, default=None,
                        help="minimum output size ratio")
    return parser


def _config_candidates(args):
    if args.config:
        return [args.config]
    home = os.path.expanduser("~")
    return [os.path.join(home, name) for name in _CONFIG_NAMES]


def load_settings(args) -> dict:
    """Collect settings from the config file, then the environment, then given flags."""
    settings: dict = {}
    for path in _config_candidates(args):
        try:
            data = read_config_file(path)
        except (OSError, ValueError, yaml.YAMLError):
            continue
        settings.update(data)
        print("Using config file:", path, file=sys.stderr)
        break

    for key in default_settings():
        value = os.environ.get(key.upper())
        if value:
            settings[key] = value

    for attr, key in _FLAG_SETTINGS.items():
        value = getattr(args, attr, None)
        if value is not None:
            settings[key] = value
    return settings


def _run(args) -> None:
    settings = load_settings(args)
    if len(args.paths) != 2:
        raise _CommandError(f"accepts 2 arg(s), received {len(args.paths)}")
    source_dir, dest_dir = args.paths
    config = Config.from_settings({**settings, "source_dir": source_dir, "dest_dir": dest_dir})

    if not os.path.exists(config.source_dir):
        raise _CommandError(f"source directory does not exist: {config.source_dir}")
    try:
        os.makedirs(config.dest_dir, mode=0o755, exist_ok=True)
    except OSError as err:
        raise _CommandError(f"failed to create destination directory: {err}") from err

    try:
        logger = Logger(log_path=os.path.join(config.dest_dir, "conversion.log"))
    except OSError as err:
        raise _CommandError(f"failed to initialize logger: failed to open log file: {err}") from err

    with logger:
        try:
            check_dependencies()
        except DependencyError as err:
            raise _CommandError(f"dependency check failed: {err}") from err
        logger.show_header(config.keep_originals)
        Converter(config, logger).convert()


def main(argv=None) -> int:
    """Run the converter; return the process exit status."""
    args = build_parser().parse_args(argv)
    try:
        _run(args)
    except (_CommandError, ConversionError, SecurityError, OSError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())