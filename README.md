# mediaconv

A careful, parallel media converter. It turns photos into AVIF or WebP
with ImageMagick and videos into MP4 files encoded with H.265, H.264 or
AV1 with ffmpeg, sorting the results into folders by the date each file
was taken.

Every conversion is written to a temporary `.tmp` file, checked for size
and decodability, and only then moved into place. A safety test converts
a copy of one photo before the real work starts, leftovers of interrupted
runs are cleaned up on the next start, and originals are kept unless you
ask otherwise.

## Requirements

- Python 3.10 or later
- `ffmpeg` and `ffprobe` on your `PATH`
- ImageMagick 7 (the `magick` command) on your `PATH`

The command checks for `ffmpeg` and `magick` before it starts. `ffprobe`
is used to verify converted videos and to read video dates. On macOS,
`mdls` is tried first for a file's creation date.

## Installation

```
pip install .
```

## Usage

```
media-converter SOURCE DESTINATION [options]
```

`SOURCE` must exist; `DESTINATION` is created if needed. Messages go to
the console (coloured when it is a terminal and `NO_COLOR` is not set) and
are appended as plain lines to `DESTINATION/conversion.log`. On failure
the command prints `Error: ...` to standard error and exits with status 1.

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `-n`, `--dry-run` / `--no-dry-run` | off | Show what would be converted, convert nothing |
| `-k`, `--keep-originals` / `--no-keep-originals` | on | Keep original files after conversion |
| `-j`, `--jobs` | CPU cores − 2 | Parallel jobs, kept between 1 and the number of CPUs |
| `--photo-format` | `avif` | `avif` or `webp` |
| `--photo-quality-avif` | 80 | AVIF quality (1–100) |
| `--photo-quality-webp` | 85 | WebP quality (1–100) |
| `--video-codec` | `h265` | `h265`, `av1`; any other value uses H.264 |
| `--video-crf` | 28 | Video CRF (lower is better quality) |
| `-o`, `--organize-by-date` / `--no-organize-by-date` | on | Sort output into year/month/day folders |
| `--language` | `en` | Accepted, but month folders are always named in English |
| `--timeout-photo` | 300 | Photo conversion timeout in seconds |
| `--timeout-video` | 1800 | Video conversion timeout in seconds |
| `--min-output-ratio` | 0.005 | Minimum output/input size ratio for videos and for photo formats other than AVIF and WebP |
| `--config` | `~/.media-converter.yaml` | Configuration file |

Boolean options also take `--flag=true` or `--flag=false`.

Example, previewing a run:

```
media-converter ~/Pictures/import ~/Pictures/converted --dry-run
```

Without `--dry-run` and with `--no-keep-originals`, an original is
deleted only after its converted file has been verified and is at least
1000 bytes long.

## Configuration

Settings are taken, from lowest to highest precedence, from the built-in
defaults, a YAML file, environment variables and command-line options.

The YAML file is the one named by `--config`, or else
`~/.media-converter.yaml` (or `~/.media-converter.yml`). Its keys are
`dry_run`, `keep_originals`, `max_jobs`, `photo_format`,
`photo_quality_avif`, `photo_quality_webp`, `video_codec`, `video_crf`,
`organize_by_date`, `timeout_photo`, `timeout_video`,
`min_output_size_ratio`, `min_output_size_ratio_avif` (default 0.001) and
`min_output_size_ratio_webp` (default 0.003):

```yaml
photo_format: webp
video_codec: av1
max_jobs: 4
```

The same keys in upper case may be set as environment variables, for
example `MAX_JOBS=4` or `DRY_RUN=true`.

## Output layout

With date organisation on, files land in
`DESTINATION/<year>/<MM-Month>/<YYYY-MM-DD>/images|videos/`; with it off,
in `DESTINATION/images/` and `DESTINATION/videos/`. Files are named
`<YYYY-MM-DD>_<clean-name>_001.<ext>`, where videos always get `.mp4`.
The date comes from file metadata when a plausible one (from 1990 up to
now) is found, otherwise from the modification time.

Files already converted and intact are skipped, so a run can safely be
repeated. At the start of each run, `.tmp` files and markers of
interrupted conversions are removed from `DESTINATION`, and existing
`.avif`, `.webp` and converted `.mp4` files that fail to decode are
deleted so they are converted again.

The final report shows counts, total time, sizes before and after, and
an estimate of Amazon S3 Standard storage cost and savings.

## Use from Python

`mediaconv.config.Config.from_settings` builds settings from a mapping
over the defaults, `mediaconv.logger.Logger` writes the console and log
file output, and `mediaconv.converter.Converter(config, logger).convert()`
runs a whole conversion. `mediaconv.cli.main(argv)` runs the command and
returns its exit status.

## Limits

On Windows, the owner of a conversion marker cannot be checked, so every
marker found at start-up is treated as left over and removed; do not run
two conversions into the same destination at once there.

## Running the tests

```
pip install ".[test]"
pytest
```