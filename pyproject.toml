[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mediaconv"
version = "1.0.0"
description = "Secure parallel media converter for images and videos"
requires-python = ">=3.10"
keywords = ["media", "converter", "avif", "webp", "h265", "av1", "ffmpeg", "imagemagick"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Graphics Conversion",
    "Topic :: Multimedia :: Video :: Conversion",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
media-converter = "mediaconv.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mediaconv"]

[tool.pytest.ini_options]
addopts = "-ra"
