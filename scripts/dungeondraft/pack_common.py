"""
pack_common.py
==============

Helpers shared by the Dungeondraft asset pack scripts: the error taxonomy,
path and name validation, boolean flag parsing, external tool discovery and
logging setup.
"""

from __future__ import annotations

import argparse
import glob
import json
import logging
import shutil
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import List, Optional, Sequence

PACK_TEXTURES_DIR = Path("textures")
OBJECTS_DIR = PACK_TEXTURES_DIR / "objects"
PORTALS_DIR = PACK_TEXTURES_DIR / "portals"
TAGS_FILE = Path("data") / "default.dungeondraft_tags"
TAGS_SUFFIX = ".dungeondraft_tags"
COLORABLE = "Colorable"

DEFAULT_TARGET_FORMAT = "webp"

# Source formats the converter understands. The target format is added at
# runtime by ``image_extensions``.
SOURCE_IMAGE_EXTENSIONS = (
    ".bmp",
    ".dds",
    ".exr",
    ".hdr",
    ".jpg",
    ".jpeg",
    ".png",
    ".tga",
    ".svg",
    ".svgz",
)

ILLEGAL_NAME_CHARS = set('<>:"/\\|?*')
ILLEGAL_PATH_CHARS = set('<>"|?*')

TRUE_SPELLINGS = {"true", "t", "yes", "y", "on", "1"}
FALSE_SPELLINGS = {"false", "f", "no", "n", "off", "0"}

CONVERTER_NAMES = ("magick",)
CONVERTER_INSTALL_PATHS = (
    "/usr/local/bin/magick",
    "/usr/bin/magick",
    "/opt/homebrew/bin/magick",
    "C:/Program Files/ImageMagick*/magick.exe",
)


class AssetPackError(Exception):
    """Base class for fatal errors raised by the pack scripts."""


class InputValidationError(AssetPackError, ValueError):
    """Bad or missing path, illegal characters, conflicting options."""


class DependencyMissingError(AssetPackError):
    """An external tool the run depends on could not be located."""


class ConfigurationConflictError(AssetPackError):
    """Caller options contradict what is on disk (e.g. a tag name clash)."""


class ConversionError(AssetPackError):
    def __init__(self, source: Path, returncode: int, stderr: str = "") -> None:
        self.source = source
        self.returncode = returncode
        self.stderr = stderr
        message = f"converter failed for {source} (exit {returncode})"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    logging.getLogger("PIL").setLevel(logging.INFO)


def normalize_extension(extension: str) -> str:
    extension = extension.strip().lower()
    if not extension:
        raise InputValidationError("empty image format")
    if not extension.startswith("."):
        extension = f".{extension}"
    return extension


def image_extensions(target_format: str = DEFAULT_TARGET_FORMAT) -> frozenset:
    """Return every recognized image suffix, the target format included."""
    return frozenset(SOURCE_IMAGE_EXTENSIONS) | {normalize_extension(target_format)}


def is_image(path: Path, target_format: str = DEFAULT_TARGET_FORMAT) -> bool:
    return path.suffix.lower() in image_extensions(target_format)


def parse_bool(raw_value: str) -> bool:
    """Parse one of the accepted true/false spellings, rejecting anything else."""
    token = str(raw_value).strip().lower()
    if token in TRUE_SPELLINGS:
        return True
    if token in FALSE_SPELLINGS:
        return False
    raise InputValidationError(
        f"invalid boolean {raw_value!r} (expected one of: "
        f"{', '.join(sorted(TRUE_SPELLINGS | FALSE_SPELLINGS))})"
    )


def bool_arg(raw_value: str) -> bool:
    """argparse ``type=`` adapter around :func:`parse_bool`."""
    try:
        return parse_bool(raw_value)
    except InputValidationError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def validate_name(name: str, label: str) -> str:
    """Reject names that cannot be used as a file or folder name."""
    if not name or not name.strip():
        raise InputValidationError(f"{label} is empty")
    bad = sorted({ch for ch in name if ch in ILLEGAL_NAME_CHARS or ord(ch) < 32})
    if bad:
        raise InputValidationError(
            f"{label} {name!r} contains illegal characters: {' '.join(repr(ch) for ch in bad)}"
        )
    return name


def validate_path_string(raw_path: str, label: str) -> Path:
    """Check a user-supplied path string for characters no filesystem accepts."""
    text = str(raw_path)
    if not text.strip():
        raise InputValidationError(f"{label} path is empty")
    # A drive letter colon ("C:") is the only colon allowed.
    body = text[2:] if len(text) >= 2 and text[1] == ":" and text[0].isalpha() else text
    bad = sorted(
        {ch for ch in body if ch in ILLEGAL_PATH_CHARS or ch == ":" or ord(ch) < 32}
    )
    if bad:
        raise InputValidationError(
            f"{label} path {text!r} contains illegal characters: {' '.join(repr(ch) for ch in bad)}"
        )
    return Path(text)


def require_dir(path: Path, label: str) -> Path:
    resolved = validate_path_string(str(path), label).resolve()
    if not resolved.is_dir():
        raise InputValidationError(f"{label} does not exist or is not a directory: {resolved}")
    return resolved


def ensure_not_nested(source: Path, destination: Path) -> None:
    """Refuse a destination inside the source tree, which would be walked again."""
    source = source.resolve()
    destination = destination.resolve()
    if destination == source or source in destination.parents:
        raise InputValidationError(
            f"destination {destination} must not be inside source {source}"
        )


def ensure_dir(path: Path, dry_run: bool) -> None:
    if dry_run:
        return
    path.mkdir(parents=True, exist_ok=True)


def has_segment(rel_path: Path, segment: str) -> bool:
    needle = segment.lower()
    return any(part.lower() == needle for part in rel_path.parts)


def to_posix(rel_path: Path) -> str:
    return rel_path.as_posix().replace("\\", "/")


def find_converter(explicit: Optional[Path] = None) -> Path:
    """Locate the ImageMagick binary used for image conversion.

    An explicit path wins; otherwise ``PATH`` is searched, then the usual
    install locations. Raises :class:`DependencyMissingError` when nothing
    is found.
    """
    if explicit is not None:
        candidate = Path(explicit)
        if candidate.is_file():
            return candidate.resolve()
        found = shutil.which(str(explicit))
        if found:
            return Path(found)
        raise DependencyMissingError(f"converter not found: {explicit}")

    for name in CONVERTER_NAMES:
        found = shutil.which(name)
        if found:
            return Path(found)

    for pattern in CONVERTER_INSTALL_PATHS:
        for match in sorted(glob.glob(pattern)):
            if Path(match).is_file():
                return Path(match)

    raise DependencyMissingError(
        "ImageMagick (magick) not found. Install it or pass --converter PATH."
    )


def write_report(report_path: Path, payload: object, dry_run: bool) -> None:
    if is_dataclass(payload):
        payload = asdict(payload)
    if dry_run:
        logging.info("[dry-run] report would be written to %s", report_path)
        return
    ensure_dir(report_path.parent, dry_run=False)
    report_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logging.info("Wrote report to %s", report_path)


def sorted_children(directory: Path) -> List[Path]:
    return sorted(directory.iterdir(), key=lambda child: child.name)


def joined(values: Sequence[str]) -> str:
    return ", ".join(values) if values else "(none)"
