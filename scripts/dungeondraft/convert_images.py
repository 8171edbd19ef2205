#!/usr/bin/env python3
"""
convert_images.py
=================

Mirror an asset pack (or any source tree) into a new root, converting object
textures to a compressed format (WebP by default) with ImageMagick.

* Images below an ``objects`` folder are converted, one converter call each.
* Other images, and files already in the target format, are copied as-is.
* ``*.dungeondraft_tags`` manifests are rewritten so their paths use the new
  extension.
* Everything else is copied verbatim.

Existing destination files are never overwritten, so an interrupted run can
simply be repeated.

Example usage:

    python convert_images.py packs/Castles converted/Castles
    python convert_images.py packs/Castles converted/Castles \\
        --converter /opt/im/bin/magick --converter-arg -quality --converter-arg 90
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from pack_common import (
    DEFAULT_TARGET_FORMAT,
    SOURCE_IMAGE_EXTENSIONS,
    TAGS_SUFFIX,
    AssetPackError,
    ConfigurationConflictError,
    ConversionError,
    InputValidationError,
    configure_logging,
    ensure_dir,
    ensure_not_nested,
    find_converter,
    has_segment,
    image_extensions,
    normalize_extension,
    require_dir,
    validate_path_string,
    write_report,
)

KIND_CONVERT = "convert"
KIND_COPY = "copy"
KIND_MANIFEST = "manifest"

OBJECTS_SEGMENT = "objects"


@dataclass
class ConversionStats:
    directories_created: int = 0
    converted: int = 0
    copied: int = 0
    manifests_rewritten: int = 0
    skipped: int = 0
    skipped_paths: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FileJob:
    kind: str
    source: Path
    target: Path


def walk_sorted(root: Path) -> Iterator[Tuple[Path, List[str], List[str]]]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        yield Path(dirpath), dirnames, sorted(filenames)


def classify_file(rel_path: Path, target_format: str = DEFAULT_TARGET_FORMAT) -> str:
    """Decide whether *rel_path* is converted, copied or rewritten as a manifest."""
    suffix = rel_path.suffix.lower()
    if suffix == TAGS_SUFFIX:
        return KIND_MANIFEST
    if suffix not in image_extensions(target_format):
        return KIND_COPY
    if suffix == normalize_extension(target_format):
        return KIND_COPY
    if has_segment(rel_path.parent, OBJECTS_SEGMENT):
        return KIND_CONVERT
    return KIND_COPY


def build_jobs(
    source_root: Path,
    output_root: Path,
    target_format: str = DEFAULT_TARGET_FORMAT,
) -> List[FileJob]:
    target_ext = normalize_extension(target_format)
    jobs: List[FileJob] = []
    planned: Dict[Path, Path] = {}
    for dirpath, _dirnames, filenames in walk_sorted(source_root):
        for filename in filenames:
            source = dirpath / filename
            rel = source.relative_to(source_root)
            kind = classify_file(rel, target_format)
            target = output_root / rel
            if kind == KIND_CONVERT:
                target = target.with_suffix(target_ext)
            if target in planned:
                raise ConfigurationConflictError(
                    f"{planned[target]} and {source} would both be written to {target}"
                )
            planned[target] = source
            jobs.append(FileJob(kind=kind, source=source, target=target))
    return jobs


def replicate_directories(
    source_root: Path,
    output_root: Path,
    dry_run: bool,
    stats: ConversionStats,
) -> None:
    for dirpath, _dirnames, _filenames in walk_sorted(source_root):
        target = output_root / dirpath.relative_to(source_root)
        if target.is_dir():
            continue
        if dry_run:
            logging.info("[dry-run][mkdir] %s", target)
        ensure_dir(target, dry_run=dry_run)
        stats.directories_created += 1


def manifest_extension_pattern(target_format: str) -> re.Pattern[str]:
    target_ext = normalize_extension(target_format)
    sources = [ext for ext in SOURCE_IMAGE_EXTENSIONS if ext != target_ext]
    # Longest first so ".svgz" is never read as ".svg".
    alternatives = "|".join(
        re.escape(ext[1:]) for ext in sorted(sources, key=len, reverse=True)
    )
    return re.compile(rf"\.(?:{alternatives})(?![A-Za-z0-9_])", re.IGNORECASE)


def rewrite_manifest_text(text: str, target_format: str = DEFAULT_TARGET_FORMAT) -> str:
    """Point every image reference in a tag manifest at the converted extension."""
    target_ext = normalize_extension(target_format)
    return manifest_extension_pattern(target_format).sub(target_ext, text)


def convert_file(
    converter: Path,
    source: Path,
    target: Path,
    converter_args: Sequence[str] = (),
) -> None:
    cmd = [str(converter)] + list(converter_args) + [str(source), str(target)]
    logging.debug("Executing converter: %s", " ".join(cmd))
    completed = subprocess.run(
        cmd, check=False, capture_output=True, text=True, errors="replace"
    )
    if completed.returncode != 0:
        raise ConversionError(source, completed.returncode, completed.stderr or "")


def copy_file(source: Path, target: Path) -> None:
    shutil.copy2(source, target)


def execute_job(
    job: FileJob,
    converter: Path,
    converter_args: Sequence[str],
    target_format: str,
    dry_run: bool,
    stats: ConversionStats,
) -> None:
    if job.target.exists():
        stats.skipped += 1
        stats.skipped_paths.append(str(job.target))
        logging.debug("Already exists, skipping: %s", job.target)
        return

    if dry_run:
        logging.info("[dry-run][%s] %s -> %s", job.kind, job.source, job.target)
        return

    if job.kind == KIND_CONVERT:
        convert_file(converter, job.source, job.target, converter_args)
        stats.converted += 1
        logging.debug("Converted %s -> %s", job.source, job.target)
    elif job.kind == KIND_MANIFEST:
        text = job.source.read_text(encoding="utf-8")
        job.target.write_text(rewrite_manifest_text(text, target_format), encoding="utf-8")
        stats.manifests_rewritten += 1
        logging.debug("Rewrote manifest %s -> %s", job.source, job.target)
    else:
        copy_file(job.source, job.target)
        stats.copied += 1
        logging.debug("Copied %s -> %s", job.source, job.target)


def run_conversion(
    source_root: Path,
    output_root: Path,
    converter: Path,
    target_format: str = DEFAULT_TARGET_FORMAT,
    converter_args: Sequence[str] = (),
    dry_run: bool = False,
) -> ConversionStats:
    stats = ConversionStats()
    logging.info("Scanning %s", source_root)
    jobs = build_jobs(source_root, output_root, target_format)
    logging.info(
        "Found %d file(s): %d to convert, %d manifest(s), %d to copy.",
        len(jobs),
        sum(1 for job in jobs if job.kind == KIND_CONVERT),
        sum(1 for job in jobs if job.kind == KIND_MANIFEST),
        sum(1 for job in jobs if job.kind == KIND_COPY),
    )

    replicate_directories(source_root, output_root, dry_run, stats)
    for job in jobs:
        execute_job(job, converter, converter_args, target_format, dry_run, stats)

    logging.info(
        "Converted: %d | Copied: %d | Manifests: %d | Skipped (exists): %d",
        stats.converted,
        stats.copied,
        stats.manifests_rewritten,
        stats.skipped,
    )
    return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Copy an asset tree, converting object textures to a compressed format."
    )
    parser.add_argument("source", type=Path, help="Source directory to convert.")
    parser.add_argument("destination", type=Path, help="Directory to write the converted copy to.")
    parser.add_argument(
        "--format",
        default=DEFAULT_TARGET_FORMAT,
        help="Target image format (default: %(default)s).",
    )
    parser.add_argument(
        "--converter",
        type=Path,
        help="Path to the ImageMagick executable (default: search PATH and common install locations).",
    )
    parser.add_argument(
        "--converter-arg",
        action="append",
        default=[],
        help="Extra argument passed to the converter before the file names. Can be supplied multiple times.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned operations without modifying the filesystem.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        help="Optional path to store a JSON summary of the run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        source_root = require_dir(args.source, "source")
        output_root = validate_path_string(str(args.destination), "destination").resolve()
        ensure_not_nested(source_root, output_root)
        normalize_extension(args.format)
    except InputValidationError as exc:
        parser.print_usage(sys.stderr)
        logging.error("%s", exc)
        return 2

    try:
        converter = find_converter(args.converter)
        logging.info("Using converter %s", converter)
        stats = run_conversion(
            source_root,
            output_root,
            converter,
            target_format=args.format,
            converter_args=args.converter_arg,
            dry_run=args.dry_run,
        )
    except AssetPackError as exc:
        logging.error("%s", exc)
        return 1

    if args.report:
        write_report(args.report, stats, dry_run=args.dry_run)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
