#!/usr/bin/env python3
"""
import_symbols.py
=================

Import an external symbol library (flat folders of images, often shipped in
several resolutions) into a Dungeondraft asset pack.

Quality is encoded in the file stem:

    Barrel_VH.png   very high
    Barrel_HI.png   high
    Barrel.png      standard
    Barrel_LO.png   low        (never imported)
    Barrel_VL.png   very low   (never imported)

Only the best tier of each asset survives; lower tiers sharing the same
stripped name are dropped. Files whose name starts with "Door ", "Doors ",
"Window " or "Windows " are portals and can be routed to textures/portals.

Example usage:

    python import_symbols.py ~/Symbols/Castle packs/Castles --portals true --create-tags yes
"""

from __future__ import annotations

import argparse
import enum
import logging
import shutil
import subprocess
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pack_common import (
    OBJECTS_DIR,
    PORTALS_DIR,
    AssetPackError,
    ConfigurationConflictError,
    DependencyMissingError,
    InputValidationError,
    bool_arg,
    configure_logging,
    ensure_dir,
    ensure_not_nested,
    is_image,
    require_dir,
    validate_name,
    validate_path_string,
    write_report,
)

PORTAL_PREFIXES = ("Door ", "Doors ", "Window ", "Windows ")
EXCLUDED_SUFFIXES = ("_LO", "_VL")

# Category folders the source may already be organised in; stripped before remapping.
CATEGORY_PREFIXES: Tuple[Tuple[str, ...], ...] = (
    ("textures", "objects"),
    ("textures", "portals"),
    ("objects",),
    ("portals",),
)

TAG_SCRIPT_NAME = "generate_tags.py"


class QualityTier(enum.IntEnum):
    STANDARD = 0
    HIGH = 1
    VERY_HIGH = 2


class Category(enum.Enum):
    OBJECT = "object"
    PORTAL = "portal"


TIER_SUFFIXES: Tuple[Tuple[str, QualityTier], ...] = (
    ("_VH", QualityTier.VERY_HIGH),
    ("_HI", QualityTier.HIGH),
)


@dataclass(frozen=True)
class SourceAsset:
    source: Path
    rel_path: Path
    base_name: str
    tier: QualityTier
    category: Category


@dataclass(frozen=True)
class CopyJob:
    source: Path
    target: Path


@dataclass
class ImportStats:
    scanned: int = 0
    excluded_low_quality: int = 0
    ignored_non_image: int = 0
    shadowed: int = 0
    directories_created: int = 0
    copied: int = 0
    skipped: int = 0
    shadowed_paths: List[str] = field(default_factory=list)


def quality_tier(stem: str) -> QualityTier:
    upper = stem.upper()
    for suffix, tier in TIER_SUFFIXES:
        if upper.endswith(suffix):
            return tier
    return QualityTier.STANDARD


def strip_quality_suffix(stem: str) -> str:
    upper = stem.upper()
    for suffix, _tier in TIER_SUFFIXES:
        if upper.endswith(suffix):
            return stem[: -len(suffix)]
    return stem


def is_excluded(stem: str) -> bool:
    return stem.upper().endswith(EXCLUDED_SUFFIXES)


def category_for(filename: str) -> Category:
    if filename.startswith(PORTAL_PREFIXES):
        return Category.PORTAL
    return Category.OBJECT


def scan_source(source_root: Path, stats: Optional[ImportStats] = None) -> List[SourceAsset]:
    """Classify every image below *source_root*, dropping low-quality variants."""
    if stats is None:
        stats = ImportStats()
    assets: List[SourceAsset] = []
    for path in sorted(source_root.rglob("*")):
        if not path.is_file():
            continue
        stats.scanned += 1
        if not is_image(path):
            stats.ignored_non_image += 1
            logging.debug("Ignoring non-image file: %s", path)
            continue
        if is_excluded(path.stem):
            stats.excluded_low_quality += 1
            logging.debug("Excluding low-quality file: %s", path)
            continue
        assets.append(
            SourceAsset(
                source=path,
                rel_path=path.relative_to(source_root),
                base_name=strip_quality_suffix(path.stem),
                tier=quality_tier(path.stem),
                category=category_for(path.name),
            )
        )
    return assets


def resolve_tiers(
    assets: Iterable[SourceAsset],
    stats: Optional[ImportStats] = None,
) -> List[SourceAsset]:
    """Keep only the highest tier present for each (category, stripped name)."""
    assets = list(assets)
    best: Dict[Tuple[Category, str], QualityTier] = defaultdict(lambda: QualityTier.STANDARD)
    for asset in assets:
        key = (asset.category, asset.base_name)
        best[key] = max(best[key], asset.tier)

    kept: List[SourceAsset] = []
    for asset in assets:
        if asset.tier == best[(asset.category, asset.base_name)]:
            kept.append(asset)
            continue
        if stats is not None:
            stats.shadowed += 1
            stats.shadowed_paths.append(str(asset.rel_path))
        logging.debug(
            "Dropping %s: higher quality %s exists",
            asset.rel_path,
            best[(asset.category, asset.base_name)].name,
        )
    return kept


def strip_category_prefix(rel_path: Path) -> Path:
    parts = rel_path.parts
    lowered = tuple(part.lower() for part in parts)
    for prefix in CATEGORY_PREFIXES:
        if lowered[: len(prefix)] == prefix and len(parts) > len(prefix):
            return Path(*parts[len(prefix):])
    return rel_path


def destination_for(
    destination: Path,
    category: Category,
    rel_path: Path,
    route_portals: bool = True,
) -> Path:
    """Map a source-relative path to its place in the destination pack."""
    subpath = strip_category_prefix(rel_path)
    if category is Category.PORTAL and route_portals:
        return destination / PORTALS_DIR / subpath
    return destination / OBJECTS_DIR / subpath


def plan_imports(
    assets: Iterable[SourceAsset],
    destination: Path,
    route_portals: bool = True,
) -> List[CopyJob]:
    jobs: List[CopyJob] = []
    planned: Dict[Path, Path] = {}
    for asset in assets:
        target = destination_for(destination, asset.category, asset.rel_path, route_portals)
        if target in planned:
            raise ConfigurationConflictError(
                f"{planned[target]} and {asset.source} would both be imported as {target}"
            )
        planned[target] = asset.source
        jobs.append(CopyJob(source=asset.source, target=target))
    return jobs


def run_import(
    source_root: Path,
    destination: Path,
    route_portals: bool = True,
    dry_run: bool = False,
) -> ImportStats:
    stats = ImportStats()
    logging.info("Scanning symbol library %s", source_root)
    assets = scan_source(source_root, stats)
    kept = resolve_tiers(assets, stats)
    jobs = plan_imports(kept, destination, route_portals)
    logging.info(
        "Found %d file(s): %d low-quality excluded, %d shadowed by a better tier, %d to import.",
        stats.scanned,
        stats.excluded_low_quality,
        stats.shadowed,
        len(jobs),
    )

    for directory in sorted({job.target.parent for job in jobs}):
        if directory.is_dir():
            continue
        if dry_run:
            logging.info("[dry-run][mkdir] %s", directory)
        ensure_dir(directory, dry_run=dry_run)
        stats.directories_created += 1

    for job in jobs:
        if job.target.exists():
            stats.skipped += 1
            logging.debug("Already exists, skipping: %s", job.target)
            continue
        if dry_run:
            logging.info("[dry-run][import] %s -> %s", job.source, job.target)
            continue
        shutil.copy2(job.source, job.target)
        stats.copied += 1
        logging.debug("Imported %s -> %s", job.source, job.target)

    logging.info("Imported: %d | Skipped (exists): %d", stats.copied, stats.skipped)
    return stats


def find_tag_script() -> Path:
    candidate = Path(__file__).resolve().with_name(TAG_SCRIPT_NAME)
    if not candidate.is_file():
        raise DependencyMissingError(f"tag generator not found: {candidate}")
    return candidate


def run_tag_generator(script: Path, pack_root: Path, pack_name: str, dry_run: bool = False) -> None:
    cmd = [sys.executable, str(script), str(pack_root), "--name", pack_name]
    if dry_run:
        logging.info("[dry-run][tags] %s", " ".join(cmd))
        return
    logging.info("Generating tags for %s", pack_root)
    subprocess.run(cmd, check=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import the best-quality version of each symbol into a Dungeondraft asset pack."
    )
    parser.add_argument("source", type=Path, help="Symbol library directory to import from.")
    parser.add_argument("destination", type=Path, help="Asset pack root to import into.")
    parser.add_argument(
        "--create-tags",
        type=bool_arg,
        default=False,
        metavar="BOOL",
        help="Run generate_tags.py on the destination afterwards (default: %(default)s).",
    )
    parser.add_argument(
        "--portals",
        type=bool_arg,
        default=True,
        metavar="BOOL",
        help="Route doors and windows to textures/portals (default: %(default)s).",
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
        destination = validate_path_string(str(args.destination), "destination").resolve()
        ensure_not_nested(source_root, destination)
        if args.create_tags:
            validate_name(destination.name, "pack name")
    except InputValidationError as exc:
        parser.print_usage(sys.stderr)
        logging.error("%s", exc)
        return 2

    try:
        tag_script = find_tag_script() if args.create_tags else None
        stats = run_import(
            source_root,
            destination,
            route_portals=args.portals,
            dry_run=args.dry_run,
        )
        if tag_script is not None:
            run_tag_generator(tag_script, destination, destination.name, dry_run=args.dry_run)
    except AssetPackError as exc:
        logging.error("%s", exc)
        return 1
    except subprocess.CalledProcessError as exc:
        logging.error("Tag generation failed (exit %d).", exc.returncode)
        return 1

    if args.report:
        write_report(args.report, stats, dry_run=args.dry_run)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
