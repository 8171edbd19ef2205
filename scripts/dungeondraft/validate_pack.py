#!/usr/bin/env python3
"""
validate_pack.py
================

Structural validation for a finished Dungeondraft asset pack. Every raster
image must open with Pillow, and every path listed in
``data/default.dungeondraft_tags`` must exist.

Usage:
    python3 validate_pack.py packs/Castles --report reports/castles.json --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from pack_common import (
    TAGS_FILE,
    AssetPackError,
    configure_logging,
    is_image,
    require_dir,
    write_report,
)

# Formats Pillow cannot decode; they are left to Dungeondraft.
UNDECODABLE_EXTENSIONS = {".exr", ".hdr", ".svg", ".svgz"}


@dataclass
class ValidationStats:
    total: int = 0
    passed: int = 0
    failed: int = 0
    by_type: Dict[str, Dict[str, int]] = field(default_factory=dict)
    failures: List[Dict[str, str]] = field(default_factory=list)

    def record(self, ftype: str, rel_path: str, ok: bool, reason: str) -> None:
        counts = self.by_type.setdefault(ftype, {"total": 0, "passed": 0, "failed": 0})
        self.total += 1
        counts["total"] += 1
        if ok:
            self.passed += 1
            counts["passed"] += 1
            return
        self.failed += 1
        counts["failed"] += 1
        self.failures.append({"path": rel_path, "type": ftype, "reason": reason})
        logging.warning("FAIL: %s: %s", rel_path, reason)


def validate_image(path: Path) -> Tuple[bool, str]:
    """Open an image with Pillow and check it has non-zero dimensions."""
    try:
        with Image.open(path) as img:
            width, height = img.size
            if width <= 0 or height <= 0:
                return False, f"zero dimensions ({width}x{height})"
            img.verify()
    except (OSError, UnidentifiedImageError, SyntaxError, ValueError) as exc:
        return False, f"invalid image: {exc}"
    return True, "ok"


def validate_manifest(pack_root: Path, manifest_path: Path) -> List[Tuple[str, str]]:
    """Return (item, reason) pairs for every problem in a tag manifest."""
    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return [(TAGS_FILE.as_posix(), f"invalid JSON: {exc}")]

    if not isinstance(payload, dict):
        return [(TAGS_FILE.as_posix(), f"unexpected root type: {type(payload).__name__}")]

    problems: List[Tuple[str, str]] = []
    tags = payload.get("tags")
    sets = payload.get("sets")
    if not isinstance(tags, dict):
        problems.append((TAGS_FILE.as_posix(), "missing 'tags' mapping"))
        tags = {}
    if not isinstance(sets, dict):
        problems.append((TAGS_FILE.as_posix(), "missing 'sets' mapping"))
        sets = {}

    for tag, paths in tags.items():
        if not isinstance(paths, list):
            problems.append((f"tag:{tag}", "path list is not a list"))
            continue
        for rel in paths:
            if not (pack_root / str(rel)).is_file():
                problems.append((str(rel), f"listed under tag {tag!r} but missing"))

    for set_name, members in sets.items():
        if not isinstance(members, list):
            problems.append((f"set:{set_name}", "member list is not a list"))
            continue
        for tag in members:
            if tag not in tags:
                problems.append((f"set:{set_name}", f"unknown tag {tag!r}"))

    return problems


def validate_pack(pack_root: Path) -> ValidationStats:
    stats = ValidationStats()

    for dirpath, dirnames, filenames in os.walk(pack_root):
        dirnames.sort()
        for fname in sorted(filenames):
            fpath = Path(dirpath) / fname
            if not is_image(fpath):
                continue
            suffix = fpath.suffix.lower()
            if suffix in UNDECODABLE_EXTENSIONS:
                logging.debug("Skipping undecodable image: %s", fpath)
                continue
            ok, reason = validate_image(fpath)
            stats.record(suffix.lstrip("."), fpath.relative_to(pack_root).as_posix(), ok, reason)

    manifest_path = pack_root / TAGS_FILE
    if manifest_path.is_file():
        problems = validate_manifest(pack_root, manifest_path)
        if not problems:
            stats.record("manifest", TAGS_FILE.as_posix(), True, "ok")
        for item, reason in problems:
            stats.record("manifest", item, False, reason)
    else:
        logging.info("No tag manifest at %s", manifest_path)

    logging.info(
        "Validation: %d total, %d passed, %d failed",
        stats.total,
        stats.passed,
        stats.failed,
    )
    for ftype, counts in sorted(stats.by_type.items()):
        logging.info(
            "  %s: %d total, %d passed, %d failed",
            ftype,
            counts["total"],
            counts["passed"],
            counts["failed"],
        )
    return stats


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Validate the images and tag manifest of a Dungeondraft asset pack."
    )
    parser.add_argument("pack_root", type=Path, help="Asset pack root directory.")
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Path for JSON validation report",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        pack_root = require_dir(args.pack_root, "pack root")
    except AssetPackError as exc:
        parser.print_usage(sys.stderr)
        logging.error("%s", exc)
        return 2

    stats = validate_pack(pack_root)
    if args.report:
        write_report(args.report, stats, dry_run=False)

    if stats.failed > 0:
        logging.warning("%d item(s) failed validation", stats.failed)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
