#!/usr/bin/env python3
"""
generate_tags.py
================

Build the Dungeondraft tag manifest (``data/default.dungeondraft_tags``) for
an asset pack from the folder layout under ``textures/objects``.

* Every immediate subfolder of the object folder becomes a tag.
* Files anywhere below a ``Colorable`` folder are additionally gathered into
  one pack-wide ``Colorable`` tag.
* Loose files directly in the object folder go to ``--default-tag`` if given.
* One set, named after the pack, lists the default tag and the folder tags.

Example usage:

    python generate_tags.py packs/Castles --default-tag Misc
    python generate_tags.py packs/Castles --exclude Unused --name "Castle Pack"
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from pack_common import (
    COLORABLE,
    OBJECTS_DIR,
    TAGS_FILE,
    AssetPackError,
    ConfigurationConflictError,
    InputValidationError,
    configure_logging,
    ensure_dir,
    has_segment,
    is_image,
    joined,
    require_dir,
    sorted_children,
    to_posix,
    validate_name,
)

Manifest = Dict[str, Dict[str, List[str]]]


def find_case_insensitive_child_dir(root: Path, child_name: str) -> Optional[Path]:
    needle = child_name.lower()
    for child in sorted_children(root):
        if child.is_dir() and child.name.lower() == needle:
            return child
    return None


def find_object_dir(pack_root: Path) -> Path:
    current = pack_root
    for part in OBJECTS_DIR.parts:
        found = find_case_insensitive_child_dir(current, part)
        if found is None:
            raise InputValidationError(
                f"object folder not found: {pack_root / OBJECTS_DIR}"
            )
        current = found
    return current


def list_tag_folders(
    object_dir: Path,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
) -> List[Path]:
    """Return the subfolders that should be scanned, after include/exclude filtering."""
    folders = [child for child in sorted_children(object_dir) if child.is_dir()]
    names = {folder.name for folder in folders}
    include = list(include or [])
    exclude = list(exclude or [])

    overlap = sorted(set(include) & set(exclude))
    if overlap:
        raise InputValidationError(
            f"folders both included and excluded: {joined(overlap)}"
        )
    missing = sorted(name for name in include + exclude if name not in names)
    if missing:
        raise InputValidationError(
            f"folders not found under {object_dir}: {joined(missing)}"
        )

    if include:
        folders = [folder for folder in folders if folder.name in include]
    return [folder for folder in folders if folder.name not in exclude]


def iter_files(directory: Path) -> Iterator[Path]:
    """Yield image files below *directory*: a folder's files first, then its subfolders."""
    children = sorted_children(directory)
    for child in children:
        if child.is_file() and is_image(child):
            yield child
    for child in children:
        if child.is_dir():
            yield from iter_files(child)


def check_default_tag(default_tag: str, folders: Sequence[Path]) -> None:
    if default_tag.lower() == COLORABLE.lower():
        raise ConfigurationConflictError(
            f"default tag {default_tag!r} is reserved for colorable assets"
        )
    for folder in folders:
        if folder.name.lower() == default_tag.lower():
            raise ConfigurationConflictError(
                f"default tag {default_tag!r} collides with folder {folder}"
            )


def build_manifest(
    pack_root: Path,
    pack_name: str,
    default_tag: Optional[str] = None,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
) -> Manifest:
    """Collect tags and the pack set. Nothing is written."""
    validate_name(pack_name, "pack name")
    if default_tag is not None:
        validate_name(default_tag, "default tag")

    object_dir = find_object_dir(pack_root)
    all_folders = [child for child in sorted_children(object_dir) if child.is_dir()]
    folders = list_tag_folders(object_dir, include=include, exclude=exclude)
    if default_tag is not None:
        check_default_tag(default_tag, all_folders)

    tags: Dict[str, List[str]] = {}
    colorable: List[str] = []

    if default_tag is not None:
        loose = [
            to_posix(child.relative_to(pack_root))
            for child in sorted_children(object_dir)
            if child.is_file() and is_image(child)
        ]
        if loose:
            tags[default_tag] = loose
        else:
            logging.debug("No loose files in %s; default tag omitted.", object_dir)

    set_members: List[str] = [default_tag] if default_tag in tags else []
    for folder in folders:
        files = list(iter_files(folder))
        paths = [to_posix(path.relative_to(pack_root)) for path in files]
        if folder.name.lower() == COLORABLE.lower():
            colorable.extend(paths)
            continue
        tags[folder.name] = paths
        set_members.append(folder.name)
        for path in files:
            if has_segment(path.parent.relative_to(folder), COLORABLE):
                colorable.append(to_posix(path.relative_to(pack_root)))
        logging.debug("Tag %s: %d file(s)", folder.name, len(paths))

    if colorable:
        tags[COLORABLE] = colorable

    return {"tags": tags, "sets": {pack_name: set_members}}


def render_manifest(manifest: Manifest) -> str:
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"


def write_manifest(pack_root: Path, manifest: Manifest, dry_run: bool = False) -> Path:
    target = pack_root / TAGS_FILE
    if dry_run:
        logging.info("[dry-run][tags] %s", target)
        return target
    ensure_dir(target.parent, dry_run=False)
    target.write_text(render_manifest(manifest), encoding="utf-8")
    return target


def generate_tags(
    pack_root: Path,
    pack_name: Optional[str] = None,
    default_tag: Optional[str] = None,
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    dry_run: bool = False,
) -> Manifest:
    pack_root = require_dir(pack_root, "pack root")
    name = pack_name if pack_name is not None else pack_root.name
    manifest = build_manifest(
        pack_root,
        name,
        default_tag=default_tag,
        include=include,
        exclude=exclude,
    )
    target = write_manifest(pack_root, manifest, dry_run=dry_run)
    logging.info(
        "Tags: %d tag(s), %d path(s) -> %s",
        len(manifest["tags"]),
        sum(len(paths) for paths in manifest["tags"].values()),
        target,
    )
    return manifest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate data/default.dungeondraft_tags from an asset pack's object folders."
    )
    parser.add_argument("pack_root", type=Path, help="Asset pack root directory.")
    parser.add_argument(
        "--name",
        help="Set name written to the manifest (default: the pack folder name).",
    )
    parser.add_argument(
        "--default-tag",
        help="Tag for files lying directly in textures/objects (default: omit them).",
    )
    parser.add_argument(
        "--include",
        nargs="+",
        default=[],
        metavar="FOLDER",
        help="Only tag these object subfolders.",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        metavar="FOLDER",
        help="Skip these object subfolders.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build the manifest but do not write it.",
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
        generate_tags(
            args.pack_root,
            pack_name=args.name,
            default_tag=args.default_tag,
            include=args.include,
            exclude=args.exclude,
            dry_run=args.dry_run,
        )
    except InputValidationError as exc:
        parser.print_usage(sys.stderr)
        logging.error("%s", exc)
        return 2
    except AssetPackError as exc:
        logging.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
