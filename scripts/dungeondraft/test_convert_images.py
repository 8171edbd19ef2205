#!/usr/bin/env python3
import json
import stat
import tempfile
import unittest
from pathlib import Path
from unittest import mock
import sys


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import convert_images as convert
from pack_common import ConfigurationConflictError, ConversionError, DependencyMissingError


def _write_tool(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\nimport shutil, sys\n{body}\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def _fake_converter(directory: Path) -> Path:
    return _write_tool(directory / "fake_magick", "shutil.copyfile(sys.argv[-2], sys.argv[-1])")


def _failing_converter(directory: Path) -> Path:
    return _write_tool(directory / "broken_magick", "sys.stderr.write('boom')\nsys.exit(3)")


MANIFEST_TEXT = json.dumps(
    {
        "tags": {"Bones": ["textures/objects/Bones/bone.png", "textures/objects/already.webp"]},
        "sets": {"Castles": ["Bones"]},
    },
    indent=2,
)


def _source_tree(root: Path) -> Path:
    source = root / "src"
    files = {
        "textures/objects/Bones/bone.png": b"png-bytes",
        "textures/objects/already.webp": b"webp-bytes",
        "textures/walls/wall.png": b"wall-bytes",
        "readme.txt": b"hello",
    }
    for rel, payload in files.items():
        path = source / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
    (source / "textures" / "empty").mkdir(parents=True)
    manifest = source / "data" / "default.dungeondraft_tags"
    manifest.parent.mkdir(parents=True)
    manifest.write_text(MANIFEST_TEXT, encoding="utf-8")
    return source


class ClassifyTests(unittest.TestCase):
    def test_object_images_are_converted(self) -> None:
        self.assertEqual(convert.classify_file(Path("textures/objects/a.PNG")), convert.KIND_CONVERT)
        self.assertEqual(convert.classify_file(Path("Objects/sub/a.svgz")), convert.KIND_CONVERT)

    def test_target_format_and_other_images_are_copied(self) -> None:
        self.assertEqual(convert.classify_file(Path("textures/objects/a.webp")), convert.KIND_COPY)
        self.assertEqual(convert.classify_file(Path("textures/walls/a.png")), convert.KIND_COPY)
        self.assertEqual(convert.classify_file(Path("objects.png")), convert.KIND_COPY)

    def test_non_images_and_manifests(self) -> None:
        self.assertEqual(convert.classify_file(Path("textures/objects/notes.txt")), convert.KIND_COPY)
        self.assertEqual(
            convert.classify_file(Path("data/default.dungeondraft_tags")), convert.KIND_MANIFEST
        )

    def test_custom_target_format(self) -> None:
        self.assertEqual(convert.classify_file(Path("objects/a.png"), "png"), convert.KIND_COPY)
        self.assertEqual(convert.classify_file(Path("objects/a.webp"), "png"), convert.KIND_COPY)
        self.assertEqual(convert.classify_file(Path("objects/a.jpg"), "png"), convert.KIND_CONVERT)


class RewriteManifestTests(unittest.TestCase):
    def test_replaces_every_source_extension(self) -> None:
        text = '["a.png", "b.JPEG", "c.jpg", "d.svgz", "e.svg", "f.tga", "g.webp"]'
        self.assertEqual(
            convert.rewrite_manifest_text(text),
            '["a.webp", "b.webp", "c.webp", "d.webp", "e.webp", "f.webp", "g.webp"]',
        )

    def test_leaves_longer_extensions_alone(self) -> None:
        self.assertEqual(convert.rewrite_manifest_text("a.pngx b.tgaz"), "a.pngx b.tgaz")

    def test_target_extension_is_not_rewritten(self) -> None:
        self.assertEqual(convert.rewrite_manifest_text("a.png b.jpg", "png"), "a.png b.png")


class RunConversionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.root = Path(self._temp.name)
        self.source = _source_tree(self.root)
        self.output = self.root / "out"
        self.converter = _fake_converter(self.root)

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_converts_copies_and_rewrites(self) -> None:
        stats = convert.run_conversion(self.source, self.output, self.converter)

        self.assertEqual(stats.converted, 1)
        self.assertEqual(stats.copied, 3)
        self.assertEqual(stats.manifests_rewritten, 1)
        self.assertEqual(stats.skipped, 0)

        converted = self.output / "textures" / "objects" / "Bones" / "bone.webp"
        self.assertEqual(converted.read_bytes(), b"png-bytes")
        self.assertFalse((self.output / "textures" / "objects" / "Bones" / "bone.png").exists())
        self.assertEqual((self.output / "textures" / "walls" / "wall.png").read_bytes(), b"wall-bytes")
        self.assertEqual((self.output / "textures" / "objects" / "already.webp").read_bytes(), b"webp-bytes")
        self.assertEqual((self.output / "readme.txt").read_bytes(), b"hello")
        self.assertTrue((self.output / "textures" / "empty").is_dir())

        manifest = json.loads(
            (self.output / "data" / "default.dungeondraft_tags").read_text(encoding="utf-8")
        )
        self.assertEqual(
            manifest["tags"]["Bones"],
            ["textures/objects/Bones/bone.webp", "textures/objects/already.webp"],
        )

    def test_second_run_skips_everything(self) -> None:
        convert.run_conversion(self.source, self.output, self.converter)
        stats = convert.run_conversion(self.source, self.output, self.converter)
        self.assertEqual(stats.converted, 0)
        self.assertEqual(stats.copied, 0)
        self.assertEqual(stats.manifests_rewritten, 0)
        self.assertEqual(stats.skipped, 5)
        self.assertEqual(stats.directories_created, 0)

    def test_existing_destination_is_not_overwritten(self) -> None:
        target = self.output / "readme.txt"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"keep me")
        convert.run_conversion(self.source, self.output, self.converter)
        self.assertEqual(target.read_bytes(), b"keep me")

    def test_dry_run_touches_nothing(self) -> None:
        stats = convert.run_conversion(self.source, self.output, self.converter, dry_run=True)
        self.assertFalse(self.output.exists())
        self.assertEqual(stats.converted + stats.copied + stats.manifests_rewritten, 0)

    def test_failing_converter_aborts(self) -> None:
        broken = _failing_converter(self.root)
        with self.assertRaises(ConversionError) as ctx:
            convert.run_conversion(self.source, self.output, broken)
        self.assertEqual(ctx.exception.returncode, 3)
        self.assertIn("boom", str(ctx.exception))

    def test_converter_args_come_before_file_names(self) -> None:
        with mock.patch.object(convert.subprocess, "run") as run:
            run.return_value = mock.Mock(returncode=0, stderr="")
            convert.convert_file(Path("/bin/magick"), Path("in.png"), Path("out.webp"), ["-quality", "90"])
        run.assert_called_once()
        self.assertEqual(run.call_args[0][0], ["/bin/magick", "-quality", "90", "in.png", "out.webp"])

    def test_undecodable_stderr_still_raises_conversion_error(self) -> None:
        broken = _write_tool(
            self.root / "latin1_magick", "sys.stderr.buffer.write(b\"caf\\xe9 \\xff\")\nsys.exit(1)"
        )
        with self.assertRaises(ConversionError) as ctx:
            convert.convert_file(broken, self.source / "readme.txt", self.root / "x.webp")
        self.assertEqual(ctx.exception.returncode, 1)
        self.assertIn("caf", str(ctx.exception))

    def test_two_sources_converting_to_one_target_are_rejected(self) -> None:
        objects = self.source / "textures" / "objects"
        (objects / "a.png").write_bytes(b"png")
        (objects / "a.jpg").write_bytes(b"jpg")
        with self.assertRaises(ConfigurationConflictError) as ctx:
            convert.run_conversion(self.source, self.output, self.converter)
        self.assertIn("a.png", str(ctx.exception))
        self.assertIn("a.jpg", str(ctx.exception))
        self.assertFalse(self.output.exists())

    def test_converted_name_clashing_with_existing_target_format_is_rejected(self) -> None:
        objects = self.source / "textures" / "objects"
        (objects / "already.png").write_bytes(b"png")
        with self.assertRaises(ConfigurationConflictError):
            convert.build_jobs(self.source, self.output)


class MainTests(unittest.TestCase):
    def test_main_with_explicit_converter_and_report(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = _source_tree(root)
            tool = _fake_converter(root)
            report = root / "reports" / "run.json"
            code = convert.main(
                [str(source), str(root / "out"), "--converter", str(tool), "--report", str(report)]
            )
            self.assertEqual(code, 0)
            payload = json.loads(report.read_text(encoding="utf-8"))
            self.assertEqual(payload["converted"], 1)

    def test_main_missing_converter_fails_before_writing(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = _source_tree(root)
            with mock.patch.object(
                convert, "find_converter", side_effect=DependencyMissingError("no magick")
            ):
                code = convert.main([str(source), str(root / "out")])
            self.assertEqual(code, 1)
            self.assertFalse((root / "out").exists())

    def test_main_rejects_destination_inside_source(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _source_tree(Path(temp_dir))
            self.assertEqual(convert.main([str(source), str(source / "converted")]), 2)
            self.assertFalse((source / "converted").exists())

    def test_main_rejects_missing_source(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            self.assertEqual(convert.main([str(root / "nope"), str(root / "out")]), 2)


if __name__ == "__main__":
    unittest.main()
