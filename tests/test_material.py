"""Tests for Godot material descriptor generation."""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from TexBrew.config import ChannelKind, RunConfig
from TexBrew.core import (
    ConversionResult, FailureReason, MaterialGroup, Outcome, OutputResolver, classify_inputs,
)
from TexBrew.phases import GodotMaterialGenerator, godot_uid, read_import_sidecar


def _make(tmpdir, names, outcomes=None, config=None):
    """Build a group plus per-channel results for files in ``tmpdir``."""
    config = config or RunConfig()
    resolver = OutputResolver.from_config(config)
    images = classify_inputs([os.path.join(tmpdir, n) for n in names])
    group = MaterialGroup(images[0].base_name, {img.channel: img for img in images})
    outcomes = outcomes or {}
    results = {
        img.channel: ConversionResult(
            source=img,
            destination=resolver.destination_for(img),
            outcome=outcomes.get(img.filename, Outcome.CONVERTED),
            reason=(FailureReason.DECODE_ERROR
                    if outcomes.get(img.filename) is Outcome.FAILED else None),
        )
        for img in images
    }
    return GodotMaterialGenerator(config, resolver), group, results


class TestGodotUid(unittest.TestCase):
    def test_deterministic_and_godot_shaped(self):
        uid = godot_uid("wall")
        self.assertEqual(uid, godot_uid("wall"))
        self.assertNotEqual(uid, godot_uid("door"))
        self.assertEqual(len(uid), 12)
        self.assertRegex(uid, r"^[a-z0-9]{12}$")


class TestRender(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_albedo_and_normal(self):
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif", "wall_normal.tif"])
        descriptor = gen.build(group, results)
        self.assertTrue(descriptor.complete)
        self.assertEqual(descriptor.path, Path(self.tmpdir) / "wall.tres")
        expected = (
            f'[gd_resource type="StandardMaterial3D" load_steps=3 format=3 '
            f'uid="uid://{godot_uid("wall")}"]\n'
            "\n"
            '[ext_resource type="Texture2D" path="wall_albedo.jpg" id="1_albedo"]\n'
            '[ext_resource type="Texture2D" path="wall_normal.jpg" id="2_normal"]\n'
            "\n"
            "[resource]\n"
            'resource_name = "wall"\n'
            'albedo_texture = ExtResource("1_albedo")\n'
            "normal_enabled = true\n"
            'normal_texture = ExtResource("2_normal")\n'
        )
        self.assertEqual(descriptor.content, expected)

    def test_every_channel_property(self):
        names = [
            "m_emissive.tif", "m_height.tif", "m_ao.tif", "m_metallic.tif",
            "m_roughness.tif", "m_normal.tif", "m_albedo.tif",
        ]
        gen, group, results = _make(self.tmpdir, names)
        content = gen.build(group, results).content
        self.assertIn("load_steps=8", content)
        for line in (
            'albedo_texture = ExtResource("1_albedo")',
            "normal_enabled = true",
            'roughness_texture = ExtResource("3_roughness")',
            "metallic = 1.0",
            'metallic_texture = ExtResource("4_metallic")',
            "ao_enabled = true",
            'ao_texture = ExtResource("5_ao")',
            "heightmap_enabled = true",
            'heightmap_texture = ExtResource("6_height")',
            "emission_enabled = true",
            'emission_texture = ExtResource("7_emission")',
        ):
            self.assertIn(line, content)
        # Slots are written in a fixed order whatever the discovery order.
        self.assertLess(content.index("albedo_texture"), content.index("emission_texture"))

    def test_missing_albedo_is_incomplete_but_emitted(self):
        gen, group, results = _make(self.tmpdir, ["wall_normal.tif", "wall_roughness.tif"])
        with self.assertLogs("texture_pipeline.material", level="WARNING"):
            descriptor = gen.build(group, results)
        self.assertIsNotNone(descriptor)
        self.assertFalse(descriptor.complete)
        self.assertNotIn("albedo_texture", descriptor.content)

    def test_failed_member_is_omitted(self):
        gen, group, results = _make(
            self.tmpdir, ["wall_albedo.tif", "wall_normal.tif"],
            outcomes={"wall_normal.tif": Outcome.FAILED},
        )
        descriptor = gen.build(group, results)
        self.assertEqual(list(descriptor.channels), [ChannelKind.ALBEDO])
        self.assertNotIn("normal", descriptor.content)
        self.assertIn("load_steps=2", descriptor.content)

    def test_skipped_members_still_referenced(self):
        gen, group, results = _make(
            self.tmpdir, ["wall_albedo.tif", "wall_normal.tif"],
            outcomes={"wall_albedo.tif": Outcome.SKIPPED_EXISTS,
                      "wall_normal.tif": Outcome.SKIPPED_PREVIEW},
        )
        descriptor = gen.build(group, results)
        self.assertEqual(set(descriptor.channels), {ChannelKind.ALBEDO, ChannelKind.NORMAL})

    def test_no_usable_channel_yields_none(self):
        gen, group, results = _make(
            self.tmpdir, ["wall_albedo.tif"], outcomes={"wall_albedo.tif": Outcome.FAILED},
        )
        self.assertIsNone(gen.build(group, results))

    def test_unknown_only_group_yields_none(self):
        gen, group, results = _make(self.tmpdir, ["photo.tif"])
        self.assertIsNone(gen.build(group, results))

    def test_paths_relative_to_descriptor_directory(self):
        config = RunConfig()
        config.destination_dir = os.path.join(self.tmpdir, "out")
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        descriptor = gen.build(group, results)
        self.assertEqual(descriptor.path, Path(self.tmpdir) / "out" / "wall.tres")
        self.assertIn('path="wall_albedo.jpg"', descriptor.content)

    def test_res_root_paths(self):
        config = RunConfig()
        config.destination_dir = os.path.join(self.tmpdir, "textures", "wall")
        config.material.res_root = self.tmpdir
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        content = gen.build(group, results).content
        self.assertIn('path="res://textures/wall/wall_albedo.jpg"', content)

    def test_res_root_outside_falls_back_to_relative(self):
        config = RunConfig()
        config.material.res_root = os.path.join(self.tmpdir, "project")
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        content = gen.build(group, results).content
        self.assertIn('path="wall_albedo.jpg"', content)

    def test_import_sidecar_uid_used(self):
        with open(os.path.join(self.tmpdir, "wall_albedo.jpg.import"), "w", encoding="utf-8") as f:
            f.write(
                '[remap]\n\nimporter="texture"\ntype="CompressedTexture2D"\n'
                'uid="uid://b8x2k4m1q0w7e"\n'
                'path="res://.godot/imported/wall_albedo.jpg-abc.ctex"\n\n'
                '[deps]\n\nsource_file="res://textures/wall_albedo.jpg"\n'
            )
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif", "wall_normal.tif"])
        content = gen.build(group, results).content
        self.assertIn(
            '[ext_resource type="Texture2D" uid="uid://b8x2k4m1q0w7e" '
            'path="res://textures/wall_albedo.jpg" id="1_albedo"]',
            content,
        )
        self.assertIn('[ext_resource type="Texture2D" path="wall_normal.jpg" id="2_normal"]',
                      content)

    def test_import_sidecar_ignored_when_disabled(self):
        with open(os.path.join(self.tmpdir, "wall_albedo.jpg.import"), "w", encoding="utf-8") as f:
            f.write('uid="uid://abc"\nsource_file="res://wall_albedo.jpg"\n')
        config = RunConfig()
        config.material.use_import_uids = False
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        self.assertNotIn("uid://abc", gen.build(group, results).content)


class TestReadImportSidecar(unittest.TestCase):
    def test_missing_sidecar(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertIsNone(read_import_sidecar(Path(tmpdir) / "a.jpg"))

    def test_sidecar_without_entries(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            Path(tmpdir, "a.jpg.import").write_text("[remap]\n", encoding="utf-8")
            self.assertIsNone(read_import_sidecar(Path(tmpdir) / "a.jpg"))


class TestGenerate(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_writes_descriptor(self):
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"])
        material = gen.generate(group, results)
        self.assertEqual(material.outcome, Outcome.CONVERTED)
        with open(material.path, encoding="utf-8") as f:
            self.assertEqual(f.read(), material.descriptor.content)

    def test_rerun_is_byte_identical(self):
        config = RunConfig()
        config.allow_overwrite = True
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        first = gen.generate(group, results)
        first_bytes = Path(first.path).read_bytes()
        gen2, group2, results2 = _make(self.tmpdir, ["wall_albedo.tif"], config=config)
        gen2.generate(group2, results2)
        self.assertEqual(Path(first.path).read_bytes(), first_bytes)

    def test_existing_descriptor_kept_without_overwrite(self):
        path = Path(self.tmpdir) / "wall.tres"
        path.write_text("hand edited", encoding="utf-8")
        gen, group, results = _make(self.tmpdir, ["wall_albedo.tif"])
        material = gen.generate(group, results)
        self.assertEqual(material.outcome, Outcome.SKIPPED_EXISTS)
        self.assertEqual(path.read_text(encoding="utf-8"), "hand edited")

    def test_preview_writes_nothing(self):
        config = RunConfig()
        config.preview = True
        gen, group, results = _make(
            self.tmpdir, ["wall_albedo.tif"],
            outcomes={"wall_albedo.tif": Outcome.SKIPPED_PREVIEW}, config=config,
        )
        material = gen.generate(group, results)
        self.assertEqual(material.outcome, Outcome.SKIPPED_PREVIEW)
        self.assertIn("albedo_texture", material.descriptor.content)
        self.assertEqual(os.listdir(self.tmpdir), [])

    def test_descriptor_collision_fails_second_group(self):
        config = RunConfig()
        resolver = OutputResolver.from_config(config)
        gen = GodotMaterialGenerator(config, resolver)
        materials = []
        # Simulate a case-insensitive filesystem: Wall.tres and wall.tres collide.
        with mock.patch("TexBrew.core.paths._path_key",
                        side_effect=lambda p: os.path.abspath(str(p)).lower()):
            for name in ("Wall_albedo.tif", "wall_normal.tif"):
                image = classify_inputs([os.path.join(self.tmpdir, name)])[0]
                group = MaterialGroup(image.base_name, {image.channel: image})
                result = ConversionResult(
                    source=image,
                    destination=resolver.destination_for(image),
                    outcome=Outcome.CONVERTED,
                )
                materials.append(gen.generate(group, {image.channel: result}))
        first, second = materials
        self.assertEqual(first.outcome, Outcome.CONVERTED)
        self.assertEqual(second.outcome, Outcome.FAILED)
        self.assertEqual(second.reason, FailureReason.OUTPUT_CONFLICT)
        self.assertEqual(os.listdir(self.tmpdir), ["Wall.tres"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
