from __future__ import annotations

from pathlib import Path
from unittest import mock
import tempfile
import unittest

from stagebuild.graph import ActionKind, add_goal_nodes, build_core_graph
from stagebuild.modules import ModuleActivator, ModuleCategory, install_prefix

from helpers import HOST, make_context, write_workspace


class ModuleActivationTests(unittest.TestCase):
    def test_goals_select_modules_by_pattern(self) -> None:
        activator = ModuleActivator()
        self.assertEqual(activator.activate(["all"]), [])
        self.assertEqual(activator.activate(["clean"]), [ModuleCategory.CLEAN])
        self.assertEqual(activator.activate([f"check-stage1-H-{HOST}"]), [ModuleCategory.TESTS])
        self.assertEqual(activator.activate(["install", "dist"]), [ModuleCategory.PACKAGING, ModuleCategory.INSTALL])
        self.assertEqual(activator.activate(["uninstall"]), [ModuleCategory.INSTALL])
        self.assertEqual(activator.activate(["snap-stage2"]), [ModuleCategory.SNAPSHOT])
        self.assertEqual(activator.activate(["TAGS"]), [ModuleCategory.TAGS])
        self.assertEqual(activator.activate(["perf", "tidy"]), [ModuleCategory.TESTS, ModuleCategory.PERF])

    def test_only_matching_loaders_run(self) -> None:
        loaders = {category: mock.Mock(name=category.value) for category in ModuleCategory}
        activator = ModuleActivator(loaders)
        context = mock.Mock()
        self.assertEqual(activator.load(context, ["clean"]), [ModuleCategory.CLEAN])
        loaders[ModuleCategory.CLEAN].assert_called_once_with(context)
        for category, loader in loaders.items():
            if category is not ModuleCategory.CLEAN:
                loader.assert_not_called()


class ModuleLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        write_workspace(
            self.root,
            extra='\n[[generated]]\noutput = "doc/version.md"\ncommand = ["echo", "{{output}}"]\n',
        )
        sources = self.root / "src"
        (sources / "libcore").mkdir(parents=True)
        (sources / "libcore" / "core.rc").write_text("mod a;\n", encoding="utf-8")
        (sources / "libcore" / "a.rs").write_text("fn a() {}\n", encoding="utf-8")
        (sources / "test").mkdir()
        (sources / "test" / "run-pass.rs").write_text("fn main() {}\n", encoding="utf-8")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _load(self, goals, env=None):
        context = make_context(self.root, env=env)
        build_core_graph(context)
        ModuleActivator().load(context, goals)
        add_goal_nodes(context)
        context.graph.finalize()
        return context

    def test_clean_does_not_run_other_module_setup(self) -> None:
        with mock.patch("stagebuild.graph.walk_sources") as walk:
            context = self._load(["clean"])
        walk.assert_not_called()
        self.assertEqual(context.scans, [])
        self.assertNotIn("dist/tarball", context.graph)
        self.assertNotIn("tidy/sources", context.graph)
        self.assertNotIn("check", context.aggregator)

        node = context.graph.get("clean/stage1")
        self.assertEqual(node.kind, ActionKind.REMOVE)
        self.assertEqual([str(target) for target in node.targets], [f"{HOST}/stage1"])
        misc = context.graph.get("clean/misc")
        self.assertIn("doc/version.md", [str(target) for target in misc.targets])
        self.assertEqual(
            context.graph.closure(["clean"]),
            ["clean/misc", "clean/stage0", "clean/stage1", "clean/stage2", "clean/stage3", "clean"],
        )

    def test_dist_scans_sources(self) -> None:
        context = self._load(["dist"])
        self.assertEqual(len(context.scans), 1)
        self.assertEqual(context.scans[0][0], self.root / "src")
        node = context.graph.get("dist/tarball")
        self.assertIn("src/libcore/a.rs", node.commands[0])
        self.assertIn("src/libcore/core.rc", node.commands[0])

    def test_tests_module_goals(self) -> None:
        context = self._load(["check"])
        for name in ("check", "test", "tidy", "bench", f"check-stage1-H-{HOST}", f"check-stage3-H-{HOST}"):
            self.assertIn(name, context.aggregator)
        node = context.graph.get(f"check/stage2/{HOST}")
        self.assertEqual(node.sources, (self.root / "src" / "test" / "run-pass.rs",))
        self.assertTrue(node.always)
        self.assertIn(node.name, context.graph.closure(["check"]))

    def test_install_prefix_honours_destdir(self) -> None:
        context = self._load(["install"], env={"DESTDIR": "/tmp/pkgroot"})
        self.assertEqual(install_prefix(context), Path("/tmp/pkgroot"))
        node = context.graph.get("install/files")
        self.assertTrue(node.outputs)
        for output in node.outputs:
            self.assertTrue(str(output).startswith("/tmp/pkgroot/"), output)
        self.assertIn(Path("/tmp/pkgroot/bin/rustc"), node.outputs)
        self.assertIn(Path("/tmp/pkgroot/bin/cargo"), node.outputs)

        default = self._load(["install"])
        self.assertIn(Path("/opt/toolchain/bin/rustc"), default.graph.get("install/files").outputs)
        self.assertEqual(
            set(default.graph.get("uninstall/files").targets),
            set(default.graph.get("install/files").outputs),
        )

    def test_snapshot_goals_per_built_stage(self) -> None:
        context = self._load(["snap-stage2"])
        self.assertIn("snap-stage1", context.aggregator)
        node = context.graph.get("snap/stage2")
        self.assertIn(f"promote/stage2/{HOST}/compiler-driver", context.graph.closure(["snap-stage2"]))
        self.assertEqual(str(node.outputs[0]), f"snapshots/stage2-{HOST}-0.1.tar.bz2")


if __name__ == "__main__":
    unittest.main()
