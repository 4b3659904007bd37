from __future__ import annotations

from pathlib import Path
import tempfile
import unittest
from unittest import mock

from core.command_runner import RecordingCommandRunner
from stagebuild.build import BuildEngine, BuildOptions
from stagebuild.console import Console
from stagebuild.modules import ModuleCategory
from stagebuild.reconfigure import ConfigurationLoopError

from helpers import HOST, write_workspace


class BuildEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.runner = RecordingCommandRunner()
        self.probe = mock.Mock(return_value=[])
        self.engine = BuildEngine(
            workspace=self.root,
            command_runner=self.runner,
            console=Console("none"),
            probe=self.probe,
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_default_goal(self) -> None:
        write_workspace(self.root)
        options = BuildOptions(dry_run=True)
        plan = self.engine.plan(options)

        self.assertEqual(plan.goals, ["all"])
        self.assertEqual(plan.modules, [])
        self.assertEqual(plan.nodes[-1], "all")
        self.assertIn(f"toolchain-H-{HOST}", plan.nodes)
        self.assertIn(f"stage2-H-{HOST}", plan.nodes)
        self.assertNotIn(f"verify/stage3/{HOST}", plan.nodes)
        self.assertNotIn(f"stage3-H-{HOST}", plan.nodes)
        # Nothing has been compiled yet, so every compile unit lacks its dependency record.
        compile_nodes = [name for name in plan.nodes if name.startswith("compile/")]
        self.assertTrue(compile_nodes)
        self.assertTrue(all(self.plan_node(plan, name).force for name in compile_nodes))

        report = self.engine.execute(plan, options)
        self.assertTrue(report.ok)
        notes = {record.note for record in self.runner.commands}
        self.assertIn(f"snapshot/{HOST}", notes)
        self.assertIn(f"compile/stage1/{HOST}/{HOST}/std-library", notes)
        self.assertNotIn("configure", notes)

    @staticmethod
    def plan_node(plan, name):
        return plan.context.graph.get(name)

    def test_clean_goal_loads_only_the_clean_module(self) -> None:
        write_workspace(self.root)
        plan = self.engine.plan(BuildOptions(goals=["clean"], dry_run=True))

        self.assertEqual(plan.modules, [ModuleCategory.CLEAN])
        self.assertIn("clean/stage1", plan.nodes)
        self.assertIn("clean/misc", plan.nodes)
        self.assertFalse(any(name.startswith("compile/") for name in plan.nodes))
        self.assertNotIn("dist", plan.context.aggregator)

    def test_unknown_goal(self) -> None:
        write_workspace(self.root)
        with self.assertRaisesRegex(KeyError, "Unknown goal 'stage9'"):
            self.engine.plan(BuildOptions(goals=["stage9"], dry_run=True))

    def test_missing_stamp_regenerates_configuration(self) -> None:
        write_workspace(self.root, stamp=False)
        plan = self.engine.plan(BuildOptions(dry_run=True))

        self.assertEqual(plan.goals, ["all"])
        [record] = self.runner.commands
        self.assertEqual(record.note, "configure")
        self.assertEqual(record.command, [str(self.root / "configure"), "--prefix=/opt/toolchain"])

    def test_stale_configuration_that_never_settles(self) -> None:
        write_workspace(self.root, stamp=False)
        with self.assertRaises(ConfigurationLoopError):
            self.engine.plan(BuildOptions())
        self.assertEqual(len(self.runner.commands), 3)

    def test_disabled_submodule_management_skips_the_probe(self) -> None:
        write_workspace(self.root)
        options = BuildOptions.from_environment({"CFG_DISABLE_MANAGE_SUBMODULES": "1"}, dry_run=True)
        self.engine.plan(options)
        self.probe.assert_not_called()

    def test_transition_truncates_default_goal(self) -> None:
        write_workspace(self.root, toolchain_extra="in_transition = true\n")
        plan = self.engine.plan(BuildOptions(dry_run=True))

        self.assertIn(f"promote/stage1/{HOST}/std-library", plan.nodes)
        self.assertFalse(any("stage2" in name for name in plan.nodes))
        self.assertTrue(any("transition" in notice for notice in plan.notices))

    def test_jobs_fall_back_to_configuration(self) -> None:
        write_workspace(self.root)
        options = BuildOptions(dry_run=True)
        plan = self.engine.plan(options)
        with mock.patch("stagebuild.build.GraphExecutor") as executor_class:
            self.engine.execute(plan, options)
        self.assertEqual(executor_class.call_args.kwargs["jobs"], 2)


class BuildOptionsTests(unittest.TestCase):
    def test_environment_flags(self) -> None:
        options = BuildOptions.from_environment({"VERBOSE": "1", "CFG_DISABLE_MANAGE_SUBMODULES": "1"})
        self.assertTrue(options.verbose)
        self.assertFalse(options.manage_submodules)
        self.assertEqual(options.requested_goals, ["all"])

    def test_explicit_overrides_win(self) -> None:
        options = BuildOptions.from_environment({}, goals=["stage1"], jobs=None, keep_going=True)
        self.assertEqual(options.goals, ["stage1"])
        self.assertIsNone(options.jobs)
        self.assertTrue(options.keep_going)


if __name__ == "__main__":
    unittest.main()
