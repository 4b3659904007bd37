from __future__ import annotations

from pathlib import Path, PurePosixPath
import tempfile
import unittest

from stagebuild.artifacts import ArtifactKind
from stagebuild.graph import (
    ActionKind,
    BuildGraph,
    BuildNode,
    MissingArtifactError,
    add_goal_nodes,
    build_core_graph,
    topological_order,
)
from stagebuild.toolchain import CompilerOptions

from helpers import CROSS, HOST, make_context, make_resolver, write_workspace


def _finalized(context):
    build_core_graph(context)
    add_goal_nodes(context)
    context.graph.finalize()
    return context.graph


class BuildGraphTests(unittest.TestCase):
    def test_single_writer_per_output(self) -> None:
        graph = BuildGraph()
        graph.add(BuildNode(name="a", kind=ActionKind.COMMAND, outputs=(PurePosixPath("out/x"),)))
        with self.assertRaisesRegex(ValueError, "produced by both"):
            graph.add(BuildNode(name="b", kind=ActionKind.COMMAND, outputs=(PurePosixPath("out/x"),)))
        with self.assertRaisesRegex(ValueError, "defined twice"):
            graph.add(BuildNode(name="a", kind=ActionKind.PHONY))

    def test_cycles_are_reported(self) -> None:
        graph = BuildGraph()
        graph.add(BuildNode(name="a", kind=ActionKind.PHONY, deps=("b",)))
        graph.add(BuildNode(name="b", kind=ActionKind.PHONY, deps=("a",)))
        with self.assertRaisesRegex(ValueError, "a -> b -> a"):
            graph.finalize()

    def test_required_artifact_without_producer(self) -> None:
        resolver = make_resolver()
        graph = BuildGraph()
        graph.add(
            BuildNode(
                name="consumer",
                kind=ActionKind.COMMAND,
                requires=(resolver.resolve(1, HOST, ArtifactKind.STD_LIBRARY),),
            )
        )
        with self.assertRaises(MissingArtifactError) as caught:
            graph.finalize()
        self.assertIn("consumer", str(caught.exception))
        self.assertIsInstance(caught.exception, FileNotFoundError)

    def test_topological_order_is_deterministic(self) -> None:
        self.assertEqual(topological_order({"c": ["a"], "b": [], "a": []}), ["a", "b", "c"])

    def test_closure_follows_requirements(self) -> None:
        resolver = make_resolver()
        artifact = resolver.resolve(1, HOST, ArtifactKind.STD_LIBRARY)
        graph = BuildGraph()
        graph.add(BuildNode(name="make-std", kind=ActionKind.COMMAND, outputs=(artifact.path,)))
        graph.add(BuildNode(name="unrelated", kind=ActionKind.COMMAND))
        graph.add(BuildNode(name="goal", kind=ActionKind.PHONY, requires=(artifact,)))
        graph.finalize()
        self.assertEqual(graph.closure(["goal"]), ["make-std", "goal"])


class CoreGraphTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_default_goal_reaches_snapshot_promotion_and_tools(self) -> None:
        write_workspace(self.root, targets=(HOST, CROSS))
        graph = _finalized(make_context(self.root))
        closure = graph.closure(["all"])
        self.assertIn(f"snapshot/{HOST}", closure)
        self.assertIn(f"promote/stage1/{HOST}/compiler-driver", closure)
        self.assertIn(f"toolchain-H-{HOST}", closure)
        self.assertIn(f"stage2-H-{HOST}", closure)
        self.assertIn(f"compile/stage2/{HOST}/{CROSS}/std-library", closure)
        self.assertIn(f"compile/stage1/{HOST}/{HOST}/std-library", closure)
        # Cross libraries of lower stages are not promoted, so the default goal skips them.
        self.assertNotIn(f"compile/stage1/{HOST}/{CROSS}/std-library", closure)
        self.assertIn(f"tool/stage2/{HOST}/package-manager", closure)
        self.assertNotIn(f"compile/stage3/{HOST}/{HOST}/std-library", closure)
        self.assertLess(closure.index(f"snapshot/{HOST}"), closure.index(f"promote/stage1/{HOST}/std-library"))

    def test_compile_nodes_record_dependency_files(self) -> None:
        write_workspace(self.root)
        context = make_context(self.root)
        graph = _finalized(context)
        node = graph.get(f"compile/stage1/{HOST}/{HOST}/core-library")
        command = node.commands[0]
        self.assertEqual(command[0], str(self.root / HOST / "stage1" / "bin" / "rustc"))
        self.assertIn("--dep-info", command)
        self.assertEqual(node.depfile, PurePosixPath(f"{HOST}/stage1/lib/toolchain/{HOST}/lib/libcore.so.d"))
        self.assertEqual(command[command.index("--dep-info") + 1], str(self.root / node.depfile))
        self.assertIn(node.name, context.compile_units)
        self.assertEqual(node.sources, (self.root / "src" / "libcore" / "core.rc",))

    def test_stage_zero_compiles_are_not_instrumented(self) -> None:
        write_workspace(self.root)
        context = make_context(self.root, options=CompilerOptions(instrument_compile=True))
        graph = _finalized(context)
        for node in graph.nodes():
            if node.name.startswith("compile/stage0/"):
                self.assertNotIn("valgrind", node.commands[0])
            elif node.name.startswith("compile/stage1/"):
                self.assertEqual(node.commands[0][0], "valgrind")

    def test_transition_keeps_later_stages_out_of_the_default_goal(self) -> None:
        write_workspace(
            self.root,
            toolchain_extra="in_transition = true\n",
            extra='\n[[generated]]\noutput = "doc/version.md"\ncommand = ["echo", "{{output}}"]\n',
        )
        context = make_context(self.root)
        graph = _finalized(context)
        self.assertEqual(len(context.notices), 1)
        closure = graph.closure(["all"])
        self.assertIn("generate/doc/version.md", closure)
        self.assertIn(f"promote/stage1/{HOST}/std-library", closure)
        for name in closure:
            node = graph.get(name)
            self.assertNotIn(node.context.get("stage"), {"2", "3"}, name)
            for output in node.outputs:
                self.assertNotIn("/stage2/", f"/{output}")
                self.assertNotIn("/stage3/", f"/{output}")

    def test_verify_node_compares_stage_two_and_three(self) -> None:
        write_workspace(self.root)
        graph = _finalized(make_context(self.root))
        node = graph.get(f"verify/stage3/{HOST}")
        self.assertEqual(node.kind, ActionKind.VERIFY)
        for first, second in node.pairs:
            self.assertIn("/stage2/", f"/{first}")
            self.assertEqual(str(first).replace("/stage2/", "/stage3/"), str(second))
        self.assertIn(node.name, graph.closure(["verify-stage3"]))


if __name__ == "__main__":
    unittest.main()
