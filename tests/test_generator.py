"""Tests for code slice assembly and change inlay."""

from pathlib import Path

import pytest

from semantic_diff.context import SemanticContextBuilder
from semantic_diff.generator import (
    CodeSliceGenerator,
    GeneratorConfig,
    is_insignificant,
    lines_related,
)
from semantic_diff.git_diff import parse_unified_diff
from semantic_diff.locator import ChangeLocator
from semantic_diff.models import BlockTitleStyle, ChangeTarget, DiffLineType, GoTypeDefinition, GoTypeKind
from semantic_diff.resolver import DependencyResolver

GREET_OLD = 'func Greet(name string) string { return "hi " + name }'
GREET_NEW = 'func Greet(name string) string { return "hello " + name }'


def _hunks(path, body):
    diff = f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n{body}"
    return parse_unified_diff(diff)[0].hunks


@pytest.fixture
def build_slice(make_go_project, temp_dir):
    """Parse files, locate the first target in *path* and generate its slice."""

    def _build(files, path, diff_body="", config=None):
        parsed = make_go_project(files)
        source = next(f for f in parsed if f.path == temp_dir / path)
        hunks = _hunks(path, diff_body) if diff_body else []
        if hunks:
            target = ChangeLocator().locate(source, hunks)[0]
        else:
            target = ChangeTarget(source.declarations[-1])
        resolver = DependencyResolver(temp_dir, "examplePkg")
        context = SemanticContextBuilder(resolver).build(target, parsed)
        generator = CodeSliceGenerator(config, project_root=temp_dir)
        return generator.generate(context, hunks, source.declarations)

    return _build


class TestLineHeuristics:
    """Tests for line relatedness and significance."""

    def test_equal_after_trim(self):
        """Test lines equal up to indentation are related."""
        assert lines_related("\treturn x", "return x   ")

    def test_token_overlap(self):
        """Test lines sharing enough tokens are related."""
        assert lines_related("y := x + 2", "y := x * 2")
        assert not lines_related("return y", "z := y + 1")

    def test_empty_lines(self):
        """Test an empty line is related only to another empty line."""
        assert lines_related("", "   ")
        assert not lines_related("", "x := 1")

    @pytest.mark.parametrize("line", ["", "  ", "}", "\t})", "{}", "return", "nil", "x;"])
    def test_insignificant_lines(self, line):
        """Test trivial lines carry no marker."""
        assert is_insignificant(line)

    @pytest.mark.parametrize("line", ["return x", "x := 1", "// note", "}, nil)"])
    def test_significant_lines(self, line):
        """Test lines with content carry markers."""
        assert not is_insignificant(line)


class TestChangeInlay:
    """Removed and added lines woven into the changed declaration."""

    def test_single_line_replacement(self, build_slice):
        """Test a replaced line shows the old text before the new."""
        code_slice = build_slice(
            {"main.go": f"package main\n\n{GREET_NEW}\n"},
            "main.go",
            f"@@ -3 +3 @@\n-{GREET_OLD}\n+{GREET_NEW}\n",
        )
        lines = code_slice.lines
        assert lines[:4] == [
            "// Semantic slice for function Greet (main.go)",
            "// Context: 0 types, 1 functions, 0 constants, 0 variables, 0 imports",
            "",
            "// Function: Greet",
        ]
        assert lines[4:] == [GREET_OLD, GREET_NEW]
        assert code_slice.line_change_types == {5: DiffLineType.REMOVED, 6: DiffLineType.ADDED}
        assert code_slice.highlighted_lines == {5, 6}
        assert code_slice.involved_files == ["main.go"]

    def test_removed_lines_hidden(self, build_slice):
        """Test removed lines are left out when they will not be marked."""
        code_slice = build_slice(
            {"main.go": f"package main\n\n{GREET_NEW}\n"},
            "main.go",
            f"@@ -3 +3 @@\n-{GREET_OLD}\n+{GREET_NEW}\n",
            GeneratorConfig(include_comments=False, show_removed_lines=False),
        )
        assert code_slice.lines == [GREET_NEW]
        assert code_slice.line_change_types == {1: DiffLineType.ADDED}

    def test_removed_lines_pair_with_related_additions(self, build_slice):
        """Test each removed line precedes the first related added line."""
        source = (
            "package main\n\n"
            "func Calc(x int) int {\n\ty := x * 2\n\tz := y + 1\n\treturn z\n}\n"
        )
        code_slice = build_slice(
            {"calc.go": source},
            "calc.go",
            "@@ -4,2 +4,3 @@\n-\ty := x + 2\n-\treturn y\n+\ty := x * 2\n+\tz := y + 1\n+\treturn z\n",
            GeneratorConfig(include_comments=False),
        )
        assert code_slice.lines == [
            "func Calc(x int) int {",
            "\ty := x + 2",
            "\ty := x * 2",
            "\tz := y + 1",
            "\treturn y",
            "\treturn z",
            "}",
        ]
        assert code_slice.line_change_types == {
            2: DiffLineType.REMOVED,
            3: DiffLineType.ADDED,
            4: DiffLineType.ADDED,
            5: DiffLineType.REMOVED,
            6: DiffLineType.ADDED,
        }

    def test_pure_deletion_inside_function(self, build_slice):
        """Test a deleted line is restored where it used to be."""
        code_slice = build_slice(
            {"work.go": "package main\n\nfunc Work() {\n\ta()\n\tb()\n}\n"},
            "work.go",
            "@@ -5 +4,0 @@\n-\tc()\n",
            GeneratorConfig(include_comments=False),
        )
        assert code_slice.lines == ["func Work() {", "\ta()", "\tc()", "\tb()", "}"]
        assert code_slice.line_change_types == {3: DiffLineType.REMOVED}

    def test_trailing_deleted_function_belongs_to_preceding(self, build_slice):
        """Test a deleted function after the target is shown after it."""
        removed_body = "".join(f"-\tstep({n})\n" for n in range(18))
        diff = (
            "@@ -3,24 +3,3 @@\n"
            " func Keep() int {\n"
            " \treturn 1\n"
            " }\n"
            "-\n"
            "-func Gone() {\n"
            f"{removed_body}"
            "-}\n"
        )
        code_slice = build_slice(
            {"keep.go": "package main\n\nfunc Keep() int {\n\treturn 1\n}\n"},
            "keep.go",
            diff,
            GeneratorConfig(include_comments=False),
        )
        lines = code_slice.lines
        assert lines[:3] == ["func Keep() int {", "\treturn 1", "}"]
        gone = lines.index("func Gone() {") + 1
        assert code_slice.change_type_of(gone) == DiffLineType.REMOVED
        removed = [n for n, kind in code_slice.line_change_types.items() if kind == DiffLineType.REMOVED]
        assert len(removed) == 19
        assert DiffLineType.ADDED not in code_slice.line_change_types.values()
        # Trivial lines are restored without a marker.
        assert lines[-1] == "}"
        assert code_slice.change_type_of(len(lines)) is None

    def test_added_structural_lines_are_not_marked(self, build_slice):
        """Test added braces carry no marker."""
        source = "package main\n\nfunc F(ok bool) {\n\tif ok {\n\t\trun()\n\t}\n}\n"
        code_slice = build_slice(
            {"f.go": source},
            "f.go",
            "@@ -3,2 +3,5 @@\n func F(ok bool) {\n+\tif ok {\n+\t\trun()\n+\t}\n }\n",
            GeneratorConfig(include_comments=False),
        )
        assert code_slice.line_change_types == {2: DiffLineType.ADDED, 3: DiffLineType.ADDED}

    def test_no_hunks_means_no_highlights(self, build_slice):
        """Test a slice without hunks has no markers."""
        code_slice = build_slice({"a.go": "package main\n\nfunc A() {}\n"}, "a.go")
        assert code_slice.highlighted_lines == set()
        assert code_slice.lines[-1] == "func A() {}"


class TestSliceLayout:
    """Section ordering, titles and truncation."""

    FILES = {
        "main.go": (
            "package main\n\n"
            "import \"examplePkg/util\"\n\n"
            "const Max = 3\n\n"
            "var cache = map[string]int{}\n\n"
            "type Item struct {\n\tName string\n}\n\n"
            "func Process(item Item) int {\n"
            "\tcache[item.Name]++\n"
            "\treturn util.Clamp(len(item.Name), Max)\n"
            "}\n"
        ),
        "util/util.go": (
            "package util\n\n"
            "// Clamp caps v at limit.\n"
            "func Clamp(v, limit int) int {\n\tif v > limit {\n\t\treturn limit\n\t}\n\treturn v\n}\n"
        ),
    }

    def test_section_order(self, build_slice):
        """Test imports, types, constants, variables, target, then functions."""
        code_slice = build_slice(self.FILES, "main.go")
        content = code_slice.content
        markers = [
            'import (\n\t"examplePkg/util"\n)',
            "// Type: Item",
            "// Constant: Max",
            "// Variable: cache",
            "// Function: Process",
            "// Function: Clamp\n// Clamp caps v at limit.\nfunc Clamp",
        ]
        positions = [content.index(marker) for marker in markers]
        assert positions == sorted(positions)
        assert code_slice.imports == ['"examplePkg/util"']
        assert code_slice.involved_files == ["main.go", "util/util.go"]

    def test_stats(self, build_slice):
        """Test slice statistics count each section."""
        code_slice = build_slice(self.FILES, "main.go")
        stats = code_slice.get_stats()
        assert (stats.imports, stats.types, stats.functions, stats.constants, stats.variables) == (1, 1, 2, 1, 1)
        assert stats.files == 2
        assert stats.total_lines == len(code_slice.lines)
        assert "// Context: 1 types, 2 functions, 1 constants, 1 variables, 1 imports" in code_slice.header_comment

    def test_without_comments(self, build_slice):
        """Test no header or titles are emitted without comments."""
        code_slice = build_slice(self.FILES, "main.go", config=GeneratorConfig(include_comments=False))
        assert code_slice.lines[0] == "import ("
        assert "//" not in code_slice.content

    def test_truncation(self, build_slice):
        """Test long slices are cut with a marker line."""
        code_slice = build_slice(
            {"main.go": f"package main\n\n{GREET_NEW}\n"},
            "main.go",
            f"@@ -3 +3 @@\n-{GREET_OLD}\n+{GREET_NEW}\n",
            GeneratorConfig(max_lines=3),
        )
        assert len(code_slice.lines) == 4
        assert code_slice.lines[-1] == "// ... truncated (3 more lines)"
        assert code_slice.line_change_types == {}


class TestBlockTitles:
    """Tests for block title styles."""

    @pytest.fixture
    def method(self, make_go_project):
        (source,) = make_go_project({"svc.go": "package main\n\ntype Svc struct{}\n\nfunc (s *Svc) Run() {}\n"})
        return next(d for d in source.declarations if d.name == "Run")

    @pytest.mark.parametrize(
        "style, expected",
        [
            (BlockTitleStyle.DETAILED, "// Method: (*Svc).Run"),
            (BlockTitleStyle.MINIMAL, "// (*Svc).Run"),
            (BlockTitleStyle.NONE, None),
        ],
    )
    def test_styles(self, method, style, expected):
        """Test each title style."""
        generator = CodeSliceGenerator(GeneratorConfig(block_title_style=style))
        assert generator.block_title(method) == expected


class TestTypeOrdering:
    """Tests for dependency-first type ordering."""

    def _type(self, name, deps):
        return GoTypeDefinition(name=name, kind=GoTypeKind.STRUCT, definition=f"type {name} struct{{}}",
                                file_path=Path("/p/t.go"), dependencies=deps)

    def test_dependencies_first(self):
        """Test a type follows the types it depends on."""
        types = [self._type("User", ["Profile"]), self._type("Profile", ["Address"]), self._type("Address", [])]
        ordered = CodeSliceGenerator.order_types(types)
        assert [t.name for t in ordered] == ["Address", "Profile", "User"]

    def test_cycle_keeps_discovery_order(self):
        """Test a dependency cycle terminates."""
        types = [self._type("Node", ["Graph"]), self._type("Graph", ["Node"])]
        ordered = CodeSliceGenerator.order_types(types)
        assert [t.name for t in ordered] == ["Graph", "Node"]

    def test_qualified_dependency_names(self):
        """Test qualified dependencies match by their bare name."""
        types = [self._type("A", ["pkg.B"]), self._type("B", [])]
        assert [t.name for t in CodeSliceGenerator.order_types(types)] == ["B", "A"]
