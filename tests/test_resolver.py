"""Tests for module-aware name resolution."""

from pathlib import Path

import pytest

from semantic_diff.models import (
    GoConstantDefinition,
    GoFunctionInfo,
    GoTypeDefinition,
    GoVariableDefinition,
    Import,
    Reference,
    ReferenceKind,
)
from semantic_diff.resolver import DependencyResolver, DependencyType


def _file(files, suffix):
    return next(f for f in files if f.path.as_posix().endswith(suffix))


@pytest.fixture
def resolver(sample_project_path: Path) -> DependencyResolver:
    return DependencyResolver.from_project_root(sample_project_path.resolve())


class TestModulePath:
    """Tests for go.mod handling."""

    def test_extract_module_path(self):
        """Test the module directive is read, ignoring comments."""
        text = "// generated\nmodule github.com/acme/tool // main module\n\ngo 1.22\n"
        assert DependencyResolver.extract_module_path(text) == "github.com/acme/tool"

    def test_missing_module_directive(self):
        """Test a go.mod without module directive yields nothing."""
        assert DependencyResolver.extract_module_path("go 1.22\n") is None

    def test_from_project_root_reads_go_mod(self, resolver):
        """Test the sample project's module path is read from go.mod."""
        assert resolver.module_path == "examplePkg"

    def test_from_project_root_without_go_mod(self, temp_dir):
        """Test the directory name is the fallback module path."""
        project = temp_dir / "mytool"
        project.mkdir()
        assert DependencyResolver.from_project_root(project).module_path == "mytool"

    def test_from_go_mod_text(self, temp_dir):
        """Test building a resolver from go.mod contents."""
        assert DependencyResolver.from_go_mod(temp_dir, "module acme.io/x\n").module_path == "acme.io/x"
        assert DependencyResolver.from_go_mod(temp_dir, None).module_path == temp_dir.name


class TestImportClassification:
    """Tests for internal versus external imports."""

    @pytest.mark.parametrize("path", ["fmt", "net/http", "encoding/json", "github.com/pkg/errors", "golang.org/x/sync"])
    def test_external_imports(self, resolver, path):
        """Test standard library and third-party imports are external."""
        assert resolver.is_external(Import(path))

    @pytest.mark.parametrize("path", ["examplePkg", "examplePkg/util", "examplePkg/internal/models"])
    def test_internal_imports(self, resolver, path):
        """Test imports under the module path are internal."""
        assert not resolver.is_external(Import(path))

    def test_unknown_module_is_external(self, resolver):
        """Test an import outside the module without a domain is external."""
        assert resolver.is_external(Import("otherModule/pkg"))

    def test_prefix_is_not_enough(self, resolver):
        """Test a module path prefix must end at a path separator."""
        assert resolver.is_external(Import("examplePkgExtra/util"))

    def test_import_dir(self, resolver):
        """Test internal import paths map to package directories."""
        assert resolver.import_dir("examplePkg") == ""
        assert resolver.import_dir("examplePkg/internal/models") == "internal/models"
        assert resolver.import_dir("fmt") is None


class TestResolution:
    """Tests for resolving references to declarations."""

    def test_package_dir(self, resolver, sample_files):
        """Test package directories are relative to the project root."""
        assert resolver.package_dir(_file(sample_files, "/main.go").path) == ""
        assert resolver.package_dir(_file(sample_files, "models/user.go").path) == "internal/models"

    def test_qualified_call(self, resolver, sample_files):
        """Test pkg.F resolves into the imported package."""
        main = _file(sample_files, "/main.go")
        decl = resolver.resolve_reference(Reference(ReferenceKind.CALL, "NewUser", qualifier="models"), main, sample_files)
        assert isinstance(decl, GoFunctionInfo)
        assert decl.file_path.as_posix().endswith("internal/models/user.go")

    def test_qualified_type(self, resolver, sample_files):
        """Test pkg.T resolves to the type."""
        main = _file(sample_files, "/main.go")
        decl = resolver.resolve_reference(Reference(ReferenceKind.TYPE, "User", qualifier="models"), main, sample_files)
        assert isinstance(decl, GoTypeDefinition)
        assert decl.name == "User"

    def test_bare_names_stay_in_package(self, resolver, sample_files):
        """Test unqualified names never resolve into another package."""
        main = _file(sample_files, "/main.go")
        assert resolver.resolve_reference(Reference(ReferenceKind.TYPE, "User"), main, sample_files) is None
        value = resolver.resolve_reference(Reference(ReferenceKind.VALUE, "DefaultGreeting"), main, sample_files)
        assert isinstance(value, GoConstantDefinition)
        registry = resolver.resolve_reference(Reference(ReferenceKind.VALUE, "registry"), main, sample_files)
        assert isinstance(registry, GoVariableDefinition)

    def test_external_qualifier(self, resolver, sample_files):
        """Test references through external packages are external."""
        main = _file(sample_files, "/main.go")
        ref = Reference(ReferenceKind.CALL, "Println", qualifier="fmt")
        assert resolver.is_external_reference(ref, main)
        assert resolver.resolve_reference(ref, main, sample_files) is None

    def test_builtin_type(self, resolver, sample_files):
        """Test builtin types are never resolved."""
        main = _file(sample_files, "/main.go")
        assert resolver.resolve_type("string", None, sample_files, main) is None

    def test_method_with_receiver(self, resolver, sample_files):
        """Test a method resolves through its receiver type."""
        user_file = _file(sample_files, "models/user.go")
        ref = Reference(ReferenceKind.METHOD_CALL, "Greeting", receiver_type="User")
        decl = resolver.resolve_reference(ref, user_file, sample_files)
        assert decl.display_name == "(*User).Greeting"

    def test_conversion_resolves_to_type(self, resolver, sample_files):
        """Test T(x) with no function named T resolves to the type."""
        user_file = _file(sample_files, "models/user.go")
        decl = resolver.resolve_reference(Reference(ReferenceKind.CALL, "Status"), user_file, sample_files)
        assert isinstance(decl, GoTypeDefinition)


class TestAmbiguousMethods:
    """Tests for methods called on operands of unknown type."""

    def test_referring_file_wins(self, make_go_project, temp_dir):
        """Test the candidate declared in the referring file is chosen."""
        files = make_go_project({
            "a.go": "package main\n\ntype A struct{}\n\nfunc (a A) Close() {}\n",
            "b.go": "package main\n\ntype B struct{}\n\nfunc (b B) Close() {}\n\nfunc use() {\n\tconn.Close()\n}\n",
        })
        resolver = DependencyResolver(temp_dir, "example")
        b_file = _file(files, "/b.go")
        decl = resolver.resolve_reference(Reference(ReferenceKind.METHOD_CALL, "Close"), b_file, files)
        assert decl.receiver.type_name == "B"

    def test_first_in_path_order_otherwise(self, make_go_project, temp_dir):
        """Test the first candidate in path order is chosen from elsewhere."""
        files = make_go_project({
            "b.go": "package main\n\ntype B struct{}\n\nfunc (b B) Close() {}\n",
            "a.go": "package main\n\ntype A struct{}\n\nfunc (a A) Close() {}\n",
            "c.go": "package main\n\nfunc use() {\n\tconn.Close()\n}\n",
        })
        resolver = DependencyResolver(temp_dir, "example")
        c_file = _file(files, "/c.go")
        decl = resolver.resolve_reference(Reference(ReferenceKind.METHOD_CALL, "Close"), c_file, files)
        assert decl.receiver.type_name == "A"


class TestDependencyAnalysis:
    """Tests for type and function dependency analysis."""

    def test_type_dependencies_are_transitive(self, resolver, sample_files):
        """Test a struct's field types are followed transitively."""
        user_file = _file(sample_files, "models/user.go")
        user = next(t for t in user_file.language_specific.types() if t.name == "User")
        deps = resolver.analyze_type_dependencies(user, sample_files)
        assert [d.name for d in deps] == ["Profile", "Address"]

    def test_type_dependency_cycle(self, make_go_project, temp_dir):
        """Test mutually recursive types terminate."""
        files = make_go_project({
            "graph.go": "package main\n\ntype Node struct {\n\tGraph *Graph\n}\n\ntype Graph struct {\n\tRoot *Node\n}\n",
        })
        resolver = DependencyResolver(temp_dir, "example")
        node = next(t for t in files[0].language_specific.types() if t.name == "Node")
        assert [d.name for d in resolver.analyze_type_dependencies(node, files)] == ["Graph"]

    def test_function_dependencies(self, resolver, sample_files):
        """Test a function's internal and external dependencies."""
        main_file = _file(sample_files, "/main.go")
        main = next(f for f in main_file.language_specific.functions() if f.name == "main")
        deps = resolver.extract_function_dependencies(main, sample_files)
        internal = {(d.name, d.dep_type) for d in resolver.filter_internal(deps)}
        assert ("NewUser", DependencyType.FUNCTION) in internal
        assert ("Helper", DependencyType.FUNCTION) in internal
        assert ("registry", DependencyType.VARIABLE) in internal
        external = [d for d in deps if d.is_external]
        assert [(d.name, d.import_path) for d in external] == [("Println", "fmt")]
