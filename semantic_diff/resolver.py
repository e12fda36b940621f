"""Name resolution across the parsed files of a Go module.

A name used in a declaration is resolved against the package it lives in:
bare names against the files of the referring file's own package, qualified
names (``models.User``) against the files of the imported package.  Go
packages are directories, so a package is identified by its directory
relative to the module root, and an import path maps to a directory by
stripping the module path read from ``go.mod``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from .errors import DependencyError
from .extractor import GO_BUILTIN_TYPES
from .models import (
    GoConstantDefinition,
    GoDeclaration,
    GoFunctionInfo,
    GoTypeDefinition,
    GoVariableDefinition,
    Import,
    Reference,
    ReferenceKind,
    SourceFile,
)

logger = logging.getLogger(__name__)

GO_MOD_FILE = "go.mod"

# Top-level path segments of the Go standard library.
GO_STANDARD_LIBRARY = frozenset({
    "archive", "bufio", "bytes", "cmp", "compress", "container", "context",
    "crypto", "database", "debug", "embed", "encoding", "errors", "expvar",
    "flag", "fmt", "go", "hash", "html", "image", "index", "io", "iter",
    "log", "maps", "math", "mime", "net", "os", "path", "plugin", "reflect",
    "regexp", "runtime", "slices", "sort", "strconv", "strings", "sync",
    "syscall", "testing", "text", "time", "unicode", "unique", "unsafe",
})

THIRD_PARTY_PREFIXES = (
    "github.com/", "gitlab.com/", "bitbucket.org/", "golang.org/",
    "google.golang.org/", "go.uber.org/", "gopkg.in/",
)

ValueDeclaration = Union[GoConstantDefinition, GoVariableDefinition]


class DependencyType(str, Enum):
    TYPE = "type"
    FUNCTION = "function"
    METHOD = "method"
    CONSTANT = "constant"
    VARIABLE = "variable"


@dataclass
class Dependency:
    name: str
    dep_type: DependencyType
    import_path: Optional[str] = None
    declaration: Optional[GoDeclaration] = None
    is_external: bool = False


def dependency_type_of(decl: GoDeclaration) -> DependencyType:
    if isinstance(decl, GoTypeDefinition):
        return DependencyType.TYPE
    if isinstance(decl, GoConstantDefinition):
        return DependencyType.CONSTANT
    if isinstance(decl, GoVariableDefinition):
        return DependencyType.VARIABLE
    return DependencyType.METHOD if decl.receiver else DependencyType.FUNCTION


class DependencyResolver:
    """Resolves names to declarations within one Go module."""

    def __init__(self, project_root: Path, module_path: Optional[str] = None) -> None:
        self.project_root = Path(project_root)
        self.module_path = (module_path or self.project_root.name).rstrip("/")
        self._indexed: Optional[Sequence[SourceFile]] = None
        self._by_dir: Dict[str, List[SourceFile]] = {}
        self._by_path: Dict[str, SourceFile] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_project_root(cls, project_root: Path) -> "DependencyResolver":
        """Read the module path from ``<root>/go.mod``, else use the directory name."""
        project_root = Path(project_root)
        go_mod = project_root / GO_MOD_FILE
        if not go_mod.exists():
            logger.debug("No %s under %s; using directory name as module path", GO_MOD_FILE, project_root)
            return cls(project_root)
        try:
            text = go_mod.read_text(encoding="utf-8")
        except OSError as exc:
            raise DependencyError(f"cannot read {go_mod}", cause=exc) from exc
        return cls.from_go_mod(project_root, text)

    @classmethod
    def from_go_mod(cls, project_root: Path, go_mod_text: Optional[str]) -> "DependencyResolver":
        module_path = cls.extract_module_path(go_mod_text) if go_mod_text else None
        if module_path:
            logger.debug("Module path: %s", module_path)
        return cls(project_root, module_path)

    @staticmethod
    def extract_module_path(go_mod_text: str) -> Optional[str]:
        for line in go_mod_text.splitlines():
            line = line.split("//", 1)[0].strip()
            if line.startswith("module ") or line.startswith("module\t"):
                value = line[len("module"):].strip().strip('"`')
                return value or None
        return None

    # ------------------------------------------------------------------
    # Import classification
    # ------------------------------------------------------------------

    def is_standard_library(self, import_path: str) -> bool:
        first = import_path.split("/", 1)[0]
        return "." not in first and first in GO_STANDARD_LIBRARY

    def is_project_internal(self, import_path: str) -> bool:
        return import_path == self.module_path or import_path.startswith(self.module_path + "/")

    def is_third_party(self, import_path: str) -> bool:
        if import_path.startswith(THIRD_PARTY_PREFIXES):
            return True
        return "." in import_path.split("/", 1)[0]

    def is_external(self, imp: Import) -> bool:
        """True when *imp* cannot be resolved inside this module."""
        path = imp.path
        if self.is_project_internal(path):
            return False
        if path.startswith("./") or path.startswith("../"):
            return False
        if self.is_standard_library(path) or self.is_third_party(path):
            return True
        # Anything else not rooted at the module path lives outside it.
        return True

    def filter_internal(self, dependencies: Sequence[Dependency]) -> List[Dependency]:
        return [d for d in dependencies if not d.is_external]

    # ------------------------------------------------------------------
    # Package layout
    # ------------------------------------------------------------------

    def package_dir(self, file_path: Union[str, Path]) -> str:
        path = Path(file_path)
        try:
            rel = path.relative_to(self.project_root).parent.as_posix()
        except ValueError:
            return path.parent.as_posix()
        return "" if rel == "." else rel

    def import_dir(self, import_path: str) -> Optional[str]:
        """Package directory an internal import path points at."""
        if import_path == self.module_path:
            return ""
        if import_path.startswith(self.module_path + "/"):
            return import_path[len(self.module_path) + 1:]
        return None

    def _index(self, files: Sequence[SourceFile]) -> None:
        if self._indexed is files:
            return
        by_dir: Dict[str, List[SourceFile]] = {}
        for source_file in sorted(files, key=lambda f: str(f.path)):
            by_dir.setdefault(self.package_dir(source_file.path), []).append(source_file)
        self._by_dir = by_dir
        self._by_path = {str(f.path): f for f in files}
        self._indexed = files

    def file_for(self, file_path: Union[str, Path], files: Sequence[SourceFile]) -> Optional[SourceFile]:
        self._index(files)
        return self._by_path.get(str(file_path))

    def files_in_dir(self, package_dir: str, files: Sequence[SourceFile]) -> List[SourceFile]:
        self._index(files)
        return self._by_dir.get(package_dir, [])

    def qualifier_dir(self, qualifier: str, referring_file: SourceFile) -> Optional[str]:
        """Directory of the package *referring_file* imports as *qualifier*."""
        imp = referring_file.language_specific.import_for(qualifier)
        if imp is None or self.is_external(imp):
            return None
        return self.import_dir(imp.path)

    def candidate_files(
        self,
        qualifier: Optional[str],
        referring_file: SourceFile,
        files: Sequence[SourceFile],
    ) -> List[SourceFile]:
        """Files to search, in path order, for a name used in *referring_file*."""
        if qualifier is None:
            return self.files_in_dir(self.package_dir(referring_file.path), files)
        package_dir = self.qualifier_dir(qualifier, referring_file)
        if package_dir is None:
            return []
        return self.files_in_dir(package_dir, files)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_type(
        self,
        name: str,
        qualifier: Optional[str],
        files: Sequence[SourceFile],
        referring_file: SourceFile,
    ) -> Optional[GoTypeDefinition]:
        if qualifier is None and "." in name:
            qualifier, name = name.split(".", 1)
        if qualifier is None and name in GO_BUILTIN_TYPES:
            return None
        for source_file in self.candidate_files(qualifier, referring_file, files):
            for type_def in source_file.language_specific.types():
                if type_def.name == name:
                    return type_def
        return None

    def resolve_function(
        self,
        name: str,
        receiver_type: Optional[str],
        qualifier: Optional[str],
        files: Sequence[SourceFile],
        referring_file: SourceFile,
        any_receiver: bool = False,
    ) -> Optional[GoFunctionInfo]:
        """Resolve a function, or a method when a receiver is given or allowed.

        With ``any_receiver`` the receiver type is unknown and any method of
        that name in the package matches; when several do, the one declared
        in the referring file wins, else the first in path order.
        """
        if receiver_type and "." in receiver_type:
            qualifier, receiver_type = receiver_type.split(".", 1)
        candidates: List[GoFunctionInfo] = []
        for source_file in self.candidate_files(qualifier, referring_file, files):
            for func in source_file.language_specific.functions():
                if func.name != name:
                    continue
                if receiver_type is not None:
                    matches = func.receiver is not None and func.receiver.type_name == receiver_type
                elif any_receiver:
                    matches = func.receiver is not None
                else:
                    matches = func.receiver is None
                if matches:
                    candidates.append(func)
        if not candidates:
            return None
        if len(candidates) > 1:
            same_file = [c for c in candidates if str(c.file_path) == str(referring_file.path)]
            chosen = same_file[0] if same_file else candidates[0]
            logger.debug(
                "Ambiguous method %s (%d candidates); choosing %s in %s",
                name, len(candidates), chosen.display_name, chosen.file_path,
            )
            return chosen
        return candidates[0]

    def resolve_value(
        self,
        name: str,
        qualifier: Optional[str],
        files: Sequence[SourceFile],
        referring_file: SourceFile,
    ) -> Optional[ValueDeclaration]:
        for source_file in self.candidate_files(qualifier, referring_file, files):
            info = source_file.language_specific
            for const in info.constants():
                if const.name == name:
                    return const
            for var in info.variables():
                if var.name == name:
                    return var
        return None

    def resolve_reference(
        self,
        ref: Reference,
        referring_file: SourceFile,
        files: Sequence[SourceFile],
    ) -> Optional[GoDeclaration]:
        """Resolve one syntactic reference to the declaration defining it."""
        if ref.kind == ReferenceKind.TYPE:
            return self.resolve_type(ref.name, ref.qualifier, files, referring_file)
        if ref.kind == ReferenceKind.CALL:
            # f(x) is either a call or a conversion to a named type.
            return self.resolve_function(ref.name, None, ref.qualifier, files, referring_file) or \
                self.resolve_type(ref.name, ref.qualifier, files, referring_file)
        if ref.kind == ReferenceKind.METHOD_CALL:
            return self.resolve_function(
                ref.name,
                ref.receiver_type,
                ref.qualifier,
                files,
                referring_file,
                any_receiver=ref.receiver_type is None,
            )
        return self.resolve_value(ref.name, ref.qualifier, files, referring_file) or \
            self.resolve_function(ref.name, None, ref.qualifier, files, referring_file)

    def is_external_reference(self, ref: Reference, referring_file: SourceFile) -> bool:
        if ref.qualifier is None:
            return False
        imp = referring_file.language_specific.import_for(ref.qualifier)
        return imp is not None and self.is_external(imp)

    # ------------------------------------------------------------------
    # Dependency analysis
    # ------------------------------------------------------------------

    def analyze_type_dependencies(
        self,
        type_def: GoTypeDefinition,
        files: Sequence[SourceFile],
    ) -> List[GoTypeDefinition]:
        """Direct and transitive type dependencies of *type_def*, in discovery order."""
        result: List[GoTypeDefinition] = []
        visited: Set[Tuple[str, str]] = {(self.package_dir(type_def.file_path), type_def.name)}
        self._collect_type_dependencies(type_def, files, visited, result)
        return result

    def _collect_type_dependencies(self, type_def, files, visited, result) -> None:
        referring = self.file_for(type_def.file_path, files)
        if referring is None:
            logger.debug("Type %s is not part of the parsed files", type_def.name)
            return
        for dep_name in type_def.dependencies:
            resolved = self.resolve_type(dep_name, None, files, referring)
            if resolved is None:
                if dep_name not in GO_BUILTIN_TYPES:
                    logger.debug("Unresolved type %s referenced by %s", dep_name, type_def.name)
                continue
            key = (self.package_dir(resolved.file_path), resolved.name)
            if key in visited:
                continue
            visited.add(key)
            result.append(resolved)
            self._collect_type_dependencies(resolved, files, visited, result)

    def extract_function_dependencies(
        self,
        func: GoFunctionInfo,
        files: Sequence[SourceFile],
    ) -> List[Dependency]:
        """Types, functions and values *func* references, deduplicated."""
        referring = self.file_for(func.file_path, files)
        if referring is None:
            raise DependencyError(f"function {func.display_name} is not part of the parsed files")
        deps: List[Dependency] = []
        seen: Set[Tuple[str, str, Optional[str]]] = set()
        for ref in func.references:
            if self.is_external_reference(ref, referring):
                imp = referring.language_specific.import_for(ref.qualifier or "")
                dep = Dependency(
                    name=ref.name,
                    dep_type=DependencyType.TYPE if ref.kind == ReferenceKind.TYPE else DependencyType.FUNCTION,
                    import_path=imp.path if imp else None,
                    is_external=True,
                )
            else:
                decl = self.resolve_reference(ref, referring, files)
                if decl is None:
                    logger.debug("Unresolved reference %s in %s", ref, func.display_name)
                    continue
                imp = referring.language_specific.import_for(ref.qualifier) if ref.qualifier else None
                dep = Dependency(
                    name=decl.qualified_name,
                    dep_type=dependency_type_of(decl),
                    import_path=imp.path if imp else None,
                    declaration=decl,
                )
            key = (dep.dep_type.value, dep.name, dep.import_path)
            if key not in seen:
                seen.add(key)
                deps.append(dep)
        return deps
