"""Semantic context construction for a single change target.

Starting from the changed declaration, a breadth-first traversal follows type
references, calls and receiver relations through the module, bounded by a
depth limit.  A visited set keyed by ``(kind, qualified name)`` prevents
cycles; the target itself is not pre-seeded, so a cycle leading back to it
records it once like any other declaration.

For type, constant and variable targets the traversal also runs in reverse:
functions whose signature or body use the target become dependent
functions, and the callers of those functions are followed in turn.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from .dependency_graph import DependencyGraph, EdgeType
from .errors import DependencyError
from .models import (
    ChangeTarget,
    DeclarationKind,
    GoConstantDefinition,
    GoDeclaration,
    GoFunctionInfo,
    GoTypeDefinition,
    GoVariableDefinition,
    Import,
    Reference,
    ReferenceKind,
    SourceFile,
    declaration_identity,
    declaration_kind,
)
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10

_EDGE_FOR_KIND: Dict[DeclarationKind, EdgeType] = {
    DeclarationKind.FUNCTION: EdgeType.FUNCTION_CALL,
    DeclarationKind.METHOD: EdgeType.FUNCTION_CALL,
    DeclarationKind.TYPE: EdgeType.TYPE_USAGE,
    DeclarationKind.CONSTANT: EdgeType.CONSTANT_REFERENCE,
    DeclarationKind.VARIABLE: EdgeType.VARIABLE_REFERENCE,
}


@dataclass
class ContextStats:
    types_count: int
    functions_count: int
    constants_count: int
    variables_count: int
    imports_count: int
    files_count: int
    modules_count: int


@dataclass
class SemanticContext:
    """A change target plus every declaration it needs to be understood."""

    change_target: ChangeTarget
    related_types: List[GoTypeDefinition] = field(default_factory=list)
    dependent_functions: List[GoFunctionInfo] = field(default_factory=list)
    constants: List[GoConstantDefinition] = field(default_factory=list)
    variables: List[GoVariableDefinition] = field(default_factory=list)
    imports: List[Import] = field(default_factory=list)
    cross_module_dependencies: Dict[str, List[str]] = field(default_factory=dict)
    dependency_graph: Optional[DependencyGraph] = None

    def add_declaration(self, decl: GoDeclaration) -> bool:
        """Append *decl* to the list for its kind unless already present."""
        if isinstance(decl, GoTypeDefinition):
            bucket: list = self.related_types
        elif isinstance(decl, GoFunctionInfo):
            bucket = self.dependent_functions
        elif isinstance(decl, GoConstantDefinition):
            bucket = self.constants
        else:
            bucket = self.variables
        identity = declaration_identity(decl)
        if any(declaration_identity(existing) == identity for existing in bucket):
            return False
        bucket.append(decl)
        return True

    def add_import(self, imp: Import) -> bool:
        if any(existing.path == imp.path for existing in self.imports):
            return False
        self.imports.append(imp)
        return True

    def all_declarations(self) -> List[GoDeclaration]:
        return [
            *self.related_types,
            *self.dependent_functions,
            *self.constants,
            *self.variables,
        ]

    def get_involved_files(self) -> Set[Path]:
        files = {Path(self.change_target.file_path)}
        files.update(Path(d.file_path) for d in self.all_declarations())
        return files

    def is_empty(self) -> bool:
        return not (self.related_types or self.dependent_functions or self.constants or self.variables)

    def get_stats(self) -> ContextStats:
        return ContextStats(
            types_count=len(self.related_types),
            functions_count=len(self.dependent_functions) + (1 if self.change_target.is_function() else 0),
            constants_count=len(self.constants),
            variables_count=len(self.variables),
            imports_count=len(self.imports),
            files_count=len(self.get_involved_files()),
            modules_count=len(self.cross_module_dependencies),
        )


@dataclass
class _QueueItem:
    depth: int
    source_id: str
    referring_file: Optional[SourceFile] = None
    ref: Optional[Reference] = None
    decl: Optional[GoDeclaration] = None
    reverse: bool = False


_Usage = Tuple[SourceFile, GoFunctionInfo, Reference]


class SemanticContextBuilder:
    """Builds a :class:`SemanticContext` per change target.

    One builder serves one run: resolution results are memoised by
    ``(kind, package, name)`` across the targets it builds, so the file set
    must not change between calls.
    """

    def __init__(
        self,
        resolver: DependencyResolver,
        max_depth: int = DEFAULT_MAX_DEPTH,
        build_graph: bool = False,
    ) -> None:
        self.resolver = resolver
        self.max_depth = max_depth
        self.build_graph = build_graph
        self.visited: Set[Tuple[str, str]] = set()
        self._cache: Dict[Tuple[str, str, str, Optional[str], str], Optional[GoDeclaration]] = {}
        self._usages: Optional[Dict[str, List[_Usage]]] = None
        self._usages_for: Optional[Sequence[SourceFile]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, target: ChangeTarget, files: Sequence[SourceFile]) -> SemanticContext:
        target_file = self.resolver.file_for(target.file_path, files)
        if target_file is None:
            raise DependencyError(f"{target.describe()} is in {target.file_path}, which was not parsed")

        context = SemanticContext(change_target=target)
        graph = DependencyGraph() if self.build_graph else None
        context.dependency_graph = graph
        self.visited = set()
        discovered: List[GoDeclaration] = [target.declaration]

        target_id = self._graph_node(graph, target.declaration, is_target=True)
        self._merge_imports(context, target_file, graph, target_id)

        queue: Deque[_QueueItem] = deque()
        decl = target.declaration
        for ref in decl.references:
            queue.append(_QueueItem(depth=1, source_id=target_id, referring_file=target_file, ref=ref))
        if target.kind in (DeclarationKind.TYPE, DeclarationKind.CONSTANT, DeclarationKind.VARIABLE):
            for user in self._functions_using(decl, files):
                queue.append(_QueueItem(depth=1, source_id=target_id, decl=user, reverse=True))

        while queue:
            item = queue.popleft()
            found = item.decl
            if found is None and item.ref is not None and item.referring_file is not None:
                found = self._resolve(item.ref, item.referring_file, files)
            if found is None:
                continue

            node_id = self._graph_node(graph, found)
            if graph is not None:
                if item.reverse:
                    graph.add_edge(node_id, item.source_id, EdgeType.FUNCTION_CALL)
                else:
                    graph.add_edge(item.source_id, node_id, _EDGE_FOR_KIND[declaration_kind(found)])

            key = self._visit_key(found)
            if key in self.visited:
                continue
            self.visited.add(key)
            context.add_declaration(found)
            discovered.append(found)

            found_file = self.resolver.file_for(found.file_path, files)
            if found_file is not None:
                self._merge_imports(context, found_file, graph, node_id)

            if item.depth >= self.max_depth:
                logger.debug("Depth limit %d reached at %s", self.max_depth, found.display_name)
                continue
            if found_file is not None:
                for ref in found.references:
                    queue.append(
                        _QueueItem(depth=item.depth + 1, source_id=node_id, referring_file=found_file, ref=ref)
                    )
            if item.reverse and isinstance(found, GoFunctionInfo):
                for caller in self._functions_using(found, files):
                    queue.append(_QueueItem(depth=item.depth + 1, source_id=node_id, decl=caller, reverse=True))

        context.cross_module_dependencies = self._cross_module_dependencies(discovered, files, graph)
        logger.info(
            "Context for %s: %d types, %d functions, %d constants, %d variables, %d imports",
            target.describe(),
            len(context.related_types),
            len(context.dependent_functions),
            len(context.constants),
            len(context.variables),
            len(context.imports),
        )
        return context

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _visit_key(self, decl: GoDeclaration) -> Tuple[str, str]:
        package = self.resolver.package_dir(decl.file_path)
        return (declaration_kind(decl).value, f"{package}:{decl.qualified_name}")

    def _resolve(self, ref: Reference, referring: SourceFile, files: Sequence[SourceFile]) -> Optional[GoDeclaration]:
        if self.resolver.is_external_reference(ref, referring):
            logger.debug("Skipping external reference %s", ref)
            return None
        if ref.qualifier is not None:
            scope = self.resolver.qualifier_dir(ref.qualifier, referring)
            if scope is None:
                logger.debug("Unknown package qualifier in %s", ref)
                return None
        else:
            scope = self.resolver.package_dir(referring.path)
        # Unknown receivers resolve with a preference for the referring file.
        origin = str(referring.path) if ref.kind == ReferenceKind.METHOD_CALL and not ref.receiver_type else ""
        key = (ref.kind.value, scope, ref.name, ref.receiver_type, origin)
        if key in self._cache:
            return self._cache[key]
        decl = self.resolver.resolve_reference(ref, referring, files)
        if decl is None:
            logger.debug("Unresolved reference %s from %s", ref, referring.path)
        self._cache[key] = decl
        return decl

    def _usage_index(self, files: Sequence[SourceFile]) -> Dict[str, List[_Usage]]:
        """Map of referenced name -> (file, function, reference) across all functions."""
        if self._usages is not None and self._usages_for is files:
            return self._usages
        index: Dict[str, List[_Usage]] = {}
        for source_file in sorted(files, key=lambda f: str(f.path)):
            for func in source_file.language_specific.functions():
                for ref in func.references:
                    index.setdefault(ref.name, []).append((source_file, func, ref))
        self._usages = index
        self._usages_for = files
        return index

    def _functions_using(self, decl: GoDeclaration, files: Sequence[SourceFile]) -> List[GoFunctionInfo]:
        """Functions whose signature or body refer to *decl*, in (path, line) order."""
        target_dir = self.resolver.package_dir(decl.file_path)
        kind = declaration_kind(decl)
        if kind == DeclarationKind.TYPE:
            accepted = {ReferenceKind.TYPE, ReferenceKind.CALL}
        elif kind == DeclarationKind.FUNCTION:
            accepted = {ReferenceKind.CALL, ReferenceKind.VALUE}
        elif kind == DeclarationKind.METHOD:
            accepted = {ReferenceKind.METHOD_CALL}
        else:
            accepted = {ReferenceKind.VALUE}

        users: List[GoFunctionInfo] = []
        for source_file, func, ref in self._usage_index(files).get(decl.name, []):
            if func is decl or ref.kind not in accepted or any(func is u for u in users):
                continue
            if self._refers_to(ref, source_file, decl, target_dir):
                users.append(func)
        return users

    def _refers_to(self, ref: Reference, source_file: SourceFile, decl: GoDeclaration, target_dir: str) -> bool:
        file_dir = self.resolver.package_dir(source_file.path)
        if ref.kind == ReferenceKind.METHOD_CALL:
            receiver = decl.receiver if isinstance(decl, GoFunctionInfo) else None
            if receiver is None:
                return False
            if ref.receiver_type is None:
                if ref.qualifier is not None:
                    return self.resolver.qualifier_dir(ref.qualifier, source_file) == target_dir
                return file_dir == target_dir
            if "." in ref.receiver_type:
                qualifier, type_name = ref.receiver_type.split(".", 1)
                return type_name == receiver.type_name and \
                    self.resolver.qualifier_dir(qualifier, source_file) == target_dir
            return ref.receiver_type == receiver.type_name and file_dir == target_dir
        if ref.qualifier is None:
            return file_dir == target_dir
        return self.resolver.qualifier_dir(ref.qualifier, source_file) == target_dir

    # ------------------------------------------------------------------
    # Imports and cross-module bookkeeping
    # ------------------------------------------------------------------

    def _merge_imports(
        self,
        context: SemanticContext,
        source_file: SourceFile,
        graph: Optional[DependencyGraph],
        node_id: str,
    ) -> None:
        for imp in source_file.imports:
            if self.resolver.is_external(imp):
                continue
            context.add_import(imp)
            if graph is not None:
                import_id = graph.add_node("import", imp.path)
                graph.add_edge(node_id, import_id, EdgeType.IMPORT_DEPENDENCY)

    def _cross_module_dependencies(
        self,
        discovered: List[GoDeclaration],
        files: Sequence[SourceFile],
        graph: Optional[DependencyGraph],
    ) -> Dict[str, List[str]]:
        """Internal import path -> names collected from that package, target first."""
        result: Dict[str, List[str]] = {}
        contributing: List[str] = []
        for decl in discovered:
            if str(decl.file_path) not in contributing:
                contributing.append(str(decl.file_path))

        for path in contributing:
            source_file = self.resolver.file_for(path, files)
            if source_file is None:
                continue
            for imp in source_file.imports:
                if self.resolver.is_external(imp):
                    continue
                package_dir = self.resolver.import_dir(imp.path)
                names = result.setdefault(imp.path, [])
                for decl in discovered:
                    if self.resolver.package_dir(decl.file_path) == package_dir and decl.name not in names:
                        names.append(decl.name)
                        if graph is not None:
                            graph.add_edge(
                                graph.add_node("module", imp.path),
                                self._graph_node(graph, decl),
                                EdgeType.MODULE_DEPENDENCY,
                            )
        return {path: names for path, names in result.items() if names}

    def _graph_node(self, graph: Optional[DependencyGraph], decl: GoDeclaration, is_target: bool = False) -> str:
        kind = declaration_kind(decl).value
        scope = self.resolver.package_dir(decl.file_path)
        if graph is None:
            return DependencyGraph.node_id(kind, decl.qualified_name, scope)
        return graph.add_node(kind, decl.qualified_name, str(decl.file_path), is_target=is_target, scope=scope)
