"""Language parser facade built on Tree-sitter.

Parsers turn source text into a concrete syntax tree (CST).  Tree-sitter is
error tolerant: malformed source yields a tree carrying ``ERROR`` nodes, so
parsing itself only fails when the grammar cannot be loaded.

Navigation over the tree lives in :class:`CstNavigator`, which is language
agnostic and is parametrised by the :class:`NodeKinds` table each parser
exposes.  Adding a language means adding a parser and its kinds table; the
navigator and everything downstream stay untouched.
"""

from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Type, Union

from .errors import ParseError, TreeSitterError, UnsupportedFileType
from .models import SupportedLanguage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping (extensible)
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, SupportedLanguage] = {
    ".go": SupportedLanguage.GO,
}

SKIP_DIRS: Set[str] = {
    ".git", "vendor", "testdata", "node_modules", "third_party",
}


@dataclass(frozen=True)
class NodeKinds:
    """Language-specific node-kind names used by :class:`CstNavigator`."""

    function: str
    method: str
    type_declaration: str
    const_declaration: str
    var_declaration: str
    import_declaration: str
    package_clause: str
    body: str
    parameter_list: str
    type_identifier: str
    qualified_type: str
    comment: str
    error: str = "ERROR"

    @property
    def callables(self) -> Tuple[str, str]:
        return (self.function, self.method)


GO_NODE_KINDS = NodeKinds(
    function="function_declaration",
    method="method_declaration",
    type_declaration="type_declaration",
    const_declaration="const_declaration",
    var_declaration="var_declaration",
    import_declaration="import_declaration",
    package_clause="package_clause",
    body="block",
    parameter_list="parameter_list",
    type_identifier="type_identifier",
    qualified_type="qualified_type",
    comment="comment",
)


def text_of(node: Any, source: Union[str, bytes]) -> str:
    """Exact byte-range view of *node* in *source*."""
    data = source.encode("utf-8") if isinstance(source, str) else source
    return data[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def named_field_children(node: Any, field_name: str) -> List[Any]:
    """Named children under *field_name*; newer grammars also list the ``,`` separators."""
    return [child for child in node.children_by_field_name(field_name) if child.is_named]


def iter_nodes(root: Any) -> Iterator[Any]:
    """Pre-order traversal of every node below (and including) *root*."""
    cursor = root.walk()
    visited_children = False
    while True:
        if not visited_children:
            yield cursor.node
            if cursor.goto_first_child():
                continue
        if cursor.goto_next_sibling():
            visited_children = False
            continue
        if not cursor.goto_parent() or cursor.node == root:
            break
        visited_children = True


# ===================================================================
# Abstract Parser Interface
# ===================================================================

class LanguageParser(ABC):
    """Abstract base class for all language parsers."""

    language: SupportedLanguage

    @abstractmethod
    def parse(self, source: str) -> Any:
        """Parse *source* into a syntax tree."""
        ...

    @property
    @abstractmethod
    def node_kinds(self) -> NodeKinds:
        """Kind-name table consumed by :class:`CstNavigator`."""
        ...

    def find_node_at(self, tree: Any, line: int, column: int) -> Optional[Any]:
        """Innermost node containing the 1-based *line* and 0-based *column*."""
        root = tree.root_node
        point = (line - 1, column)
        if point < tuple(root.start_point) or point > tuple(root.end_point):
            return None
        return root.descendant_for_point_range(point, point)

    def text_of(self, node: Any, source: Union[str, bytes]) -> str:
        return text_of(node, source)

    def walk_kinds(self, root: Any) -> List[str]:
        """Kind names of every node under *root*, in pre-order."""
        return [node.type for node in iter_nodes(root)]


# ===================================================================
# Tree-sitter Go Parser
# ===================================================================

class GoParser(LanguageParser):
    """Go parser backed by the ``tree-sitter-go`` grammar package."""

    language = SupportedLanguage.GO

    # Map language -> module that provides the tree-sitter Language
    _GRAMMAR_MODULES: Dict[SupportedLanguage, str] = {
        SupportedLanguage.GO: "tree_sitter_go",
    }

    def __init__(self) -> None:
        self._parser = self._init_parser()

    def _init_parser(self) -> Any:
        mod_name = self._GRAMMAR_MODULES[self.language]
        try:
            from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]

            mod = importlib.import_module(mod_name)
            # tree-sitter >=0.22 per-language packages expose a
            # language() function that returns the Language capsule.
            ts_lang = Language(mod.language())
            parser = TSParser(ts_lang)
        except ImportError as exc:
            raise ParseError(
                f"grammar package '{mod_name}' is not installed "
                f"(install with: pip install tree-sitter {mod_name.replace('_', '-')})",
                cause=exc,
            ) from exc
        except (TypeError, ValueError) as exc:
            raise ParseError(f"failed to load grammar '{mod_name}': {exc}", cause=exc) from exc
        logger.debug("Loaded tree-sitter parser for %s", self.language.value)
        return parser

    @property
    def node_kinds(self) -> NodeKinds:
        return GO_NODE_KINDS

    def parse(self, source: str) -> Any:
        try:
            tree = self._parser.parse(source.encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise TreeSitterError(str(exc), cause=exc) from exc
        if tree is None:
            raise TreeSitterError("parser returned no tree")
        if tree.root_node.has_error:
            logger.debug("Parsed tree contains error nodes")
        return tree


# ===================================================================
# Factory
# ===================================================================

class ParserFactory:
    """Maps language tags and file extensions to parser implementations."""

    _REGISTRY: Dict[SupportedLanguage, Type[LanguageParser]] = {
        SupportedLanguage.GO: GoParser,
    }

    @classmethod
    def register(cls, language: SupportedLanguage, parser_cls: Type[LanguageParser]) -> None:
        cls._REGISTRY[language] = parser_cls

    @classmethod
    def create_parser(cls, language: SupportedLanguage) -> LanguageParser:
        parser_cls = cls._REGISTRY.get(language)
        if parser_cls is None:
            raise UnsupportedFileType(f"no parser registered for language '{language.value}'")
        return parser_cls()

    @staticmethod
    def detect_language(file_path: Union[str, Path]) -> Optional[SupportedLanguage]:
        return LANGUAGE_MAP.get(Path(file_path).suffix.lower())

    @classmethod
    def create_parser_for_file(cls, file_path: Union[str, Path]) -> LanguageParser:
        language = cls.detect_language(file_path)
        if language is None:
            raise UnsupportedFileType(str(file_path))
        return cls.create_parser(language)

    @classmethod
    def supported_languages(cls) -> List[SupportedLanguage]:
        return list(cls._REGISTRY)


# ===================================================================
# Concrete-syntax navigator
# ===================================================================

@dataclass
class FunctionSignature:
    name: str
    parameters: List[str]
    return_types: List[str]
    receiver: Optional[str] = None


class CstNavigator:
    """Higher-level, language-agnostic queries over a concrete syntax tree."""

    def __init__(self, kinds: NodeKinds) -> None:
        self.kinds = kinds

    def find_declarations(self, root: Any, kind: str) -> List[Any]:
        """All nodes of *kind* under *root*, in source order."""
        return [node for node in iter_nodes(root) if node.type == kind]

    def top_level_nodes(self, root: Any) -> List[Any]:
        return list(root.named_children)

    def function_body(self, node: Any) -> Optional[Any]:
        if node.type not in self.kinds.callables:
            return None
        return node.child_by_field_name("body")

    def function_signature(self, node: Any, source: Union[str, bytes]) -> Optional[FunctionSignature]:
        """Signature of a function or method node as raw text pieces."""
        if node.type not in self.kinds.callables:
            return None
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None

        params_node = node.child_by_field_name("parameters")
        parameters = [text_of(p, source) for p in params_node.named_children] if params_node else []

        result = node.child_by_field_name("result")
        if result is None:
            return_types: List[str] = []
        elif result.type == self.kinds.parameter_list:
            return_types = [text_of(r, source) for r in result.named_children]
        else:
            return_types = [text_of(result, source)]

        receiver_node = node.child_by_field_name("receiver")
        receiver = text_of(receiver_node, source) if receiver_node is not None else None
        return FunctionSignature(
            name=text_of(name_node, source),
            parameters=parameters,
            return_types=return_types,
            receiver=receiver,
        )

    def type_references(self, node: Any, source: Union[str, bytes]) -> List[str]:
        """Type identifiers used under *node*, qualified ones as ``pkg.Name``."""
        found: List[str] = []
        seen: Set[str] = set()
        skip_until = -1
        for current in iter_nodes(node):
            if current.start_byte < skip_until:
                continue
            name = None
            if current.type == self.kinds.qualified_type:
                name = text_of(current, source).replace(" ", "")
                skip_until = current.end_byte
            elif current.type == self.kinds.type_identifier:
                name = text_of(current, source)
            if name and name not in seen:
                seen.add(name)
                found.append(name)
        return found

    def innermost_node_at_line(self, root: Any, line: int) -> Optional[Any]:
        """Smallest named node whose line span contains the 1-based *line*."""
        row = line - 1
        if not root.start_point[0] <= row <= root.end_point[0]:
            return None
        node = root
        while True:
            child = next(
                (c for c in node.named_children if c.start_point[0] <= row <= c.end_point[0]),
                None,
            )
            if child is None:
                return node
            node = child

    def nodes_in_line_range(self, root: Any, start_line: int, end_line: int) -> List[Any]:
        """Top-level named nodes whose span intersects [start_line, end_line]."""
        start_row, end_row = start_line - 1, end_line - 1
        return [
            child
            for child in root.named_children
            if child.start_point[0] <= end_row and child.end_point[0] >= start_row
        ]
