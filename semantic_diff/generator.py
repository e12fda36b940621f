"""Assembles a semantic context into an ordered, diff-annotated code slice.

The slice lists imports, the types the change depends on (dependencies
first), constants, variables, the changed declaration and finally the
functions around it.  Only the changed declaration is annotated: lines the
commit added are marked ``added`` and the lines it removed are woven back in
next to the code that replaced them and marked ``removed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .context import SemanticContext
from .models import (
    BlockTitleStyle,
    ChangeTarget,
    DeclarationKind,
    DiffHunk,
    DiffLine,
    DiffLineType,
    GoDeclaration,
    GoTypeDefinition,
    declaration_identity,
    declaration_kind,
)

logger = logging.getLogger(__name__)

RELATEDNESS_THRESHOLD = 0.3
_STRUCTURAL_CHARS = frozenset("{}()[];,")
_BARE_KEYWORDS = frozenset({"return", "break", "continue", "nil", "true", "false"})

_TITLE_LABELS: Dict[DeclarationKind, str] = {
    DeclarationKind.FUNCTION: "Function",
    DeclarationKind.METHOD: "Method",
    DeclarationKind.TYPE: "Type",
    DeclarationKind.CONSTANT: "Constant",
    DeclarationKind.VARIABLE: "Variable",
}


# ---------------------------------------------------------------------------
# Line heuristics
# ---------------------------------------------------------------------------

def lines_related(first: str, second: str, threshold: float = RELATEDNESS_THRESHOLD) -> bool:
    """Equal after trimming, or whitespace-token Jaccard similarity >= *threshold*."""
    a, b = first.strip(), second.strip()
    if a == b:
        return True
    tokens_a, tokens_b = set(a.split()), set(b.split())
    if not tokens_a or not tokens_b:
        return False
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b) >= threshold


def is_insignificant(line: str) -> bool:
    """Lines too trivial to carry a change marker on their own."""
    text = line.strip()
    if len(text) < 3:
        return True
    if all(ch in _STRUCTURAL_CHARS for ch in text):
        return True
    return text in _BARE_KEYWORDS


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class GeneratorConfig:
    include_comments: bool = True
    include_imports: bool = True
    include_types: bool = True
    include_dependent_functions: bool = True
    max_lines: int = 0
    block_title_style: BlockTitleStyle = BlockTitleStyle.DETAILED
    # Off when the output carries no change markers.
    show_removed_lines: bool = True


@dataclass
class SliceStats:
    total_lines: int
    highlighted_lines: int
    files: int
    imports: int
    types: int
    functions: int
    constants: int
    variables: int


@dataclass
class CodeSlice:
    """The assembled slice for one change target."""

    target: ChangeTarget
    header_comment: str
    imports: List[str] = field(default_factory=list)
    type_definitions: List[str] = field(default_factory=list)
    function_definitions: List[str] = field(default_factory=list)
    constants: List[str] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)
    content: str = ""
    highlighted_lines: Set[int] = field(default_factory=set)
    line_change_types: Dict[int, DiffLineType] = field(default_factory=dict)
    involved_files: List[str] = field(default_factory=list)

    @property
    def lines(self) -> List[str]:
        return self.content.split("\n") if self.content else []

    def change_type_of(self, line_number: int) -> Optional[DiffLineType]:
        return self.line_change_types.get(line_number)

    def get_stats(self) -> SliceStats:
        return SliceStats(
            total_lines=len(self.lines),
            highlighted_lines=len(self.highlighted_lines),
            files=len(self.involved_files),
            imports=len(self.imports),
            types=len(self.type_definitions),
            functions=len(self.function_definitions),
            constants=len(self.constants),
            variables=len(self.variables),
        )


@dataclass
class _RemovedRun:
    lines: List[DiffLine]
    anchor: int
    followers: List[DiffLine]


class _SliceWriter:
    """Accumulates emitted lines and the change markers attached to them."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self.changes: Dict[int, DiffLineType] = {}

    def emit(self, text: str, change: Optional[DiffLineType] = None) -> None:
        self.lines.append(text)
        if change is not None:
            self.changes[len(self.lines)] = change

    def emit_block(self, text: str) -> None:
        for line in text.split("\n"):
            self.emit(line)

    def separate(self) -> None:
        if self.lines and self.lines[-1] != "":
            self.lines.append("")


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class CodeSliceGenerator:
    """Turns a :class:`SemanticContext` into a :class:`CodeSlice`."""

    def __init__(self, config: Optional[GeneratorConfig] = None, project_root: Optional[Path] = None) -> None:
        self.config = config or GeneratorConfig()
        self.project_root = Path(project_root) if project_root is not None else None

    def generate(
        self,
        context: SemanticContext,
        hunks: Sequence[DiffHunk] = (),
        file_declarations: Optional[Sequence[GoDeclaration]] = None,
    ) -> CodeSlice:
        """Assemble the slice for *context*.

        *hunks* are the diff hunks of the change target's file and
        *file_declarations* every declaration surviving in that file; the
        latter decide which declaration a block of removed lines belongs to.
        """
        target = context.change_target
        target_id = target.identity
        writer = _SliceWriter()
        header = self._header(context)
        code_slice = CodeSlice(target=target, header_comment=header)

        if self.config.include_comments:
            writer.emit_block(header)
            writer.separate()

        if self.config.include_imports and context.imports:
            imports = sorted(context.imports, key=lambda imp: imp.path)
            code_slice.imports = [imp.to_go() for imp in imports]
            writer.emit_block("import (\n" + "\n".join(f"\t{line}" for line in code_slice.imports) + "\n)")
            writer.separate()

        emitted_spans: Set[Tuple[str, int, int]] = {self._span(target.declaration)}
        involved: List[GoDeclaration] = [target.declaration]

        if self.config.include_types:
            for type_def in self.order_types(context.related_types):
                if declaration_identity(type_def) == target_id or not self._claim(type_def, emitted_spans):
                    continue
                self._emit_declaration(writer, type_def)
                code_slice.type_definitions.append(type_def.text)
                involved.append(type_def)

        for decl in sorted(context.constants, key=self._position):
            if self._claim(decl, emitted_spans):
                self._emit_declaration(writer, decl)
                code_slice.constants.append(decl.text)
                involved.append(decl)

        for decl in sorted(context.variables, key=self._position):
            if self._claim(decl, emitted_spans):
                self._emit_declaration(writer, decl)
                code_slice.variables.append(decl.text)
                involved.append(decl)

        self._emit_target(writer, target.declaration, hunks, file_declarations)
        self._bucket_for(code_slice, target.declaration).append(target.declaration.text)

        if self.config.include_dependent_functions:
            for func in sorted(context.dependent_functions, key=self._position):
                if declaration_identity(func) == target_id:
                    continue
                self._emit_declaration(writer, func)
                code_slice.function_definitions.append(func.text)
                involved.append(func)

        while writer.lines and writer.lines[-1] == "":
            writer.lines.pop()

        lines, changes = self._truncate(writer.lines, writer.changes)
        code_slice.content = "\n".join(lines)
        code_slice.line_change_types = changes
        code_slice.highlighted_lines = set(changes)
        code_slice.involved_files = sorted({self.display_path(d.file_path) for d in involved})
        logger.debug(
            "Generated slice for %s: %d lines, %d highlighted",
            target.describe(), len(lines), len(changes),
        )
        return code_slice

    def generate_many(
        self,
        contexts: Sequence[SemanticContext],
        hunks_by_file: Dict[str, Sequence[DiffHunk]],
        declarations_by_file: Optional[Dict[str, Sequence[GoDeclaration]]] = None,
    ) -> List[CodeSlice]:
        declarations_by_file = declarations_by_file or {}
        slices = []
        for context in contexts:
            path = str(context.change_target.file_path)
            slices.append(self.generate(context, hunks_by_file.get(path, ()), declarations_by_file.get(path)))
        return slices

    # ------------------------------------------------------------------
    # Ordering and naming
    # ------------------------------------------------------------------

    @staticmethod
    def order_types(types: Sequence[GoTypeDefinition]) -> List[GoTypeDefinition]:
        """Dependencies before dependants; discovery order breaks ties."""
        by_name: Dict[str, List[GoTypeDefinition]] = {}
        for type_def in types:
            by_name.setdefault(type_def.name, []).append(type_def)

        ordered: List[GoTypeDefinition] = []
        state: Dict[int, int] = {}

        def visit(type_def: GoTypeDefinition) -> None:
            # 1 = in progress, 2 = done; in-progress nodes close a cycle.
            if state.get(id(type_def)):
                return
            state[id(type_def)] = 1
            for dep in type_def.dependencies:
                for candidate in by_name.get(dep.rsplit(".", 1)[-1], []):
                    visit(candidate)
            state[id(type_def)] = 2
            ordered.append(type_def)

        for type_def in types:
            visit(type_def)
        return ordered

    def display_path(self, path: Path) -> str:
        path = Path(path)
        if self.project_root is not None:
            try:
                return path.relative_to(self.project_root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def block_title(self, decl: GoDeclaration) -> Optional[str]:
        style = self.config.block_title_style
        if style == BlockTitleStyle.NONE:
            return None
        if style == BlockTitleStyle.MINIMAL:
            return f"// {decl.display_name}"
        return f"// {_TITLE_LABELS[declaration_kind(decl)]}: {decl.display_name}"

    def _header(self, context: SemanticContext) -> str:
        target = context.change_target
        stats = context.get_stats()
        return "\n".join([
            f"// Semantic slice for {target.describe()} ({self.display_path(target.file_path)})",
            f"// Context: {stats.types_count} types, {stats.functions_count} functions, "
            f"{stats.constants_count} constants, {stats.variables_count} variables, "
            f"{stats.imports_count} imports",
        ])

    @staticmethod
    def _position(decl: GoDeclaration) -> Tuple[str, int]:
        return (str(decl.file_path), decl.start_line)

    @staticmethod
    def _span(decl: GoDeclaration) -> Tuple[str, int, int]:
        return (str(decl.file_path), decl.start_line, decl.end_line)

    def _claim(self, decl: GoDeclaration, spans: Set[Tuple[str, int, int]]) -> bool:
        """Names declared by one spec share a span; emit that text once."""
        span = self._span(decl)
        if span in spans:
            return False
        spans.add(span)
        return True

    @staticmethod
    def _bucket_for(code_slice: CodeSlice, decl: GoDeclaration) -> List[str]:
        kind = declaration_kind(decl)
        if kind == DeclarationKind.TYPE:
            return code_slice.type_definitions
        if kind == DeclarationKind.CONSTANT:
            return code_slice.constants
        if kind == DeclarationKind.VARIABLE:
            return code_slice.variables
        return code_slice.function_definitions

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit_declaration(self, writer: _SliceWriter, decl: GoDeclaration) -> None:
        if self.config.include_comments:
            title = self.block_title(decl)
            if title:
                writer.emit(title)
            if decl.doc_comment:
                writer.emit_block(decl.doc_comment)
        writer.emit_block(decl.text)
        writer.separate()

    def _emit_target(
        self,
        writer: _SliceWriter,
        decl: GoDeclaration,
        hunks: Sequence[DiffHunk],
        file_declarations: Optional[Sequence[GoDeclaration]],
    ) -> None:
        """Emit the changed declaration with added lines marked and removed lines inlaid."""
        if self.config.include_comments:
            title = self.block_title(decl)
            if title:
                writer.emit(title)

        body = [(decl.start_line + i, line) for i, line in enumerate(decl.text.split("\n"))]
        if self.config.include_comments and decl.doc_comment:
            doc = decl.doc_comment.split("\n")
            body = [(decl.start_line - len(doc) + i, line) for i, line in enumerate(doc)] + body
        first_line, last_line = body[0][0], body[-1][0]

        added = {
            line.new_line_number
            for hunk in hunks
            for line in hunk.lines
            if line.line_type == DiffLineType.ADDED and line.new_line_number is not None
        }
        pending: Dict[int, List[DiffLine]] = {}
        if self.config.show_removed_lines:
            pending = self._place_removed_lines(decl, hunks, file_declarations)

        def flush(positions: List[int]) -> None:
            for position in positions:
                for removed in pending.pop(position, []):
                    change = None if is_insignificant(removed.content) else DiffLineType.REMOVED
                    writer.emit(removed.content, change)

        flush(sorted(p for p in pending if p <= first_line))
        for line_number, text in body:
            flush([line_number])
            change = DiffLineType.ADDED if line_number in added and not is_insignificant(text) else None
            writer.emit(text, change)
        flush(sorted(p for p in pending if p > last_line))
        writer.separate()

    def _place_removed_lines(
        self,
        decl: GoDeclaration,
        hunks: Sequence[DiffHunk],
        file_declarations: Optional[Sequence[GoDeclaration]],
    ) -> Dict[int, List[DiffLine]]:
        """Removed lines owned by *decl*, keyed by the new-file line they precede."""
        declarations = sorted(file_declarations or [decl], key=lambda d: (d.start_line, d.end_line))
        placed: Dict[int, List[DiffLine]] = {}
        for hunk in hunks:
            for run in self._removed_runs(hunk):
                owner = self._owner_of(run, declarations)
                if owner is None or self._span(owner) != self._span(decl):
                    continue
                position = run.anchor
                next_follower = 0
                for removed in run.lines:
                    for index in range(next_follower, len(run.followers)):
                        follower = run.followers[index]
                        if lines_related(removed.content, follower.content):
                            position = follower.new_line_number or run.anchor
                            next_follower = index + 1
                            break
                    placed.setdefault(position, []).append(removed)
        return placed

    @staticmethod
    def _removed_runs(hunk: DiffHunk) -> List[_RemovedRun]:
        runs: List[_RemovedRun] = []
        current: List[DiffLine] = []
        for index, line in enumerate(hunk.lines):
            if line.line_type == DiffLineType.REMOVED:
                current.append(line)
                continue
            if current:
                followers = []
                for follower in hunk.lines[index:]:
                    if follower.line_type != DiffLineType.ADDED:
                        break
                    followers.append(follower)
                runs.append(_RemovedRun(current, line.new_line_number or hunk.new_start, followers))
                current = []
        if current:
            # A trailing run sits after the hunk's last new line.
            anchor = hunk.new_start + hunk.new_lines if hunk.new_lines else hunk.new_start + 1
            runs.append(_RemovedRun(current, anchor, []))
        return runs

    @staticmethod
    def _owner_of(run: _RemovedRun, declarations: Sequence[GoDeclaration]) -> Optional[GoDeclaration]:
        anchor = run.anchor
        for decl in declarations:
            if decl.start_line < anchor <= decl.end_line:
                return decl

        preceding = [d for d in declarations if d.end_line < anchor]
        starting = next((d for d in declarations if d.start_line == anchor), None)
        if starting is not None:
            # Replaced opening lines belong to the declaration; anything else
            # was the tail of what came before.
            first_line = starting.text.split("\n", 1)[0]
            if lines_related(run.lines[0].content, first_line) or not preceding:
                return starting
        if preceding:
            return max(preceding, key=lambda d: (d.end_line, d.start_line))
        following = [d for d in declarations if d.start_line >= anchor]
        return following[0] if following else None

    def _truncate(
        self,
        lines: List[str],
        changes: Dict[int, DiffLineType],
    ) -> Tuple[List[str], Dict[int, DiffLineType]]:
        limit = self.config.max_lines
        if limit <= 0 or len(lines) <= limit:
            return lines, changes
        dropped = len(lines) - limit
        kept = lines[:limit] + [f"// ... truncated ({dropped} more lines)"]
        return kept, {n: kind for n, kind in changes.items() if n <= limit}
