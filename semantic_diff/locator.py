"""Maps changed line ranges onto the declarations that enclose them."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set, Tuple

from .models import ChangeTarget, DiffHunk, GoDeclaration, SourceFile, declaration_identity

logger = logging.getLogger(__name__)


class ChangeLocator:
    """Finds the change targets of one file given the hunks touching it.

    Every new-file line a hunk touches (context and added lines) is attached
    to the innermost declaration whose span contains it.  A line between
    declarations, such as a blank line or a comment above a function, is
    attached to the nearest following declaration unless it lies inside an
    import block.  Pure-deletion hunks are attached to the surviving
    declaration whose span brackets the deletion point, if any.
    """

    def locate(self, source_file: SourceFile, hunks: Iterable[DiffHunk]) -> List[ChangeTarget]:
        declarations = sorted(source_file.declarations, key=lambda d: (d.start_line, d.end_line))
        import_ranges = source_file.language_specific.import_ranges
        targets: List[ChangeTarget] = []
        seen: Set[Tuple[str, str, str, int, int]] = set()

        for hunk in hunks:
            for decl in self._declarations_for_hunk(hunk, declarations, import_ranges, source_file):
                identity = declaration_identity(decl)
                if identity in seen:
                    continue
                seen.add(identity)
                targets.append(ChangeTarget(decl))

        logger.debug(
            "Located %d change target(s) in %s: %s",
            len(targets), source_file.path, ", ".join(t.describe() for t in targets),
        )
        return targets

    def _declarations_for_hunk(self, hunk, declarations, import_ranges, source_file) -> List[GoDeclaration]:
        if hunk.is_pure_deletion:
            decl = self.bracketing_declaration(declarations, hunk.new_start)
            if decl is None:
                logger.debug(
                    "Dropping pure-deletion hunk at %s:%d; no surviving declaration brackets it",
                    source_file.path, hunk.new_start,
                )
                return []
            return [decl]

        found: List[GoDeclaration] = []
        reimport = False
        for line in hunk.touched_new_lines():
            if any(start <= line <= end for start, end in import_ranges):
                reimport = True
                continue
            for decl in self.declarations_at(declarations, line):
                if all(decl is not d for d in found):
                    found.append(decl)
        if reimport:
            logger.debug("Hunk at %s:%d touches imports", source_file.path, hunk.new_start)
        return found

    @staticmethod
    def declarations_at(declarations: List[GoDeclaration], line: int) -> List[GoDeclaration]:
        """Innermost declarations containing *line*, else the next one after it.

        Names declared by one spec (``const A, B = 1, 2``) share a span and
        are returned together.
        """
        containing = [d for d in declarations if d.start_line <= line <= d.end_line]
        if containing:
            width = min(d.end_line - d.start_line for d in containing)
            return [d for d in containing if d.end_line - d.start_line == width]
        following = [d for d in declarations if d.start_line > line]
        if following:
            first = following[0].start_line
            return [d for d in following if d.start_line == first]
        return []

    @staticmethod
    def bracketing_declaration(declarations: List[GoDeclaration], point: int) -> Optional[GoDeclaration]:
        """Declaration whose span strictly surrounds a deletion after line *point*."""
        containing = [d for d in declarations if d.start_line <= point < d.end_line]
        if not containing:
            return None
        return min(containing, key=lambda d: (d.end_line - d.start_line, d.start_line))
