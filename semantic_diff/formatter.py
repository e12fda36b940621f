"""Renders code slices as plain text, Markdown or a standalone HTML page."""

from __future__ import annotations

import html
import io
import logging
import textwrap
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from rich.color import ColorSystem
from rich.console import Console
from rich.text import Text

from .errors import SemanticDiffIOError
from .generator import CodeSlice
from .models import BlockTitleStyle, DiffLineType, HighlightStyle, OutputFormat

logger = logging.getLogger(__name__)

TEXT_SEPARATOR = "\n" + "=" * 80 + "\n\n"
MARKDOWN_SEPARATOR = "\n---\n\n"

_TEXT_PREFIX: Dict[DiffLineType, str] = {
    DiffLineType.ADDED: "+",
    DiffLineType.REMOVED: "-",
    DiffLineType.CONTEXT: ">",
}
_TEXT_STYLE: Dict[str, str] = {"+": "green", "-": "red", ">": "yellow"}
LINE_NUMBER_STYLE = "cyan"
_MARKDOWN_PREFIX: Dict[DiffLineType, str] = {
    DiffLineType.ADDED: "// +++ ",
    DiffLineType.REMOVED: "// --- ",
    DiffLineType.CONTEXT: "// >>> ",
}
_DIFF_PREFIX: Dict[DiffLineType, str] = {
    DiffLineType.ADDED: "+",
    DiffLineType.REMOVED: "-",
    DiffLineType.CONTEXT: " ",
}
_HTML_CLASS: Dict[DiffLineType, Tuple[str, str]] = {
    DiffLineType.ADDED: ("added-line", "+"),
    DiffLineType.REMOVED: ("removed-line", "-"),
    DiffLineType.CONTEXT: ("highlighted-line", " "),
}

DEFAULT_CSS = """
        body {
            font-family: 'Consolas', 'Monaco', 'Courier New', monospace;
            line-height: 1.6;
            margin: 0;
            padding: 20px;
            background-color: #f8f9fa;
        }
        .container {
            max-width: 1200px;
            margin: 0 auto;
            background-color: white;
            padding: 30px;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }
        h1, h2 {
            color: #333;
            border-bottom: 2px solid #e9ecef;
            padding-bottom: 10px;
        }
        .statistics, .files, .code-analysis, .dependencies {
            margin: 20px 0;
        }
        .stats-table {
            border-collapse: collapse;
            width: 100%;
            margin: 10px 0;
        }
        .stats-table td {
            border: 1px solid #dee2e6;
            padding: 8px 12px;
        }
        .stats-table td:first-child {
            font-weight: bold;
            background-color: #f8f9fa;
        }
        .header-comment {
            background-color: #f8f9fa;
            border-left: 4px solid #007bff;
            padding: 15px;
            margin: 15px 0;
        }
        .code-block {
            background-color: #f8f9fa;
            border: 1px solid #e9ecef;
            border-radius: 4px;
            overflow-x: auto;
        }
        .code-block pre {
            margin: 0;
            padding: 15px;
        }
        .line-number {
            color: #6c757d;
            margin-right: 15px;
            user-select: none;
        }
        .highlighted-line {
            background-color: #fff3cd;
            border-left: 3px solid #ffc107;
            padding-left: 5px;
        }
        .added-line {
            background-color: #e6ffed;
            border-left: 3px solid #28a745;
            padding-left: 5px;
        }
        .removed-line {
            background-color: #ffeef0;
            border-left: 3px solid #d73a49;
            padding-left: 5px;
        }
        .change-prefix {
            font-weight: bold;
            margin-right: 5px;
        }
        ul {
            list-style-type: none;
            padding-left: 0;
        }
        ul li {
            padding: 5px 0;
            border-bottom: 1px solid #e9ecef;
        }
        ul li:last-child {
            border-bottom: none;
        }
        code {
            background-color: #f8f9fa;
            padding: 2px 4px;
            border-radius: 3px;
            font-family: inherit;
        }
"""


def html_escape(text: str) -> str:
    return html.escape(text, quote=True)


# Styles resolve against this console; nothing is printed to it.
_ANSI_CONSOLE = Console(file=io.StringIO(), force_terminal=True, color_system="standard")


def ansi_line(text: Text) -> str:
    """ANSI-coloured form of one line of rich text.

    Tabs are kept and long lines are not wrapped.
    """
    return "".join(
        segment.style.render(segment.text, color_system=ColorSystem.STANDARD) if segment.style else segment.text
        for segment in text.render(_ANSI_CONSOLE)
    )


@dataclass
class FormatterConfig:
    output_format: OutputFormat = OutputFormat.TEXT
    highlight_style: HighlightStyle = HighlightStyle.INLINE
    show_line_numbers: bool = True
    show_file_paths: bool = True
    show_statistics: bool = True
    enable_colors: bool = True
    block_title_style: BlockTitleStyle = BlockTitleStyle.DETAILED
    custom_css: Optional[str] = None
    max_line_width: Optional[int] = 120
    indent_size: int = 4


@dataclass
class OutputMetadata:
    total_lines: int
    highlighted_lines: int
    files_count: int
    generated_at: str
    content_size: int


@dataclass
class FormattedOutput:
    content: str
    format: OutputFormat
    metadata: OutputMetadata

    def save_to_file(self, path: Path) -> None:
        path = Path(path)
        try:
            path.write_text(self.content, encoding="utf-8")
        except OSError as exc:
            raise SemanticDiffIOError(f"cannot write {path}: {exc}", cause=exc) from exc
        logger.info("Wrote %d bytes to %s", self.size(), path)

    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    def is_empty(self) -> bool:
        return not self.content.strip()


class OutputRenderer:
    """Applies one :class:`FormatterConfig` to code slices."""

    def __init__(self, config: Optional[FormatterConfig] = None) -> None:
        self.config = config or FormatterConfig()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def render(self, code_slice: CodeSlice, dependency_tree: Optional[str] = None) -> FormattedOutput:
        return self.render_many([code_slice], [dependency_tree])

    def render_many(
        self,
        slices: Sequence[CodeSlice],
        dependency_trees: Optional[Sequence[Optional[str]]] = None,
    ) -> FormattedOutput:
        """Render several slices into one report of the configured format."""
        trees = list(dependency_trees or [])
        trees += [None] * (len(slices) - len(trees))
        fmt = self.config.output_format

        if fmt == OutputFormat.HTML:
            content = self._html_document(slices, trees)
        elif fmt == OutputFormat.MARKDOWN:
            content = MARKDOWN_SEPARATOR.join(self._markdown(s, t) for s, t in zip(slices, trees))
        else:
            content = TEXT_SEPARATOR.join(self._plain_text(s, t) for s, t in zip(slices, trees))

        metadata = OutputMetadata(
            total_lines=len(content.splitlines()),
            highlighted_lines=sum(len(s.highlighted_lines) for s in slices),
            files_count=len({f for s in slices for f in s.involved_files}),
            generated_at=datetime.now(timezone.utc).isoformat(),
            content_size=len(content.encode("utf-8")),
        )
        return FormattedOutput(content=content, format=fmt, metadata=metadata)

    # ------------------------------------------------------------------
    # Plain text
    # ------------------------------------------------------------------

    def _plain_text(self, code_slice: CodeSlice, dependency_tree: Optional[str]) -> str:
        parts: List[str] = []
        if self.config.show_statistics:
            parts.append(self.format_statistics(code_slice) + "\n\n")
        if self.config.show_file_paths and code_slice.involved_files:
            parts.append("Files involved:\n")
            parts.extend(f"  - {path}\n" for path in code_slice.involved_files)
            parts.append("\n")
        parts.append(self.reflow_header(code_slice.header_comment) + "\n")

        style = self.config.highlight_style
        if style == HighlightStyle.INLINE:
            parts.append(self._inline_plain_text(code_slice))
        elif style == HighlightStyle.SEPARATE:
            parts.append(self._separate_plain_text(code_slice))
        else:
            parts.append(code_slice.content + "\n")

        if dependency_tree:
            parts.append("\nDependency graph:\n" + dependency_tree + "\n")
        return "".join(parts)

    def _inline_plain_text(self, code_slice: CodeSlice) -> str:
        out: List[str] = []
        colors = self.config.enable_colors
        for number, line in enumerate(code_slice.lines, start=1):
            change = code_slice.line_change_types.get(number)
            if number in code_slice.highlighted_lines:
                prefix = _TEXT_PREFIX.get(change, ">") if change else ">"
                if colors:
                    out.append(ansi_line(Text.assemble((f"{prefix} {line}", _TEXT_STYLE[prefix]))) + "\n")
                else:
                    out.append(f"{prefix} {line}\n")
            elif self.config.show_line_numbers:
                if colors:
                    out.append(ansi_line(Text.assemble((f"{number:4}|", LINE_NUMBER_STYLE), f" {line}")) + "\n")
                else:
                    out.append(f"{number:4}| {line}\n")
            else:
                out.append(f"{line}\n")
        return "".join(out)

    def _separate_plain_text(self, code_slice: CodeSlice) -> str:
        lines = code_slice.lines
        out = ["=== Full Content ===\n", code_slice.content, "\n\n", "=== Highlighted Changes ===\n"]
        for number in sorted(code_slice.highlighted_lines):
            if number > len(lines):
                continue
            change = code_slice.line_change_types.get(number)
            prefix = _TEXT_PREFIX.get(change, ">") if change else ">"
            entry = f"Line {number}: {prefix} {lines[number - 1]}"
            if self.config.enable_colors:
                entry = ansi_line(Text.assemble((entry, _TEXT_STYLE[prefix])))
            out.append(entry + "\n")
        return "".join(out)

    def format_statistics(self, code_slice: CodeSlice) -> str:
        stats = code_slice.get_stats()
        return (
            "Statistics:\n"
            f"  Total lines: {stats.total_lines}\n"
            f"  Highlighted lines: {stats.highlighted_lines}\n"
            f"  Files: {stats.files}\n"
            f"  Imports: {stats.imports}\n"
            f"  Types: {stats.types}\n"
            f"  Functions: {stats.functions}\n"
            f"  Constants: {stats.constants}\n"
            f"  Variables: {stats.variables}"
        )

    def reflow_header(self, header: str) -> str:
        """Wrap over-long header comment lines at ``max_line_width``."""
        width = self.config.max_line_width
        if not width:
            return header
        continuation = "//" + " " * max(self.config.indent_size, 1)
        wrapped: List[str] = []
        for line in header.split("\n"):
            if len(line) <= width:
                wrapped.append(line)
                continue
            wrapped.extend(
                textwrap.wrap(
                    line,
                    width=width,
                    subsequent_indent=continuation,
                    break_long_words=False,
                    break_on_hyphens=False,
                )
                or [line]
            )
        return "\n".join(wrapped)

    # ------------------------------------------------------------------
    # Markdown
    # ------------------------------------------------------------------

    def _markdown(self, code_slice: CodeSlice, dependency_tree: Optional[str]) -> str:
        parts = ["# Semantic Diff Analysis\n\n"]
        if self.config.show_statistics:
            parts.append("## Statistics\n\n" + self.format_statistics_markdown(code_slice) + "\n\n")
        if self.config.show_file_paths and code_slice.involved_files:
            parts.append("## Files Involved\n\n")
            parts.extend(f"- `{path}`\n" for path in code_slice.involved_files)
            parts.append("\n")

        parts.append("## Code Analysis\n\n")
        header_lines = [line[2:].strip() if line.startswith("//") else line for line in
                        code_slice.header_comment.split("\n")]
        parts.append("\n".join(f"<!-- {line} -->" for line in header_lines) + "\n\n")

        style = self.config.highlight_style
        if style == HighlightStyle.SEPARATE:
            parts.append(self._separate_markdown(code_slice))
        elif style == HighlightStyle.INLINE:
            parts.append("```go\n")
            for number, line in enumerate(code_slice.lines, start=1):
                if number in code_slice.highlighted_lines:
                    change = code_slice.line_change_types.get(number)
                    parts.append(f"{_MARKDOWN_PREFIX.get(change, '// >>> ') if change else '// >>> '}{line}\n")
                else:
                    parts.append(f"{line}\n")
            parts.append("```\n")
        else:
            parts.append(f"```go\n{code_slice.content}\n```\n")

        if dependency_tree:
            parts.append(f"\n## Dependency Graph\n\n```text\n{dependency_tree}\n```\n")
        return "".join(parts)

    def _separate_markdown(self, code_slice: CodeSlice) -> str:
        lines = code_slice.lines
        out = ["### Full Code\n\n", f"```go\n{code_slice.content}\n```\n\n", "### Highlighted Changes\n\n", "```diff\n"]
        for number in sorted(code_slice.highlighted_lines):
            if number > len(lines):
                continue
            change = code_slice.line_change_types.get(number)
            out.append(f"{_DIFF_PREFIX.get(change, '+') if change else '+'}{lines[number - 1]}\n")
        out.append("```\n")
        return "".join(out)

    def format_statistics_markdown(self, code_slice: CodeSlice) -> str:
        table = ["| Metric | Count |", "|--------|-------|"]
        table.extend(f"| {name} | {value} |" for name, value in _stat_rows(code_slice))
        return "\n".join(table)

    # ------------------------------------------------------------------
    # HTML
    # ------------------------------------------------------------------

    def _html_document(self, slices: Sequence[CodeSlice], trees: Sequence[Optional[str]]) -> str:
        out = [
            "<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n",
            "    <meta charset=\"UTF-8\">\n",
            "    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">\n",
            "    <title>Semantic Diff Analysis</title>\n",
            "    <style>\n",
            DEFAULT_CSS,
        ]
        if self.config.custom_css:
            out.append(self.config.custom_css + "\n")
        out.append("    </style>\n</head>\n<body>\n")
        out.append("    <div class=\"container\">\n        <h1>Semantic Diff Analysis</h1>\n")
        for code_slice, tree in zip(slices, trees):
            out.append(self._html_section(code_slice, tree, titled=len(slices) > 1))
        out.append("    </div>\n</body>\n</html>\n")
        return "".join(out)

    def _html_section(self, code_slice: CodeSlice, dependency_tree: Optional[str], titled: bool) -> str:
        out: List[str] = []
        if titled:
            out.append(f"        <h2>{html_escape(code_slice.target.describe())}</h2>\n")
        if self.config.show_statistics:
            out.append("        <div class=\"statistics\">\n            <h2>Statistics</h2>\n")
            out.append(self.format_statistics_html(code_slice) + "\n")
            out.append("        </div>\n")
        if self.config.show_file_paths and code_slice.involved_files:
            out.append("        <div class=\"files\">\n            <h2>Files Involved</h2>\n            <ul>\n")
            out.extend(
                f"                <li><code>{html_escape(path)}</code></li>\n" for path in code_slice.involved_files
            )
            out.append("            </ul>\n        </div>\n")

        out.append("        <div class=\"code-analysis\">\n            <h2>Code Analysis</h2>\n")
        out.append(
            "            <div class=\"header-comment\">\n"
            f"                <pre>{html_escape(code_slice.header_comment)}</pre>\n"
            "            </div>\n"
        )
        out.append("            <div class=\"code-block\">\n")
        out.append(self._html_code(code_slice))
        out.append("            </div>\n        </div>\n")

        if dependency_tree:
            out.append(
                "        <div class=\"dependencies\">\n            <h2>Dependency Graph</h2>\n"
                f"            <pre>{html_escape(dependency_tree)}</pre>\n        </div>\n"
            )
        return "".join(out)

    def _html_code(self, code_slice: CodeSlice) -> str:
        highlight = self.config.highlight_style != HighlightStyle.NONE
        out = ["<pre><code class=\"language-go\">\n"]
        for number, line in enumerate(code_slice.lines, start=1):
            if self.config.show_line_numbers:
                out.append(f"<span class=\"line-number\">{number:4}</span>")
            if highlight and number in code_slice.highlighted_lines:
                change = code_slice.line_change_types.get(number)
                css_class, prefix = _HTML_CLASS.get(change, ("highlighted-line", ">")) if change \
                    else ("highlighted-line", ">")
                out.append(
                    f"<span class=\"{css_class}\"><span class=\"change-prefix\">{prefix}</span>"
                    f"{html_escape(line)}</span>\n"
                )
            else:
                out.append(f"{html_escape(line)}\n")
        out.append("</code></pre>\n")
        return "".join(out)

    def format_statistics_html(self, code_slice: CodeSlice) -> str:
        cells = "".join(f"<tr><td>{name}</td><td>{value}</td></tr>\n" for name, value in _stat_rows(code_slice))
        return f"            <table class=\"stats-table\">\n{cells}</table>"


def _stat_rows(code_slice: CodeSlice) -> List[Tuple[str, int]]:
    stats = code_slice.get_stats()
    return [
        ("Total lines", stats.total_lines),
        ("Highlighted lines", stats.highlighted_lines),
        ("Files", stats.files),
        ("Imports", stats.imports),
        ("Types", stats.types),
        ("Functions", stats.functions),
        ("Constants", stats.constants),
        ("Variables", stats.variables),
    ]
