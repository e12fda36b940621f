"""Typer-based CLI for semantic-diff."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .config import DEFAULT_DEPTH, AnalysisConfig, load_project_config, parse_choice
from .errors import SemanticDiffError, SemanticDiffIOError
from .logging_setup import configure_logging
from .models import HighlightStyle, OutputFormat
from .pipeline import SemanticDiffPipeline

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Semantic code slices for the Go changes in a git commit.",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"semantic-diff v{__version__}")
        raise typer.Exit()


def _report_error(exc: SemanticDiffError) -> None:
    typer.echo(f"Error: {exc}", err=True)
    cause = exc.root_cause()
    if cause is not None:
        typer.echo(f"Caused by: {cause}", err=True)


def _prepare_output(output: Path) -> None:
    parent = output.parent
    if parent.exists():
        return
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise SemanticDiffIOError(f"cannot create output directory {parent}", cause=exc) from exc


@app.command()
def analyze(
    commit_hash: str = typer.Argument(..., help="Commit to analyse (7-40 hex characters)."),
    output_format: str = typer.Option("text", "--format", "-f", help="Output format: text, markdown, html."),
    highlight: str = typer.Option("inline", "--highlight", help="Change highlighting: none, inline, separate."),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the git repository."),
    include_comments: bool = typer.Option(
        True, "--include-comments/--no-comments", help="Emit the header and block title comments."
    ),
    max_depth: int = typer.Option(DEFAULT_DEPTH, "--max-depth", help="Dependency traversal depth (1-10)."),
    exclude_tests: bool = typer.Option(False, "--exclude-tests", help="Ignore _test.go files."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the report to a file."),
    functions_only: bool = typer.Option(False, "--functions-only", help="Only report changed functions and methods."),
    max_lines: int = typer.Option(0, "--max-lines", help="Truncate each slice to N lines (0 = unlimited)."),
    show_dependencies: bool = typer.Option(False, "--show-dependencies", help="Append the dependency tree."),
    version: Optional[bool] = typer.Option(
        None, "--version", help="Show version and exit.", callback=version_callback, is_eager=True
    ),
):
    """Turn the Go changes of COMMIT_HASH into semantic code slices."""
    configure_logging(verbose)
    try:
        config = AnalysisConfig(
            commit_hash=commit_hash,
            repo_path=repo,
            output_format=parse_choice(OutputFormat, output_format, "format"),
            highlight_style=parse_choice(HighlightStyle, highlight, "highlight style"),
            include_comments=include_comments,
            max_depth=max_depth,
            exclude_tests=exclude_tests,
            verbose=verbose,
            output_file=output,
            functions_only=functions_only,
            max_lines=max_lines,
            show_dependencies=show_dependencies,
        )
        config.apply_overrides(load_project_config(repo))
        # Colour escapes only make sense on an interactive terminal.
        config.enable_colors = config.enable_colors and output is None and sys.stdout.isatty()
        config.validate()
        if output is not None:
            _prepare_output(output)

        result = SemanticDiffPipeline(config).run()
        if result.output is None:
            typer.echo("No semantic changes found.")
            return
        if output is not None:
            result.output.save_to_file(output)
            typer.echo(f"Wrote {len(result.slices)} slice(s) to {output}", err=True)
        else:
            typer.echo(result.output.content, nl=not result.output.content.endswith("\n"))
    except SemanticDiffError as exc:
        logger.debug("Analysis failed", exc_info=True)
        _report_error(exc)
        raise typer.Exit(code=1)
