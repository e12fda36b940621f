"""Run configuration and the optional per-repository ``.semantic-diff.toml``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from .errors import ConfigError
from .formatter import FormatterConfig
from .generator import GeneratorConfig
from .git_diff import validate_commit_hash
from .models import BlockTitleStyle, HighlightStyle, OutputFormat

logger = logging.getLogger(__name__)

LOG_ENV = "SEMANTIC_DIFF_LOG"
LOG_VERBOSE_ENV = "SEMANTIC_DIFF_LOG_VERBOSE"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_VERBOSE_LOG_LEVEL = "DEBUG"

PROJECT_CONFIG_FILE = ".semantic-diff.toml"
MIN_DEPTH = 1
MAX_DEPTH = 10
DEFAULT_DEPTH = 3

RENDER_KEYS = (
    "show_line_numbers",
    "show_file_paths",
    "show_statistics",
    "enable_colors",
    "block_title_style",
    "custom_css",
    "max_line_width",
    "indent_size",
)


def parse_choice(enum_cls, value: str, option: str):
    """Convert *value* to a member of *enum_cls* or raise :class:`ConfigError`."""
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"invalid {option} '{value}' (expected one of: {choices})") from None


@dataclass
class AnalysisConfig:
    commit_hash: str
    repo_path: Path = Path(".")
    output_format: OutputFormat = OutputFormat.TEXT
    highlight_style: HighlightStyle = HighlightStyle.INLINE
    include_comments: bool = True
    max_depth: int = DEFAULT_DEPTH
    exclude_tests: bool = False
    verbose: bool = False
    output_file: Optional[Path] = None
    functions_only: bool = False
    max_lines: int = 0
    show_dependencies: bool = False
    show_line_numbers: bool = True
    show_file_paths: bool = True
    show_statistics: bool = True
    enable_colors: bool = True
    block_title_style: BlockTitleStyle = BlockTitleStyle.DETAILED
    custom_css: Optional[str] = None
    max_line_width: Optional[int] = 120
    indent_size: int = 4

    def validate(self) -> None:
        self.commit_hash = validate_commit_hash(self.commit_hash)
        if not MIN_DEPTH <= self.max_depth <= MAX_DEPTH:
            raise ConfigError(f"max depth must be between {MIN_DEPTH} and {MAX_DEPTH}, got {self.max_depth}")
        if self.max_lines < 0:
            raise ConfigError(f"max lines cannot be negative, got {self.max_lines}")
        if not Path(self.repo_path).exists():
            raise ConfigError(f"repository path does not exist: {self.repo_path}")
        if self.indent_size < 0:
            raise ConfigError(f"indent size cannot be negative, got {self.indent_size}")
        if self.max_line_width is not None and self.max_line_width <= 0:
            raise ConfigError(f"max line width must be positive, got {self.max_line_width}")

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key in known:
                setattr(self, key, value)

    def formatter_config(self) -> FormatterConfig:
        return FormatterConfig(
            output_format=self.output_format,
            highlight_style=self.highlight_style,
            show_line_numbers=self.show_line_numbers,
            show_file_paths=self.show_file_paths,
            show_statistics=self.show_statistics,
            enable_colors=self.enable_colors,
            block_title_style=self.block_title_style,
            custom_css=self.custom_css,
            max_line_width=self.max_line_width,
            indent_size=self.indent_size,
        )

    def generator_config(self) -> GeneratorConfig:
        return GeneratorConfig(
            include_comments=self.include_comments,
            max_lines=self.max_lines,
            block_title_style=self.block_title_style,
            show_removed_lines=self.highlight_style != HighlightStyle.NONE,
        )


def load_project_config(repo_path: Path) -> Dict[str, Any]:
    """Read the ``[render]`` table of ``<repo>/.semantic-diff.toml``.

    Returns:
        Render settings keyed by :class:`AnalysisConfig` field name; empty
        when the file does not exist.
    """
    config_file = Path(repo_path) / PROJECT_CONFIG_FILE
    if not config_file.exists():
        return {}

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f"cannot load {config_file}: {exc}", cause=exc) from exc

    render = data.get("render", {})
    if not isinstance(render, dict):
        raise ConfigError(f"[render] in {config_file} must be a table")

    settings: Dict[str, Any] = {}
    for key, value in render.items():
        if key not in RENDER_KEYS:
            logger.warning("Ignoring unknown key '%s' in %s", key, config_file)
            continue
        settings[key] = _coerce(key, value, config_file)
    logger.debug("Loaded render settings from %s: %s", config_file, sorted(settings))
    return settings


def _coerce(key: str, value: Any, config_file: Path) -> Any:
    if key == "block_title_style":
        return parse_choice(BlockTitleStyle, value, key)
    if key == "custom_css":
        if not isinstance(value, str):
            raise ConfigError(f"{key} in {config_file} must be a string")
        return value
    if key in ("max_line_width", "indent_size"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} in {config_file} must be an integer")
        return value
    if not isinstance(value, bool):
        raise ConfigError(f"{key} in {config_file} must be true or false")
    return value
