"""Error types raised across the semantic-diff pipeline.

Every failure the tool reports derives from :class:`SemanticDiffError`.
Each subclass carries a fixed prefix so that ``str(error)`` reads the same
way no matter where the error was raised; the CLI prints that string after
``Error:`` and the optional wrapped cause after ``Caused by:``.
"""

from __future__ import annotations

from typing import Optional


class SemanticDiffError(Exception):
    """Base class for all semantic-diff errors."""

    prefix = "semantic-diff error"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"

    def root_cause(self) -> Optional[BaseException]:
        """Return the wrapped cause, falling back to the chained exception."""
        return self.cause if self.cause is not None else self.__cause__


class GitError(SemanticDiffError):
    prefix = "Git repository error"


class InvalidCommitHash(SemanticDiffError):
    prefix = "Invalid commit hash"


class ParseError(SemanticDiffError):
    prefix = "Go source parsing error"


class TreeSitterError(SemanticDiffError):
    prefix = "Tree-sitter parsing failed"


class UnsupportedFileType(SemanticDiffError):
    prefix = "Unsupported file type"


class DependencyError(SemanticDiffError):
    prefix = "Dependency resolution failed"


class SemanticDiffIOError(SemanticDiffError):
    """File or stream failure; ``kind`` names the underlying OS error class."""

    prefix = "File I/O error"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
        self.kind = type(cause).__name__ if cause is not None else "OSError"


class ConfigError(SemanticDiffError):
    prefix = "Configuration error"
