"""Core data models shared by parsing, diffing, context building and rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class SupportedLanguage(str, Enum):
    GO = "go"


class DeclarationKind(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    TYPE = "type"
    CONSTANT = "constant"
    VARIABLE = "variable"


class GoTypeKind(str, Enum):
    STRUCT = "struct"
    INTERFACE = "interface"
    ALIAS = "alias"
    ENUM = "enum"
    CONSTANT_GROUP = "constant_group"


class ReferenceKind(str, Enum):
    TYPE = "type"
    CALL = "call"
    METHOD_CALL = "method_call"
    VALUE = "value"


class DiffLineType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    CONTEXT = "context"


class FileChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"


class OutputFormat(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    HTML = "html"


class HighlightStyle(str, Enum):
    NONE = "none"
    INLINE = "inline"
    SEPARATE = "separate"


class BlockTitleStyle(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    DETAILED = "detailed"


# ---------------------------------------------------------------------------
# Diff records
# ---------------------------------------------------------------------------

@dataclass
class DiffLine:
    content: str
    line_type: DiffLineType
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


@dataclass
class DiffHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: List[DiffLine] = field(default_factory=list)

    @property
    def is_pure_addition(self) -> bool:
        return self.old_lines == 0

    @property
    def is_pure_deletion(self) -> bool:
        return self.new_lines == 0

    def touched_new_lines(self) -> List[int]:
        """New-file line numbers covered by context and added lines."""
        return [
            line.new_line_number
            for line in self.lines
            if line.line_type != DiffLineType.REMOVED and line.new_line_number is not None
        ]


@dataclass
class FileChange:
    file_path: str
    change_type: FileChangeType
    hunks: List[DiffHunk] = field(default_factory=list)
    is_binary: bool = False
    old_path: Optional[str] = None


# ---------------------------------------------------------------------------
# Go declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GoType:
    name: str
    is_pointer: bool = False
    is_slice: bool = False

    def __str__(self) -> str:
        prefix = ("[]" if self.is_slice else "") + ("*" if self.is_pointer else "")
        return f"{prefix}{self.name}"


@dataclass(frozen=True)
class GoParameter:
    name: str
    param_type: GoType


@dataclass(frozen=True)
class GoReceiver:
    name: str
    type_name: str
    is_pointer: bool = False


@dataclass(frozen=True)
class Reference:
    """A name used inside a declaration, as written in the source."""

    kind: ReferenceKind
    name: str
    qualifier: Optional[str] = None
    receiver_type: Optional[str] = None

    def __str__(self) -> str:
        if self.qualifier:
            return f"{self.qualifier}.{self.name}"
        if self.receiver_type:
            return f"({self.receiver_type}).{self.name}"
        return self.name


@dataclass
class GoFunctionInfo:
    name: str
    receiver: Optional[GoReceiver]
    parameters: List[GoParameter]
    return_types: List[GoType]
    body: str
    start_line: int
    end_line: int
    file_path: Path
    doc_comment: str = ""
    references: List[Reference] = field(default_factory=list)

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.METHOD if self.receiver else DeclarationKind.FUNCTION

    @property
    def qualified_name(self) -> str:
        if self.receiver:
            return f"{self.receiver.type_name}.{self.name}"
        return self.name

    @property
    def display_name(self) -> str:
        if self.receiver:
            star = "*" if self.receiver.is_pointer else ""
            return f"({star}{self.receiver.type_name}).{self.name}"
        return self.name

    @property
    def text(self) -> str:
        return self.body


@dataclass
class GoTypeDefinition:
    name: str
    kind: GoTypeKind
    definition: str
    file_path: Path
    dependencies: List[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0
    doc_comment: str = ""
    references: List[Reference] = field(default_factory=list)

    @property
    def declaration_kind(self) -> DeclarationKind:
        return DeclarationKind.TYPE

    @property
    def qualified_name(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def text(self) -> str:
        return self.definition


@dataclass
class GoConstantDefinition:
    name: str
    value: str
    const_type: Optional[GoType]
    start_line: int
    end_line: int
    file_path: Path
    definition: str = ""
    doc_comment: str = ""
    references: List[Reference] = field(default_factory=list)

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.CONSTANT

    @property
    def qualified_name(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def text(self) -> str:
        return self.definition


@dataclass
class GoVariableDefinition:
    name: str
    var_type: Optional[GoType]
    initial_value: Optional[str]
    start_line: int
    end_line: int
    file_path: Path
    definition: str = ""
    doc_comment: str = ""
    references: List[Reference] = field(default_factory=list)

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.VARIABLE

    @property
    def qualified_name(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def text(self) -> str:
        return self.definition


GoDeclaration = Union[GoFunctionInfo, GoTypeDefinition, GoConstantDefinition, GoVariableDefinition]


def declaration_kind(decl: GoDeclaration) -> DeclarationKind:
    """Return the kind tag of any declaration variant."""
    if isinstance(decl, GoTypeDefinition):
        return DeclarationKind.TYPE
    return decl.kind


def declaration_identity(decl: GoDeclaration) -> Tuple[str, str, str, int, int]:
    """Identity of a declaration: kind, qualified name, file and span."""
    return (
        declaration_kind(decl).value,
        decl.qualified_name,
        str(decl.file_path),
        decl.start_line,
        decl.end_line,
    )


@dataclass(frozen=True)
class Import:
    path: str
    alias: Optional[str] = None

    @property
    def package_name(self) -> str:
        """Name the importing file uses to refer to this package."""
        if self.alias and self.alias not in (".", "_"):
            return self.alias
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    def to_go(self) -> str:
        if self.alias:
            return f'{self.alias} "{self.path}"'
        return f'"{self.path}"'


@dataclass
class GoFileInfo:
    package_name: str = "main"
    imports: List[Import] = field(default_factory=list)
    declarations: List[GoDeclaration] = field(default_factory=list)
    import_ranges: List[Tuple[int, int]] = field(default_factory=list)

    def functions(self) -> List[GoFunctionInfo]:
        return [d for d in self.declarations if isinstance(d, GoFunctionInfo)]

    def types(self) -> List[GoTypeDefinition]:
        return [d for d in self.declarations if isinstance(d, GoTypeDefinition)]

    def constants(self) -> List[GoConstantDefinition]:
        return [d for d in self.declarations if isinstance(d, GoConstantDefinition)]

    def variables(self) -> List[GoVariableDefinition]:
        return [d for d in self.declarations if isinstance(d, GoVariableDefinition)]

    def import_for(self, package_name: str) -> Optional[Import]:
        for imp in self.imports:
            if imp.package_name == package_name:
                return imp
        return None


@dataclass
class SourceFile:
    path: Path
    source_code: str
    syntax_tree: Any
    language: SupportedLanguage
    language_specific: GoFileInfo

    @property
    def package_name(self) -> str:
        return self.language_specific.package_name

    @property
    def declarations(self) -> List[GoDeclaration]:
        return self.language_specific.declarations

    @property
    def imports(self) -> List[Import]:
        return self.language_specific.imports


# ---------------------------------------------------------------------------
# Change targets
# ---------------------------------------------------------------------------

@dataclass
class ChangeTarget:
    """The declaration, in the post-change file, enclosing changed lines."""

    declaration: GoDeclaration

    @property
    def kind(self) -> DeclarationKind:
        return declaration_kind(self.declaration)

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def file_path(self) -> Path:
        return self.declaration.file_path

    @property
    def start_line(self) -> int:
        return self.declaration.start_line

    @property
    def end_line(self) -> int:
        return self.declaration.end_line

    @property
    def identity(self) -> Tuple[str, str, str, int, int]:
        return declaration_identity(self.declaration)

    def is_function(self) -> bool:
        return self.kind in (DeclarationKind.FUNCTION, DeclarationKind.METHOD)

    def describe(self) -> str:
        return f"{self.kind.value} {self.declaration.display_name}"
