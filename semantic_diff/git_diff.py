"""Git integration: commit resolution and unified-diff parsing.

All git access goes through the ``git`` command line via :func:`_run_git`
so that error handling and logging are centralised.  The diff text git
produces is parsed into :class:`~semantic_diff.models.FileChange` records
whose hunks carry old and new line numbers for every line.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .errors import GitError, InvalidCommitHash
from .models import DiffHunk, DiffLine, DiffLineType, FileChange, FileChangeType

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))?"
    r" \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))?"
    r" @@"
)
_HEX_DIGITS = set("0123456789abcdefABCDEF")
MIN_HASH_LENGTH = 7
MAX_HASH_LENGTH = 40
RENAME_SIMILARITY = 0.2

# Diff options pinned so user configuration (noprefix, colour, external
# drivers) cannot change the text we parse.
_DIFF_OPTIONS = ["--no-color", "--no-ext-diff", "--src-prefix=a/", "--dst-prefix=b/", "-M"]


def validate_commit_hash(commit_hash: str) -> str:
    """Check format, length and character set of a commit hash."""
    value = commit_hash.strip()
    if not value:
        raise InvalidCommitHash("Commit hash cannot be empty")
    if any(ch not in _HEX_DIGITS for ch in value):
        raise InvalidCommitHash(f"'{value}' contains non-hexadecimal characters")
    if not MIN_HASH_LENGTH <= len(value) <= MAX_HASH_LENGTH:
        raise InvalidCommitHash(
            f"'{value}' must be between {MIN_HASH_LENGTH} and {MAX_HASH_LENGTH} characters long"
        )
    return value.lower()


def _run_git(
    args: List[str],
    cwd: Union[str, Path, None] = None,
) -> subprocess.CompletedProcess:
    """Run a git command and return the completed process."""
    cmd = ["git", *args]
    logger.debug("Running git command: %s", " ".join(cmd))
    try:
        completed = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise GitError(f"failed to execute git: {exc}", cause=exc) from exc

    if completed.returncode != 0:
        logger.debug("git stderr: %s", completed.stderr)
        detail = completed.stderr.strip().splitlines()
        raise GitError(
            f"git command failed: {' '.join(cmd)}" + (f" ({detail[-1]})" if detail else "")
        )
    return completed


# ===================================================================
# Repository access
# ===================================================================

class GitDiffParser:
    """Reads commits and their diffs from a local git repository."""

    def __init__(self, repo_path: Path) -> None:
        repo_path = Path(repo_path)
        if not repo_path.exists():
            raise GitError(f"repository path does not exist: {repo_path}")
        top = _run_git(["rev-parse", "--show-toplevel"], cwd=repo_path).stdout.strip()
        self.repo_root = Path(top).resolve()
        logger.debug("Opened git repository at %s", self.repo_root)

    def _git(self, args: List[str]) -> str:
        return _run_git(args, cwd=self.repo_root).stdout

    def resolve_commit(self, commit_hash: str) -> str:
        """Full object id of *commit_hash*, which must name a commit."""
        short = validate_commit_hash(commit_hash)
        try:
            return self._git(["rev-parse", "--verify", "--quiet", f"{short}^{{commit}}"]).strip()
        except GitError as exc:
            raise GitError(f"commit '{short}' not found in {self.repo_root}", cause=exc) from exc

    def parent_of(self, commit: str) -> Optional[str]:
        fields = self._git(["rev-list", "--parents", "-n", "1", commit]).split()
        return fields[1] if len(fields) > 1 else None

    def commit_diff(self, commit: str) -> str:
        """Unified diff of *commit* against its first parent (or the empty tree)."""
        parent = self.parent_of(commit)
        if parent is None:
            logger.debug("Commit %s is a root commit; diffing against the empty tree", commit)
            return self._git(["diff-tree", "-p", "-r", "--root", *_DIFF_OPTIONS, commit])
        return self._git(["diff", *_DIFF_OPTIONS, parent, commit])

    def parse_commit(self, commit_hash: str) -> List[FileChange]:
        """File changes introduced by *commit_hash*."""
        commit = self.resolve_commit(commit_hash)
        changes = parse_unified_diff(self.commit_diff(commit))
        detect_renames(changes)
        logger.info("Commit %s changes %d file(s)", commit[:12], len(changes))
        return changes

    def get_changed_files(self, commit_hash: str) -> List[str]:
        return [change.file_path for change in self.parse_commit(commit_hash)]

    def list_files(self, commit: str) -> List[str]:
        """Paths of every file in the tree of *commit*."""
        return [line for line in self._git(["ls-tree", "-r", "--name-only", commit]).splitlines() if line]

    def read_file_at(self, commit: str, path: str) -> str:
        """Contents of *path* as of *commit*."""
        return self._git(["show", f"{commit}:{path}"])


# ===================================================================
# Unified diff parsing
# ===================================================================

def parse_unified_diff(raw_diff: str) -> List[FileChange]:
    """Parse git's unified diff output into :class:`FileChange` records."""
    lines = raw_diff.splitlines()
    changes: List[FileChange] = []
    i = 0
    # Skip any preamble (e.g. the commit id printed by diff-tree).
    while i < len(lines) and not lines[i].startswith("diff --git "):
        i += 1

    while i < len(lines):
        if not lines[i].startswith("diff --git "):
            i += 1
            continue
        change, i = _parse_single_file_diff(lines, i)
        if change is not None:
            changes.append(change)
    return changes


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix):] if path.startswith(prefix) else path


def _parse_single_file_diff(lines: Sequence[str], start: int) -> Tuple[Optional[FileChange], int]:
    header = lines[start].split()
    i = start + 1
    if len(header) < 4:
        while i < len(lines) and not lines[i].startswith("diff --git "):
            i += 1
        return None, i

    old_path = _strip_prefix(header[-2], "a/")
    new_path = _strip_prefix(header[-1], "b/")
    change_type = FileChangeType.MODIFIED
    is_binary = False

    while i < len(lines) and not lines[i].startswith("diff --git "):
        line = lines[i]
        if line.startswith("new file mode "):
            change_type = FileChangeType.ADDED
        elif line.startswith("deleted file mode "):
            change_type = FileChangeType.DELETED
        elif line.startswith("rename from "):
            old_path = line[len("rename from "):].strip()
            change_type = FileChangeType.RENAMED
        elif line.startswith("rename to "):
            new_path = line[len("rename to "):].strip()
            change_type = FileChangeType.RENAMED
        elif line.startswith("copy from "):
            old_path = line[len("copy from "):].strip()
            change_type = FileChangeType.COPIED
        elif line.startswith("copy to "):
            new_path = line[len("copy to "):].strip()
            change_type = FileChangeType.COPIED
        elif line.startswith("Binary files ") or line.startswith("GIT binary patch"):
            is_binary = True
        elif line.startswith("--- ") or line.startswith("@@"):
            break
        i += 1

    hunks: List[DiffHunk] = []
    while i < len(lines) and not lines[i].startswith("diff --git "):
        match = _HUNK_HEADER_RE.match(lines[i])
        if match is None:
            i += 1
            continue
        hunk, i = _parse_hunk(lines, i, match)
        hunks.append(hunk)

    file_path = old_path if change_type == FileChangeType.DELETED else new_path
    change = FileChange(
        file_path=file_path,
        change_type=change_type,
        hunks=[] if is_binary else hunks,
        is_binary=is_binary,
        old_path=old_path if change_type in (FileChangeType.RENAMED, FileChangeType.COPIED) else None,
    )
    return change, i


def _parse_hunk(lines: Sequence[str], start: int, match: "re.Match[str]") -> Tuple[DiffHunk, int]:
    old_start = int(match.group("old_start"))
    old_count = int(match.group("old_count") or 1)
    new_start = int(match.group("new_start"))
    new_count = int(match.group("new_count") or 1)
    hunk = DiffHunk(old_start=old_start, old_lines=old_count, new_start=new_start, new_lines=new_count)

    old_no, new_no = old_start, new_start
    old_left, new_left = old_count, new_count
    i = start + 1
    while i < len(lines) and (old_left > 0 or new_left > 0):
        line = lines[i]
        if line.startswith("\\"):
            # "\ No newline at end of file"
            i += 1
            continue
        marker, content = (line[:1], line[1:]) if line else (" ", "")
        if marker == "+":
            hunk.lines.append(DiffLine(content, DiffLineType.ADDED, None, new_no))
            new_no += 1
            new_left -= 1
        elif marker == "-":
            hunk.lines.append(DiffLine(content, DiffLineType.REMOVED, old_no, None))
            old_no += 1
            old_left -= 1
        elif marker == " ":
            hunk.lines.append(DiffLine(content, DiffLineType.CONTEXT, old_no, new_no))
            old_no += 1
            new_no += 1
            old_left -= 1
            new_left -= 1
        else:
            break
        i += 1
    while i < len(lines) and lines[i].startswith("\\"):
        i += 1
    return hunk, i


# ===================================================================
# Rename detection
# ===================================================================

def _files_similar(added: FileChange, deleted: FileChange) -> bool:
    if added.is_binary != deleted.is_binary:
        return False
    added_lines = sum(h.new_lines for h in added.hunks)
    deleted_lines = sum(h.old_lines for h in deleted.hunks)
    if added_lines == 0 and deleted_lines == 0:
        return True
    larger = max(added_lines, deleted_lines)
    return abs(added_lines - deleted_lines) / larger < RENAME_SIMILARITY


def detect_renames(changes: List[FileChange]) -> List[FileChange]:
    """Pair added and deleted files of similar size into renames, in place."""
    added = [c for c in changes if c.change_type == FileChangeType.ADDED]
    deleted = [c for c in changes if c.change_type == FileChangeType.DELETED]
    consumed: Dict[int, FileChange] = {}
    for add in added:
        for gone in deleted:
            if id(gone) in consumed:
                continue
            if _files_similar(add, gone):
                consumed[id(gone)] = gone
                add.change_type = FileChangeType.RENAMED
                add.old_path = gone.file_path
                logger.debug("Detected rename %s -> %s", gone.file_path, add.file_path)
                break
    if consumed:
        changes[:] = [c for c in changes if id(c) not in consumed]
    return changes
