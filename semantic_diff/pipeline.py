"""End-to-end driver: commit -> changed declarations -> contexts -> rendered slices."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from .config import AnalysisConfig
from .context import SemanticContext, SemanticContextBuilder
from .errors import GitError, SemanticDiffError, SemanticDiffIOError
from .formatter import FormattedOutput, OutputRenderer
from .generator import CodeSlice, CodeSliceGenerator
from .git_diff import GitDiffParser
from .locator import ChangeLocator
from .models import ChangeTarget, DiffHunk, FileChange, FileChangeType, GoDeclaration, SourceFile
from .parser import LANGUAGE_MAP, SKIP_DIRS
from .performance import CancellationToken, ConcurrentFileProcessor
from .resolver import GO_MOD_FILE, DependencyResolver

logger = logging.getLogger(__name__)

TEST_FILE_SUFFIX = "_test.go"


def is_test_file(path: str) -> bool:
    return path.endswith(TEST_FILE_SUFFIX)


def is_source_path(path: str, exclude_tests: bool = False) -> bool:
    """True for parseable files outside vendored and generated directories."""
    pure = PurePosixPath(path)
    if pure.suffix.lower() not in LANGUAGE_MAP:
        return False
    if any(part in SKIP_DIRS for part in pure.parts[:-1]):
        return False
    return not (exclude_tests and is_test_file(path))


@dataclass
class AnalysisResult:
    commit: str
    targets: List[ChangeTarget] = field(default_factory=list)
    contexts: List[SemanticContext] = field(default_factory=list)
    slices: List[CodeSlice] = field(default_factory=list)
    output: Optional[FormattedOutput] = None
    failed_files: List[Tuple[Path, SemanticDiffError]] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.slices)


class SemanticDiffPipeline:
    """Runs one analysis described by an :class:`AnalysisConfig`."""

    def __init__(self, config: AnalysisConfig, cancellation: Optional[CancellationToken] = None) -> None:
        self.config = config
        self.cancellation = cancellation

    def run(self) -> AnalysisResult:
        config = self.config
        git = GitDiffParser(config.repo_path)
        commit = git.resolve_commit(config.commit_hash)
        result = AnalysisResult(commit=commit)

        changes = self.select_changes(git.parse_commit(commit))
        if not changes:
            logger.info("Commit %s has no Go source changes", commit[:12])
            return result

        root = git.repo_root
        listing = git.list_files(commit)
        paths = [root / rel for rel in listing if is_source_path(rel, config.exclude_tests)]
        processor = ConcurrentFileProcessor(reader=lambda path: self._read_at(git, commit, path))
        parsed = processor.process_files(paths, self.cancellation)
        files = parsed.successful
        result.failed_files = parsed.failed

        go_mod = git.read_file_at(commit, GO_MOD_FILE) if GO_MOD_FILE in listing else None
        resolver = DependencyResolver.from_go_mod(root, go_mod)

        targets, hunks_by_file, declarations_by_file = self.locate_targets(changes, root, files, resolver)
        result.targets = targets
        if not targets:
            logger.info("No declarations changed in commit %s", commit[:12])
            return result

        builder = SemanticContextBuilder(resolver, max_depth=config.max_depth, build_graph=config.show_dependencies)
        result.contexts = [builder.build(target, files) for target in targets]

        generator = CodeSliceGenerator(config.generator_config(), project_root=root)
        result.slices = generator.generate_many(result.contexts, hunks_by_file, declarations_by_file)

        trees = [
            ctx.dependency_graph.to_text_tree() if ctx.dependency_graph is not None else None
            for ctx in result.contexts
        ]
        result.output = OutputRenderer(config.formatter_config()).render_many(result.slices, trees)
        return result

    def select_changes(self, changes: Sequence[FileChange]) -> List[FileChange]:
        """Changed Go files that still exist after the commit."""
        selected = []
        for change in changes:
            if change.change_type == FileChangeType.DELETED or change.is_binary:
                logger.debug("Skipping %s (%s)", change.file_path, change.change_type.value)
                continue
            if not is_source_path(change.file_path, self.config.exclude_tests):
                continue
            selected.append(change)
        return selected

    def locate_targets(
        self,
        changes: Sequence[FileChange],
        root: Path,
        files: Sequence[SourceFile],
        resolver: DependencyResolver,
    ) -> Tuple[List[ChangeTarget], Dict[str, List[DiffHunk]], Dict[str, List[GoDeclaration]]]:
        locator = ChangeLocator()
        targets: List[ChangeTarget] = []
        hunks_by_file: Dict[str, List[DiffHunk]] = {}
        declarations_by_file: Dict[str, List[GoDeclaration]] = {}
        for change in changes:
            path = root / change.file_path
            source_file = resolver.file_for(path, files)
            if source_file is None:
                logger.warning("Changed file %s could not be parsed; skipping", change.file_path)
                continue
            hunks_by_file[str(path)] = change.hunks
            declarations_by_file[str(path)] = source_file.declarations
            found = locator.locate(source_file, change.hunks)
            if self.config.functions_only:
                found = [t for t in found if t.is_function()]
            targets.extend(found)
        logger.info("Found %d change target(s)", len(targets))
        return targets, hunks_by_file, declarations_by_file

    @staticmethod
    def _read_at(git: GitDiffParser, commit: str, path: Path) -> str:
        rel = Path(path).relative_to(git.repo_root).as_posix()
        try:
            return git.read_file_at(commit, rel)
        except GitError as exc:
            raise SemanticDiffIOError(f"cannot read {rel} at {commit[:12]}", cause=exc) from exc
