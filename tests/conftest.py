"""Pytest configuration and fixtures for semantic-diff tests."""

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List

import pytest

from semantic_diff.extractor import analyze_source
from semantic_diff.models import SourceFile
from semantic_diff.parser import GoParser


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp()).resolve()
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(scope="session")
def go_parser() -> GoParser:
    """One tree-sitter Go parser shared by the whole session."""
    return GoParser()


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample Go project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def sample_files(sample_project_path: Path, go_parser: GoParser) -> List[SourceFile]:
    """Every Go file of the sample project, parsed."""
    root = sample_project_path.resolve()
    return [
        analyze_source(path, path.read_text(encoding="utf-8"), go_parser)
        for path in sorted(root.rglob("*.go"))
    ]


@pytest.fixture
def make_go_project(temp_dir: Path, go_parser: GoParser) -> Callable[[Dict[str, str]], List[SourceFile]]:
    """Write files under temp_dir and return the parsed Go sources among them."""

    def _make(files: Dict[str, str]) -> List[SourceFile]:
        parsed = []
        for rel, text in files.items():
            path = temp_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            if rel.endswith(".go"):
                parsed.append(analyze_source(path, text, go_parser))
        return parsed

    return _make


class GitRepo:
    """Minimal driver for a throwaway git repository."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.git("init", "-q")

    def git(self, *args: str) -> str:
        cmd = [
            "git",
            "-c", "user.name=Semantic Diff Tests",
            "-c", "user.email=tests@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "init.defaultBranch=main",
            *args,
        ]
        completed = subprocess.run(cmd, cwd=self.root, check=True, capture_output=True, text=True)
        return completed.stdout

    def write(self, rel: str, text: str) -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def remove(self, rel: str) -> None:
        self.git("rm", "-q", rel)

    def commit(self, message: str) -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture
def git_repo(temp_dir: Path) -> GitRepo:
    """An empty git repository under temp_dir."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo_dir = temp_dir / "repo"
    repo_dir.mkdir()
    return GitRepo(repo_dir)
