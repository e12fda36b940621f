"""Tests for commit validation and unified diff parsing."""

import pytest

from semantic_diff.errors import GitError, InvalidCommitHash
from semantic_diff.git_diff import GitDiffParser, detect_renames, parse_unified_diff, validate_commit_hash
from semantic_diff.models import DiffHunk, DiffLineType, FileChange, FileChangeType

MODIFIED_DIFF = """diff --git a/main.go b/main.go
index 1111111..2222222 100644
--- a/main.go
+++ b/main.go
@@ -3,4 +3,5 @@ import "fmt"
 func main() {
-\tfmt.Println("hi")
+\tname := "world"
+\tfmt.Println("hello", name)
 }

"""

MULTI_FILE_DIFF = """commit 0123456789abcdef0123456789abcdef01234567
diff --git a/new.go b/new.go
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/new.go
@@ -0,0 +1,3 @@
+package main
+
+func New() {}
diff --git a/old.go b/old.go
deleted file mode 100644
index 4444444..0000000
--- a/old.go
+++ /dev/null
@@ -1,2 +0,0 @@
-package main
-func Old() {}
diff --git a/logo.png b/logo.png
index 5555555..6666666 100644
Binary files a/logo.png and b/logo.png differ
diff --git a/a.go b/pkg/a.go
similarity 100%
rename from a.go
rename to pkg/a.go
"""


class TestValidateCommitHash:
    """Tests for commit hash validation."""

    @pytest.mark.parametrize("value", ["abc1234", "ABCDEF0", "0123456789abcdef0123456789abcdef01234567"])
    def test_valid_hashes(self, value):
        """Test hashes of 7-40 hex characters are accepted."""
        assert validate_commit_hash(value) == value.lower()

    def test_surrounding_whitespace_is_trimmed(self):
        """Test whitespace around a hash is ignored."""
        assert validate_commit_hash("  abc1234\n") == "abc1234"

    @pytest.mark.parametrize("value", ["", "   ", "abc123", "g123456", "abc-1234", "a" * 41])
    def test_invalid_hashes(self, value):
        """Test malformed hashes are rejected."""
        with pytest.raises(InvalidCommitHash) as exc_info:
            validate_commit_hash(value)
        assert str(exc_info.value).startswith("Invalid commit hash:")


class TestParseUnifiedDiff:
    """Tests for unified diff parsing."""

    def test_modified_file_hunk(self):
        """Test line numbers are tracked for every hunk line."""
        changes = parse_unified_diff(MODIFIED_DIFF)
        assert len(changes) == 1
        change = changes[0]
        assert change.file_path == "main.go"
        assert change.change_type == FileChangeType.MODIFIED

        hunk = change.hunks[0]
        assert (hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) == (3, 4, 3, 5)
        types = [line.line_type for line in hunk.lines]
        assert types == [
            DiffLineType.CONTEXT,
            DiffLineType.REMOVED,
            DiffLineType.ADDED,
            DiffLineType.ADDED,
            DiffLineType.CONTEXT,
            DiffLineType.CONTEXT,
        ]
        removed = hunk.lines[1]
        assert removed.content == '\tfmt.Println("hi")'
        assert (removed.old_line_number, removed.new_line_number) == (4, None)
        added = hunk.lines[3]
        assert (added.old_line_number, added.new_line_number) == (None, 5)
        assert hunk.touched_new_lines() == [3, 4, 5, 6, 7]

    def test_multiple_files(self):
        """Test added, deleted, binary and renamed files are classified."""
        changes = parse_unified_diff(MULTI_FILE_DIFF)
        by_path = {c.file_path: c for c in changes}
        assert by_path["new.go"].change_type == FileChangeType.ADDED
        assert by_path["new.go"].hunks[0].is_pure_addition
        assert by_path["old.go"].change_type == FileChangeType.DELETED
        assert by_path["old.go"].hunks[0].is_pure_deletion
        assert by_path["logo.png"].is_binary
        assert by_path["logo.png"].hunks == []
        assert by_path["pkg/a.go"].change_type == FileChangeType.RENAMED
        assert by_path["pkg/a.go"].old_path == "a.go"

    def test_hunk_header_without_counts(self):
        """Test omitted hunk counts default to one line."""
        diff = (
            "diff --git a/x.go b/x.go\n"
            "--- a/x.go\n"
            "+++ b/x.go\n"
            "@@ -2 +2 @@\n"
            "-var x = 1\n"
            "+var x = 2\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert (hunk.old_lines, hunk.new_lines) == (1, 1)
        assert [line.content for line in hunk.lines] == ["var x = 1", "var x = 2"]

    def test_no_newline_marker_is_skipped(self):
        """Test the no-newline marker does not become a diff line."""
        diff = (
            "diff --git a/x.go b/x.go\n"
            "--- a/x.go\n"
            "+++ b/x.go\n"
            "@@ -1 +1 @@\n"
            "-package a\n"
            "\\ No newline at end of file\n"
            "+package b\n"
            "\\ No newline at end of file\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert len(hunk.lines) == 2

    def test_empty_diff(self):
        """Test empty input yields no changes."""
        assert parse_unified_diff("") == []


class TestDetectRenames:
    """Tests for add/delete rename pairing."""

    def _change(self, path, change_type, lines):
        if change_type == FileChangeType.ADDED:
            hunk = DiffHunk(old_start=0, old_lines=0, new_start=1, new_lines=lines)
        else:
            hunk = DiffHunk(old_start=1, old_lines=lines, new_start=0, new_lines=0)
        return FileChange(file_path=path, change_type=change_type, hunks=[hunk])

    def test_similar_sizes_pair_up(self):
        """Test an add and a delete of similar size become a rename."""
        changes = [
            self._change("b.go", FileChangeType.ADDED, 100),
            self._change("a.go", FileChangeType.DELETED, 90),
        ]
        detect_renames(changes)
        assert len(changes) == 1
        assert changes[0].change_type == FileChangeType.RENAMED
        assert changes[0].old_path == "a.go"

    def test_different_sizes_stay_apart(self):
        """Test files of very different size are not paired."""
        changes = [
            self._change("b.go", FileChangeType.ADDED, 100),
            self._change("a.go", FileChangeType.DELETED, 10),
        ]
        detect_renames(changes)
        assert [c.change_type for c in changes] == [FileChangeType.ADDED, FileChangeType.DELETED]


class TestGitDiffParser:
    """Tests against a real git repository."""

    def test_parse_commit(self, git_repo):
        """Test the diff of a commit against its parent."""
        git_repo.write("main.go", "package main\n\nfunc Greet() string { return \"hi\" }\n")
        git_repo.commit("initial")
        git_repo.write("main.go", "package main\n\nfunc Greet() string { return \"hello\" }\n")
        sha = git_repo.commit("change greeting")

        parser = GitDiffParser(git_repo.root)
        changes = parser.parse_commit(sha[:7])
        assert [c.file_path for c in changes] == ["main.go"]
        hunk = changes[0].hunks[0]
        removed = [line.content for line in hunk.lines if line.line_type == DiffLineType.REMOVED]
        added = [line.content for line in hunk.lines if line.line_type == DiffLineType.ADDED]
        assert removed == ['func Greet() string { return "hi" }']
        assert added == ['func Greet() string { return "hello" }']

    def test_root_commit(self, git_repo):
        """Test the first commit diffs against the empty tree."""
        git_repo.write("main.go", "package main\n")
        git_repo.write("README.md", "readme\n")
        sha = git_repo.commit("initial")

        parser = GitDiffParser(git_repo.root)
        assert sorted(parser.get_changed_files(sha)) == ["README.md", "main.go"]
        changes = parser.parse_commit(sha)
        assert all(c.change_type == FileChangeType.ADDED for c in changes)

    def test_files_at_commit(self, git_repo):
        """Test listing and reading files as of a commit."""
        git_repo.write("pkg/a.go", "package pkg\n")
        first = git_repo.commit("initial")
        git_repo.write("pkg/a.go", "package pkg\n\nvar A = 1\n")
        git_repo.commit("second")

        parser = GitDiffParser(git_repo.root)
        assert parser.list_files(first) == ["pkg/a.go"]
        assert parser.read_file_at(first, "pkg/a.go") == "package pkg\n"

    def test_resolve_commit(self, git_repo):
        """Test short hashes resolve to full object ids."""
        git_repo.write("a.go", "package a\n")
        sha = git_repo.commit("initial")
        assert GitDiffParser(git_repo.root).resolve_commit(sha[:8]) == sha

    def test_unknown_commit(self, git_repo):
        """Test a well-formed but unknown hash is a git error."""
        git_repo.write("a.go", "package a\n")
        git_repo.commit("initial")
        with pytest.raises(GitError) as exc_info:
            GitDiffParser(git_repo.root).resolve_commit("deadbeef")
        assert str(exc_info.value).startswith("Git repository error:")

    def test_invalid_hash_is_rejected_before_git(self, git_repo):
        """Test malformed hashes never reach git."""
        git_repo.write("a.go", "package a\n")
        git_repo.commit("initial")
        with pytest.raises(InvalidCommitHash):
            GitDiffParser(git_repo.root).resolve_commit("not-a-hash")

    def test_not_a_repository(self, temp_dir):
        """Test opening a directory outside any repository fails."""
        plain = temp_dir / "plain"
        plain.mkdir()
        with pytest.raises(GitError):
            GitDiffParser(plain)
