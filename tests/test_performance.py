"""Tests for concurrent file processing and recovery."""

import pytest

from semantic_diff.errors import GitError, ParseError, SemanticDiffIOError, TreeSitterError, UnsupportedFileType
from semantic_diff.models import SupportedLanguage
from semantic_diff.performance import (
    CancellationToken,
    ConcurrentFileProcessor,
    ErrorRecoveryStrategy,
    MemoryMonitor,
    ParserCache,
    PerformanceMonitor,
    read_file,
)


def _write_sources(root, count):
    paths = []
    for n in range(count):
        path = root / f"f{n}.go"
        path.write_text(f"package main\n\nfunc F{n}() int {{\n\treturn {n}\n}}\n")
        paths.append(path)
    return paths


class TestConcurrentFileProcessor:
    """Tests for ConcurrentFileProcessor."""

    def test_results_keep_input_order(self, temp_dir):
        """Test every file is parsed and returned in input order."""
        paths = _write_sources(temp_dir, 12)
        processor = ConcurrentFileProcessor(max_workers=4, batch_size=5)
        result = processor.process_files(paths)
        assert [f.path for f in result.successful] == paths
        assert [f.declarations[0].name for f in result.successful] == [f"F{n}" for n in range(12)]
        assert result.failed == []
        assert result.performance_stats.files_processed == 12

    def test_parser_is_reused(self, temp_dir):
        """Test one parser serves every file."""
        processor = ConcurrentFileProcessor(max_workers=2)
        processor.process_files(_write_sources(temp_dir, 3))
        stats = processor.cache.stats()
        assert stats.creates == 1
        assert stats.hits == 2

    def test_io_errors_are_retried_then_collected(self, temp_dir):
        """Test a failing read is retried and then reported."""
        calls = []

        def failing_reader(path):
            calls.append(path)
            raise SemanticDiffIOError(f"cannot read {path}", cause=OSError("disk"))

        processor = ConcurrentFileProcessor(
            max_workers=1,
            recovery=ErrorRecoveryStrategy(max_retries=2, retry_delay=0),
            reader=failing_reader,
        )
        result = processor.process_files([temp_dir / "a.go"])
        assert len(calls) == 3
        assert result.successful == []
        (path, error), = result.failed
        assert path == temp_dir / "a.go"
        assert isinstance(error, SemanticDiffIOError)
        assert result.performance_stats.errors == 1

    def test_parse_errors_are_skipped(self, temp_dir):
        """Test corrupted files are skipped when recovery allows it."""
        def reader(path):
            raise ParseError(f"bad {path.name}")

        processor = ConcurrentFileProcessor(max_workers=1, reader=reader)
        result = processor.process_files([temp_dir / "bad.go"])
        assert [type(error) for _, error in result.failed] == [ParseError]

    def test_parse_errors_propagate_without_skipping(self, temp_dir):
        """Test corrupted files fail the run when skipping is disabled."""
        def reader(path):
            raise ParseError(f"bad {path.name}")

        processor = ConcurrentFileProcessor(
            max_workers=1, reader=reader, recovery=ErrorRecoveryStrategy(skip_corrupted_files=False)
        )
        with pytest.raises(ParseError):
            processor.process_files([temp_dir / "bad.go"])

    def test_unsupported_file_propagates(self, temp_dir):
        """Test a non-Go path is an unrecoverable error."""
        path = temp_dir / "notes.txt"
        path.write_text("hello\n")
        with pytest.raises(UnsupportedFileType):
            ConcurrentFileProcessor(max_workers=1).process_files([path])

    def test_cancelled_before_start(self, temp_dir):
        """Test a cancelled token yields no results."""
        token = CancellationToken()
        token.cancel()
        result = ConcurrentFileProcessor().process_files(_write_sources(temp_dir, 3), token)
        assert result.successful == []
        assert result.failed == []

    def test_memory_trim_clears_cache(self, temp_dir):
        """Test the parser cache is dropped when memory runs high."""
        processor = ConcurrentFileProcessor(max_workers=1, memory_monitor=MemoryMonitor(threshold_bytes=0))
        result = processor.process_files(_write_sources(temp_dir, 2))
        assert len(result.successful) == 2
        if MemoryMonitor.current_usage() is not None:
            assert processor.cache.size() == 0


class TestErrorRecoveryStrategy:
    """Tests for recovery decisions."""

    def test_recoverable_errors(self):
        """Test which errors are recoverable."""
        strategy = ErrorRecoveryStrategy()
        assert strategy.is_recoverable(SemanticDiffIOError("x"))
        assert strategy.is_recoverable(TreeSitterError("x"))
        assert not strategy.is_recoverable(GitError("x"))
        assert not ErrorRecoveryStrategy(skip_corrupted_files=False).is_recoverable(ParseError("x"))

    def test_only_io_errors_are_retried(self):
        """Test retries apply to I/O errors up to the limit."""
        strategy = ErrorRecoveryStrategy(max_retries=1)
        assert strategy.should_retry(SemanticDiffIOError("x"), 0)
        assert not strategy.should_retry(SemanticDiffIOError("x"), 1)
        assert not strategy.should_retry(ParseError("x"), 0)


class TestHelpers:
    """Tests for the cache, monitor and reader helpers."""

    def test_parser_cache(self):
        """Test the cache creates one parser per language."""
        cache = ParserCache()
        first, first_lock = cache.get(SupportedLanguage.GO)
        second, second_lock = cache.get(SupportedLanguage.GO)
        assert first is second
        assert first_lock is second_lock
        assert cache.size() == 1
        assert cache.stats().hit_rate == 0.5
        cache.clear()
        assert cache.size() == 0

    def test_performance_monitor(self):
        """Test file timings and errors are accumulated."""
        monitor = PerformanceMonitor()
        monitor.record_file(0.5)
        monitor.record_file(1.5)
        monitor.record_error()
        stats = monitor.snapshot()
        assert (stats.files_processed, stats.errors) == (2, 1)
        assert stats.average_time == 1.0

    def test_read_file_missing(self, temp_dir):
        """Test missing files raise I/O errors naming the OS error."""
        with pytest.raises(SemanticDiffIOError) as exc_info:
            read_file(temp_dir / "absent.go")
        assert exc_info.value.kind == "FileNotFoundError"
