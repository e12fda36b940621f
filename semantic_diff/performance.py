"""Parallel file parsing with parser pooling, memory checks and error recovery."""

from __future__ import annotations

import gc
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ParseError, SemanticDiffError, SemanticDiffIOError, TreeSitterError, UnsupportedFileType
from .extractor import analyze_source
from .models import SourceFile, SupportedLanguage
from .parser import LanguageParser, ParserFactory

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MEMORY_THRESHOLD = 512 * 1024 * 1024

FileReader = Callable[[Path], str]


# ---------------------------------------------------------------------------
# Parser cache
# ---------------------------------------------------------------------------

@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    creates: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ParserCache:
    """One parser per language; use of a parser is serialised by its lock."""

    def __init__(self) -> None:
        self._parsers: Dict[SupportedLanguage, LanguageParser] = {}
        self._locks: Dict[SupportedLanguage, threading.Lock] = {}
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = CacheStats()

    def get(self, language: SupportedLanguage) -> Tuple[LanguageParser, threading.Lock]:
        with self._lock:
            parser = self._parsers.get(language)
            if parser is not None:
                self._record(hit=True)
                return parser, self._locks[language]
            self._record(hit=False)
            parser = ParserFactory.create_parser(language)
            self._parsers[language] = parser
            self._locks[language] = threading.Lock()
            with self._stats_lock:
                self._stats.creates += 1
            logger.debug("Created %s parser", language.value)
            return parser, self._locks[language]

    def _record(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._stats.hits += 1
            else:
                self._stats.misses += 1

    def stats(self) -> CacheStats:
        with self._stats_lock:
            return CacheStats(self._stats.hits, self._stats.misses, self._stats.creates)

    def clear(self) -> None:
        with self._lock:
            self._parsers.clear()
            self._locks.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._parsers)


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

class MemoryMonitor:
    """Resident-set check; a no-op where ``/proc/self/status`` is unavailable."""

    def __init__(self, threshold_bytes: int = DEFAULT_MEMORY_THRESHOLD) -> None:
        self.threshold_bytes = threshold_bytes

    @staticmethod
    def current_usage() -> Optional[int]:
        try:
            with open("/proc/self/status", encoding="utf-8") as fh:
                for line in fh:
                    if line.startswith("VmRSS:"):
                        return int(line.split()[1]) * 1024
        except (OSError, ValueError, IndexError):
            return None
        return None

    def should_trim(self) -> bool:
        usage = self.current_usage()
        return usage is not None and usage > self.threshold_bytes

    def trim(self, cache: ParserCache) -> None:
        logger.info("Memory above %d MiB; trimming parser cache", self.threshold_bytes // (1024 * 1024))
        cache.clear()
        gc.collect()


# ---------------------------------------------------------------------------
# Error recovery and cancellation
# ---------------------------------------------------------------------------

@dataclass
class ErrorRecoveryStrategy:
    max_retries: int = 3
    retry_delay: float = 0.1
    skip_corrupted_files: bool = True

    def is_recoverable(self, error: Exception) -> bool:
        if isinstance(error, SemanticDiffIOError):
            return True
        if isinstance(error, (ParseError, TreeSitterError)):
            return self.skip_corrupted_files
        return False

    def should_retry(self, error: Exception, attempt: int) -> bool:
        return isinstance(error, SemanticDiffIOError) and attempt < self.max_retries


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

@dataclass
class PerformanceStats:
    files_processed: int = 0
    errors: int = 0
    total_time: float = 0.0

    @property
    def average_time(self) -> float:
        return self.total_time / self.files_processed if self.files_processed else 0.0


class PerformanceMonitor:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats = PerformanceStats()

    def record_file(self, elapsed: float) -> None:
        with self._lock:
            self._stats.files_processed += 1
            self._stats.total_time += elapsed

    def record_error(self) -> None:
        with self._lock:
            self._stats.errors += 1

    def snapshot(self) -> PerformanceStats:
        with self._lock:
            return PerformanceStats(self._stats.files_processed, self._stats.errors, self._stats.total_time)


@dataclass
class ParseResult:
    successful: List[SourceFile] = field(default_factory=list)
    failed: List[Tuple[Path, SemanticDiffError]] = field(default_factory=list)
    performance_stats: PerformanceStats = field(default_factory=PerformanceStats)


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

def read_file(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise SemanticDiffIOError(f"cannot read {path}: {exc}", cause=exc) from exc


class ConcurrentFileProcessor:
    """Reads, parses and extracts many files on a thread pool.

    Results come back in input order.  Unrecoverable errors propagate;
    recoverable ones are collected in :attr:`ParseResult.failed`.
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        recovery: Optional[ErrorRecoveryStrategy] = None,
        reader: Optional[FileReader] = None,
        memory_monitor: Optional[MemoryMonitor] = None,
    ) -> None:
        self.max_workers = max_workers or os.cpu_count() or 1
        self.batch_size = max(batch_size, 1)
        self.recovery = recovery or ErrorRecoveryStrategy()
        self.reader = reader or read_file
        self.memory_monitor = memory_monitor or MemoryMonitor()
        self.cache = ParserCache()
        self.monitor = PerformanceMonitor()

    def process_files(
        self,
        paths: Sequence[Path],
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult:
        result = ParseResult()
        batches = [paths[i:i + self.batch_size] for i in range(0, len(paths), self.batch_size)]
        outcomes: List[Tuple[Path, Optional[SourceFile], Optional[SemanticDiffError]]] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for batch in batches:
                if cancellation is not None and cancellation.cancelled:
                    logger.info("File processing cancelled")
                    break
                outcomes.extend(executor.map(lambda p: self._process_one(p, cancellation), batch))
                if self.memory_monitor.should_trim():
                    self.memory_monitor.trim(self.cache)

        for path, source_file, error in outcomes:
            if source_file is not None:
                result.successful.append(source_file)
            elif error is not None:
                result.failed.append((path, error))

        result.performance_stats = self.monitor.snapshot()
        stats = self.cache.stats()
        logger.info(
            "Parsed %d file(s), %d failed (parser cache hit rate %.0f%%)",
            len(result.successful), len(result.failed), stats.hit_rate * 100,
        )
        return result

    def _process_one(
        self,
        path: Path,
        cancellation: Optional[CancellationToken],
    ) -> Tuple[Path, Optional[SourceFile], Optional[SemanticDiffError]]:
        if cancellation is not None and cancellation.cancelled:
            logger.debug("Cancelled before %s", path)
            return path, None, None

        attempt = 0
        while True:
            started = time.perf_counter()
            try:
                source_file = self._parse(path)
            except SemanticDiffError as exc:
                if self.recovery.should_retry(exc, attempt):
                    attempt += 1
                    logger.debug("Retrying %s after %s (attempt %d)", path, exc, attempt)
                    time.sleep(self.recovery.retry_delay)
                    continue
                self.monitor.record_error()
                if not self.recovery.is_recoverable(exc):
                    raise
                logger.warning("Skipping %s: %s", path, exc)
                return path, None, exc
            self.monitor.record_file(time.perf_counter() - started)
            return path, source_file, None

    def _parse(self, path: Path) -> SourceFile:
        language = ParserFactory.detect_language(path)
        if language is None:
            raise UnsupportedFileType(str(path))
        source = self.reader(path)
        parser, lock = self.cache.get(language)
        with lock:
            return analyze_source(Path(path), source, parser)
