from __future__ import annotations

import bisect
import fnmatch
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterator, List, Optional

from tqdm import tqdm

from ..patterns import DEFAULT_CATALOG, PatternCatalog
from .models import FileReport, Match
from .utils import LineIndex, read_text_safely


DEFAULT_LOGGER_NAME = "secretwatch"
SLOW_SCAN_THRESHOLD_SECONDS = 2.0
# browser messaging tops out around 50MB per script; anything bigger is cut here
DEFAULT_MAX_SCAN_CHARS = 50_000_000

_logger = logging.getLogger(DEFAULT_LOGGER_NAME).getChild("scanner")


def configure_logging(verbose: bool = False, logger_name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Configure and return the package logger.

    This helper ensures secretwatch has a configured logger even in script usage
    where ``logging.basicConfig`` was not called. Callers can provide their own
    logger name and set ``verbose`` to elevate the log level.
    """

    logger = logging.getLogger(logger_name)
    level = logging.INFO if verbose else logging.WARNING
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
        )
        logger.addHandler(handler)

    return logger


class _ClaimedRanges:
    """Sorted, non-overlapping [start, end) ranges already owned by a pattern."""

    def __init__(self) -> None:
        self._starts: List[int] = []
        self._ends: List[int] = []

    def overlaps(self, start: int, end: int) -> bool:
        idx = bisect.bisect_right(self._starts, start)
        if idx > 0 and self._ends[idx - 1] > start:
            return True
        if idx < len(self._starts) and self._starts[idx] < end:
            return True
        return False

    def claim(self, start: int, end: int) -> None:
        idx = bisect.bisect_right(self._starts, start)
        self._starts.insert(idx, start)
        self._ends.insert(idx, end)


def scan(
    text: str,
    catalog: Optional[PatternCatalog] = None,
    *,
    max_chars: int = DEFAULT_MAX_SCAN_CHARS,
) -> List[Match]:
    """Apply the catalog to ``text`` and return non-overlapping matches.

    Patterns run in catalog order; within a pattern, matches come in text
    order. A candidate is dropped when one of the pattern's ignore filters
    hits it, or when its range overlaps text claimed by an earlier match.

    Pure function: every call uses fresh ``finditer`` iterators, so nothing
    carries over between calls and concurrent scans from several tabs are safe.
    Never raises; unusable input yields an empty list.
    """

    if not isinstance(text, str):
        _logger.debug("Ignoring non-text scan input of type %s", type(text).__name__)
        return []
    if len(text) > max_chars:
        _logger.warning("Truncating %d chars of script text to %d before scanning", len(text), max_chars)
        text = text[:max_chars]

    catalog = catalog if catalog is not None else DEFAULT_CATALOG
    claimed = _ClaimedRanges()
    results: List[Match] = []
    try:
        for pattern in catalog:
            for m in pattern.matcher.finditer(text):
                start, end = m.span()
                if start == end:
                    continue
                value = m.group(0)
                if pattern.is_ignored(value):
                    continue
                if claimed.overlaps(start, end):
                    continue
                claimed.claim(start, end)
                results.append(
                    Match(
                        secret_type=pattern.secret_type,
                        severity=pattern.severity,
                        matched_text=value,
                        start=start,
                        end=end,
                        pattern=pattern.matcher.pattern,
                    )
                )
    except Exception as exc:
        _logger.warning("Scan aborted after %d finding(s): %s", len(results), exc)
    return results


def scan_file(path: Path, catalog: Optional[PatternCatalog] = None, max_file_size: int = 5_000_000) -> Optional[FileReport]:
    content = read_text_safely(path, max_bytes=max_file_size)
    if content is None:
        return None
    matches = scan(content, catalog)
    index = LineIndex(content)
    return FileReport(
        file_location=str(path),
        matches=matches,
        line_numbers=[index.line_of(m.start) for m in matches],
    )


class DirectoryScanner:
    def __init__(
        self,
        root: Path,
        catalog: Optional[PatternCatalog] = None,
        include_globs: Optional[List[str]] = None,
        exclude_dirs: Optional[List[str]] = None,
        max_file_size: int = 5_000_000,
        workers: int = 8,
        *,
        logger: Optional[logging.Logger] = None,
        verbose: bool = False,
        show_progress: bool = True,
        progress_desc: str = "Scanning scripts",
    ) -> None:
        self.root = root
        self.catalog = catalog if catalog is not None else DEFAULT_CATALOG
        self.include_globs = include_globs or ["*.js", "*.mjs", "*.cjs", "*.html", "*.htm"]
        self.exclude_dirs = set(exclude_dirs or [])
        self.max_file_size = max_file_size
        self.workers = workers
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild(self.__class__.__name__.lower())
        self.verbose = verbose
        if verbose:
            self.logger.setLevel(logging.INFO)
        self.show_progress = bool(show_progress)
        self.progress_desc = progress_desc
        self.reports: List[FileReport] = []
        self._reports_lock = threading.Lock()
        self._slow_log_threshold = SLOW_SCAN_THRESHOLD_SECONDS

    def _iter_files(self) -> Iterator[Path]:
        for p in sorted(self.root.rglob("*")):
            if p.is_dir():
                continue
            rel_parts = p.relative_to(self.root).parts[:-1]
            if any(part in self.exclude_dirs for part in rel_parts):
                continue
            if any(fnmatch.fnmatch(p.name, pat) for pat in self.include_globs):
                try:
                    if p.stat().st_size <= self.max_file_size:
                        yield p
                    elif self.verbose:
                        self.logger.info("Skipping %s: larger than %d bytes", p, self.max_file_size)
                except OSError as exc:
                    if self.verbose:
                        self.logger.warning("Unable to stat %s: %s", p, exc)
                    continue

    def scan(self) -> List[FileReport]:
        files = list(self._iter_files())
        total_files = len(files)

        if self.verbose:
            self.logger.info("Discovered %d file(s) to scan", total_files)

        if not total_files:
            return []

        progress_bar = None
        if self.show_progress:
            progress_bar = tqdm(total=total_files, desc=self.progress_desc, unit="file")

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = {executor.submit(self._scan_file, path): path for path in files}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    if self.verbose:
                        self.logger.exception("Error scanning %s", path)
                    else:
                        self.logger.warning("Error scanning %s: %s", path, exc)
                finally:
                    if progress_bar is not None:
                        progress_bar.update(1)
        except KeyboardInterrupt:
            if self.verbose:
                self.logger.info("Scan interrupted by user; shutting down workers")
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            if progress_bar is not None:
                progress_bar.close()

        self.reports.sort(key=lambda r: r.file_location)
        return self.reports

    def _scan_file(self, path: Path) -> None:
        start_time = time.perf_counter()
        report = scan_file(path, self.catalog, self.max_file_size)
        duration = time.perf_counter() - start_time
        if report is None:
            self.logger.debug("Skipping unreadable or binary file %s", path)
            return
        with self._reports_lock:
            self.reports.append(report)
        self._maybe_log_slow_file(path, duration, len(report.matches))

    def _maybe_log_slow_file(self, path: Path, duration: float, match_count: int) -> None:
        if not self.logger.isEnabledFor(logging.DEBUG):
            return
        if duration < self._slow_log_threshold:
            return
        try:
            size_str = f"{path.stat().st_size:,} bytes"
        except OSError:
            size_str = "unknown size"
        self.logger.debug(
            "Slow scan for %s took %.2fs. size=%s, matches=%d",
            path,
            duration,
            size_str,
            match_count,
        )


class SingleFileScanner:
    def __init__(
        self,
        file_path: Path,
        catalog: Optional[PatternCatalog] = None,
        max_file_size: int = 20_000_000,
        *,
        logger: Optional[logging.Logger] = None,
        verbose: bool = False,
    ) -> None:
        self.file_path = file_path
        self.catalog = catalog if catalog is not None else DEFAULT_CATALOG
        self.max_file_size = max_file_size
        base_logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.logger = base_logger.getChild(self.__class__.__name__.lower())
        self.verbose = verbose
        if verbose:
            self.logger.setLevel(logging.INFO)

    def scan(self) -> List[FileReport]:
        report = scan_file(self.file_path, self.catalog, self.max_file_size)
        if report is None:
            self.logger.warning("Unable to read %s as text; nothing scanned", self.file_path)
            return []
        if self.verbose:
            self.logger.info("Found %d candidate secret(s) in %s", len(report.matches), self.file_path)
        return [report]
