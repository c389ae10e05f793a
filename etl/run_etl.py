"""
Bulk Load Orchestrator

Coordinates one run over the input folder:
- Discover loose CSV files and ZIP archives
- Resolve each file's destination table from its name
- Convert and load each file, truncating each table once
- Report per-file failures without stopping the run
"""

import logging
import logging.handlers
import re
import sys
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psycopg2
import structlog

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.connection import DatabaseConnection
from db.sink import PostgresSink
from config.settings import Settings
from etl.archive import extract_csv_members
from etl.errors import LoaderError
from etl.extract import CsvReader
from etl.load import LoadResult, RunContext, TableLoader

logger = logging.getLogger(__name__)

CSV_SUFFIX = ".csv"
ARCHIVE_SUFFIX = ".zip"


def matches_pattern(file_name: str, pattern: Optional[str]) -> bool:
    """
    Case-insensitive whole-name match with * and ? wildcards.

    Args:
        file_name: Base name of the file
        pattern: Glob-style pattern

    Returns:
        True if the whole name matches
    """
    if not pattern or not pattern.strip():
        return False
    regex = "^" + re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".") + "$"
    return re.match(regex, file_name, re.IGNORECASE | re.DOTALL) is not None


def resolve_table(file_name: str, patterns: Dict[str, str]) -> Optional[str]:
    """Return the first table whose pattern matches the file name, or None."""
    for table, pattern in patterns.items():
        if matches_pattern(file_name, pattern):
            return table
    return None


@dataclass
class RunSummary:
    """Counters for a single run."""

    files_processed: int = 0
    files_loaded: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    archives_processed: int = 0
    archives_failed: int = 0
    rows_loaded: int = 0
    duration_seconds: float = 0.0
    results: List[LoadResult] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def failure_rate(self) -> float:
        """Failed files as a percentage of processed files."""
        if self.files_processed == 0:
            return 0.0
        return (self.files_failed / self.files_processed) * 100

    @property
    def throughput(self) -> float:
        """Rows loaded per second."""
        if self.duration_seconds == 0:
            return 0.0
        return self.rows_loaded / self.duration_seconds


class BulkLoadOrchestrator:
    """
    Orchestrates one bulk load run.

    Workflow:
    1. Check the input folder and initialize the database pool
    2. Enumerate CSV files and ZIP archives in name order
    3. Load each file into the table its name maps to
    4. Log a summary
    """

    def __init__(self, settings: Settings, sink=None):
        """
        Initialize orchestrator.

        Args:
            settings: Configuration object
            sink: Database sink; a PostgresSink on a fresh pool when omitted
        """
        self.settings = settings
        self.sink = sink
        self.context = RunContext()
        self.summary = RunSummary()
        self._owns_pool = False

    def run(self) -> RunSummary:
        """
        Execute the run.

        Returns:
            RunSummary with per-file outcomes

        Raises:
            FileNotFoundError: If the input folder does not exist
            psycopg2.OperationalError: If the database pool cannot be created
        """
        start = time.monotonic()
        self.context = RunContext()
        self.summary = RunSummary()

        logger.info("=" * 60)
        logger.info(f"Starting bulk load run at {datetime.now(timezone.utc).isoformat()}")
        logger.info("=" * 60)

        input_folder = self._check_input_folder()
        if self.sink is None:
            self._initialize_database()

        try:
            loader = TableLoader(
                self.sink,
                reader=CsvReader(
                    delimiter=self.settings.CSV_DELIMITER,
                    encoding=self.settings.CSV_ENCODING,
                    strict=self.settings.CSV_STRICT,
                ),
                batch_size=self.settings.BATCH_SIZE,
            )
            for path in self._discover(input_folder):
                if path.suffix.lower() == ARCHIVE_SUFFIX:
                    self._process_archive(path, loader)
                else:
                    self._process_csv(path, loader)
        finally:
            if self._owns_pool:
                DatabaseConnection.close_all()
                self._owns_pool = False

        self.summary.duration_seconds = time.monotonic() - start

        logger.info("=" * 60)
        logger.info("Bulk load run finished")
        logger.info("=" * 60)
        self._log_summary()
        return self.summary

    def _check_input_folder(self) -> Path:
        folder = Path(self.settings.INPUT_FOLDER)
        if not folder.is_dir():
            raise FileNotFoundError(f"Input folder not found: {folder}")
        return folder

    def _initialize_database(self) -> None:
        """Initialize database connection pool and the default sink."""
        logger.info("Initializing database connection...")
        DatabaseConnection.initialize(
            host=self.settings.DB_HOST,
            port=self.settings.DB_PORT,
            database=self.settings.DB_NAME,
            user=self.settings.DB_USER,
            password=self.settings.DB_PASSWORD,
        )
        self._owns_pool = True
        self.sink = PostgresSink(
            truncate_procedure=self.settings.TRUNCATE_PROCEDURE,
            timeout_seconds=self.settings.BULK_TIMEOUT_SECONDS,
        )
        logger.info("Database connection established")

    def _discover(self, folder: Path) -> List[Path]:
        """Top-level CSV and ZIP files, sorted by name."""
        entries = [
            p for p in folder.iterdir()
            if p.is_file() and p.suffix.lower() in (CSV_SUFFIX, ARCHIVE_SUFFIX)
        ]
        entries.sort(key=lambda p: p.name.lower())
        logger.info(f"Found {len(entries)} input files in {folder}")
        return entries

    def _process_archive(self, path: Path, loader: TableLoader) -> None:
        """Extract an archive to a temporary folder and load its CSV members."""
        self.summary.archives_processed += 1
        logger.info(f"Processing archive {path.name}")

        with tempfile.TemporaryDirectory(prefix="csvload-") as work_dir:
            try:
                members = extract_csv_members(path, work_dir)
            except (zipfile.BadZipFile, OSError) as e:
                self.summary.archives_failed += 1
                self.summary.failures.append((path.name, f"archive extraction failed: {e}"))
                logger.error(f"Archive failed: {path.name}: {e}")
                return

            for member in members:
                self._process_csv(member, loader, label=f"{path.name}/{member.name}")

    def _process_csv(self, path: Path, loader: TableLoader, label: Optional[str] = None) -> None:
        """Load one CSV file; failures are logged and counted, never raised."""
        label = label or path.name
        table = resolve_table(path.name, self.settings.TABLE_PATTERNS)
        if table is None:
            logger.warning(f"File skipped (matches no table pattern): {label}")
            self.summary.files_skipped += 1
            return

        schema = self.settings.TARGET_SCHEMA
        self.summary.files_processed += 1
        logger.info(f"Processing {label} -> {schema}.{table}")

        try:
            result = loader.load_file(path, schema, table, self.context)
        except LoaderError as e:
            self._record_failure(label, e)
            return

        self.summary.files_loaded += 1
        self.summary.rows_loaded += result.rows_loaded
        self.summary.results.append(result)

    def _record_failure(self, label: str, error: Exception) -> None:
        self.summary.files_failed += 1
        self.summary.failures.append((label, str(error)))
        logger.error(f"File failed: {label}: {type(error).__name__}: {error}")

    def _log_summary(self) -> None:
        """Log run summary with all counters."""
        logger.info(f"Duration: {self.summary.duration_seconds:.2f} seconds")
        logger.info(f"Files processed: {self.summary.files_processed}")
        logger.info(f"Files loaded: {self.summary.files_loaded}")
        logger.info(f"Files failed: {self.summary.files_failed}")
        logger.info(f"Files skipped: {self.summary.files_skipped}")
        logger.info(
            f"Archives processed: {self.summary.archives_processed} "
            f"({self.summary.archives_failed} failed)"
        )
        logger.info(f"Rows loaded: {self.summary.rows_loaded}")
        logger.info(f"Tables truncated: {', '.join(self.context.truncated) or 'none'}")

        if self.summary.files_processed > 0:
            logger.info(f"Failure rate: {self.summary.failure_rate:.2f}%")
            logger.info(f"Throughput: {self.summary.throughput:.0f} rows/s")

        for label, error in self.summary.failures:
            logger.warning(f"Failed: {label}: {error}")


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """One JSON object per log record, rendered by structlog from stdlib records."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def setup_logging(
    log_file: str = "logs/etl.log",
    level: str = "INFO",
    log_format: str = "text",
) -> None:
    """
    Configure logging for the loader.

    Args:
        log_file: Path to log file (rotated daily)
        level: Console log level
        log_format: "text" or "json" for the file handler
    """
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File handler
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_file, when="midnight", backupCount=30, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(json_formatter() if log_format == "json" else formatter)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def main() -> int:
    """
    Main entry point.

    Returns:
        0 when the run completed (even with failed files), 1 when it could not start
    """
    try:
        settings = Settings()
    except ValueError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(settings.LOG_FILE, settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info(f"Loaded {settings!r}")

    try:
        orchestrator = BulkLoadOrchestrator(settings)
        orchestrator.run()
        return 0
    except (FileNotFoundError, psycopg2.OperationalError) as e:
        logger.error(f"Run could not start: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
