"""
Configuration Management

Loads environment variables and provides settings for the bulk loader.
Uses python-dotenv for local development and environment variables for production.
"""

import os
from pathlib import Path
from typing import Dict, Optional
from dotenv import load_dotenv

# Load .env file for local development
load_dotenv()

TRUE_STRINGS = {"1", "true", "yes", "on"}


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Interpret an environment flag."""
    if value is None or not value.strip():
        return default
    return value.strip().lower() in TRUE_STRINGS


def parse_table_patterns(value: Optional[str]) -> Dict[str, str]:
    """
    Parse "Table=glob;Other=glob" into an ordered table -> pattern mapping.

    Raises:
        ValueError: If an entry has no table name or no pattern
    """
    patterns: Dict[str, str] = {}
    if not value:
        return patterns

    for entry in value.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        table, sep, pattern = entry.partition("=")
        if not sep or not table.strip() or not pattern.strip():
            raise ValueError(f"Invalid TABLE_PATTERNS entry: {entry!r} (expected Table=pattern)")
        patterns[table.strip()] = pattern.strip()
    return patterns


class Settings:
    """
    Application settings loaded from environment variables.

    Ensures no hardcoded credentials in code.
    """

    def __init__(self):
        """Read the environment and validate required settings."""
        # Database Configuration
        self.DB_HOST: str = os.getenv("DB_HOST", "localhost")
        self.DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
        self.DB_NAME: str = os.getenv("DB_NAME", "etl_db")
        self.DB_USER: Optional[str] = os.getenv("DB_USER")
        self.DB_PASSWORD: Optional[str] = os.getenv("DB_PASSWORD")

        # Input Configuration
        input_folder = os.getenv("INPUT_FOLDER")
        self.INPUT_FOLDER: Optional[Path] = Path(input_folder) if input_folder else None
        self.TABLE_PATTERNS: Dict[str, str] = parse_table_patterns(os.getenv("TABLE_PATTERNS"))

        # Load Configuration
        self.TARGET_SCHEMA: str = os.getenv("TARGET_SCHEMA", "sap")
        self.TRUNCATE_PROCEDURE: str = os.getenv("TRUNCATE_PROCEDURE", "etl.usp_truncate_table")
        self.BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "5000"))
        self.BULK_TIMEOUT_SECONDS: int = int(os.getenv("BULK_TIMEOUT_SECONDS", "0"))

        # CSV Configuration
        self.CSV_DELIMITER: Optional[str] = os.getenv("CSV_DELIMITER") or None
        self.CSV_ENCODING: str = os.getenv("CSV_ENCODING", "utf-8-sig")
        self.CSV_STRICT: bool = parse_bool(os.getenv("CSV_STRICT"), default=True)

        # Logging Configuration
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE: str = os.getenv("LOG_FILE", "logs/etl.log")
        self.LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text").lower()

        self._validate_settings()

    def _validate_settings(self) -> None:
        """
        Validate that all required settings are provided.

        Raises:
            ValueError: If required settings are missing or out of range
        """
        required_fields = ["DB_USER", "DB_PASSWORD", "INPUT_FOLDER", "TABLE_PATTERNS"]

        missing_fields = [
            field for field in required_fields
            if not getattr(self, field, None)
        ]

        if missing_fields:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing_fields)}. "
                f"Please check your .env file."
            )

        if self.BATCH_SIZE < 1:
            raise ValueError(f"BATCH_SIZE must be at least 1, got {self.BATCH_SIZE}")
        if self.BULK_TIMEOUT_SECONDS < 0:
            raise ValueError(f"BULK_TIMEOUT_SECONDS must not be negative, got {self.BULK_TIMEOUT_SECONDS}")
        if self.LOG_FORMAT not in ("text", "json"):
            raise ValueError(f"LOG_FORMAT must be 'text' or 'json', got {self.LOG_FORMAT!r}")

    def __repr__(self) -> str:
        """Return string representation (excluding sensitive data)."""
        return (
            f"Settings("
            f"DB_HOST={self.DB_HOST}, "
            f"DB_NAME={self.DB_NAME}, "
            f"INPUT_FOLDER={self.INPUT_FOLDER}, "
            f"TARGET_SCHEMA={self.TARGET_SCHEMA}, "
            f"TABLES={list(self.TABLE_PATTERNS)}, "
            f"BATCH_SIZE={self.BATCH_SIZE}"
            f")"
        )
