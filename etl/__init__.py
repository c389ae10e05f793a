"""
CSV Bulk Load Package

Loads periodic CSV extracts into relational tables whose schema is read from
the database at runtime.

Modules:
- schema: Table schema discovery and SQL type mapping
- extract: CSV reading (strict and tolerant)
- converters: Field-level type conversion rules
- transform: Column reconciliation and row conversion
- load: Truncate-once, batched table loading
- archive: ZIP extraction
- run_etl: Run orchestration
"""

__version__ = "1.0.0"
__author__ = "Data Engineering Team"
