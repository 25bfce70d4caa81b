"""
Row extraction: typed columns, row sources, batches and extract files.

This package turns source rows into validated, string-rendered batches:

Modules:
    columns: Column types, per-type rendering and parsing
    file_schema: External file definitions and header matching
    batch: Bounded batch building with per-row rejection
    chunking: Adaptive date windows for large historical queries
    writer: Generated extract file writer

Subpackages:
    sources: Row sources over query results and delimited files

Architecture:
    A row source is drained by BatchBuilder into batches of at most
    MAX_ROWS_PER_POST rows. Rows that fail to render are quarantined and
    left out; the rest of the batch is unaffected.

Usage:
    from extraction.batch import BatchBuilder
    from extraction.file_schema import FileSchema
    from extraction.sources.generated import GeneratedFileRowSource

Example:
    with GeneratedFileRowSource.from_path("orders.csv") as source:
        batch = BatchBuilder().build(source)
        print(batch.success_count, batch.was_truncated)
"""

__all__ = [
    "ColumnDefinition",
    "ColumnType",
    "FileSchema",
    "FileColumn",
    "Batch",
    "BatchBuilder",
    "DateRangeChunker",
    "ExtractWriter",
]
