"""
Generated extract file writer.

Runs a query definition against the source database and writes its rows
in the generated-file format read back by GeneratedFileRowSource. Large
historical tables are pulled in date windows planned by DateRangeChunker.
"""

import csv
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, TextIO
import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import ColumnValueError, ConfigurationError, SourceReadError
from extraction.chunking import DEFAULT_EARLIEST_DATE, DateRangeChunker
from extraction.columns import ColumnDefinition
from extraction.sources.generated import DATA_END, DATA_START, EXPECTED_ROWS_LABEL
from extraction.sources.query import QueryRowSource
from schemas.definitions import QueryDefinition

logger = logging.getLogger(__name__)

STATS_LABEL = "Stats:"
STATS_HEADER = "Date of Run,Chunks,Total Query Time,Max Query Time,Processing Time,DB Name,Customer Code"


@dataclass
class ExtractStats:
    """Counters for one written extract"""
    expected_rows: int = -1
    rows_written: int = 0
    rows_rejected: int = 0
    chunks: int = 0
    total_query_ms: int = 0
    max_query_ms: int = 0
    processing_ms: int = 0


def columns_for(query: QueryDefinition) -> List[ColumnDefinition]:
    """Column definitions configured for a query."""
    if not query.columns:
        raise ConfigurationError(
            f"Query {query.name} has no column definitions",
            context={"query_name": query.name}
        )
    return [ColumnDefinition.from_tag(c.type, c.name, c.format_string) for c in query.columns]


class ExtractWriter:
    """
    Write query results as a generated extract file.

    Attributes:
        connection: Open source database connection
        db_name: Database name recorded in the stats trailer
        customer_code: Customer code recorded in the stats trailer
    """

    def __init__(
        self,
        connection: Connection,
        db_name: str = "",
        customer_code: str = "",
        days_per_chunk: Optional[int] = None,
        today: Optional[date] = None
    ):
        self.connection = connection
        self.db_name = db_name
        self.customer_code = customer_code
        self.days_per_chunk = days_per_chunk
        self.today = today

    def count_rows(self, query: QueryDefinition) -> int:
        """Expected row count from the count query, or -1 when unavailable."""
        if not query.count_sql:
            return -1
        try:
            value = self.connection.execute(text(query.count_sql)).scalar()
            return int(value) if value is not None else -1
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.warning(f"Count query for {query.name} failed, expected rows unknown: {e}")
            return -1

    def earliest_date(self, query: QueryDefinition) -> date:
        """Earliest createTime in the dataset; never later than 2000-01-01."""
        earliest = DEFAULT_EARLIEST_DATE
        if not query.earliest_date_sql:
            return earliest

        value = self.connection.execute(text(query.earliest_date_sql)).scalar()
        if isinstance(value, str):
            value = datetime.fromisoformat(value.strip())
        if isinstance(value, datetime):
            value = value.date()
        if isinstance(value, date) and value < earliest:
            earliest = value
        return earliest

    def write(self, query: QueryDefinition, stream: TextIO) -> ExtractStats:
        """
        Run a query and write its rows to a stream.

        Args:
            query: Query definition with resolved SQL
            stream: Text stream opened with newline=""

        Returns:
            ExtractStats for the run

        Raises:
            SourceReadError: If a data query fails
        """
        started = time.monotonic()
        columns = columns_for(query)
        stats = ExtractStats(expected_rows=self.count_rows(query))
        writer = csv.writer(stream, lineterminator="\n")

        stream.write(f"{EXPECTED_ROWS_LABEL}: {stats.expected_rows}\n")
        stream.write(f"{DATA_START}\n")
        writer.writerow([c.name for c in columns])
        writer.writerow([c.type_tag for c in columns])

        if query.since is not None and query.incremental_sql:
            logger.info(f"Running incremental query {query.name} since {query.since}")
            self._run(query, query.incremental_sql, {"since": query.since}, columns, writer, stats)
        elif query.chunked:
            self._run_chunks(query, columns, writer, stats)
        else:
            self._run(query, query.sql, {}, columns, writer, stats)

        if query.null_chunk_sql:
            self._run(query, query.null_chunk_sql, {}, columns, writer, stats)

        stats.processing_ms = int((time.monotonic() - started) * 1000)

        stream.write(f"{DATA_END}\n")
        stream.write(f"{STATS_LABEL}\n")
        stream.write(f"{STATS_HEADER}\n")
        writer.writerow([
            datetime.now().strftime("%Y%m%d %H:%M:%S"),
            stats.chunks,
            stats.total_query_ms,
            stats.max_query_ms,
            stats.processing_ms,
            self.db_name,
            self.customer_code,
        ])
        stream.write(f"Query: {query.name} ccVersion: {query.version or ''}\n")
        stream.write(f"{query.sql}\n")

        logger.info(
            f"Wrote {stats.rows_written} rows for {query.name} "
            f"(expected {stats.expected_rows}, {stats.chunks} chunks, {stats.rows_rejected} rejected)"
        )
        return stats

    def _run_chunks(self, query: QueryDefinition, columns, writer, stats: ExtractStats):
        chunker = DateRangeChunker(
            earliest=self.earliest_date(query),
            today=self.today,
            days_per_chunk=self.days_per_chunk
        )
        for window in chunker:
            rows = self._run(
                query,
                query.chunk_sql,
                {"earlier": window.earlier, "later": window.later},
                columns,
                writer,
                stats
            )
            chunker.record(rows)
        stats.chunks = chunker.chunks

    def _run(
        self,
        query: QueryDefinition,
        sql: str,
        params: Dict[str, Any],
        columns: List[ColumnDefinition],
        writer,
        stats: ExtractStats
    ) -> int:
        started = time.monotonic()
        try:
            result = self.connection.execute(text(sql), params)
        except SQLAlchemyError as e:
            raise SourceReadError(
                f"Query {query.name} failed",
                context={"query_name": query.name, "params": params},
                original_exception=e
            )
        elapsed = int((time.monotonic() - started) * 1000)
        stats.total_query_ms += elapsed
        stats.max_query_ms = max(stats.max_query_ms, elapsed)

        rows = 0
        with QueryRowSource(query.name, result, columns) as source:
            while source.next():
                try:
                    values = [c.render(source) for c in columns]
                except ColumnValueError as e:
                    stats.rows_rejected += 1
                    logger.error(f"Skipping row of {query.name} that cannot be rendered: {e.message}")
                    continue
                writer.writerow(values)
                rows += 1
        stats.rows_written += rows
        return rows
