# ============================================================================
# File: upload/client.py
# Description: Batch upload protocol with acknowledgment reconciliation
# ============================================================================
"""
Upload Client - transmits row sources to the collection server.

This module provides:
- Batch-by-batch transmission with acknowledgment reconciliation
- Attempt and wall-clock bounds on every send loop
- Server backpressure handling (upload-disabled acknowledgments)
- Stuck-loop detection across send passes
- Checksum skip-if-unchanged for query sources

There is no retry at the transport layer: a failed request raises, and
retrying the whole run is left to upload.runner.
"""

import time
from pathlib import Path
from typing import Dict, Optional, Union
import logging

import httpx
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.exceptions import (
    AttemptsExhaustedError,
    AuthenticationError,
    CleanDataCheckError,
    HeaderValidationError,
    ServerResponseError,
    ServerUnavailableError,
    SourceReadError,
    StuckUploadError,
    TransmissionError,
)
from extraction.batch import Batch, BatchBuilder
from extraction.file_schema import FileSchema
from extraction.sources.base import RowSource
from extraction.sources.external import ExternalFileRowSource
from extraction.sources.generated import GeneratedFileRowSource
from extraction.sources.query import QueryRowSource
from extraction.writer import columns_for
from schemas.definitions import FileDefinitionUpload, QueryDefinition
from schemas.upload import (
    QUERY_PATH,
    UploadAcknowledge,
    UploadCommand,
    UploadType,
)
from upload.session import UploadSession

logger = logging.getLogger(__name__)

UPLOAD_DISABLED = "The collection server is temporarily not accepting data.  Please try again later."
MIN_CHECKSUM_SQL_LENGTH = 5


def restore_double_quotes(body: str) -> str:
    """The server HTML-escapes quotes in some responses."""
    return body.replace("&#034;", '"')


class UploadClient:
    """
    Send row sources to the collection server in bounded batches.

    Attributes:
        session: Per-run counters and flags (one per run)
        base_url: Server base URL, e.g. https://host/dataextraction
        max_attempts: Batches per send pass before giving up the pass
        max_iterations: Send passes per source before the source is abandoned
    """

    def __init__(
        self,
        session: Optional[UploadSession] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client_name: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        max_rows: Optional[int] = None,
        max_file_rows: Optional[int] = None,
        max_attempts: Optional[int] = None,
        max_iterations: Optional[int] = None,
        max_error_rows: Optional[int] = None,
        protocol_version: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        self.session = session or UploadSession()
        self.base_url = (base_url or settings.UPLOAD_URL).rstrip("/")
        self.token = token if token is not None else settings.API_TOKEN
        self.client_name = client_name if client_name is not None else settings.CLIENT_NAME
        self.protocol_version = protocol_version or settings.PROTOCOL_VERSION
        self.max_rows = max_rows or settings.MAX_ROWS_PER_POST
        self.max_file_rows = max_file_rows or settings.MAX_ROWS_PER_FILE_UPLOAD
        self.max_attempts = max_attempts or settings.MAX_ATTEMPTS_TO_SEND
        self.max_iterations = max_iterations or settings.MAX_ITERATIONS
        self.max_error_rows = max_error_rows if max_error_rows is not None else settings.MAX_ERROR_ROWS
        self.timeout = timeout or settings.REQUEST_TIMEOUT

        self._owns_http = http_client is None
        self.http = http_client or httpx.Client(timeout=self.timeout)
        self._clean_data_checked = False

    def close(self):
        if self._owns_http:
            self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _params(self, command: UploadCommand) -> Dict[str, str]:
        params = {"version": str(self.protocol_version), "command": str(int(command))}
        if self.client_name:
            params["client"] = self.client_name
        return params

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, command: UploadCommand, results: Optional[str] = None) -> httpx.Response:
        """
        Issue one request. Transport failures are not retried here.

        Raises:
            TransmissionError: If no response was received
        """
        url = f"{self.base_url}{path}"
        data = {"results": results} if results is not None else None
        try:
            return self.http.request(
                method,
                url,
                params=self._params(command),
                data=data,
                headers=self._headers(),
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise TransmissionError(
                f"Request to {url} timed out",
                context={"url": url, "command": int(command), "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            raise TransmissionError(
                f"Request to {url} failed",
                context={"url": url, "command": int(command)},
                original_exception=e
            )

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        """Map a non-OK response onto the error hierarchy."""
        context = {
            "status_code": response.status_code,
            "url": str(response.request.url) if response.request else None,
            "response_body": response.text[:500]
        }
        if response.status_code in (401, 403):
            raise AuthenticationError("Authentication failed", context=context)
        if response.status_code == 503:
            raise ServerUnavailableError("Collection server is unavailable", context=context)
        raise ServerResponseError(
            f"Unexpected response status {response.status_code}",
            context=context
        )

    @staticmethod
    def parse_ack(response: httpx.Response) -> Optional[UploadAcknowledge]:
        """Parse an acknowledgment body, or None if it is not one."""
        try:
            return UploadAcknowledge.model_validate_json(restore_double_quotes(response.text))
        except ValidationError as e:
            logger.error(f"Cannot parse upload acknowledgment: {e}; body was [{response.text[:500]}]")
            return None

    # ------------------------------------------------------------------
    # Sending rows
    # ------------------------------------------------------------------

    def send_rows(self, source: RowSource, upload_type: UploadType, max_rows: Optional[int] = None) -> bool:
        """
        Drain and transmit batches until the source is exhausted.

        Args:
            source: Row source to send
            upload_type: Selects the server command and endpoint
            max_rows: Row cap per batch, defaults to the client cap

        Returns:
            True when the source is finished (fully sent or the server stopped
            accepting data); False when attempts or time ran out first

        Raises:
            TransmissionError: If a request got no response
            AuthenticationError: On HTTP 401/403
            ServerUnavailableError: On HTTP 503 without the upload-disabled message
            ServerResponseError: On any other non-OK response
        """
        builder = BatchBuilder(max_rows=max_rows or self.max_rows, max_error_rows=self.max_error_rows)
        attempts = 0

        while attempts < self.max_attempts and self.session.continue_sending():
            attempts += 1
            batch = builder.build(source)

            if batch.success_count == 0:
                logger.info(f"No more rows to send for {source.name}")
                self._check_expected_rows(source)
                return True

            response = self._request("POST", upload_type.path, upload_type.command, batch.to_json())

            if response.status_code == 200:
                self._reconcile(source, batch, response)
                if not batch.was_truncated:
                    self._check_expected_rows(source)
                    return True
                continue

            if response.status_code == 503:
                ack = self.parse_ack(response)
                if ack is not None and ack.message == UPLOAD_DISABLED:
                    logger.warning(f"Upload disabled on server while sending {source.name}")
                    self.session.stop_accepting_data()
                    return True

            self._raise_for_status(response)

        return False

    def _reconcile(self, source: RowSource, batch: Batch, response: httpx.Response):
        ack = self.parse_ack(response)
        acknowledged = ack.rows_uploaded if ack is not None else 0
        if acknowledged != batch.success_count:
            logger.error(
                f"Server acknowledged {acknowledged} rows for {source.name} "
                f"but the batch held {batch.success_count}"
            )
        self.session.record_ack(source.name, acknowledged)
        logger.info(
            f"Sent {batch.success_count} rows for {source.name} "
            f"(table total {self.session.rows_for_current_table}, run total {self.session.total_rows_sent})"
        )

    def _check_expected_rows(self, source: RowSource):
        if not source.expected_rows_known:
            return
        if source.expected_rows != self.session.rows_for_current_table:
            logger.error(
                f"Expected {source.expected_rows} rows for {source.name} but "
                f"{self.session.rows_for_current_table} were sent; the data file may be corrupt"
            )

    def send_source(self, source: RowSource, upload_type: UploadType, max_rows: Optional[int] = None) -> bool:
        """
        Send a row source completely, in as many passes as it takes.

        The source is always closed on return.

        Returns:
            True when the source is finished; False when the run deadline
            or the server's backpressure signal cut it short

        Raises:
            StuckUploadError: If two failed passes in a row sent nothing new
            AttemptsExhaustedError: If the pass budget runs out
        """
        self.session.start_table(source.name)
        previous_total: Optional[int] = None
        iterations = 0

        try:
            while True:
                if iterations >= self.max_iterations:
                    raise AttemptsExhaustedError(
                        f"Gave up sending {source.name} after {iterations} passes",
                        context={"source_name": source.name, "total_rows_sent": self.session.total_rows_sent}
                    )
                iterations += 1

                if self.send_rows(source, upload_type, max_rows):
                    logger.info(
                        f"Completed sending data for [{source.name}] - total rows sent: "
                        f"{self.session.total_rows_sent}"
                    )
                    return True

                if not self.session.continue_sending():
                    logger.warning(f"Stopped sending {source.name} before the source was exhausted")
                    return False

                if previous_total == self.session.total_rows_sent:
                    raise StuckUploadError(
                        f"Sending {source.name} is stuck: no rows sent since the previous pass",
                        context={"source_name": source.name, "total_rows_sent": self.session.total_rows_sent}
                    )
                previous_total = self.session.total_rows_sent
                logger.info(
                    f"Continuing to send data for [{source.name}] - total rows sent: "
                    f"{self.session.total_rows_sent}"
                )
        finally:
            source.close()

    # ------------------------------------------------------------------
    # Source-specific entry points
    # ------------------------------------------------------------------

    def query_checksum(self, query: QueryDefinition, connection: Connection) -> Optional[int]:
        """Run the query's checksum SQL, or None when it has none or it fails."""
        if not query.checksum_sql or len(query.checksum_sql.strip()) <= MIN_CHECKSUM_SQL_LENGTH:
            return None
        try:
            value = connection.execute(text(query.checksum_sql)).scalar()
        except SQLAlchemyError as e:
            logger.warning(f"Checksum query for {query.name} failed: {e}")
            return None
        return int(value) if value is not None else None

    def send_query(
        self,
        query: QueryDefinition,
        connection: Connection,
        upload_type: UploadType = UploadType.INCREMENTAL_QUERY_LOAD
    ) -> bool:
        """
        Run a query and send its rows, unless its checksum is unchanged.

        Raises:
            SourceReadError: If the query cannot be executed
        """
        checksum = self.query_checksum(query, connection)
        if (
            query.last_checksum is not None
            and checksum is not None
            and checksum != 0
            and checksum == query.last_checksum
        ):
            logger.info(f"Checksum matches for {query.name}, skipping query; 0 rows sent")
            self.session.start_table(query.name)
            return True

        if query.since is not None and query.incremental_sql:
            sql, params = query.incremental_sql, {"since": query.since}
        else:
            sql, params = query.sql, {}

        logger.info(f"Running query [{query.name}] with params {params}")
        started = time.monotonic()
        try:
            result = connection.execute(text(sql), params)
        except SQLAlchemyError as e:
            raise SourceReadError(
                f"Query {query.name} failed",
                context={"query_name": query.name},
                original_exception=e
            )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        source = QueryRowSource(query.name, result, columns_for(query), checksum=checksum, time_to_run_ms=elapsed_ms)
        return self.send_source(source, upload_type)

    def send_generated_file(
        self,
        path: Union[str, Path],
        name: Optional[str] = None,
        upload_type: UploadType = UploadType.INITIAL_CSV
    ) -> bool:
        """Send a generated extract file; initial loads are gated on the clean-data check."""
        if upload_type is UploadType.INITIAL_CSV and not self._clean_data_checked:
            if not self.check_clean_data():
                raise CleanDataCheckError(
                    "CSV check failed, check server tables to make sure they are clean",
                    context={"path": str(path)}
                )
            self._clean_data_checked = True

        source = GeneratedFileRowSource.from_path(path, name)
        return self.send_source(source, upload_type)

    def send_external_file(
        self,
        path: Union[str, Path],
        schema: FileSchema,
        quarantine: bool = True,
        name: Optional[str] = None
    ) -> bool:
        """
        Validate and send a customer file.

        Raises:
            HeaderValidationError: If the header does not match the schema
        """
        source = ExternalFileRowSource.from_path(path, schema, quarantine=quarantine, name=name)
        if not source.headers_valid:
            source.close()
            raise HeaderValidationError(
                f"Header of {path} does not match file definition {schema.table_name}",
                context={
                    "file_path": str(path),
                    "unmatched": source.resolution.unmatched,
                    "missing": source.resolution.missing
                }
            )
        return self.send_source(source, UploadType.CUSTOMER_CSV, self.max_file_rows)

    # ------------------------------------------------------------------
    # Control messages
    # ------------------------------------------------------------------

    def send_file_definition(self, schema: FileSchema) -> bool:
        """Upload a file definition so the server can validate later uploads."""
        payload = FileDefinitionUpload(file_definitions=[schema.to_spec()])
        upload_type = UploadType.CUSTOMER_CSV_FILEDEF
        response = self._request(
            "POST",
            upload_type.path,
            upload_type.command,
            payload.model_dump_json(by_alias=True)
        )
        if response.status_code != 200:
            self._raise_for_status(response)
        logger.info(f"Sent file definition for {schema.table_name}")
        return True

    def send_summary(self, upload_type: UploadType = UploadType.INCREMENTAL_QUERY_LOAD) -> bool:
        """Post the run summary. A failed post is logged, not raised."""
        summary = self.session.summary()
        try:
            response = self._request(
                "POST",
                upload_type.summary_path,
                upload_type.summary_command,
                summary.model_dump_json(by_alias=True)
            )
        except TransmissionError as e:
            logger.error(f"Query summary send failed: {e}")
            return False

        if response.status_code == 200:
            logger.info("Successfully sent query summary")
            return True
        logger.error(f"Query summary send failed with status code [{response.status_code}]")
        return False

    def check_clean_data(self) -> bool:
        """Ask the server whether its tables are clean for an initial load."""
        logger.info(f"Requesting CSV check from [{self.base_url}]")
        response = self._request("GET", QUERY_PATH, UploadCommand.CSV_CLEAN_DATA_CHECK)
        if response.status_code != 200:
            self._raise_for_status(response)
        body = restore_double_quotes(response.text).strip().lower()
        if body not in ("true", "false"):
            logger.error(f"Couldn't get CSV check, response was [{response.text[:500]}]")
            return False
        return body == "true"
