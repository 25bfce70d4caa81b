# ============================================================================
# File: upload/runner.py
# Description: Run orchestration with outer retry and per-source isolation
# ============================================================================
"""
Transfer Runner - drives a list of upload jobs to completion.

This module provides:
- Whole-run retry of transient failures with multiplicative backoff
- Per-source isolation (a source that cannot be read fails alone)
- A run deadline shared by every attempt
- A run summary posted at the end of every attempt
- A result dict with the status and process exit code
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from sqlalchemy.engine import Engine

from core.config import settings
from core.database import source_connection
from core.exceptions import DataMoverException, RetryableError, SourceError
from extraction.file_schema import FileSchema
from schemas.definitions import QueryDefinition
from schemas.upload import UploadType
from upload.client import UploadClient
from upload.session import UploadSession

logger = logging.getLogger(__name__)


# ============================================================================
# Jobs
# ============================================================================

@dataclass
class QueryJob:
    """Run one query against the source database and send its rows"""
    query: QueryDefinition
    engine: Optional[Engine] = None
    upload_type: UploadType = UploadType.INCREMENTAL_QUERY_LOAD

    @property
    def name(self) -> str:
        return self.query.name

    def execute(self, client: UploadClient) -> bool:
        with source_connection(self.engine) as connection:
            return client.send_query(self.query, connection, self.upload_type)


@dataclass
class GeneratedFileJob:
    """Send a generated extract file"""
    path: Union[str, Path]
    table_name: Optional[str] = None
    upload_type: UploadType = UploadType.INITIAL_CSV

    @property
    def name(self) -> str:
        return self.table_name or Path(self.path).stem

    def execute(self, client: UploadClient) -> bool:
        return client.send_generated_file(self.path, self.table_name, self.upload_type)


@dataclass
class ExternalFileJob:
    """Validate and send a customer file against its file definition"""
    path: Union[str, Path]
    schema: FileSchema
    quarantine: bool = True

    @property
    def name(self) -> str:
        return self.schema.table_name

    def execute(self, client: UploadClient) -> bool:
        return client.send_external_file(self.path, self.schema, quarantine=self.quarantine)


@dataclass
class FileDefinitionJob:
    """Publish a file definition to the server"""
    schema: FileSchema

    @property
    def name(self) -> str:
        return f"{self.schema.table_name} (file definition)"

    def execute(self, client: UploadClient) -> bool:
        return client.send_file_definition(self.schema)


# ============================================================================
# Runner
# ============================================================================

@dataclass
class _RunState:
    pending: List[Any]
    failed_sources: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    rows_sent: int = 0
    attempts: int = 0


class TransferRunner:
    """
    Run upload jobs, retrying the run when a transient fault stops it.

    Every attempt gets a fresh UploadClient and UploadSession; the session
    deadline is measured from the start of the first attempt. Jobs that
    finished in an earlier attempt are not sent again.

    Attributes:
        retries: Attempts allowed after the first one
        retry_interval: Seconds to wait before the first retry
        retry_multiplier: Factor applied to the wait after each retry
        max_run_time: Wall-clock limit for the whole run (0 disables it)
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[UploadSession], UploadClient]] = None,
        retries: Optional[int] = None,
        retry_interval: Optional[float] = None,
        retry_multiplier: Optional[float] = None,
        max_run_time: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client_factory = client_factory or (lambda session: UploadClient(session=session))
        self.retries = retries if retries is not None else settings.RUN_RETRIES
        self.retry_interval = retry_interval if retry_interval is not None else settings.RETRY_INTERVAL_SECONDS
        self.retry_multiplier = retry_multiplier if retry_multiplier is not None else settings.RETRY_MULTIPLIER
        self.max_run_time = max_run_time if max_run_time is not None else settings.MAX_RUN_TIME_SECONDS
        self.sleep = sleep
        self.clock = clock

    def run(self, jobs: List[Any], upload_type: UploadType = UploadType.INCREMENTAL_QUERY_LOAD) -> Dict[str, Any]:
        """
        Run every job, retrying the run on transient failures.

        Args:
            jobs: Objects with a ``name`` and ``execute(client) -> bool``
            upload_type: Selects the summary command posted after each attempt

        Returns:
            Dictionary with run results:
            - status: success, partial_success, stopped, timed_out or failed
            - exit_code: 0 for success and stopped, otherwise 1
            - rows_sent: Rows acknowledged by the server over all attempts
            - failed_sources: Names of sources that could not be sent
            - messages: Summary messages
            - attempts: Number of attempts made
        """
        started = self.clock()
        state = _RunState(pending=list(jobs))
        interval = self.retry_interval

        while True:
            state.attempts += 1
            session = UploadSession(
                max_run_time_seconds=self.max_run_time,
                clock=self.clock,
                started_at=started
            )
            logger.info(f"Starting transfer attempt {state.attempts} with {len(state.pending)} jobs")

            try:
                # --------------------------------------------------
                # PHASE 1: SEND JOBS
                # --------------------------------------------------
                error = self._attempt(session, state, upload_type)
            except DataMoverException as e:
                logger.error(
                    f"Transfer failed: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                state.messages.append(e.message)
                return self._result("failed", state)

            if error is None:
                return self._result(self._status(session, state), state)

            # --------------------------------------------------
            # PHASE 2: DECIDE ON A RETRY
            # --------------------------------------------------
            if state.attempts > self.retries:
                logger.error(f"Transfer failed after {state.attempts} attempts: {error.message}")
                state.messages.append(error.message)
                return self._result("failed", state)

            remaining = session.remaining_seconds()
            if remaining is not None and interval >= remaining:
                logger.error(
                    f"Not retrying: waiting {interval}s would pass the run deadline "
                    f"({remaining:.1f}s left)"
                )
                state.messages.append(error.message)
                return self._result("timed_out", state)

            logger.warning(
                f"Attempt {state.attempts} failed with {error.__class__.__name__}: {error.message}; "
                f"retrying in {interval}s"
            )
            self.sleep(interval)
            interval *= self.retry_multiplier

    def _attempt(
        self,
        session: UploadSession,
        state: _RunState,
        upload_type: UploadType
    ) -> Optional[RetryableError]:
        """One pass over the pending jobs; returns the retryable error that ended it, if any."""
        client = self.client_factory(session)
        try:
            while state.pending and session.continue_sending():
                job = state.pending[0]
                try:
                    finished = job.execute(client)
                except SourceError as e:
                    logger.error(
                        f"Source {job.name} failed and was skipped: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    state.failed_sources.append(job.name)
                    state.pending.pop(0)
                    continue
                except RetryableError as e:
                    return e

                if not finished:
                    break
                state.pending.pop(0)
            return None
        finally:
            # --------------------------------------------------
            # PHASE 3: SUMMARY
            # --------------------------------------------------
            client.send_summary(upload_type)
            state.rows_sent += session.total_rows_sent
            for message in session.summary().messages:
                if message not in state.messages:
                    state.messages.append(message)
            client.close()

    @staticmethod
    def _status(session: UploadSession, state: _RunState) -> str:
        if not session.server_accepting_data:
            return "stopped"
        if state.pending:
            return "timed_out"
        if state.failed_sources:
            return "partial_success"
        return "success"

    @staticmethod
    def _result(status: str, state: _RunState) -> Dict[str, Any]:
        result = {
            "status": status,
            "exit_code": 0 if status in ("success", "stopped") else 1,
            "rows_sent": state.rows_sent,
            "failed_sources": list(state.failed_sources),
            "messages": list(state.messages),
            "attempts": state.attempts
        }
        logger.info(
            f"Transfer completed: {status} - rows sent: {state.rows_sent}, "
            f"failed sources: {len(state.failed_sources)}, attempts: {state.attempts}"
        )
        return result
