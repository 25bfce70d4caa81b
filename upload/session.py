"""
Per-run upload state: counters, the backpressure flag and the run deadline.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging

from core.config import settings
from schemas.upload import UploadSummary

logger = logging.getLogger(__name__)

UPLOAD_DISABLED_SUMMARY = "Upload disabled on server, sending has stopped."


@dataclass
class UploadSession:
    """
    Mutable state for one run, owned by a single UploadClient.

    ``server_accepting_data`` only ever goes from True to False, when the
    server reports that uploads are disabled; after that nothing else is
    sent in this run.

    Attributes:
        max_run_time_seconds: Wall-clock limit for the run (0 disables it)
        total_rows_sent: Rows acknowledged by the server across all tables
        rows_for_current_table: Rows acknowledged for the source being sent
        last_ack_count: Row count of the most recent acknowledgment
        table_rows: Acknowledged rows per table, for the run summary
        messages: Notes added to the run summary
    """
    max_run_time_seconds: float = field(default_factory=lambda: settings.MAX_RUN_TIME_SECONDS)
    username: Optional[str] = field(default_factory=lambda: settings.CLIENT_NAME)
    clock: Callable[[], float] = time.monotonic
    started_at: Optional[float] = None
    started_epoch_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    total_rows_sent: int = 0
    rows_for_current_table: int = 0
    server_accepting_data: bool = True
    last_ack_count: int = 0
    table_rows: Dict[str, int] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.started_at is None:
            self.started_at = self.clock()

    # ------------------------------------------------------------------
    # Run limits
    # ------------------------------------------------------------------

    def elapsed_seconds(self) -> float:
        return self.clock() - self.started_at

    def remaining_seconds(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no limit."""
        if self.max_run_time_seconds <= 0:
            return None
        return self.max_run_time_seconds - self.elapsed_seconds()

    def max_time_passed(self) -> bool:
        remaining = self.remaining_seconds()
        return remaining is not None and remaining <= 0

    def continue_sending(self) -> bool:
        return self.server_accepting_data and not self.max_time_passed()

    def stop_accepting_data(self):
        """Record the server's upload-disabled signal; terminal for the run."""
        if not self.server_accepting_data:
            return
        self.server_accepting_data = False
        logger.warning("Server is not accepting data, sending has stopped for this run")

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def start_table(self, name: str):
        self.rows_for_current_table = 0
        self.table_rows.setdefault(name, 0)

    def record_ack(self, name: str, rows: int):
        """Count rows the server acknowledged; the server's count is authoritative."""
        self.last_ack_count = rows
        self.total_rows_sent += rows
        self.rows_for_current_table += rows
        self.table_rows[name] = self.table_rows.get(name, 0) + rows

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary(self) -> UploadSummary:
        messages = list(self.messages)
        if not self.server_accepting_data:
            messages.append(UPLOAD_DISABLED_SUMMARY)
        if self.max_time_passed():
            messages.append(
                f"Max time limit has expired.  Max time limit was [{self.max_run_time_seconds}]"
            )
        return UploadSummary(
            username=self.username,
            starttime=self.started_epoch_ms,
            endtime=int(time.time() * 1000),
            total_rows_sent=self.total_rows_sent,
            query_info=dict(self.table_rows),
            messages=messages
        )
