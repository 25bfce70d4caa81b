"""
Quarantine ("bad file") writer for rejected rows
"""

import csv
from pathlib import Path
from typing import List, Optional, Union
import logging

from core.config import settings

logger = logging.getLogger(__name__)


class QuarantineWriter:
    """
    Collects raw rows that failed validation, for operator remediation.

    The file is created on the first rejected row, starting with the
    header of the input file; nothing is written for a clean pass.
    """

    def __init__(self, path: Union[str, Path], header: List[str]):
        self.path = Path(path)
        self.header = list(header)
        self.rows_written = 0
        self._handle = None
        self._closed = False

    @property
    def opened(self) -> bool:
        return self._handle is not None

    def write_raw(self, raw_row: str):
        """Write one raw row verbatim, writing the header first if needed."""
        if self._closed:
            raise ValueError(f"Quarantine file {self.path} is closed")

        if self._handle is None:
            logger.info(f"Opening quarantine file {self.path}")
            self._handle = open(self.path, "w", encoding="utf-8", newline="")
            csv.writer(self._handle, lineterminator="\n").writerow(self.header)

        self._handle.write(raw_row.rstrip("\r\n") + "\n")
        self.rows_written += 1

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.close()
            logger.info(f"Wrote {self.rows_written} rejected rows to {self.path}")


def quarantine_path_for(path: Union[str, Path], suffix: Optional[str] = None) -> Path:
    """Input file name plus the quarantine suffix ('policies.csv' -> 'policies.csv.bad')."""
    path = Path(path)
    return path.with_name(path.name + (suffix if suffix is not None else settings.QUARANTINE_SUFFIX))
