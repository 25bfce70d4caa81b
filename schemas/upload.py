"""
Pydantic schemas for the upload wire protocol
"""

from enum import Enum, IntEnum
from pydantic import BaseModel, Field
from typing import Optional, List, Dict


# ============================================================================
# Commands and upload types
# ============================================================================

class UploadCommand(IntEnum):
    """Integer command selecting the server-side handler"""
    QUERY_RESULT_UPLOAD = 1
    QUERY_SUMMARY = 2
    QUERY_CSV_UPLOAD = 3
    QUERY_SUMMARY_CSV = 6
    CSV_CLEAN_DATA_CHECK = 9
    CUSTOMER_CSV_UPLOAD = 12
    CUSTOMER_SUMMARY_CSV = 13
    CUSTOMER_FILEDEF_UPLOAD = 14


UPLOAD_PATH = "/upload.htm"
CUSTOMER_CSV_PATH = "/upload/submitCSVFileUpload.htm"
FILE_DEFINITION_PATH = "/admin/submitCSVFileDef.htm"
QUERY_PATH = "/query.htm"


class UploadType(str, Enum):
    """What kind of rows a transfer carries"""
    INCREMENTAL_QUERY_LOAD = "incremental_query_load"
    INITIAL_CSV = "initial_csv"
    CUSTOMER_CSV = "customer_csv"
    CUSTOMER_CSV_FILEDEF = "customer_csv_filedef"

    @property
    def command(self) -> UploadCommand:
        return {
            UploadType.INCREMENTAL_QUERY_LOAD: UploadCommand.QUERY_RESULT_UPLOAD,
            UploadType.INITIAL_CSV: UploadCommand.QUERY_CSV_UPLOAD,
            UploadType.CUSTOMER_CSV: UploadCommand.CUSTOMER_CSV_UPLOAD,
            UploadType.CUSTOMER_CSV_FILEDEF: UploadCommand.CUSTOMER_FILEDEF_UPLOAD,
        }[self]

    @property
    def summary_command(self) -> UploadCommand:
        if self is UploadType.CUSTOMER_CSV:
            return UploadCommand.CUSTOMER_SUMMARY_CSV
        if self is UploadType.INITIAL_CSV:
            return UploadCommand.QUERY_SUMMARY_CSV
        return UploadCommand.QUERY_SUMMARY

    @property
    def path(self) -> str:
        if self is UploadType.CUSTOMER_CSV:
            return CUSTOMER_CSV_PATH
        if self is UploadType.CUSTOMER_CSV_FILEDEF:
            return FILE_DEFINITION_PATH
        return UPLOAD_PATH

    @property
    def summary_path(self) -> str:
        return CUSTOMER_CSV_PATH if self is UploadType.CUSTOMER_CSV else UPLOAD_PATH


# ============================================================================
# Payloads
# ============================================================================

class ColumnPayload(BaseModel):
    name: str
    type: str
    format_string: Optional[str] = Field(None, serialization_alias="formatString")


class RowPayload(BaseModel):
    results: List[str]


class BatchPayload(BaseModel):
    """JSON body of one batch upload"""
    name: str
    columns: List[ColumnPayload]
    rows: List[RowPayload]
    checksum: Optional[int] = None
    row_count: int = Field(..., ge=0, serialization_alias="rowCount")
    was_cut_short: bool = Field(False, serialization_alias="wasCutShort")
    lake_only: bool = Field(False, serialization_alias="lakeOnly")
    query_time: int = Field(-1, serialization_alias="queryTime")


class UploadSummary(BaseModel):
    """Per-connection summary sent at the end of a run"""
    username: Optional[str] = None
    starttime: int
    endtime: Optional[int] = None
    total_rows_sent: int = Field(0, serialization_alias="totalRowsSent")
    query_info: Dict[str, int] = Field(default_factory=dict, serialization_alias="queryInfo")
    messages: List[str] = Field(default_factory=list)


# ============================================================================
# Responses
# ============================================================================

class UploadAcknowledge(BaseModel):
    """Server reply confirming how many rows of a batch were accepted"""
    message: Optional[str] = None
    rows_uploaded: int = Field(0, alias="rowsUploaded")
    success: bool = False

    class Config:
        populate_by_name = True
