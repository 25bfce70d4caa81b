"""
Pydantic schemas for query and file definitions
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import date


COLUMN_STATUSES = ("REQUIRED", "NOTREQUIRED", "OMITTED")


class ColumnSpec(BaseModel):
    """One column of a query result as described by configuration"""
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    format_string: Optional[str] = Field(None, alias="formatString")

    class Config:
        populate_by_name = True


class FileColumnSpec(ColumnSpec):
    """One column of an external file type, with header aliases and status"""
    aliases: List[str] = Field(default_factory=list)
    column_status: str = Field("NOTREQUIRED", alias="columnStatus")

    @validator("aliases", pre=True)
    def split_aliases(cls, v):
        """Accept a single alias string or a list"""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return list(v)

    @validator("column_status", pre=True)
    def check_status(cls, v):
        """Normalize and validate column status"""
        if v is None:
            return "NOTREQUIRED"
        v = str(v).strip().upper()
        if v not in COLUMN_STATUSES:
            raise ValueError(f"columnStatus must be one of {', '.join(COLUMN_STATUSES)}")
        return v


class FileDefinitionSpec(BaseModel):
    """
    Schema configuration for one external file type.

    Serialized with the same keys the collection server uses for file
    definition uploads.
    """
    data_table_name: str = Field(..., min_length=1, alias="dataTableName")
    column_defs: List[FileColumnSpec] = Field(default_factory=list, alias="columnDefs")

    class Config:
        populate_by_name = True


class FileDefinitionUpload(BaseModel):
    """Payload wrapper for the file definition upload command"""
    file_definitions: List[FileDefinitionSpec] = Field(default_factory=list, alias="fileDefinitions")

    class Config:
        populate_by_name = True


class QueryDefinition(BaseModel):
    """
    One extraction query with its resolved SQL text.

    Only ``sql`` is required. Chunked extraction uses ``chunk_sql`` with
    ``:earlier`` and ``:later`` bind parameters (either may be NULL for an
    open bound); incremental extraction uses ``incremental_sql`` with
    ``:since``.
    """
    name: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)
    columns: List[ColumnSpec] = Field(default_factory=list)

    count_sql: Optional[str] = Field(None, alias="countSql")
    checksum_sql: Optional[str] = Field(None, alias="checksumSql")
    last_checksum: Optional[int] = Field(None, alias="lastChecksum")

    incremental_sql: Optional[str] = Field(None, alias="incrementalSql")
    since: Optional[date] = None

    chunk_sql: Optional[str] = Field(None, alias="chunkSql")
    null_chunk_sql: Optional[str] = Field(None, alias="nullChunkSql")
    earliest_date_sql: Optional[str] = Field(None, alias="earliestDateSql")

    version: Optional[str] = None

    class Config:
        populate_by_name = True

    @property
    def chunked(self) -> bool:
        return bool(self.chunk_sql)
