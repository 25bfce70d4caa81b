"""
Row sources: cursor-style readers over query results and delimited files.

Modules:
    base: RowSource contract and the shared text-backed implementation
    query: Rows from a SQLAlchemy result
    generated: Rows from an internally generated extract file
    external: Rows from a customer file, with header matching and quarantine
    quarantine: Writer for rejected raw rows
"""

__all__ = [
    "RowSource",
    "TextRowSource",
    "QueryRowSource",
    "GeneratedFileRowSource",
    "ExternalFileRowSource",
    "QuarantineWriter",
]
