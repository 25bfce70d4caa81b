"""
Core utilities and configuration for the rowlift data mover.

This package provides foundational components used throughout the client:

Modules:
    config: Application configuration and environment variable management
    database: Source database engine and connection management
    exceptions: Tiered exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import source_connection
    from core.exceptions import TransmissionError, StuckUploadError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get a source database connection
    with source_connection() as connection:
        # Run extraction queries
        pass
"""

__all__ = [
    "settings",
    "source_connection",
    "setup_logging",
    # Exceptions
    "DataMoverException",
    "RowError",
    "ColumnValueError",
    "RequiredValueMissingError",
    "UnparseableValueError",
    "SourceError",
    "SourceReadError",
    "GeneratedFileFormatError",
    "HeaderValidationError",
    "ConfigurationError",
    "UnknownColumnTypeError",
    "SchemaCompositionError",
    "UploadError",
    "TransmissionError",
    "ServerUnavailableError",
    "ServerResponseError",
    "AuthenticationError",
    "StuckUploadError",
    "AttemptsExhaustedError",
    "CleanDataCheckError",
    "RetryableError",
    "NonRetryableError",
]
