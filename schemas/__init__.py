"""
Pydantic schemas for configuration and wire serialization.

This package defines Pydantic models for the definitions the client is
configured with and for the payloads exchanged with the collection server:

Schemas:
    definitions: Query definitions and external file definitions
    upload: Upload commands, batch payloads, summaries and acknowledgments

Usage:
    from schemas.definitions import QueryDefinition, FileDefinitionSpec
    from schemas.upload import UploadAcknowledge, UploadType

Example:
    # Load a file definition from JSON configuration
    spec = FileDefinitionSpec.model_validate_json(raw_json)
    schema = FileSchema.from_spec(spec)

    # Parse an acknowledgment
    ack = UploadAcknowledge.model_validate_json(response_text)
    assert ack.rows_uploaded >= 0
"""

__all__ = [
    "ColumnSpec",
    "FileColumnSpec",
    "FileDefinitionSpec",
    "FileDefinitionUpload",
    "QueryDefinition",
    "UploadCommand",
    "UploadType",
    "BatchPayload",
    "UploadSummary",
    "UploadAcknowledge",
]
