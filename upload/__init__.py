"""
Upload protocol and run orchestration.

Modules:
    session: Per-run counters, backpressure flag and deadline
    client: Batch transmission with acknowledgment reconciliation
    runner: Outer retry, per-source isolation and the run result

Usage:
    from upload.runner import TransferRunner, GeneratedFileJob

Example:
    result = TransferRunner().run([GeneratedFileJob("orders.csv")])
    raise SystemExit(result["exit_code"])
"""

__all__ = [
    "UploadSession",
    "UploadClient",
    "TransferRunner",
    "QueryJob",
    "GeneratedFileJob",
    "ExternalFileJob",
    "FileDefinitionJob",
]
