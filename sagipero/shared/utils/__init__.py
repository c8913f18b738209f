"""Shared utilities for the Sagipero client."""
from .pii import redact_id, configure_log_salt
from .timestamps import utcnow, parse_timestamp, bucket

__all__ = ["redact_id", "configure_log_salt", "utcnow", "parse_timestamp", "bucket"]
