"""Workflow orchestrators composing ingest, inference and persistence."""

from .detect_flow import detect_subscriptions
from .import_flow import import_statement, import_statement_file

__all__ = ["detect_subscriptions", "import_statement", "import_statement_file"]
