"""Statement ingestion: vendor export formats to :class:`StatementTransaction`."""

from .statement_xml import as_sequence, iter_statement_entries, load_document_tree, parse_statement

__all__ = ["as_sequence", "iter_statement_entries", "load_document_tree", "parse_statement"]
