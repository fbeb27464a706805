"""Exceptions raised by the bulk import pipeline."""
from typing import Dict, List, Optional


class BulkImportError(Exception):
    """Base class for every failure the import pipeline reports."""


class ParseError(BulkImportError):
    """The uploaded file is empty or could not be read as a table."""


class InvalidMappingError(BulkImportError):
    """A caller-supplied mapping override points at a column or question that does not exist."""


class FormNotFoundError(BulkImportError):
    """The community has no application form to import into."""

    def __init__(self, community_id: str, message: str = None):
        self.community_id = community_id
        self.message = message or f"Community '{community_id}' has no application form"
        super().__init__(self.message)


class ValidationError(BulkImportError):
    """One or more rows leave a required question unanswered; nothing was imported."""

    def __init__(self, invalid_rows: List[int], missing: Optional[Dict[int, List[str]]] = None):
        self.invalid_rows = invalid_rows
        self.missing = missing or {}
        rows = ", ".join(str(r) for r in invalid_rows)
        self.message = f"Members at rows {rows} are missing required fields"
        super().__init__(self.message)


class PersistenceError(BulkImportError):
    """The import transaction failed and was rolled back; the request can be retried."""

    def __init__(self, message: str = "Failed to import members"):
        self.message = message
        super().__init__(message)
