"""
Member bulk import orchestration.

Wires the pipeline stages together:

    parse -> detect mapping (+ caller overrides) -> validate -> resolve identities
          -> commit (schema growth, dedup, inserts in one transaction)

Every stage before the commit is pure, so a failure there leaves nothing
behind and the request can simply be retried.
"""

import logging
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy.orm import Session

from member_import.core.config import settings
from member_import.db.forms import FormStore
from member_import.domain.imports.committer import commit_batch
from member_import.domain.imports.deduplication import assign_identities, partition_duplicates
from member_import.domain.imports.mapper import apply_mapping_overrides, detect_field_mapping, mapping_summary
from member_import.domain.imports.models import (
    CandidateRecord,
    Decision,
    FieldMapping,
    ImportResult,
    MappingTarget,
    RawRow,
    Schema,
)
from member_import.domain.imports.processors.csv_processor import parse_csv_text, parse_upload
from member_import.domain.imports.schema_extender import requested_labels
from member_import.domain.imports.validators import build_candidates, validate_batch

logger = logging.getLogger(__name__)

UploadContent = Union[str, bytes]


@dataclass
class ImportPreview:
    headers: List[str]
    schema: Schema
    mapping: FieldMapping
    candidates: List[CandidateRecord]
    invalid_rows: List[int] = field(default_factory=list)
    missing: Dict[int, List[str]] = field(default_factory=dict)
    new_fields: List[str] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for c in self.candidates if c.selected and c.is_duplicate)


def parse_content(content: UploadContent, file_name: Optional[str] = None) -> Tuple[List[str], List[RawRow]]:
    if isinstance(content, str):
        return parse_csv_text(content)
    return parse_upload(content, file_name)


def _resolve_decision(default_decision: Optional[Union[Decision, str]]) -> Decision:
    if isinstance(default_decision, Decision):
        return default_decision
    return Decision.parse(default_decision) or Decision.parse(settings.default_decision) or Decision.PENDING


def detect_mapping_for_upload(
    db: Session,
    community_id: str,
    content: UploadContent,
    file_name: Optional[str] = None,
) -> Tuple[List[str], List[RawRow], FieldMapping, Schema]:
    """Parse an upload and propose a mapping against the community's current form."""
    headers, rows = parse_content(content, file_name)
    store = FormStore(db)
    schema = store.read_schema(store.get_form(community_id))
    mapping = detect_field_mapping(headers, schema)
    return headers, rows, mapping, schema


def preview_bulk_import(
    db: Session,
    community_id: str,
    content: UploadContent,
    file_name: Optional[str] = None,
    mapping_overrides: Optional[Mapping[str, MappingTarget]] = None,
    default_decision: Optional[Union[Decision, str]] = None,
    excluded_rows: Optional[Collection[int]] = None,
) -> ImportPreview:
    """
    Run every pure stage and flag duplicates against stored members, without writing.

    Unlike the import itself, invalid rows are reported rather than raised
    so the caller can fix or exclude them.
    """
    headers, rows, detected, schema = detect_mapping_for_upload(db, community_id, content, file_name)
    mapping = apply_mapping_overrides(detected, mapping_overrides, headers, schema)

    candidates, missing = build_candidates(
        rows,
        mapping,
        schema,
        default_decision=_resolve_decision(default_decision),
        excluded_rows=excluded_rows,
        status_column=settings.status_column,
    )
    assign_identities(candidates, mapping, schema, settings.identity_keyword)

    store = FormStore(db)
    existing = store.existing_identities(
        community_id, [c.identity_value for c in candidates if c.identity_value]
    )
    partition_duplicates([c for c in candidates if c.selected], existing)

    return ImportPreview(
        headers=headers,
        schema=schema,
        mapping=mapping,
        candidates=candidates,
        invalid_rows=sorted(missing),
        missing=missing,
        new_fields=requested_labels(mapping, headers),
    )


def run_bulk_import(
    db: Session,
    community_id: str,
    content: UploadContent,
    file_name: Optional[str] = None,
    mapping_overrides: Optional[Mapping[str, MappingTarget]] = None,
    default_decision: Optional[Union[Decision, str]] = None,
    excluded_rows: Optional[Collection[int]] = None,
) -> ImportResult:
    """
    Import every selected row of an upload into a community's member list.

    Args:
        db: Session whose transaction the commit stage uses.
        community_id: Community that owns the target application form.
        content: CSV text, or raw upload bytes (CSV or Excel, by ``file_name``).
        mapping_overrides: Column -> target entries replacing the detected mapping.
        default_decision: Decision for rows without a valid status column value.
        excluded_rows: 1-indexed data rows the caller deselected.

    Returns:
        ImportResult summarizing the commit.

    Raises:
        ParseError: The upload is empty or unreadable.
        InvalidMappingError: An override refers to an unknown column or question.
        FormNotFoundError: The community has no application form.
        ValidationError: A selected row misses a required answer; nothing was written.
        PersistenceError: The transaction failed and was rolled back.
    """
    decision = _resolve_decision(default_decision)
    logger.info("Starting bulk import into community %s (file: %s)", community_id, file_name or "<text>")

    headers, rows, detected, schema = detect_mapping_for_upload(db, community_id, content, file_name)
    mapping = apply_mapping_overrides(detected, mapping_overrides, headers, schema)
    logger.info("Final mapping for community %s: %s", community_id, mapping_summary(mapping))

    candidates = validate_batch(
        rows,
        mapping,
        schema,
        default_decision=decision,
        excluded_rows=excluded_rows,
        status_column=settings.status_column,
    )
    assign_identities(candidates, mapping, schema, settings.identity_keyword)

    return commit_batch(
        FormStore(db),
        community_id,
        candidates,
        requested_labels(mapping, headers),
        default_decision=decision,
    )
