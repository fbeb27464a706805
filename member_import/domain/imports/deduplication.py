"""
Identity resolution and duplicate filtering for member imports.

A member is recognised by an identity value (normally an email). Rows whose
identity already exists for the same community, or repeats an earlier row
of the same batch, are reported as duplicates and never written.
"""
import logging
from typing import Dict, Iterable, List, Optional, Set

from member_import.domain.imports.models import (
    AnswerKey,
    CandidateRecord,
    CreateNew,
    DeduplicationResult,
    FieldMapping,
    Schema,
    identity_question,
)

logger = logging.getLogger(__name__)


def normalize_identity(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


def resolve_identity(
    answers: Dict[AnswerKey, str],
    mapping: FieldMapping,
    schema: Schema,
    identity_keyword: str = "email",
) -> Optional[str]:
    """
    Pick the identity value for one row.

    Resolution order:
    1. The answer to the identity question (schema element 0).
    2. The first new field whose source column name contains ``identity_keyword``.
    3. None: the row cannot be deduplicated.
    """
    question = identity_question(schema)
    if question is not None:
        value = normalize_identity(answers.get(question.id))
        if value:
            return value

    keyword = identity_keyword.lower()
    for column, target in mapping.items():
        if isinstance(target, CreateNew) and keyword in column.lower():
            value = normalize_identity(answers.get(target))
            if value:
                return value

    return None


def assign_identities(
    candidates: List[CandidateRecord],
    mapping: FieldMapping,
    schema: Schema,
    identity_keyword: str = "email",
) -> List[CandidateRecord]:
    for candidate in candidates:
        candidate.identity_value = resolve_identity(candidate.answers, mapping, schema, identity_keyword)
    return candidates


def partition_duplicates(
    candidates: Iterable[CandidateRecord],
    existing_identities: Iterable[str],
) -> DeduplicationResult:
    """
    Split candidates into rows to create and rows that are duplicates.

    ``existing_identities`` must already be scoped to the community being
    imported into. Comparison is case-insensitive. A row repeating the
    identity of an earlier row in the same batch is also a duplicate.
    Rows without an identity are always created.
    """
    seen: Set[str] = {i.strip().lower() for i in existing_identities if i}
    result = DeduplicationResult()

    for candidate in candidates:
        identity = normalize_identity(candidate.identity_value)
        if identity and identity in seen:
            candidate.is_duplicate = True
            result.duplicates.append(candidate)
            continue
        candidate.is_duplicate = False
        if identity:
            seen.add(identity)
        result.to_create.append(candidate)

    if result.duplicates:
        logger.info(
            "Skipping %d duplicate rows: %s",
            len(result.duplicates),
            result.duplicate_identities,
        )
    return result


def rows_without_identity(candidates: Iterable[CandidateRecord]) -> List[int]:
    """Row numbers that need an identity assigned by hand after import."""
    return [c.row_number for c in candidates if not c.identity_value]
