"""
Column-to-question mapping for member imports.

The detected mapping is advisory: the caller reviews it and may override any
column before the import runs. Detection never proposes new fields on its
own; unmatched columns default to Skip.
"""

import logging
from typing import Dict, List, Mapping, Optional

from member_import.domain.imports.exceptions import InvalidMappingError
from member_import.domain.imports.models import (
    CreateNew,
    ExistingQuestion,
    FieldMapping,
    MappingTarget,
    Schema,
    Skip,
)

logger = logging.getLogger(__name__)

CANONICAL_KEYWORDS = ("email", "name", "phone", "linkedin")


def labels_match(column: str, label: str) -> bool:
    """
    Return True when a column name and a question label look like the same field.

    Both sides are lowercased. They match when either contains the other, or
    when both contain the same canonical keyword.

    Examples:
        ("email", "Best email")        -> True   (containment)
        ("Full Name", "Your name")     -> True   (shared keyword "name")
        ("twitter", "LinkedIn URL")    -> False
    """
    column_lower = column.lower()
    label_lower = label.lower()
    if not column_lower or not label_lower:
        return False

    if column_lower in label_lower or label_lower in column_lower:
        return True

    return any(
        keyword in column_lower and keyword in label_lower
        for keyword in CANONICAL_KEYWORDS
    )


def find_matching_question(column: str, schema: Schema) -> Optional[str]:
    """Return the id of the first question in schema order matching ``column``."""
    for question in schema:
        if labels_match(column, question.label):
            return question.id
    return None


def detect_field_mapping(headers: List[str], schema: Schema) -> FieldMapping:
    """
    Propose a target for every column in ``headers``.

    Pure function of its inputs: the same headers and schema always yield
    the same mapping.
    """
    mapping: FieldMapping = {}
    for header in headers:
        question_id = find_matching_question(header, schema) if header.strip() else None
        if question_id:
            mapping[header] = ExistingQuestion(question_id=question_id)
            logger.debug(f"Mapped column '{header}' to question '{question_id}'")
        else:
            mapping[header] = Skip()
            logger.debug(f"No match found for column '{header}' - defaulting to skip")

    matched = sum(1 for target in mapping.values() if isinstance(target, ExistingQuestion))
    logger.info("Detected mapping: %d of %d columns matched existing questions", matched, len(headers))
    return mapping


def apply_mapping_overrides(
    detected: FieldMapping,
    overrides: Optional[Mapping[str, MappingTarget]],
    headers: List[str],
    schema: Schema,
) -> FieldMapping:
    """
    Merge caller overrides into a detected mapping and check them.

    Raises:
        InvalidMappingError: an override names an unknown column or points at
            a question id that is not part of the schema.
    """
    final: FieldMapping = dict(detected)
    for header in headers:
        final.setdefault(header, Skip())

    if not overrides:
        return final

    known_columns = set(headers)
    question_ids = {q.id for q in schema}

    for column, target in overrides.items():
        if column not in known_columns:
            raise InvalidMappingError(f"Mapping refers to unknown column '{column}'")
        if isinstance(target, ExistingQuestion) and target.question_id not in question_ids:
            raise InvalidMappingError(
                f"Column '{column}' is mapped to unknown question '{target.question_id}'"
            )
        if isinstance(target, CreateNew) and not target.label.strip():
            raise InvalidMappingError(f"Column '{column}' asks for a new field without a label")
        final[column] = target

    return final


def mapping_summary(mapping: FieldMapping) -> Dict[str, int]:
    """Count columns per target kind, for logs and API responses."""
    summary = {"existing": 0, "create_new": 0, "skip": 0}
    for target in mapping.values():
        summary[target.kind] += 1
    return summary
