"""
Row materialization and required-field checks for member imports.

A batch is admitted only if every selected row answers every required
question. One bad row rejects the whole batch before anything is written.
"""

import logging
from typing import Collection, Dict, List, Optional, Tuple

from member_import.domain.imports.exceptions import ValidationError
from member_import.domain.imports.models import (
    AnswerKey,
    CandidateRecord,
    CreateNew,
    Decision,
    ExistingQuestion,
    FieldMapping,
    RawRow,
    Schema,
)

logger = logging.getLogger(__name__)


def build_answers(row: RawRow, mapping: FieldMapping) -> Dict[AnswerKey, str]:
    """
    Collect the answers a row gives through its mapped columns.

    Skipped columns and empty values are left out. When several columns feed
    the same question, the first non-empty value (in mapping order) wins.
    """
    answers: Dict[AnswerKey, str] = {}
    for column, target in mapping.items():
        if isinstance(target, ExistingQuestion):
            key: AnswerKey = target.question_id
        elif isinstance(target, CreateNew):
            key = target
        else:
            continue

        value = (row.get(column) or "").strip()
        if not value or key in answers:
            continue
        answers[key] = value
    return answers


def missing_required(answers: Dict[AnswerKey, str], schema: Schema) -> List[str]:
    """Return labels of required questions that have no non-empty answer."""
    return [
        q.label
        for q in schema
        if q.required and not (answers.get(q.id) or "").strip()
    ]


def row_decision(row: RawRow, default: Decision, status_column: Optional[str] = "status") -> Decision:
    """Use the row's own status column when it names a valid decision, else ``default``."""
    if status_column:
        for column, value in row.items():
            if column.strip().lower() == status_column.lower():
                parsed = Decision.parse(value)
                if parsed is not None:
                    return parsed
                break
    return default


def build_candidates(
    rows: List[RawRow],
    mapping: FieldMapping,
    schema: Schema,
    default_decision: Decision = Decision.PENDING,
    excluded_rows: Optional[Collection[int]] = None,
    status_column: Optional[str] = "status",
) -> Tuple[List[CandidateRecord], Dict[int, List[str]]]:
    """
    Turn every row into a CandidateRecord and note what each selected row is missing.

    Row numbers are 1-indexed data rows (the header is not counted).
    Each row is handled on its own; no row's outcome depends on another.

    Returns:
        Tuple of (candidates, missing) where ``missing`` maps row number to
        the labels of unanswered required questions, for selected rows only.
    """
    excluded = set(excluded_rows or ())
    candidates: List[CandidateRecord] = []
    missing: Dict[int, List[str]] = {}

    for row_number, row in enumerate(rows, start=1):
        answers = build_answers(row, mapping)
        candidate = CandidateRecord(
            row_number=row_number,
            answers=answers,
            decision=row_decision(row, default_decision, status_column),
            selected=row_number not in excluded,
        )
        candidates.append(candidate)

        if not candidate.selected:
            continue
        labels = missing_required(answers, schema)
        if labels:
            missing[row_number] = labels

    return candidates, missing


def validate_batch(
    rows: List[RawRow],
    mapping: FieldMapping,
    schema: Schema,
    default_decision: Decision = Decision.PENDING,
    excluded_rows: Optional[Collection[int]] = None,
    status_column: Optional[str] = "status",
) -> List[CandidateRecord]:
    """
    Admit a batch only when every selected row is complete.

    Returns:
        The selected candidates, in row order.

    Raises:
        ValidationError: listing every offending row; nothing may be persisted.
    """
    candidates, missing = build_candidates(
        rows,
        mapping,
        schema,
        default_decision=default_decision,
        excluded_rows=excluded_rows,
        status_column=status_column,
    )

    if missing:
        invalid_rows = sorted(missing)
        logger.warning(
            "Rejecting import batch: %d of %d rows missing required answers (rows %s)",
            len(invalid_rows),
            len(rows),
            invalid_rows,
        )
        raise ValidationError(invalid_rows, missing)

    selected = [c for c in candidates if c.selected]
    logger.info("Validated %d rows (%d excluded by caller)", len(selected), len(candidates) - len(selected))
    return selected
