"""
Runtime growth of an application form's question list.

Columns the caller promotes to new fields become free-text, optional
questions appended to the end of the schema. Existing questions are never
changed or removed.
"""
import logging
import time
from typing import Callable, Iterable, List, Optional, Set
from uuid import uuid4

from member_import.domain.imports.models import (
    CreateNew,
    FieldMapping,
    QuestionDefinition,
    QuestionType,
    Schema,
    SchemaExtension,
)

logger = logging.getLogger(__name__)


def generate_question_id() -> str:
    """Return a fresh question id such as ``question_1718000000000_3f9a1c2b7``."""
    return f"question_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


def requested_labels(mapping: FieldMapping, headers: List[str]) -> List[str]:
    """Labels of every CreateNew target, in header order, without repeats."""
    labels: List[str] = []
    for header in headers:
        target = mapping.get(header)
        if isinstance(target, CreateNew) and target.label not in labels:
            labels.append(target.label)
    return labels


def used_labels_of(schema: Schema) -> Set[str]:
    return {q.label.strip().lower() for q in schema}


def extend_schema(
    labels: Iterable[str],
    schema: Schema,
    used_labels: Set[str],
    id_factory: Optional[Callable[[], str]] = None,
) -> SchemaExtension:
    """
    Mint one question per distinct requested label.

    Args:
        labels: Labels requested through CreateNew targets (repeats collapse).
        schema: Current schema; left untouched.
        used_labels: Lowercased labels already present on the form. A requested
            label found here resolves to the existing question instead of a
            second field with the same name; when no question carries it, one
            is created.
        id_factory: Override for question id generation.

    Returns:
        SchemaExtension with the minted questions, the extended snapshot and
        the id every requested label resolves to.
    """
    make_id = id_factory or generate_question_id
    by_label = {q.label.strip().lower(): q.id for q in schema}
    taken = set(used_labels)

    new_questions: List[QuestionDefinition] = []
    label_ids = {}

    for label in labels:
        if label in label_ids:
            continue
        key = label.strip().lower()
        if key in taken:
            existing_id = by_label.get(key)
            if existing_id is None:
                # Taken by a question minted earlier in this call
                existing_id = next((q.id for q in new_questions if q.label.strip().lower() == key), None)
            if existing_id is not None:
                label_ids[label] = existing_id
                logger.debug("Label '%s' already exists on the form; reusing question '%s'", label, existing_id)
                continue
            logger.debug("Label '%s' is marked used but no question carries it; creating one", label)

        question = QuestionDefinition(
            id=make_id(),
            label=label,
            type=QuestionType.TEXT,
            required=False,
            placeholder=f"Enter {label}",
            options=[],
        )
        new_questions.append(question)
        label_ids[label] = question.id
        taken.add(key)

    if new_questions:
        logger.info(
            "Extending form schema with %d new questions: %s",
            len(new_questions),
            [q.label for q in new_questions],
        )

    return SchemaExtension(
        new_questions=new_questions,
        extended_schema=list(schema) + new_questions,
        label_ids=label_ids,
    )
