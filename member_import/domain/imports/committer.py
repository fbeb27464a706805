"""
Transactional commit of an admitted import batch.

Everything with a side effect happens here, inside one transaction on the
store's session: lock the form, grow its schema, read existing identities,
drop duplicates and insert the remaining members. Any failure rolls the
whole batch back, schema growth included.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from member_import.db.forms import FormStore
from member_import.domain.imports.deduplication import partition_duplicates, rows_without_identity
from member_import.domain.imports.exceptions import PersistenceError
from member_import.domain.imports.models import (
    CandidateRecord,
    CreateNew,
    Decision,
    ImportResult,
    SchemaExtension,
)
from member_import.domain.imports.schema_extender import extend_schema, used_labels_of

logger = logging.getLogger(__name__)


def resolve_answer_keys(candidate: CandidateRecord, label_ids: Dict[str, str]) -> Dict[str, str]:
    """Replace CreateNew sentinel keys with the ids of the questions minted for them."""
    responses: Dict[str, str] = {}
    for key, value in candidate.answers.items():
        if isinstance(key, CreateNew):
            question_id = label_ids.get(key.label)
            if question_id is None:
                logger.warning("No question was created for new field '%s'; dropping its answer", key.label)
                continue
            if question_id in responses:
                continue
            responses[question_id] = value
        else:
            responses.setdefault(key, value)
    return responses


def build_import_message(imported: int, duplicates: int, new_fields: int) -> str:
    message = f"Successfully imported {imported} members"
    if duplicates:
        message += f". {duplicates} duplicates were skipped."
    if new_fields:
        message += f" Created {new_fields} new fields."
    return message


def commit_batch(
    store: FormStore,
    community_id: str,
    candidates: List[CandidateRecord],
    new_labels: List[str],
    default_decision: Optional[Decision] = None,
) -> ImportResult:
    """
    Persist schema growth and new members atomically.

    Args:
        store: Form storage bound to the session that owns the transaction.
        community_id: Community being imported into; duplicates are scoped to it.
        candidates: Validated, selected candidates with identities resolved.
        new_labels: Labels of the fields to create (CreateNew targets).
        default_decision: Decision for candidates that carry none.

    Returns:
        ImportResult with counts and the identities of skipped duplicates.

    Raises:
        PersistenceError: the transaction failed and was rolled back.
    """
    db = store.db
    try:
        form = store.lock_form(community_id)
        schema = store.read_schema(form)

        extension = SchemaExtension(extended_schema=schema)
        if new_labels:
            extension = extend_schema(new_labels, schema, used_labels_of(schema))
            if extension.new_questions:
                store.write_schema(form, extension.extended_schema)

        existing = store.existing_identities(
            community_id, [c.identity_value for c in candidates if c.identity_value]
        )
        dedup = partition_duplicates(candidates, existing)

        records: List[Dict[str, Any]] = []
        for candidate in dedup.to_create:
            decision = candidate.decision or default_decision or Decision.PENDING
            records.append(
                {
                    "email": candidate.identity_value,
                    "status": decision.value,
                    "responses": resolve_answer_keys(candidate, extension.label_ids),
                }
            )
        store.insert_records(form, records)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Bulk import into community %s failed; transaction rolled back: %s", community_id, e)
        raise PersistenceError() from e
    except BaseException:
        db.rollback()
        logger.warning("Bulk import into community %s interrupted; transaction rolled back", community_id)
        raise

    new_fields = [q.label for q in extension.new_questions]
    needs_identity = rows_without_identity(dedup.to_create)
    if needs_identity:
        logger.warning("Imported %d rows without an identity value: rows %s", len(needs_identity), needs_identity)

    result = ImportResult(
        imported=len(records),
        duplicates=len(dedup.duplicates),
        duplicate_identities=dedup.duplicate_identities,
        new_fields_created=len(new_fields),
        new_fields=new_fields,
        total=len(candidates),
        needs_identity_rows=needs_identity,
        message=build_import_message(len(records), len(dedup.duplicates), len(new_fields)),
    )
    logger.info(
        "Committed import into community %s: %d imported, %d duplicates, %d new fields",
        community_id,
        result.imported,
        result.duplicates,
        result.new_fields_created,
    )
    return result
