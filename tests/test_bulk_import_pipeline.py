"""
End-to-end tests of the import pipeline against an in-memory SQLite database.
"""

import pytest
from sqlalchemy.exc import OperationalError

from member_import.db.forms import FormStore, create_community_with_form
from member_import.domain.imports.committer import commit_batch
from member_import.domain.imports.exceptions import (
    FormNotFoundError,
    PersistenceError,
    ValidationError,
)
from member_import.domain.imports.models import CandidateRecord, CreateNew, Decision, QuestionDefinition
from member_import.domain.imports.orchestrator import preview_bulk_import, run_bulk_import


MEMBERS_CSV = "\n".join(
    [
        "name,email,phone",
        '"Doe, John",john@x.com,555-0100',
        "Jane,Jane@X.com,555-0101",
        "Bob,bob@x.com,",
    ]
)


def _schema(db_session, community_id):
    store = FormStore(db_session)
    return store.read_schema(store.get_form(community_id))


def _applications(db_session, community_id):
    return FormStore(db_session).list_applications(community_id)


def test_valid_file_imports_every_row(db_session, community):
    community_id = community.id

    result = run_bulk_import(db_session, community_id, MEMBERS_CSV)

    assert result.total == 3
    assert result.imported == 3
    assert result.duplicates == 0
    assert result.message == "Successfully imported 3 members"

    stored = _applications(db_session, community_id)
    assert sorted(a.email for a in stored) == ["bob@x.com", "jane@x.com", "john@x.com"]
    assert all(a.status == "pending" for a in stored)
    john = next(a for a in stored if a.email == "john@x.com")
    assert john.responses == {"q_email": "john@x.com"}


def test_worked_example_commits_nothing(db_session, community):
    community_id = community.id
    text = "name,email,phone\nJane,jane@x.com,555\nBob,,\n"

    with pytest.raises(ValidationError) as exc_info:
        run_bulk_import(
            db_session,
            community_id,
            text,
            mapping_overrides={"name": CreateNew(label="name"), "phone": CreateNew(label="phone")},
        )

    assert exc_info.value.invalid_rows == [2]
    assert _applications(db_session, community_id) == []
    assert [q.id for q in _schema(db_session, community_id)] == ["q_email"]


def test_single_invalid_row_blocks_the_other_four(db_session, community):
    community_id = community.id
    lines = ["email,city"] + [f"user{i}@x.com,Paris" for i in range(1, 6)]
    lines[3] = ",Lyon"  # data row 3 has no email
    text = "\n".join(lines)

    with pytest.raises(ValidationError) as exc_info:
        run_bulk_import(db_session, community_id, text)

    assert exc_info.value.invalid_rows == [3]
    assert _applications(db_session, community_id) == []


def test_reimporting_the_same_file_imports_nothing(db_session, community):
    community_id = community.id
    overrides = {"phone": CreateNew(label="Phone")}

    first = run_bulk_import(db_session, community_id, MEMBERS_CSV, mapping_overrides=overrides)
    second = run_bulk_import(db_session, community_id, MEMBERS_CSV, mapping_overrides=overrides)

    assert first.imported == 3
    assert first.new_fields == ["Phone"]
    assert second.imported == 0
    assert second.duplicates == 3
    assert sorted(second.duplicate_identities) == ["bob@x.com", "jane@x.com", "john@x.com"]
    assert second.new_fields_created == 0
    assert second.message == "Successfully imported 0 members. 3 duplicates were skipped."
    labels = [q.label for q in _schema(db_session, community_id)]
    assert labels.count("Phone") == 1


def test_create_new_column_adds_exactly_one_question(db_session, community):
    community_id = community.id

    result = run_bulk_import(
        db_session,
        community_id,
        MEMBERS_CSV,
        mapping_overrides={"phone": CreateNew(label="Phone"), "name": CreateNew(label="Full name")},
    )

    assert result.new_fields_created == 2
    assert result.new_fields == ["Full name", "Phone"]
    assert result.message.endswith("Created 2 new fields.")

    schema = _schema(db_session, community_id)
    assert [q.label for q in schema] == ["Best email", "Full name", "Phone"]
    phone = schema[2]
    assert phone.required is False
    assert phone.placeholder == "Enter Phone"

    stored = {a.email: a for a in _applications(db_session, community_id)}
    assert stored["john@x.com"].responses == {
        "q_email": "john@x.com",
        schema[1].id: "Doe, John",
        phone.id: "555-0100",
    }
    # Bob left the phone blank, so no answer is stored for it
    assert phone.id not in stored["bob@x.com"].responses


def test_two_columns_with_same_new_label_share_one_question(db_session, community):
    community_id = community.id
    text = "email,mobile,phone\na@x.com,,0100\nb@x.com,0200,0201\n"

    result = run_bulk_import(
        db_session,
        community_id,
        text,
        mapping_overrides={"mobile": CreateNew(label="Phone"), "phone": CreateNew(label="Phone")},
    )

    assert result.new_fields == ["Phone"]
    phone_id = _schema(db_session, community_id)[1].id
    stored = {a.email: a.responses for a in _applications(db_session, community_id)}
    assert stored["a@x.com"][phone_id] == "0100"
    assert stored["b@x.com"][phone_id] == "0200"


def test_failed_insert_rolls_back_schema_growth(db_session, community, monkeypatch):
    community_id = community.id
    overrides = {"phone": CreateNew(label="Phone")}

    def failing_insert(self, form, records):
        raise OperationalError("INSERT INTO member_applications", {}, Exception("disk full"))

    with monkeypatch.context() as patch:
        patch.setattr(FormStore, "insert_records", failing_insert)
        with pytest.raises(PersistenceError):
            run_bulk_import(db_session, community_id, MEMBERS_CSV, mapping_overrides=overrides)

    assert [q.label for q in _schema(db_session, community_id)] == ["Best email"]
    assert _applications(db_session, community_id) == []

    retry = run_bulk_import(db_session, community_id, MEMBERS_CSV, mapping_overrides=overrides)

    assert retry.imported == 3
    assert retry.new_fields == ["Phone"]
    assert [q.label for q in _schema(db_session, community_id)] == ["Best email", "Phone"]


def test_unique_constraint_backstops_a_missed_duplicate(db_session, community, monkeypatch):
    community_id = community.id
    run_bulk_import(db_session, community_id, "email\njane@x.com\n")

    # Simulate a concurrent import that passed the duplicate check
    monkeypatch.setattr(FormStore, "existing_identities", lambda self, community_id, candidates=None: set())
    candidate = CandidateRecord(
        row_number=1, answers={"q_email": "jane@x.com"}, identity_value="jane@x.com"
    )

    with pytest.raises(PersistenceError):
        commit_batch(FormStore(db_session), community_id, [candidate], [], Decision.PENDING)

    assert len(_applications(db_session, community_id)) == 1


def test_duplicates_are_scoped_to_the_community(db_session, community):
    other = create_community_with_form(db_session, "Other Community")
    other_id = other.id

    run_bulk_import(db_session, community.id, MEMBERS_CSV)
    result = run_bulk_import(
        db_session,
        other_id,
        MEMBERS_CSV,
    )

    assert result.imported == 3
    assert result.duplicates == 0


def test_status_column_and_default_decision_are_stored(db_session, community):
    community_id = community.id
    text = "email,status\na@x.com,ACCEPTED\nb@x.com,\nc@x.com,denied\n"

    run_bulk_import(db_session, community_id, text, default_decision="pending")

    statuses = {a.email: a.status for a in _applications(db_session, community_id)}
    assert statuses == {"a@x.com": "accepted", "b@x.com": "pending", "c@x.com": "denied"}


def test_excluded_rows_are_left_out_of_the_import(db_session, community):
    community_id = community.id
    text = "email\na@x.com\nc@x.com\nd@x.com\n"

    result = run_bulk_import(db_session, community_id, text, excluded_rows=[2])

    assert result.total == 2
    assert sorted(a.email for a in _applications(db_session, community_id)) == ["a@x.com", "d@x.com"]


def test_unknown_community_raises_form_not_found(db_session):
    with pytest.raises(FormNotFoundError):
        run_bulk_import(db_session, "missing-community", MEMBERS_CSV)


def test_preview_flags_duplicates_without_writing(db_session, community):
    community_id = community.id
    run_bulk_import(db_session, community_id, "email\njohn@x.com\n")

    preview = preview_bulk_import(
        db_session,
        community_id,
        MEMBERS_CSV.encode("utf-8"),
        file_name="members.csv",
        mapping_overrides={"phone": CreateNew(label="Phone")},
    )

    flags = {c.identity_value: c.is_duplicate for c in preview.candidates}
    assert flags == {"john@x.com": True, "jane@x.com": False, "bob@x.com": False}
    assert preview.invalid_rows == []
    assert preview.new_fields == ["Phone"]
    assert preview.duplicate_count == 1
    assert len(_applications(db_session, community_id)) == 1
    assert [q.label for q in _schema(db_session, community_id)] == ["Best email"]


def test_identity_question_stays_first_and_required(db_session):
    community = create_community_with_form(
        db_session,
        "Optional email community",
        questions=[QuestionDefinition(id="q_city", label="City")],
    )
    schema = _schema(db_session, community.id)

    assert schema[0].id == "email"
    assert schema[0].required is True
    assert [q.id for q in schema] == ["email", "q_city"]


def test_rows_without_identity_are_stored_with_null_email(db_session, community):
    community_id = community.id
    store = FormStore(db_session)
    form = store.get_form(community_id)
    form.questions = [
        QuestionDefinition(id="q_city", label="City").model_dump(mode="json"),
        QuestionDefinition(id="q_notes", label="Notes").model_dump(mode="json"),
    ]
    db_session.commit()

    result = run_bulk_import(db_session, community_id, "notes\nfirst\nsecond\n")

    assert result.imported == 2
    assert result.duplicates == 0
    assert result.needs_identity_rows == [1, 2]
    stored = _applications(db_session, community_id)
    assert [a.email for a in stored] == [None, None]
    assert sorted(a.responses["q_notes"] for a in stored) == ["first", "second"]


def test_committer_inserts_several_identityless_candidates(db_session, community):
    community_id = community.id
    candidates = [
        CandidateRecord(row_number=1, answers={}),
        CandidateRecord(row_number=4, answers={}),
    ]

    result = commit_batch(FormStore(db_session), community_id, candidates, [], Decision.PENDING)

    assert result.imported == 2
    assert result.needs_identity_rows == [1, 4]
    assert all(a.email is None for a in _applications(db_session, community_id))
