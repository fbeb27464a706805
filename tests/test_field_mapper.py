import pytest

from member_import.domain.imports.exceptions import InvalidMappingError
from member_import.domain.imports.mapper import (
    apply_mapping_overrides,
    detect_field_mapping,
    labels_match,
    mapping_summary,
)
from member_import.domain.imports.models import (
    CreateNew,
    ExistingQuestion,
    QuestionDefinition,
    Skip,
)


SCHEMA = [
    QuestionDefinition(id="q_email", label="Best email", required=True),
    QuestionDefinition(id="q_name", label="Your full name"),
    QuestionDefinition(id="q_linkedin", label="LinkedIn profile URL"),
    QuestionDefinition(id="q_why", label="Why do you want to join?"),
]


@pytest.mark.parametrize(
    "column,label,expected",
    [
        ("email", "Best email", True),
        ("Best Email Address", "best email", True),
        ("Full Name", "Your name", True),
        ("phone number", "Mobile phone", True),
        ("linkedin", "LinkedIn profile URL", True),
        ("twitter", "LinkedIn profile URL", False),
        ("", "Best email", False),
    ],
)
def test_labels_match(column, label, expected):
    assert labels_match(column, label) is expected


def test_detect_mapping_matches_existing_questions_and_skips_the_rest():
    mapping = detect_field_mapping(["email", "name", "linkedin", "notes"], SCHEMA)

    assert mapping == {
        "email": ExistingQuestion(question_id="q_email"),
        "name": ExistingQuestion(question_id="q_name"),
        "linkedin": ExistingQuestion(question_id="q_linkedin"),
        "notes": Skip(),
    }


def test_detect_mapping_never_proposes_new_fields():
    mapping = detect_field_mapping(["favourite colour", "shoe size"], SCHEMA)
    assert all(isinstance(target, Skip) for target in mapping.values())


def test_first_matching_question_in_schema_order_wins():
    schema = [
        QuestionDefinition(id="q_email", label="Email", required=True),
        QuestionDefinition(id="q_work_email", label="Work email"),
    ]
    mapping = detect_field_mapping(["work email"], schema)
    # "work email" contains "email", so the first question wins
    assert mapping["work email"] == ExistingQuestion(question_id="q_email")


def test_blank_column_name_is_skipped():
    mapping = detect_field_mapping(["", "email"], SCHEMA)
    assert mapping[""] == Skip()


def test_detect_mapping_is_pure():
    headers = ["email", "name", "phone"]
    assert detect_field_mapping(headers, SCHEMA) == detect_field_mapping(headers, SCHEMA)


def test_overrides_replace_detected_targets():
    headers = ["email", "name", "phone"]
    detected = detect_field_mapping(headers, SCHEMA)

    final = apply_mapping_overrides(
        detected,
        {"phone": CreateNew(label="Phone"), "name": Skip()},
        headers,
        SCHEMA,
    )

    assert final["email"] == ExistingQuestion(question_id="q_email")
    assert final["name"] == Skip()
    assert final["phone"] == CreateNew(label="Phone")
    assert list(final) == headers
    assert mapping_summary(final) == {"existing": 1, "create_new": 1, "skip": 1}


def test_override_for_unknown_column_is_rejected():
    with pytest.raises(InvalidMappingError):
        apply_mapping_overrides({}, {"nope": Skip()}, ["email"], SCHEMA)


def test_override_pointing_at_unknown_question_is_rejected():
    with pytest.raises(InvalidMappingError):
        apply_mapping_overrides(
            {}, {"email": ExistingQuestion(question_id="q_missing")}, ["email"], SCHEMA
        )


def test_override_with_blank_new_label_is_rejected():
    with pytest.raises(InvalidMappingError):
        apply_mapping_overrides({}, {"email": CreateNew(label="  ")}, ["email"], SCHEMA)
