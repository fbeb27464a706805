"""
Domain types for the member bulk import pipeline.

Questions, mapping targets and results are pydantic models so they validate
on the way in from the API and serialize cleanly on the way out. Per-row
working state (candidates, dedup partitions) stays in plain dataclasses.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated


class QuestionType(str, Enum):
    TEXT = "text"
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"


class Decision(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DENIED = "denied"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Decision"]:
        """Return the decision named by ``value`` (any case), or None."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class QuestionDefinition(BaseModel):
    """A named, typed field of an application form."""
    id: str
    label: str
    type: QuestionType = QuestionType.TEXT
    required: bool = False
    placeholder: Optional[str] = None
    options: List[str] = Field(default_factory=list)


Schema = List[QuestionDefinition]
RawRow = Dict[str, str]


class ExistingQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["existing"] = "existing"
    question_id: str


class CreateNew(BaseModel):
    """Sentinel target asking for a new question labelled ``label``."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["create_new"] = "create_new"
    label: str


class Skip(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["skip"] = "skip"


MappingTarget = Annotated[
    Union[ExistingQuestion, CreateNew, Skip],
    Field(discriminator="kind"),
]
FieldMapping = Dict[str, MappingTarget]

# Answers are keyed by question id, or by the CreateNew sentinel until the
# committer knows the real id of the question it mints.
AnswerKey = Union[str, CreateNew]


@dataclass
class CandidateRecord:
    row_number: int
    answers: Dict[AnswerKey, str] = field(default_factory=dict)
    identity_value: Optional[str] = None
    is_duplicate: bool = False
    decision: Decision = Decision.PENDING
    selected: bool = True


class SchemaExtension(BaseModel):
    new_questions: List[QuestionDefinition] = Field(default_factory=list)
    extended_schema: List[QuestionDefinition] = Field(default_factory=list)
    label_ids: Dict[str, str] = Field(default_factory=dict)


@dataclass
class DeduplicationResult:
    to_create: List[CandidateRecord] = field(default_factory=list)
    duplicates: List[CandidateRecord] = field(default_factory=list)

    @property
    def duplicate_identities(self) -> List[str]:
        return [c.identity_value for c in self.duplicates if c.identity_value]


class ImportResult(BaseModel):
    imported: int
    duplicates: int
    duplicate_identities: List[str] = Field(default_factory=list)
    new_fields_created: int = 0
    new_fields: List[str] = Field(default_factory=list)
    total: int
    needs_identity_rows: List[int] = Field(default_factory=list)
    message: str


def identity_question(schema: Schema) -> Optional[QuestionDefinition]:
    """Return the reserved identity question (schema element 0)."""
    return schema[0] if schema else None
