from typing import Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter

from member_import.domain.imports.models import (
    Decision,
    ImportResult,
    MappingTarget,
    QuestionDefinition,
)

mapping_adapter = TypeAdapter(Dict[str, MappingTarget])


class DetectMappingResponse(BaseModel):
    success: bool
    headers: List[str]
    rows_found: int
    mapping: Dict[str, MappingTarget]
    questions: List[QuestionDefinition]
    summary: Dict[str, int] = Field(default_factory=dict)


class PreviewCandidate(BaseModel):
    """One row as it would be imported; new-field answers are keyed by label."""
    row_number: int
    identity_value: Optional[str] = None
    is_duplicate: bool = False
    decision: Decision
    selected: bool = True
    answers: Dict[str, str] = Field(default_factory=dict)
    new_field_answers: Dict[str, str] = Field(default_factory=dict)


class PreviewResponse(BaseModel):
    success: bool
    headers: List[str]
    mapping: Dict[str, MappingTarget]
    candidates: List[PreviewCandidate]
    invalid_rows: List[int] = Field(default_factory=list)
    missing: Dict[int, List[str]] = Field(default_factory=dict)
    duplicates: int = 0
    new_fields: List[str] = Field(default_factory=list)


class BulkImportResponse(ImportResult):
    success: bool = True

