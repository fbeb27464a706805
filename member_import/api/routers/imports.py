"""
Member bulk import endpoints: mapping detection, preview, import and template download.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from member_import.api.dependencies import parse_excluded_rows, parse_mapping_json, read_upload
from member_import.api.schemas.shared import (
    BulkImportResponse,
    DetectMappingResponse,
    PreviewCandidate,
    PreviewResponse,
)
from member_import.core.config import settings
from member_import.db.forms import FormStore
from member_import.db.session import get_db
from member_import.domain.imports.exceptions import (
    FormNotFoundError,
    InvalidMappingError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from member_import.domain.imports.mapper import mapping_summary
from member_import.domain.imports.models import CreateNew
from member_import.domain.imports.orchestrator import (
    detect_mapping_for_upload,
    preview_bulk_import,
    run_bulk_import,
)
from member_import.domain.imports.processors.csv_processor import render_import_template

router = APIRouter(prefix="/communities/{community_id}/bulk-import", tags=["imports"])

logger = logging.getLogger(__name__)


@router.post("/detect-mapping", response_model=DetectMappingResponse)
async def detect_mapping_endpoint(
    community_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    """
    Parse an uploaded member file and suggest a column -> question mapping.

    Unmatched columns come back as ``skip``; the caller decides which of them
    to promote to new fields.
    """
    content = await read_upload(file)
    try:
        headers, rows, mapping, schema = detect_mapping_for_upload(db, community_id, content, file.filename)
    except ParseError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except FormNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": e.message})

    return DetectMappingResponse(
        success=True,
        headers=headers,
        rows_found=len(rows),
        mapping=mapping,
        questions=schema,
        summary=mapping_summary(mapping),
    )


@router.post("/preview", response_model=PreviewResponse)
async def preview_endpoint(
    community_id: str,
    file: UploadFile = File(...),
    mapping_json: Optional[str] = Form(None),
    default_status: Optional[str] = Form(None),
    excluded_rows: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """Show how each row would be imported, flagging duplicates and incomplete rows. Writes nothing."""
    content = await read_upload(file)
    try:
        preview = preview_bulk_import(
            db,
            community_id,
            content,
            file_name=file.filename,
            mapping_overrides=parse_mapping_json(mapping_json),
            default_decision=default_status,
            excluded_rows=parse_excluded_rows(excluded_rows),
        )
    except (ParseError, InvalidMappingError) as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except FormNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": e.message})

    candidates = []
    for candidate in preview.candidates:
        answers = {k: v for k, v in candidate.answers.items() if isinstance(k, str)}
        new_answers = {k.label: v for k, v in candidate.answers.items() if isinstance(k, CreateNew)}
        candidates.append(
            PreviewCandidate(
                row_number=candidate.row_number,
                identity_value=candidate.identity_value,
                is_duplicate=candidate.is_duplicate,
                decision=candidate.decision,
                selected=candidate.selected,
                answers=answers,
                new_field_answers=new_answers,
            )
        )

    return PreviewResponse(
        success=True,
        headers=preview.headers,
        mapping=preview.mapping,
        candidates=candidates,
        invalid_rows=preview.invalid_rows,
        missing=preview.missing,
        duplicates=preview.duplicate_count,
        new_fields=preview.new_fields,
    )


@router.post("", response_model=BulkImportResponse)
async def bulk_import_endpoint(
    community_id: str,
    file: UploadFile = File(...),
    mapping_json: Optional[str] = Form(None),
    default_status: Optional[str] = Form(None),
    excluded_rows: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """
    Import members from an uploaded file into a community.

    Parameters:
    - file: CSV or Excel file, first row is the header
    - mapping_json: JSON object of column -> target overrides, e.g.
      ``{"phone": {"kind": "create_new", "label": "Phone"}, "notes": {"kind": "skip"}}``
    - default_status: pending, accepted or denied for rows without a status column
    - excluded_rows: comma-separated 1-indexed rows to leave out

    Returns:
    - Counts of imported rows, skipped duplicates and fields created

    A single row missing a required answer rejects the whole upload (400
    with ``invalid_rows``). A storage failure rolls everything back (500).
    Error bodies are nested under ``detail``, e.g.
    ``{"detail": {"error": "...", "invalid_rows": [2]}}``.
    """
    content = await read_upload(file)
    logger.info("Received bulk import for community %s (file '%s')", community_id, file.filename)

    try:
        result = run_bulk_import(
            db,
            community_id,
            content,
            file_name=file.filename,
            mapping_overrides=parse_mapping_json(mapping_json),
            default_decision=default_status,
            excluded_rows=parse_excluded_rows(excluded_rows),
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.message, "invalid_rows": e.invalid_rows})
    except (ParseError, InvalidMappingError) as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})
    except FormNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": e.message})
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail={"error": e.message})

    return BulkImportResponse(**result.model_dump())


@router.get("/template")
def template_endpoint(community_id: str, db: Session = Depends(get_db)):
    """Download a CSV template listing the base columns plus every question on the form."""
    store = FormStore(db)
    try:
        schema = store.read_schema(store.get_form(community_id))
    except FormNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": e.message})

    content = render_import_template(settings.template_headers, [q.label for q in schema])
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="member-import-template-{community_id}.csv"'},
    )
