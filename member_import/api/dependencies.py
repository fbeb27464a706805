"""
Request helpers shared by the import endpoints: upload reading and form-field parsing.
"""
import json
from typing import Dict, List, Optional

from fastapi import HTTPException, UploadFile
from pydantic import ValidationError as PydanticValidationError

from member_import.api.schemas.shared import mapping_adapter
from member_import.core.config import settings
from member_import.domain.imports.models import MappingTarget


def detect_file_type(filename: str) -> str:
    """
    Detect file type from filename extension.

    Returns:
    - File type: 'csv' or 'excel'

    Raises:
    - HTTPException: If file type is not supported
    """
    name = (filename or "").lower()
    if name.endswith('.csv'):
        return 'csv'
    elif name.endswith(('.xlsx', '.xls')):
        return 'excel'
    else:
        raise HTTPException(status_code=400, detail={"error": "Please upload a CSV or Excel file"})


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing the configured size limit."""
    detect_file_type(file.filename)
    content = await file.read()
    max_bytes = settings.upload_max_file_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail={"error": f"File exceeds the {settings.upload_max_file_size_mb} MB upload limit"},
        )
    return content


def parse_mapping_json(mapping_json: Optional[str]) -> Dict[str, MappingTarget]:
    """Parse the ``mapping_json`` form field (column -> target) into typed targets."""
    if not mapping_json:
        return {}
    try:
        return mapping_adapter.validate_python(json.loads(mapping_json))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise HTTPException(status_code=400, detail={"error": f"Invalid mapping configuration: {e}"})


def parse_excluded_rows(excluded_rows: Optional[str]) -> List[int]:
    """Parse a comma-separated list of 1-indexed row numbers."""
    if not excluded_rows:
        return []
    try:
        return [int(part) for part in excluded_rows.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "excluded_rows must be comma-separated row numbers"})
