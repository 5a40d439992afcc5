"""
Submission Validator - Body decoding and schema validation of submissions.

NO DICTIONARIES - Outcomes are ValidationOutcome dataclasses. The payload itself
is the one mapping we keep: its keys are tenant-defined field ids.
"""

from collections.abc import Callable, Sequence
from typing import Any

from fastapi import Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from structlog import get_logger

from app.exceptions import SubmissionRejectedError
from app.models.api import RejectionKind
from app.models.domain import FieldSpec, FieldType, ValidationOutcome

logger = get_logger(__name__)

JSON_MEDIA_TYPE = "application/json"
URLENCODED_MEDIA_TYPE = "application/x-www-form-urlencoded"
MULTIPART_MEDIA_TYPE = "multipart/form-data"

SUPPORTED_MEDIA_TYPES = frozenset({JSON_MEDIA_TYPE, URLENCODED_MEDIA_TYPE, MULTIPART_MEDIA_TYPE})


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def _is_number(value: Any) -> bool:
    # bool is an int subclass but is not a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


TYPE_CHECKS: dict[FieldType, Callable[[Any], bool]] = {
    FieldType.STRING: _is_string,
    FieldType.NUMBER: _is_number,
}


def media_type(content_type: str | None) -> str:
    """The bare media type of a Content-Type header (parameters stripped, lowercased)."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def check_content_type(content_type: str | None) -> RejectionKind | None:
    """Reject anything but JSON, urlencoded and multipart bodies."""
    if media_type(content_type) in SUPPORTED_MEDIA_TYPES:
        return None
    return RejectionKind.UNSUPPORTED_CONTENT_TYPE


async def read_payload(request: Request) -> dict[str, Any]:
    """
    Decode a submission body into a field-id to value mapping.

    Form bodies keep the last value of a repeated key. File parts are kept
    as UploadFile values and rejected by validate() once keys are checked.

    Raises:
        SubmissionRejectedError: unsupported_content_type or invalid_body
    """
    content_type = request.headers.get("content-type")
    rejection = check_content_type(content_type)
    if rejection is not None:
        raise SubmissionRejectedError(rejection, media_type(content_type) or "none")

    if media_type(content_type) == JSON_MEDIA_TYPE:
        try:
            body = await request.json()
        except ValueError as e:
            raise SubmissionRejectedError(RejectionKind.INVALID_BODY, str(e))
        if not isinstance(body, dict):
            raise SubmissionRejectedError(RejectionKind.INVALID_BODY, "JSON body is not an object")
        return body

    try:
        form = await request.form()
    except (MultiPartException, StarletteHTTPException, ValueError) as e:
        raise SubmissionRejectedError(RejectionKind.INVALID_BODY, str(e))

    return dict(form.multi_items())


def validate(payload: dict[str, Any], fields: Sequence[FieldSpec]) -> ValidationOutcome:
    """
    Check a decoded payload against a schema version's fields.

    Unknown keys are rejected first, then file uploads under known keys.
    Empty strings are dropped, and every required field must be present with
    the declared primitive type. Values are never coerced.
    """
    known = {f.id for f in fields}
    for key in payload:
        if key not in known:
            logger.info("submission_unknown_field", field_id=key)
            return ValidationOutcome.reject(RejectionKind.INVALID_FIELD)

    for key, value in payload.items():
        if isinstance(value, UploadFile):
            logger.info("submission_file_upload", field_id=key)
            return ValidationOutcome.reject(RejectionKind.INVALID_TYPE)

    normalized = {key: value for key, value in payload.items() if value != ""}

    for field_spec in fields:
        if not field_spec.required:
            continue
        value = normalized.get(field_spec.id)
        if value is None or not TYPE_CHECKS[field_spec.type](value):
            logger.info(
                "submission_type_mismatch",
                field_id=field_spec.id,
                expected=field_spec.type.value,
                present=field_spec.id in normalized,
            )
            return ValidationOutcome.reject(RejectionKind.INVALID_TYPE)

    return ValidationOutcome.accept(normalized)
