"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Submitted payloads are the one exception: their keys are tenant-defined field ids.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RejectionKind(str, Enum):
    """
    Canonical rejection kinds for the submission endpoint.

    The value is used verbatim both as the ``?error=`` query parameter in
    redirect mode and as the ``kind`` field of JSON error bodies.
    """

    MISSING_HEADER = "missing_header"
    MALFORMED_HEADER = "malformed_header"
    INVALID_KEY = "invalid_key"
    INVALID_APP = "invalid_app"
    LIMIT_REACHED = "limit_reached"
    INVALID_SCHEMA = "invalid_schema"
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"
    INVALID_BODY = "invalid_body"
    INVALID_FIELD = "invalid_field"
    INVALID_TYPE = "invalid_type"


class RejectionPresentation(BaseModel):
    """How a rejection kind renders in JSON mode."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    error: str
    message: str


REJECTION_PRESENTATION: dict[RejectionKind, RejectionPresentation] = {
    RejectionKind.MISSING_HEADER: RejectionPresentation(
        status_code=401,
        error="unauthorized",
        message=(
            "This is a private form. You need to pass the secret key in the "
            "Authorization header using Bearer scheme"
        ),
    ),
    RejectionKind.MALFORMED_HEADER: RejectionPresentation(
        status_code=401,
        error="unauthorized",
        message="Authorization header must contain secret key with Bearer scheme",
    ),
    RejectionKind.INVALID_KEY: RejectionPresentation(
        status_code=403, error="forbidden", message="Invalid secret key"
    ),
    RejectionKind.INVALID_APP: RejectionPresentation(
        status_code=403, error="forbidden", message="Invalid secret key"
    ),
    RejectionKind.LIMIT_REACHED: RejectionPresentation(
        status_code=429,
        error="limit-reached",
        message="You have reached the limit of form submissions for your plan.",
    ),
    RejectionKind.INVALID_SCHEMA: RejectionPresentation(
        status_code=500,
        error="invalid-schema",
        message=(
            "Schema data is corrupted. We could not process this form. "
            "Please contact support."
        ),
    ),
    RejectionKind.UNSUPPORTED_CONTENT_TYPE: RejectionPresentation(
        status_code=400,
        error="unsupported-content-type",
        message=(
            "We currently support only application/json, multipart/form-data, "
            "and application/x-www-form-urlencoded"
        ),
    ),
    RejectionKind.INVALID_BODY: RejectionPresentation(
        status_code=400,
        error="invalid-submission",
        message="Request body could not be parsed as a submission",
    ),
    RejectionKind.INVALID_FIELD: RejectionPresentation(
        status_code=400, error="invalid-submission", message="Does not match schema"
    ),
    RejectionKind.INVALID_TYPE: RejectionPresentation(
        status_code=400, error="invalid-submission", message="Does not match schema"
    ),
}


# ============================================================================
# Submission Models
# ============================================================================


class SubmissionAcceptedResponse(BaseModel):
    """POST /forms/{form_id} response (JSON mode)."""

    model_config = ConfigDict(populate_by_name=True)

    response_id: int = Field(..., serialization_alias="responseId")


class SubmissionErrorResponse(BaseModel):
    """POST /forms/{form_id} error body (JSON mode)."""

    error: str
    message: str
    kind: str | None = None


# ============================================================================
# Field Schema Models
# ============================================================================

_FALSEY_REQUIRED = {"", "false", "0", "no", "off"}


class FieldSpecInput(BaseModel):
    """A field definition as sent by the form editor."""

    id: str = Field(..., min_length=1, max_length=255)
    type: Literal["string", "number"]
    label: str = Field(..., min_length=1, max_length=255)
    required: bool = False

    @field_validator("required", mode="before")
    @classmethod
    def normalize_required(cls, v: Any) -> bool:
        """Collapse the editor's string/boolean representations into one boolean."""
        if v is None:
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.strip().lower() not in _FALSEY_REQUIRED
        raise ValueError("required must be a boolean or a string")


class FieldSpecItem(BaseModel):
    """A stored field definition."""

    id: str
    type: Literal["string", "number"]
    label: str
    required: bool


# ============================================================================
# App Models
# ============================================================================


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")) or len(v.split("://", 1)[1]) == 0:
        raise ValueError("url must be an absolute http(s) URL")
    return v


class AppRequest(BaseModel):
    """POST /apps and PUT /apps/{app_id} request body."""

    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=255)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_http_url(v)


class AppResponse(BaseModel):
    """App representation."""

    id: int
    user_id: int
    name: str
    url: str


class FormSummary(BaseModel):
    """Form listing entry."""

    id: int
    name: str
    public: bool


class SecretKeySummary(BaseModel):
    """Secret key metadata (never the key itself)."""

    id: int
    name: str
    created_at: str


class AppDetailResponse(AppResponse):
    """GET /apps/{app_id} response."""

    forms: list[FormSummary]
    secret_keys: list[SecretKeySummary]


# ============================================================================
# Form Models
# ============================================================================


class CreateFormRequest(BaseModel):
    """POST /forms request body."""

    app_id: int


class UpdateFormRequest(BaseModel):
    """PATCH /forms/{form_id} request body. Absent fields are left untouched."""

    name: str | None = Field(None, min_length=1, max_length=255)
    public: bool | None = None
    redirect_on_submit: bool | None = None
    success_url: str | None = Field(None, max_length=255)
    failure_url: str | None = Field(None, max_length=255)
    fields: list[FieldSpecInput] | None = Field(None, min_length=1)

    @field_validator("success_url", "failure_url")
    @classmethod
    def validate_redirect_url(cls, v: str | None) -> str | None:
        # Empty string clears the template and falls back to the default URL
        if v:
            return _validate_http_url(v)
        return v


class FormVersionItem(BaseModel):
    """A schema version of a form."""

    id: int
    form_id: int
    version_number: int
    fields: list[FieldSpecItem]
    created_at: str


class FormResponseItem(BaseModel):
    """A stored submission."""

    id: int
    form_version_id: int
    respondent_id: str | None
    archived: bool
    response: dict[str, Any]
    created_at: str


class FormItem(BaseModel):
    """Form representation."""

    id: int
    app_id: int
    name: str
    public: bool
    response_count: int
    redirect_on_submit: bool
    success_url: str
    failure_url: str


class FormDetailResponse(FormItem):
    """GET /forms/{form_id} and POST /forms response."""

    versions: list[FormVersionItem]
    responses: list[FormResponseItem] = Field(default_factory=list)


class UpdateResponseRequest(BaseModel):
    """PATCH /responses/{response_id} request body."""

    archived: bool


# ============================================================================
# Secret Key Models
# ============================================================================


class CreateSecretKeyRequest(BaseModel):
    """POST /apps/{app_id}/secret-keys request body."""

    name: str = Field(..., min_length=1, max_length=255)


class CreateSecretKeyResponse(BaseModel):
    """Newly created secret key. The plaintext key is shown exactly once."""

    id: int
    key: str


# ============================================================================
# Device / Session Models
# ============================================================================


class RegisterDeviceRequest(BaseModel):
    """POST /devices request body."""

    device_id: str = Field(..., min_length=1, max_length=255)
    token: str = Field(..., min_length=1, max_length=255)
    platform: str = Field(..., min_length=1, max_length=255)


class SessionResponse(BaseModel):
    """POST /sessions/validate response."""

    session_id: str
    user_id: int
    plan: str
    expires_at: str


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
