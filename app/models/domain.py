"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.models.api import RejectionKind


class FieldType(str, Enum):
    """Closed set of field types a schema may declare."""

    STRING = "string"
    NUMBER = "number"


class FormVisibility(str, Enum):
    """Who may submit to a form."""

    PUBLIC = "public"
    PRIVATE = "private"


class PlanTier(str, Enum):
    """Known pricing plans. Unknown plan names are treated as unmetered."""

    FREE = "free"
    LAUNCH = "launch"


class SubscriptionInterval(str, Enum):
    """Recurring interval of a paid subscription."""

    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class FieldSpec:
    """One field of a form schema version."""

    id: str
    type: FieldType
    label: str
    required: bool

    def __post_init__(self) -> None:
        """Validate field constraints."""
        if not self.id:
            raise ValueError("Field id cannot be empty")
        if not isinstance(self.required, bool):
            raise ValueError(f"Field {self.id} required flag must be a boolean")

    def to_record(self) -> dict[str, Any]:
        """JSONB representation stored in form_versions.fields."""
        return {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "required": self.required,
        }


@dataclass(frozen=True)
class SchemaVersionData:
    """Immutable snapshot of a form schema version."""

    version_id: int
    form_id: int
    version_number: int
    fields: tuple[FieldSpec, ...]
    created_at: datetime | None


@dataclass(frozen=True)
class FormContext:
    """Everything the admission pipeline needs to know about the target form."""

    form_id: int
    name: str
    app_id: int
    app_name: str
    app_url: str
    owner_id: int
    plan: str
    is_public: bool
    redirect_on_submit: bool
    success_url: str
    failure_url: str

    @property
    def visibility(self) -> FormVisibility:
        return FormVisibility.PUBLIC if self.is_public else FormVisibility.PRIVATE


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of access resolution: allowed, or denied with a rejection kind."""

    allowed: bool
    reason: RejectionKind | None = None
    secret_key_id: int | None = None

    def __post_init__(self) -> None:
        """A denial always names its reason; an allow never does."""
        if self.allowed == (self.reason is not None):
            raise ValueError(f"Inconsistent access decision: allowed={self.allowed}")

    @classmethod
    def allow(cls, secret_key_id: int | None = None) -> "AccessDecision":
        return cls(allowed=True, secret_key_id=secret_key_id)

    @classmethod
    def deny(cls, reason: RejectionKind) -> "AccessDecision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class UsageAdmission:
    """Outcome of a quota check for one submission."""

    admitted: bool
    usage_count: int
    limit: int | None
    billing_period_id: int

    @property
    def reason(self) -> RejectionKind | None:
        return None if self.admitted else RejectionKind.LIMIT_REACHED


@dataclass(frozen=True)
class ValidationOutcome:
    """Outcome of payload validation: a normalized payload or a rejection kind."""

    payload: dict[str, Any] | None
    rejection: RejectionKind | None = None

    def __post_init__(self) -> None:
        """Exactly one of payload and rejection is set."""
        if (self.payload is None) == (self.rejection is None):
            raise ValueError("Validation outcome needs either a payload or a rejection")

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def accept(cls, payload: dict[str, Any]) -> "ValidationOutcome":
        return cls(payload=payload)

    @classmethod
    def reject(cls, kind: RejectionKind) -> "ValidationOutcome":
        return cls(payload=None, rejection=kind)


@dataclass(frozen=True)
class PushNotification:
    """A multicast push message addressed to the form owner's devices."""

    tokens: tuple[str, ...]
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubmissionResult:
    """An accepted, persisted submission."""

    response_id: int
    form: FormContext
    payload: dict[str, Any]
    notification: PushNotification | None


@dataclass(frozen=True)
class SessionData:
    """A validated session and the user it belongs to."""

    session_id: str
    user_id: int
    plan: str
    expires_at: datetime
