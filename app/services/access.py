"""
Access Resolver - Decides whether a submission may reach a form.

NO DICTIONARIES - Decisions are AccessDecision dataclasses.

Public forms are always open. Private forms need ``Authorization: Bearer <key>``
where the key's hash is stored for the form's own app.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.exceptions import SubmissionRejectedError
from app.models.api import RejectionKind
from app.models.domain import AccessDecision, FormContext
from app.services.secret_key import SecretKeyService

logger = get_logger(__name__)


def parse_bearer(header: str | None) -> str:
    """
    Split an Authorization header into its key.

    The header must be exactly two space-separated tokens, the first being
    the Bearer scheme.

    Raises:
        SubmissionRejectedError: missing_header or malformed_header
    """
    if not header:
        raise SubmissionRejectedError(RejectionKind.MISSING_HEADER)

    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise SubmissionRejectedError(RejectionKind.MALFORMED_HEADER)

    return parts[1]


class AccessResolver:
    """Resolve form visibility plus an optional credential into allow/deny."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.keys = SecretKeyService(session)

    async def resolve(self, form: FormContext, authorization: str | None) -> AccessDecision:
        if form.is_public:
            return AccessDecision.allow()

        try:
            key = parse_bearer(authorization)
        except SubmissionRejectedError as e:
            logger.info("submission_access_denied", form_id=form.form_id, reason=e.kind.value)
            return AccessDecision.deny(e.kind)

        record = await self.keys.find_by_plaintext(key)
        if record is None:
            logger.info(
                "submission_access_denied",
                form_id=form.form_id,
                reason=RejectionKind.INVALID_KEY.value,
            )
            return AccessDecision.deny(RejectionKind.INVALID_KEY)

        if record.app_id != form.app_id:
            logger.warning(
                "submission_access_denied",
                form_id=form.form_id,
                reason=RejectionKind.INVALID_APP.value,
                key_id=record.id,
                key_app_id=record.app_id,
            )
            return AccessDecision.deny(RejectionKind.INVALID_APP)

        return AccessDecision.allow(secret_key_id=record.id)
