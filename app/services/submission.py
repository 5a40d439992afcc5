"""
Submission Admission Pipeline - From an inbound submission to a stored response.

NO DICTIONARIES - Stages exchange typed dataclasses; the only mapping is the
tenant-defined payload.

Stages, terminal on the first failure:
    form lookup -> access -> quota -> schema load -> validate -> persist

Everything from the quota increment to the response_count bump runs in one
transaction. Any rejection rolls it back, so the usage counter only ever
reflects accepted submissions.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import App, Device, Form, FormResponse, User
from app.exceptions import (
    CorruptSchemaError,
    FormNotFoundError,
    ResourceNotFoundError,
    SubmissionRejectedError,
)
from app.models.api import RejectionKind
from app.models.domain import FormContext, SubmissionResult
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, get_tracer, set_span_error
from app.services.access import AccessResolver
from app.services.notifications import build_submission_notification
from app.services.quota import QuotaLedger
from app.services.schema_store import SchemaStore
from app.services.validator import validate

logger = get_logger(__name__)
tracer = get_tracer(__name__)

PayloadReader = Callable[[], Awaitable[dict[str, Any]]]


class SubmissionPipeline:
    """
    Orchestrates admission of one submission.

    Rejections surface as SubmissionRejectedError carrying the canonical
    kind; the route decides between redirect and JSON presentation.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize pipeline stages over one database session."""
        self.session = session
        self.access = AccessResolver(session)
        self.quota = QuotaLedger(session)
        self.schemas = SchemaStore(session)

    async def load_form(self, form_id: int) -> FormContext:
        """
        Snapshot the form with its app and owner.

        Raises:
            FormNotFoundError: Unknown form id
        """
        stmt = (
            select(Form, App, User)
            .join(App, App.id == Form.app_id)
            .join(User, User.id == App.user_id)
            .where(Form.id == form_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise FormNotFoundError(form_id)

        form, app, owner = row
        return FormContext(
            form_id=form.id,
            name=form.name,
            app_id=app.id,
            app_name=app.name,
            app_url=app.url,
            owner_id=owner.id,
            plan=owner.pricing_plan,
            is_public=form.is_public,
            redirect_on_submit=form.redirect_on_submit,
            success_url=form.success_url,
            failure_url=form.failure_url,
        )

    async def submit(
        self,
        form: FormContext,
        authorization: str | None,
        read_payload: PayloadReader,
    ) -> SubmissionResult:
        """
        Run access, quota, schema and validation checks, then persist.

        ``read_payload`` decodes the request body; it is only awaited once the
        submission has passed access and quota checks.

        Raises:
            SubmissionRejectedError: Any stage rejected the submission
            ConcurrencyError: Usage ledger conflict survived a retry
        """
        started = time.perf_counter()

        with tracer.start_as_current_span("submission_admission") as span:
            add_span_attributes(
                span,
                **{"form.id": form.form_id, "form.visibility": form.visibility.value},
            )
            try:
                result = await self._admit(form, authorization, read_payload)
            except SubmissionRejectedError as e:
                await self.session.rollback()
                add_span_attributes(
                    span,
                    **{"submission.outcome": "rejected", "submission.kind": e.kind.value},
                )
                metrics.record_submission("rejected", e.kind.value, time.perf_counter() - started)
                logger.info(
                    "submission_rejected",
                    form_id=form.form_id,
                    kind=e.kind.value,
                    detail=e.detail,
                )
                raise
            except Exception as e:
                await self.session.rollback()
                set_span_error(span, e)
                metrics.record_error(type(e).__name__, "submit")
                logger.error("submission_failed", form_id=form.form_id, error=str(e))
                raise

            add_span_attributes(
                span,
                **{"submission.outcome": "accepted", "submission.response_id": result.response_id},
            )

        metrics.record_submission("accepted", None, time.perf_counter() - started)
        logger.info(
            "submission_accepted",
            form_id=form.form_id,
            response_id=result.response_id,
            field_count=len(result.payload),
            notify_devices=len(result.notification.tokens) if result.notification else 0,
        )
        return result

    async def _admit(
        self,
        form: FormContext,
        authorization: str | None,
        read_payload: PayloadReader,
    ) -> SubmissionResult:
        decision = await self.access.resolve(form, authorization)
        if decision.reason is not None:
            raise SubmissionRejectedError(decision.reason)

        admission = await self.quota.admit_usage(form.owner_id, form.plan)
        if not admission.admitted:
            raise SubmissionRejectedError(
                RejectionKind.LIMIT_REACHED,
                f"{admission.usage_count}/{admission.limit}",
            )

        try:
            schema = await self.schemas.latest_version(form.form_id)
        except (CorruptSchemaError, ResourceNotFoundError) as e:
            logger.error("form_schema_corrupted", form_id=form.form_id, error=str(e))
            raise SubmissionRejectedError(RejectionKind.INVALID_SCHEMA, str(e))

        payload = await read_payload()
        outcome = validate(payload, schema.fields)
        if outcome.rejection is not None:
            raise SubmissionRejectedError(outcome.rejection)

        normalized = outcome.payload or {}
        response_id = await self._persist(form.form_id, schema.version_id, normalized)
        tokens = await self._owner_device_tokens(form.owner_id)

        await self.session.commit()

        return SubmissionResult(
            response_id=response_id,
            form=form,
            payload=normalized,
            notification=build_submission_notification(form, response_id, tokens),
        )

    async def _persist(self, form_id: int, version_id: int, payload: dict[str, Any]) -> int:
        """Insert the response and bump the form's response count exactly once."""
        response = FormResponse(form_version_id=version_id, response=payload, archived=False)
        self.session.add(response)
        await self.session.flush()

        await self.session.execute(
            update(Form)
            .where(Form.id == form_id)
            .values(response_count=Form.response_count + 1)
        )
        return response.id

    async def _owner_device_tokens(self, owner_id: int) -> list[str]:
        stmt = select(Device.push_token).where(Device.user_id == owner_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
