"""
API Routes - Public submission endpoint and health check.

NO DICTIONARIES - Responses are built from Pydantic models.

The submission endpoint answers in one of two modes chosen by the form:
redirect (303 to the success / failure URL) or JSON with a status per
rejection kind. Unknown forms and oversize bodies are always JSON.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.background import BackgroundTask
from structlog import get_logger

from app.api.dependencies import get_notifier
from app.config import settings
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    ConcurrencyError,
    FormNotFoundError,
    RequestTooLargeError,
    SubmissionRejectedError,
)
from app.models.api import (
    REJECTION_PRESENTATION,
    HealthResponse,
    RejectionKind,
    SubmissionAcceptedResponse,
    SubmissionErrorResponse,
)
from app.models.domain import FormContext
from app.services.notifications import PushNotifier
from app.services.redirects import build_failure_url, build_success_url
from app.services.submission import SubmissionPipeline
from app.services.validator import read_payload

logger = get_logger(__name__)

router = APIRouter()


async def enforce_body_limit(request: Request, limit: int) -> None:
    """
    Reject bodies over ``limit`` bytes.

    The declared Content-Length is checked first. The stream is then read
    chunk by chunk and abandoned as soon as the running size passes the
    limit, so chunked uploads are never buffered past it. The collected body
    is cached on the request for later decoding.

    Raises:
        RequestTooLargeError: Body exceeds the limit
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise RequestTooLargeError(limit)

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise RequestTooLargeError(limit)
        chunks.append(chunk)

    request._body = b"".join(chunks)


def rejection_response(form: FormContext, kind: RejectionKind) -> Response:
    """Present a rejection as a redirect or as a JSON error, as the form asks."""
    if form.redirect_on_submit:
        url = build_failure_url(form.failure_url, kind, settings.default_failure_url)
        return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)

    presentation = REJECTION_PRESENTATION[kind]
    body = SubmissionErrorResponse(
        error=presentation.error,
        message=presentation.message,
        kind=kind.value,
    )
    return JSONResponse(status_code=presentation.status_code, content=body.model_dump())


@router.post(
    "/forms/{form_id}",
    response_model=SubmissionAcceptedResponse,
    responses={
        303: {"description": "Redirect to the form's success or failure URL"},
        400: {"model": SubmissionErrorResponse},
        401: {"model": SubmissionErrorResponse},
        403: {"model": SubmissionErrorResponse},
        404: {"model": SubmissionErrorResponse},
        413: {"model": SubmissionErrorResponse},
        429: {"model": SubmissionErrorResponse},
        500: {"model": SubmissionErrorResponse},
    },
)
async def submit_form(
    form_id: int,
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    notifier: PushNotifier = Depends(get_notifier),
) -> Response:
    """
    Submit a response to a form.

    Accepts application/json, application/x-www-form-urlencoded and
    multipart/form-data bodies. Private forms need
    ``Authorization: Bearer <secret key>``.

    The owner's devices are notified after the response has been sent;
    notification failures never affect the submission.
    """
    try:
        await enforce_body_limit(request, settings.max_submission_bytes)
    except RequestTooLargeError as exc:
        logger.info("submission_too_large", form_id=form_id, limit_bytes=exc.limit_bytes)
        body = SubmissionErrorResponse(error="request-too-large", message=str(exc))
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content=body.model_dump(exclude_none=True),
        )

    pipeline = SubmissionPipeline(db)

    try:
        form = await pipeline.load_form(form_id)
    except FormNotFoundError:
        logger.info("submission_form_not_found", form_id=form_id)
        body = SubmissionErrorResponse(error="not-found", message="Form not found")
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=body.model_dump(exclude_none=True),
        )

    try:
        result = await pipeline.submit(
            form,
            request.headers.get("authorization"),
            lambda: read_payload(request),
        )
    except SubmissionRejectedError as exc:
        return rejection_response(form, exc.kind)
    except ConcurrencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "internal-error", "message": str(exc)},
        ) from exc

    background = None
    if result.notification is not None:
        background = BackgroundTask(notifier.send, result.notification)

    if form.redirect_on_submit:
        url = build_success_url(form.success_url, result.payload, settings.default_success_url)
        return RedirectResponse(
            url, status_code=status.HTTP_303_SEE_OTHER, background=background
        )

    accepted = SubmissionAcceptedResponse(response_id=result.response_id)
    return JSONResponse(content=accepted.model_dump(by_alias=True), background=background)


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
