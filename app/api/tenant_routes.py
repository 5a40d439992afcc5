"""
Tenant Routes - Dashboard API for apps, forms, responses, keys, devices and sessions.

NO DICTIONARIES - All requests/responses use Pydantic models.

Authenticated with ``Authorization: Bearer <session token>``.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_current_user
from app.db.models import App, Form, FormResponse, FormVersion
from app.db.session import get_read_db, get_write_db
from app.exceptions import (
    CorruptSchemaError,
    DuplicateFieldIdsError,
    OwnershipError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from app.models.api import (
    AppDetailResponse,
    AppRequest,
    AppResponse,
    CreateFormRequest,
    CreateSecretKeyRequest,
    CreateSecretKeyResponse,
    FieldSpecItem,
    FormDetailResponse,
    FormItem,
    FormResponseItem,
    FormSummary,
    FormVersionItem,
    MessageResponse,
    RegisterDeviceRequest,
    SecretKeySummary,
    SessionResponse,
    UpdateFormRequest,
    UpdateResponseRequest,
)
from app.models.domain import FieldSpec, FieldType, SessionData
from app.services.schema_store import parse_fields
from app.services.secret_key import SecretKeyService
from app.services.sessions import SessionService
from app.services.tenant import TenantService

logger = get_logger(__name__)

router = APIRouter()


def _not_found(exc: ResourceNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "not-found", "message": f"{exc.resource} not found"},
    )


def _forbidden(exc: OwnershipError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"error": "forbidden", "message": f"Not allowed to access this {exc.resource}"},
    )


def _app_response(app: App) -> AppResponse:
    return AppResponse(id=app.id, user_id=app.user_id, name=app.name, url=app.url)


def _form_item(form: Form) -> FormItem:
    return FormItem(
        id=form.id,
        app_id=form.app_id,
        name=form.name,
        public=form.is_public,
        response_count=form.response_count,
        redirect_on_submit=form.redirect_on_submit,
        success_url=form.success_url,
        failure_url=form.failure_url,
    )


def _version_item(version: FormVersion) -> FormVersionItem:
    """Raises CorruptSchemaError for unparseable stored fields."""
    fields = parse_fields(version.id, version.fields)
    return FormVersionItem(
        id=version.id,
        form_id=version.form_id,
        version_number=version.version_number,
        fields=[FieldSpecItem(**f.to_record()) for f in fields],
        created_at=version.created_at.isoformat(),
    )


def _response_item(response: FormResponse) -> FormResponseItem:
    return FormResponseItem(
        id=response.id,
        form_version_id=response.form_version_id,
        respondent_id=response.respondent_id,
        archived=response.archived,
        response=response.response,
        created_at=response.created_at.isoformat(),
    )


async def _form_detail(service: TenantService, form: Form) -> FormDetailResponse:
    versions = await service.form_versions(form.id)
    responses = await service.form_responses(form.id)
    try:
        version_items = [_version_item(v) for v in versions]
    except CorruptSchemaError as exc:
        logger.error("form_schema_corrupted", form_id=form.id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "invalid-schema", "message": "Schema data is corrupted"},
        ) from exc

    return FormDetailResponse(
        **_form_item(form).model_dump(),
        versions=version_items,
        responses=[_response_item(r) for r in responses],
    )


# =============================================================================
# Apps
# =============================================================================


@router.post("/apps", response_model=AppResponse, status_code=status.HTTP_201_CREATED)
async def create_app(
    request: AppRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> AppResponse:
    """Create an app for the current user."""
    app = await TenantService(db).create_app(user.user_id, request.name, request.url)
    return _app_response(app)


@router.get("/apps", response_model=list[AppResponse])
async def list_apps(
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> list[AppResponse]:
    apps = await TenantService(db).list_apps(user.user_id)
    return [_app_response(a) for a in apps]


@router.get("/apps/{app_id}", response_model=AppDetailResponse)
async def get_app(
    app_id: int,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> AppDetailResponse:
    """App with its forms and secret key metadata (never the keys)."""
    service = TenantService(db)
    try:
        app = await service.get_owned_app(app_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    forms = await service.app_forms(app.id)
    keys = await service.app_secret_keys(app.id)
    return AppDetailResponse(
        **_app_response(app).model_dump(),
        forms=[FormSummary(id=f.id, name=f.name, public=f.is_public) for f in forms],
        secret_keys=[
            SecretKeySummary(id=k.id, name=k.name, created_at=k.created_at.isoformat())
            for k in keys
        ],
    )


@router.put("/apps/{app_id}", response_model=AppResponse)
async def update_app(
    app_id: int,
    request: AppRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> AppResponse:
    service = TenantService(db)
    try:
        app = await service.get_owned_app(app_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    app = await service.update_app(app, request.name, request.url)
    return _app_response(app)


@router.delete("/apps/{app_id}", response_model=MessageResponse)
async def delete_app(
    app_id: int,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> MessageResponse:
    """Delete an app with its forms, responses and keys."""
    service = TenantService(db)
    try:
        app = await service.get_owned_app(app_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    await service.delete_app(app)
    return MessageResponse(message="App deleted")


# =============================================================================
# Secret Keys
# =============================================================================


@router.post(
    "/apps/{app_id}/secret-keys",
    response_model=CreateSecretKeyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_secret_key(
    app_id: int,
    request: CreateSecretKeyRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> CreateSecretKeyResponse:
    """
    Create a secret key for private form submissions.

    The plaintext key is returned only in this response.
    """
    try:
        app = await TenantService(db).get_owned_app(app_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    generated = await SecretKeyService(db).create_secret_key(app, request.name)
    return CreateSecretKeyResponse(id=generated.key_id, key=generated.plaintext_key)


@router.delete("/secret-keys/{key_id}", response_model=MessageResponse)
async def revoke_secret_key(
    key_id: int,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> MessageResponse:
    try:
        await SecretKeyService(db).revoke_secret_key(key_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    return MessageResponse(message="Secret key revoked")


# =============================================================================
# Forms
# =============================================================================


@router.post("/forms", response_model=FormDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_form(
    request: CreateFormRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> FormDetailResponse:
    """Create a private "Untitled form" with a required full name field."""
    service = TenantService(db)
    try:
        form = await service.create_form(user.user_id, request.app_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    return await _form_detail(service, form)


@router.get("/forms/{form_id}", response_model=FormDetailResponse)
async def get_form(
    form_id: int,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> FormDetailResponse:
    """Form with all schema versions and all responses, newest response first."""
    service = TenantService(db)
    try:
        form = await service.get_owned_form(form_id, user.user_id)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    return await _form_detail(service, form)


@router.patch("/forms/{form_id}", response_model=FormDetailResponse)
async def update_form(
    form_id: int,
    request: UpdateFormRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> FormDetailResponse:
    """
    Update form settings and/or fields.

    A field edit appends a new schema version once the current one has
    responses; otherwise the current version is rewritten.
    """
    fields = None
    if request.fields is not None:
        fields = [
            FieldSpec(id=f.id, type=FieldType(f.type), label=f.label, required=f.required)
            for f in request.fields
        ]

    service = TenantService(db)
    try:
        form = await service.get_owned_form(form_id, user.user_id)
        form = await service.update_form(
            form,
            name=request.name,
            is_public=request.public,
            redirect_on_submit=request.redirect_on_submit,
            success_url=request.success_url,
            failure_url=request.failure_url,
            fields=fields,
        )
    except DuplicateFieldIdsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "duplicate-field-ids", "message": str(exc)},
        ) from exc
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    return await _form_detail(service, form)


# =============================================================================
# Responses
# =============================================================================


@router.patch("/responses/{response_id}", response_model=FormResponseItem)
async def update_response(
    response_id: int,
    request: UpdateResponseRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> FormResponseItem:
    """Archive or unarchive a response. Nothing else about a response can change."""
    try:
        response = await TenantService(db).set_response_archived(
            response_id, user.user_id, request.archived
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except OwnershipError as exc:
        raise _forbidden(exc) from exc

    return _response_item(response)


# =============================================================================
# Devices
# =============================================================================


@router.post("/devices", response_model=MessageResponse)
async def register_device(
    request: RegisterDeviceRequest,
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> MessageResponse:
    """Register or refresh the push token of one of the current user's devices."""
    try:
        await TenantService(db).upsert_device(
            user.user_id, request.device_id, request.token, request.platform
        )
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "internal-error", "message": "Failed to register device"},
        ) from exc

    return MessageResponse(message="Device registered")


# =============================================================================
# Sessions
# =============================================================================


@router.post("/sessions/validate", response_model=SessionResponse)
async def validate_session(user: SessionData = Depends(get_current_user)) -> SessionResponse:
    return SessionResponse(
        session_id=user.session_id,
        user_id=user.user_id,
        plan=user.plan,
        expires_at=user.expires_at.isoformat(),
    )


@router.post("/sessions/invalidate", response_model=MessageResponse)
async def invalidate_session(
    user: SessionData = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> MessageResponse:
    """Log out: the current session token stops working."""
    await SessionService(db).invalidate_session(user.session_id)
    return MessageResponse(message="Session invalidated")
