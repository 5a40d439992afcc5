"""
Tenant Service - Apps, forms, responses and devices owned by a dashboard user.

NO DICTIONARIES - Works on ORM rows and FieldSpec dataclasses.

Every lookup is ownership-checked: a missing row is ResourceNotFoundError,
a row owned by someone else is OwnershipError.
"""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import App, Device, Form, FormResponse, FormVersion, SecretKey
from app.exceptions import OwnershipError, ResourceNotFoundError, WriteVerificationError
from app.models.domain import FieldSpec
from app.services.schema_store import SchemaStore

logger = get_logger(__name__)

DEFAULT_FORM_NAME = "Untitled form"


class TenantService:
    """CRUD over a user's apps and forms."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.schemas = SchemaStore(session)

    # ========================================================================
    # Apps
    # ========================================================================

    async def create_app(self, user_id: int, name: str, url: str) -> App:
        app = App(user_id=user_id, name=name, url=url)
        self.session.add(app)
        await self.session.flush()
        await self.session.commit()
        logger.info("app_created", app_id=app.id, user_id=user_id)
        return app

    async def list_apps(self, user_id: int) -> list[App]:
        stmt = select(App).where(App.user_id == user_id).order_by(App.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_owned_app(self, app_id: int, user_id: int) -> App:
        """
        Raises:
            ResourceNotFoundError: Unknown app
            OwnershipError: App belongs to another user
        """
        app = await self.session.get(App, app_id)
        if app is None:
            raise ResourceNotFoundError("app", app_id)
        if app.user_id != user_id:
            raise OwnershipError("app", app_id)
        return app

    async def app_forms(self, app_id: int) -> list[Form]:
        stmt = select(Form).where(Form.app_id == app_id).order_by(Form.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def app_secret_keys(self, app_id: int) -> list[SecretKey]:
        stmt = select(SecretKey).where(SecretKey.app_id == app_id).order_by(SecretKey.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_app(self, app: App, name: str, url: str) -> App:
        app.name = name
        app.url = url
        await self.session.flush()
        await self.session.commit()
        logger.info("app_updated", app_id=app.id)
        return app

    async def delete_app(self, app: App) -> None:
        app_id = app.id
        await self.session.delete(app)
        await self.session.commit()
        logger.info("app_deleted", app_id=app_id)

    # ========================================================================
    # Forms
    # ========================================================================

    async def create_form(self, user_id: int, app_id: int) -> Form:
        """A private, untitled form whose first version asks for a full name."""
        await self.get_owned_app(app_id, user_id)

        form = Form(
            name=DEFAULT_FORM_NAME,
            app_id=app_id,
            is_public=False,
            response_count=0,
            redirect_on_submit=False,
            success_url="",
            failure_url="",
        )
        self.session.add(form)
        await self.session.flush()
        await self.schemas.create_initial_version(form.id)
        await self.session.commit()

        logger.info("form_created", form_id=form.id, app_id=app_id)
        return form

    async def get_owned_form(self, form_id: int, user_id: int) -> Form:
        """
        Raises:
            ResourceNotFoundError: Unknown form
            OwnershipError: Form's app belongs to another user
        """
        stmt = select(Form, App.user_id).join(App, App.id == Form.app_id).where(Form.id == form_id)
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise ResourceNotFoundError("form", form_id)
        form, owner_id = row
        if owner_id != user_id:
            raise OwnershipError("form", form_id)
        return form

    async def form_versions(self, form_id: int) -> list[FormVersion]:
        return await self.schemas.list_versions(form_id)

    async def form_responses(self, form_id: int) -> list[FormResponse]:
        """All responses of a form across its versions, newest first."""
        stmt = (
            select(FormResponse)
            .join(FormVersion, FormVersion.id == FormResponse.form_version_id)
            .where(FormVersion.form_id == form_id)
            .order_by(FormResponse.created_at.desc(), FormResponse.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_form(
        self,
        form: Form,
        name: str | None = None,
        is_public: bool | None = None,
        redirect_on_submit: bool | None = None,
        success_url: str | None = None,
        failure_url: str | None = None,
        fields: Sequence[FieldSpec] | None = None,
    ) -> Form:
        """
        Apply a partial update. Field edits follow the schema edit policy.

        Raises:
            DuplicateFieldIdsError: Two fields share an id
        """
        if fields is not None:
            await self.schemas.edit_fields(form.id, fields)

        if name is not None:
            form.name = name
        if is_public is not None:
            form.is_public = is_public
        if redirect_on_submit is not None:
            form.redirect_on_submit = redirect_on_submit
        if success_url is not None:
            form.success_url = success_url
        if failure_url is not None:
            form.failure_url = failure_url

        await self.session.flush()
        await self.session.commit()
        logger.info("form_updated", form_id=form.id, fields_changed=fields is not None)
        return form

    # ========================================================================
    # Responses
    # ========================================================================

    async def set_response_archived(
        self, response_id: int, user_id: int, archived: bool
    ) -> FormResponse:
        """
        Raises:
            ResourceNotFoundError: Unknown response
            OwnershipError: Response belongs to another user's form
        """
        stmt = (
            select(FormResponse, App.user_id)
            .join(FormVersion, FormVersion.id == FormResponse.form_version_id)
            .join(Form, Form.id == FormVersion.form_id)
            .join(App, App.id == Form.app_id)
            .where(FormResponse.id == response_id)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise ResourceNotFoundError("response", response_id)
        response, owner_id = row
        if owner_id != user_id:
            raise OwnershipError("response", response_id)

        response.archived = archived
        await self.session.flush()
        await self.session.commit()
        logger.info("response_archived", response_id=response_id, archived=archived)
        return response

    # ========================================================================
    # Devices
    # ========================================================================

    async def upsert_device(
        self, user_id: int, device_id: str, push_token: str, platform: str
    ) -> Device:
        """Register or refresh a push target. A device id moves to its latest user."""
        device = await self.session.get(Device, device_id)
        if device is None:
            device = Device(id=device_id, user_id=user_id, push_token=push_token, platform=platform)
            self.session.add(device)
            try:
                await self.session.flush()
                await self.session.commit()
            except IntegrityError as e:
                # Registered concurrently - update the row that won
                logger.warning("device_insert_conflict", device_id=device_id, error=str(e))
                await self.session.rollback()
                existing = await self.session.get(Device, device_id)
                if existing is None:
                    raise WriteVerificationError(f"Device registration failed: {e}")
                device = existing
            else:
                logger.info("device_registered", user_id=user_id, platform=platform)
                return device

        if device.user_id != user_id:
            logger.info("device_reassigned", from_user_id=device.user_id, to_user_id=user_id)
        device.user_id = user_id
        device.push_token = push_token
        device.platform = platform
        await self.session.flush()
        await self.session.commit()
        logger.info("device_updated", user_id=user_id, platform=platform)
        return device
