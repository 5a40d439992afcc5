"""
Tests for the Tenant Service.

Covers ownership checks, form creation with its first schema version,
partial form updates, response archiving and device registration.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.models import App, Device, Form, FormResponse
from app.exceptions import OwnershipError, ResourceNotFoundError, WriteVerificationError
from app.models.domain import FieldSpec, FieldType
from app.services.tenant import DEFAULT_FORM_NAME, TenantService
from conftest import make_result


class TestOwnership:
    """Tests for the ownership-checked lookups."""

    async def test_owned_app(self, db_session: AsyncMock, tenant_app: App):
        db_session.get = AsyncMock(return_value=tenant_app)

        assert await TenantService(db_session).get_owned_app(3, 7) is tenant_app

    async def test_missing_app(self, db_session: AsyncMock):
        with pytest.raises(ResourceNotFoundError):
            await TenantService(db_session).get_owned_app(3, 7)

    async def test_foreign_app(self, db_session: AsyncMock, tenant_app: App):
        db_session.get = AsyncMock(return_value=tenant_app)

        with pytest.raises(OwnershipError):
            await TenantService(db_session).get_owned_app(3, 8)

    async def test_owned_form(self, db_session: AsyncMock, form_row: Form):
        db_session.execute = AsyncMock(return_value=make_result(row=(form_row, 7)))

        assert await TenantService(db_session).get_owned_form(11, 7) is form_row

    async def test_foreign_form(self, db_session: AsyncMock, form_row: Form):
        db_session.execute = AsyncMock(return_value=make_result(row=(form_row, 8)))

        with pytest.raises(OwnershipError):
            await TenantService(db_session).get_owned_form(11, 7)

    async def test_missing_form(self, db_session: AsyncMock):
        with pytest.raises(ResourceNotFoundError):
            await TenantService(db_session).get_owned_form(11, 7)


class TestForms:
    """Tests for form creation and updates."""

    async def test_create_form_defaults(self, db_session: AsyncMock, tenant_app: App):
        """New forms are private, untitled and get a first schema version."""
        service = TenantService(db_session)
        db_session.get = AsyncMock(return_value=tenant_app)

        with patch.object(
            service.schemas, "create_initial_version", new_callable=AsyncMock
        ) as mock_initial:
            form = await service.create_form(7, 3)

        assert form.name == DEFAULT_FORM_NAME
        assert form.is_public is False
        assert form.response_count == 0
        mock_initial.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    async def test_create_form_in_foreign_app(self, db_session: AsyncMock, tenant_app: App):
        db_session.get = AsyncMock(return_value=tenant_app)

        with pytest.raises(OwnershipError):
            await TenantService(db_session).create_form(8, 3)

        db_session.add.assert_not_called()

    async def test_partial_update_leaves_other_settings(
        self, db_session: AsyncMock, form_row: Form
    ):
        form_row.success_url = "https://x.example/thanks"
        service = TenantService(db_session)

        with patch.object(service.schemas, "edit_fields", new_callable=AsyncMock) as mock_edit:
            await service.update_form(form_row, is_public=True)

        assert form_row.is_public is True
        assert form_row.name == "Contact"
        assert form_row.success_url == "https://x.example/thanks"
        mock_edit.assert_not_called()

    async def test_field_update_goes_through_schema_store(
        self, db_session: AsyncMock, form_row: Form
    ):
        fields = [FieldSpec(id="email", type=FieldType.STRING, label="Email", required=True)]
        service = TenantService(db_session)

        with patch.object(service.schemas, "edit_fields", new_callable=AsyncMock) as mock_edit:
            await service.update_form(form_row, fields=fields)

        mock_edit.assert_awaited_once_with(11, fields)

    async def test_empty_redirect_url_is_applied(self, db_session: AsyncMock, form_row: Form):
        """An empty string clears the template; None leaves it alone."""
        form_row.failure_url = "https://x.example/oops"

        await TenantService(db_session).update_form(form_row, failure_url="")

        assert form_row.failure_url == ""


class TestResponses:
    """Tests for archiving responses."""

    async def test_archive(self, db_session: AsyncMock, response_row: FormResponse):
        db_session.execute = AsyncMock(return_value=make_result(row=(response_row, 7)))

        response = await TenantService(db_session).set_response_archived(31, 7, True)

        assert response.archived is True
        assert response.response == {"name": "Grace"}
        db_session.commit.assert_awaited_once()

    async def test_archive_foreign(self, db_session: AsyncMock, response_row: FormResponse):
        db_session.execute = AsyncMock(return_value=make_result(row=(response_row, 8)))

        with pytest.raises(OwnershipError):
            await TenantService(db_session).set_response_archived(31, 7, True)

        assert response_row.archived is False


class TestDevices:
    """Tests for device registration."""

    async def test_new_device(self, db_session: AsyncMock):
        device = await TenantService(db_session).upsert_device(7, "dev-1", "tok-1", "ios")

        assert device.push_token == "tok-1"
        db_session.add.assert_called_once()
        db_session.commit.assert_awaited_once()

    async def test_existing_device_moves_to_latest_user(self, db_session: AsyncMock):
        existing = Device(id="dev-1", user_id=8, push_token="old", platform="android")
        db_session.get = AsyncMock(return_value=existing)

        device = await TenantService(db_session).upsert_device(7, "dev-1", "tok-1", "ios")

        assert device is existing
        assert (device.user_id, device.push_token, device.platform) == (7, "tok-1", "ios")
        db_session.add.assert_not_called()

    async def test_concurrent_insert_updates_winner(self, db_session: AsyncMock):
        winner = Device(id="dev-1", user_id=8, push_token="other", platform="ios")
        db_session.get = AsyncMock(side_effect=[None, winner])
        db_session.commit = AsyncMock(
            side_effect=[IntegrityError("INSERT", {}, Exception("duplicate key")), None]
        )

        device = await TenantService(db_session).upsert_device(7, "dev-1", "tok-1", "ios")

        assert device is winner
        assert device.user_id == 7
        db_session.rollback.assert_awaited_once()

    async def test_lost_row_after_conflict(self, db_session: AsyncMock):
        db_session.get = AsyncMock(side_effect=[None, None])
        db_session.commit = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("duplicate key"))
        )

        with pytest.raises(WriteVerificationError):
            await TenantService(db_session).upsert_device(7, "dev-1", "tok-1", "ios")
