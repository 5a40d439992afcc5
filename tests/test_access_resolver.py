"""
Tests for the Access Resolver and secret key hashing.

Public forms never need a credential; private forms need a Bearer key whose
hash is stored for the form's own app.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.db.models import SecretKey
from app.exceptions import SubmissionRejectedError
from app.models.api import RejectionKind
from app.models.domain import FormContext
from app.services.access import AccessResolver, parse_bearer
from app.services.secret_key import KEY_PREFIX, generate_secret_key, hash_secret_key
from conftest import make_result


class TestParseBearer:
    """Tests for Authorization header parsing."""

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header: str | None):
        with pytest.raises(SubmissionRejectedError) as exc_info:
            parse_bearer(header)

        assert exc_info.value.kind == RejectionKind.MISSING_HEADER

    def test_valid_header(self):
        assert parse_bearer("Bearer tr_abc") == "tr_abc"

    def test_scheme_is_case_insensitive(self):
        assert parse_bearer("bearer tr_abc") == "tr_abc"

    @pytest.mark.parametrize(
        "header",
        [
            "tr_abc",
            "Bearer",
            "Bearer tr_abc extra",
            "Basic tr_abc",
            "Bearer  tr_abc",
        ],
    )
    def test_malformed_headers(self, header: str):
        """Anything but exactly two space-separated tokens with Bearer is malformed."""
        with pytest.raises(SubmissionRejectedError) as exc_info:
            parse_bearer(header)

        assert exc_info.value.kind == RejectionKind.MALFORMED_HEADER


class TestSecretKeyHashing:
    """Tests for key generation and keyed hashing."""

    def test_generated_key_format(self):
        key = generate_secret_key()
        assert key.startswith(KEY_PREFIX)
        # 32 random bytes -> 44 base64 characters
        assert len(key) == len(KEY_PREFIX) + 44

    def test_generated_keys_are_unique(self):
        assert generate_secret_key() != generate_secret_key()

    def test_hash_is_deterministic(self):
        assert hash_secret_key("tr_key", "s1") == hash_secret_key("tr_key", "s1")

    def test_hash_depends_on_secret(self):
        assert hash_secret_key("tr_key", "s1") != hash_secret_key("tr_key", "s2")

    def test_hash_never_contains_plaintext(self):
        assert "tr_key" not in hash_secret_key("tr_key", "s1")


class TestAccessResolver:
    """Tests for AccessResolver.resolve."""

    async def test_public_form_always_allowed(
        self, db_session: AsyncMock, public_form: FormContext
    ):
        resolver = AccessResolver(db_session)

        for header in (None, "", "garbage", "Bearer nope"):
            decision = await resolver.resolve(public_form, header)
            assert decision.allowed is True

        db_session.execute.assert_not_called()

    async def test_private_form_without_header(
        self, db_session: AsyncMock, private_form: FormContext
    ):
        decision = await AccessResolver(db_session).resolve(private_form, None)

        assert decision.allowed is False
        assert decision.reason == RejectionKind.MISSING_HEADER

    async def test_private_form_malformed_header(
        self, db_session: AsyncMock, private_form: FormContext
    ):
        decision = await AccessResolver(db_session).resolve(private_form, "Token abc")

        assert decision.reason == RejectionKind.MALFORMED_HEADER
        db_session.execute.assert_not_called()

    async def test_unknown_key_is_invalid_key(
        self, db_session: AsyncMock, private_form: FormContext
    ):
        """A key-shaped value whose hash isn't stored is rejected as invalid_key."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=None))

        decision = await AccessResolver(db_session).resolve(
            private_form, f"Bearer {generate_secret_key()}"
        )

        assert decision.allowed is False
        assert decision.reason == RejectionKind.INVALID_KEY

    async def test_key_for_other_app_is_invalid_app(
        self, db_session: AsyncMock, private_form: FormContext
    ):
        other_app_key = SecretKey(id=99, app_id=private_form.app_id + 1, name="other", hash="h")
        db_session.execute = AsyncMock(return_value=make_result(scalar=other_app_key))

        decision = await AccessResolver(db_session).resolve(private_form, "Bearer tr_key")

        assert decision.allowed is False
        assert decision.reason == RejectionKind.INVALID_APP

    async def test_key_for_same_app_is_allowed(
        self, db_session: AsyncMock, private_form: FormContext, secret_key_row: SecretKey
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar=secret_key_row))

        decision = await AccessResolver(db_session).resolve(private_form, "Bearer tr_key")

        assert decision.allowed is True
        assert decision.secret_key_id == secret_key_row.id

    async def test_presented_key_is_looked_up(
        self, db_session: AsyncMock, private_form: FormContext
    ):
        """The key part of the header is what gets hashed and looked up."""
        resolver = AccessResolver(db_session)

        with patch.object(
            resolver.keys, "find_by_plaintext", new_callable=AsyncMock, return_value=None
        ) as mock_find:
            await resolver.resolve(private_form, "Bearer tr_plain")

        mock_find.assert_called_once_with("tr_plain")
