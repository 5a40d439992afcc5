"""
Schema Store - Versioned field schemas per form.

NO DICTIONARIES - Stored JSONB is parsed into FieldSpec dataclasses at the edge.

A version that has responses is never changed: editing it appends a new
version. A version without responses is edited in place.
"""

from collections import Counter
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import FormResponse, FormVersion
from app.exceptions import CorruptSchemaError, DuplicateFieldIdsError, ResourceNotFoundError
from app.models.domain import FieldSpec, FieldType, SchemaVersionData

logger = get_logger(__name__)

DEFAULT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(id="full-name", type=FieldType.STRING, label="Full name", required=True),
)


def parse_fields(version_id: int, raw: Any) -> tuple[FieldSpec, ...]:
    """
    Parse a stored field list.

    Raises:
        CorruptSchemaError: The stored value is not a well-formed field list
    """
    if not isinstance(raw, list):
        raise CorruptSchemaError(version_id, "fields is not a list")

    fields: list[FieldSpec] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise CorruptSchemaError(version_id, f"field {index} is not an object")
        field_id = item.get("id")
        label = item.get("label")
        required = item.get("required", False)
        if not isinstance(field_id, str) or not field_id:
            raise CorruptSchemaError(version_id, f"field {index} has no id")
        if not isinstance(label, str):
            raise CorruptSchemaError(version_id, f"field {field_id} has no label")
        if not isinstance(required, bool):
            raise CorruptSchemaError(version_id, f"field {field_id} required is not a boolean")
        try:
            field_type = FieldType(item.get("type"))
        except ValueError:
            raise CorruptSchemaError(
                version_id, f"field {field_id} has unknown type {item.get('type')!r}"
            )
        fields.append(FieldSpec(id=field_id, type=field_type, label=label, required=required))

    duplicates = find_duplicate_ids(fields)
    if duplicates:
        raise CorruptSchemaError(version_id, f"duplicate field ids {duplicates}")

    return tuple(fields)


def find_duplicate_ids(fields: Sequence[FieldSpec]) -> list[str]:
    """Field ids that occur more than once, in first-seen order."""
    counts = Counter(f.id for f in fields)
    return [field_id for field_id, n in counts.items() if n > 1]


def to_version_data(version: FormVersion) -> SchemaVersionData:
    return SchemaVersionData(
        version_id=version.id,
        form_id=version.form_id,
        version_number=version.version_number,
        fields=parse_fields(version.id, version.fields),
        created_at=version.created_at,
    )


class SchemaStore:
    """Latest-version lookup, version append and the edit policy."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def latest_version(self, form_id: int) -> SchemaVersionData:
        """
        Latest schema version of a form.

        Raises:
            ResourceNotFoundError: The form has no versions
            CorruptSchemaError: The stored fields cannot be parsed
        """
        version = await self._find_latest(form_id)
        if version is None:
            raise ResourceNotFoundError("form_version", form_id)
        return to_version_data(version)

    async def append_version(
        self, form_id: int, fields: Sequence[FieldSpec]
    ) -> SchemaVersionData:
        """Add a version numbered previous + 1 (1 for the first)."""
        latest = await self._find_latest(form_id)
        next_number = latest.version_number + 1 if latest is not None else 1

        version = FormVersion(
            form_id=form_id,
            version_number=next_number,
            fields=[f.to_record() for f in fields],
        )
        self.session.add(version)
        await self.session.flush()

        logger.info(
            "form_version_appended",
            form_id=form_id,
            version_id=version.id,
            version_number=next_number,
        )
        return SchemaVersionData(
            version_id=version.id,
            form_id=form_id,
            version_number=next_number,
            fields=tuple(fields),
            created_at=version.created_at,
        )

    async def create_initial_version(self, form_id: int) -> SchemaVersionData:
        """Version 1 of a new form: a single required full name field."""
        return await self.append_version(form_id, DEFAULT_FIELDS)

    async def edit_fields(self, form_id: int, fields: Sequence[FieldSpec]) -> SchemaVersionData:
        """
        Apply a schema edit.

        Duplicate ids are rejected before anything is read. The edit appends a
        new version when the latest one already validated a response, and
        rewrites the latest one otherwise.

        Raises:
            DuplicateFieldIdsError: Two fields share an id
        """
        duplicates = find_duplicate_ids(fields)
        if duplicates:
            raise DuplicateFieldIdsError(duplicates)

        latest = await self._find_latest(form_id)
        if latest is None or await self._has_responses(latest.id):
            return await self.append_version(form_id, fields)

        latest.fields = [f.to_record() for f in fields]
        await self.session.flush()

        logger.info(
            "form_version_rewritten",
            form_id=form_id,
            version_id=latest.id,
            version_number=latest.version_number,
        )
        return SchemaVersionData(
            version_id=latest.id,
            form_id=form_id,
            version_number=latest.version_number,
            fields=tuple(fields),
            created_at=latest.created_at,
        )

    async def list_versions(self, form_id: int) -> list[FormVersion]:
        stmt = (
            select(FormVersion)
            .where(FormVersion.form_id == form_id)
            .order_by(FormVersion.version_number.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _find_latest(self, form_id: int) -> FormVersion | None:
        stmt = (
            select(FormVersion)
            .where(FormVersion.form_id == form_id)
            .order_by(FormVersion.version_number.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _has_responses(self, version_id: int) -> bool:
        stmt = select(FormResponse.id).where(FormResponse.form_version_id == version_id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
