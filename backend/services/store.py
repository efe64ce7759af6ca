"""Row store adapter: owner-scoped select/insert/update/delete/upsert.

Every operation returns a typed result instead of raising, so callers can
branch on the error kind. Tables with a ``user_id`` column are filtered by
the owner identity on every read and write, and stamped with it on insert.
Each mutating call commits on its own, so a failure only rolls back that
call and earlier writes in the same run stay committed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, Generic, NoReturn, TypeVar

import sqlalchemy as sa
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from backend.exceptions import StoreOperationError, StoreUnavailableError
from backend.services.datetime_service import now_iso

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.models.base import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_ERROR_LENGTH = 300


class StoreErrorKind(StrEnum):
    """Closed set of store failure kinds."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful store call."""

    value: T
    ok: ClassVar[bool] = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class StoreError:
    """Failed store call."""

    kind: StoreErrorKind
    message: str
    ok: ClassVar[bool] = False

    def unwrap(self) -> NoReturn:
        """Raise the exception matching this error's kind."""
        if self.kind == StoreErrorKind.NETWORK:
            raise StoreUnavailableError(self.message)
        raise StoreOperationError(f"{self.kind}: {self.message}")

    def __str__(self) -> str:
        return self.message


StoreResult = Ok[T] | StoreError

Row = dict[str, Any]


def classify_error(exc: SQLAlchemyError) -> StoreError:
    """Map a SQLAlchemy exception onto a store error kind."""
    detail = str(getattr(exc, "orig", None) or exc)
    if len(detail) > _MAX_ERROR_LENGTH:
        detail = detail[:_MAX_ERROR_LENGTH] + "..."
    if isinstance(exc, IntegrityError):
        return StoreError(StoreErrorKind.CONFLICT, detail)
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return StoreError(StoreErrorKind.NETWORK, detail)
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StoreError(StoreErrorKind.NETWORK, detail)
    return StoreError(StoreErrorKind.UNKNOWN, detail)


def _not_found(table: sa.Table, filters: Mapping[str, Any]) -> StoreError:
    return StoreError(StoreErrorKind.NOT_FOUND, f"No {table.name} row matches {dict(filters)}")


class RowStore:
    """Owner-scoped row operations over an async session.

    ``owner_id=None`` disables owner scoping.
    """

    def __init__(self, session: AsyncSession, owner_id: int | None) -> None:
        self.session = session
        self.owner_id = owner_id

    def scoped(self, owner_id: int | None) -> RowStore:
        """Return a store over the same session scoped to another owner."""
        return RowStore(self.session, owner_id)

    # ── Helpers ─────────────────────────────────────

    def _table(self, model: type[Base]) -> sa.Table:
        table: sa.Table = model.__table__  # type: ignore[assignment]
        return table

    def _where(self, table: sa.Table, filters: Mapping[str, Any]) -> list[sa.ColumnElement[bool]]:
        clauses: list[sa.ColumnElement[bool]] = []
        for key, value in filters.items():
            column = table.c[key]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        if self.owner_id is not None and "user_id" in table.c:
            clauses.append(table.c.user_id == self.owner_id)
        return clauses

    def _prepare_insert(self, table: sa.Table, row: Mapping[str, Any]) -> Row:
        values = dict(row)
        if self.owner_id is not None and "user_id" in table.c:
            values["user_id"] = self.owner_id
        now = now_iso()
        for column in ("created_at", "updated_at"):
            if column in table.c and values.get(column) is None:
                values[column] = now
        return values

    async def _fetch(self, table: sa.Table, clauses: Sequence[sa.ColumnElement[bool]]) -> list[Row]:
        result = await self.session.execute(sa.select(table).where(*clauses))
        return [dict(row) for row in result.mappings().all()]

    async def _fail(self, exc: SQLAlchemyError, operation: str, table: sa.Table) -> StoreError:
        await self.session.rollback()
        error = classify_error(exc)
        logger.warning("Store %s on %s failed (%s): %s", operation, table.name, error.kind, error)
        return error

    # ── Operations ──────────────────────────────────

    async def select(
        self,
        model: type[Base],
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> StoreResult[list[Row]]:
        """Select rows matching ``filters``.

        ``order_by`` entries name columns; a leading ``-`` sorts descending.
        """
        table = self._table(model)
        stmt = sa.select(table).where(*self._where(table, filters or {}))
        for name in order_by:
            if name.startswith("-"):
                stmt = stmt.order_by(table.c[name[1:]].desc())
            else:
                stmt = stmt.order_by(table.c[name].asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            return await self._fail(exc, "select", table)
        return Ok([dict(row) for row in result.mappings().all()])

    async def get(self, model: type[Base], row_id: int) -> StoreResult[Row]:
        """Select one row by primary key id."""
        result = await self.select(model, {"id": row_id}, limit=1)
        if isinstance(result, StoreError):
            return result
        if not result.value:
            return _not_found(self._table(model), {"id": row_id})
        return Ok(result.value[0])

    async def count(
        self, model: type[Base], filters: Mapping[str, Any] | None = None
    ) -> StoreResult[int]:
        table = self._table(model)
        stmt = (
            sa.select(sa.func.count())
            .select_from(table)
            .where(*self._where(table, filters or {}))
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            return await self._fail(exc, "count", table)
        return Ok(int(result.scalar_one()))

    async def insert(self, model: type[Base], row: Mapping[str, Any]) -> StoreResult[Row]:
        """Insert one row and return it as stored."""
        table = self._table(model)
        values = self._prepare_insert(table, row)
        try:
            result = await self.session.execute(sa.insert(table).values(**values))
            primary_key = result.inserted_primary_key
            await self.session.commit()
            if primary_key is None:
                return Ok(values)
            rows = await self._fetch(table, [table.c.id == primary_key[0]])
        except SQLAlchemyError as exc:
            return await self._fail(exc, "insert", table)
        return Ok(rows[0] if rows else values)

    async def update(
        self,
        model: type[Base],
        filters: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> StoreResult[list[Row]]:
        """Apply ``patch`` to rows matching ``filters``; NOT_FOUND when none match."""
        table = self._table(model)
        clauses = self._where(table, filters)
        values = dict(patch)
        values.pop("user_id", None)
        if "updated_at" in table.c and "updated_at" not in values:
            values["updated_at"] = now_iso()
        try:
            ids = (await self.session.execute(sa.select(table.c.id).where(*clauses))).scalars().all()
            if not ids:
                await self.session.rollback()
                return _not_found(table, filters)
            await self.session.execute(sa.update(table).where(table.c.id.in_(ids)).values(**values))
            await self.session.commit()
            rows = await self._fetch(table, [table.c.id.in_(ids)])
        except SQLAlchemyError as exc:
            return await self._fail(exc, "update", table)
        return Ok(rows)

    async def delete(self, model: type[Base], filters: Mapping[str, Any]) -> StoreResult[int]:
        """Delete rows matching ``filters`` and return the number removed."""
        table = self._table(model)
        try:
            result = await self.session.execute(sa.delete(table).where(*self._where(table, filters)))
            await self.session.commit()
        except SQLAlchemyError as exc:
            return await self._fail(exc, "delete", table)
        return Ok(int(result.rowcount or 0))

    async def upsert(
        self,
        model: type[Base],
        row: Mapping[str, Any],
        conflict_keys: Sequence[str],
    ) -> StoreResult[Row]:
        """Insert ``row`` or update the existing row sharing its ``conflict_keys``."""
        key_filter = {key: row[key] for key in conflict_keys}
        existing = await self.select(model, key_filter, limit=1)
        if isinstance(existing, StoreError):
            return existing
        if not existing.value:
            return await self.insert(model, row)
        patch = {key: value for key, value in row.items() if key not in conflict_keys}
        patch.pop("created_at", None)
        updated = await self.update(model, {"id": existing.value[0]["id"]}, patch)
        if isinstance(updated, StoreError):
            return updated
        return Ok(updated.value[0])
