"""
Data manager for record operations against the persistence service.

Rows are plain dictionaries keyed by column name. Every operation is
evaluated against the caller's row-level policies (see ``policies``) and
runs off the event loop, so callers simply ``await`` it.
"""
import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

from sqlalchemy import create_engine, delete, event, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from . import policies
from .errors import CBTError, FetchError, PolicyViolation, RecordNotFound, ValidationError, WriteError
from .models import RequestContext
from .schema import COLLECTIONS, CREATED_TIMESTAMPS, UPDATED_TIMESTAMPS, metadata, new_id, utcnow

T = TypeVar("T")
Row = Dict[str, Any]
OrderBy = Union[str, Sequence[str], None]


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class Transaction:
    """
    Record operations bound to one connection and one caller.

    All operations issued through the same transaction commit or roll back
    together.
    """

    def __init__(self, connection: Connection, ctx: RequestContext):
        self.connection = connection
        self.ctx = ctx
        self.logger = logging.getLogger(__name__)

    def _table(self, collection: str):
        table = COLLECTIONS.get(collection)
        if table is None:
            raise ValidationError(f"Unknown collection: {collection}")
        return table

    def _column(self, table, name: str):
        if name not in table.c:
            raise ValidationError(f"Unknown column {name!r} on {table.name}")
        return table.c[name]

    def _where(self, table, statement, filters: Optional[Dict[str, Any]]):
        for name, value in (filters or {}).items():
            column = self._column(table, name)
            value = _plain(value)
            statement = statement.where(column.is_(None) if value is None else column == value)
        return statement

    def _fetch(self, table, filters: Optional[Dict[str, Any]], order_by: OrderBy = None,
               descending: bool = False) -> List[Row]:
        statement = self._where(table, select(table), filters)
        if order_by:
            names = [order_by] if isinstance(order_by, str) else list(order_by)
            for name in names:
                column = self._column(table, name)
                statement = statement.order_by(column.desc() if descending else column.asc())
        return [dict(row._mapping) for row in self.connection.execute(statement)]

    def _fetch_by_ids(self, table, ids: List[str]) -> List[Row]:
        if not ids:
            return []
        rows = self.connection.execute(select(table).where(table.c.id.in_(ids)))
        by_id = {row._mapping["id"]: dict(row._mapping) for row in rows}
        return [by_id[record_id] for record_id in ids if record_id in by_id]

    def _allowed(self, collection: str, operation: str, row: Row) -> bool:
        return policies.is_allowed(self.ctx, collection, operation, row, self.lookup)

    def _deny(self, collection: str, operation: str) -> None:
        self.logger.warning(
            f"Policy denied {operation} on {collection} for user {self.ctx.user_id}",
            extra={
                'event_type': 'policy_denied',
                'collection': collection,
                'operation': operation,
                'user_id': self.ctx.user_id,
            }
        )
        raise PolicyViolation(f"new row violates row-level security policy for table \"{collection}\"")

    def lookup(self, collection: str, record_id: Optional[str]) -> Optional[Row]:
        """Read one row by id without applying any policy."""
        if record_id is None:
            return None
        table = self._table(collection)
        row = self.connection.execute(select(table).where(table.c.id == record_id)).first()
        return dict(row._mapping) if row is not None else None

    def select(self, collection: str, filters: Optional[Dict[str, Any]] = None,
               order_by: OrderBy = None, descending: bool = False,
               limit: Optional[int] = None) -> List[Row]:
        table = self._table(collection)
        rows = [
            row for row in self._fetch(table, filters, order_by, descending)
            if self._allowed(collection, policies.SELECT, row)
        ]
        return rows[:limit] if limit is not None else rows

    def select_one(self, collection: str, filters: Dict[str, Any]) -> Row:
        rows = self.select(collection, filters, limit=1)
        if not rows:
            raise RecordNotFound(f"No {collection} row matches {filters}")
        return rows[0]

    def insert(self, collection: str, rows: Iterable[Row]) -> List[Row]:
        table = self._table(collection)
        prepared = []
        for row in rows:
            values = {self._column(table, name).name: _plain(value) for name, value in row.items()}
            values.setdefault("id", new_id())
            now = utcnow()
            for name in CREATED_TIMESTAMPS.get(collection, ()):
                values.setdefault(name, now)
            for column in table.c:
                if column.name not in values and column.default is not None and column.default.is_scalar:
                    values[column.name] = column.default.arg
            prepared.append(values)

        if not prepared:
            return []
        for values in prepared:
            if not self._allowed(collection, policies.INSERT, values):
                self._deny(collection, policies.INSERT)

        self.connection.execute(insert(table), prepared)
        return self._fetch_by_ids(table, [values["id"] for values in prepared])

    def update(self, collection: str, values: Row, filters: Dict[str, Any]) -> List[Row]:
        table = self._table(collection)
        changes = {self._column(table, name).name: _plain(value) for name, value in values.items()}
        now = utcnow()
        for name in UPDATED_TIMESTAMPS.get(collection, ()):
            changes.setdefault(name, now)

        visible = [
            row for row in self._fetch(table, filters)
            if self._allowed(collection, policies.UPDATE, row)
        ]
        if not visible:
            return []
        for row in visible:
            if not self._allowed(collection, policies.UPDATE, {**row, **changes}):
                self._deny(collection, policies.UPDATE)

        ids = [row["id"] for row in visible]
        self.connection.execute(update(table).where(table.c.id.in_(ids)).values(**changes))
        return self._fetch_by_ids(table, ids)

    def delete(self, collection: str, filters: Dict[str, Any]) -> int:
        table = self._table(collection)
        ids = [
            row["id"] for row in self._fetch(table, filters)
            if self._allowed(collection, policies.DELETE, row)
        ]
        if not ids:
            return 0
        self.connection.execute(delete(table).where(table.c.id.in_(ids)))
        return len(ids)


class DataManager:
    """Manages the connection to the record store and runs record operations."""

    def __init__(self, database_url: str = "sqlite:///cbt.db", echo: bool = False):
        """
        Initialize DataManager with a database URL.

        Args:
            database_url: SQLAlchemy database URL
            echo: Log every SQL statement
        """
        self.database_url = database_url
        self.logger = logging.getLogger(__name__)
        self.engine = self._create_engine(database_url, echo)
        # SQLite allows a single writer; serialize work handed to threads
        self._lock = threading.Lock()

    @staticmethod
    def _create_engine(database_url: str, echo: bool) -> Engine:
        if not database_url.startswith("sqlite"):
            return create_engine(database_url, echo=echo)

        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **options)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        metadata.create_all(self.engine)
        self.logger.info(f"Schema ready on {self.engine.url.render_as_string(hide_password=True)}")

    def dispose(self) -> None:
        self.engine.dispose()

    def _execute(self, ctx: RequestContext, work: Callable[[Transaction], T]) -> T:
        with self._lock, self.engine.begin() as connection:
            return work(Transaction(connection, ctx))

    async def _run(self, ctx: RequestContext, operation: str, collection: str,
                   work: Callable[[Transaction], T]) -> T:
        try:
            return await asyncio.to_thread(self._execute, ctx, work)
        except CBTError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(
                f"Store error during {operation} on {collection}: {e}",
                extra={
                    'event_type': 'store_error',
                    'collection': collection,
                    'operation': operation,
                    'user_id': ctx.user_id,
                }
            )
            if operation == policies.SELECT:
                raise FetchError(f"Failed to read {collection}: {e}") from e
            raise WriteError(f"Failed to {operation} {collection}: {e}") from e

    async def select(self, ctx: RequestContext, collection: str,
                     filters: Optional[Dict[str, Any]] = None, order_by: OrderBy = None,
                     descending: bool = False, limit: Optional[int] = None) -> List[Row]:
        """
        Read the rows of a collection visible to the caller.

        Args:
            ctx: Caller context
            collection: Collection name
            filters: Column equality predicates
            order_by: Column name, or names, to order by
            descending: Reverse the ordering
            limit: Maximum number of rows to return

        Returns:
            List of rows as dictionaries
        """
        return await self._run(
            ctx, policies.SELECT, collection,
            lambda tx: tx.select(collection, filters, order_by, descending, limit)
        )

    async def select_one(self, ctx: RequestContext, collection: str, filters: Dict[str, Any]) -> Row:
        """Read exactly one visible row, raising RecordNotFound when there is none."""
        return await self._run(ctx, policies.SELECT, collection, lambda tx: tx.select_one(collection, filters))

    async def insert(self, ctx: RequestContext, collection: str, rows: Iterable[Row]) -> List[Row]:
        """Insert rows, returning them with ids and defaults filled in."""
        rows = list(rows)
        return await self._run(ctx, policies.INSERT, collection, lambda tx: tx.insert(collection, rows))

    async def update(self, ctx: RequestContext, collection: str, values: Row,
                     filters: Dict[str, Any]) -> List[Row]:
        """Update the visible rows matching filters, returning the changed rows."""
        return await self._run(ctx, policies.UPDATE, collection, lambda tx: tx.update(collection, values, filters))

    async def delete(self, ctx: RequestContext, collection: str, filters: Dict[str, Any]) -> int:
        """Delete the visible rows matching filters, returning how many were removed."""
        return await self._run(ctx, policies.DELETE, collection, lambda tx: tx.delete(collection, filters))

    async def transaction(self, ctx: RequestContext, work: Callable[[Transaction], T],
                          label: str = "transaction") -> T:
        """
        Run several record operations as one all-or-nothing unit.

        Args:
            ctx: Caller context
            work: Synchronous callable receiving a Transaction
            label: Name used in logs and error messages

        Returns:
            Whatever work returns
        """
        return await self._run(ctx, "write", label, work)
