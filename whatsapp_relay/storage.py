import copy
import logging
import threading
from contextlib import contextmanager
from itertools import count
from typing import Any, Generator, Optional, Protocol, Tuple

from sqlalchemy import create_engine, func, inspect, insert, or_, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_relay.errors import PersistenceError
from whatsapp_relay.models import Base

logger = logging.getLogger(__name__)

Record = dict[str, Any]

MEMORY_URL = "memory://"


class Store(Protocol):
    """
    Durable table store used by the ledger and the contact store.

    Records are plain dicts keyed by column name. Every method raises
    PersistenceError when the underlying store is unreachable or rejects
    the operation.
    """

    def init_db(self) -> None: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...

    def insert(self, table: str, record: Record) -> Record: ...

    def upsert(self, table: str, record: Record, conflict_key: str) -> Record: ...

    def update(self, table: str, patch: Record, match: Record) -> int: ...

    def select(
        self,
        table: str,
        filters: Optional[Record] = None,
        any_of: Optional[Record] = None,
        order_by: str = "created_at",
        descending: bool = True,
        range_start: int = 0,
        range_end: Optional[int] = None,
    ) -> Tuple[list[Record], int]: ...

    def increment_counter(self, table: str, key_field: str, key: Any, counter_field: str) -> None: ...


def create_store(database_url: str) -> Store:
    """Build the store backend selected by DATABASE_URL."""
    if database_url == MEMORY_URL:
        logger.info("Using in-memory store")
        return InMemoryStore()
    return SqlAlchemyStore(database_url)


# =============================================================================
# SQLAlchemy backend
# =============================================================================

class SqlAlchemyStore:
    """Store backed by a SQL database through SQLAlchemy Core statements."""

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            # SQLite connections are shared with the threadpool FastAPI uses
            connect_args["check_same_thread"] = False
        self.database_url = database_url
        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            pool_pre_ping=True,
            echo=False,
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Initialize the database by creating all tables.
        Called during application startup.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise PersistenceError("init_db", str(e)) from e

    def ping(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and all tables exist, False otherwise.
        """
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            inspector = inspect(self.engine)
            missing = [name for name in Base.metadata.tables if not inspector.has_table(name)]
            if missing:
                logger.error(f"Database schema not applied, missing tables: {missing}")
                return False
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self, operation: str) -> Generator[Session, None, None]:
        db = self.SessionLocal()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Store operation failed: {operation}: {e}")
            raise PersistenceError(operation, str(e)) from e
        finally:
            db.close()

    def _table(self, name: str):
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise PersistenceError("table", f"unknown table {name!r}")

    def _fetch_one(self, db: Session, table, column: str, value: Any) -> Record:
        row = db.execute(select(table).where(table.c[column] == value)).mappings().first()
        return dict(row) if row is not None else {}

    def insert(self, table: str, record: Record) -> Record:
        t = self._table(table)
        with self._session(f"insert:{table}") as db:
            result = db.execute(insert(t).values(record))
            pk_column = list(t.primary_key.columns)[0]
            pk_value = result.inserted_primary_key[0]
            db.commit()
            return self._fetch_one(db, t, pk_column.name, pk_value)

    def upsert(self, table: str, record: Record, conflict_key: str) -> Record:
        """
        Insert the record or update the existing row matching conflict_key.

        Only the columns present in the record are written on conflict, so
        columns owned by other operations keep their values.
        """
        t = self._table(table)
        changes = {key: value for key, value in record.items() if key != conflict_key}
        dialect = self.engine.dialect.name

        with self._session(f"upsert:{table}") as db:
            if dialect in ("sqlite", "postgresql"):
                dialect_insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                stmt = dialect_insert(t).values(record)
                if changes:
                    stmt = stmt.on_conflict_do_update(index_elements=[conflict_key], set_=changes)
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=[conflict_key])
                db.execute(stmt)
            else:
                matched = db.execute(
                    update(t).where(t.c[conflict_key] == record[conflict_key]).values(changes)
                ).rowcount
                if not matched:
                    db.execute(insert(t).values(record))
            db.commit()
            return self._fetch_one(db, t, conflict_key, record[conflict_key])

    def update(self, table: str, patch: Record, match: Record) -> int:
        t = self._table(table)
        with self._session(f"update:{table}") as db:
            stmt = update(t).where(*[t.c[key] == value for key, value in match.items()]).values(patch)
            rowcount = db.execute(stmt).rowcount
            db.commit()
            return rowcount

    def select(
        self,
        table: str,
        filters: Optional[Record] = None,
        any_of: Optional[Record] = None,
        order_by: str = "created_at",
        descending: bool = True,
        range_start: int = 0,
        range_end: Optional[int] = None,
    ) -> Tuple[list[Record], int]:
        """
        Select rows matching all `filters` and at least one of `any_of`.

        The range is inclusive on both ends. Ties on order_by are broken by
        the primary key in the same direction so pages are stable.
        """
        t = self._table(table)
        conditions = [t.c[key] == value for key, value in (filters or {}).items()]
        if any_of:
            conditions.append(or_(*[t.c[key] == value for key, value in any_of.items()]))

        stmt = select(t)
        count_stmt = select(func.count()).select_from(t)
        if conditions:
            stmt = stmt.where(*conditions)
            count_stmt = count_stmt.where(*conditions)

        order_columns = [t.c[order_by], *t.primary_key.columns]
        stmt = stmt.order_by(*[c.desc() if descending else c.asc() for c in order_columns])
        stmt = stmt.offset(range_start)
        if range_end is not None:
            stmt = stmt.limit(max(range_end - range_start + 1, 0))

        with self._session(f"select:{table}") as db:
            total = db.execute(count_stmt).scalar_one()
            rows = [dict(row) for row in db.execute(stmt).mappings().all()]
            return rows, total

    def increment_counter(self, table: str, key_field: str, key: Any, counter_field: str) -> None:
        """Add one to counter_field with a single server-side UPDATE."""
        t = self._table(table)
        with self._session(f"increment:{table}") as db:
            stmt = (
                update(t)
                .where(t.c[key_field] == key)
                .values({counter_field: t.c[counter_field] + 1})
            )
            rowcount = db.execute(stmt).rowcount
            db.commit()
        if not rowcount:
            raise PersistenceError(f"increment:{table}", f"no row with {key_field}={key!r}")


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryStore:
    """
    Process-local store with the same contract as SqlAlchemyStore.

    Column layout and defaults come from the ORM models. A single lock
    guards every operation, which makes increment_counter atomic.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: dict[str, list[Record]] = {name: [] for name in Base.metadata.tables}
        self._ids = count(1)

    def init_db(self) -> None:
        pass

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def _rows(self, table: str) -> list[Record]:
        try:
            return self._tables[table]
        except KeyError:
            raise PersistenceError("table", f"unknown table {table!r}")

    def _blank(self, table: str) -> Record:
        row: Record = {}
        for column in Base.metadata.tables[table].columns:
            default = column.default
            row[column.name] = default.arg if default is not None and not callable(default.arg) else None
        return row

    def _primary_key(self, table: str) -> str:
        return list(Base.metadata.tables[table].primary_key.columns)[0].name

    @staticmethod
    def _matches(row: Record, match: Record) -> bool:
        return all(row.get(key) == value for key, value in match.items())

    def insert(self, table: str, record: Record) -> Record:
        with self._lock:
            rows = self._rows(table)
            pk = self._primary_key(table)
            row = self._blank(table)
            row.update(copy.deepcopy(record))
            if row[pk] is None:
                row[pk] = next(self._ids)
            elif any(existing[pk] == row[pk] for existing in rows):
                raise PersistenceError(f"insert:{table}", f"duplicate key {pk}={row[pk]!r}")
            rows.append(row)
            return copy.deepcopy(row)

    def upsert(self, table: str, record: Record, conflict_key: str) -> Record:
        with self._lock:
            for row in self._rows(table):
                if row.get(conflict_key) == record[conflict_key]:
                    row.update(copy.deepcopy(record))
                    return copy.deepcopy(row)
            return self.insert(table, record)

    def update(self, table: str, patch: Record, match: Record) -> int:
        with self._lock:
            matched = [row for row in self._rows(table) if self._matches(row, match)]
            for row in matched:
                row.update(copy.deepcopy(patch))
            return len(matched)

    def select(
        self,
        table: str,
        filters: Optional[Record] = None,
        any_of: Optional[Record] = None,
        order_by: str = "created_at",
        descending: bool = True,
        range_start: int = 0,
        range_end: Optional[int] = None,
    ) -> Tuple[list[Record], int]:
        with self._lock:
            pk = self._primary_key(table)
            rows = [row for row in self._rows(table) if self._matches(row, filters or {})]
            if any_of:
                rows = [
                    row for row in rows
                    if any(row.get(key) == value for key, value in any_of.items())
                ]
            rows.sort(
                key=lambda row: (row[order_by] is not None, row[order_by], row[pk]),
                reverse=descending,
            )
            end = None if range_end is None else range_end + 1
            return [copy.deepcopy(row) for row in rows[range_start:end]], len(rows)

    def increment_counter(self, table: str, key_field: str, key: Any, counter_field: str) -> None:
        with self._lock:
            for row in self._rows(table):
                if row.get(key_field) == key:
                    row[counter_field] = (row[counter_field] or 0) + 1
                    return
        raise PersistenceError(f"increment:{table}", f"no row with {key_field}={key!r}")
