from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StorageError
from .models import TodoEntity
from .repositories import SORT_FIELDS, InMemoryRepository, ListQuery, Repository, new_todo_id, next_updated_at, utcnow
from .schemas import TodoCreate, TodoUpdate
from .settings import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class TodoRow(Base):
    __tablename__ = "todos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


# The auth provider owns these two tables; the service only reads them.
class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class SessionRow(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    token: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back as naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# PUBLIC_INTERFACE
def make_engine(settings: Settings) -> Engine:
    """
    Create the process-wide engine for `settings.database_url`.

    Server databases get a bounded QueuePool (DB_POOL_SIZE + DB_MAX_OVERFLOW
    connections, DB_POOL_TIMEOUT seconds to acquire one). In-memory SQLite
    shares a single connection so every session sees the same database.
    """
    url = settings.database_url
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if url in {"sqlite://", "sqlite:///:memory:"} or "mode=memory" in url:
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
        db_path = url.split("///", 1)[-1]
        if db_path:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        return create_engine(
            url,
            connect_args=connect_args,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


def init_db(engine: Engine) -> None:
    """Create missing tables."""
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageError("could not initialize database schema") from e
    logger.info("Database schema ready on %s", engine.url.render_as_string(hide_password=True))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlAlchemyRepository(Repository):
    """
    Repository over the relational `todos` table.

    Every call runs in its own short session; single-row writes rely on the
    database's own atomicity.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(str(e)) from e
        finally:
            session.close()

    @staticmethod
    def _row_to_entity(row: TodoRow) -> TodoEntity:
        return {
            "id": row.id,
            "title": row.title,
            "is_completed": bool(row.is_completed),
            "created_at": as_utc(row.created_at),
            "updated_at": as_utc(row.updated_at),
        }

    def _where(self, q: ListQuery) -> list:
        clauses = []
        if q.completed is not None:
            clauses.append(TodoRow.is_completed == q.completed)
        if q.search:
            clauses.append(TodoRow.title.ilike(f"%{_escape_like(q.search)}%", escape="\\"))
        return clauses

    def create(self, data: TodoCreate) -> TodoEntity:
        now = utcnow()
        row = TodoRow(id=new_todo_id(), title=data.title, is_completed=False, created_at=now, updated_at=now)
        with self._session() as session:
            session.add(row)
            session.flush()
            return self._row_to_entity(row)

    def get(self, todo_id: str) -> Optional[TodoEntity]:
        with self._session() as session:
            row = session.get(TodoRow, todo_id)
            return self._row_to_entity(row) if row else None

    def update(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._session() as session:
            row = session.get(TodoRow, todo_id)
            if row is None:
                return None
            if data.title is not None:
                row.title = data.title
            if data.is_completed is not None:
                row.is_completed = data.is_completed
            row.updated_at = next_updated_at(as_utc(row.updated_at))
            session.flush()
            return self._row_to_entity(row)

    def delete(self, todo_id: str) -> bool:
        with self._session() as session:
            row = session.get(TodoRow, todo_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def count(self, query: Optional[ListQuery] = None) -> int:
        q = query or ListQuery()
        stmt = select(func.count()).select_from(TodoRow).where(*self._where(q))
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    def list(self, query: Optional[ListQuery] = None) -> List[TodoEntity]:
        q = query or ListQuery()
        field = q.order_by if q.order_by in SORT_FIELDS else "created_at"
        column = getattr(TodoRow, field)
        if q.descending:
            order = (column.desc(), TodoRow.id.desc())
        else:
            order = (column.asc(), TodoRow.id.asc())

        stmt = select(TodoRow).where(*self._where(q)).order_by(*order).offset(max(q.offset, 0))
        if q.limit is not None:
            stmt = stmt.limit(max(q.limit, 0))

        with self._session() as session:
            return [self._row_to_entity(r) for r in session.scalars(stmt)]


# PUBLIC_INTERFACE
def build_repository(settings: Settings, engine: Optional[Engine] = None) -> Repository:
    """
    Return the configured repository.
    - memory: InMemoryRepository
    - sql: SqlAlchemyRepository over `engine` (created from settings when omitted)
    """
    if settings.persistence_backend == "sql":
        engine = engine or make_engine(settings)
        init_db(engine)
        return SqlAlchemyRepository(engine)

    return InMemoryRepository()
