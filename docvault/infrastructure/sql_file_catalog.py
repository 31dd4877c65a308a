"""
SQL File Catalog

SQLAlchemy implementation of FileCatalog. Blocking session work runs on
worker threads so catalog I/O is awaited like every other storage call.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from docvault.domain.errors import StorageErrorKind, StorageOperationError
from docvault.domain.file_storage.entities import FileMetadata, NewFileRecord, OwnerLink
from docvault.domain.file_storage.repositories import FileCatalog

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Base(DeclarativeBase):
    pass


class FileMetadataRow(Base):
    """ORM row for one stored object."""

    __tablename__ = "file_metadata"
    __table_args__ = (
        CheckConstraint(
            "(is_sensitive AND iv IS NOT NULL) OR (NOT is_sensitive AND iv IS NULL)",
            name="ck_file_metadata_iv_when_sensitive",
        ),
        CheckConstraint(
            "(owner_slot IS NULL) = (owner_key IS NULL)",
            name="ck_file_metadata_owner_pair",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(127), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_type: Mapped[str] = mapped_column(String(32), nullable=False)
    iv: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner_slot: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    owner_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def to_entity(self) -> FileMetadata:
        owner_link = None
        if self.owner_slot and self.owner_key:
            owner_link = OwnerLink(slot=self.owner_slot, owner_key=self.owner_key)
        created_at = self.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return FileMetadata(
            id=self.id,
            path=self.path,
            file_name=self.file_name,
            mime_type=self.mime_type,
            file_size=self.file_size,
            storage_type=self.storage_type,
            is_sensitive=self.is_sensitive,
            iv=self.iv,
            owner_link=owner_link,
            created_at=created_at,
        )


def create_catalog_engine(database_url: str) -> Engine:
    """
    Create the engine backing the catalog.

    In-memory SQLite shares one connection across threads so every worker
    thread sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


class SqlFileCatalog(FileCatalog):
    """
    Relational FileCatalog.

    Writes are single-row inserts and deletes; there is no update path.
    Database errors surface as StorageOperationError with backend "catalog".
    """

    def __init__(self, engine: Engine, create_schema: bool = True):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(engine)

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        def run_in_session() -> T:
            with self._session_factory() as session:
                result = work(session)
                session.commit()
                return result

        try:
            return await asyncio.to_thread(run_in_session)
        except SQLAlchemyError as e:
            logger.error(f"Catalog {operation} failed: {e}")
            raise StorageOperationError(
                f"Catalog {operation} failed: {e}",
                kind=StorageErrorKind.IO_ERROR,
                operation=operation,
                backend="catalog",
                original_error=e,
            ) from e

    async def create(self, record: NewFileRecord) -> FileMetadata:
        def work(session: Session) -> FileMetadata:
            row = FileMetadataRow(
                path=record.path,
                file_name=record.file_name,
                mime_type=record.mime_type,
                file_size=record.file_size,
                storage_type=record.storage_type,
                iv=record.iv,
                is_sensitive=record.is_sensitive,
                owner_slot=record.owner_link.slot if record.owner_link else None,
                owner_key=record.owner_link.owner_key if record.owner_link else None,
            )
            session.add(row)
            session.flush()
            return row.to_entity()

        metadata = await self._run("create", work)
        logger.debug(f"Catalogued file {metadata.id} at {metadata.path}")
        return metadata

    async def get(self, file_id: int) -> Optional[FileMetadata]:
        def work(session: Session) -> Optional[FileMetadata]:
            row = session.get(FileMetadataRow, file_id)
            return row.to_entity() if row else None

        return await self._run("get", work)

    async def get_by_path(self, path: str) -> Optional[FileMetadata]:
        def work(session: Session) -> Optional[FileMetadata]:
            row = session.scalars(select(FileMetadataRow).where(FileMetadataRow.path == path)).first()
            return row.to_entity() if row else None

        return await self._run("get_by_path", work)

    async def delete(self, file_id: int) -> bool:
        def work(session: Session) -> bool:
            row = session.get(FileMetadataRow, file_id)
            if row is None:
                return False
            session.delete(row)
            return True

        return await self._run("delete", work)

    async def list_batch(self, after_id: int, limit: int) -> List[FileMetadata]:
        def work(session: Session) -> List[FileMetadata]:
            rows = session.scalars(
                select(FileMetadataRow)
                .where(FileMetadataRow.id > after_id)
                .order_by(FileMetadataRow.id)
                .limit(limit)
            ).all()
            return [row.to_entity() for row in rows]

        return await self._run("list_batch", work)

    async def count(self) -> int:
        def work(session: Session) -> int:
            return session.scalar(select(func.count()).select_from(FileMetadataRow)) or 0

        return await self._run("count", work)

    async def ping(self) -> bool:
        try:
            await self._run("ping", lambda session: session.execute(text("SELECT 1")))
            return True
        except StorageOperationError:
            return False

    def close(self) -> None:
        self.engine.dispose()
