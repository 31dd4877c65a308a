"""
SQL Owner Directory

Answers whether the entity owning a document exists by querying the
business table that lives beside the catalog.
"""

import asyncio
import logging

from sqlalchemy import column, select, table
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from docvault.domain.errors import StorageErrorKind, StorageOperationError
from docvault.domain.file_storage.repositories import OwnerDirectory

logger = logging.getLogger(__name__)


class SqlOwnerDirectory(OwnerDirectory):
    """
    OwnerDirectory backed by a table of owners.

    Args:
        engine: SQLAlchemy engine
        table_name: Table holding the owners (e.g. participants)
        key_column: Column compared against the owner key
    """

    def __init__(self, engine: Engine, table_name: str = "participants", key_column: str = "id"):
        self.engine = engine
        self._key = column(key_column)
        self._table = table(table_name, self._key)

    async def exists(self, owner_key: str) -> bool:
        query = select(self._key).select_from(self._table).where(self._key == owner_key).limit(1)

        def run() -> bool:
            with self.engine.connect() as connection:
                return connection.execute(query).first() is not None

        try:
            return await asyncio.to_thread(run)
        except SQLAlchemyError as e:
            logger.error(f"Owner lookup failed for {owner_key}: {e}")
            raise StorageOperationError(
                f"Owner lookup failed: {e}",
                kind=StorageErrorKind.IO_ERROR,
                operation="owner_lookup",
                backend="catalog",
                original_error=e,
            ) from e
