"""Versioned document stores.

A store holds one JSON document per room code together with an opaque version
token. The only write primitive besides ``insert`` is ``conditional_update``,
which succeeds only if the caller still holds the current token. This is an
optimistic lock: a backend with native transactions, or a CRDT merge, could
take its place behind the same three methods.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import asyncio
import copy
import logging
import uuid

from sqlalchemy import JSON, BigInteger, Column, MetaData, String, Table, create_engine, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import config
from models import now_ms

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The backing store could not be reached or returned garbage."""
    pass


@dataclass
class StoredDocument:
    document: dict
    version: str


def _new_version() -> str:
    return uuid.uuid4().hex


class VersionedDocumentStore:
    async def fetch(self, key: str) -> Optional[StoredDocument]:
        """Return the document and its version, or None if the key is unknown."""
        raise NotImplementedError

    async def insert(self, key: str, document: dict) -> Optional[str]:
        """Create a new document. Returns its version, or None if the key is taken."""
        raise NotImplementedError

    async def conditional_update(self, key: str, expected_version: str, document: dict) -> Optional[str]:
        """Replace the document if its version still equals ``expected_version``.

        Returns the new version on success, None on a version mismatch.
        """
        raise NotImplementedError


class InMemoryDocumentStore(VersionedDocumentStore):
    """Process-local store, used for development and tests."""

    def __init__(self):
        self._docs: Dict[str, Tuple[dict, str]] = {}
        self._lock = asyncio.Lock()

    def clear(self):
        self._docs.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._docs

    async def fetch(self, key: str) -> Optional[StoredDocument]:
        async with self._lock:
            entry = self._docs.get(key)
            if entry is None:
                return None
            doc, version = entry
            return StoredDocument(copy.deepcopy(doc), version)

    async def insert(self, key: str, document: dict) -> Optional[str]:
        async with self._lock:
            if key in self._docs:
                return None
            version = _new_version()
            self._docs[key] = (copy.deepcopy(document), version)
            return version

    async def conditional_update(self, key: str, expected_version: str, document: dict) -> Optional[str]:
        async with self._lock:
            entry = self._docs.get(key)
            if entry is None or entry[1] != expected_version:
                return None
            version = _new_version()
            self._docs[key] = (copy.deepcopy(document), version)
            return version


metadata = MetaData()

room_state = Table(
    "room_state",
    metadata,
    Column("code", String(16), primary_key=True),
    Column("state", JSON, nullable=False),
    Column("version", String(64), nullable=False),
    Column("updated_at", BigInteger, nullable=False),
)


class SqlDocumentStore(VersionedDocumentStore):
    """Rooms in a SQL table with a version column.

    The conditional write is ``UPDATE ... WHERE code = :code AND version = :version``;
    a rowcount of zero means another writer got there first.
    """

    def __init__(self, database_url: str = config.DATABASE_URL):
        # SQLite needs check_same_thread=False because calls run in worker threads
        self.engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
            pool_pre_ping=True,
        )
        metadata.create_all(self.engine)

    def _fetch(self, key: str) -> Optional[StoredDocument]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(room_state.c.state, room_state.c.version).where(room_state.c.code == key)
            ).first()
        if row is None:
            return None
        return StoredDocument(dict(row.state or {}), row.version)

    def _insert(self, key: str, document: dict) -> Optional[str]:
        version = _new_version()
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(room_state).values(
                    code=key, state=document, version=version, updated_at=now_ms(),
                ))
        except IntegrityError:
            return None
        return version

    def _conditional_update(self, key: str, expected_version: str, document: dict) -> Optional[str]:
        version = _new_version()
        with self.engine.begin() as conn:
            result = conn.execute(
                update(room_state)
                .where(room_state.c.code == key, room_state.c.version == expected_version)
                .values(state=document, version=version, updated_at=now_ms())
            )
        return version if result.rowcount == 1 else None

    async def fetch(self, key: str) -> Optional[StoredDocument]:
        try:
            return await asyncio.to_thread(self._fetch, key)
        except SQLAlchemyError as e:
            raise StoreError(f"fetch {key} failed: {e}") from e

    async def insert(self, key: str, document: dict) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._insert, key, document)
        except SQLAlchemyError as e:
            raise StoreError(f"insert {key} failed: {e}") from e

    async def conditional_update(self, key: str, expected_version: str, document: dict) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._conditional_update, key, expected_version, document)
        except SQLAlchemyError as e:
            raise StoreError(f"update {key} failed: {e}") from e


def create_store() -> VersionedDocumentStore:
    if config.STORE_BACKEND == "sql":
        logger.info("Using SQL room store at %s", config.DATABASE_URL)
        return SqlDocumentStore(config.DATABASE_URL)
    logger.info("Using in-memory room store")
    return InMemoryDocumentStore()
