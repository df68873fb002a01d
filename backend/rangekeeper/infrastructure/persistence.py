"""
Rangekeeper - Resource Persistence

Stores are invoked by the registry at process boundaries only:
``load()`` on start, ``save()`` on stop.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, List, Optional

import structlog
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, delete, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rangekeeper.domain.resources.entities import Resource

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


class ResourceRecord(Base):
    """One persisted resource; ``record`` holds the full serialized entity."""

    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_update_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceRecord":
        return cls(
            id=resource.id,
            name=resource.name,
            status=resource.status.value,
            deleted=resource.deleted,
            last_update_datetime=resource.last_update_datetime,
            record=resource.to_dict(),
        )

    def to_resource(self) -> Resource:
        return Resource.from_dict(self.record)


class ResourceStore(ABC):
    """Persistence interface for resource records."""

    @abstractmethod
    async def load(self) -> List[Resource]:
        """Load every stored resource, deleted ones included."""

    @abstractmethod
    async def save(self, resources: Iterable[Resource]) -> None:
        """Replace the stored set with ``resources``."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class MemoryResourceStore(ResourceStore):
    """Keeps records in process memory; survives registry restarts only."""

    def __init__(self, resources: Iterable[Resource] = ()):
        self._records = [resource.to_dict() for resource in resources]

    async def load(self) -> List[Resource]:
        return [Resource.from_dict(record) for record in self._records]

    async def save(self, resources: Iterable[Resource]) -> None:
        self._records = [resource.to_dict() for resource in resources]


class DatabaseResourceStore(ResourceStore):
    """
    SQL store backed by async SQLAlchemy.

    Any async driver URL works (``sqlite+aiosqlite:///rangekeeper.db``,
    ``postgresql+asyncpg://...``). The schema is created on first use and a
    save replaces the table contents in a single transaction.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._schema_ready = False

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._schema_ready = True

    async def load(self) -> List[Resource]:
        await self._ensure_schema()

        async with self._session_factory() as session:
            result = await session.execute(select(ResourceRecord).order_by(ResourceRecord.id))
            resources = [row.to_resource() for row in result.scalars()]

        logger.info("Loaded resources", database=self._location(), count=len(resources))
        return resources

    async def save(self, resources: Iterable[Resource]) -> None:
        await self._ensure_schema()
        rows = [ResourceRecord.from_resource(resource) for resource in resources]

        async with self._session_factory() as session:
            try:
                await session.execute(delete(ResourceRecord))
                session.add_all(rows)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("Saved resources", database=self._location(), count=len(rows))

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connection closed", database=self._location())

    def _location(self) -> Optional[str]:
        return self.database_url.split("@")[-1]
